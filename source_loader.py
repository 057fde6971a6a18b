"""
Tabular source loading for the metrics engine.

Each source is a delimited text file keyed by one column. Loading never
raises: a source that cannot be fetched or parsed is logged and replaced
by an empty table, so the remaining sources still join.
"""
import asyncio
import io
import logging
import math
from typing import Any, Dict, Iterable, List, Optional

import numpy as np
import pandas as pd
import requests

from config import source_location
from geojson_loader import is_remote

logger = logging.getLogger(__name__)


def normalize_id(value: Any) -> Optional[str]:
    """
    Normalize a cell code or link id to its canonical string form.

    Integral floats lose their fractional part so that 123.0 read from JSON
    matches "123" read from CSV. Blank values return None.
    """
    if value is None:
        return None
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        if value.is_integer():
            value = int(value)
    text = str(value).strip()
    return text or None


def _to_numeric(series: pd.Series) -> pd.Series:
    """Parse a string column to finite, non-negative floats (invalid -> 0)."""
    values = pd.to_numeric(series.astype(str).str.strip(), errors='coerce')
    values = values.replace([np.inf, -np.inf], np.nan).fillna(0.0)
    return values.clip(lower=0.0).astype(float)


class SourceTable:
    """
    Key -> numeric fields mapping built from one tabular source.

    Backed by a DataFrame indexed by the string key, one float column per
    field. Lookups of unknown keys return None (or zeros via lookup()).
    """

    def __init__(self, frame: Optional[pd.DataFrame] = None,
                 fields: Iterable[str] = (), name: str = 'source'):
        if frame is None:
            frame = pd.DataFrame(columns=list(fields), dtype=float)
        self.frame = frame
        self.name = name

    @classmethod
    def empty(cls, fields: Iterable[str] = (), name: str = 'source') -> 'SourceTable':
        return cls(None, fields=fields, name=name)

    @property
    def fields(self) -> List[str]:
        return list(self.frame.columns)

    def __len__(self) -> int:
        return len(self.frame.index)

    def __contains__(self, key) -> bool:
        key = normalize_id(key)
        return key is not None and key in self.frame.index

    def __iter__(self):
        return iter(self.frame.index)

    def __repr__(self):
        return f"<SourceTable {self.name}: {len(self)} rows, fields={self.fields}>"

    def get(self, key, default=None) -> Optional[Dict[str, float]]:
        """Return {field: value} for a key, or default when absent."""
        key = normalize_id(key)
        if key is None or key not in self.frame.index:
            return default
        row = self.frame.loc[key]
        return {field: float(value) for field, value in row.items()}

    def column(self, field: str) -> Dict[str, float]:
        """Return a plain {key: value} dict for one field."""
        if field not in self.frame.columns:
            return {}
        return {key: float(value) for key, value in self.frame[field].items()}

    def lookup(self, keys: List[Optional[str]], field: str) -> np.ndarray:
        """Values of one field aligned with keys; absent keys read as 0."""
        if field not in self.frame.columns or len(self) == 0:
            return np.zeros(len(keys), dtype=float)
        return self.frame[field].reindex(keys).fillna(0.0).to_numpy(dtype=float)


def parse_source(text: str, key_column: str,
                 fields: Optional[Dict[str, str]] = None,
                 prefix_fields: Optional[Dict[str, str]] = None,
                 name: str = 'source') -> SourceTable:
    """
    Parse delimited text into a SourceTable.

    Args:
        text: Raw file contents (header row plus data rows)
        key_column: Header of the join-key column
        fields: {field name: column header} read as numbers
        prefix_fields: {field name: header prefix}; all matching columns are summed
        name: Label used in log messages

    Rows with a blank key are skipped. Missing value columns read as 0 and a
    missing key column yields an empty table. Duplicate keys keep the last row.
    """
    fields = dict(fields or {})
    prefix_fields = dict(prefix_fields or {})
    field_names = list(fields) + list(prefix_fields)

    clean = (text or '').lstrip('\ufeff').strip()
    if not clean:
        return SourceTable.empty(field_names, name=name)

    raw = pd.read_csv(
        io.StringIO(clean),
        dtype=str,
        index_col=False,
        keep_default_na=False,
        on_bad_lines='skip',
    ).fillna('')
    raw.columns = [str(col).strip() for col in raw.columns]

    if key_column not in raw.columns:
        logger.warning(f"Source '{name}': key column {key_column!r} not found, table is empty")
        return SourceTable.empty(field_names, name=name)

    frame = pd.DataFrame(index=raw.index)
    for field, column in fields.items():
        if column in raw.columns:
            frame[field] = _to_numeric(raw[column])
        else:
            logger.warning(f"Source '{name}': column {column!r} not found, '{field}' reads as 0")
            frame[field] = 0.0

    for field, prefix in prefix_fields.items():
        matching = [col for col in raw.columns if col.startswith(prefix)]
        total = pd.Series(0.0, index=raw.index)
        for col in matching:
            total = total + _to_numeric(raw[col])
        frame[field] = total
        if not matching:
            logger.warning(f"Source '{name}': no columns start with {prefix!r}")

    frame.index = pd.Index([normalize_id(key) for key in raw[key_column]], name='key')
    frame = frame[frame.index.notna()]
    frame = frame[~frame.index.duplicated(keep='last')]

    return SourceTable(frame.astype(float), name=name)


def fetch_text(location: str, timeout: float = 120) -> str:
    """Read a text source from a URL or the filesystem."""
    if is_remote(location):
        response = requests.get(location, timeout=timeout)
        response.raise_for_status()
        return response.content.decode('utf-8-sig')
    with open(location, 'r', encoding='utf-8-sig') as f:
        return f.read()


def empty_table(source_id: str, config: Dict[str, Any]) -> SourceTable:
    settings = config['sources'].get(source_id, {})
    fields = list(settings.get('fields') or {}) + list(settings.get('prefix_fields') or {})
    return SourceTable.empty(fields, name=source_id)


def load_source(source_id: str, config: Dict[str, Any], year=None) -> SourceTable:
    """
    Fetch and parse one configured source.

    Never raises; any failure is logged and an empty table returned.
    """
    try:
        settings = config['sources'][source_id]
    except KeyError:
        logger.error(f"Unknown source '{source_id}'")
        return SourceTable.empty(name=source_id)

    location = source_location(config, source_id, year)
    try:
        text = fetch_text(location, timeout=config.get('request_timeout', 120))
        table = parse_source(
            text,
            settings['key'],
            fields=settings.get('fields'),
            prefix_fields=settings.get('prefix_fields'),
            name=source_id,
        )
        logger.info(f"✓ Loaded source '{source_id}' ({len(table)} keyed rows)")
        return table
    except FileNotFoundError:
        logger.warning(f"Source '{source_id}' not found at {location}")
    except Exception as e:
        logger.error(f"Error loading source '{source_id}' from {location}: {e}", exc_info=True)
    return empty_table(source_id, config)


async def load_sources(source_ids: List[str], config: Dict[str, Any],
                       year=None) -> Dict[str, SourceTable]:
    """
    Load several sources concurrently and wait for all of them.

    A source that fails resolves to an empty table; it never cancels or
    fails the others.
    """
    results = await asyncio.gather(
        *[asyncio.to_thread(load_source, source_id, config, year) for source_id in source_ids],
        return_exceptions=True,
    )

    tables = {}
    for source_id, result in zip(source_ids, results):
        if isinstance(result, BaseException):
            logger.error(f"Loading source '{source_id}' failed: {result}")
            result = empty_table(source_id, config)
        tables[source_id] = result
    return tables
