"""
GeoJSON loader for the grid and road layers, with error handling
"""
import requests
import json
import logging
from typing import Dict, Any

logger = logging.getLogger(__name__)


def is_remote(location: str) -> bool:
    return str(location).startswith(('http://', 'https://'))


def load_geojson(location: str, timeout: float = 120) -> Dict[str, Any]:
    """
    Load a GeoJSON feature collection from a URL or a local file

    Args:
        location: URL or filesystem path
        timeout: Request timeout in seconds (URLs only)

    Returns:
        Parsed GeoJSON dictionary

    Raises:
        Exception: If loading fails
    """
    logger.info(f"Loading GeoJSON from: {location}")

    try:
        if is_remote(location):
            response = requests.get(location, timeout=timeout)
            response.raise_for_status()

            content_length = response.headers.get('content-length')
            if content_length:
                size_mb = int(content_length) / (1024 * 1024)
                logger.info(f"File size: {size_mb:.2f} MB")

            data = response.json()
        else:
            with open(location, 'r', encoding='utf-8-sig') as f:
                data = json.load(f)

        # Validate structure
        if not isinstance(data, dict):
            raise ValueError("Invalid GeoJSON: root must be an object")

        if 'type' not in data:
            raise ValueError("Invalid GeoJSON: missing 'type' field")

        if 'features' in data:
            feature_count = len(data['features'] or [])
            logger.info(f"Loaded {feature_count} features successfully")

        return data

    except requests.exceptions.Timeout:
        logger.error(f"Timeout loading GeoJSON from {location}")
        raise Exception(f"Request timed out after {timeout} seconds")

    except requests.exceptions.RequestException as e:
        logger.error(f"Request error: {e}")
        raise Exception(f"Failed to fetch GeoJSON: {str(e)}")

    except json.JSONDecodeError as e:
        logger.error(f"JSON parsing error: {e}")
        raise Exception(f"Invalid JSON format: {str(e)}")


def load_geojson_or_empty(location: str, timeout: float = 120) -> Dict[str, Any]:
    """Load GeoJSON, falling back to an empty collection on any failure"""
    try:
        return load_geojson(location, timeout=timeout)
    except Exception as e:
        logger.error(f"Could not load GeoJSON from {location}: {e}", exc_info=True)
        return get_empty_geojson()


def get_empty_geojson() -> Dict[str, Any]:
    """Return empty GeoJSON structure as fallback"""
    return {
        "type": "FeatureCollection",
        "features": []
    }
