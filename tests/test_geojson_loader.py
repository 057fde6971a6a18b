import json

import pytest
import requests

import geojson_loader
from geojson_loader import get_empty_geojson, is_remote, load_geojson, load_geojson_or_empty


def test_is_remote():
    assert is_remote('https://example.org/a.geojson')
    assert not is_remote('data/a.geojson')


def test_load_local_file(tmp_path):
    path = tmp_path / 'grid.geojson'
    path.write_text(json.dumps({'type': 'FeatureCollection', 'features': [{'type': 'Feature'}]}),
                    encoding='utf-8-sig')
    data = load_geojson(str(path))
    assert len(data['features']) == 1


def test_invalid_json_raises(tmp_path):
    path = tmp_path / 'bad.geojson'
    path.write_text('{not json')
    with pytest.raises(Exception, match='Invalid JSON'):
        load_geojson(str(path))


def test_missing_type_raises(tmp_path):
    path = tmp_path / 'notype.geojson'
    path.write_text(json.dumps({'features': []}))
    with pytest.raises(ValueError):
        load_geojson(str(path))


def test_or_empty_on_missing_file(tmp_path):
    assert load_geojson_or_empty(str(tmp_path / 'missing.geojson')) == get_empty_geojson()


def test_remote_timeout(monkeypatch):
    def fake_get(url, timeout):
        raise requests.exceptions.Timeout()

    monkeypatch.setattr(geojson_loader.requests, 'get', fake_get)
    with pytest.raises(Exception, match='timed out'):
        load_geojson('https://example.org/roads.geojson', timeout=3)
    assert load_geojson_or_empty('https://example.org/roads.geojson') == get_empty_geojson()


def test_remote_success(monkeypatch):
    class FakeResponse:
        headers = {'content-length': '2048'}

        def raise_for_status(self):
            pass

        def json(self):
            return {'type': 'FeatureCollection', 'features': []}

    monkeypatch.setattr(geojson_loader.requests, 'get', lambda url, timeout: FakeResponse())
    assert load_geojson('https://example.org/grid.geojson')['type'] == 'FeatureCollection'
