"""
Tests for the command line entry point.
"""
import json

import pandas as pd
import pytest

from melkmap import cli
from melkmap.conftest import ScriptedProvider, feature, make_post, small_square
from melkmap.provider import Listings, TransportError


class ProviderSession:
    def __init__(self, provider):
        self.provider = provider

    async def __aenter__(self):
        return self.provider

    async def __aexit__(self, *exc):
        return None


@pytest.fixture
def polygon_file(tmp_path):
    path = tmp_path / "area.geojson"
    path.write_text(json.dumps(feature(small_square(), id="sq")), encoding="utf-8")
    return path


def use_provider(monkeypatch, provider):
    monkeypatch.setattr(cli, "DivarProvider", lambda base_url, logger: ProviderSession(provider))


def test_parse_args_filters():
    args = cli.parse_args(["area.geojson", "--elevator", "yes", "--parking", "no",
                           "--size", "50", "120", "--advertiser", "business"])
    f = cli.filters_from_args(args)
    assert (f.elevator, f.parking, f.balcony) == (True, False, None)
    assert f.size == (50.0, 120.0)
    assert f.price is None
    assert f.advertiser_type == "business"
    with pytest.raises(SystemExit):
        cli.parse_args(["area.geojson", "--elevator", "maybe"])


def test_main_writes_export(monkeypatch, tmp_path, polygon_file):
    provider = ScriptedProvider(by_tile=lambda t: Listings([make_post(token=f"{t.min_lat}:{t.min_lng}")]))
    use_provider(monkeypatch, provider)
    out = tmp_path / "out.csv"
    code = cli.main([str(polygon_file), "--out", str(out), "--db", str(tmp_path / "cache.db"), "--no-file-log"])
    assert code == 0
    df = pd.read_csv(out)
    assert len(df) == len(provider.calls)


def test_main_invalid_polygon(monkeypatch, tmp_path):
    path = tmp_path / "bad.geojson"
    path.write_text(json.dumps({"type": "Polygon", "coordinates": [[[0, 0], [1, 1]]]}), encoding="utf-8")
    use_provider(monkeypatch, ScriptedProvider())
    assert cli.main([str(path), "--db", str(tmp_path / "cache.db"), "--no-file-log"]) == 2


def test_main_aborts_when_every_tile_fails(monkeypatch, tmp_path, polygon_file):
    use_provider(monkeypatch, ScriptedProvider(by_tile=lambda t: TransportError(detail="HTTP 503", status=503)))
    out = tmp_path / "out.csv"
    code = cli.main([str(polygon_file), "--out", str(out), "--db", str(tmp_path / "cache.db"), "--no-file-log"])
    assert code == 1
    assert not out.exists()
