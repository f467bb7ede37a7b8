"""Tests for the cached osekai datasets and the refresh CLI."""

from unittest.mock import MagicMock

import pytest

import db_helper
import refresh_cache
from osu_api import OsekaiMedal, OsekaiUserEntry, UpstreamError


@pytest.fixture(autouse=True)
def temp_db(tmp_path, monkeypatch):
    monkeypatch.setattr(db_helper, "DB_FILE", tmp_path / "stats.db")
    db_helper.init_database()


@pytest.fixture()
def client():
    c = MagicMock()
    c.get_osekai_medals.side_effect = lambda: [
        OsekaiMedal(1, "Jackpot", "https://icon/1", "d", "Hush-Hush"),
        OsekaiMedal(2, "50,000 Plays", "https://icon/2", "d", "Dedication"),
    ]
    c.get_osekai_rarity.return_value = {1: 0.5}
    c.get_osekai_ranking.return_value = [OsekaiUserEntry(1, 2, "peppy", "AU", 250, "Jackpot", 80.5)]
    return c


class TestCachedDatasets:
    """Reading through the cache."""

    def test_medals_merge_rarity(self, client):
        medals = refresh_cache.cached_medals(client)
        assert medals[0].rarity == 0.5
        assert medals[1].rarity is None

    def test_second_read_hits_cache(self, client):
        refresh_cache.cached_medals(client)
        cached = refresh_cache.cached_medals(client)
        assert client.get_osekai_medals.call_count == 1
        assert cached[0] == OsekaiMedal(1, "Jackpot", "https://icon/1", "d", "Hush-Hush", rarity=0.5)

    def test_force_refetches(self, client):
        refresh_cache.cached_ranking(client)
        refresh_cache.cached_ranking(client, force=True)
        assert client.get_osekai_ranking.call_count == 2

    def test_rarity_keys_survive_json(self, client):
        refresh_cache.cached_rarity(client)
        assert refresh_cache.cached_rarity(client) == {1: 0.5}

    def test_rarity_failure_still_returns_medals(self, client):
        client.get_osekai_rarity.side_effect = UpstreamError("osekai down")
        medals = refresh_cache.cached_medals(client)
        assert [m.rarity for m in medals] == [None, None]


class TestRefresh:
    """CLI refresh."""

    def test_reports_per_target(self, client):
        client.get_osekai_ranking.side_effect = UpstreamError("osekai down")
        results = refresh_cache.refresh(client, ["rarity", "ranking"])
        assert results == {"rarity": True, "ranking": False}

    def test_medals_refresh_reuses_refreshed_rarity(self, client):
        results = refresh_cache.refresh(client, ["rarity", "medals"])
        assert results == {"rarity": True, "medals": True}
        assert client.get_osekai_rarity.call_count == 1
        assert refresh_cache.cached_medals(client)[0].rarity == 0.5

    def test_no_target_is_an_error(self):
        with pytest.raises(SystemExit):
            refresh_cache.main([])

    def test_missing_credentials(self, monkeypatch):
        monkeypatch.setattr(refresh_cache, "read_osu_client_file", lambda: None)
        assert refresh_cache.main(["-all"]) == 1
