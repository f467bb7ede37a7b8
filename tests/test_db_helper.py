"""Tests for the sqlite helpers, run against a temporary database."""

import pytest

import db_helper
from osu_api import OsuUser, UserMedal


@pytest.fixture(autouse=True)
def temp_db(tmp_path, monkeypatch):
    path = tmp_path / "stats.db"
    monkeypatch.setattr(db_helper, "DB_FILE", path)
    db_helper.init_database()
    return path


def make_user(user_id=2, username="peppy", pp=1000.0):
    return OsuUser(user_id, username, "AU", "https://a.ppy.sh/2", pp=pp, global_rank=10,
                   accuracy=98.5, playcount=100, medals=[UserMedal(1, None), UserMedal(2, None)])


class TestUserLinks:
    """Discord <-> osu! links."""

    def test_link_and_get(self):
        db_helper.set_user_link(123, 2, "peppy")
        assert db_helper.get_user_link(123) == {"osu_id": 2, "username": "peppy"}
        assert db_helper.get_user_link("123") == {"osu_id": 2, "username": "peppy"}

    def test_relink_overwrites(self):
        db_helper.set_user_link(123, 2, "peppy")
        db_helper.set_user_link(123, 3, "someone")
        assert db_helper.get_user_link(123)["osu_id"] == 3
        assert len(db_helper.get_all_user_links()) == 1

    def test_unlink(self):
        db_helper.set_user_link(123, 2, "peppy")
        assert db_helper.remove_user_link(123) is True
        assert db_helper.remove_user_link(123) is False
        assert db_helper.get_user_link(123) is None


class TestOsuUsers:
    """Stored user snapshots."""

    def test_save_and_load(self):
        db_helper.save_osu_user(make_user())
        rows = db_helper.get_osu_users([2, 99])
        assert len(rows) == 1
        assert rows[0]["username"] == "peppy"
        assert rows[0]["medal_count"] == 2
        assert rows[0]["global_rank"] == 10

    def test_save_replaces(self):
        db_helper.save_osu_user(make_user(pp=1000.0))
        db_helper.save_osu_user(make_user(pp=2000.0))
        assert db_helper.get_osu_users([2])[0]["pp"] == 2000.0

    def test_no_ids(self):
        assert db_helper.get_osu_users([]) == []


class TestCache:
    """Response cache."""

    def test_bytes_roundtrip_and_age(self, monkeypatch):
        monkeypatch.setattr(db_helper.time, "time", lambda: 1000.0)
        db_helper.set_cached("icon", b"\x89PNG")
        monkeypatch.setattr(db_helper.time, "time", lambda: 1500.0)
        assert db_helper.get_cached("icon") == b"\x89PNG"
        assert db_helper.get_cached("icon", max_age=600) == b"\x89PNG"
        assert db_helper.get_cached("icon", max_age=100) is None

    def test_json(self):
        db_helper.set_cached_json("medals", [{"id": 1}])
        assert db_helper.get_cached_json("medals") == [{"id": 1}]
        assert db_helper.get_cached_json("missing") is None

    def test_corrupt_json_is_ignored(self):
        db_helper.set_cached("broken", b"{not json")
        assert db_helper.get_cached_json("broken") is None

    def test_clear_by_prefix(self):
        db_helper.set_cached("osekai:medals", b"1")
        db_helper.set_cached("osekai:rarity", b"2")
        db_helper.set_cached("medal-icon:x", b"3")
        assert db_helper.clear_cache("osekai:") == 2
        assert db_helper.get_cached("medal-icon:x") == b"3"
        assert db_helper.clear_cache() == 1


class TestCommandCounts:
    """Command usage counters."""

    def test_increment_and_order(self):
        for name in ["top", "top", "medals list", "top", "medals list", "ranking"]:
            db_helper.increment_command_count(name)
        assert db_helper.get_command_counts() == [("top", 3), ("medals list", 2), ("ranking", 1)]

    def test_database_stats(self):
        db_helper.set_user_link(1, 2, "peppy")
        stats = db_helper.get_database_stats()
        assert stats["links"] == 1
        assert stats["osu_users"] == 0
