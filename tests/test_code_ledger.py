import asyncio
import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from Sora_Content_Scraper.src.code_ledger import (
    JsonCodeStore,
    SqliteCodeStore,
    SuccessLedger,
    open_code_store,
    today_tag_utc,
)


def test_json_store_missing_file_is_empty(tmp_path):
    store = JsonCodeStore(tmp_path / "tried_codes.json")
    assert store.load() == set()


def test_json_store_malformed_file_is_empty(tmp_path):
    path = tmp_path / "tried_codes.json"
    path.write_text("{not json", encoding="utf-8")
    assert JsonCodeStore(path).load() == set()

    path.write_text('{"codes": ["AAAAAA"]}', encoding="utf-8")
    assert JsonCodeStore(path).load() == set()


def test_json_store_save_writes_sorted_list(tmp_path):
    path = tmp_path / "state" / "tried_codes.json"
    store = JsonCodeStore(path)
    store.save({"ZZZZZZ", "AAAAAA", "M00000"})

    assert json.loads(path.read_text(encoding="utf-8")) == ["AAAAAA", "M00000", "ZZZZZZ"]
    assert store.load() == {"AAAAAA", "M00000", "ZZZZZZ"}
    assert not (tmp_path / "state" / "tried_codes.json.tmp").exists()


def test_json_store_write_failure_propagates(tmp_path):
    target = tmp_path / "tried_codes.json"
    target.mkdir()
    with pytest.raises(OSError):
        JsonCodeStore(target).save({"AAAAAA"})


def test_sqlite_store_round_trip(tmp_path):
    with SqliteCodeStore(tmp_path / "tried_codes.db") as store:
        assert store.load() == set()
        store.save({"AAAAAA", "BBBBBB"})
        store.save({"AAAAAA", "BBBBBB", "CCCCCC"})
        assert store.load() == {"AAAAAA", "BBBBBB", "CCCCCC"}
        assert store.get_stats()["tried"] == 3

    reopened = SqliteCodeStore(tmp_path / "tried_codes.db")
    assert reopened.load() == {"AAAAAA", "BBBBBB", "CCCCCC"}
    reopened.close()


def test_open_code_store_picks_backend(tmp_path):
    assert isinstance(open_code_store("json", tmp_path), JsonCodeStore)
    store = open_code_store("sqlite", tmp_path)
    assert isinstance(store, SqliteCodeStore)
    store.close()
    with pytest.raises(ValueError):
        open_code_store("redis", tmp_path)


def test_today_tag_uses_utc():
    late_evening_new_york = datetime(2026, 10, 19, 23, 30, tzinfo=timezone(timedelta(hours=-5)))
    assert today_tag_utc(late_evening_new_york) == "20261020"


def test_success_file_is_day_scoped(tmp_path):
    ledger = SuccessLedger(tmp_path, today="20261019")
    assert ledger.path == tmp_path / "success_codes_20261019.json"

    asyncio.run(ledger.ensure_exists())
    assert json.loads(ledger.path.read_text(encoding="utf-8")) == []


def test_legacy_success_file_is_merged_then_removed(tmp_path):
    (tmp_path / "success_codes.json").write_text(json.dumps(["OLD111", "SHARED"]), encoding="utf-8")
    (tmp_path / "success_codes_20261019.json").write_text(json.dumps(["SHARED", "NEW222"]), encoding="utf-8")

    ledger = SuccessLedger(tmp_path, today="20261019")
    codes = asyncio.run(ledger.load())

    assert codes == ["SHARED", "NEW222", "OLD111"]
    assert not (tmp_path / "success_codes.json").exists()


def test_legacy_file_that_cannot_be_removed_is_not_fatal(tmp_path, monkeypatch):
    legacy = tmp_path / "success_codes.json"
    legacy.write_text(json.dumps(["OLD111"]), encoding="utf-8")
    original_unlink = Path.unlink

    def refuse_legacy(self, *args, **kwargs):
        if self.name == "success_codes.json":
            raise PermissionError("read-only directory")
        return original_unlink(self, *args, **kwargs)

    monkeypatch.setattr(Path, "unlink", refuse_legacy)
    ledger = SuccessLedger(tmp_path, today="20261019")

    async def scenario():
        loaded = await ledger.load()
        await ledger.append("NEW222")
        return loaded, await ledger.load()

    loaded, after_append = asyncio.run(scenario())

    assert loaded == ["OLD111"]
    assert after_append == ["OLD111", "NEW222"]
    assert json.loads(ledger.path.read_text(encoding="utf-8")) == ["OLD111", "NEW222"]
    assert legacy.exists()


def test_append_deduplicates(tmp_path):
    ledger = SuccessLedger(tmp_path, today="20261019")

    async def scenario():
        first = await ledger.append("BBBBBB")
        second = await ledger.append("BBBBBB")
        return first, second, await ledger.load()

    first, second, codes = asyncio.run(scenario())
    assert first is True
    assert second is False
    assert codes == ["BBBBBB"]


def test_concurrent_appends_lose_nothing(tmp_path):
    ledger = SuccessLedger(tmp_path, today="20261019")
    codes = [f"C{i:05d}" for i in range(25)]

    async def scenario():
        await asyncio.gather(*(ledger.append(code) for code in codes + codes[:5]))
        return await ledger.load()

    stored = asyncio.run(scenario())
    assert sorted(stored) == sorted(codes)
    assert len(stored) == len(set(stored))
