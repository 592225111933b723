"""Tests for the single-writer record store."""

import asyncio

import pytest

from solidrules.errors import RecordNotFoundError, StoreWriteError
from solidrules.models import ProjectionConfig, UpdateRecord
from solidrules.store import RecordStore


@pytest.mark.asyncio
async def test_save_and_get_roundtrip(store, make_record):
    record = make_record("react-ts", technologies=["react", "typescript"], tags=["react"])
    await store.save(record)

    loaded = await store.get("react-ts")
    assert loaded == record
    assert await store.get("missing") is None


@pytest.mark.asyncio
async def test_save_overwrites_by_id(store, make_record):
    await store.save(make_record("a", description="old"))
    await store.save(make_record("a", description="new"))

    records = await store.get_all()
    assert len(records) == 1
    assert records[0].description == "new"


@pytest.mark.asyncio
async def test_concurrent_saves_are_not_lost(store, make_record):
    await asyncio.gather(*(store.save(make_record(f"rule-{i}")) for i in range(25)))

    ids = {record.id for record in await store.get_all()}
    assert ids == {f"rule-{i}" for i in range(25)}


@pytest.mark.asyncio
async def test_concurrent_modify_calls_serialize(store, make_record):
    await store.save(make_record("a"))

    def flip(record):
        record.is_favorite = not record.is_favorite

    await asyncio.gather(*(store.modify(["a"], flip) for _ in range(4)))
    assert (await store.get("a")).is_favorite is False


@pytest.mark.asyncio
async def test_save_batch_is_one_write(store, backend, make_record):
    await store.save(make_record("existing", description="before"))
    writes_before = backend.write_count(RecordStore.RULES_KEY)

    total = await store.save_batch(
        [make_record("existing", description="after"), make_record("b"), make_record("c")]
    )

    assert total == 3
    assert backend.write_count(RecordStore.RULES_KEY) == writes_before + 1
    assert (await store.get("existing")).description == "after"


@pytest.mark.asyncio
async def test_save_batch_empty_does_not_write(store, backend):
    assert await store.save_batch([]) == 0
    assert backend.write_count() == 0


@pytest.mark.asyncio
async def test_modify_unknown_id_writes_nothing(store, backend, make_record):
    await store.save(make_record("a"))
    writes_before = backend.write_count()

    def activate(record):
        record.is_active = True

    with pytest.raises(RecordNotFoundError):
        await store.modify(["a", "ghost"], activate)

    assert backend.write_count() == writes_before
    assert (await store.get("a")).is_active is False


@pytest.mark.asyncio
async def test_active_and_favorites_are_independent(store, make_record):
    await store.save_batch(
        [
            make_record("active", is_active=True),
            make_record("favorite", is_favorite=True),
            make_record("both", is_active=True, is_favorite=True),
        ]
    )

    assert {r.id for r in await store.get_active()} == {"active", "both"}
    assert {r.id for r in await store.get_favorites()} == {"favorite", "both"}


@pytest.mark.asyncio
async def test_delete_cascades(store, make_record):
    await store.save_batch([make_record("a", is_active=True), make_record("b", is_active=True)])
    await store.save_workspace_config(ProjectionConfig(workspace_id="/ws", active_rule_ids=["a", "b"]))
    await store.save_update_records(
        [UpdateRecord(rule_id="a", rule_name="A", has_update=True), UpdateRecord(rule_id="b", rule_name="B", has_update=False)]
    )

    removed = await store.delete("a")

    assert removed.id == "a"
    assert await store.get("a") is None
    assert [u.rule_id for u in await store.get_update_records()] == ["b"]
    assert (await store.get_workspace_config("/ws")).active_rule_ids == ["b"]


@pytest.mark.asyncio
async def test_delete_missing_returns_none(store, backend):
    assert await store.delete("nothing") is None
    assert backend.write_count() == 0


@pytest.mark.asyncio
async def test_failed_write_propagates(store, backend, make_record):
    backend.fail_writes = True

    with pytest.raises(StoreWriteError):
        await store.save(make_record("a"))

    status = store.get_status()
    assert status["errors"][0]["op"] == "save"

    # The writer survives a failed request
    backend.fail_writes = False
    await store.save(make_record("b"))
    assert await store.get("b") is not None


@pytest.mark.asyncio
async def test_search_matches_text_technology_and_category(store, make_record):
    await store.save_batch(
        [
            make_record("react-ts", name="React TS", technologies=["react"], category="Frontend"),
            make_record("django", name="Django", technologies=["django", "python"], category="Backend"),
            make_record("misc", name="Misc", content="mentions react hooks"),
        ]
    )

    assert {r.id for r in await store.search("react")} == {"react-ts", "misc"}
    assert [r.id for r in await store.search(technology="PYTHON")] == ["django"]
    assert [r.id for r in await store.search("react", category="Frontend")] == ["react-ts"]


@pytest.mark.asyncio
async def test_update_records_merge_by_rule_id(store):
    await store.save_update_records([UpdateRecord(rule_id="a", rule_name="A", has_update=False)])
    await store.save_update_records([UpdateRecord(rule_id="a", rule_name="A", has_update=True, latest_version_stamp="v2")])

    updates = await store.get_update_records()
    assert len(updates) == 1
    assert updates[0].has_update and updates[0].latest_version_stamp == "v2"

    await store.clear_update_record("a")
    assert await store.get_update_records() == []


@pytest.mark.asyncio
async def test_clear_all(store, make_record):
    await store.save(make_record("a"))
    await store.save_workspace_config(ProjectionConfig(workspace_id="/ws"))

    await store.clear_all()

    assert await store.get_all() == []
    assert await store.get_workspace_config("/ws") is None


@pytest.mark.asyncio
async def test_unreadable_records_are_skipped(backend, make_record):
    backend._data[RecordStore.RULES_KEY] = [{"id": "", "name": "broken"}, make_record("ok").model_dump(mode="json")]
    store = RecordStore(backend)

    assert [r.id for r in await store.get_all()] == ["ok"]
