"""Tests for the catalog refresh pipeline."""

import pytest

from solidrules.catalog.refresh import CatalogRefreshPipeline, choose_batch_size
from solidrules.errors import (
    CatalogFetchError,
    CatalogUnavailable,
    RateLimitedError,
    RecordNotFoundError,
    RuleNotUpdatable,
)
from solidrules.models import RuleRecord
from solidrules.store import RecordStore


class ListProgress:
    def __init__(self):
        self.messages = []

    def report(self, message, increment=None):
        self.messages.append(message)


class CountingNotifier:
    def __init__(self):
        self.calls = 0

    def notify(self):
        self.calls += 1


def mirrored(entry, **fields) -> RuleRecord:
    return RuleRecord(
        id=entry.path.replace("/", "-"),
        name=entry.name,
        content="old",
        source_path=entry.path,
        version_stamp=entry.version_stamp,
        **fields,
    )


@pytest.fixture
def notifier():
    return CountingNotifier()


@pytest.fixture
def pipeline(store, client, sleep, notifier):
    return CatalogRefreshPipeline(store, client, notifier=notifier, sleep=sleep)


@pytest.mark.parametrize(
    "total, authenticated, expected",
    [
        (1, False, 1),
        (15, False, 1),
        (16, False, 2),
        (45, False, 3),
        (500, False, 3),
        (20, True, 20),
        (21, True, 11),
        (50, True, 25),
        (100, True, 50),
        (101, True, 100),
    ],
)
def test_choose_batch_size(total, authenticated, expected):
    assert choose_batch_size(total, authenticated) == expected


def test_needs_full_refresh(pipeline):
    assert pipeline.needs_full_refresh(0, 10)
    assert pipeline.needs_full_refresh(4, 10)
    assert not pipeline.needs_full_refresh(5, 10)


@pytest.mark.asyncio
async def test_only_changed_entries_are_fetched(store, client, pipeline):
    a = client.add("alpha-react", stamp="s1")
    client.add("beta-python", stamp="s2")
    await store.save(mirrored(a))

    result = await pipeline.refresh()

    assert result.processed_count == 1
    assert not result.full_refresh
    assert dict(client.content_calls) == {"rules/beta-python": 1}
    assert (await store.get("rules-alpha-react")).content == "old"
    beta = await store.get("rules-beta-python")
    assert beta.version_stamp == "s2"
    assert beta.technologies == ["python"]


@pytest.mark.asyncio
async def test_second_refresh_does_nothing(store, backend, client, pipeline, notifier):
    for i in range(5):
        client.add(f"rule-{i}-react")
    await pipeline.refresh()
    writes = backend.write_count()
    fetches = client.total_content_calls
    notifications = notifier.calls

    result = await pipeline.refresh()

    assert result.processed_count == 0
    assert backend.write_count() == writes
    assert client.total_content_calls == fetches
    assert notifier.calls == notifications


@pytest.mark.asyncio
async def test_fifty_items_are_persisted_in_two_batch_writes(store, backend, sleep, authenticated_client):
    client = authenticated_client
    for i in range(50):
        client.add(f"rule-{i:02d}")
    pipeline = CatalogRefreshPipeline(store, client, sleep=sleep)

    result = await pipeline.refresh()

    assert result.processed_count == 50
    assert result.full_refresh
    assert pipeline.stats.batches == 2
    assert backend.write_count(RecordStore.RULES_KEY) == 2
    assert len(await store.get_all()) == 50


@pytest.mark.asyncio
async def test_transient_failures_are_retried_with_backoff(store, client, pipeline, sleep):
    entry = client.add("flaky-go")
    client.fail(entry.path, CatalogFetchError(entry.path, "HTTP 502"), CatalogFetchError(entry.path, "HTTP 502"))

    result = await pipeline.refresh()

    assert result.processed_count == 1
    assert result.retried_count == 2
    assert sleep.delays == [2.0, 4.0]
    assert client.content_calls[entry.path] == 3


@pytest.mark.asyncio
async def test_exhausted_retries_do_not_abort_the_batch(store, client, pipeline, sleep):
    bad = client.add("broken-rule")
    client.add("good-rule")
    client.fail(bad.path, *[CatalogFetchError(bad.path, "HTTP 500") for _ in range(3)])

    result = await pipeline.refresh()

    assert result.processed_count == 1
    assert result.error_count == 1
    assert bad.path in pipeline.stats.failures
    assert await store.get("rules-good-rule") is not None
    assert await store.get("rules-broken-rule") is None
    # No wait after the final attempt
    assert sleep.delays == [2.0, 4.0]


@pytest.mark.asyncio
async def test_unexpected_item_error_is_counted_not_raised(store, client, pipeline, sleep):
    odd = client.add("odd-rule")
    client.add("good-rule")
    client.fail(odd.path, RuntimeError("decoder exploded"))

    result = await pipeline.refresh()

    assert result.processed_count == 1
    assert result.error_count == 1
    assert "decoder exploded" in pipeline.stats.failures[odd.path]
    assert client.content_calls[odd.path] == 1
    assert await store.get("rules-good-rule") is not None


@pytest.mark.asyncio
async def test_rate_limit_waits_fixed_delay(store, client, pipeline, sleep):
    entry = client.add("limited-rule")
    client.fail(entry.path, RateLimitedError())

    result = await pipeline.refresh()

    assert result.processed_count == 1
    assert result.rate_limited_count == 1
    assert sleep.delays == [60]


@pytest.mark.asyncio
async def test_listing_failure_is_fatal(client, pipeline, store, backend):
    client.listing_error = CatalogUnavailable("rate limited", rate_limited=True)

    with pytest.raises(CatalogUnavailable) as excinfo:
        await pipeline.refresh()

    assert excinfo.value.rate_limited
    assert backend.write_count() == 0


@pytest.mark.asyncio
async def test_refresh_preserves_user_flags(store, client, pipeline):
    entry = client.add("kept-rule", stamp="v1")
    existing = mirrored(entry, is_active=True, is_favorite=True)
    await store.save(existing)
    client.add("kept-rule", content="fresh", stamp="v2")

    await pipeline.refresh()

    updated = await store.get(existing.id)
    assert updated.content == "fresh"
    assert updated.version_stamp == "v2"
    assert updated.is_active and updated.is_favorite
    assert updated.created_at == existing.created_at


@pytest.mark.asyncio
async def test_custom_records_are_never_touched(store, client, pipeline):
    custom = RuleRecord(id="custom-1", name="Mine", content="local", is_custom=True)
    await store.save(custom)
    client.add("remote-rule")

    await pipeline.refresh()

    assert await store.get("custom-1") == custom


@pytest.mark.asyncio
async def test_progress_messages(store, client, sleep):
    client.add("one-rule")
    progress = ListProgress()
    pipeline = CatalogRefreshPipeline(store, client, progress=progress, sleep=sleep)

    await pipeline.refresh()

    assert progress.messages[:2] == ["Fetching rules list...", "Found 1 rules. Processing..."]
    assert "Processing 1/1..." in progress.messages


@pytest.mark.asyncio
async def test_refresh_notifies_once(client, pipeline, notifier):
    for i in range(4):
        client.add(f"rule-{i}")

    await pipeline.refresh()

    assert notifier.calls == 1


@pytest.mark.asyncio
async def test_check_for_updates(store, client, pipeline):
    a = client.add("a-rule", stamp="v1")
    b = client.add("b-rule", stamp="v1")
    await store.save_batch([mirrored(a), mirrored(b)])
    client.add("b-rule", stamp="v2")

    found = await pipeline.check_for_updates()

    assert [u.rule_id for u in found] == ["rules-b-rule"]
    assert found[0].latest_version_stamp == "v2"
    stored = {u.rule_id: u.has_update for u in await store.get_update_records()}
    assert stored == {"rules-a-rule": False, "rules-b-rule": True}


@pytest.mark.asyncio
async def test_check_for_updates_survives_listing_failure(client, pipeline):
    client.listing_error = CatalogUnavailable("down")
    assert await pipeline.check_for_updates() == []


@pytest.mark.asyncio
async def test_update_rule(store, client, pipeline, notifier):
    entry = client.add("b-rule", stamp="v1")
    await store.save(mirrored(entry, is_active=True))
    client.add("b-rule", content="newer", stamp="v2")
    await pipeline.check_for_updates()

    record = await pipeline.update_rule("rules-b-rule")

    assert record.content == "newer"
    assert record.version_stamp == "v2"
    assert record.is_active
    assert await store.get_update_records() == []
    assert notifier.calls == 1


@pytest.mark.asyncio
async def test_update_rule_rejects_custom_and_unknown(store, pipeline):
    await store.save(RuleRecord(id="custom-1", name="Mine", is_custom=True))

    with pytest.raises(RuleNotUpdatable):
        await pipeline.update_rule("custom-1")
    with pytest.raises(RecordNotFoundError):
        await pipeline.update_rule("nope")
