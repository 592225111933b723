"""
Test Configuration and Fixtures
===============================

Shared fixtures for the SolidRules test suite: an in-memory store, a scripted
catalog client that never touches the network and a sleep that records delays
instead of waiting.
"""

from collections import Counter
from pathlib import Path
from typing import Dict, List, Optional

import pytest
import pytest_asyncio

from solidrules.catalog import naming
from solidrules.catalog.client import CatalogClient
from solidrules.models import CatalogEntry, RuleMetadata, RuleRecord
from solidrules.store import MemoryBackend, RecordStore
from solidrules.utils.paths import WorkspacePaths


class FakeCatalogClient(CatalogClient):
    """Scripted catalog: entries and bodies live in dicts, failures are queued per path."""

    def __init__(self, authenticated: bool = False):
        self._authenticated = authenticated
        self.entries: Dict[str, CatalogEntry] = {}
        self.contents: Dict[str, str] = {}
        self.failures: Dict[str, List[Exception]] = {}
        self.listing_error: Optional[Exception] = None
        self.list_calls = 0
        self.content_calls: Counter = Counter()

    @property
    def authenticated(self) -> bool:
        return self._authenticated

    def add(self, name: str, content: str = "", stamp: str = "v1") -> CatalogEntry:
        path = f"rules/{name}"
        entry = CatalogEntry(path=path, name=name, version_stamp=stamp, size_bytes=len(content))
        self.entries[path] = entry
        self.contents[path] = content or f"Rules for {name}"
        return entry

    def fail(self, path: str, *errors: Exception) -> None:
        self.failures.setdefault(path, []).extend(errors)

    @property
    def total_content_calls(self) -> int:
        return sum(self.content_calls.values())

    async def list_catalog(self) -> List[CatalogEntry]:
        self.list_calls += 1
        if self.listing_error is not None:
            raise self.listing_error
        return list(self.entries.values())

    async def fetch_content(self, path: str) -> bytes:
        self.content_calls[path] += 1
        pending = self.failures.get(path)
        if pending:
            raise pending.pop(0)
        return self.contents[path].encode("utf-8")

    async def fetch_metadata(self, path: str) -> RuleMetadata:
        return RuleMetadata(
            description=naming.fallback_description(path), technologies=naming.parse_technologies(path)
        )


class RecordingSleep:
    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def backend() -> MemoryBackend:
    return MemoryBackend()


@pytest_asyncio.fixture
async def store(backend):
    record_store = RecordStore(backend)
    await record_store.start()
    yield record_store
    await record_store.stop()


@pytest.fixture
def client() -> FakeCatalogClient:
    return FakeCatalogClient()


@pytest.fixture
def authenticated_client() -> FakeCatalogClient:
    return FakeCatalogClient(authenticated=True)


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def workspace(tmp_path: Path) -> WorkspacePaths:
    root = tmp_path / "workspace"
    root.mkdir()
    return WorkspacePaths(root_dir=root)


@pytest.fixture
def make_record():
    """Factory for rule records with sensible defaults."""

    def factory(rule_id: str, **fields) -> RuleRecord:
        fields.setdefault("name", rule_id.replace("-", " ").title())
        fields.setdefault("content", f"Content of {rule_id}")
        if not fields.get("is_custom"):
            fields.setdefault("source_path", f"rules/{rule_id}")
            fields.setdefault("version_stamp", "v1")
        return RuleRecord(id=rule_id, **fields)

    return factory
