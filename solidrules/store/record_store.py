"""
Record Store
============

Durable keyed storage for rule records, workspace projection configs and
update-check results.

All mutations are requests funneled through a single-consumer queue: one worker
task applies them one after another, so two concurrent read-modify-write calls
can never interleave and lose an update. Reads go straight to the backend.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from loguru import logger
from pydantic import ValidationError

from solidrules.errors import RecordNotFoundError
from solidrules.models import ProjectionConfig, RuleRecord, UpdateRecord
from solidrules.store.backend import KeyValueBackend

WriteOp = Callable[[], Awaitable[Any]]


class RecordStore:
    """Single-writer store for everything SolidRules persists."""

    RULES_KEY = "solidrules.rules"
    WORKSPACES_KEY = "solidrules.workspaces"
    UPDATES_KEY = "solidrules.updates"

    def __init__(self, backend: KeyValueBackend):
        self.backend = backend
        self._write_queue: Optional[asyncio.Queue] = None
        self._task: Optional[asyncio.Task] = None
        self._running = False
        self._errors: List[Dict[str, Any]] = []
        self._last_write: Dict[str, Any] = {}

    async def start(self) -> None:
        """Start the writer task."""
        if not self._running:
            self._running = True
            self._write_queue = asyncio.Queue()
            self._task = asyncio.create_task(self._process_writes())

    async def stop(self) -> None:
        """Let queued writes finish, then stop the writer task."""
        if self._running:
            await self._write_queue.join()
            self._running = False
            if self._task:
                self._task.cancel()
                try:
                    await self._task
                except asyncio.CancelledError:
                    pass
                self._task = None

    async def _submit(self, name: str, op: WriteOp) -> Any:
        if not self._running:
            await self.start()
        future = asyncio.get_running_loop().create_future()
        await self._write_queue.put((name, op, future))
        return await future

    async def _process_writes(self) -> None:
        """Apply queued write requests one at a time."""
        while True:
            name, op, future = await self._write_queue.get()
            try:
                result = await op()
                self._last_write = {"op": name, "timestamp": time.time()}
                if not future.done():
                    future.set_result(result)
            except Exception as e:
                logger.error(f"Store write '{name}' failed: {e}")
                self._errors.append({"op": name, "error": str(e), "timestamp": time.time()})
                if not future.done():
                    future.set_exception(e)
            finally:
                self._write_queue.task_done()

    def get_status(self) -> Dict[str, Any]:
        return {
            "is_running": self._running,
            "queued_writes": self._write_queue.qsize() if self._write_queue else 0,
            "errors": self._errors.copy(),
            "last_write": self._last_write.copy(),
        }

    # Reads

    async def _read_raw_rules(self) -> List[Dict[str, Any]]:
        return await self.backend.get(self.RULES_KEY) or []

    async def get_all(self) -> List[RuleRecord]:
        records = []
        for data in await self._read_raw_rules():
            try:
                records.append(RuleRecord.model_validate(data))
            except ValidationError as e:
                logger.warning(f"Skipping unreadable rule record {data.get('id', '?')}: {e}")
        return records

    async def get(self, rule_id: str) -> Optional[RuleRecord]:
        for record in await self.get_all():
            if record.id == rule_id:
                return record
        return None

    async def get_active(self) -> List[RuleRecord]:
        return [record for record in await self.get_all() if record.is_active]

    async def get_favorites(self) -> List[RuleRecord]:
        return [record for record in await self.get_all() if record.is_favorite]

    async def search(
        self, query: str = "", technology: Optional[str] = None, category: Optional[str] = None
    ) -> List[RuleRecord]:
        """Case-insensitive text search over name, description, content, technologies and tags."""
        records = await self.get_all()
        term = query.strip().lower()
        if term:
            records = [
                r
                for r in records
                if term in r.name.lower()
                or term in r.description.lower()
                or term in r.content.lower()
                or any(term in tech.lower() for tech in r.technologies)
                or any(term in tag.lower() for tag in r.tags)
            ]
        if technology:
            wanted = technology.lower()
            records = [r for r in records if any(wanted in tech.lower() for tech in r.technologies)]
        if category:
            records = [r for r in records if r.category == category]
        return records

    # Rule writes

    async def save(self, record: RuleRecord) -> None:
        """Upsert one record by id."""

        async def op():
            rules = await self._read_raw_rules()
            data = record.model_dump(mode="json")
            for index, existing in enumerate(rules):
                if existing.get("id") == record.id:
                    rules[index] = data
                    break
            else:
                rules.append(data)
            await self.backend.set(self.RULES_KEY, rules)
            logger.debug(f"Saved rule {record.name}, total rules in store: {len(rules)}")

        await self._submit("save", op)

    async def save_batch(self, records: Iterable[RuleRecord]) -> int:
        """Upsert many records with one merge and one durable write.

        Returns:
            int: Total number of records in the store afterwards
        """
        records = list(records)
        if not records:
            return len(await self._read_raw_rules())

        async def op():
            merged = {data.get("id"): data for data in await self._read_raw_rules()}
            for record in records:
                merged[record.id] = record.model_dump(mode="json")
            await self.backend.set(self.RULES_KEY, list(merged.values()))
            logger.info(f"Batch saved {len(records)} rules, total in store: {len(merged)}")
            return len(merged)

        return await self._submit("save_batch", op)

    async def modify(self, rule_ids: Iterable[str], mutate: Callable[[RuleRecord], None]) -> List[RuleRecord]:
        """Atomically apply ``mutate`` to each listed record and persist them in one write.

        Raises:
            RecordNotFoundError: If any id is unknown; nothing is written in that case
        """
        rule_ids = list(dict.fromkeys(rule_ids))

        async def op():
            rules = await self._read_raw_rules()
            positions = {data.get("id"): index for index, data in enumerate(rules)}
            for rule_id in rule_ids:
                if rule_id not in positions:
                    raise RecordNotFoundError(rule_id)
            updated = []
            for rule_id in rule_ids:
                record = RuleRecord.model_validate(rules[positions[rule_id]])
                mutate(record)
                rules[positions[rule_id]] = record.model_dump(mode="json")
                updated.append(record)
            if updated:
                await self.backend.set(self.RULES_KEY, rules)
            return updated

        return await self._submit("modify", op)

    async def delete(self, rule_id: str) -> Optional[RuleRecord]:
        """Remove a record and every reference to it.

        Returns:
            The removed record, or None if no record had that id
        """

        async def op():
            rules = await self._read_raw_rules()
            removed = None
            remaining = []
            for data in rules:
                if data.get("id") == rule_id and removed is None:
                    removed = RuleRecord.model_validate(data)
                else:
                    remaining.append(data)
            if removed is None:
                return None
            await self.backend.set(self.RULES_KEY, remaining)

            updates = await self.backend.get(self.UPDATES_KEY) or []
            filtered_updates = [u for u in updates if u.get("rule_id") != rule_id]
            if len(filtered_updates) != len(updates):
                await self.backend.set(self.UPDATES_KEY, filtered_updates)

            workspaces = await self.backend.get(self.WORKSPACES_KEY) or []
            touched = False
            for workspace in workspaces:
                active = workspace.get("active_rule_ids", [])
                if rule_id in active:
                    workspace["active_rule_ids"] = [i for i in active if i != rule_id]
                    touched = True
            if touched:
                await self.backend.set(self.WORKSPACES_KEY, workspaces)
            return removed

        return await self._submit("delete", op)

    async def clear_all(self) -> None:
        async def op():
            for key in [self.RULES_KEY, self.WORKSPACES_KEY, self.UPDATES_KEY]:
                await self.backend.set(key, [])
            logger.info("All data cleared successfully")

        await self._submit("clear_all", op)

    # Workspace configs

    async def save_workspace_config(self, config: ProjectionConfig) -> None:
        async def op():
            workspaces = await self.backend.get(self.WORKSPACES_KEY) or []
            data = config.model_dump(mode="json")
            for index, existing in enumerate(workspaces):
                if existing.get("workspace_id") == config.workspace_id:
                    workspaces[index] = data
                    break
            else:
                workspaces.append(data)
            await self.backend.set(self.WORKSPACES_KEY, workspaces)

        await self._submit("save_workspace_config", op)

    async def get_workspace_config(self, workspace_id: str) -> Optional[ProjectionConfig]:
        for data in await self.backend.get(self.WORKSPACES_KEY) or []:
            if data.get("workspace_id") == workspace_id:
                return ProjectionConfig.model_validate(data)
        return None

    # Update records

    async def save_update_records(self, records: Iterable[UpdateRecord]) -> None:
        """Upsert update-check results by rule id in one write."""
        records = list(records)
        if not records:
            return

        async def op():
            merged = {u.get("rule_id"): u for u in await self.backend.get(self.UPDATES_KEY) or []}
            for record in records:
                merged[record.rule_id] = record.model_dump(mode="json")
            await self.backend.set(self.UPDATES_KEY, list(merged.values()))

        await self._submit("save_update_records", op)

    async def clear_update_record(self, rule_id: str) -> None:
        async def op():
            updates = await self.backend.get(self.UPDATES_KEY) or []
            filtered = [u for u in updates if u.get("rule_id") != rule_id]
            if len(filtered) != len(updates):
                await self.backend.set(self.UPDATES_KEY, filtered)

        await self._submit("clear_update_record", op)

    async def get_update_records(self) -> List[UpdateRecord]:
        return [UpdateRecord.model_validate(u) for u in await self.backend.get(self.UPDATES_KEY) or []]
