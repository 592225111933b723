"""
Activation Controller
=====================

Toggling a rule is a fast path: the ``is_active`` flag is flipped in the store
and the caller gets control back right away. Projecting the new active set to
disk is the slow path, deferred behind a trailing debounce so a burst of
toggles costs one projection pass.
"""

from typing import Any, Awaitable, Callable, Iterable, List, Optional, Set

from loguru import logger

from solidrules.models import RuleRecord
from solidrules.notifier import ChangeNotifier
from solidrules.store.record_store import RecordStore
from solidrules.utils.debounce import TrailingDebounce

SyncAction = Callable[[], Awaitable[Any]]


class ActivationController:
    """Decouples active-flag changes from workspace projection."""

    def __init__(
        self,
        store: RecordStore,
        sync_action: SyncAction,
        notifier: Optional[ChangeNotifier] = None,
        sync_delay: float = 2.0,
    ):
        self.store = store
        self.notifier = notifier
        self._sync_action = sync_action
        self.pending_operations: Set[str] = set()
        self.last_error: Optional[str] = None
        self._debounce = TrailingDebounce(sync_delay, self._run_sync, name="workspace-sync")

    @property
    def sync_count(self) -> int:
        """Number of projection passes run so far."""
        return self._debounce.fire_count

    async def toggle(self, rule_id: str) -> RuleRecord:
        """Flip the active flag of one rule.

        Raises:
            RecordNotFoundError: If the id is unknown
        """

        def flip(record: RuleRecord) -> None:
            record.is_active = not record.is_active

        (record,) = await self.store.modify([rule_id], flip)
        self._schedule([rule_id])
        return record

    async def activate(self, rule_id: str) -> RuleRecord:
        return await self._set_active(rule_id, True)

    async def deactivate(self, rule_id: str) -> RuleRecord:
        return await self._set_active(rule_id, False)

    async def _set_active(self, rule_id: str, active: bool) -> RuleRecord:
        def apply(record: RuleRecord) -> None:
            record.is_active = active

        (record,) = await self.store.modify([rule_id], apply)
        self._schedule([rule_id])
        return record

    async def batch_toggle(self, rule_ids: Iterable[str]) -> List[RuleRecord]:
        """Flip many rules with one store write and one scheduled projection."""
        rule_ids = list(dict.fromkeys(rule_ids))
        if not rule_ids:
            return []

        def flip(record: RuleRecord) -> None:
            record.is_active = not record.is_active

        records = await self.store.modify(rule_ids, flip)
        self._schedule(rule_ids)
        return records

    def _schedule(self, rule_ids: Iterable[str]) -> None:
        self.pending_operations.update(rule_ids)
        if self.notifier is not None:
            self.notifier.notify()
        self._debounce.trigger()

    async def _run_sync(self) -> None:
        started_with = set(self.pending_operations)
        if not started_with:
            return
        try:
            await self._sync_action()
        except Exception as e:
            # Flags stay as the user set them; the ids are retried on the next pass
            self.last_error = str(e)
            logger.error(f"Workspace sync failed, {len(started_with)} change(s) still pending: {e}")
            return
        self.last_error = None
        self.pending_operations -= started_with
        logger.debug(f"Workspace sync applied {len(started_with)} pending change(s)")

    def discard_pending(self, rule_id: str) -> None:
        self.pending_operations.discard(rule_id)

    async def flush(self) -> None:
        """Run a scheduled projection pass now and wait for it to finish."""
        await self._debounce.flush()

    async def close(self) -> None:
        await self._debounce.close()
