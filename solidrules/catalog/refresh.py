"""
Catalog Refresh Pipeline
========================

Reconciles the local mirror in the RecordStore against the remote catalog:
diff by version stamp, pick a batch size that fits the request budget, fetch
each batch concurrently with per-item retries, and persist every batch with a
single batch-merge write.
"""

import asyncio
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional, Protocol

from loguru import logger
from pydantic import ValidationError

from solidrules.catalog import naming
from solidrules.catalog.client import CatalogClient
from solidrules.errors import (
    CatalogError,
    CatalogFetchError,
    CatalogUnavailable,
    RateLimitedError,
    RecordNotFoundError,
    RuleNotUpdatable,
)
from solidrules.models import CatalogEntry, RefreshResult, RuleRecord, UpdateRecord, utcnow
from solidrules.store.record_store import RecordStore

MAX_ATTEMPTS = 3
RATE_LIMIT_DELAY = 60.0
AUTHENTICATED_RATE_LIMIT_DELAY = 10.0


class ProgressSink(Protocol):
    def report(self, message: str, increment: Optional[float] = None) -> None: ...


class NullProgress:
    def report(self, message: str, increment: Optional[float] = None) -> None:
        logger.debug(message)


class ChangeSignal(Protocol):
    def notify(self) -> None: ...


@dataclass
class FetchOutcome:
    """Result of fetching one catalog entry, including how hard it was."""

    entry: CatalogEntry
    record: Optional[RuleRecord] = None
    attempts: int = 0
    error: Optional[str] = None
    rate_limited: bool = False

    @property
    def succeeded(self) -> bool:
        return self.record is not None


@dataclass
class RefreshStats:
    processed: int = 0
    retried: int = 0
    failed: int = 0
    rate_limited: int = 0
    batches: int = 0
    failures: Dict[str, str] = field(default_factory=dict)
    finished_at: Optional[datetime] = None


def choose_batch_size(total: int, authenticated: bool) -> int:
    """Batch size for ``total`` items under the request budget of the credentials in use.

    Authenticated access does small sets in one go, medium sets in halves capped
    at 75 and anything larger in batches of 100. Anonymous access never exceeds
    3 concurrent fetches and shrinks further for small sets.
    """
    if total <= 0:
        return 1
    if authenticated:
        if total <= 20:
            return total
        if total <= 100:
            return min(75, math.ceil(total / 2))
        return 100
    return max(1, min(3, math.ceil(total / 15)))


class CatalogRefreshPipeline:
    """Keeps the mirrored catalog in the RecordStore up to date."""

    def __init__(
        self,
        store: RecordStore,
        client: CatalogClient,
        notifier: Optional[ChangeSignal] = None,
        progress: Optional[ProgressSink] = None,
        full_refresh_ratio: float = 0.5,
        backoff_base: float = 2.0,
        rate_limit_delay: float = RATE_LIMIT_DELAY,
        authenticated_rate_limit_delay: float = AUTHENTICATED_RATE_LIMIT_DELAY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.store = store
        self.client = client
        self.notifier = notifier
        self.progress = progress or NullProgress()
        self.full_refresh_ratio = full_refresh_ratio
        self.backoff_base = backoff_base
        self.rate_limit_delay = rate_limit_delay
        self.authenticated_rate_limit_delay = authenticated_rate_limit_delay
        self._sleep = sleep
        self.stats = RefreshStats()

    def needs_full_refresh(self, local_count: int, remote_count: int) -> bool:
        """True for an empty mirror or one holding less than the configured share of the catalog."""
        if local_count == 0:
            return True
        return local_count < remote_count * self.full_refresh_ratio

    async def refresh(self) -> RefreshResult:
        """Bring the mirror in line with the remote catalog.

        Returns:
            RefreshResult: Counts of processed and failed items

        Raises:
            CatalogUnavailable: If the catalog listing cannot be fetched
        """
        self.progress.report("Fetching rules list...")
        listing = await self.client.list_catalog()
        self.progress.report(f"Found {len(listing)} rules. Processing...")

        existing = {
            record.source_path: record
            for record in await self.store.get_all()
            if not record.is_custom and record.source_path
        }
        full_refresh = self.needs_full_refresh(len(existing), len(listing))
        if full_refresh:
            logger.info(f"Full refresh: {len(existing)} local rules for {len(listing)} remote")
            to_update = list(listing)
        else:
            to_update = [
                entry
                for entry in listing
                if entry.path not in existing or existing[entry.path].version_stamp != entry.version_stamp
            ]

        self.stats = RefreshStats()
        if not to_update:
            logger.info("All rules are up to date")
            self.stats.finished_at = utcnow()
            return RefreshResult(listed_count=len(listing), full_refresh=full_refresh)

        batch_size = choose_batch_size(len(to_update), self.client.authenticated)
        logger.info(f"Fetching {len(to_update)} rules in batches of {batch_size}")

        done = 0
        for start in range(0, len(to_update), batch_size):
            batch = to_update[start : start + batch_size]
            outcomes = await asyncio.gather(
                *(self._fetch_with_retry(entry, existing.get(entry.path)) for entry in batch)
            )
            records = [outcome.record for outcome in outcomes if outcome.succeeded]
            if records:
                await self.store.save_batch(records)

            self.stats.batches += 1
            for outcome in outcomes:
                self.stats.retried += max(0, outcome.attempts - 1)
                if outcome.rate_limited:
                    self.stats.rate_limited += 1
                if outcome.succeeded:
                    self.stats.processed += 1
                else:
                    self.stats.failed += 1
                    self.stats.failures[outcome.entry.path] = outcome.error or "unknown error"

            done += len(batch)
            self.progress.report(
                f"Processing {done}/{len(to_update)}...", increment=100 * len(batch) / len(to_update)
            )

        self.progress.report("Finalizing...")
        self.stats.finished_at = utcnow()
        logger.info(
            f"Refresh finished: {self.stats.processed} processed, {self.stats.failed} failed, "
            f"{self.stats.retried} retries in {self.stats.batches} batches"
        )
        if self.stats.processed and self.notifier is not None:
            self.notifier.notify()

        return RefreshResult(
            processed_count=self.stats.processed,
            error_count=self.stats.failed,
            retried_count=self.stats.retried,
            listed_count=len(listing),
            rate_limited_count=self.stats.rate_limited,
            full_refresh=full_refresh,
        )

    def _rate_limit_wait(self) -> float:
        if self.client.authenticated:
            return self.authenticated_rate_limit_delay
        return self.rate_limit_delay

    async def _fetch_with_retry(self, entry: CatalogEntry, existing: Optional[RuleRecord]) -> FetchOutcome:
        outcome = FetchOutcome(entry=entry)
        for attempt in range(1, MAX_ATTEMPTS + 1):
            outcome.attempts = attempt
            try:
                outcome.record = await self.build_record(entry, existing)
                outcome.error = None
                return outcome
            except RateLimitedError as e:
                outcome.rate_limited = True
                outcome.error = str(e)
                delay = self._rate_limit_wait()
            except (CatalogError, ValidationError) as e:
                outcome.error = str(e)
                delay = self.backoff_base**attempt
            except Exception as e:
                # Not a transport failure, so retrying would repeat it
                logger.exception(f"Unexpected error while fetching {entry.path}")
                outcome.error = f"{type(e).__name__}: {e}"
                return outcome

            if attempt < MAX_ATTEMPTS:
                logger.warning(
                    f"Fetching {entry.path} failed (attempt {attempt}/{MAX_ATTEMPTS}): "
                    f"{outcome.error}; retrying in {delay:.0f}s"
                )
                await self._sleep(delay)

        logger.error(f"Giving up on {entry.path} after {MAX_ATTEMPTS} attempts: {outcome.error}")
        return outcome

    async def build_record(self, entry: CatalogEntry, existing: Optional[RuleRecord] = None) -> RuleRecord:
        """Fetch one entry and turn it into a record, keeping the user's flags from ``existing``."""
        content = (await self.client.fetch_content(entry.path)).decode("utf-8", errors="replace")
        metadata = await self.client.fetch_metadata(entry.path)
        now = utcnow()
        return RuleRecord(
            id=existing.id if existing else naming.generate_rule_id(entry.path),
            name=naming.format_rule_name(entry.name) or entry.name,
            description=metadata.description,
            content=content,
            technologies=metadata.technologies,
            tags=naming.tags_for(entry.path),
            category=naming.category_for(metadata.technologies),
            is_active=existing.is_active if existing else False,
            is_favorite=existing.is_favorite if existing else False,
            is_custom=False,
            source_path=entry.path,
            version_stamp=entry.version_stamp,
            created_at=existing.created_at if existing else now,
            last_updated=now,
        )

    async def check_for_updates(self) -> List[UpdateRecord]:
        """Compare mirrored version stamps with the catalog and persist the results.

        Returns:
            List[UpdateRecord]: Records that have a newer remote version
        """
        try:
            listing = await self.client.list_catalog()
        except CatalogUnavailable as e:
            logger.error(f"Error checking for updates: {e}")
            return []

        latest = {entry.path: entry.version_stamp for entry in listing}
        checked = []
        now = utcnow()
        for rule in await self.store.get_all():
            if rule.is_custom or not rule.source_path:
                continue
            latest_stamp = latest.get(rule.source_path)
            checked.append(
                UpdateRecord(
                    rule_id=rule.id,
                    rule_name=rule.name,
                    has_update=latest_stamp is not None and latest_stamp != rule.version_stamp,
                    current_version_stamp=rule.version_stamp,
                    latest_version_stamp=latest_stamp,
                    last_checked=now,
                )
            )
        await self.store.save_update_records(checked)
        return [update for update in checked if update.has_update]

    async def update_rule(self, rule_id: str) -> RuleRecord:
        """Refetch a single remote rule, keeping its flags.

        Raises:
            RecordNotFoundError: If the id is unknown
            RuleNotUpdatable: For custom rules or rules without a source path
            CatalogFetchError: If the fetch fails after all retries
        """
        rule = await self.store.get(rule_id)
        if rule is None:
            raise RecordNotFoundError(rule_id)
        if rule.is_custom or not rule.source_path:
            raise RuleNotUpdatable(rule_id)

        stamp = rule.version_stamp or ""
        for update in await self.store.get_update_records():
            if update.rule_id == rule_id and update.latest_version_stamp:
                stamp = update.latest_version_stamp

        entry = CatalogEntry(
            path=rule.source_path, name=rule.source_path.rstrip("/").split("/")[-1], version_stamp=stamp
        )
        outcome = await self._fetch_with_retry(entry, rule)
        if not outcome.succeeded:
            raise CatalogFetchError(rule.source_path, outcome.error or "Failed to update rule")

        await self.store.save(outcome.record)
        await self.store.clear_update_record(rule_id)
        if self.notifier is not None:
            self.notifier.notify()
        return outcome.record
