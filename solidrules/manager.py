"""
Rules Manager
=============

Facade that wires the store, the catalog pipeline, the activation controller,
the workspace projector and the change notifier together once, and exposes the
operations front ends call.
"""

import asyncio
import random
import string
import time
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from loguru import logger

from solidrules.catalog.client import CatalogClient, GitHubCatalogClient
from solidrules.catalog.refresh import CatalogRefreshPipeline, ProgressSink
from solidrules.environment import Settings, get_settings
from solidrules.errors import RecordNotFoundError, SolidRulesError
from solidrules.models import (
    ProjectionConfig,
    RefreshResult,
    RuleRecord,
    SearchFilters,
    SortOrder,
    TechnologyCount,
    UpdateRecord,
    utcnow,
)
from solidrules.notifier import ChangeNotifier, Listener
from solidrules.store import JsonFileBackend, RecordStore
from solidrules.sync import ActivationController, ProjectionReport, WorkspaceProjector
from solidrules.utils.cache import BoundedCache
from solidrules.utils.paths import PROJECT_RULES_DIR, WorkspacePaths, get_path_manager

CUSTOM_CATEGORY = "Custom"
CUSTOM_TAG = "custom"
CUSTOM_DESCRIPTION = "Custom imported rule"
EXPORTED_BY = "SolidRules"


def generate_custom_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"custom-{int(time.time() * 1000)}-{suffix}"


def sort_records(records: List[RuleRecord], sort_by: SortOrder) -> List[RuleRecord]:
    if sort_by == SortOrder.ALPHABETICAL:
        return sorted(records, key=lambda r: r.name.lower())
    if sort_by == SortOrder.POPULARITY:
        # Number of technologies stands in for popularity
        return sorted(records, key=lambda r: len(r.technologies), reverse=True)
    return sorted(records, key=lambda r: r.display_date, reverse=True)


class RulesManager:
    """Entry point for everything a front end can ask SolidRules to do."""

    def __init__(
        self,
        store: RecordStore,
        client: CatalogClient,
        paths: WorkspacePaths,
        progress: Optional[ProgressSink] = None,
        sync_delay: float = 2.0,
        notify_delay: float = 0.1,
        full_refresh_ratio: float = 0.5,
        hash_cache_size: int = 1000,
        output_directory: str = PROJECT_RULES_DIR,
        legacy_format: bool = False,
        modern_format: bool = True,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.store = store
        self.client = client
        self.paths = paths
        self.output_directory = output_directory
        self.legacy_format = legacy_format
        self.modern_format = modern_format

        self.notifier = ChangeNotifier(delay=notify_delay)
        self.pipeline = CatalogRefreshPipeline(
            store,
            client,
            notifier=self.notifier,
            progress=progress,
            full_refresh_ratio=full_refresh_ratio,
            sleep=sleep,
        )
        self.projector = WorkspaceProjector(paths, hash_cache=BoundedCache(hash_cache_size))
        self.controller = ActivationController(
            store, self.sync_workspace_files, notifier=self.notifier, sync_delay=sync_delay
        )
        self._listing_cache: BoundedCache = BoundedCache(max_size=8)
        # One projection pass at a time, whether debounced or direct
        self._projection_lock = asyncio.Lock()

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        root_dir: Optional[Path] = None,
        progress: Optional[ProgressSink] = None,
        client: Optional[CatalogClient] = None,
    ) -> "RulesManager":
        """Build a manager backed by the JSON store and the GitHub catalog."""
        settings = settings or get_settings()
        if client is None:
            client = GitHubCatalogClient(
                owner=settings.SOLIDRULES_CATALOG_OWNER,
                repo=settings.SOLIDRULES_CATALOG_REPO,
                rules_path=settings.SOLIDRULES_CATALOG_PATH,
                token=settings.GITHUB_TOKEN,
            )
        return cls(
            store=RecordStore(JsonFileBackend(settings.store_file)),
            client=client,
            paths=get_path_manager(root_dir, settings.SOLIDRULES_RULES_DIRECTORY),
            progress=progress,
            sync_delay=settings.SOLIDRULES_SYNC_DELAY,
            notify_delay=settings.SOLIDRULES_NOTIFY_DELAY,
            full_refresh_ratio=settings.SOLIDRULES_FULL_REFRESH_RATIO,
            hash_cache_size=settings.SOLIDRULES_HASH_CACHE_SIZE,
            output_directory=settings.SOLIDRULES_RULES_DIRECTORY,
            legacy_format=settings.SOLIDRULES_LEGACY_FORMAT,
        )

    async def start(self) -> None:
        await self.store.start()
        logger.debug(f"Rules manager started for workspace {self.paths.workspace_name}")

    async def close(self) -> None:
        """Apply pending projection work, then dispose of timers and the store writer."""
        await self.controller.flush()
        await self.controller.close()
        await self.notifier.flush()
        await self.notifier.close()
        await self.store.stop()

    def on_changed(self, listener: Listener) -> Callable[[], None]:
        return self.notifier.on_changed(listener)

    def _changed(self) -> None:
        self._listing_cache.invalidate()
        self.notifier.notify()

    # Catalog

    async def refresh(self) -> RefreshResult:
        """Refresh the local mirror and reproject if anything changed.

        Raises:
            CatalogUnavailable: If the catalog listing cannot be fetched
        """
        result = await self.pipeline.refresh()
        if result.processed_count:
            self._listing_cache.invalidate()
            if await self.store.get_active():
                await self.sync_workspace_files()
        return result

    async def check_for_updates(self) -> List[UpdateRecord]:
        return await self.pipeline.check_for_updates()

    async def update_rule(self, rule_id: str) -> RuleRecord:
        """Refetch one remote rule and reproject it if it is active."""
        record = await self.pipeline.update_rule(rule_id)
        self._listing_cache.invalidate()
        if record.is_active:
            await self.sync_workspace_files()
        return record

    async def update_all_rules(self) -> Dict[str, Any]:
        """Update every rule the last update check flagged.

        Returns:
            Dict with the ``updated`` ids and ``failed`` id -> error message
        """
        updated: List[str] = []
        failed: Dict[str, str] = {}
        reproject = False
        for update in await self.store.get_update_records():
            if not update.has_update:
                continue
            try:
                record = await self.pipeline.update_rule(update.rule_id)
            except SolidRulesError as e:
                logger.error(f"Failed to update rule {update.rule_id}: {e}")
                failed[update.rule_id] = str(e)
                continue
            updated.append(record.id)
            reproject = reproject or record.is_active

        if updated:
            self._listing_cache.invalidate()
        if reproject:
            await self.sync_workspace_files()
        logger.info(f"Updated {len(updated)} rules, {len(failed)} failed")
        return {"updated": updated, "failed": failed}

    # Activation

    async def activate(self, rule_id: str) -> RuleRecord:
        return await self.controller.activate(rule_id)

    async def deactivate(self, rule_id: str) -> RuleRecord:
        return await self.controller.deactivate(rule_id)

    async def toggle(self, rule_id: str) -> RuleRecord:
        return await self.controller.toggle(rule_id)

    async def batch_toggle(self, rule_ids: Iterable[str]) -> List[RuleRecord]:
        return await self.controller.batch_toggle(rule_ids)

    async def toggle_favorite(self, rule_id: str) -> RuleRecord:
        def flip(record: RuleRecord) -> None:
            record.is_favorite = not record.is_favorite

        (record,) = await self.store.modify([rule_id], flip)
        self.notifier.notify()
        return record

    # Projection

    def _projection_config(self, active_records: List[RuleRecord]) -> ProjectionConfig:
        return ProjectionConfig(
            workspace_id=self.paths.workspace_id,
            active_rule_ids=[record.id for record in active_records],
            output_directory=self.output_directory,
            legacy_format_enabled=self.legacy_format,
            modern_format_enabled=self.modern_format,
        )

    async def sync_workspace_files(self) -> ProjectionReport:
        """Project the current active set onto the workspace and record the result."""
        async with self._projection_lock:
            active = await self.store.get_active()
            config = self._projection_config(active)
            report = await self.projector.sync_active_rules(active, config)
            config.last_sync_date = utcnow()
            await self.store.save_workspace_config(config)
            return report

    def clear_projection_cache(self) -> None:
        self.projector.clear_cache()

    async def workspace_stats(self) -> Dict[str, Any]:
        records = await self.store.get_all()
        config = self._projection_config([r for r in records if r.is_active])
        stats = await asyncio.to_thread(self.projector.stats, config)
        saved = await self.store.get_workspace_config(config.workspace_id)
        stats.update(
            {
                "workspace_name": self.paths.workspace_name,
                "workspace_id": config.workspace_id,
                "total_rules": len(records),
                "active_rules": len(config.active_rule_ids),
                "favorite_rules": sum(1 for r in records if r.is_favorite),
                "custom_rules": sum(1 for r in records if r.is_custom),
                "pending_changes": len(self.controller.pending_operations),
                "last_sync_date": saved.last_sync_date if saved else None,
            }
        )
        return stats

    # Records

    async def get_all_records(self) -> List[RuleRecord]:
        return await self.store.get_all()

    async def get_record(self, rule_id: str) -> RuleRecord:
        record = await self.store.get(rule_id)
        if record is None:
            raise RecordNotFoundError(rule_id)
        return record

    async def get_active_records(self) -> List[RuleRecord]:
        return await self.store.get_active()

    async def get_favorite_records(self) -> List[RuleRecord]:
        return await self.store.get_favorites()

    async def search_records(self, query: str = "", filters: Optional[SearchFilters] = None) -> List[RuleRecord]:
        filters = filters or SearchFilters()
        records = await self.store.search(query, filters.technology, filters.category)
        if filters.tags:
            wanted = [tag.lower() for tag in filters.tags]
            records = [r for r in records if any(w in tag.lower() for w in wanted for tag in r.tags)]
        if filters.favorites_only:
            records = [r for r in records if r.is_favorite]
        if filters.active_only:
            records = [r for r in records if r.is_active]
        return sort_records(records, filters.sort_by)

    async def get_technologies(self) -> List[TechnologyCount]:
        """Technologies across all rules, most used first."""
        cached = self._listing_cache.get("technologies")
        if cached is not None:
            return cached
        counts: Dict[str, int] = {}
        for record in await self.store.get_all():
            for tech in record.technologies:
                counts[tech.lower()] = counts.get(tech.lower(), 0) + 1
        technologies = [
            TechnologyCount(name=name, count=count)
            for name, count in sorted(counts.items(), key=lambda item: (-item[1], item[0]))
        ]
        self._listing_cache.set("technologies", technologies)
        return technologies

    async def get_categories(self) -> List[str]:
        cached = self._listing_cache.get("categories")
        if cached is not None:
            return cached
        categories = sorted({record.category for record in await self.store.get_all()})
        self._listing_cache.set("categories", categories)
        return categories

    async def import_custom(
        self,
        name: str,
        content: str,
        technologies: Iterable[str] = (),
        tags: Iterable[str] = (),
    ) -> RuleRecord:
        """Store a locally authored rule. It is never touched by a catalog refresh."""
        record = RuleRecord(
            id=generate_custom_id(),
            name=name,
            description=CUSTOM_DESCRIPTION,
            content=content,
            technologies=list(technologies),
            tags=[*tags, CUSTOM_TAG],
            category=CUSTOM_CATEGORY,
            is_custom=True,
        )
        await self.store.save(record)
        logger.info(f"Imported custom rule {name}")
        self._changed()
        return record

    async def delete_record(self, rule_id: str) -> RuleRecord:
        """Delete a rule everywhere: store, update records, workspace configs and projected files.

        Raises:
            RecordNotFoundError: If the id is unknown
        """
        removed = await self.store.delete(rule_id)
        if removed is None:
            raise RecordNotFoundError(rule_id)
        self.controller.discard_pending(rule_id)
        if removed.is_active:
            async with self._projection_lock:
                active = await self.store.get_active()
                await self.projector.remove_record_files(removed, self._projection_config(active), active)
            await self.sync_workspace_files()
        logger.info(f"Deleted rule {removed.name}")
        self._changed()
        return removed

    async def clear_all_data(self) -> None:
        """Forget every rule, workspace config and update record. Projected files stay on disk."""
        self.controller.pending_operations.clear()
        await self.store.clear_all()
        self.projector.clear_cache()
        self._changed()

    async def export_rules(self, rule_ids: Optional[Iterable[str]] = None) -> Dict[str, Any]:
        """Export rules (all of them when ``rule_ids`` is None) as a JSON-ready payload."""
        if rule_ids is None:
            records = await self.store.get_all()
        else:
            records = [r for r in [await self.store.get(i) for i in rule_ids] if r is not None]
        return {
            "exportedAt": utcnow().isoformat(),
            "exportedBy": EXPORTED_BY,
            "rules": [record.model_dump(mode="json") for record in records],
        }
