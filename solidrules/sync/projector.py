"""
Workspace Projector
===================

Materializes the active rule set as files a Cursor workspace picks up:
one ``.mdc`` project rule per active record and, optionally, the consolidated
legacy ``.cursorrules`` file.

Only records whose rendered content changed, or whose file went missing, are
written. Every write goes through a temporary file and a rename.
"""

import asyncio
import shutil
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple

from loguru import logger

from solidrules.models import ProjectionConfig, RuleRecord, utcnow
from solidrules.sync.render import (
    GENERATOR_MARKER,
    assign_file_names,
    render_legacy,
    render_legacy_body,
    render_modern,
    sanitize_file_name,
    short_id_hash,
)
from solidrules.utils.cache import BoundedCache
from solidrules.utils.file_ops import content_hash, file_hash, safe_remove_file, safe_write_file
from solidrules.utils.paths import MODERN_RULE_SUFFIX, WorkspacePaths

CacheKey = Tuple[str, str]

LEGACY_CACHE_KEY: CacheKey = ("legacy", "")
MARKER_SCAN_BYTES = 4096


@dataclass
class ProjectionReport:
    written: List[Path] = field(default_factory=list)
    skipped: List[Path] = field(default_factory=list)
    removed: List[Path] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.written or self.removed)


def is_generated_file(path: Path) -> bool:
    """True if the file carries the SolidRules generator marker near its top."""
    try:
        with path.open("r", encoding="utf-8", errors="replace") as f:
            return GENERATOR_MARKER in f.read(MARKER_SCAN_BYTES)
    except OSError:
        return False


class WorkspaceProjector:
    """Writes the active rule set into one workspace."""

    def __init__(
        self,
        paths: WorkspacePaths,
        hash_cache: Optional[BoundedCache] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.paths = paths
        self.hash_cache: BoundedCache = hash_cache if hash_cache is not None else BoundedCache(1000)
        self._clock = clock
        self._errors: Dict[str, str] = {}
        self._last_sync: Optional[datetime] = None

    async def sync_active_rules(self, active_records: Iterable[RuleRecord], config: ProjectionConfig) -> ProjectionReport:
        """Project the active records according to ``config``.

        Raises:
            OSError: If a file cannot be written; the previous file stays in place
        """
        active_records = list(active_records)
        report = ProjectionReport()
        if config.modern_format_enabled:
            await self._sync_modern(active_records, config, report)
        if config.legacy_format_enabled:
            await self._sync_legacy(active_records, report)
        self._last_sync = self._clock()
        logger.debug(
            f"Projection: {len(report.written)} written, {len(report.skipped)} unchanged, "
            f"{len(report.removed)} removed"
        )
        return report

    async def cleanup_inactive(
        self,
        all_records: Iterable[RuleRecord],
        active_records: Iterable[RuleRecord],
        config: ProjectionConfig,
    ) -> List[Path]:
        """Remove the projected files of every record that is not active.

        Files that belong to an active record are never removed, even when an
        inactive record would map to the same file name.
        """
        active_records = list(active_records)
        active_ids = {record.id for record in active_records}
        rules_dir = self.paths.get_rules_dir(config.output_directory)
        protected = {
            rules_dir / name for name in assign_file_names(active_records, MODERN_RULE_SUFFIX).values()
        }

        removed = []
        for record in all_records:
            if record.id in active_ids:
                continue
            for candidate in self._candidate_paths(record, rules_dir):
                if candidate in protected:
                    continue
                if await asyncio.to_thread(is_generated_file, candidate):
                    if await asyncio.to_thread(safe_remove_file, candidate):
                        logger.info(f"Removed inactive rule file {candidate.name}")
                        removed.append(candidate)
            self.hash_cache.invalidate(("modern", record.id))
        return removed

    async def remove_record_files(
        self, record: RuleRecord, config: ProjectionConfig, active_records: Iterable[RuleRecord] = ()
    ) -> List[Path]:
        """Remove the projected file of one record, e.g. after it was deleted."""
        active_records = [r for r in active_records if r.id != record.id]
        return await self.cleanup_inactive([record], active_records, config)

    def _candidate_paths(self, record: RuleRecord, rules_dir: Path) -> List[Path]:
        candidates = []
        cached = self.hash_cache.get(("modern", record.id))
        if cached is not None:
            candidates.append(Path(cached[1]))
        base = sanitize_file_name(record.name)
        for name in [f"{base}{MODERN_RULE_SUFFIX}", f"{base}-{short_id_hash(record.id)}{MODERN_RULE_SUFFIX}"]:
            path = rules_dir / name
            if path not in candidates:
                candidates.append(path)
        return candidates

    async def _is_current(self, key: CacheKey, digest: str, target: Path) -> bool:
        """Whether ``target`` already holds content with ``digest``.

        A cache hit only counts while the file still exists. On a cache miss the
        file on disk is hashed and adopted into the cache if it matches.
        """
        if not await asyncio.to_thread(target.exists):
            return False
        cached = self.hash_cache.get(key)
        if cached is not None:
            return cached == (digest, str(target))
        if await asyncio.to_thread(file_hash, target) == digest:
            self.hash_cache.set(key, (digest, str(target)))
            return True
        return False

    async def _write(self, target: Path, content: str) -> None:
        try:
            await asyncio.to_thread(safe_write_file, target, content)
        except OSError as e:
            self._errors[str(target)] = str(e)
            logger.error(f"Failed to write {target}: {e}")
            raise
        self._errors.pop(str(target), None)

    async def _sync_modern(self, active_records: List[RuleRecord], config: ProjectionConfig, report: ProjectionReport) -> None:
        rules_dir = self.paths.get_rules_dir(config.output_directory)
        await asyncio.to_thread(rules_dir.mkdir, parents=True, exist_ok=True)

        names = assign_file_names(active_records, MODERN_RULE_SUFFIX)
        desired: Set[Path] = set()
        for record in active_records:
            target = rules_dir / names[record.id]
            desired.add(target)
            content = render_modern(record)
            digest = content_hash(content)
            key = ("modern", record.id)
            if await self._is_current(key, digest, target):
                report.skipped.append(target)
                continue
            await self._write(target, content)
            self.hash_cache.set(key, (digest, str(target)))
            report.written.append(target)

        report.removed.extend(await self._remove_orphans(rules_dir, desired))

    async def _remove_orphans(self, rules_dir: Path, desired: Set[Path]) -> List[Path]:
        """Delete generated rule files that no active record maps to."""

        def find_orphans() -> List[Path]:
            if not rules_dir.is_dir():
                return []
            return [
                child
                for child in sorted(rules_dir.iterdir())
                if child.suffix == MODERN_RULE_SUFFIX
                and child not in desired
                and child.is_file()
                and is_generated_file(child)
            ]

        removed = []
        for orphan in await asyncio.to_thread(find_orphans):
            if await asyncio.to_thread(safe_remove_file, orphan):
                logger.info(f"Removed stale rule file {orphan.name}")
                removed.append(orphan)
        if removed:
            stale = {str(path) for path in removed}
            for key, entry in self.hash_cache.snapshot().items():
                if entry[1] in stale:
                    self.hash_cache.invalidate(key)
        return removed

    async def _sync_legacy(self, active_records: List[RuleRecord], report: ProjectionReport) -> None:
        legacy_file = self.paths.get_legacy_file()

        if not active_records:
            # No active rules: the consolidated file goes away entirely
            self.hash_cache.invalidate(LEGACY_CACHE_KEY)
            if await asyncio.to_thread(is_generated_file, legacy_file):
                if await asyncio.to_thread(safe_remove_file, legacy_file):
                    report.removed.append(legacy_file)
            return

        # The header carries a timestamp, so only the rule blocks decide whether to rewrite
        body = render_legacy_body(active_records)
        digest = content_hash(body)
        if await self._legacy_is_current(digest, body, legacy_file):
            report.skipped.append(legacy_file)
            return

        if await asyncio.to_thread(legacy_file.exists) and not await asyncio.to_thread(is_generated_file, legacy_file):
            backup = await asyncio.to_thread(self._backup_file, legacy_file)
            logger.warning(f"Backed up hand-written {legacy_file.name} to {backup.name}")

        await self._write(legacy_file, render_legacy(active_records, self._clock()))
        self.hash_cache.set(LEGACY_CACHE_KEY, (digest, str(legacy_file)))
        report.written.append(legacy_file)

    async def _legacy_is_current(self, digest: str, body: str, legacy_file: Path) -> bool:
        if not await asyncio.to_thread(legacy_file.exists):
            return False
        cached = self.hash_cache.get(LEGACY_CACHE_KEY)
        if cached is not None:
            return cached == (digest, str(legacy_file))
        try:
            on_disk = await asyncio.to_thread(legacy_file.read_text, encoding="utf-8")
        except (OSError, UnicodeDecodeError):
            return False
        if GENERATOR_MARKER in on_disk and on_disk.partition("\n\n")[2] == body:
            self.hash_cache.set(LEGACY_CACHE_KEY, (digest, str(legacy_file)))
            return True
        return False

    def _backup_file(self, path: Path) -> Path:
        backup = path.with_name(f"{path.name}.backup.{int(self._clock().timestamp() * 1000)}")
        shutil.copy2(path, backup)
        return backup

    def clear_cache(self) -> None:
        """Forget every cached hash; the next pass re-verifies files on disk."""
        self.hash_cache.invalidate()
        logger.info("Projection cache cleared")

    def stats(self, config: ProjectionConfig) -> Dict[str, Any]:
        """Counts and timestamps of what is currently projected."""
        rules_dir = self.paths.get_rules_dir(config.output_directory)
        legacy_file = self.paths.get_legacy_file()
        rule_files = sorted(rules_dir.glob(f"*{MODERN_RULE_SUFFIX}")) if rules_dir.is_dir() else []
        last_modified = None
        if rule_files:
            last_modified = datetime.fromtimestamp(max(path.stat().st_mtime for path in rule_files))
        return {
            "rules_directory": str(rules_dir),
            "total_rule_files": len(rule_files),
            "generated_rule_files": sum(1 for path in rule_files if is_generated_file(path)),
            "legacy_file_exists": legacy_file.exists(),
            "last_modified": last_modified,
            "cached_hashes": len(self.hash_cache),
        }

    def get_status(self) -> Dict[str, Any]:
        return {
            "errors": dict(self._errors),
            "last_sync": self._last_sync.isoformat() if self._last_sync else None,
            "cached_hashes": len(self.hash_cache),
        }
