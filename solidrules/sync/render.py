"""Deterministic renderers for the two projected file formats."""

import hashlib
import re
from datetime import datetime
from typing import Dict, Iterable, List, Optional

import yaml

from solidrules.models import RuleRecord

GENERATOR_MARKER = "Generated by SolidRules"
LEGACY_HEADER_TITLE = "# SolidRules - Combined Cursor Rules"
CATALOG_SOURCE = "awesome-cursorrules"
MAX_FILENAME_LENGTH = 50
# Keeps the front matter short enough that the marker below it stays in the scanned head of the file
MAX_DESCRIPTION_LENGTH = 300


def sanitize_file_name(name: str) -> str:
    cleaned = re.sub(r"[^a-zA-Z0-9\s\-_]", "", name)
    cleaned = re.sub(r"\s+", "-", cleaned.strip()).lower()
    return cleaned[:MAX_FILENAME_LENGTH] or "rule"


def shorten_description(text: str) -> str:
    text = " ".join(text.split())
    if len(text) <= MAX_DESCRIPTION_LENGTH:
        return text
    return text[: MAX_DESCRIPTION_LENGTH - 3].rstrip() + "..."


def short_id_hash(rule_id: str) -> str:
    return hashlib.sha1(rule_id.encode("utf-8")).hexdigest()[:8]


def assign_file_names(records: Iterable[RuleRecord], suffix: str) -> Dict[str, str]:
    """Map record id to a unique file name; later duplicates get an id-hash suffix."""
    names: Dict[str, str] = {}
    taken = set()
    for record in records:
        base = sanitize_file_name(record.name)
        candidate = f"{base}{suffix}"
        if candidate in taken:
            candidate = f"{base}-{short_id_hash(record.id)}{suffix}"
        taken.add(candidate)
        names[record.id] = candidate
    return names


def determine_rule_scope(record: RuleRecord) -> Dict[str, object]:
    """Cursor rule type from category and technologies.

    Technology-specific categories become "Auto Attached" rules with globs; any
    other rule is "Agent Requested" (no globs, not always applied).
    """
    techs = set(record.technologies)
    if record.category == "Frontend":
        if techs.intersection(["react", "vue", "angular", "svelte"]):
            return {"globs": "*.{tsx,jsx,ts,js,vue,svelte}", "alwaysApply": False}
        return {"globs": "*.{html,css,js,ts}", "alwaysApply": False}

    if record.category == "Backend":
        if "python" in techs:
            return {"globs": "*.py", "alwaysApply": False}
        if "node" in techs or "typescript" in techs:
            return {"globs": "*.{ts,js}", "alwaysApply": False}
        if "go" in techs:
            return {"globs": "*.go", "alwaysApply": False}
        if "java" in techs:
            return {"globs": "*.java", "alwaysApply": False}
        return {"globs": "*.{py,js,ts,go,java}", "alwaysApply": False}

    if record.category == "Styling":
        return {"globs": "*.{css,scss,sass,less,stylus}", "alwaysApply": False}
    if record.category == "Database":
        return {"globs": "*.{sql,prisma,schema}", "alwaysApply": False}
    if record.category == "DevOps":
        return {"globs": "*.{yml,yaml,dockerfile,tf,json}", "alwaysApply": False}
    return {"alwaysApply": False}


def _source_label(record: RuleRecord, short: bool = True) -> str:
    if record.is_custom:
        return "Custom" if short else "Custom Rule"
    return CATALOG_SOURCE if short else f"GitHub - {CATALOG_SOURCE}"


def render_modern(record: RuleRecord) -> str:
    """Render one record as a Cursor project rule (.mdc) with YAML front matter."""
    fm: Dict[str, object] = {"description": shorten_description(record.description or record.name)}
    fm.update(determine_rule_scope(record))

    parts: List[str] = []
    parts.append("---")
    parts.append(yaml.safe_dump(fm, default_flow_style=False, sort_keys=False, allow_unicode=True).rstrip())
    parts.append("---")
    parts.append("")
    parts.append(f"<!-- {GENERATOR_MARKER}")
    parts.append(f"Rule: {record.name} | Category: {record.category}")
    parts.append(f"Technologies: {', '.join(record.technologies)} | Tags: {', '.join(record.tags)}")
    parts.append(f"Source: {_source_label(record)}")
    parts.append("-->")
    parts.append("")
    parts.append(record.content)
    return "\n".join(parts)


def render_legacy_body(records: Iterable[RuleRecord]) -> str:
    """The per-rule blocks of the consolidated file; everything except the timestamped header."""
    blocks = []
    for record in records:
        blocks.append(
            "\n".join(
                [
                    "",
                    "# ============================================",
                    f"# Rule: {record.name}",
                    f"# Category: {record.category}",
                    f"# Technologies: {', '.join(record.technologies)}",
                    f"# Source: {_source_label(record, short=False)}",
                    "# ============================================",
                    "",
                    record.content,
                    "",
                ]
            )
        )
    return "\n".join(blocks)


def render_legacy_header(count: int, generated_at: Optional[datetime] = None) -> str:
    lines = [LEGACY_HEADER_TITLE, f"# {GENERATOR_MARKER}"]
    if generated_at is not None:
        lines.append(f"# Last updated: {generated_at.isoformat()}")
    lines.append(f"# Active rules: {count}")
    return "\n".join(lines) + "\n\n"


def render_legacy(records: List[RuleRecord], generated_at: Optional[datetime] = None) -> str:
    return render_legacy_header(len(records), generated_at) + render_legacy_body(records)
