"""Derive record identity and classification from a catalog path."""

import re
from typing import Dict, List

NOISE_WORDS = ["cursorrules", "prompt", "file"]

KNOWN_TECHNOLOGIES = [
    "react", "vue", "angular", "svelte", "next", "nuxt", "typescript", "javascript",
    "node", "express", "fastapi", "django", "flask", "spring", "laravel",
    "go", "rust", "python", "java", "php", "csharp", "cpp",
    "tailwind", "css", "sass", "styled", "material",
    "mongodb", "postgresql", "mysql", "sqlite", "redis",
    "docker", "kubernetes", "aws", "azure", "gcp",
    "jest", "cypress", "playwright", "testing",
]

# Checked in order; the first category sharing a technology wins.
CATEGORY_MAP: Dict[str, List[str]] = {
    "Frontend": ["react", "vue", "angular", "svelte", "next", "nuxt", "typescript", "javascript"],
    "Backend": ["node", "express", "fastapi", "django", "flask", "spring", "laravel", "go", "rust"],
    "Mobile": ["react-native", "flutter", "ionic", "xamarin"],
    "Styling": ["tailwind", "css", "sass", "styled", "material"],
    "Database": ["mongodb", "postgresql", "mysql", "sqlite", "redis"],
    "DevOps": ["docker", "kubernetes", "aws", "azure", "gcp"],
    "Testing": ["jest", "cypress", "playwright", "testing"],
}
DEFAULT_CATEGORY = "Other"


def _basename(path: str) -> str:
    return path.rstrip("/").split("/")[-1]


def generate_rule_id(path: str) -> str:
    """Stable id for a remote rule: non-alphanumerics become dashes, lowercased."""
    return re.sub(r"[^a-zA-Z0-9]", "-", path).lower()


def format_rule_name(name: str) -> str:
    """Human display name from a catalog directory name.

    >>> format_rule_name("react-typescript-cursorrules-prompt-file")
    'React Typescript'
    """
    text = name.replace("-", " ")
    text = re.sub(r"cursorrules|prompt|file", "", text, flags=re.IGNORECASE)
    words = text.split()
    return " ".join(word[:1].upper() + word[1:] for word in words)


def parse_rule_name(path: str) -> List[str]:
    return [part for part in _basename(path).split("-") if part and part.lower() not in NOISE_WORDS]


def parse_technologies(path: str) -> List[str]:
    """Technologies named in the catalog directory, matched loosely against the known list."""
    technologies = []
    for part in _basename(path).split("-"):
        lowered = part.lower()
        if len(lowered) < 2 or lowered in NOISE_WORDS:
            continue
        if any(lowered in tech or tech in lowered for tech in KNOWN_TECHNOLOGIES):
            if lowered not in technologies:
                technologies.append(lowered)
    return technologies


def category_for(technologies: List[str]) -> str:
    lowered = {tech.lower() for tech in technologies}
    for category, techs in CATEGORY_MAP.items():
        if lowered.intersection(techs):
            return category
    return DEFAULT_CATEGORY


def tags_for(path: str) -> List[str]:
    return [part.lower() for part in parse_rule_name(path)]


def fallback_description(path: str) -> str:
    return ", ".join(parse_rule_name(path))
