"""
Catalog Client
==============

I/O boundary to the remote rule catalog. The GitHub implementation lists the
rule directories of a repository and fetches each rule's ``.cursorrules`` body
and README. No caching happens here.
"""

import asyncio
import base64
import binascii
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import requests
from loguru import logger
from requests.exceptions import HTTPError, RequestException

from solidrules.catalog import naming
from solidrules.errors import CatalogFetchError, CatalogUnavailable, RateLimitedError
from solidrules.models import CatalogEntry, RuleMetadata

API_BASE_URL = "https://api.github.com"
RULE_CONTENT_FILE = ".cursorrules"
RULE_README_FILE = "README.md"


class CatalogClient(ABC):
    """Remote catalog provider."""

    @property
    @abstractmethod
    def authenticated(self) -> bool:
        """Whether requests run with credentials (and therefore a higher quota)."""

    @abstractmethod
    async def list_catalog(self) -> List[CatalogEntry]:
        """Fetch the full listing in one call."""

    @abstractmethod
    async def fetch_content(self, path: str) -> bytes:
        """Fetch the raw body of one catalog entry."""

    @abstractmethod
    async def fetch_metadata(self, path: str) -> RuleMetadata:
        """Fetch description and technologies for one catalog entry."""


def _is_rate_limited(response: requests.Response) -> bool:
    if response.status_code == 429:
        return True
    if response.status_code == 403:
        if response.headers.get("X-RateLimit-Remaining") == "0":
            return True
        return "rate limit" in response.text.lower()
    return False


def _retry_after(response: requests.Response) -> Optional[float]:
    value = response.headers.get("Retry-After")
    try:
        return float(value) if value is not None else None
    except ValueError:
        return None


class GitHubCatalogClient(CatalogClient):
    """Catalog backed by a directory of a GitHub repository (contents API)."""

    def __init__(
        self,
        owner: str = "PatrickJS",
        repo: str = "awesome-cursorrules",
        rules_path: str = "rules",
        token: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
    ):
        self.owner = owner
        self.repo = repo
        self.rules_path = rules_path.strip("/")
        self.timeout = timeout
        self._token = token
        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/vnd.github+json"})
        if token:
            logger.info("Using GitHub token for API requests (5000 req/h)")
            self.session.headers["Authorization"] = f"Bearer {token}"
        else:
            logger.warning("Using GitHub API without token (60 req/h limit)")

    @property
    def authenticated(self) -> bool:
        return bool(self._token)

    def _contents_url(self, path: str) -> str:
        return f"{API_BASE_URL}/repos/{self.owner}/{self.repo}/contents/{path}"

    def _get_contents(self, path: str) -> Any:
        """Blocking GET of the contents API; runs in a worker thread."""
        try:
            response = self.session.get(self._contents_url(path), timeout=self.timeout)
        except RequestException as e:
            raise CatalogFetchError(path, f"Request failed ({e})") from e

        if _is_rate_limited(response):
            raise RateLimitedError(
                "GitHub API rate limit exceeded", retry_after=_retry_after(response)
            )
        try:
            response.raise_for_status()
        except HTTPError as e:
            raise CatalogFetchError(path, f"HTTP {response.status_code}", response.status_code) from e
        try:
            return response.json()
        except ValueError as e:
            raise CatalogFetchError(path, "Response is not JSON", response.status_code) from e

    async def _fetch_file(self, path: str) -> bytes:
        data = await asyncio.to_thread(self._get_contents, path)
        if not isinstance(data, dict) or data.get("type") != "file":
            raise CatalogFetchError(path, "Not a file")
        try:
            return base64.b64decode(data.get("content", ""))
        except binascii.Error as e:
            raise CatalogFetchError(path, "Invalid base64 content") from e

    async def list_catalog(self) -> List[CatalogEntry]:
        try:
            data = await asyncio.to_thread(self._get_contents, self.rules_path)
        except RateLimitedError as e:
            raise CatalogUnavailable(
                "GitHub API rate limit exceeded while listing rules", rate_limited=True
            ) from e
        except CatalogFetchError as e:
            raise CatalogUnavailable(f"Failed to fetch rules from GitHub: {e}") from e

        if not isinstance(data, list):
            return []
        return [
            CatalogEntry(
                path=item["path"],
                name=item["name"],
                version_stamp=item["sha"],
                size_bytes=item.get("size") or 0,
            )
            for item in data
            if item.get("type") == "dir"
        ]

    async def fetch_content(self, path: str) -> bytes:
        return await self._fetch_file(f"{path}/{RULE_CONTENT_FILE}")

    async def fetch_metadata(self, path: str) -> RuleMetadata:
        technologies = naming.parse_technologies(path)
        try:
            readme = (await self._fetch_file(f"{path}/{RULE_README_FILE}")).decode("utf-8", errors="replace")
        except RateLimitedError:
            raise
        except CatalogFetchError:
            # README not found, use rule name as description
            return RuleMetadata(description=naming.fallback_description(path), technologies=technologies)

        description = next(
            (line.strip() for line in readme.splitlines() if line.strip() and not line.startswith("#")),
            "",
        )
        return RuleMetadata(description=description, technologies=technologies)

    def rate_limit_status(self) -> Dict[str, Any]:
        """Current quota as reported by GitHub (blocking)."""
        response = self.session.get(f"{API_BASE_URL}/rate_limit", timeout=self.timeout)
        response.raise_for_status()
        return response.json().get("resources", {}).get("core", {})
