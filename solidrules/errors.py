"""Exception hierarchy for SolidRules."""

from typing import Optional


class SolidRulesError(Exception):
    """Base user-facing application error."""


class ConfigurationError(SolidRulesError):
    """Raised when settings cannot be loaded or validated."""


class CatalogError(SolidRulesError):
    """Base exception for remote catalog operations."""


class RateLimitedError(CatalogError):
    """Raised when the catalog provider refuses a request for rate limiting."""

    def __init__(self, message: str = "Catalog rate limit exceeded", retry_after: Optional[float] = None):
        self.retry_after = retry_after
        super().__init__(message)


class CatalogFetchError(CatalogError):
    """Raised when a catalog request fails for any other reason."""

    def __init__(self, path: str, message: str, status_code: Optional[int] = None):
        self.path = path
        self.status_code = status_code
        super().__init__(f"{message}: {path}")


class CatalogUnavailable(CatalogError):
    """Raised when the catalog listing itself cannot be fetched."""

    def __init__(self, message: str, rate_limited: bool = False):
        self.rate_limited = rate_limited
        super().__init__(message)


class RecordNotFoundError(SolidRulesError):
    def __init__(self, rule_id: str):
        self.rule_id = rule_id
        super().__init__(f"Rule not found: {rule_id}")


class RuleNotUpdatable(SolidRulesError):
    def __init__(self, rule_id: str, reason: str = "Rule cannot be updated"):
        self.rule_id = rule_id
        super().__init__(f"{reason}: {rule_id}")


class StoreWriteError(SolidRulesError):
    """Raised when the durable backend rejects a write."""

    def __init__(self, key: str, detail: str):
        self.key = key
        self.detail = detail
        super().__init__(f"Failed to persist {key} ({detail})")


def describe_refresh_failure(error: Exception, authenticated: bool) -> str:
    """Build the message shown to a user when a refresh fails.

    Args:
        error: The exception raised by the refresh
        authenticated: Whether a GitHub token was configured

    Returns:
        str: Actionable message text
    """
    rate_limited = isinstance(error, RateLimitedError) or getattr(error, "rate_limited", False)
    if rate_limited:
        if authenticated:
            return "GitHub API rate limit exceeded. Please wait a few minutes before trying again."
        return (
            "GitHub API rate limit exceeded. Please wait a few minutes before trying again. "
            "Consider setting GITHUB_TOKEN for higher rate limits (5000 requests/hour)."
        )
    return f"Failed to refresh rules: {error}"
