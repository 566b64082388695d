"""Exception hierarchy for the behavioral analytics engine.

Not every failure is an exception: a detector that lacks enough trades
returns an :class:`~behavioral_analytics.core.models.InsufficientData`
result instead of raising.
"""


class BehaviorAnalyticsError(Exception):
    """Base exception for all behavioral analytics errors."""


# --- Configuration ---
class ConfigError(BehaviorAnalyticsError):
    """Invalid or missing configuration."""


# --- Access ---
class EntitlementDenied(BehaviorAnalyticsError):
    """The user's tier does not include the requested feature."""

    def __init__(self, user_id: str, feature: str):
        self.user_id = user_id
        self.feature = feature
        super().__init__(
            f"User {user_id} is not entitled to feature '{feature}'"
        )


# --- External data ---
class ExternalDataError(BehaviorAnalyticsError):
    """Market data or AI provider failure."""


class ExternalDataUnavailable(ExternalDataError):
    """Market data call failed, timed out or came back empty."""

    def __init__(self, symbol: str, reason: str):
        self.symbol = symbol
        self.reason = reason
        super().__init__(f"Market data unavailable for {symbol}: {reason}")


class RateLimited(ExternalDataError):
    """Provider request budget exhausted for the current window."""

    def __init__(self, provider: str, limit: int | None = None):
        self.provider = provider
        self.limit = limit
        msg = f"Rate limit reached for provider '{provider}'"
        if limit is not None:
            msg += f" ({limit}/min)"
        super().__init__(msg)


# --- Storage ---
class PersistenceError(BehaviorAnalyticsError):
    """Storage failure. Aborts the current batch; safe to retry wholesale."""
