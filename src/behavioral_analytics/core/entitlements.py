"""Entitlement gate contract.

Tier and billing storage live outside this package; analyses only ask
whether a user may use a feature.  Denial raises
:class:`~behavioral_analytics.core.errors.EntitlementDenied` so callers
can render an upgrade prompt instead of a generic failure.
"""

from __future__ import annotations

import logging
from typing import Iterable, Protocol, runtime_checkable

from .enums import FeatureKey
from .errors import EntitlementDenied

logger = logging.getLogger(__name__)


def _key(feature: FeatureKey | str) -> str:
    return feature.value if isinstance(feature, FeatureKey) else str(feature)


@runtime_checkable
class IEntitlementGate(Protocol):
    """Answers feature-access questions for a user."""

    async def has_feature_access(self, user_id: str, feature: str) -> bool: ...


class StaticEntitlementGate:
    """In-process gate backed by a fixed grant table.

    Parameters
    ----------
    grants:
        ``{user_id: {feature, ...}}``.  Users absent from the table get
        *default_features*.
    default_features:
        Features every user has.  ``None`` grants everything.
    """

    def __init__(
        self,
        grants: dict[str, Iterable[str]] | None = None,
        *,
        default_features: Iterable[str] | None = None,
    ) -> None:
        self._grants = {u: {_key(f) for f in fs} for u, fs in (grants or {}).items()}
        self._default = (
            None if default_features is None else {_key(f) for f in default_features}
        )

    async def has_feature_access(self, user_id: str, feature: str) -> bool:
        key = _key(feature)
        if user_id in self._grants:
            return key in self._grants[user_id]
        return self._default is None or key in self._default

    def grant(self, user_id: str, *features: str) -> None:
        """Add features for a user (helper for tests)."""
        current = self._grants.setdefault(user_id, set(self._default or ()))
        current.update(_key(f) for f in features)


async def require_feature(
    gate: IEntitlementGate,
    user_id: str,
    feature: FeatureKey | str,
) -> None:
    """Raise :class:`EntitlementDenied` unless *user_id* may use *feature*."""
    key = _key(feature)
    if not await gate.has_feature_access(user_id, key):
        logger.info("Entitlement denied: user=%s feature=%s", user_id, key)
        raise EntitlementDenied(user_id, key)
