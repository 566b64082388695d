"""Enumerations used across the behavioral analytics engine."""

from enum import Enum


class TradeSide(str, Enum):
    LONG = "long"
    SHORT = "short"

    @classmethod
    def parse(cls, value: "str | TradeSide") -> "TradeSide":
        """Accept ``long``/``short`` and the ``buy``/``sell`` aliases."""
        if isinstance(value, TradeSide):
            return value
        v = str(value).strip().lower()
        if v in ("long", "buy"):
            return cls.LONG
        if v in ("short", "sell"):
            return cls.SHORT
        raise ValueError(f"Unknown trade side: {value!r}")


class Sensitivity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class PatternType(str, Enum):
    SAME_SYMBOL_REVENGE = "same_symbol_revenge"
    EMOTIONAL_REACTIVE = "emotional_reactive_trading"
    OVERCONFIDENCE_BIAS = "overconfidence_bias"


REVENGE_PATTERN_TYPES: tuple[PatternType, ...] = (
    PatternType.SAME_SYMBOL_REVENGE,
    PatternType.EMOTIONAL_REACTIVE,
)


class RevengeSignal(str, Enum):
    """Sub-patterns evaluated by the real-time revenge detector."""

    FREQUENCY = "frequency"
    POSITION_SIZE = "position_size"
    TIMING = "timing"
    SAME_SYMBOL = "same_symbol"


class StreakType(str, Enum):
    WIN = "win"
    LOSS = "loss"


class StreakOutcome(str, Enum):
    PROFIT = "profit"
    LOSS = "loss"
    BREAKEVEN = "breakeven"
    ONGOING = "ongoing"


class Verdict(str, Enum):
    TRUE_OVERCONFIDENCE = "true_overconfidence"
    PARTIAL_OVERCONFIDENCE = "partial_overconfidence"
    PRUDENT_TRADE = "prudent_trade"
    BAD_LUCK = "bad_luck"


class AlertType(str, Enum):
    WARNING = "warning"
    RECOMMENDATION = "recommendation"
    BLOCKING = "blocking"


class AlertStatus(str, Enum):
    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"


class DurationTier(str, Enum):
    SCALP = "scalp"
    DAY_TRADE = "day_trade"
    INTRADAY = "intraday"
    SWING = "swing"
    POSITION = "position"
    LONG_TERM = "long_term"


class FeatureKey(str, Enum):
    """Entitlement feature keys checked before an analysis runs."""

    BEHAVIORAL_ANALYTICS = "behavioral_analytics"
    REVENGE_TRADING_DETECTION = "revenge_trading_detection"
    OVERCONFIDENCE_ANALYTICS = "overconfidence_analytics"
    MARKET_DATA_PRO = "market_data_pro"


class CacheBackendKind(str, Enum):
    MEMORY = "memory"
    SQL = "sql"
    REDIS = "redis"
