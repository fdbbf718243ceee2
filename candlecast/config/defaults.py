"""Default configuration parameters for the capture and prediction system."""

from dataclasses import dataclass


@dataclass(frozen=True)
class SessionCacheParams:
    """Session validation cache parameters."""
    revalidation_window_seconds: int = 7200          # Max staleness of a cached validation
    rolling_ttl_hours: int = 24                      # expiresAt extension on every hit
    idle_bound_days: int = 7                         # Reap non-active sessions idle this long
    reap_interval_seconds: int = 3600                # Reaper period


@dataclass(frozen=True)
class CaptureParams:
    """Capture scheduler parameters."""
    default_interval_ms: int = 5000
    duplicate_window_seconds: float = 30.0           # +/- window for double-capture protection
    min_history: int = 10                            # Observations needed before predicting
    degraded_after_failures: int = 3                 # Consecutive failures before degraded
    cycle_deadline_seconds: float = 30.0             # Per-cycle deadline
    trading_pair: str = "EUR/USD OTC"
    timeframe_seconds: int = 60


@dataclass(frozen=True)
class NormalizationParams:
    """Raw observation normalization parameters."""
    min_confidence: float = 1.0                      # Below this the reading is unusable
    low_confidence_threshold: float = 50.0           # Below this the reading is flagged
    synthetic_spread_pct: float = 0.0001             # Body size used when synthesizing OHLC
    fallback_price: float = 1.0                      # Base price when nothing else is known


@dataclass(frozen=True)
class PatternParams:
    """Pattern matching parameters."""
    window_size: int = 5                             # k
    history_limit: int = 1000                        # Historical observations scanned
    max_matches: int = 20                            # Most recent matches tallied
    confidence_cap: int = 95


@dataclass(frozen=True)
class TrendParams:
    """Trend heuristic parameters."""
    streak_threshold: int = 3                        # Streak length that predicts reversal
    reversal_base: int = 60
    streak_step: int = 5
    continuation_base: int = 55
    imbalance_step: int = 5
    confidence_cap: int = 95


@dataclass(frozen=True)
class FusionParams:
    """Pattern/trend fusion parameters."""
    agree_bonus: int = 10
    conflict_penalty: int = 15
    conflict_floor: int = 50
    confidence_cap: int = 95
    tie_break: str = "down"                          # Direction on equal outcome tallies


@dataclass(frozen=True)
class VerificationParams:
    """Prediction verification and accuracy parameters."""
    accuracy_window: int = 10                        # Trailing verified predictions
    stats_hours: int = 24                            # Time range for accuracy stats


@dataclass(frozen=True)
class StorageParams:
    """Document store parameters."""
    db_path: str = "candlecast.db"
    retention_days: int = 30


@dataclass(frozen=True)
class LoggingParams:
    """Logging parameters."""
    level: str = "INFO"
    format_json: bool = False


@dataclass(frozen=True)
class AppConfig:
    """Complete configuration."""
    session: SessionCacheParams
    capture: CaptureParams
    normalization: NormalizationParams
    pattern: PatternParams
    trend: TrendParams
    fusion: FusionParams
    verification: VerificationParams
    storage: StorageParams
    logging: LoggingParams


SECTION_TYPES = {
    "session": SessionCacheParams,
    "capture": CaptureParams,
    "normalization": NormalizationParams,
    "pattern": PatternParams,
    "trend": TrendParams,
    "fusion": FusionParams,
    "verification": VerificationParams,
    "storage": StorageParams,
    "logging": LoggingParams,
}


def get_default_config() -> AppConfig:
    """Get the default configuration instance."""
    return AppConfig(
        session=SessionCacheParams(),
        capture=CaptureParams(),
        normalization=NormalizationParams(),
        pattern=PatternParams(),
        trend=TrendParams(),
        fusion=FusionParams(),
        verification=VerificationParams(),
        storage=StorageParams(),
        logging=LoggingParams(),
    )
