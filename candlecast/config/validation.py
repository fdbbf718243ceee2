"""Configuration validation utilities."""

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class ConfigIssue:
    """Represents a configuration validation problem."""
    field: str
    message: str
    value: Any


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class ConfigValidator:
    """Validates configuration parameters."""

    @staticmethod
    def validate_session_params(params: dict[str, Any]) -> list[ConfigIssue]:
        """Validate session cache parameters."""
        errors = []

        for name in ("revalidation_window_seconds", "rolling_ttl_hours",
                     "idle_bound_days", "reap_interval_seconds"):
            if name in params:
                value = params[name]
                if not _is_int(value) or value <= 0:
                    errors.append(ConfigIssue(
                        field=f"session.{name}",
                        message="Must be a positive integer",
                        value=value
                    ))

        return errors

    @staticmethod
    def validate_capture_params(params: dict[str, Any]) -> list[ConfigIssue]:
        """Validate capture scheduler parameters."""
        errors = []

        if "default_interval_ms" in params:
            value = params["default_interval_ms"]
            if not _is_int(value) or value <= 0:
                errors.append(ConfigIssue(
                    field="capture.default_interval_ms",
                    message="Must be a positive integer",
                    value=value
                ))

        if "duplicate_window_seconds" in params:
            value = params["duplicate_window_seconds"]
            if not _is_number(value) or value < 0:
                errors.append(ConfigIssue(
                    field="capture.duplicate_window_seconds",
                    message="Must be a non-negative number",
                    value=value
                ))

        if "min_history" in params:
            value = params["min_history"]
            if not _is_int(value) or value < 1:
                errors.append(ConfigIssue(
                    field="capture.min_history",
                    message="Must be a positive integer",
                    value=value
                ))

        if "degraded_after_failures" in params:
            value = params["degraded_after_failures"]
            if not _is_int(value) or value < 1:
                errors.append(ConfigIssue(
                    field="capture.degraded_after_failures",
                    message="Must be a positive integer",
                    value=value
                ))

        if "cycle_deadline_seconds" in params:
            value = params["cycle_deadline_seconds"]
            if not _is_number(value) or value <= 0:
                errors.append(ConfigIssue(
                    field="capture.cycle_deadline_seconds",
                    message="Must be a positive number",
                    value=value
                ))

        if "trading_pair" in params:
            value = params["trading_pair"]
            if not isinstance(value, str) or not value.strip():
                errors.append(ConfigIssue(
                    field="capture.trading_pair",
                    message="Must be a non-empty string",
                    value=value
                ))

        return errors

    @staticmethod
    def validate_normalization_params(params: dict[str, Any]) -> list[ConfigIssue]:
        """Validate normalization parameters."""
        errors = []

        for name in ("min_confidence", "low_confidence_threshold"):
            if name in params:
                value = params[name]
                if not _is_number(value) or value < 0 or value > 100:
                    errors.append(ConfigIssue(
                        field=f"normalization.{name}",
                        message="Must be a number between 0 and 100",
                        value=value
                    ))

        if "synthetic_spread_pct" in params:
            value = params["synthetic_spread_pct"]
            if not _is_number(value) or value <= 0 or value >= 1:
                errors.append(ConfigIssue(
                    field="normalization.synthetic_spread_pct",
                    message="Must be a positive number below 1",
                    value=value
                ))

        return errors

    @staticmethod
    def validate_pattern_params(params: dict[str, Any]) -> list[ConfigIssue]:
        """Validate pattern matching parameters."""
        errors = []

        for name in ("window_size", "history_limit", "max_matches"):
            if name in params:
                value = params[name]
                if not _is_int(value) or value < 1:
                    errors.append(ConfigIssue(
                        field=f"pattern.{name}",
                        message="Must be a positive integer",
                        value=value
                    ))

        if "confidence_cap" in params:
            value = params["confidence_cap"]
            if not _is_int(value) or value < 0 or value > 100:
                errors.append(ConfigIssue(
                    field="pattern.confidence_cap",
                    message="Must be an integer between 0 and 100",
                    value=value
                ))

        return errors

    @staticmethod
    def validate_trend_params(params: dict[str, Any]) -> list[ConfigIssue]:
        """Validate trend heuristic parameters."""
        errors = []

        if "streak_threshold" in params:
            value = params["streak_threshold"]
            if not _is_int(value) or value < 2:
                errors.append(ConfigIssue(
                    field="trend.streak_threshold",
                    message="Must be an integer of at least 2",
                    value=value
                ))

        for name in ("reversal_base", "streak_step", "continuation_base",
                     "imbalance_step", "confidence_cap"):
            if name in params:
                value = params[name]
                if not _is_int(value) or value < 0 or value > 100:
                    errors.append(ConfigIssue(
                        field=f"trend.{name}",
                        message="Must be an integer between 0 and 100",
                        value=value
                    ))

        return errors

    @staticmethod
    def validate_fusion_params(params: dict[str, Any]) -> list[ConfigIssue]:
        """Validate fusion parameters."""
        errors = []

        for name in ("agree_bonus", "conflict_penalty", "conflict_floor", "confidence_cap"):
            if name in params:
                value = params[name]
                if not _is_int(value) or value < 0 or value > 100:
                    errors.append(ConfigIssue(
                        field=f"fusion.{name}",
                        message="Must be an integer between 0 and 100",
                        value=value
                    ))

        if "tie_break" in params:
            value = params["tie_break"]
            if value not in ("up", "down"):
                errors.append(ConfigIssue(
                    field="fusion.tie_break",
                    message="Must be 'up' or 'down'",
                    value=value
                ))

        return errors

    @staticmethod
    def validate_verification_params(params: dict[str, Any]) -> list[ConfigIssue]:
        """Validate verification parameters."""
        errors = []

        for name in ("accuracy_window", "stats_hours"):
            if name in params:
                value = params[name]
                if not _is_int(value) or value < 1:
                    errors.append(ConfigIssue(
                        field=f"verification.{name}",
                        message="Must be a positive integer",
                        value=value
                    ))

        return errors

    @staticmethod
    def validate_config(config: dict[str, Any]) -> list[ConfigIssue]:
        """Validate complete configuration."""
        errors = []

        if "session" in config:
            errors.extend(ConfigValidator.validate_session_params(config["session"]))

        if "capture" in config:
            errors.extend(ConfigValidator.validate_capture_params(config["capture"]))

        if "normalization" in config:
            errors.extend(ConfigValidator.validate_normalization_params(config["normalization"]))

        if "pattern" in config:
            errors.extend(ConfigValidator.validate_pattern_params(config["pattern"]))

        if "trend" in config:
            errors.extend(ConfigValidator.validate_trend_params(config["trend"]))

        if "fusion" in config:
            errors.extend(ConfigValidator.validate_fusion_params(config["fusion"]))

        if "verification" in config:
            errors.extend(ConfigValidator.validate_verification_params(config["verification"]))

        return errors
