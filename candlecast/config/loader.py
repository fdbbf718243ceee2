"""Configuration loader with 3-tier parameter precedence."""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import yaml

from ..errors import ConfigurationError
from .defaults import SECTION_TYPES, AppConfig, get_default_config
from .validation import ConfigValidator


@dataclass(frozen=True)
class ConfigLoader:
    """Manages configuration loading with 3-tier precedence."""

    config_dir: Path
    defaults: AppConfig

    @classmethod
    def create(cls, config_dir: Optional[Path] = None) -> "ConfigLoader":
        """Create a ConfigLoader instance."""
        if config_dir is None:
            config_dir = Path(__file__).parent.parent.parent / "config"

        return cls(
            config_dir=Path(config_dir),
            defaults=get_default_config(),
        )

    def _load_yaml(self, filename: str) -> dict[str, Any]:
        path = self.config_dir / filename

        if not path.exists():
            return {}

        with open(path) as f:
            data = yaml.safe_load(f)

        return data or {}

    def load_settings(self) -> dict[str, Any]:
        """Load deployment-wide overrides from settings.yaml."""
        return self._load_yaml("settings.yaml")

    def load_trading_pair_config(self, trading_pair: str) -> dict[str, Any]:
        """Load trading-pair-specific configuration overrides."""
        pairs_config = self._load_yaml("trading_pairs.yaml")
        return pairs_config.get("trading_pairs", {}).get(trading_pair, {})  # type: ignore[no-any-return]

    def merge_config(
        self,
        trading_pair: Optional[str] = None,
        overrides: Optional[dict[str, Any]] = None
    ) -> dict[str, Any]:
        """
        Merge configuration with 3-tier precedence.

        Priority order:
        1. Explicit overrides (highest priority)
        2. Trading-pair-specific overrides
        3. settings.yaml over global defaults (lowest priority)
        """
        config = self._dataclass_to_dict(self.defaults)
        config = self._deep_merge(config, self.load_settings())

        if trading_pair:
            config = self._deep_merge(config, self.load_trading_pair_config(trading_pair))

        if overrides:
            config = self._deep_merge(config, overrides)

        return config

    def load(
        self,
        trading_pair: Optional[str] = None,
        overrides: Optional[dict[str, Any]] = None
    ) -> AppConfig:
        """Merge, validate and build a typed configuration."""
        return self._build(self.merge_config(trading_pair, overrides))

    def for_trading_pair(self, base: AppConfig, trading_pair: str) -> AppConfig:
        """Apply a trading pair's overrides on top of an already loaded configuration."""
        merged = self._deep_merge(
            self._dataclass_to_dict(base), self.load_trading_pair_config(trading_pair)
        )
        return self._build(merged)

    def _build(self, merged: dict[str, Any]) -> AppConfig:
        issues = ConfigValidator.validate_config(merged)
        if issues:
            messages = [f"{i.field}: {i.message} (got: {i.value})" for i in issues]
            raise ConfigurationError(
                f"Invalid configuration: {'; '.join(messages)}",
                issues=issues,
            )

        sections = {}
        for name, section_type in SECTION_TYPES.items():
            values = merged.get(name, {})
            known = {k: v for k, v in values.items() if k in section_type.__dataclass_fields__}
            sections[name] = section_type(**known)

        return AppConfig(**sections)

    def _dataclass_to_dict(self, obj: Any) -> dict[str, Any]:
        """Convert nested dataclasses to dictionary."""
        if hasattr(obj, '__dataclass_fields__'):
            result = {}
            for field_name in obj.__dataclass_fields__:
                value = getattr(obj, field_name)
                if hasattr(value, '__dataclass_fields__'):
                    result[field_name] = self._dataclass_to_dict(value)
                else:
                    result[field_name] = value
            return result
        return obj  # type: ignore[no-any-return]

    def _deep_merge(self, base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
        """Deep merge two dictionaries."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result
