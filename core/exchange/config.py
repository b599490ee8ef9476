from __future__ import annotations

"""
Exchange Configuration Management
=================================

SSOT (Single Source of Truth) configuration for exchange adapters:
- Credentials from arguments or environment (``.env`` honoured)
- Per-exchange settings with defaults (base URL, timeout, source mode)
- JSON persistence through ``ExchangeConfigManager``
- YAML loading validated by a pydantic model
"""

import json
import logging
import os
from dataclasses import asdict, dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

from core.exchange.common import SourceMode, ValidationError

logger = logging.getLogger(__name__)


class ExchangeType(str, Enum):
    BITFINEX = "bitfinex"
    KRAKEN = "kraken"
    LIQUID = "liquid"


@dataclass
class ExchangeCredentials:
    """Exchange API credentials."""

    api_key: str
    api_secret: str

    @classmethod
    def from_env(cls, exchange_name: str) -> "ExchangeCredentials":
        """Load ``<NAME>_API_KEY`` / ``<NAME>_API_SECRET`` (after reading ``.env``)."""
        load_dotenv()
        api_key = os.getenv(f"{exchange_name.upper()}_API_KEY", "")
        api_secret = os.getenv(f"{exchange_name.upper()}_API_SECRET", "")
        return cls(api_key=api_key, api_secret=api_secret)

    def __repr__(self) -> str:
        masked = f"{self.api_key[:4]}..." if self.api_key else ""
        return f"ExchangeCredentials(api_key={masked!r}, api_secret=***)"


_DEFAULT_BASE_URLS = {
    ExchangeType.BITFINEX: "https://api.bitfinex.com",
    ExchangeType.KRAKEN: "https://api.kraken.com/0",
    ExchangeType.LIQUID: "https://api.liquid.com",
}


@dataclass
class ExchangeSettings:
    """Exchange-specific settings."""

    type: ExchangeType
    source: SourceMode
    base_url: str
    timeout_ms: int
    snapshot_path: Optional[str] = None

    @classmethod
    def get_defaults(cls, exchange_type: ExchangeType) -> "ExchangeSettings":
        return cls(
            type=exchange_type,
            source=SourceMode.EXCHANGE_API,
            base_url=_DEFAULT_BASE_URLS[exchange_type],
            timeout_ms=10000,
        )


@dataclass
class ExchangeConfig:
    """Complete exchange configuration."""

    name: str
    credentials: ExchangeCredentials
    settings: ExchangeSettings
    metadata: Dict[str, Any]

    @classmethod
    def create(
        cls,
        name: str,
        exchange_type: ExchangeType,
        api_key: str = "",
        api_secret: str = "",
        **overrides,
    ) -> "ExchangeConfig":
        if not api_key or not api_secret:
            credentials = ExchangeCredentials.from_env(name)
        else:
            credentials = ExchangeCredentials(api_key=api_key, api_secret=api_secret)

        settings = ExchangeSettings.get_defaults(ExchangeType(exchange_type))
        for key, value in overrides.items():
            if key == "source":
                settings.source = SourceMode(value)
            elif hasattr(settings, key) and key != "type":
                setattr(settings, key, value)
            else:
                logger.warning(f"Ignoring unknown setting {key!r} for {name}")

        metadata = {
            "version": "1.0",
            "description": f"{name} exchange configuration",
        }
        return cls(name=name, credentials=credentials, settings=settings, metadata=metadata)

    def to_dict(self) -> Dict[str, Any]:
        settings = asdict(self.settings)
        settings["type"] = self.settings.type.value
        settings["source"] = self.settings.source.value
        return {
            "name": self.name,
            "credentials": asdict(self.credentials),
            "settings": settings,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExchangeConfig":
        credentials = ExchangeCredentials(**data["credentials"])
        settings_data = data["settings"]
        exchange_type = ExchangeType(settings_data["type"])
        settings = ExchangeSettings(
            type=exchange_type,
            source=SourceMode(settings_data.get("source", SourceMode.EXCHANGE_API.value)),
            base_url=settings_data.get("base_url") or _DEFAULT_BASE_URLS[exchange_type],
            timeout_ms=int(settings_data.get("timeout_ms", 10000)),
            snapshot_path=settings_data.get("snapshot_path"),
        )
        return cls(
            name=data["name"],
            credentials=credentials,
            settings=settings,
            metadata=data.get("metadata", {}),
        )

    def is_valid(self) -> bool:
        if not self.name:
            return False
        if not self.settings.base_url.startswith(("http://", "https://")):
            return False
        if self.settings.timeout_ms <= 0:
            return False
        if self.settings.source == SourceMode.JSON_FILE and not self.settings.snapshot_path:
            return False
        return True

    def get_summary(self) -> str:
        return (
            f"Exchange: {self.name} ({self.settings.type.value})\n"
            f"Source: {self.settings.source.value}\n"
            f"Base URL: {self.settings.base_url}\n"
            f"Timeout: {self.settings.timeout_ms}ms\n"
            f"Credentials: {'present' if self.credentials.api_key and self.credentials.api_secret else 'missing'}"
        )


class ExchangeConfigManager:
    """Manager for exchange configurations persisted as JSON files."""

    def __init__(self, config_dir: Optional[Path] = None):
        self.config_dir = Path(config_dir or "configs/exchanges")
        self.config_dir.mkdir(parents=True, exist_ok=True)
        self._configs: Dict[str, ExchangeConfig] = {}
        self._load_configs()

    def _load_configs(self):
        for config_file in self.config_dir.glob("*.json"):
            try:
                with open(config_file, "r", encoding="utf-8") as f:
                    data = json.load(f)
                config = ExchangeConfig.from_dict(data)
            except (OSError, json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
                logger.warning(f"Failed to load config {config_file}: {e}")
                continue
            self._configs[config.name] = config
            logger.info(f"Loaded config for {config.name}")

    def _save_config(self, config: ExchangeConfig):
        config_file = self.config_dir / f"{config.name}.json"
        try:
            with open(config_file, "w", encoding="utf-8") as f:
                json.dump(config.to_dict(), f, indent=2)
        except OSError as e:
            logger.error(f"Failed to save config {config.name}: {e}")
            return
        logger.info(f"Saved config for {config.name}")

    def add_config(self, config: ExchangeConfig) -> ExchangeConfig:
        self._configs[config.name] = config
        self._save_config(config)
        return config

    def create_config(
        self,
        name: str,
        exchange_type: ExchangeType,
        api_key: str = "",
        api_secret: str = "",
        **overrides,
    ) -> ExchangeConfig:
        return self.add_config(ExchangeConfig.create(name, exchange_type, api_key, api_secret, **overrides))

    def get_config(self, name: str) -> Optional[ExchangeConfig]:
        return self._configs.get(name)

    def list_configs(self) -> List[str]:
        return list(self._configs.keys())

    def update_config(self, name: str, **updates) -> Optional[ExchangeConfig]:
        config = self._configs.get(name)
        if not config:
            return None

        for key, value in updates.items():
            if key == "source":
                config.settings.source = SourceMode(value)
            elif hasattr(config.settings, key) and key != "type":
                setattr(config.settings, key, value)
            elif hasattr(config.credentials, key):
                setattr(config.credentials, key, value)

        if config.is_valid():
            self._save_config(config)
            return config
        logger.error(f"Updated config for {name} is invalid")
        return None

    def delete_config(self, name: str) -> bool:
        if name not in self._configs:
            return False
        config_file = self.config_dir / f"{name}.json"
        try:
            config_file.unlink(missing_ok=True)
        except OSError as e:
            logger.error(f"Failed to delete config {name}: {e}")
            return False
        del self._configs[name]
        logger.info(f"Deleted config for {name}")
        return True


# ---- YAML ----


class ExchangeConfigModel(BaseModel):
    """One exchange entry of a YAML config file."""

    model_config = ConfigDict(extra="forbid")

    name: str
    type: ExchangeType
    source: SourceMode = SourceMode.EXCHANGE_API
    base_url: Optional[str] = None
    timeout_ms: int = Field(default=10000, gt=0)
    snapshot_path: Optional[str] = None
    api_key: str = ""
    api_secret: str = ""


class ExchangesFileModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    exchanges: List[ExchangeConfigModel] = Field(default_factory=list)


def load_configs_from_yaml(path: Path | str) -> List[ExchangeConfig]:
    """Parse ``exchanges:`` entries of a YAML file into ``ExchangeConfig`` objects.

    Missing credentials fall back to the environment.
    """
    path = Path(path)
    try:
        with path.open("r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ValidationError(f"Failed to load YAML '{path}': {e}") from e
    if not isinstance(raw, dict):
        raise ValidationError(f"YAML root must be a mapping: {path}")

    try:
        parsed = ExchangesFileModel(**raw)
    except ValueError as e:
        raise ValidationError(f"Invalid exchange config '{path}': {e}") from e

    configs = []
    for entry in parsed.exchanges:
        overrides: Dict[str, Any] = {
            "source": entry.source,
            "timeout_ms": entry.timeout_ms,
            "snapshot_path": entry.snapshot_path,
        }
        if entry.base_url:
            overrides["base_url"] = entry.base_url
        configs.append(
            ExchangeConfig.create(entry.name, entry.type, entry.api_key, entry.api_secret, **overrides)
        )
    logger.info(f"Loaded {len(configs)} exchange configs from {path}")
    return configs


# Global configuration manager instance
_config_manager: Optional[ExchangeConfigManager] = None


def get_config_manager() -> ExchangeConfigManager:
    global _config_manager
    if _config_manager is None:
        _config_manager = ExchangeConfigManager()
    return _config_manager


def get_exchange_config(name: str) -> Optional[ExchangeConfig]:
    return get_config_manager().get_config(name)


__all__ = [
    "ExchangeType",
    "ExchangeCredentials",
    "ExchangeSettings",
    "ExchangeConfig",
    "ExchangeConfigManager",
    "ExchangeConfigModel",
    "load_configs_from_yaml",
    "get_config_manager",
    "get_exchange_config",
]
