"""
Configuration manager with environment-based loading.

Supports:
- Base configuration (base.yaml)
- Environment-specific overrides (dev.yaml, prod.yaml)
- Secrets loading (secrets.yaml - gitignored)
"""

from __future__ import annotations
from pathlib import Path
from typing import Dict, Any, List
import yaml
import logging

from crosswatch.domain.exceptions import ConfigurationError

from .models import (
    AppConfig,
    StreamConfig,
    AlertConfig,
    MLConfig,
    StorageConfig,
    LoggingConfig,
)


logger = logging.getLogger(__name__)

MIN_RECONNECT_DELAY_SEC = 5.0


class ConfigManager:
    """
    Configuration manager with environment support.

    Loads configuration in this order:
    1. base.yaml (default config)
    2. {env}.yaml (environment-specific, e.g., dev.yaml)
    3. secrets.yaml (if exists, gitignored)

    Later configs override earlier ones.
    """

    def __init__(self, config_dir: str | Path = "config", env: str = "dev"):
        """
        Initialize config manager.

        Args:
            config_dir: Directory containing config files.
            env: Environment name (dev, prod, etc).
        """
        self.config_dir = Path(config_dir)
        self.env = env
        self.config: Dict[str, Any] = {}

    def load(self) -> AppConfig:
        """
        Load configuration from YAML files.

        Returns:
            AppConfig object.

        Raises:
            ConfigurationError: If base config is missing or any value is invalid.
        """
        base_path = self.config_dir / "base.yaml"
        if not base_path.exists():
            raise ConfigurationError(f"Base config not found: {base_path}")

        self.config = self._load_yaml(base_path)
        logger.info(f"Loaded base config from {base_path}")

        env_path = self.config_dir / f"{self.env}.yaml"
        if env_path.exists():
            env_config = self._load_yaml(env_path)
            self.config = self._merge_dicts(self.config, env_config)
            logger.info(f"Loaded {self.env} config from {env_path}")

        secrets_path = self.config_dir / "secrets.yaml"
        if secrets_path.exists():
            secrets = self._load_yaml(secrets_path)
            self.config = self._merge_dicts(self.config, secrets)
            logger.info("Loaded secrets")

        config = self._parse_config()
        self._validate(config)
        return config

    def _load_yaml(self, path: Path) -> Dict[str, Any]:
        """Load YAML file; anything but a mapping is rejected."""
        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"{path} must contain a mapping, got {type(data).__name__}")
        return data

    def _merge_dicts(self, base: Dict, override: Dict) -> Dict:
        """Deep merge two dicts (override wins)."""
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_dicts(result[key], value)
            else:
                result[key] = value
        return result

    def _section(self, name: str) -> Dict[str, Any]:
        section = self.config.get(name) or {}
        if not isinstance(section, dict):
            raise ConfigurationError(f"Config section '{name}' must be a mapping")
        return section

    def _parse_config(self) -> AppConfig:
        """Parse raw dict into AppConfig."""
        stream_raw = self._section("stream")
        alerts_raw = self._section("alerts")
        ml_raw = self._section("ml")
        storage_raw = self._section("storage")
        logging_raw = self._section("logging")

        try:
            stream = StreamConfig(
                interval=str(stream_raw.get("interval", "15m")),
                indicator_period=int(stream_raw.get("indicator_period", 200)),
                backfill_buffer=int(stream_raw.get("backfill_buffer", 100)),
                volume_threshold=float(stream_raw.get("volume_threshold", 100_000_000)),
                check_interval_sec=float(stream_raw.get("check_interval_sec", 300)),
                heartbeat_interval_sec=float(stream_raw.get("heartbeat_interval_sec", 60)),
                reconnect_delay_sec=float(stream_raw.get("reconnect_delay_sec", 5.0)),
                min_feature_candles=int(stream_raw.get("min_feature_candles", 30)),
                rest_base_url=str(stream_raw.get("rest_base_url", "https://fapi.binance.com")),
                ws_base_url=str(stream_raw.get("ws_base_url", "wss://fstream.binance.com/ws")),
                request_timeout_sec=float(stream_raw.get("request_timeout_sec", 10)),
                max_request_retries=int(stream_raw.get("max_request_retries", 3)),
            )

            alerts = AlertConfig(
                cooldown_sec=float(alerts_raw.get("cooldown_sec", 900)),
            )

            seed = ml_raw.get("random_seed")
            warning_mb = ml_raw.get("memory_warning_mb", 600)
            ml = MLConfig(
                enabled=bool(ml_raw.get("enabled", True)),
                retained_versions=int(ml_raw.get("retained_versions", 5)),
                backfill_horizon_sec=float(ml_raw.get("backfill_horizon_sec", 86400)),
                memory_high_water_mb=float(ml_raw.get("memory_high_water_mb", 900)),
                memory_warning_mb=float(warning_mb) if warning_mb is not None else None,
                min_training_points=int(ml_raw.get("min_training_points", 100)),
                hyperparameter_trials=int(ml_raw.get("hyperparameter_trials", 5)),
                random_seed=int(seed) if seed is not None else None,
                retrain_interval_sec=float(ml_raw.get("retrain_interval_sec", 43200)),
                persist_interval_sec=float(ml_raw.get("persist_interval_sec", 1800)),
                buffer_cap=int(ml_raw.get("buffer_cap", 1000)),
                model_cache_size=int(ml_raw.get("model_cache_size", 50)),
                ensemble_size=int(ml_raw.get("ensemble_size", 5)),
                use_ensemble=bool(ml_raw.get("use_ensemble", False)),
            )

            storage = StorageConfig(
                data_dir=str(storage_raw.get("data_dir", "./ml_data")),
                model_dir=str(storage_raw.get("model_dir", "./ml_models")),
                export_dir=str(storage_raw.get("export_dir", "./ml_exports")),
            )

            logging_config = LoggingConfig(
                level=str(logging_raw.get("level", "INFO")).upper(),
                json=bool(logging_raw.get("json", True)),
                log_dir=str(logging_raw.get("log_dir", "./logs")),
                console=bool(logging_raw.get("console", True)),
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Failed to parse config: {e}") from e

        return AppConfig(
            stream=stream,
            alerts=alerts,
            ml=ml,
            storage=storage,
            logging=logging_config,
            raw=self.config,
        )

    def _validate(self, config: AppConfig) -> None:
        """Range checks; every violation is reported at once."""
        errors: List[str] = []
        stream, ml = config.stream, config.ml

        positive = {
            "stream.indicator_period": stream.indicator_period,
            "stream.check_interval_sec": stream.check_interval_sec,
            "stream.heartbeat_interval_sec": stream.heartbeat_interval_sec,
            "stream.min_feature_candles": stream.min_feature_candles,
            "stream.request_timeout_sec": stream.request_timeout_sec,
            "stream.max_request_retries": stream.max_request_retries,
            "ml.backfill_horizon_sec": ml.backfill_horizon_sec,
            "ml.memory_high_water_mb": ml.memory_high_water_mb,
            "ml.min_training_points": ml.min_training_points,
            "ml.hyperparameter_trials": ml.hyperparameter_trials,
            "ml.retrain_interval_sec": ml.retrain_interval_sec,
            "ml.persist_interval_sec": ml.persist_interval_sec,
            "ml.model_cache_size": ml.model_cache_size,
            "ml.ensemble_size": ml.ensemble_size,
        }
        for key, value in positive.items():
            if value <= 0:
                errors.append(f"{key} must be positive (got {value})")

        if stream.backfill_buffer < 0:
            errors.append(f"stream.backfill_buffer must be >= 0 (got {stream.backfill_buffer})")
        if stream.volume_threshold < 0:
            errors.append(f"stream.volume_threshold must be >= 0 (got {stream.volume_threshold})")
        if stream.reconnect_delay_sec < MIN_RECONNECT_DELAY_SEC:
            errors.append(
                f"stream.reconnect_delay_sec must be >= {MIN_RECONNECT_DELAY_SEC} (got {stream.reconnect_delay_sec})"
            )
        if config.alerts.cooldown_sec < 0:
            errors.append(f"alerts.cooldown_sec must be >= 0 (got {config.alerts.cooldown_sec})")
        if ml.retained_versions < 1:
            errors.append(f"ml.retained_versions must be >= 1 (got {ml.retained_versions})")
        if ml.buffer_cap < 1:
            errors.append(f"ml.buffer_cap must be >= 1 (got {ml.buffer_cap})")
        if config.logging.level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            errors.append(f"logging.level is not a log level (got {config.logging.level})")

        if errors:
            raise ConfigurationError("Invalid configuration: " + "; ".join(errors))
