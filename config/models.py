"""Configuration data models."""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Any, Optional


@dataclass
class StreamConfig:
    """Market data streaming configuration."""
    interval: str = "15m"
    indicator_period: int = 200
    backfill_buffer: int = 100  # backfill limit = indicator_period + backfill_buffer
    volume_threshold: float = 100_000_000  # 24h quote volume
    check_interval_sec: float = 300
    heartbeat_interval_sec: float = 60
    reconnect_delay_sec: float = 5.0
    min_feature_candles: int = 30
    rest_base_url: str = "https://fapi.binance.com"
    ws_base_url: str = "wss://fstream.binance.com/ws"
    request_timeout_sec: float = 10
    max_request_retries: int = 3


@dataclass
class AlertConfig:
    """Crossover alert configuration."""
    cooldown_sec: float = 900


@dataclass
class MLConfig:
    """Model lifecycle configuration."""
    enabled: bool = True
    retained_versions: int = 5
    backfill_horizon_sec: float = 86400
    memory_high_water_mb: float = 900
    memory_warning_mb: Optional[float] = 600
    min_training_points: int = 100
    hyperparameter_trials: int = 5
    random_seed: Optional[int] = None
    retrain_interval_sec: float = 43200
    persist_interval_sec: float = 1800
    buffer_cap: int = 1000
    model_cache_size: int = 50
    ensemble_size: int = 5
    use_ensemble: bool = False


@dataclass
class StorageConfig:
    """On-disk locations."""
    data_dir: str = "./ml_data"
    model_dir: str = "./ml_models"
    export_dir: str = "./ml_exports"


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    json: bool = True
    log_dir: str = "./logs"
    console: bool = True


@dataclass
class AppConfig:
    """Complete application configuration."""
    stream: StreamConfig = field(default_factory=StreamConfig)
    alerts: AlertConfig = field(default_factory=AlertConfig)
    ml: MLConfig = field(default_factory=MLConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    raw: Dict[str, Any] = field(default_factory=dict)  # Merged YAML as loaded
