"""Ports the application layer depends on."""

from .alert_sink import AlertSink
from .market_data import CandleStream, EligibleSymbol, MarketDataProvider
from .model_registry import ModelRegistryPort, ModelVersion

__all__ = [
    "AlertSink",
    "CandleStream",
    "EligibleSymbol",
    "MarketDataProvider",
    "ModelRegistryPort",
    "ModelVersion",
]
