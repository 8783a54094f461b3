"""Adapters implementing the domain ports."""

from .binance_futures import BinanceCandleStream, BinanceFuturesMarketData
from .file_model_registry import FileModelRegistry
from .log_alert_sink import LoggingAlertSink

__all__ = [
    "BinanceCandleStream",
    "BinanceFuturesMarketData",
    "FileModelRegistry",
    "LoggingAlertSink",
]
