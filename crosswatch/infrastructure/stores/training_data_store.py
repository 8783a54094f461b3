"""
Training data store.

Feature points are persisted append-only as JSON lines, one file per symbol
per month, then held in a bounded per-symbol buffer.

Directory structure:
    ml_data/
        BTCUSDT/
            2026-09.jsonl
            2026-10.jsonl

Each line is either a point record or a label record:
    {"kind": "point", "point": {...FeaturePoint.to_dict()}}
    {"kind": "label", "symbol": "BTCUSDT", "timestamp": 1760000000000,
     "future_price_change": 1.23, "realized_price": 101.2}

Labels are appended, never rewritten in place; when reading, the first label
record for an identity wins. Undecodable lines are skipped and unreadable
files are treated as empty.
"""

from __future__ import annotations

import json
import os
from collections import deque
from pathlib import Path
from threading import Lock
from typing import Deque, Dict, Iterable, List, Optional, Tuple

import pandas as pd

from ...domain.exceptions import FeaturePointValidationError
from ...domain.ml.feature_point import FeaturePoint
from ...domain.symbols import SYMBOL_PATTERN, validate_symbol
from ...utils.logging_setup import get_logger
from ...utils.timezone import month_key

logger = get_logger(__name__)

DEFAULT_BUFFER_CAP = 1000


class TrainingDataStore:
    """
    Per-symbol feature point storage with durable append and label backfill.

    Thread-safe: sessions append from the event loop while training reads
    snapshots from worker threads.
    """

    def __init__(self, data_dir: Path, buffer_cap: int = DEFAULT_BUFFER_CAP, export_dir: Optional[Path] = None):
        """
        Args:
            data_dir: Root directory for per-symbol monthly files.
            buffer_cap: Maximum in-memory points per symbol.
            export_dir: Destination for CSV exports (defaults to data_dir/exports).
        """
        self._data_dir = Path(data_dir)
        self._data_dir.mkdir(parents=True, exist_ok=True)
        self._export_dir = Path(export_dir) if export_dir else self._data_dir / "exports"
        self._buffer_cap = buffer_cap
        self._buffers: Dict[str, Deque[FeaturePoint]] = {}
        self._lock = Lock()

    @property
    def buffer_cap(self) -> int:
        return self._buffer_cap

    def _symbol_dir(self, symbol: str) -> Path:
        return self._data_dir / validate_symbol(symbol)

    def _month_path(self, symbol: str, timestamp: int) -> Path:
        return self._symbol_dir(symbol) / f"{month_key(timestamp)}.jsonl"

    def _buffer(self, symbol: str) -> Deque[FeaturePoint]:
        buf = self._buffers.get(symbol)
        if buf is None:
            buf = deque(maxlen=self._buffer_cap)
            self._buffers[symbol] = buf
        return buf

    def _append_line(self, path: Path, record: dict) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "a", encoding="utf-8") as f:
            f.write(json.dumps(record) + "\n")
            f.flush()
            os.fsync(f.fileno())

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def _read_file(self, path: Path) -> List[FeaturePoint]:
        """Merge point and label records of one monthly file, in file order."""
        points: Dict[int, FeaturePoint] = {}
        try:
            with open(path, encoding="utf-8") as f:
                lines = f.readlines()
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Unreadable training file {path}, treating as empty: {e}")
            return []

        for line_no, line in enumerate(lines, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
                kind = record.get("kind")
                if kind == "point":
                    point = FeaturePoint.from_dict(record["point"])
                    points.setdefault(point.timestamp, point)
                elif kind == "label":
                    ts = int(record["timestamp"])
                    existing = points.get(ts)
                    if existing is not None and not existing.labeled:
                        points[ts] = existing.with_label(float(record["future_price_change"]))
                else:
                    raise ValueError(f"unknown record kind {kind!r}")
            except (json.JSONDecodeError, KeyError, TypeError, ValueError, AttributeError,
                    FeaturePointValidationError) as e:
                logger.warning(f"Skipping malformed record {path.name}:{line_no}: {e}")

        return sorted(points.values(), key=lambda p: p.timestamp)

    def _month_files(self, symbol: str) -> List[Path]:
        symbol_dir = self._symbol_dir(symbol)
        if not symbol_dir.exists():
            return []
        return sorted(symbol_dir.glob("*.jsonl"))

    def load_history(self, symbol: str) -> List[FeaturePoint]:
        """Every persisted point of a symbol, oldest first."""
        history: List[FeaturePoint] = []
        for path in self._month_files(symbol):
            history.extend(self._read_file(path))
        return history

    def labeled_points(self, symbol: str) -> List[FeaturePoint]:
        """Persisted points with a label, oldest first."""
        return [p for p in self.load_history(symbol) if p.labeled]

    def known_symbols(self) -> List[str]:
        return sorted(
            p.name for p in self._data_dir.iterdir()
            if p.is_dir() and SYMBOL_PATTERN.match(p.name)
        )

    def warm_buffers(self) -> Dict[str, int]:
        """
        Fill in-memory buffers from the newest persisted points.

        Returns:
            Points loaded per symbol.
        """
        loaded: Dict[str, int] = {}
        for symbol in self.known_symbols():
            recent: Deque[FeaturePoint] = deque(maxlen=self._buffer_cap)
            for path in reversed(self._month_files(symbol)):
                for point in reversed(self._read_file(path)):
                    recent.appendleft(point)
                    if len(recent) == self._buffer_cap:
                        break
                if len(recent) == self._buffer_cap:
                    break
            with self._lock:
                buf = self._buffer(symbol)
                buf.clear()
                buf.extend(recent)
            loaded[symbol] = len(recent)
        if loaded:
            logger.info(
                f"Loaded training buffers for {len(loaded)} symbol(s)",
                extra={"data": loaded},
            )
        return loaded

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def append(self, point: FeaturePoint) -> None:
        """
        Validate, persist, then buffer a feature point.

        Raises:
            FeaturePointValidationError: If a derived feature is missing or not finite.
            InvalidSymbolError: If the symbol is not a safe storage key.
        """
        point.validate()
        path = self._month_path(point.symbol, point.timestamp)
        with self._lock:
            self._append_line(path, {"kind": "point", "point": point.to_dict()})
            self._buffer(point.symbol).append(point)
        logger.debug(f"Recorded feature point {point.symbol}@{point.timestamp}")

    def backfill_label(self, symbol: str, timestamp: int, realized_price: float) -> bool:
        """
        Write the future price change into one point's label.

        Returns:
            True if the label was written. False (with a warning) if the point
            is unknown or already labeled.
        """
        with self._lock:
            point = self._find(symbol, timestamp)
            if point is None:
                logger.warning(f"Label backfill for unknown point {symbol}@{timestamp}")
                return False
            if point.labeled:
                logger.warning(
                    f"Label already set for {symbol}@{timestamp}, ignoring repeat backfill",
                    extra={"data": {"existing": point.future_price_change, "realized_price": realized_price}},
                )
                return False

            if point.close == 0:
                change = 0.0
            else:
                change = (realized_price - point.close) / point.close * 100

            self._append_line(
                self._month_path(symbol, timestamp),
                {
                    "kind": "label",
                    "symbol": symbol,
                    "timestamp": timestamp,
                    "future_price_change": change,
                    "realized_price": realized_price,
                },
            )
            self._replace_in_buffer(point.with_label(change))

        logger.info(
            f"Labeled {symbol}@{timestamp}: {change:+.3f}%",
            extra={"data": {"symbol": symbol, "timestamp": timestamp, "change": change}},
        )
        return True

    def _find(self, symbol: str, timestamp: int) -> Optional[FeaturePoint]:
        for point in self._buffer(symbol):
            if point.timestamp == timestamp:
                return point
        for point in self._read_file(self._month_path(symbol, timestamp)):
            if point.timestamp == timestamp:
                return point
        return None

    def _replace_in_buffer(self, labeled: FeaturePoint) -> None:
        buf = self._buffer(labeled.symbol)
        for i, point in enumerate(buf):
            if point.timestamp == labeled.timestamp:
                buf[i] = labeled
                return

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def buffered(self, symbol: str) -> List[FeaturePoint]:
        """Snapshot of the in-memory buffer, oldest first."""
        with self._lock:
            return list(self._buffers.get(symbol, ()))

    def pending_labels(self) -> List[FeaturePoint]:
        """Buffered points still waiting for a label."""
        with self._lock:
            return [p for buf in self._buffers.values() for p in buf if not p.labeled]

    def stats(self) -> Dict[str, Tuple[int, int]]:
        """(buffered, labeled) counts per symbol."""
        with self._lock:
            return {
                symbol: (len(buf), sum(1 for p in buf if p.labeled))
                for symbol, buf in self._buffers.items()
            }

    def export_csv(self, symbol: str) -> Optional[Path]:
        """
        Write every persisted point of ``symbol`` to ``{export_dir}/{symbol}.csv``.

        Returns:
            The CSV path, or None when the symbol has no data.
        """
        history = self.load_history(symbol)
        if not history:
            return None

        self._export_dir.mkdir(parents=True, exist_ok=True)
        path = self._export_dir / f"{validate_symbol(symbol)}.csv"
        frame = pd.DataFrame([p.to_dict() for p in history])
        frame.to_csv(path, index=False)
        logger.info(f"Exported {len(frame)} points for {symbol} to {path}")
        return path

    def export_all(self, symbols: Optional[Iterable[str]] = None) -> Dict[str, Path]:
        exported: Dict[str, Path] = {}
        for symbol in symbols if symbols is not None else self.known_symbols():
            path = self.export_csv(symbol)
            if path is not None:
                exported[symbol] = path
        return exported
