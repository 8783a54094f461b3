"""
Stream supervisor.

Owns the tracked-symbol registry and keeps it in line with the exchange's
volume-filtered universe:
- reconcile (default every 5 min): start sessions for newly eligible symbols,
  close sessions for symbols that dropped out, emit newSymbol events except
  on the very first pass
- heartbeat (default every 60s): restart any session whose transport is not
  open
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from threading import Lock
from typing import Callable, Dict, List, Optional

from ..domain.events.alert_events import AlertEvent, EventKind
from ..domain.exceptions import MarketDataError, MarketDataUnavailableError
from ..domain.interfaces.market_data import EligibleSymbol, MarketDataProvider
from ..utils.logging_setup import get_logger
from .symbol_session import SessionOutbox, SessionState, SymbolStreamSession

logger = get_logger(__name__)

SessionFactory = Callable[[str], SymbolStreamSession]


class SessionRegistry:
    """
    Symbol → session map with synchronized accessors.

    At most one session per symbol can be registered at a time.
    """

    def __init__(self) -> None:
        self._sessions: Dict[str, SymbolStreamSession] = {}
        self._lock = Lock()

    def add(self, session: SymbolStreamSession) -> None:
        with self._lock:
            if session.symbol in self._sessions:
                raise ValueError(f"session already registered for {session.symbol}")
            self._sessions[session.symbol] = session

    def get(self, symbol: str) -> Optional[SymbolStreamSession]:
        with self._lock:
            return self._sessions.get(symbol)

    def remove(self, symbol: str) -> Optional[SymbolStreamSession]:
        with self._lock:
            return self._sessions.pop(symbol, None)

    def symbols(self) -> List[str]:
        with self._lock:
            return sorted(self._sessions)

    def sessions(self) -> List[SymbolStreamSession]:
        with self._lock:
            return list(self._sessions.values())

    def __contains__(self, symbol: str) -> bool:
        with self._lock:
            return symbol in self._sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


@dataclass
class ReconcileResult:
    """Outcome of one reconciliation pass."""
    added: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    eligible: int = 0
    first_pass: bool = False
    failed: bool = False


class StreamSupervisor:
    """
    Starts, stops and heals symbol sessions.

    Args:
        provider: Market data port used for the eligible-symbol query.
        session_factory: Builds an unstarted session for a symbol.
        outbox: Shared channels; newSymbol events go to ``outbox.alerts``.
        volume_threshold: Minimum 24h quote volume for a symbol to be tracked.
        check_interval_sec: Seconds between reconciliation passes.
        heartbeat_interval_sec: Seconds between liveness scans.
    """

    def __init__(
        self,
        provider: MarketDataProvider,
        session_factory: SessionFactory,
        outbox: SessionOutbox,
        volume_threshold: float = 100_000_000,
        check_interval_sec: float = 300.0,
        heartbeat_interval_sec: float = 60.0,
        registry: Optional[SessionRegistry] = None,
    ):
        self._provider = provider
        self._session_factory = session_factory
        self._outbox = outbox
        self.volume_threshold = volume_threshold
        self.check_interval_sec = check_interval_sec
        self.heartbeat_interval_sec = heartbeat_interval_sec
        self.registry = registry or SessionRegistry()

        self._passes = 0
        self._reconcile_lock = asyncio.Lock()
        self._tasks: List[asyncio.Task] = []
        self._running = False
        self.heartbeat_restarts = 0

    @property
    def tracked_symbols(self) -> List[str]:
        return self.registry.symbols()

    async def reconcile(self) -> ReconcileResult:
        """
        Diff the eligible universe against tracked sessions.

        Raises:
            MarketDataError: If the eligible-symbol query fails.
        """
        async with self._reconcile_lock:
            first_pass = self._passes == 0
            eligible = await self._provider.list_eligible_symbols(self.volume_threshold)
            self._passes += 1

            by_symbol: Dict[str, EligibleSymbol] = {e.symbol: e for e in eligible}
            tracked = set(self.registry.symbols())
            result = ReconcileResult(eligible=len(by_symbol), first_pass=first_pass)

            for symbol in sorted(set(by_symbol) - tracked):
                session = self._session_factory(symbol)
                self.registry.add(session)
                await session.start()
                result.added.append(symbol)

                if not first_pass:
                    info = by_symbol[symbol]
                    await self._outbox.alerts.put(AlertEvent(
                        kind=EventKind.NEW_SYMBOL,
                        payload={
                            "symbol": symbol,
                            "volume": info.volume,
                            "price": info.price,
                            "change_pct": info.change_pct,
                        },
                    ))

            for symbol in sorted(tracked - set(by_symbol)):
                session = self.registry.remove(symbol)
                if session is not None:
                    await session.close()
                    result.removed.append(symbol)

        if result.added or result.removed:
            logger.info(
                f"Reconciled: +{len(result.added)} -{len(result.removed)}, tracking {len(self.registry)}",
                extra={"data": {"added": result.added, "removed": result.removed, "first_pass": first_pass}},
            )
        return result

    async def heartbeat(self) -> List[str]:
        """
        Restart every session whose transport is not open.

        Sessions still making their first connection are left alone.

        Returns:
            Symbols whose sessions were restarted.
        """
        restarted: List[str] = []
        for session in self.registry.sessions():
            if session.is_closed or session.is_transport_open:
                continue
            if session.state is SessionState.CONNECTING:
                continue
            if session.state is SessionState.DISCONNECTED:
                await session.start()
            else:
                await session.restart()
            restarted.append(session.symbol)

        if restarted:
            self.heartbeat_restarts += len(restarted)
            logger.warning(
                f"Heartbeat restarted {len(restarted)} session(s)",
                extra={"data": {"symbols": restarted}},
            )
        return restarted

    async def start(self) -> ReconcileResult:
        """
        Run the first reconciliation, then the periodic loops.

        Raises:
            MarketDataUnavailableError: If market data cannot be reached at startup.
        """
        try:
            result = await self.reconcile()
        except MarketDataError as e:
            raise MarketDataUnavailableError(f"cannot list eligible symbols at startup: {e}") from e

        self._running = True
        self._tasks = [
            asyncio.create_task(self._reconcile_loop(), name="supervisor-reconcile"),
            asyncio.create_task(self._heartbeat_loop(), name="supervisor-heartbeat"),
        ]
        logger.info(f"Stream supervisor started with {len(self.registry)} symbol(s)")
        return result

    async def stop(self) -> None:
        """Stop the loops and close every session."""
        self._running = False
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []

        for symbol in self.registry.symbols():
            session = self.registry.remove(symbol)
            if session is not None:
                await session.close()
        logger.info("Stream supervisor stopped")

    async def _reconcile_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.check_interval_sec)
            try:
                await self.reconcile()
            except MarketDataError as e:
                logger.warning(f"Reconciliation skipped: {e}")
            except Exception as e:
                logger.error(f"Reconciliation error: {e}", exc_info=True)

    async def _heartbeat_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.heartbeat_interval_sec)
            try:
                await self.heartbeat()
            except Exception as e:
                logger.error(f"Heartbeat error: {e}", exc_info=True)
