"""
Synthetic market activity.

``NetworkSimulator`` drives four periodic activities, each on its own daemon
thread waiting on a ``threading.Event``:

- wallet creation, slowing down every ``wallet_period_threshold`` wallets
- trade generation, speeding up as the peak wallet count grows
- the UI refresh tick
- the price refresh tick

Chain-mutating work runs only while holding the control lock with the running
flag set. ``stop()`` clears the flag under that lock, so a trade already in
flight finishes but nothing new starts once ``stop()`` returns.
"""

from __future__ import annotations

import logging
import random
import threading
from typing import Callable, Dict, Optional, Tuple

from simcoin.core.blockchain_exceptions import SimcoinError
from simcoin.core.config import DEFAULT_CONFIG, SimulationConfig
from simcoin.core.price_model import PriceModel
from simcoin.core.trade_executor import TradeExecutor, usd_fraction
from simcoin.core.transaction import Transaction
from simcoin.core.wallet import PositionState, Wallet
from simcoin.core.wallet_registry import WalletRegistry

logger = logging.getLogger(__name__)

Callback = Callable[[], None]
Dispatcher = Callable[[Callback], None]

_JOIN_TIMEOUT_SECONDS = 5


def _call_inline(callback: Callback) -> None:
    callback()


class NetworkSimulator:
    """Background trade and wallet generator for one simulation."""

    def __init__(
        self,
        executor: TradeExecutor,
        registry: WalletRegistry,
        price_model: PriceModel,
        config: Optional[SimulationConfig] = None,
        rng: Optional[random.Random] = None,
        dispatcher: Optional[Dispatcher] = None,
    ) -> None:
        self.executor = executor
        self.registry = registry
        self.price_model = price_model
        self.config = config or DEFAULT_CONFIG
        self.rng = rng or random.Random()
        self._dispatcher = dispatcher or _call_inline

        self._control_lock = threading.RLock()
        self._running = False
        self._wallet_generation = False
        self._stop_event = threading.Event()
        self._wallet_stop_event = threading.Event()
        self._threads: Dict[str, threading.Thread] = {}

        self._buy_bias = float(self.config.buy_bias)
        self._wallet_period_ms = self.config.wallet_creation_period_ms
        self._trade_window = (self.config.trade_delay_min_base_ms, self.config.trade_delay_max_base_ms)

        self._on_update: Optional[Callback] = None
        self._on_price_update: Optional[Callback] = None

    # ------------------------------------------------------------------
    # Controls
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        with self._control_lock:
            return self._running

    @property
    def is_generating_wallets(self) -> bool:
        with self._control_lock:
            return self._running and self._wallet_generation

    @property
    def buy_bias(self) -> float:
        return self._buy_bias

    @property
    def wallet_creation_period_ms(self) -> int:
        return self._wallet_period_ms

    def set_buy_bias(self, bias: float) -> float:
        """Set the probability of buying, clamped to [0, 1]. Returns the stored value."""
        self._buy_bias = min(1.0, max(0.0, float(bias)))
        logger.info(
            "Buy bias set to %.2f",
            self._buy_bias,
            extra={"event": "simulator.buy_bias_changed", "buy_bias": self._buy_bias},
        )
        return self._buy_bias

    def set_on_update(self, callback: Optional[Callback]) -> None:
        self._on_update = callback

    def set_on_price_update(self, callback: Optional[Callback]) -> None:
        self._on_price_update = callback

    def start(self) -> bool:
        """Start all periodic activities. Returns False if already running."""
        with self._control_lock:
            if self._running:
                return False
            self._running = True
            # A fresh event per run: a thread that outlived stop() keeps seeing its own set event.
            self._stop_event = threading.Event()
            self._spawn("trades", self._trade_loop, self._stop_event)
            self._spawn("ui-refresh", self._ui_loop, self._stop_event)
            self._spawn("price-refresh", self._price_loop, self._stop_event)
            self._start_wallet_generation_locked()

        logger.info(
            "Network simulation started",
            extra={
                "event": "simulator.started",
                "buy_bias": self._buy_bias,
                "wallet_period_ms": self._wallet_period_ms,
            },
        )
        return True

    def stop(self) -> None:
        """Stop every activity. Idempotent."""
        with self._control_lock:
            if not self._running:
                return
            self._running = False
            self._wallet_generation = False
            self._stop_event.set()
            self._wallet_stop_event.set()
            threads = list(self._threads.values())
            self._threads.clear()

        self._join(threads)
        logger.info("Network simulation stopped", extra={"event": "simulator.stopped"})

    def start_wallet_generation(self) -> bool:
        """Resume wallet creation. Only effective while the simulation runs."""
        with self._control_lock:
            if not self._running or self._wallet_generation:
                return False
            self._start_wallet_generation_locked()
        logger.info(
            "Wallet generation started",
            extra={"event": "simulator.wallet_generation_started", "period_ms": self._wallet_period_ms},
        )
        return True

    def stop_wallet_generation(self) -> None:
        with self._control_lock:
            if not self._wallet_generation:
                return
            self._wallet_generation = False
            self._wallet_stop_event.set()
            thread = self._threads.pop("wallets", None)

        if thread is not None:
            self._join([thread])
        logger.info("Wallet generation stopped", extra={"event": "simulator.wallet_generation_stopped"})

    def _start_wallet_generation_locked(self) -> None:
        self._wallet_generation = True
        self._wallet_stop_event = threading.Event()
        self._spawn("wallets", self._wallet_loop, self._stop_event, self._wallet_stop_event)

    def _spawn(self, name: str, target: Callable[..., None], *events: threading.Event) -> None:
        thread = threading.Thread(target=target, args=events, name=f"simcoin-{name}", daemon=True)
        self._threads[name] = thread
        thread.start()

    def _join(self, threads) -> None:
        current = threading.current_thread()
        for thread in threads:
            if thread is not current:
                thread.join(timeout=_JOIN_TIMEOUT_SECONDS)

    # ------------------------------------------------------------------
    # Work units (also callable directly)
    # ------------------------------------------------------------------

    def create_wallet(self) -> Wallet:
        """Create a synthetic user wallet and grant it the initial SC."""
        wallet = self.registry.create_user_wallet()
        self.executor.grant(wallet)
        return wallet

    def simulate_trade(self) -> Optional[Transaction]:
        """
        Pick a random user wallet and advance its position state machine once.

        Neutral wallets open a long with probability ``buy_bias`` and a short
        otherwise. Long wallets close part of the long with probability
        ``1 - buy_bias``; short wallets cover part of the short with
        probability ``buy_bias``. The liquidation check runs afterwards.

        Returns:
            The committed transaction, or None if nothing was traded
        """
        wallets = self.registry.user_wallets()
        if not wallets:
            return None
        wallet = self.rng.choice(wallets)
        fraction = self.rng.uniform(float(self.config.trade_fraction_min), float(self.config.trade_fraction_max))
        bias = self._buy_bias
        roll = self.rng.random()

        with self.registry.read_locked():
            state = wallet.position_state
            usd = wallet.usd_balance
            long_usd = wallet.long_position_usd
            short_usd = wallet.short_position_usd

        tx = None
        if state is PositionState.NEUTRAL:
            if roll < bias:
                tx = self.executor.open_long(wallet, usd_fraction(usd, fraction))
            else:
                margin = usd * self.config.short_margin_ratio
                tx = self.executor.open_short(wallet, usd_fraction(margin, fraction))
        elif state is PositionState.LONG:
            if roll < 1.0 - bias:
                tx = self.executor.close_long(wallet, usd_fraction(long_usd, fraction))
        elif state is PositionState.SHORT:
            if roll < bias:
                tx = self.executor.close_short(wallet, usd_fraction(short_usd, fraction))

        self.executor.check_liquidation(wallet)
        return tx

    def trade_delay_window(self) -> Tuple[int, int]:
        """[min, max] delay in ms before the next trade, from the peak wallet count."""
        reduction = self.registry.peak_wallet_count * self.config.trade_delay_reduction_per_wallet_ms
        low = max(self.config.trade_delay_floor_ms, self.config.trade_delay_min_base_ms - reduction)
        high = max(low, self.config.trade_delay_max_base_ms - reduction)
        return low, high

    def next_wallet_period_ms(self, user_wallet_count: int) -> int:
        """Wallet-creation period after ``user_wallet_count`` wallets exist."""
        period = self._wallet_period_ms
        threshold = self.config.wallet_period_threshold
        if user_wallet_count > 0 and threshold > 0 and user_wallet_count % threshold == 0:
            period = max(
                int(period * self.config.wallet_period_multiplier),
                self.config.min_wallet_creation_period_ms,
            )
        return period

    # ------------------------------------------------------------------
    # Loops
    # ------------------------------------------------------------------

    def _run_guarded(self, action: Callable[[], object], wallets: bool = False) -> bool:
        with self._control_lock:
            if not self._running or (wallets and not self._wallet_generation):
                return False
            try:
                action()
            except (SimcoinError, ValueError, ArithmeticError, RuntimeError) as exc:
                logger.error(
                    "Simulation step failed: %s",
                    exc,
                    extra={"event": "simulator.iteration_failed", "error_type": type(exc).__name__},
                )
            return True

    def _trade_loop(self, stop_event: threading.Event) -> None:
        delay_ms = self.config.initial_trade_delay_ms
        while not stop_event.wait(delay_ms / 1000.0):
            if not self._run_guarded(self.simulate_trade):
                break
            window = self.trade_delay_window()
            if window != self._trade_window:
                self._trade_window = window
                logger.info(
                    "Trade delay window now %d-%d ms",
                    window[0],
                    window[1],
                    extra={
                        "event": "simulator.trade_window_changed",
                        "min_ms": window[0],
                        "max_ms": window[1],
                        "peak_wallets": self.registry.peak_wallet_count,
                    },
                )
            delay_ms = self.rng.randint(window[0], window[1])

    def _wallet_loop(self, run_stop_event: threading.Event, stop_event: threading.Event) -> None:
        while not stop_event.wait(self._wallet_period_ms / 1000.0):
            if run_stop_event.is_set() or not self._run_guarded(self._create_wallet_step, wallets=True):
                break

    def _create_wallet_step(self) -> None:
        self.create_wallet()
        user_count = len(self.registry.user_wallets())
        period = self.next_wallet_period_ms(user_count)
        if period != self._wallet_period_ms:
            self._wallet_period_ms = period
            logger.info(
                "Wallet threshold reached (%d wallets); creation period now %d ms",
                user_count,
                period,
                extra={"event": "simulator.wallet_period_changed", "wallets": user_count, "period_ms": period},
            )

    def _ui_loop(self, stop_event: threading.Event) -> None:
        while not stop_event.wait(self.config.ui_refresh_period_ms / 1000.0):
            self._dispatch(self._on_update)

    def _price_loop(self, stop_event: threading.Event) -> None:
        while not stop_event.wait(self.config.price_refresh_period_ms / 1000.0):
            self._dispatch(self._on_price_update)

    def _dispatch(self, callback: Optional[Callback]) -> None:
        if callback is None or not self.is_running:
            return
        try:
            self._dispatcher(callback)
        except Exception as exc:  # host UI callbacks may raise anything
            logger.error(
                "UI callback failed: %s",
                exc,
                extra={"event": "simulator.callback_failed", "error_type": type(exc).__name__},
            )
