"""
Market-impact price model.

No order book: each executed trade moves the quote by an amount proportional
to the traded volume and inversely proportional to the current price, capped
per trade and floored.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal
from typing import Deque, List, Optional, Tuple

from simcoin.core.config import DEFAULT_CONFIG, SimulationConfig
from simcoin.core.transaction import PRICE_QUANTUM, DecimalLike, quantize_price, to_decimal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PriceSnapshot:
    price: Decimal
    trades: int
    high: Decimal
    low: Decimal


class PriceModel:
    """Thread-safe quoted SC price in USD."""

    def __init__(
        self,
        initial_price: DecimalLike = Decimal("1.00"),
        floor: DecimalLike = Decimal("0.05"),
        max_move_percent: DecimalLike = Decimal("0.10"),
        volatility_factor: DecimalLike = Decimal("10000"),
        history_size: int = 500,
    ) -> None:
        self.floor = quantize_price(floor)
        if self.floor <= 0:
            raise ValueError("price floor must be positive")
        self.max_move_percent = to_decimal(max_move_percent)
        self.volatility_factor = to_decimal(volatility_factor)
        self._price = max(self.floor, quantize_price(initial_price))
        self._lock = threading.Lock()
        self._history: Deque[Tuple[float, Decimal]] = deque(maxlen=history_size)
        self._history.append((time.time(), self._price))
        self._trades = 0
        self._high = self._price
        self._low = self._price

    @classmethod
    def from_config(cls, config: Optional[SimulationConfig] = None) -> "PriceModel":
        config = config or DEFAULT_CONFIG
        return cls(
            initial_price=config.initial_price,
            floor=config.price_floor,
            max_move_percent=config.max_price_move_percent,
            volatility_factor=config.volatility_factor,
            history_size=config.price_history_size,
        )

    @property
    def current_price(self) -> Decimal:
        with self._lock:
            return self._price

    def apply_trade(self, amount_sc: DecimalLike, is_buy: bool) -> Decimal:
        """
        Move the price for an executed trade and return the new quote.

        Buys never lower the price and sells never raise it. A single call never
        moves the price by more than ``max_move_percent`` of the pre-trade
        price, and the result is never below ``floor``. Amounts <= 0 are no-ops.

        Raises:
            ValueError: amount is NaN or infinite
        """
        amount = to_decimal(amount_sc)
        if not amount.is_finite():
            raise ValueError(f"trade amount must be finite, got {amount_sc!r}")
        with self._lock:
            if amount <= 0:
                return self._price

            old = self._price
            delta = amount * self.volatility_factor / old
            cap = old * self.max_move_percent
            capped = delta > cap
            if capped:
                delta = cap
            # Truncate so rounding never exceeds the cap.
            delta = delta.quantize(PRICE_QUANTUM, rounding=ROUND_DOWN)
            new = old + delta if is_buy else old - delta
            if new < self.floor:
                new = self.floor

            self._price = new
            self._trades += 1
            self._high = max(self._high, new)
            self._low = min(self._low, new)
            self._history.append((time.time(), new))

        if capped:
            logger.debug(
                "Price move capped at %s%%",
                self.max_move_percent * 100,
                extra={
                    "event": "price.move_capped",
                    "amount_sc": str(amount),
                    "side": "buy" if is_buy else "sell",
                    "old_price": str(old),
                    "new_price": str(new),
                },
            )
        return new

    def history(self) -> List[Tuple[float, Decimal]]:
        """Recent (epoch seconds, price) samples, oldest first."""
        with self._lock:
            return list(self._history)

    def snapshot(self) -> PriceSnapshot:
        with self._lock:
            return PriceSnapshot(price=self._price, trades=self._trades, high=self._high, low=self._low)
