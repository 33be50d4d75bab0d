"""
Wallet registry: the explicit ledger context shared by replay, trading and the
scheduler.

One registry per simulation. It owns the supply wallet, the wallet list, id
allocation and the reader/writer lock that guards every balance mutation and
list insertion.
"""

from __future__ import annotations

import logging
import random
from contextlib import contextmanager
from decimal import Decimal
from typing import Dict, Iterator, List, Optional

from simcoin.core.config import DEFAULT_CONFIG, SYSTEM_ADDRESS, SimulationConfig
from simcoin.core.rw_lock import ReadWriteLock
from simcoin.core.transaction import DecimalLike, quantize_usd
from simcoin.core.wallet import Wallet, WalletSnapshot

logger = logging.getLogger(__name__)

SUPPLY_WALLET_ID = 0

# (tier, cycle, last n of each cycle, low USD, high USD), checked in order
_USD_TIERS = (
    ("ultra", 500, 50, 100_000_000.0, 10_000_000_000.0),
    ("mega", 100, 15, 1_000_000.0, 100_000_000.0),
    ("large", 25, 10, 50_000.0, 10_000_000.0),
)
_NORMAL_USD_RANGE = (5_000.0, 49_999.9)


class WalletRegistry:
    """Thread-safe collection of wallets for one simulation."""

    def __init__(
        self,
        config: Optional[SimulationConfig] = None,
        rng: Optional[random.Random] = None,
        supply_wallet: Optional[Wallet] = None,
    ) -> None:
        self.config = config or DEFAULT_CONFIG
        self.rng = rng or random.Random()
        self.lock = ReadWriteLock()

        self.supply_wallet = supply_wallet or Wallet(SUPPLY_WALLET_ID)
        self._wallets: List[Wallet] = [self.supply_wallet]
        self._by_address: Dict[str, Wallet] = {self.supply_wallet.address: self.supply_wallet}
        self._next_id = self.supply_wallet.wallet_id + 1
        self._peak_wallet_count = 0

    @property
    def system_address(self) -> str:
        return SYSTEM_ADDRESS

    @property
    def exchange_address(self) -> str:
        return self.config.exchange_address

    @contextmanager
    def read_locked(self) -> Iterator[None]:
        with self.lock.read_locked():
            yield

    @contextmanager
    def write_locked(self) -> Iterator[None]:
        with self.lock.write_locked():
            yield

    def add(self, wallet: Wallet) -> Wallet:
        """Register an existing wallet. Addresses must be unique."""
        with self.lock.write_locked():
            if wallet.address in self._by_address:
                raise ValueError(f"Wallet {wallet.address[:16]}... is already registered")
            self._wallets.append(wallet)
            self._by_address[wallet.address] = wallet
            self._next_id = max(self._next_id, wallet.wallet_id + 1)
            self._peak_wallet_count = max(self._peak_wallet_count, len(self._wallets) - 1)
        logger.info(
            "Wallet registered",
            extra={
                "event": "registry.wallet_added",
                "wallet_id": wallet.wallet_id,
                "address": wallet.address[:16] + "...",
                "initial_usd": str(wallet.initial_usd),
            },
        )
        return wallet

    def create_user_wallet(self, initial_usd: Optional[DecimalLike] = None) -> Wallet:
        """Create and register a synthetic user wallet (no SC is granted here)."""
        with self.lock.write_locked():
            wallet_id = self._next_id
            self._next_id += 1
            usd = quantize_usd(initial_usd) if initial_usd is not None else self._draw_initial_usd(wallet_id)
        return self.add(Wallet(wallet_id, usd))

    def _draw_initial_usd(self, wallet_id: int) -> Decimal:
        # User wallet ids start at 1; tier position is zero-based.
        position = wallet_id - 1
        for _name, cycle, top_n, low, high in _USD_TIERS:
            if position % cycle >= cycle - top_n:
                return quantize_usd(self.rng.uniform(low, high))
        low, high = _NORMAL_USD_RANGE
        return quantize_usd(self.rng.uniform(low, high))

    def find_by_address(self, address: str) -> Optional[Wallet]:
        with self.lock.read_locked():
            return self._by_address.get(address)

    def wallets(self) -> List[Wallet]:
        """Copy of the wallet list, supply wallet first."""
        with self.lock.read_locked():
            return list(self._wallets)

    def user_wallets(self) -> List[Wallet]:
        with self.lock.read_locked():
            return [w for w in self._wallets if w is not self.supply_wallet]

    def snapshots(self) -> List[WalletSnapshot]:
        with self.lock.read_locked():
            return [w.snapshot() for w in self._wallets]

    @property
    def peak_wallet_count(self) -> int:
        """Highest number of user wallets ever registered."""
        with self.lock.read_locked():
            return self._peak_wallet_count

    def __len__(self) -> int:
        with self.lock.read_locked():
            return len(self._wallets)
