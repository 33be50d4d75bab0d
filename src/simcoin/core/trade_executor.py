"""
Trade admission and commit.

Every trade-originating path (scheduler trades, wallet-creation grants,
liquidation) goes through ``TradeExecutor``. Admission checks, block append and
incremental replay run under one commit lock, so the wallet view is always
replayed in chain order and two checks never race on the same balances.

Rejections (insufficient funds or margin, below-minimum sizes, wrong position
state) return ``None``; nothing on this path raises for a declined trade.
"""

from __future__ import annotations

import logging
import threading
from decimal import ROUND_CEILING, Decimal
from typing import Iterable, List, Optional, Tuple

from simcoin.core.block import Block
from simcoin.core.blockchain import Blockchain
from simcoin.core.config import DEFAULT_CONFIG, SimulationConfig
from simcoin.core.ledger_replay import LedgerReplayEngine
from simcoin.core.price_model import PriceModel
from simcoin.core.transaction import (
    SC_QUANTUM,
    DecimalLike,
    TradeKind,
    Transaction,
    quantize_price,
    quantize_sc,
    quantize_usd,
    to_decimal,
)
from simcoin.core.wallet import ZERO, Wallet
from simcoin.core.wallet_registry import WalletRegistry

logger = logging.getLogger(__name__)

_BUY_KINDS = (TradeKind.OPEN_LONG, TradeKind.CLOSE_SHORT)
_SELL_KINDS = (TradeKind.CLOSE_LONG, TradeKind.OPEN_SHORT)


class TradeExecutor:
    """Validates, signs and commits trades against one chain and registry."""

    def __init__(
        self,
        chain: Blockchain,
        registry: WalletRegistry,
        replay: LedgerReplayEngine,
        price_model: PriceModel,
        config: Optional[SimulationConfig] = None,
    ) -> None:
        self.chain = chain
        self.registry = registry
        self.replay = replay
        self.price_model = price_model
        self.config = config or DEFAULT_CONFIG
        self._commit_lock = threading.RLock()

    @property
    def supply_wallet(self) -> Wallet:
        return self.registry.supply_wallet

    # ------------------------------------------------------------------
    # Sizing helpers
    # ------------------------------------------------------------------

    def _quote(self, price: Optional[DecimalLike]) -> Decimal:
        if price is None:
            return self.price_model.current_price
        return quantize_price(price)

    def _size(
        self,
        usd: Decimal,
        price: Decimal,
        usd_limit: Optional[Decimal] = None,
        final: bool = False,
    ) -> Optional[Tuple[Decimal, Decimal]]:
        """
        SC quantity and USD value for a notional, or None if below minimums.

        A ``final`` trade closes out a position: it is exempt from the USD
        minimum and trades at least ``min_trade_sc``.
        """
        if usd <= 0 or price <= 0:
            return None
        amount = quantize_sc(usd / price)
        if final:
            amount = max(amount, self.config.min_trade_sc)
        value = quantize_usd(amount * price)
        if usd_limit is not None and value > usd_limit:
            # Half-up rounding of the quantity may overshoot the cash on hand.
            amount -= SC_QUANTUM
            value = quantize_usd(amount * price)
        if amount < self.config.min_trade_sc:
            return None
        if not final and value < self.config.min_trade_usd:
            return None
        return amount, value

    def _reject(self, action: str, wallet: Wallet, reason: str, **fields) -> None:
        logger.debug(
            "%s rejected: %s",
            action,
            reason,
            extra={
                "event": "trade.rejected",
                "action": action,
                "reason": reason,
                "address": wallet.address[:16] + "...",
                **{k: str(v) for k, v in fields.items()},
            },
        )
        return None

    # ------------------------------------------------------------------
    # Trades
    # ------------------------------------------------------------------

    def open_long(self, wallet: Wallet, usd: DecimalLike, price: Optional[DecimalLike] = None) -> Optional[Transaction]:
        """Buy SC from the supply wallet for ``usd``."""
        requested = quantize_usd(usd)
        with self._commit_lock:
            quote = self._quote(price)
            with self.registry.read_locked():
                available = wallet.usd_balance
                short = wallet.short_position_usd
                held = wallet.sc_balance
                supply_sc = self.supply_wallet.sc_balance
            if short > 0:
                return self._reject("open_long", wallet, "short_position_open", short=short)
            if requested <= 0 or available < requested:
                return self._reject("open_long", wallet, "insufficient_usd", requested=requested, available=available)
            sized = self._size(requested, quote, usd_limit=available)
            if sized is None:
                return self._reject("open_long", wallet, "below_minimum", requested=requested)
            amount, value = sized
            if held + amount <= 0:
                # An open long always leaves the wallet holding SC.
                return self._reject("open_long", wallet, "sc_debt_outstanding", amount=amount, held=held)
            if supply_sc < amount + self.config.supply_reserve_sc:
                return self._reject("open_long", wallet, "insufficient_supply", amount=amount, supply=supply_sc)

            tx = self.supply_wallet.create_transaction(
                wallet.address,
                amount,
                f"SIMULATED: SC buy (LONG) for {value} USD",
                quote,
                kind=TradeKind.OPEN_LONG,
                usd_notional=value,
            )
            return self._commit_trade(tx, wallet)

    def close_long(self, wallet: Wallet, usd: DecimalLike, price: Optional[DecimalLike] = None) -> Optional[Transaction]:
        """
        Sell held SC to the exchange, reducing the long notional by up to ``usd``.

        The whole notional is closed when the remainder would fall below the
        minimum trade. A close that needs more SC than the wallet holds sells
        the entire holding, which closes the position.
        """
        with self._commit_lock:
            quote = self._quote(price)
            with self.registry.read_locked():
                long_usd = wallet.long_position_usd
                held = wallet.sc_balance
            if long_usd <= 0:
                return self._reject("close_long", wallet, "no_long_position")
            if held <= 0:
                return self._reject("close_long", wallet, "insufficient_sc", held=held)
            requested = min(quantize_usd(usd), long_usd)
            final = long_usd - requested < self.config.min_trade_usd
            if final:
                requested = long_usd
            sized = self._size(requested, quote, final=final)
            if sized is None:
                return self._reject("close_long", wallet, "below_minimum", requested=requested)
            amount, value = sized
            if amount > held:
                amount = held
                value = quantize_usd(amount * quote)

            tx = wallet.create_transaction(
                self.config.exchange_address,
                amount,
                f"SIMULATED: SC sale (LONG) for {value} USD",
                quote,
                kind=TradeKind.CLOSE_LONG,
                usd_notional=value,
            )
            return self._commit_trade(tx, wallet)

    def open_short(self, wallet: Wallet, usd: DecimalLike, price: Optional[DecimalLike] = None) -> Optional[Transaction]:
        """Sell SC the wallet does not hold, backed by margin on its USD."""
        requested = quantize_usd(usd)
        with self._commit_lock:
            quote = self._quote(price)
            with self.registry.read_locked():
                long_usd = wallet.long_position_usd
                margin = quantize_usd(wallet.usd_balance * self.config.short_margin_ratio)
            if long_usd > 0:
                return self._reject("open_short", wallet, "long_position_open", long=long_usd)
            if requested <= 0 or requested > margin:
                return self._reject("open_short", wallet, "insufficient_margin", requested=requested, margin=margin)
            sized = self._size(requested, quote)
            if sized is None:
                return self._reject("open_short", wallet, "below_minimum", requested=requested)
            amount, value = sized

            tx = wallet.create_transaction(
                self.config.exchange_address,
                amount,
                f"SIMULATED: SC short sale for {value} USD",
                quote,
                kind=TradeKind.OPEN_SHORT,
                usd_notional=value,
            )
            return self._commit_trade(tx, wallet)

    def close_short(self, wallet: Wallet, usd: DecimalLike, price: Optional[DecimalLike] = None) -> Optional[Transaction]:
        """
        Buy back SC from the supply wallet, capped by the wallet's USD and the supply.

        The whole notional is covered when the remainder would fall below the
        minimum trade, and a cover never buys back more SC than the wallet owes.
        """
        with self._commit_lock:
            quote = self._quote(price)
            with self.registry.read_locked():
                short = wallet.short_position_usd
                available = wallet.usd_balance
                debt = -wallet.sc_balance
                supply_sc = self.supply_wallet.sc_balance
            if short <= 0:
                return self._reject("close_short", wallet, "no_short_position")
            requested = min(quantize_usd(usd), short)
            if short - requested < self.config.min_trade_usd:
                requested = short
            final = requested == short or requested >= available
            requested = min(requested, available)
            sized = self._size(requested, quote, usd_limit=available, final=final)
            if sized is None:
                return self._reject("close_short", wallet, "below_minimum", requested=requested, available=available)
            amount, value = sized
            if 0 < debt < amount:
                amount = debt
                value = quantize_usd(amount * quote)
            max_amount = supply_sc - self.config.supply_reserve_sc
            if amount > max_amount:
                amount = quantize_sc(max_amount)
                if amount > max_amount:
                    amount -= SC_QUANTUM
                value = quantize_usd(amount * quote)
                if amount < self.config.min_trade_sc or value < self.config.min_trade_usd:
                    return self._reject("close_short", wallet, "insufficient_supply", supply=supply_sc)

            tx = self.supply_wallet.create_transaction(
                wallet.address,
                amount,
                f"SIMULATED: SC cover (SHORT) for {value} USD",
                quote,
                kind=TradeKind.CLOSE_SHORT,
                usd_notional=value,
            )
            return self._commit_trade(tx, wallet)

    def grant(self, wallet: Wallet, amount: Optional[DecimalLike] = None) -> Optional[Transaction]:
        """Transfer SC from the supply wallet with no USD settlement."""
        amount = quantize_sc(amount if amount is not None else self.config.initial_sc_grant)
        with self._commit_lock:
            with self.registry.read_locked():
                supply_sc = self.supply_wallet.sc_balance
            if supply_sc < amount:
                return self._reject("grant", wallet, "insufficient_supply", amount=amount, supply=supply_sc)
            tx = self.supply_wallet.create_transaction(
                wallet.address,
                amount,
                f"Initial grant of {amount} SC",
                self.price_model.current_price,
                kind=TradeKind.GRANT,
            )
            return self._commit_trade(tx, wallet)

    def check_liquidation(self, wallet: Wallet) -> Optional[Transaction]:
        """
        Force-cover a wallet whose SC is negative while its USD is exhausted.

        Commits one supply-funded LIQUIDATION transaction sized to the SC debt
        (rounded up to 0.001). Replay then zeroes the short notional and keeps
        USD at zero. Returns None when no margin call is due.
        """
        with self._commit_lock:
            with self.registry.read_locked():
                sc = wallet.sc_balance
                usd = wallet.usd_balance
            if sc >= 0 or usd > 0:
                return None

            debt = (-sc).quantize(SC_QUANTUM, rounding=ROUND_CEILING)
            tx = self.supply_wallet.create_transaction(
                wallet.address,
                debt,
                f"LIQUIDATION: forced cover of {debt} SC",
                self.price_model.current_price,
                kind=TradeKind.LIQUIDATION,
            )
            committed = self._commit_trade(tx, wallet)
        if committed is not None:
            logger.warning(
                "Wallet liquidated",
                extra={
                    "event": "trade.liquidation",
                    "address": wallet.address[:16] + "...",
                    "debt_sc": str(debt),
                    "txid": committed.tx_id[:16],
                },
            )
        return committed

    # ------------------------------------------------------------------
    # Commit
    # ------------------------------------------------------------------

    def _commit_trade(self, tx: Optional[Transaction], wallet: Wallet) -> Optional[Transaction]:
        if tx is None:
            return self._reject("commit", wallet, "signing_failed")
        self.commit([tx])
        logger.info(
            "%s executed: %s SC at %s",
            tx.kind.value,
            tx.amount,
            tx.price,
            extra={
                "event": "trade.executed",
                "kind": tx.kind.value,
                "address": wallet.address[:16] + "...",
                "amount_sc": str(tx.amount),
                "usd": str(tx.usd_notional),
                "price": str(tx.price),
                "txid": tx.tx_id[:16],
            },
        )
        return tx

    def commit(self, transactions: Iterable[Transaction]) -> Block:
        """
        Append one block with ``transactions``, replay it, then move the price.

        Buys (OPEN_LONG, CLOSE_SHORT) push the price up and sells (CLOSE_LONG,
        OPEN_SHORT) push it down. Grants and liquidations do not move it.
        """
        transactions: List[Transaction] = list(transactions)
        with self._commit_lock:
            block = self.chain.append_block(transactions)
            self.replay.incremental_replay()

        bought = sum((tx.amount for tx in transactions if tx.kind in _BUY_KINDS), ZERO)
        sold = sum((tx.amount for tx in transactions if tx.kind in _SELL_KINDS), ZERO)
        if bought > sold:
            self.price_model.apply_trade(bought - sold, is_buy=True)
        elif sold > bought:
            self.price_model.apply_trade(sold - bought, is_buy=False)
        return block

    def reset_chain(self) -> None:
        """Truncate the chain to genesis and rebuild wallet state (no trade may interleave)."""
        with self._commit_lock:
            self.chain.reset()
            self.replay.full_replay()


def usd_fraction(capacity: DecimalLike, fraction: DecimalLike) -> Decimal:
    """Cents-rounded share of a USD capacity."""
    return quantize_usd(to_decimal(capacity) * to_decimal(fraction))
