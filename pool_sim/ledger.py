"""Pool ledger and exit queue.

The ledger is the single source of truth for pool cash, capital locked in
manager positions and outstanding share tokens. Every lifecycle phase
mutates pool balances through it; the exit queue holds the withdrawal
obligations that cash could not cover when they were requested.

Open manager positions are carried as liabilities: the token price values
only what a close at the current price would leave to the pool, so a
manager's stake never shows up in what investors can redeem.
"""

import logging
from collections import deque
from dataclasses import dataclass, field, replace
from typing import Deque, Dict, Iterator, List, Optional, Tuple

from .state import ExitQueueEntry, ManagerAgent

logger = logging.getLogger(__name__)

# Balances and queue remainders below this are treated as zero
TOLERANCE = 1e-6


def split_manager_proceeds(proceeds: float, stake: float, pool_match: float, fee_rate: float) -> Tuple[float, float]:
    """Split a closed position's proceeds into (manager payout, pool amount).

    A gain pays the manager its stake plus `fee_rate` of the gain; the pool
    keeps its match plus the rest. On a loss the pool recovers up to its
    match first and the manager receives whatever is left.
    """
    pnl = proceeds - (stake + pool_match)
    if pnl >= 0:
        manager_payout = stake + pnl * fee_rate
    else:
        pool_recovered = min(proceeds, pool_match)
        manager_payout = max(0.0, proceeds - pool_recovered)
    return manager_payout, proceeds - manager_payout


@dataclass
class PoolLedger:
    """Aggregate pool balances.

    `cash` is idle USD, `locked_asset` the asset quantity deployed by open
    manager positions. Flow counters accumulate external inflows and payouts
    so accounting closure can be checked per step.
    """
    cash: float = 0.0
    locked_asset: float = 0.0
    total_tokens: float = 0.0
    cumulative_fees: float = 0.0
    total_inflow: float = 0.0           # Deposits, top-ups and manager stakes
    total_outflow: float = 0.0          # Investor and manager payouts
    positions: Dict[str, ManagerAgent] = field(default_factory=dict)  # Open manager positions by id

    def pool_value(self, price: float) -> float:
        """Gross value: idle cash plus locked capital at `price`."""
        return self.cash + self.locked_asset * price

    def manager_claims(self, price: float) -> float:
        """What closing every open position at `price` would pay the managers."""
        return sum(
            split_manager_proceeds(m.asset_qty * price, m.stake, m.pool_match, m.fee_rate)[0]
            for m in self.positions.values()
        )

    def net_asset_value(self, price: float) -> float:
        """Investor-owned value: gross value less open manager claims."""
        return self.pool_value(price) - self.manager_claims(price)

    def token_price(self, price: float) -> float:
        """Investor-owned value per token, or a nominal 1 for an empty pool."""
        if self.total_tokens <= 0:
            return 1.0
        value = self.net_asset_value(price)
        if value > 0:
            return value / self.total_tokens
        return 1.0

    def accepts_deposits(self, price: float) -> bool:
        """False while tokens are outstanding against a worthless pool."""
        return self.total_tokens <= 0 or self.net_asset_value(price) > TOLERANCE

    def utilization(self, price: float) -> float:
        """Fraction of pool value deployed in manager positions."""
        value = self.pool_value(price)
        if value <= 0:
            return 0.0
        return (self.locked_asset * price) / value

    def deposit(self, usd: float, price: float) -> float:
        """Add investor cash and mint tokens at the pre-deposit token price.

        Returns the tokens minted; nothing is taken when the pool refuses
        deposits (see `accepts_deposits`).
        """
        if usd <= 0 or not self.accepts_deposits(price):
            return 0.0
        minted = usd / self.token_price(price)
        self.cash += usd
        self.total_tokens += minted
        self.total_inflow += usd
        return minted

    def burn(self, tokens: float, price: float) -> float:
        """Retire `tokens` and return their USD value at the current token price.

        Cash is not touched; payment goes through `withdraw`.
        """
        value = tokens * self.token_price(price)
        self.retire_tokens(tokens)
        return value

    def retire_tokens(self, tokens: float) -> None:
        self.total_tokens = max(0.0, self.total_tokens - tokens)
        if self.total_tokens < TOLERANCE * 1e-3:
            self.total_tokens = 0.0

    def receive(self, usd: float) -> None:
        """External cash inflow that mints no tokens (manager stakes)."""
        if usd <= 0:
            return
        self.cash += usd
        self.total_inflow += usd

    def withdraw(self, usd: float) -> float:
        """Pay up to `usd` out of cash and return the amount actually paid."""
        paid = min(self.cash, max(0.0, usd))
        self.cash -= paid
        self.total_outflow += paid
        return paid

    def lock_capital(self, usd: float, price: float) -> float:
        """Move `usd` of cash into asset units; caller guarantees cash covers it."""
        usd = min(usd, self.cash)
        qty = usd / price
        self.cash -= usd
        self.locked_asset += qty
        return qty

    def unlock_capital(self, asset_qty: float, price: float) -> float:
        """Sell `asset_qty` of locked capital back into cash at `price`."""
        qty = min(asset_qty, self.locked_asset)
        self.locked_asset -= qty
        if self.locked_asset < TOLERANCE * 1e-3:
            self.locked_asset = 0.0
        usd = qty * price
        self.cash += usd
        return usd

    def record_fee(self, usd: float) -> None:
        self.cumulative_fees += usd

    def open_position(self, manager: ManagerAgent) -> None:
        self.positions[manager.id] = manager

    def close_position(self, manager_id: str) -> None:
        self.positions.pop(manager_id, None)


@dataclass
class Settlement:
    """Payment applied to a queue entry during a drain."""
    entry: ExitQueueEntry
    paid: float
    cleared: bool


class ExitQueue:
    """FIFO backlog of withdrawal shortfalls.

    Insertion order is priority order: a drain always pays the oldest entry
    first and an entry leaves the queue once its remainder is within
    tolerance of zero.
    """

    def __init__(self) -> None:
        self._entries: Deque[ExitQueueEntry] = deque()

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[ExitQueueEntry]:
        return iter(self._entries)

    def find(self, owner_id: str) -> Optional[ExitQueueEntry]:
        for entry in self._entries:
            if entry.owner_id == owner_id:
                return entry
        return None

    def enqueue(
        self,
        owner_id: str,
        owner_kind: str,
        shortfall_usd: float,
        requested_tokens: float,
        total_usd: float,
        paid_usd: float,
        step: int,
    ) -> ExitQueueEntry:
        """Queue a shortfall, or add it to the owner's existing entry."""
        entry = self.find(owner_id)
        if entry is not None:
            entry.remaining_usd += shortfall_usd
            entry.total_usd += total_usd
            entry.paid_usd += paid_usd
            entry.requested_tokens += requested_tokens
            return entry

        entry = ExitQueueEntry(
            owner_id=owner_id,
            owner_kind=owner_kind,
            requested_tokens=requested_tokens,
            total_usd=total_usd,
            remaining_usd=shortfall_usd,
            paid_usd=paid_usd,
            queued_step=step,
        )
        self._entries.append(entry)
        logger.debug("Queued %.2f USD for %s %s at step %d", shortfall_usd, owner_kind, owner_id, step)
        return entry

    def drain(self, ledger: PoolLedger) -> List[Settlement]:
        """Apply available cash to the oldest entries first."""
        settlements: List[Settlement] = []
        while self._entries and ledger.cash > 0:
            entry = self._entries[0]
            paid = ledger.withdraw(entry.remaining_usd)
            if paid <= 0:
                break
            entry.remaining_usd -= paid
            entry.paid_usd += paid
            cleared = entry.remaining_usd <= TOLERANCE
            if cleared:
                entry.remaining_usd = 0.0
                self._entries.popleft()
            settlements.append(Settlement(entry=entry, paid=paid, cleared=cleared))
            if not cleared:
                break
        return settlements

    def backlog_usd(self) -> float:
        return sum(entry.remaining_usd for entry in self._entries)

    def snapshot(self) -> List[ExitQueueEntry]:
        """Copies of the outstanding entries, oldest first."""
        return [replace(entry) for entry in self._entries]
