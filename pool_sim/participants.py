"""Investor and manager populations.

Each population owns its agents, applies arrival, top-up and exit decisions
for a step and records every realized movement in the shared transaction
log. Balances only change through the pool ledger; any payout cash cannot
cover goes to the exit queue.
"""

import logging
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional

import numpy as np

from .config import SimulationConfig
from .decisions import (
    entry_probability,
    logistic,
    pick_investor_type,
    pick_manager_type,
    sample_wealth,
    topup_probability,
)
from .ledger import TOLERANCE, ExitQueue, PoolLedger, Settlement, split_manager_proceeds
from .state import (
    INVESTOR_DEPOSIT,
    INVESTOR_EXIT,
    INVESTOR_PARTIAL_WITHDRAWAL,
    INVESTOR_TOPUP,
    MANAGER_ENTRY,
    MANAGER_EXIT,
    AgentType,
    InvestorAgent,
    ManagerAgent,
    Transaction,
)

logger = logging.getLogger(__name__)

# Drain hook supplied by the step driver: (step, price) -> None
DrainHook = Callable[[int, float], None]


class PopulationBase(ABC):
    """Shared plumbing for agent populations."""

    def __init__(
        self,
        config: SimulationConfig,
        rng: np.random.RandomState,
        ledger: PoolLedger,
        exit_queue: ExitQueue,
        transactions: List[Transaction],
        drain: Optional[DrainHook] = None,
    ):
        self.config = config
        self.behavior = config.participant_config
        self.rng = rng
        self.ledger = ledger
        self.exit_queue = exit_queue
        self.transactions = transactions
        self.drain = drain or (lambda step, price: None)
        self._next_id = 0

    def _new_id(self, prefix: str) -> str:
        ident = f"{prefix}_{self._next_id}"
        self._next_id += 1
        return ident

    def _log(self, kind: str, step: int, price: float, usd: float, agent_id: str, **extra) -> None:
        self.transactions.append(Transaction(kind=kind, step=step, price=price, usd=usd, agent_id=agent_id, **extra))

    @property
    @abstractmethod
    def active_count(self) -> int:
        """Number of live agents."""

    @abstractmethod
    def settle_queued(self, settlement: Settlement, step: int, price: float) -> bool:
        """Apply a queue payment to its owner; True when the obligation cleared."""


class InvestorPopulation(PopulationBase):
    """Token holders: arrivals, top-ups and redemptions."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.agents: List[InvestorAgent] = []
        self.active: Dict[str, InvestorAgent] = {}
        self.exits_in_step = 0

    @property
    def active_count(self) -> int:
        return len(self.active)

    def total_tokens(self) -> float:
        return sum(inv.tokens for inv in self.active.values())

    def admit(
        self, agent_type: AgentType, wealth: float, deposit: float, step: int, price: float
    ) -> Optional[InvestorAgent]:
        """Create an investor whose deposit mints tokens at the current token price.

        Returns None when the pool refuses deposits.
        """
        if deposit <= 0 or not self.ledger.accepts_deposits(price):
            return None
        minted = self.ledger.deposit(deposit, price)
        investor = InvestorAgent(
            id=self._new_id("inv"),
            agent_type=agent_type,
            wealth=wealth,
            tokens=minted,
            invested=deposit,
            entry_step=step,
        )
        self.agents.append(investor)
        self.active[investor.id] = investor
        self._log(INVESTOR_DEPOSIT, step, price, deposit, investor.id, token_delta=minted)
        return investor

    def seed_initial(self, count: int, price: float) -> None:
        """Initial population at step 0."""
        b = self.behavior
        for _ in range(count):
            agent_type = pick_investor_type(self.rng)
            wealth = sample_wealth(agent_type, self.rng)
            fraction = self.rng.uniform(b.initial_deposit_min, b.initial_deposit_max)
            self.admit(agent_type, wealth, wealth * fraction, 0, price)

    def process_topups(self, step: int, price: float, growth: float) -> int:
        """Each active investor may add 5-15% of its original wealth."""
        b = self.behavior
        probability = topup_probability(growth)
        count = 0
        for investor in list(self.active.values()):
            if investor.pending_exit:
                continue
            if self.rng.random_sample() >= probability:
                continue
            amount = investor.wealth * self.rng.uniform(b.topup_min_fraction, b.topup_max_fraction)
            if not self.ledger.accepts_deposits(price):
                continue
            minted = self.ledger.deposit(amount, price)
            investor.tokens += minted
            investor.invested += amount
            investor.topups += 1
            self._log(INVESTOR_TOPUP, step, price, amount, investor.id, token_delta=minted)
            self.drain(step, price)
            count += 1
        return count

    def exit_probability(self, investor: InvestorAgent, step: int, growth: float) -> float:
        """Chance the investor redeems this step; 1.0 once the contract expires."""
        min_days = self.config.min_investor_days
        forced_age = max(min_days, self.behavior.investor_max_contract_days)
        age = step - investor.entry_step
        if age >= forced_age:
            return 1.0
        if age < min_days:
            return 0.0
        probability = logistic(growth, investor.agent_type.k, investor.agent_type.c)
        if age < min_days + self.behavior.investor_grace_days:
            probability *= self.behavior.investor_grace_scale
        return probability

    def process_exits(self, step: int, price: float, growth: float) -> int:
        requested = 0
        for investor in list(self.active.values()):
            if investor.pending_exit or investor.tokens <= 0:
                continue
            probability = self.exit_probability(investor, step, growth)
            if probability <= 0.0:
                continue
            if probability >= 1.0 or self.rng.random_sample() < probability:
                self.redeem(investor, step, price)
                requested += 1
        return requested

    def redeem(self, investor: InvestorAgent, step: int, price: float) -> bool:
        """Redeem the investor's whole balance; returns True if fully paid now.

        Cash pays first. Otherwise only the tokens matching the paid share are
        burned, the shortfall is queued and the investor stays active with the
        reduced balance until the queue clears it.
        """
        tokens = investor.tokens
        if tokens <= 0:
            return False

        total_usd = tokens * self.ledger.token_price(price)
        if self.ledger.cash + TOLERANCE >= total_usd:
            value = self.ledger.burn(tokens, price)
            paid = self.ledger.withdraw(value)
            investor.tokens = 0.0
            investor.paid_out += paid
            self._close(investor, step)
            self._log(INVESTOR_EXIT, step, price, paid, investor.id, token_delta=-tokens)
            return True

        paid = self.ledger.withdraw(total_usd)
        burned = tokens * paid / total_usd
        self.ledger.retire_tokens(burned)
        investor.tokens -= burned
        investor.paid_out += paid
        investor.pending_exit = True
        shortfall = total_usd - paid
        self.exit_queue.enqueue(
            investor.id,
            "investor",
            shortfall,
            requested_tokens=tokens,
            total_usd=total_usd,
            paid_usd=paid,
            step=step,
        )
        self._log(INVESTOR_PARTIAL_WITHDRAWAL, step, price, paid, investor.id, token_delta=-burned)
        logger.debug("Investor %s short %.2f USD at step %d", investor.id, shortfall, step)
        return False

    def settle_queued(self, settlement: Settlement, step: int, price: float) -> bool:
        entry = settlement.entry
        investor = self.active[entry.owner_id]
        if settlement.cleared:
            burned = investor.tokens
        else:
            burned = min(investor.tokens, entry.requested_tokens * settlement.paid / entry.total_usd)
        self.ledger.retire_tokens(burned)
        investor.tokens -= burned
        investor.paid_out += settlement.paid

        if settlement.cleared:
            investor.tokens = 0.0
            investor.pending_exit = False
            self._close(investor, step)
            self._log(INVESTOR_EXIT, step, price, settlement.paid, investor.id, token_delta=-burned)
            return True

        self._log(INVESTOR_PARTIAL_WITHDRAWAL, step, price, settlement.paid, investor.id, token_delta=-burned)
        return False

    def process_arrivals(self, step: int, price: float, growth: float) -> int:
        """Bernoulli arrival batch of 1-3 candidates, each filtered by the entry probability."""
        b = self.behavior
        if self.rng.random_sample() >= self.config.arrival_rate:
            return 0
        candidates = 1 + self.rng.randint(b.max_investor_arrivals)
        probability = entry_probability(
            growth,
            b.investor_entry_base,
            b.investor_entry_sensitivity,
            b.investor_entry_floor,
            b.investor_entry_ceiling,
        )
        admitted = 0
        for _ in range(candidates):
            if self.rng.random_sample() >= probability:
                continue
            agent_type = pick_investor_type(self.rng)
            wealth = sample_wealth(agent_type, self.rng)
            deposit = wealth * self.rng.uniform(b.arrival_deposit_min, b.arrival_deposit_max)
            if self.admit(agent_type, wealth, deposit, step, price) is None:
                continue
            self.drain(step, price)
            admitted += 1
        return admitted

    def _close(self, investor: InvestorAgent, step: int) -> None:
        investor.active = False
        investor.exit_step = step
        self.active.pop(investor.id, None)
        self.exits_in_step += 1


class ManagerPopulation(PopulationBase):
    """Managers running matched positions: entry, exit and payout."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.agents: List[ManagerAgent] = []
        self.open: Dict[str, ManagerAgent] = {}

    @property
    def active_count(self) -> int:
        return len(self.open)

    def admit(self, agent_type: AgentType, stake: float, step: int, price: float, fee_rate: float) -> Optional[ManagerAgent]:
        """Open a position of stake + pool match if the pool can match in cash."""
        if stake <= 0 or self.ledger.cash < stake:
            return None
        pool_match = stake
        self.ledger.receive(stake)
        qty = self.ledger.lock_capital(stake + pool_match, price)
        manager = ManagerAgent(
            id=self._new_id("mgr"),
            agent_type=agent_type,
            stake=stake,
            pool_match=pool_match,
            asset_qty=qty,
            entry_price=price,
            entry_step=step,
            fee_rate=fee_rate,
        )
        self.agents.append(manager)
        self.open[manager.id] = manager
        self.ledger.open_position(manager)
        self._log(
            MANAGER_ENTRY,
            step,
            price,
            stake + pool_match,
            manager.id,
            stake=stake,
            pool_match=pool_match,
        )
        return manager

    def seed_initial(self, count: int, price: float, fee_rate: float) -> None:
        for _ in range(count):
            agent_type = pick_manager_type(self.rng)
            self.admit(agent_type, sample_wealth(agent_type, self.rng), 0, price, fee_rate)

    def process_exits(self, step: int, price: float, growth: float) -> int:
        closed = 0
        max_age = self.behavior.manager_max_contract_days
        for manager in list(self.open.values()):
            if step - manager.entry_step >= max_age:
                logger.debug("Manager %s reached contract limit at step %d", manager.id, step)
                self.close(manager, step, price)
                closed += 1
                continue
            probability = logistic(growth, manager.agent_type.k, manager.agent_type.c)
            if self.rng.random_sample() < probability:
                self.close(manager, step, price)
                closed += 1
        return closed

    def close(self, manager: ManagerAgent, step: int, price: float) -> float:
        """Unwind the position, pay the manager and keep the pool's share."""
        proceeds = self.ledger.unlock_capital(manager.asset_qty, price)
        self.ledger.close_position(manager.id)
        payout, pool_amount = split_manager_proceeds(proceeds, manager.stake, manager.pool_match, manager.fee_rate)
        pool_profit = pool_amount - manager.pool_match
        if pool_profit > 0:
            self.ledger.record_fee(pool_profit)

        paid = self.ledger.withdraw(payout)
        shortfall = payout - paid
        if shortfall > TOLERANCE:
            self.exit_queue.enqueue(
                manager.id,
                "manager",
                shortfall,
                requested_tokens=0.0,
                total_usd=payout,
                paid_usd=paid,
                step=step,
            )

        manager.open = False
        manager.asset_qty = 0.0
        manager.exit_step = step
        manager.exit_price = price
        manager.payout = payout
        manager.profit = payout - manager.stake
        manager.pool_profit = pool_profit
        self.open.pop(manager.id, None)

        self._log(
            MANAGER_EXIT,
            step,
            price,
            payout,
            manager.id,
            stake=manager.stake,
            pool_match=manager.pool_match,
            manager_profit=manager.profit,
            pool_profit=pool_profit,
        )
        self.drain(step, price)
        return payout

    def process_entries(self, step: int, price: float, growth: float, fee_rate: float) -> int:
        """Admit a batch of managers while utilization is below the limit."""
        b = self.behavior
        if self.ledger.utilization(price) >= self.config.manager_util_limit:
            return 0
        if self.rng.random_sample() >= self.config.manager_arrival_rate:
            return 0
        candidates = 1 + self.rng.randint(self.config.manager_arrival_max)
        probability = entry_probability(
            growth,
            b.manager_entry_base,
            b.manager_entry_sensitivity,
            b.manager_entry_floor,
            b.manager_entry_ceiling,
        )
        admitted = 0
        for _ in range(candidates):
            if self.rng.random_sample() >= probability:
                continue
            agent_type = pick_manager_type(self.rng)
            stake = sample_wealth(agent_type, self.rng)
            if self.admit(agent_type, stake, step, price, fee_rate) is not None:
                admitted += 1
        return admitted

    def settle_queued(self, settlement: Settlement, step: int, price: float) -> bool:
        logger.debug(
            "Paid %.2f USD of queued payout to manager %s at step %d",
            settlement.paid,
            settlement.entry.owner_id,
            step,
        )
        return settlement.cleared
