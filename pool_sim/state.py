"""Core data structures for pool simulation state and output records."""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .config import SimulationConfig


# Transaction kinds emitted into the run log
INVESTOR_DEPOSIT = "investor_deposit"
INVESTOR_TOPUP = "investor_topup"
INVESTOR_EXIT = "investor_exit"
INVESTOR_PARTIAL_WITHDRAWAL = "investor_partial_withdrawal"
MANAGER_ENTRY = "manager_entry"
MANAGER_EXIT = "manager_exit"

TRANSACTION_KINDS = (
    INVESTOR_DEPOSIT,
    INVESTOR_TOPUP,
    INVESTOR_EXIT,
    INVESTOR_PARTIAL_WITHDRAWAL,
    MANAGER_ENTRY,
    MANAGER_EXIT,
)


@dataclass(frozen=True)
class AgentType:
    """Wealth (investor) or AUM (manager) tier with its logistic sensitivity.

    `k` is the steepness of the exit curve and `c` shifts it so that risk
    averse tiers leave even on flat growth.
    """
    name: str
    min_wealth: float
    max_wealth: float
    k: float
    c: float


@dataclass
class InvestorAgent:
    """Token holder in the pool.

    Stays active while it holds tokens or while part of its redemption is
    still waiting in the exit queue.
    """
    id: str
    agent_type: AgentType
    wealth: float                       # Sampled wealth, drives deposit and top-up sizes
    tokens: float = 0.0                 # Share tokens currently held
    invested: float = 0.0               # Cumulative USD deposited
    paid_out: float = 0.0               # Cumulative USD returned
    entry_step: int = 0
    exit_step: Optional[int] = None
    active: bool = True
    pending_exit: bool = False          # Redemption requested, remainder queued
    topups: int = 0

    @property
    def type_name(self) -> str:
        return self.agent_type.name

    @property
    def exit_amount(self) -> float:
        return self.paid_out


@dataclass
class ManagerAgent:
    """Manager running a matched position against the price index."""
    id: str
    agent_type: AgentType
    stake: float                        # Manager's own USD contribution
    pool_match: float                   # Pool's matching USD contribution (equal to stake)
    asset_qty: float                    # Asset units locked for this position
    entry_price: float
    entry_step: int
    fee_rate: float                     # Profit-share rate frozen at entry
    open: bool = True
    profit: float = 0.0                 # Manager's realized profit (payout - stake)
    payout: float = 0.0                 # USD returned to the manager
    pool_profit: float = 0.0            # Pool's share of a positive result
    exit_step: Optional[int] = None
    exit_price: Optional[float] = None

    @property
    def type_name(self) -> str:
        return self.agent_type.name


@dataclass
class ExitQueueEntry:
    """Unpaid withdrawal obligation waiting for pool cash."""
    owner_id: str
    owner_kind: str                     # "investor" or "manager"
    requested_tokens: float
    total_usd: float
    remaining_usd: float
    paid_usd: float = 0.0
    queued_step: int = 0


@dataclass(frozen=True)
class Transaction:
    """Immutable entry in the run's transaction log."""
    kind: str
    step: int
    price: float
    usd: float
    agent_id: str
    token_delta: float = 0.0
    stake: Optional[float] = None
    pool_match: Optional[float] = None
    manager_profit: Optional[float] = None
    pool_profit: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class MetricsSnapshot:
    """Pool state captured at the end of one simulated day."""
    step: int
    pool_value: float
    token_price: float
    utilization: float
    profit_share_rate: float
    active_investors: int
    active_managers: int
    exits: int                          # Investor exits fully settled this step
    manager_exits: int
    cumulative_fees: float
    asset_price: float
    net_asset_value: float = 0.0        # Pool value less open manager claims
    cash: float = 0.0
    locked_asset: float = 0.0
    total_tokens: float = 0.0
    queue_backlog_usd: float = 0.0
    growth: float = 0.0                 # Fractional pool growth from the market move
    net_flow: float = 0.0               # External inflows minus payouts this step
    market_pnl: float = 0.0             # Price-driven change in locked capital value


@dataclass
class InvestorPnL:
    """Profit/loss attribution for one investor."""
    id: str
    type_name: str
    status: str                         # "exited", "queued" or "active"
    invested: float
    paid_out: float
    value_held: float                   # Marked-to-market tokens plus queued remainder
    pnl: float
    return_pct: float
    entry_step: int
    exit_step: Optional[int]
    days_held: int


@dataclass
class ManagerPnL:
    """Profit/loss attribution for one manager position."""
    id: str
    type_name: str
    status: str                         # "closed" or "open"
    stake: float
    pool_match: float
    fee_rate: float
    payout: float                       # Realized, or what a close at the final price would pay
    manager_pnl: float
    pool_pnl: float
    return_pct: float
    entry_step: int
    exit_step: Optional[int]
    days_held: int


@dataclass
class SimulationResults:
    """Results from a complete simulation run.

    `metrics` holds one snapshot per step 1..N-1; the remaining fields are the
    end-of-run attributions and logs consumed by reporting layers.
    """
    metrics: List[MetricsSnapshot]
    investor_pnl: List[InvestorPnL]
    manager_pnl: List[ManagerPnL]
    exit_queue: List[ExitQueueEntry]
    transactions: List[Transaction]
    price_path: Tuple[float, ...] = field(default_factory=tuple)
    config: Optional[SimulationConfig] = None
