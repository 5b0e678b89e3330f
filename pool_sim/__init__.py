"""Pooled Capital Vehicle Simulation Package

Daily agent-based simulation of an investment pool:
- Share-token accounting over idle cash and manager-locked capital
- Managers pairing their stake with pool-matched capital against a price index
- Utilization-dependent profit sharing between pool and managers
- Probabilistic investor and manager entry, top-ups and exits
- FIFO exit queue for withdrawals cash cannot cover
- Per-step metrics and per-agent profit/loss reporting
"""

__version__ = "0.1.0"

# Import core simulation components
from .core import PoolSimulation, PoolMarketModel, run_simulation
from .config import SimulationConfig, ParticipantConfig
from .state import (
    AgentType,
    InvestorAgent,
    ManagerAgent,
    ExitQueueEntry,
    Transaction,
    MetricsSnapshot,
    InvestorPnL,
    ManagerPnL,
    SimulationResults,
)
from .ledger import PoolLedger, ExitQueue, Settlement, split_manager_proceeds

# Import population and decision logic
from .participants import (
    InvestorPopulation,
    ManagerPopulation,
)
from .decisions import (
    INVESTOR_TYPES,
    MANAGER_TYPES,
    logistic,
    entry_probability,
    topup_probability,
    profit_share_rate,
    pick_investor_type,
    pick_manager_type,
)

# Import price path utilities
from .market import (
    PriceEvolution,
    has_usable_price_series,
    resolve_price_path,
    load_price_series,
)

# Import metrics and analysis
from .metrics import (
    compute_investor_pnl,
    compute_manager_pnl,
    snapshots_to_dataframe,
    transactions_to_dataframe,
    pnl_to_dataframe,
    calculate_key_metrics,
    calculate_weekly_aggregates,
    calculate_monthly_aggregates,
    summarize_pnl_by_type,
    export_metrics_to_file,
)
from .analysis import (
    analyze_results,
    calculate_accounting_residuals,
    calculate_pnl_summary,
    calculate_exit_queue_stats,
    calculate_investor_holding_stats,
    compare_profit_share,
)

__all__ = [
    # Core simulation
    "PoolSimulation",
    "PoolMarketModel",
    "run_simulation",
    "SimulationConfig",
    "ParticipantConfig",

    # State and ledger
    "AgentType",
    "InvestorAgent",
    "ManagerAgent",
    "ExitQueueEntry",
    "Transaction",
    "MetricsSnapshot",
    "InvestorPnL",
    "ManagerPnL",
    "SimulationResults",
    "PoolLedger",
    "ExitQueue",
    "Settlement",

    # Populations and decisions
    "InvestorPopulation",
    "ManagerPopulation",
    "split_manager_proceeds",
    "INVESTOR_TYPES",
    "MANAGER_TYPES",
    "logistic",
    "entry_probability",
    "topup_probability",
    "profit_share_rate",
    "pick_investor_type",
    "pick_manager_type",

    # Price paths
    "PriceEvolution",
    "has_usable_price_series",
    "resolve_price_path",
    "load_price_series",

    # Metrics and analysis
    "compute_investor_pnl",
    "compute_manager_pnl",
    "snapshots_to_dataframe",
    "transactions_to_dataframe",
    "pnl_to_dataframe",
    "calculate_key_metrics",
    "calculate_weekly_aggregates",
    "calculate_monthly_aggregates",
    "summarize_pnl_by_type",
    "export_metrics_to_file",
    "analyze_results",
    "calculate_accounting_residuals",
    "calculate_pnl_summary",
    "calculate_exit_queue_stats",
    "calculate_investor_holding_stats",
    "compare_profit_share",
]
