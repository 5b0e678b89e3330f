"""Analysis functions for simulation results.

Builds on the metrics module to evaluate accounting closure, P&L
distribution across agent tiers, exit queue stress and the effect of the
profit-share schedule.
"""

from typing import Any, Dict, List

import numpy as np
import polars as pl

from .metrics import (
    calculate_key_metrics,
    pnl_to_dataframe,
    snapshots_to_dataframe,
    summarize_pnl_by_type,
    transactions_to_dataframe,
)
from .state import SimulationResults


# Statistical helper functions for robust metric calculations
def _mean(values):
    if not values:
        return 0.0
    return float(np.mean(values))


def _median(values):
    if not values:
        return 0.0
    return float(np.median(values))


def _percentile(values, pct: float):
    if not values:
        return 0.0
    return float(np.percentile(values, pct))


def analyze_results(results: SimulationResults) -> Dict[str, Any]:
    """Primary analysis function for a completed run.

    Combines the headline metrics with transaction counts and P&L totals.

    Args:
        results: Complete simulation results

    Returns:
        Dictionary of key analysis metrics
    """
    if not results.metrics:
        return {}

    analysis = calculate_key_metrics(results.metrics)

    counts: Dict[str, int] = {}
    for tx in results.transactions:
        counts[tx.kind] = counts.get(tx.kind, 0) + 1
    analysis["transaction_counts"] = counts

    analysis.update(calculate_pnl_summary(results))
    analysis.update(calculate_exit_queue_stats(results))
    return analysis


def calculate_accounting_residuals(results: SimulationResults) -> List[float]:
    """Per-step residual of pool value change against its explained sources.

    pool_value(t) - pool_value(t-1) should equal the price-driven change in
    locked capital plus net external flow; residuals are float noise.
    """
    df = snapshots_to_dataframe(results.metrics)
    if df.height < 2:
        return []
    residuals = (df
                 .with_columns((pl.col("pool_value_change") - pl.col("market_pnl") - pl.col("net_flow")).alias("residual"))
                 .slice(1)
                 .get_column("residual"))
    return residuals.to_list()


def calculate_pnl_summary(results: SimulationResults) -> Dict[str, Any]:
    """Aggregate investor and manager P&L, overall and per tier."""
    investor_pnl = [r.pnl for r in results.investor_pnl]
    manager_pnl = [r.manager_pnl for r in results.manager_pnl]
    pool_from_managers = [r.pool_pnl for r in results.manager_pnl]

    return {
        "investor_count": len(investor_pnl),
        "investor_total_pnl": float(sum(investor_pnl)),
        "investor_median_pnl": _median(investor_pnl),
        "investor_win_rate": _mean([1.0 if p > 0 else 0.0 for p in investor_pnl]),
        "manager_count": len(manager_pnl),
        "manager_total_pnl": float(sum(manager_pnl)),
        "manager_median_pnl": _median(manager_pnl),
        "manager_win_rate": _mean([1.0 if p > 0 else 0.0 for p in manager_pnl]),
        "pool_pnl_from_managers": float(sum(pool_from_managers)),
        "investor_pnl_by_type": summarize_pnl_by_type(results.investor_pnl, "pnl"),
        "manager_pnl_by_type": summarize_pnl_by_type(results.manager_pnl, "manager_pnl"),
    }


def calculate_exit_queue_stats(results: SimulationResults) -> Dict[str, float]:
    """Exit queue stress: how often and how deep the backlog ran."""
    backlog = [s.queue_backlog_usd for s in results.metrics]
    queued_days = [b for b in backlog if b > 0]

    tx_df = transactions_to_dataframe(results.transactions)
    partials = 0
    if not tx_df.is_empty():
        partials = tx_df.filter(pl.col("kind") == "investor_partial_withdrawal").height

    return {
        "queue_days": len(queued_days),
        "queue_day_share": len(queued_days) / len(backlog) if backlog else 0.0,
        "queue_p95_backlog": _percentile(queued_days, 95),
        "queue_final_entries": len(results.exit_queue),
        "partial_withdrawals": partials,
    }


def calculate_investor_holding_stats(results: SimulationResults) -> Dict[str, float]:
    """Holding period distribution for investors that fully exited."""
    df = pnl_to_dataframe(results.investor_pnl)
    if df.is_empty():
        return {"exited": 0, "mean_days_held": 0.0, "median_days_held": 0.0}
    held = df.filter(pl.col("status") == "exited").get_column("days_held").to_list()
    return {
        "exited": len(held),
        "mean_days_held": _mean(held),
        "median_days_held": _median(held),
    }


def compare_profit_share(low_share_results: SimulationResults, high_share_results: SimulationResults) -> Dict[str, Any]:
    """Compare two runs that differ in their profit-share schedule.

    Args:
        low_share_results: Run with the lower ps0/ps1 schedule
        high_share_results: Run with the higher ps0/ps1 schedule

    Returns:
        Pool fee income and manager P&L for both runs
    """
    def fees(results):
        return results.metrics[-1].cumulative_fees if results.metrics else 0.0

    def manager_total(results):
        return float(sum(r.manager_pnl for r in results.manager_pnl))

    low_fees, high_fees = fees(low_share_results), fees(high_share_results)
    return {
        "low_share_fees": low_fees,
        "high_share_fees": high_fees,
        "low_share_manager_pnl": manager_total(low_share_results),
        "high_share_manager_pnl": manager_total(high_share_results),
        "fee_change_pct": (high_fees - low_fees) / low_fees if low_fees > 0 else 0.0,
    }
