"""Reporting: per-agent P&L attribution and polars-based metrics.

Uses group_by_dynamic and declarative expressions for calendar aggregations
of the daily metrics series.
"""

import json
import os
from dataclasses import asdict
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

import polars as pl

from .ledger import ExitQueue, split_manager_proceeds
from .state import (
    InvestorAgent,
    InvestorPnL,
    ManagerAgent,
    ManagerPnL,
    MetricsSnapshot,
    Transaction,
)

# Calendar anchor for turning step indices into dates
EPOCH = datetime(2024, 1, 1)


def _days_held(entry_step: int, exit_step: Optional[int], final_step: int) -> int:
    end = exit_step if exit_step is not None else final_step
    return max(1, end - entry_step)


def compute_investor_pnl(
    investors: Iterable[InvestorAgent],
    exit_queue: ExitQueue,
    final_token_price: float,
    final_step: int,
) -> List[InvestorPnL]:
    """P&L for every investor, realized or marked at the final token price.

    Investors still waiting in the exit queue are valued at their queued
    remainder; the tokens they still hold back that same claim.
    """
    queued = {entry.owner_id: entry for entry in exit_queue if entry.owner_kind == "investor"}
    records = []
    for inv in investors:
        if not inv.active:
            status = "exited"
            value_held = 0.0
        elif inv.id in queued:
            status = "queued"
            value_held = queued[inv.id].remaining_usd
        else:
            status = "active"
            value_held = inv.tokens * final_token_price
        pnl = inv.paid_out + value_held - inv.invested
        records.append(
            InvestorPnL(
                id=inv.id,
                type_name=inv.type_name,
                status=status,
                invested=inv.invested,
                paid_out=inv.paid_out,
                value_held=value_held,
                pnl=pnl,
                return_pct=pnl / inv.invested if inv.invested > 0 else 0.0,
                entry_step=inv.entry_step,
                exit_step=inv.exit_step,
                days_held=_days_held(inv.entry_step, inv.exit_step, final_step),
            )
        )
    return records


def compute_manager_pnl(managers: Iterable[ManagerAgent], final_price: float, final_step: int) -> List[ManagerPnL]:
    """P&L for every manager; open positions are valued as if closed at `final_price`."""
    records = []
    for mgr in managers:
        if mgr.open:
            proceeds = mgr.asset_qty * final_price
            payout, pool_amount = split_manager_proceeds(proceeds, mgr.stake, mgr.pool_match, mgr.fee_rate)
            pool_pnl = pool_amount - mgr.pool_match
            status = "open"
        else:
            payout = mgr.payout
            pool_pnl = mgr.pool_profit
            status = "closed"
        manager_pnl = payout - mgr.stake
        records.append(
            ManagerPnL(
                id=mgr.id,
                type_name=mgr.type_name,
                status=status,
                stake=mgr.stake,
                pool_match=mgr.pool_match,
                fee_rate=mgr.fee_rate,
                payout=payout,
                manager_pnl=manager_pnl,
                pool_pnl=pool_pnl,
                return_pct=manager_pnl / mgr.stake if mgr.stake > 0 else 0.0,
                entry_step=mgr.entry_step,
                exit_step=mgr.exit_step,
                days_held=_days_held(mgr.entry_step, mgr.exit_step, final_step),
            )
        )
    return records


def snapshots_to_dataframe(snapshots: List[MetricsSnapshot]) -> pl.DataFrame:
    """Convert metrics snapshots to a polars DataFrame with derived columns."""
    if not snapshots:
        return pl.DataFrame()

    df = pl.DataFrame([asdict(s) for s in snapshots])

    return df.with_columns([
        (pl.datetime(EPOCH.year, EPOCH.month, EPOCH.day) + pl.duration(days=pl.col("step"))).alias("datetime"),
        pl.col("token_price").pct_change().alias("token_return"),
        pl.col("asset_price").pct_change().alias("asset_return"),
        (pl.col("token_price") / pl.col("token_price").cum_max() - 1.0).alias("token_drawdown"),
        (pl.col("pool_value") - pl.col("pool_value").shift(1)).alias("pool_value_change"),
    ])


def transactions_to_dataframe(transactions: Sequence[Transaction]) -> pl.DataFrame:
    if not transactions:
        return pl.DataFrame()
    return pl.DataFrame([t.to_dict() for t in transactions], infer_schema_length=None)


def pnl_to_dataframe(records: Sequence[Any]) -> pl.DataFrame:
    """DataFrame of InvestorPnL or ManagerPnL records."""
    if not records:
        return pl.DataFrame()
    return pl.DataFrame([asdict(r) for r in records], infer_schema_length=None)


def calculate_key_metrics(snapshots: List[MetricsSnapshot]) -> Dict[str, Any]:
    """Calculate headline metrics for a run.

    Args:
        snapshots: Per-step metrics series

    Returns:
        Dictionary of pool, token, utilization, exit and queue indicators
    """
    if not snapshots:
        return {}

    df = snapshots_to_dataframe(snapshots)

    metrics = df.select([
        pl.col("pool_value").max().alias("peak_pool_value"),
        pl.col("utilization").mean().alias("avg_utilization"),
        pl.col("utilization").max().alias("max_utilization"),
        pl.col("profit_share_rate").mean().alias("avg_profit_share_rate"),
        pl.col("exits").sum().alias("total_investor_exits"),
        pl.col("manager_exits").sum().alias("total_manager_exits"),
        pl.col("queue_backlog_usd").max().alias("peak_queue_backlog"),
        pl.col("token_drawdown").min().alias("max_token_drawdown"),
        pl.col("net_flow").sum().alias("total_net_flow"),
        pl.col("market_pnl").sum().alias("total_market_pnl"),
    ]).to_dicts()[0]

    first, final = snapshots[0], snapshots[-1]
    metrics.update({
        "simulation_days": len(snapshots),
        "initial_pool_value": first.pool_value,
        "final_pool_value": final.pool_value,
        "initial_token_price": first.token_price,
        "final_token_price": final.token_price,
        "token_return": final.token_price / first.token_price - 1.0 if first.token_price > 0 else 0.0,
        "initial_asset_price": first.asset_price,
        "final_asset_price": final.asset_price,
        "asset_return": final.asset_price / first.asset_price - 1.0 if first.asset_price > 0 else 0.0,
        "cumulative_fees": final.cumulative_fees,
        "final_queue_backlog": final.queue_backlog_usd,
        "final_active_investors": final.active_investors,
        "final_active_managers": final.active_managers,
    })
    return metrics


def calculate_time_aggregates(snapshots: List[MetricsSnapshot], timeframe: str = "1w") -> List[Dict[str, Any]]:
    """Calendar aggregates of the daily series using group_by_dynamic.

    Args:
        snapshots: Per-step metrics series
        timeframe: Period for aggregation ("1w", "1mo", ...)

    Returns:
        List of aggregated metrics for each period
    """
    if not snapshots:
        return []

    df = snapshots_to_dataframe(snapshots)

    agg_exprs = [
        pl.col("step").first().alias("first_step"),
        pl.col("step").last().alias("last_step"),
        pl.col("exits").sum().alias("investor_exits"),
        pl.col("manager_exits").sum().alias("manager_exits"),
        pl.col("net_flow").sum().alias("net_flow"),
        pl.col("market_pnl").sum().alias("market_pnl"),
        pl.col("utilization").mean().alias("avg_utilization"),
        pl.col("asset_price").mean().alias("avg_asset_price"),
        pl.col("pool_value").last().alias("final_pool_value"),
        pl.col("token_price").last().alias("final_token_price"),
        pl.col("queue_backlog_usd").last().alias("final_queue_backlog"),
        (pl.col("cumulative_fees").last() - pl.col("cumulative_fees").first()).alias("fees"),
    ]

    result_df = (df
                .sort("datetime")
                .group_by_dynamic("datetime", every=timeframe, closed="left")
                .agg(agg_exprs)
                .sort("datetime"))

    return result_df.to_dicts()


def calculate_weekly_aggregates(snapshots: List[MetricsSnapshot]) -> List[Dict[str, Any]]:
    return calculate_time_aggregates(snapshots, "1w")


def calculate_monthly_aggregates(snapshots: List[MetricsSnapshot]) -> List[Dict[str, Any]]:
    return calculate_time_aggregates(snapshots, "1mo")


def summarize_pnl_by_type(records: Sequence[Any], pnl_column: str) -> List[Dict[str, Any]]:
    """Per-tier count, total and mean P&L for investor or manager records."""
    df = pnl_to_dataframe(records)
    if df.is_empty():
        return []
    return (df
            .group_by("type_name")
            .agg([
                pl.len().alias("count"),
                pl.col(pnl_column).sum().alias("total_pnl"),
                pl.col(pnl_column).mean().alias("mean_pnl"),
                pl.col("return_pct").mean().alias("mean_return"),
                pl.col("days_held").mean().alias("mean_days_held"),
            ])
            .sort("type_name")
            .to_dicts())


def export_metrics_to_file(results, file_path: Optional[str] = None) -> str:
    """Export summary, aggregates and P&L summaries to a JSON file; returns the path."""
    metrics_data = {
        "summary": calculate_key_metrics(results.metrics),
        "aggregates": {
            "weekly": calculate_weekly_aggregates(results.metrics),
            "monthly": calculate_monthly_aggregates(results.metrics),
        },
        "pnl": {
            "investors": summarize_pnl_by_type(results.investor_pnl, "pnl"),
            "managers": summarize_pnl_by_type(results.manager_pnl, "manager_pnl"),
        },
        "exit_queue": [asdict(entry) for entry in results.exit_queue],
    }

    if not file_path:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        file_path = f"experiments/outputs/data/pool_metrics_{timestamp}.json"

    directory = os.path.dirname(file_path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(file_path, "w") as f:
        json.dump(metrics_data, f, indent=2, default=str)
    return file_path
