"""Reporting and analysis tests (pytest-free).

Covers the polars metrics frame, calendar aggregates, per-agent P&L
attribution, JSON export and the analysis helpers."""

import json
import os
import tempfile

from pool_sim.analysis import (
    analyze_results,
    calculate_exit_queue_stats,
    calculate_investor_holding_stats,
    compare_profit_share,
)
from pool_sim.cli import format_money
from pool_sim.config import SimulationConfig
from pool_sim.core import PoolSimulation
from pool_sim.decisions import INVESTOR_TYPES, MANAGER_TYPES
from pool_sim.metrics import (
    calculate_key_metrics,
    calculate_monthly_aggregates,
    calculate_weekly_aggregates,
    compute_investor_pnl,
    compute_manager_pnl,
    export_metrics_to_file,
    pnl_to_dataframe,
    snapshots_to_dataframe,
    summarize_pnl_by_type,
    transactions_to_dataframe,
)
from tests.utils import assert_close, flat_prices, quiet_model

_RESULTS = {}


def _results(seed: int = 17, steps: int = 120):
    """Cached default run shared by the reporting tests."""
    key = (seed, steps)
    if key not in _RESULTS:
        _RESULTS[key] = PoolSimulation(SimulationConfig(steps=steps, seed=seed)).run()
    return _RESULTS[key]


# --- Metrics frame -----------------------------------------------------------

def test_snapshot_dataframe_columns():
    results = _results()
    df = snapshots_to_dataframe(results.metrics)
    assert df.height == len(results.metrics)
    for column in (
        "step",
        "pool_value",
        "token_price",
        "utilization",
        "profit_share_rate",
        "active_investors",
        "active_managers",
        "exits",
        "cumulative_fees",
        "datetime",
        "token_return",
        "token_drawdown",
        "pool_value_change",
    ):
        assert column in df.columns, column
    assert df.get_column("token_drawdown").max() <= 0.0


def test_empty_inputs_give_empty_frames():
    assert snapshots_to_dataframe([]).is_empty()
    assert transactions_to_dataframe([]).is_empty()
    assert pnl_to_dataframe([]).is_empty()
    assert calculate_key_metrics([]) == {}
    assert calculate_weekly_aggregates([]) == []


def test_key_metrics():
    results = _results()
    metrics = calculate_key_metrics(results.metrics)
    assert metrics["simulation_days"] == len(results.metrics)
    assert metrics["final_pool_value"] == results.metrics[-1].pool_value
    assert metrics["peak_pool_value"] >= metrics["final_pool_value"]
    assert 0.0 <= metrics["avg_utilization"] <= 1.0
    assert metrics["cumulative_fees"] >= 0.0
    assert metrics["total_investor_exits"] == sum(s.exits for s in results.metrics)


def test_calendar_aggregates_cover_every_step():
    results = _results()
    weekly = calculate_weekly_aggregates(results.metrics)
    monthly = calculate_monthly_aggregates(results.metrics)

    assert len(weekly) >= len(results.metrics) // 7
    assert 3 <= len(monthly) <= 5
    assert_close(sum(w["net_flow"] for w in weekly), sum(s.net_flow for s in results.metrics), rel=1e-9, abs_tol=1e-6)
    assert weekly[0]["first_step"] == 1
    assert monthly[-1]["last_step"] == results.metrics[-1].step


def test_transactions_frame_has_kinds():
    results = _results()
    df = transactions_to_dataframe(results.transactions)
    assert df.height == len(results.transactions)
    assert "investor_deposit" in set(df.get_column("kind").to_list())


# --- P&L attribution ---------------------------------------------------------

def test_investor_pnl_marks_active_holdings():
    model = quiet_model(steps=30, prices=flat_prices(30))
    investor = model.investors.admit(INVESTOR_TYPES[1], 40_000.0, 12_000.0, 0, 20_000.0)

    records = compute_investor_pnl(model.investors.agents, model.exit_queue, 1.1, 20)

    assert len(records) == 1
    record = records[0]
    assert record.status == "active"
    assert_close(record.value_held, investor.tokens * 1.1)
    assert_close(record.pnl, 1_200.0)
    assert record.days_held == 20
    assert record.type_name == "mackerel"


def test_investor_pnl_values_queued_remainder():
    model = quiet_model(steps=30, prices=flat_prices(30))
    investor = model.investors.admit(INVESTOR_TYPES[0], 20_000.0, 10_000.0, 0, 20_000.0)
    model.managers.admit(MANAGER_TYPES[1], 4_000.0, 0, 20_000.0, 0.2)
    model.investors.redeem(investor, 5, 20_000.0)

    record = compute_investor_pnl(model.investors.agents, model.exit_queue, 1.0, 5)[0]

    assert record.status == "queued"
    assert_close(record.value_held, 4_000.0)
    assert_close(record.paid_out, 6_000.0)
    assert_close(record.pnl, 0.0)


def test_days_held_at_least_one():
    model = quiet_model(steps=30, prices=flat_prices(30))
    model.investors.admit(INVESTOR_TYPES[0], 5_000.0, 1_000.0, 3, 20_000.0)
    record = compute_investor_pnl(model.investors.agents, model.exit_queue, 1.0, 3)[0]
    assert record.days_held == 1


def test_manager_pnl_open_and_closed():
    model = quiet_model(steps=30, prices=flat_prices(30))
    model.investors.admit(INVESTOR_TYPES[0], 10_000.0, 5_000.0, 0, 20_000.0)
    closed = model.managers.admit(MANAGER_TYPES[1], 1_000.0, 0, 20_000.0, 0.2)
    model.managers.admit(MANAGER_TYPES[1], 1_000.0, 0, 20_000.0, 0.2)
    model.managers.close(closed, 10, 24_000.0)

    records = {r.status: r for r in compute_manager_pnl(model.managers.agents, 24_000.0, 12)}

    for record in records.values():
        assert_close(record.payout, 1_080.0)
        assert_close(record.manager_pnl, 80.0)
        assert_close(record.pool_pnl, 320.0)
    assert records["closed"].days_held == 10
    assert records["open"].days_held == 12


def test_pnl_summary_by_type():
    results = _results()
    summary = summarize_pnl_by_type(results.investor_pnl, "pnl")
    assert sum(row["count"] for row in summary) == len(results.investor_pnl)
    assert {row["type_name"] for row in summary} <= {t.name for t in INVESTOR_TYPES}


# --- Export and analysis -----------------------------------------------------

def test_export_metrics_to_file():
    results = _results()
    with tempfile.TemporaryDirectory() as tmp:
        path = export_metrics_to_file(results, os.path.join(tmp, "out", "metrics.json"))
        with open(path) as handle:
            data = json.load(handle)
    assert set(data) == {"summary", "aggregates", "pnl", "exit_queue"}
    assert data["summary"]["simulation_days"] == len(results.metrics)
    assert data["aggregates"]["weekly"]


def test_analyze_results_keys():
    analysis = analyze_results(_results())
    for key in (
        "final_pool_value",
        "token_return",
        "avg_utilization",
        "transaction_counts",
        "investor_total_pnl",
        "manager_total_pnl",
        "investor_pnl_by_type",
        "queue_days",
        "partial_withdrawals",
    ):
        assert key in analysis, key
    assert analysis["transaction_counts"]["investor_deposit"] >= 50


def test_queue_and_holding_stats():
    results = _results(seed=4, steps=450)
    queue = calculate_exit_queue_stats(results)
    assert 0.0 <= queue["queue_day_share"] <= 1.0
    assert queue["queue_final_entries"] == len(results.exit_queue)

    holding = calculate_investor_holding_stats(results)
    if holding["exited"]:
        assert holding["mean_days_held"] >= 365


def test_compare_profit_share():
    low = PoolSimulation(SimulationConfig(steps=90, seed=6, ps0=0.05, ps1=0.10)).run()
    high = PoolSimulation(SimulationConfig(steps=90, seed=6, ps0=0.30, ps1=0.50)).run()
    comparison = compare_profit_share(low, high)
    assert comparison["low_share_fees"] >= 0.0
    assert comparison["high_share_fees"] >= 0.0
    assert set(comparison) >= {"low_share_manager_pnl", "high_share_manager_pnl", "fee_change_pct"}


def test_format_money():
    assert format_money(0) == "0"
    assert format_money(950) == "950"
    assert format_money(1_234) == "1.23K"
    assert format_money(-4_560_000) == "-4.56M"
    assert format_money(7.89e9) == "7.89B"
    assert format_money(float("nan")) == "-"
