"""Command-line interface for single runs and parameter sweeps."""

import argparse
import logging
import math
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import polars as pl

from .analysis import analyze_results
from .config import SimulationConfig
from .core import PoolSimulation
from .decisions import INVESTOR_TYPES, INVESTOR_TYPE_WEIGHTS, MANAGER_TYPES, MANAGER_TYPE_WEIGHTS
from .market import has_usable_price_series, load_price_series
from .metrics import (
    export_metrics_to_file,
    pnl_to_dataframe,
    snapshots_to_dataframe,
    transactions_to_dataframe,
)

SCENARIOS = ["default", "flat_share", "steep_share", "high_demand", "low_demand", "long_lockup"]


def format_money(x: float) -> str:
    """Compact money formatting: 1.23K, 4.56M, 7.89B."""
    if not math.isfinite(x):
        return "-"
    if x == 0:
        return "0"
    magnitude = abs(x)
    if magnitude >= 1e9:
        return f"{x / 1e9:.2f}B"
    if magnitude >= 1e6:
        return f"{x / 1e6:.2f}M"
    if magnitude >= 1e3:
        return f"{x / 1e3:.2f}K"
    return f"{x:.0f}"


def _load_prices(price_file: Optional[str], steps: int):
    """Load an external price series; report when the run will use synthetic prices."""
    if not price_file:
        print("Price source: synthetic random walk")
        return None, steps
    try:
        prices = load_price_series(price_file)
    except (FileNotFoundError, ValueError) as exc:
        print(f"Historical price load failed ({exc}), using synthetic")
        return None, steps
    if not has_usable_price_series(prices):
        print("Historical series too short or invalid, using synthetic")
        return None, steps
    steps = min(steps, len(prices))
    print(f"Price source: historical ({len(prices)} days loaded, {steps} used)")
    return prices, steps


def run_single(
    scenario: str = "default",
    steps: int = 365,
    ps0: Optional[float] = None,
    ps1: Optional[float] = None,
    arrival_rate: Optional[float] = None,
    price_file: Optional[str] = None,
    output_dir: str = "experiments/single",
    seed: Optional[int] = None,
    save_outputs: bool = True,
):
    """Run one simulation and print a summary."""
    overrides = {
        key: value
        for key, value in {"ps0": ps0, "ps1": ps1, "arrival_rate": arrival_rate}.items()
        if value is not None
    }
    prices, steps = _load_prices(price_file, steps)
    config = SimulationConfig.create_scenario(scenario, steps=steps, seed=seed, price_series=prices, **overrides)

    print(f"Running single simulation: {scenario} scenario, {steps} days")
    results = PoolSimulation(config).run()
    analysis = analyze_results(results)

    if save_outputs:
        Path(output_dir).mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")

        metrics_file = Path(output_dir) / f"metrics_{scenario}_{timestamp}.csv"
        snapshots_to_dataframe(results.metrics).drop("datetime").write_csv(metrics_file)
        print(f"Metrics saved: {metrics_file}")

        tx_df = transactions_to_dataframe(results.transactions)
        if not tx_df.is_empty():
            tx_file = Path(output_dir) / f"transactions_{scenario}_{timestamp}.parquet"
            tx_df.write_parquet(tx_file)
            print(f"Transactions saved: {tx_file}")

        for label, records in (("investor_pnl", results.investor_pnl), ("manager_pnl", results.manager_pnl)):
            df = pnl_to_dataframe(records)
            if not df.is_empty():
                pnl_file = Path(output_dir) / f"{label}_{scenario}_{timestamp}.csv"
                df.write_csv(pnl_file)
                print(f"P&L saved: {pnl_file}")

        summary_file = export_metrics_to_file(results, str(Path(output_dir) / f"summary_{scenario}_{timestamp}.json"))
        print(f"Summary saved: {summary_file}")

    print("\nFinal Results:")
    print(f"   • Pool Value: ${format_money(analysis['final_pool_value'])}")
    print(f"   • Token Price: {analysis['final_token_price']:.4f} ({analysis['token_return']:+.2%})")
    print(f"   • Asset Return: {analysis['asset_return']:+.2%}")
    print(f"   • Avg Utilization: {analysis['avg_utilization']:.1%}")
    print(f"   • Cumulative Fees: ${format_money(analysis['cumulative_fees'])}")
    print(f"   • Investors: {analysis['final_active_investors']} active, {analysis['total_investor_exits']} exited")
    print(f"   • Managers: {analysis['final_active_managers']} open, {analysis['total_manager_exits']} closed")
    print(f"   • Exit Queue: {analysis['queue_final_entries']} entries, ${format_money(analysis['final_queue_backlog'])}")
    return results


def run_sweep(
    ps1_values: List[float],
    arrival_rates: List[float],
    ps0: float = 0.10,
    steps: int = 365,
    runs: int = 3,
    output_dir: str = "experiments/runs",
    seed: Optional[int] = None,
):
    """Sweep peak profit-share rate against investor arrival rate."""
    Path(output_dir).mkdir(parents=True, exist_ok=True)

    combos = [(p, a) for p in ps1_values for a in arrival_rates]
    total_runs = len(combos) * runs
    print(f"Running {total_runs} simulations ({len(combos)} combinations x {runs} runs)")

    rows = []
    run_index = 0
    for ps1, arrival_rate in combos:
        for repeat in range(runs):
            run_index += 1
            run_seed = None if seed is None else seed + run_index
            print(f"[{run_index}/{total_runs}] ps1={ps1:.2f}, arrival={arrival_rate:.2f}, run {repeat + 1}")
            config = SimulationConfig(ps0=ps0, ps1=ps1, arrival_rate=arrival_rate, steps=steps, seed=run_seed)
            analysis = analyze_results(PoolSimulation(config).run())
            rows.append({
                "ps0": ps0,
                "ps1": ps1,
                "arrival_rate": arrival_rate,
                "run": repeat,
                "final_pool_value": analysis["final_pool_value"],
                "token_return": analysis["token_return"],
                "avg_utilization": analysis["avg_utilization"],
                "cumulative_fees": analysis["cumulative_fees"],
                "manager_total_pnl": analysis["manager_total_pnl"],
                "investor_total_pnl": analysis["investor_total_pnl"],
                "queue_days": analysis["queue_days"],
            })

    df = pl.DataFrame(rows)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    csv_file = Path(output_dir) / f"sweep_{timestamp}.csv"
    df.write_csv(csv_file)

    summary = (df
               .group_by(["ps1", "arrival_rate"])
               .agg([
                   pl.col("token_return").mean().alias("mean_token_return"),
                   pl.col("cumulative_fees").mean().alias("mean_fees"),
                   pl.col("queue_days").mean().alias("mean_queue_days"),
               ])
               .sort(["ps1", "arrival_rate"]))
    print(f"\nSweep complete, results saved: {csv_file}")
    print(summary)
    return df


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(description="Pooled capital vehicle simulation CLI")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    single_parser = subparsers.add_parser("single", help="Run a single simulation")
    single_parser.add_argument("--scenario", default="default", choices=SCENARIOS, help="Scenario preset")
    single_parser.add_argument("--steps", type=int, default=365, help="Simulated days")
    single_parser.add_argument("--ps0", type=float, help="Base profit-share rate")
    single_parser.add_argument("--ps1", type=float, help="Peak profit-share rate")
    single_parser.add_argument("--arrival-rate", type=float, help="Investor arrival probability per day")
    single_parser.add_argument("--price-file", help="CSV or JSON daily price history")
    single_parser.add_argument("--output-dir", default="experiments/single", help="Output directory")
    single_parser.add_argument("--seed", type=int, help="Random seed")
    single_parser.add_argument("--no-save", action="store_true", help="Skip writing output files")

    sweep_parser = subparsers.add_parser("sweep", help="Sweep profit-share peak against arrival rate")
    sweep_parser.add_argument("--ps0", type=float, default=0.10, help="Base profit-share rate")
    sweep_parser.add_argument("--ps1", nargs="+", type=float, default=[0.2, 0.3, 0.5], help="Peak profit-share rates")
    sweep_parser.add_argument("--arrival-rate", nargs="+", type=float, default=[0.1, 0.3, 0.6],
                              help="Investor arrival probabilities")
    sweep_parser.add_argument("--steps", type=int, default=365, help="Simulated days")
    sweep_parser.add_argument("--runs", type=int, default=3, help="Repetitions per combination")
    sweep_parser.add_argument("--output-dir", default="experiments/runs", help="Output directory")
    sweep_parser.add_argument("--seed", type=int, help="Base random seed")

    subparsers.add_parser("scenarios", help="List scenario presets")
    subparsers.add_parser("tiers", help="List investor and manager tiers")

    args = parser.parse_args()
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)

    if args.command == "single":
        run_single(
            scenario=args.scenario,
            steps=args.steps,
            ps0=args.ps0,
            ps1=args.ps1,
            arrival_rate=args.arrival_rate,
            price_file=args.price_file,
            output_dir=args.output_dir,
            seed=args.seed,
            save_outputs=not args.no_save,
        )
    elif args.command == "sweep":
        run_sweep(
            ps1_values=args.ps1,
            arrival_rates=args.arrival_rate,
            ps0=args.ps0,
            steps=args.steps,
            runs=args.runs,
            output_dir=args.output_dir,
            seed=args.seed,
        )
    elif args.command == "scenarios":
        print("Available scenarios:\n")
        for name in SCENARIOS:
            config = SimulationConfig.create_scenario(name)
            print(f"{name}")
            print(f"   • Profit share: {config.ps0:.0%} -> {config.ps1:.0%}")
            print(f"   • Arrivals: investors {config.arrival_rate:.2f}, managers {config.manager_arrival_rate:.2f}")
            print(f"   • Investor lock-up: {config.min_investor_days} days")
            print()
    elif args.command == "tiers":
        for label, types, weights in (
            ("Investors", INVESTOR_TYPES, INVESTOR_TYPE_WEIGHTS),
            ("Managers", MANAGER_TYPES, MANAGER_TYPE_WEIGHTS),
        ):
            print(f"{label}:")
            for agent_type, weight in zip(types, weights):
                print(f"   • {agent_type.name}: ${format_money(agent_type.min_wealth)}-"
                      f"${format_money(agent_type.max_wealth)}, k={agent_type.k}, c={agent_type.c}, p={weight:.0%}")
            print()
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
