"""Core simulation engine for the pooled capital vehicle.

`PoolMarketModel` runs on the AgentPy model lifecycle: `setup` builds fresh
pool state and the step-0 population, every `step` advances one day through
a fixed sequence of phases, and `end` assembles the result record.
"""

import logging
from typing import Any, Dict, List, Optional

import agentpy as ap
import numpy as np

from .config import SimulationConfig
from .decisions import profit_share_rate
from .ledger import ExitQueue, PoolLedger
from .market import resolve_price_path
from .metrics import compute_investor_pnl, compute_manager_pnl, snapshots_to_dataframe
from .participants import InvestorPopulation, ManagerPopulation
from .state import MetricsSnapshot, SimulationResults, Transaction

logger = logging.getLogger(__name__)


class PoolMarketModel(ap.Model):
    """Agent-based model of the pool.

    Each step runs, in order: market move, growth and utilization, the
    profit-share rate, investor top-ups, manager exits, manager entries,
    investor exits, investor arrivals and the metrics snapshot. The order is
    part of the model: it decides which intermediate utilization each phase
    sees.

    `self.t` is the day index. The run stops itself once the price path is
    exhausted, so a series shorter than `steps` truncates the run.
    """

    def setup(self) -> None:
        """Initialize pool state, price path and the step-0 population."""
        self.simulation_config: SimulationConfig = self.p.get("simulation_config")
        if self.simulation_config is None:
            # Reconstruct config from individual parameters for experiment compatibility
            self.simulation_config = SimulationConfig()
            for key, value in self.p.items():
                if key in SimulationConfig.__dataclass_fields__:
                    setattr(self.simulation_config, key, value)
        config = self.simulation_config

        # Numpy stream derived from AgentPy's seeded generator
        self.rng = np.random.RandomState(self.random.getrandbits(32))

        steps = int(self.p.get("steps", config.steps))
        self.prices = resolve_price_path(self.p.get("price_series", config.price_series), steps, self.rng)
        self.total_steps = min(steps, len(self.prices))
        if self.total_steps < 2:
            raise ValueError(f"Simulation needs at least 2 steps after price alignment, got {self.total_steps}")

        self.asset_price = float(self.prices[0])
        self.ps0 = self.p.get("ps0", config.ps0)
        self.ps1 = self.p.get("ps1", config.ps1)

        self.ledger = PoolLedger()
        self.exit_queue = ExitQueue()
        self.transactions: List[Transaction] = []
        self.metrics: List[MetricsSnapshot] = []
        self.results: Optional[SimulationResults] = None

        shared = (config, self.rng, self.ledger, self.exit_queue, self.transactions, self.drain_exit_queue)
        self.investors = InvestorPopulation(*shared)
        self.managers = ManagerPopulation(*shared)

        self.investors.seed_initial(self.p.get("initial_investors", config.initial_investors), self.asset_price)
        self.profit_share_rate = profit_share_rate(self.ps0, self.ps1, self.ledger.utilization(self.asset_price))
        self.managers.seed_initial(
            self.p.get("initial_managers", config.initial_managers),
            self.asset_price,
            self.profit_share_rate,
        )

        self.pool_value_prev = self.ledger.pool_value(self.asset_price)

    def update(self) -> None:
        """Stop once the last aligned price has been stepped."""
        if self.t >= self.total_steps - 1:
            self.stop()

    def step(self) -> None:
        """Advance the pool from day t-1 to t."""
        t = self.t
        old_price = self.asset_price
        price = float(self.prices[t])
        ledger = self.ledger

        # 1) Market move on locked capital
        market_pnl = ledger.locked_asset * (price - old_price)
        self.asset_price = price
        inflow_before = ledger.total_inflow
        outflow_before = ledger.total_outflow

        # 2) Growth and utilization after the move
        value_after_market = ledger.pool_value(price)
        if self.pool_value_prev > 0:
            growth = (value_after_market - self.pool_value_prev) / self.pool_value_prev
        else:
            growth = 0.0
        utilization = ledger.utilization(price)

        # 3) Profit-share rate offered to managers entering this step
        self.profit_share_rate = profit_share_rate(self.ps0, self.ps1, utilization)

        # 4) Lifecycle phases
        self.investors.exits_in_step = 0
        self.investors.process_topups(t, price, growth)
        manager_exits = self.managers.process_exits(t, price, growth)
        self.managers.process_entries(t, price, growth, self.profit_share_rate)
        self.investors.process_exits(t, price, growth)
        self.investors.process_arrivals(t, price, growth)

        # 5) Snapshot
        pool_value = ledger.pool_value(price)
        net_flow = (ledger.total_inflow - inflow_before) - (ledger.total_outflow - outflow_before)
        self.metrics.append(
            MetricsSnapshot(
                step=t,
                pool_value=pool_value,
                token_price=ledger.token_price(price),
                utilization=ledger.utilization(price),
                profit_share_rate=self.profit_share_rate,
                active_investors=self.investors.active_count,
                active_managers=self.managers.active_count,
                exits=self.investors.exits_in_step,
                manager_exits=manager_exits,
                cumulative_fees=ledger.cumulative_fees,
                asset_price=price,
                cash=ledger.cash,
                locked_asset=ledger.locked_asset,
                total_tokens=ledger.total_tokens,
                queue_backlog_usd=self.exit_queue.backlog_usd(),
                growth=growth,
                net_flow=net_flow,
                market_pnl=market_pnl,
                net_asset_value=ledger.net_asset_value(price),
            )
        )

        self.record("pool_value", pool_value)
        self.record("token_price", self.metrics[-1].token_price)
        self.record("utilization", self.metrics[-1].utilization)
        self.pool_value_prev = pool_value

    def drain_exit_queue(self, step: int, price: float) -> None:
        """Pay queued obligations from whatever cash is available, oldest first."""
        for settlement in self.exit_queue.drain(self.ledger):
            if settlement.entry.owner_kind == "manager":
                self.managers.settle_queued(settlement, step, price)
            else:
                self.investors.settle_queued(settlement, step, price)

    def end(self) -> None:
        """Build the result record, marking open positions at the final step."""
        final_step = self.t
        final_price = self.asset_price
        self.results = SimulationResults(
            metrics=list(self.metrics),
            investor_pnl=compute_investor_pnl(
                self.investors.agents,
                self.exit_queue,
                self.ledger.token_price(final_price),
                final_step,
            ),
            manager_pnl=compute_manager_pnl(self.managers.agents, final_price, final_step),
            exit_queue=self.exit_queue.snapshot(),
            transactions=list(self.transactions),
            price_path=tuple(float(p) for p in self.prices[: self.total_steps]),
            config=self.simulation_config,
        )
        logger.info(
            "Run complete: %d steps, pool value %.2f, %d queued exits",
            final_step,
            self.ledger.pool_value(final_price),
            len(self.exit_queue),
        )
        self.report("final_pool_value", self.ledger.pool_value(final_price))
        self.report("final_token_price", self.ledger.token_price(final_price))


class PoolSimulation:
    """High-level simulation interface around `PoolMarketModel`."""

    def __init__(self, config: SimulationConfig):
        self.config = config
        self.config.validate()
        self._last_results: Optional[SimulationResults] = None

    def run(self, steps: Optional[int] = None) -> SimulationResults:
        """Run a full simulation; `steps` overrides the configured length."""
        params = self.config.to_model_params()
        if steps is not None:
            params["steps"] = steps

        model = PoolMarketModel(params)
        model.run(display=False)
        self._last_results = model.results
        return self._last_results

    def get_dataframe(self):
        """Get polars DataFrame of the last run's metrics, or None before a run."""
        if not self._last_results:
            return None
        return snapshots_to_dataframe(self._last_results.metrics)


def run_simulation(params: Dict[str, Any]) -> SimulationResults:
    """Run one simulation from a camelCase parameter record.

    Recognised keys: ps0, ps1, steps, arrivalRate, managerArrivalRate,
    minInvestorDays, managerUtilThreshold, priceSeries (plus initialInvestors,
    initialManagers and seed).
    """
    return PoolSimulation(SimulationConfig.from_params(params)).run()
