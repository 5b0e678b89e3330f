"""Utility helpers for lightweight test execution without pytest.

Provides assertion helpers and small model builders shared by the test
modules."""

import math

from pool_sim.config import SimulationConfig
from pool_sim.core import PoolMarketModel


def assert_close(actual: float, expected: float, rel: float = 1e-4, abs_tol: float = 1e-9, msg: str = ""):
    """Assert that two floating point values are approximately equal."""
    if not math.isclose(actual, expected, rel_tol=rel, abs_tol=abs_tol):
        suffix = f" ({msg})" if msg else ""
        raise AssertionError(f"Expected {expected} ± {rel}, got {actual}{suffix}")


def expect_raises(exception, func, *args, **kwargs):
    """Assert that a function raises a specific exception."""
    try:
        func(*args, **kwargs)
    except exception:
        return
    raise AssertionError(f"Expected {exception.__name__} to be raised")


def quiet_config(steps: int = 30, prices=None, **overrides) -> SimulationConfig:
    """Config with no initial population and no random arrivals."""
    params = dict(
        steps=steps,
        initial_investors=0,
        initial_managers=0,
        arrival_rate=0.0,
        manager_arrival_rate=0.0,
        price_series=prices,
        seed=7,
    )
    params.update(overrides)
    return SimulationConfig(**params)


def quiet_model(steps: int = 30, prices=None, **overrides) -> PoolMarketModel:
    """Model at day 0 built from `quiet_config`, ready for manual agents.

    Advance it with `model.sim_step()` while `model.running`.
    """
    model = PoolMarketModel(quiet_config(steps, prices, **overrides).to_model_params())
    model.sim_setup()
    return model


def flat_prices(n: int, price: float = 20_000.0):
    return [price] * n
