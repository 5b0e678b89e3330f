"""Stochastic decision engine.

Pure functions mapping recent pool growth to entry, exit and top-up
probabilities, plus agent tier sampling.
"""

import math
from typing import Tuple

import numpy as np

from .state import AgentType


# Investor wealth tiers (USD) and exit sensitivities
INVESTOR_TYPES: Tuple[AgentType, ...] = (
    AgentType("minnow", 1_000, 10_000, k=25, c=0.02),
    AgentType("mackerel", 10_000, 100_000, k=15, c=0.05),
    AgentType("tuna", 100_000, 1_000_000, k=8, c=0.08),
    AgentType("whale", 1_000_000, 5_000_000, k=4, c=0.15),
)
INVESTOR_TYPE_WEIGHTS = (0.4, 0.3, 0.2, 0.1)  # Mostly minnows, few whales

# Manager AUM tiers (USD stake) and exit sensitivities
MANAGER_TYPES: Tuple[AgentType, ...] = (
    AgentType("shrimp", 100, 1_000, k=18, c=0.02),
    AgentType("crab", 1_000, 10_000, k=12, c=0.04),
    AgentType("shark", 10_000, 100_000, k=7, c=0.07),
    AgentType("orca", 100_000, 500_000, k=3, c=0.12),
)
MANAGER_TYPE_WEIGHTS = (0.3, 0.3, 0.3, 0.1)

# Growth is clipped to this band before it scales entry probabilities
ENTRY_GROWTH_BOUNDS = (-0.1, 0.2)

# math.exp overflows just above 709
_MAX_EXPONENT = 700.0


def clamp(x: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, x))


def logistic(growth: float, k: float, c: float) -> float:
    """Probability that an agent exits or de-risks after `growth`.

    1 / (1 + exp(k * (growth + c))): larger `k` sharpens the threshold,
    larger `c` makes the agent leave even on flat or slightly positive growth.
    """
    exponent = k * (growth + c)
    if exponent > _MAX_EXPONENT:
        return 0.0
    if exponent < -_MAX_EXPONENT:
        return 1.0
    return 1.0 / (1.0 + math.exp(exponent))


def entry_probability(growth: float, base: float, sensitivity: float, floor: float, ceiling: float) -> float:
    """Chance that a candidate investor or manager joins the pool."""
    g = clamp(growth, *ENTRY_GROWTH_BOUNDS)
    return clamp(base + sensitivity * g, floor, ceiling)


def topup_probability(growth: float) -> float:
    """Chance that an active investor adds capital this step."""
    return clamp(0.05 + growth, 0.0, 0.35)


def profit_share_rate(ps0: float, ps1: float, utilization: float) -> float:
    """Manager profit-share rate, linear in utilization from ps0 to ps1."""
    return ps0 + (ps1 - ps0) * clamp(utilization, 0.0, 1.0)


def _pick(types, weights, rng: np.random.RandomState) -> AgentType:
    r = rng.random_sample()
    cumulative = 0.0
    for agent_type, weight in zip(types, weights):
        cumulative += weight
        if r < cumulative:
            return agent_type
    return types[-1]


def pick_investor_type(rng: np.random.RandomState) -> AgentType:
    return _pick(INVESTOR_TYPES, INVESTOR_TYPE_WEIGHTS, rng)


def pick_manager_type(rng: np.random.RandomState) -> AgentType:
    return _pick(MANAGER_TYPES, MANAGER_TYPE_WEIGHTS, rng)


def sample_wealth(agent_type: AgentType, rng: np.random.RandomState) -> float:
    """Uniform draw within the tier's wealth (or AUM) range."""
    return rng.uniform(agent_type.min_wealth, agent_type.max_wealth)
