"""Configuration for pool simulation."""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional


@dataclass
class ParticipantConfig:
    """Behavioural constants for investor and manager populations.

    Entry probabilities follow clamp(base + sensitivity * clamp(growth), floor, ceiling);
    the remaining fields size deposits and set the contract-age limits.
    """

    # Investor entry decision
    investor_entry_base: float = 0.5
    investor_entry_sensitivity: float = 2.0
    investor_entry_floor: float = 0.05
    investor_entry_ceiling: float = 0.95

    # Manager entry decision
    manager_entry_base: float = 0.4
    manager_entry_sensitivity: float = 2.5
    manager_entry_floor: float = 0.05
    manager_entry_ceiling: float = 0.9

    # Deposit sizing as fractions of sampled wealth
    initial_deposit_min: float = 0.4     # Initial population invests 40-80%
    initial_deposit_max: float = 0.8
    arrival_deposit_min: float = 0.3     # Later arrivals invest 30-60%
    arrival_deposit_max: float = 0.6
    topup_min_fraction: float = 0.05     # Top-ups add 5-15% of original wealth
    topup_max_fraction: float = 0.15

    # Contract ages (steps are days)
    investor_max_contract_days: int = 540   # Forced exit floor, raised to min_investor_days if larger
    investor_grace_days: int = 180          # Damped exit window right after eligibility
    investor_grace_scale: float = 0.6
    manager_max_contract_days: int = 365    # Manager positions force-close after one year

    max_investor_arrivals: int = 3          # Candidates per successful arrival draw


@dataclass
class SimulationConfig:
    """Configuration bundle for a single simulation run.

    Mirrors the external parameter record: profit-share bounds, run length,
    arrival rates, investor lock-up, manager utilization ceiling and an
    optional externally supplied price series.
    """

    # Profit-share rate, interpolated by utilization between base and peak
    ps0: float = 0.10
    ps1: float = 0.30

    # Run length in days; effective length is capped by the price series
    steps: int = 365

    # Arrival processes
    arrival_rate: float = 0.3            # Per-step chance of an investor arrival batch
    manager_arrival_rate: float = 0.70   # Per-step chance of a manager arrival batch
    manager_arrival_max: int = 3         # Upper bound on manager candidates per batch

    # Lifecycle limits
    min_investor_days: int = 365         # Lock-up before investors may exit
    manager_util_threshold: float = 0.9  # New managers admitted only below this utilization

    # Initial population seeded at step 0
    initial_investors: int = 50
    initial_managers: int = 5

    # External price path; absent or shorter than 2 points falls back to synthetic
    price_series: Optional[List[float]] = None

    # Optional seed for the model's random state (no determinism contract without it)
    seed: Optional[int] = None

    participant_config: ParticipantConfig = field(default_factory=ParticipantConfig)

    def __post_init__(self):
        if self.participant_config is None:
            self.participant_config = ParticipantConfig()

    @property
    def manager_util_limit(self) -> float:
        """Utilization ceiling for manager entry, clamped to [0.8, 1.0]."""
        return max(0.8, min(1.0, self.manager_util_threshold))

    def validate(self) -> None:
        """Validate configuration against model invariants."""
        assert 0.0 <= self.ps0 <= 1.0, "ps0 must be within [0, 1]"
        assert 0.0 <= self.ps1 <= 1.0, "ps1 must be within [0, 1]"
        assert self.steps > 0, "steps must be positive"
        assert 0.0 <= self.arrival_rate <= 1.0, "arrival_rate must be within [0, 1]"
        assert 0.0 <= self.manager_arrival_rate <= 1.0, "manager_arrival_rate must be within [0, 1]"
        assert self.manager_arrival_max >= 1
        assert self.min_investor_days > 0, "min_investor_days must be positive"
        assert self.initial_investors >= 0 and self.initial_managers >= 0

        pc = self.participant_config
        assert 0.0 <= pc.investor_entry_floor <= pc.investor_entry_ceiling <= 1.0
        assert 0.0 <= pc.manager_entry_floor <= pc.manager_entry_ceiling <= 1.0
        assert 0.0 < pc.initial_deposit_min <= pc.initial_deposit_max <= 1.0
        assert 0.0 < pc.arrival_deposit_min <= pc.arrival_deposit_max <= 1.0
        assert 0.0 <= pc.topup_min_fraction <= pc.topup_max_fraction
        assert pc.max_investor_arrivals >= 1

    @classmethod
    def from_params(cls, params: dict) -> "SimulationConfig":
        """Build a config from the camelCase parameter record used by callers.

        Missing optional keys keep their defaults; unknown keys are ignored.
        """
        key_map = {
            "ps0": "ps0",
            "ps1": "ps1",
            "steps": "steps",
            "arrivalRate": "arrival_rate",
            "managerArrivalRate": "manager_arrival_rate",
            "minInvestorDays": "min_investor_days",
            "managerUtilThreshold": "manager_util_threshold",
            "priceSeries": "price_series",
            "initialInvestors": "initial_investors",
            "initialManagers": "initial_managers",
            "seed": "seed",
        }
        kwargs = {}
        for key, value in params.items():
            name = key_map.get(key, key)
            if name in cls.__dataclass_fields__ and value is not None:
                kwargs[name] = value
        if "price_series" in kwargs:
            kwargs["price_series"] = [float(p) for p in kwargs["price_series"]]
        return cls(**kwargs)

    @classmethod
    def from_calibration_file(cls, file_path: str, overrides: Optional[dict] = None):
        """
        Load configuration (and participant parameters) from JSON.

        Structure:
        {
            "simulation_config": {...},
            "participant_config": {...}
        }
        """
        path = Path(file_path)
        if not path.exists():
            raise FileNotFoundError(f"Calibration file not found: {file_path}")

        with path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)

        sim_config = data.get("simulation_config", {})
        participant_config_data = data.get("participant_config", {})

        overrides = overrides or {}
        sim_config.update(overrides.get("simulation_config", {}))
        participant_config_data.update(overrides.get("participant_config", {}))

        sim_config["participant_config"] = ParticipantConfig(**participant_config_data)

        return cls(**sim_config)

    def to_model_params(self) -> dict:
        """Convert configuration to the parameter dictionary read by the model."""
        return {
            "ps0": self.ps0,
            "ps1": self.ps1,
            "steps": self.steps,
            "arrival_rate": self.arrival_rate,
            "manager_arrival_rate": self.manager_arrival_rate,
            "manager_arrival_max": self.manager_arrival_max,
            "min_investor_days": self.min_investor_days,
            "initial_investors": self.initial_investors,
            "initial_managers": self.initial_managers,
            "price_series": self.price_series,
            "seed": self.seed,
            "simulation_config": self,
        }

    @classmethod
    def create_scenario(cls, scenario: str, **kwargs):
        """Convenience helper for common profit-share and demand experiments."""
        scenarios = {
            "default": {"ps0": 0.10, "ps1": 0.30},
            "flat_share": {"ps0": 0.20, "ps1": 0.20},                       # Utilization-independent split
            "steep_share": {"ps0": 0.05, "ps1": 0.50},                      # Managers rewarded for deploying capital
            "high_demand": {"arrival_rate": 0.6, "manager_arrival_rate": 0.9},
            "low_demand": {"arrival_rate": 0.1, "manager_arrival_rate": 0.3},
            "long_lockup": {"min_investor_days": 540},
        }

        if scenario not in scenarios:
            available = ", ".join(sorted(scenarios.keys()))
            raise ValueError(f"Unknown scenario '{scenario}'. Available: {available}")

        config_params = scenarios[scenario].copy()
        config_params.update(kwargs)

        return cls(**config_params)
