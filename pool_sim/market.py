"""Price path provider for the simulated asset.

Produces the daily price series the pool is marked against, either a
synthetic random walk with drift or a caller-supplied history.
"""

import json
import logging
import math
from pathlib import Path
from typing import List, Optional, Sequence

import numpy as np
import polars as pl

logger = logging.getLogger(__name__)

SYNTHETIC_START_PRICE = 20000.0
SYNTHETIC_DRIFT = 0.0004
SYNTHETIC_VOLATILITY = 0.04


class PriceEvolution:
    """Daily random walk with drift.

    Each step multiplies the price by 1 + drift + vol * U(-1, 1). With the
    default volatility the per-step factor stays above 0.96, so prices
    remain positive.
    """

    def __init__(self, rng: Optional[np.random.RandomState] = None):
        self.rng = rng or np.random.RandomState()

    def update_price(self, current_price: float, drift: float, volatility: float) -> float:
        shock = self.rng.uniform(-1.0, 1.0)
        return current_price * (1.0 + drift + volatility * shock)

    def generate_price_path(
        self,
        periods: int,
        initial_price: float = SYNTHETIC_START_PRICE,
        drift: float = SYNTHETIC_DRIFT,
        volatility: float = SYNTHETIC_VOLATILITY,
    ) -> np.ndarray:
        """
        Generate a complete price path of `periods` points.

        Args:
            periods: Number of prices, including the starting price
            initial_price: First price of the path
            drift: Per-step expected return
            volatility: Half-width of the uniform per-step shock

        Returns:
            Array of prices starting at `initial_price`
        """
        periods = max(1, int(periods))
        prices = np.zeros(periods)
        prices[0] = initial_price
        for i in range(1, periods):
            prices[i] = self.update_price(prices[i - 1], drift, volatility)
        return prices


def has_usable_price_series(series: Optional[Sequence[float]]) -> bool:
    """True when `series` has at least two finite, positive prices."""
    if series is None:
        return False
    try:
        values = [float(p) for p in series]
    except (TypeError, ValueError):
        return False
    if len(values) < 2:
        return False
    return all(math.isfinite(p) and p > 0 for p in values)


def resolve_price_path(
    series: Optional[Sequence[float]],
    steps: int,
    rng: Optional[np.random.RandomState] = None,
) -> np.ndarray:
    """Return the price path for a run.

    External series are used as-is when usable; otherwise a synthetic path of
    `steps` points is generated. The fallback is silent here, callers decide
    whether to report it (see `has_usable_price_series`).
    """
    if has_usable_price_series(series):
        return np.asarray([float(p) for p in series], dtype=float)
    return PriceEvolution(rng).generate_price_path(steps)


def load_price_series(file_path: str, column: Optional[str] = None) -> List[float]:
    """
    Load a daily price history from disk.

    Accepts CSV (a `price`/`close` column, or the named `column`, or the last
    numeric column) and JSON (a plain list, or a market-chart document with a
    `prices` list of [timestamp, price] pairs).
    """
    path = Path(file_path)
    if not path.exists():
        raise FileNotFoundError(f"Price file not found: {file_path}")

    if path.suffix.lower() == ".json":
        with path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
        rows = data.get("prices", []) if isinstance(data, dict) else data
        prices = [float(row[-1]) if isinstance(row, (list, tuple)) else float(row) for row in rows]
    else:
        df = pl.read_csv(path)
        if column is None:
            for candidate in ("price", "close", "Close", "Price"):
                if candidate in df.columns:
                    column = candidate
                    break
        if column is None:
            numeric = [name for name, dtype in df.schema.items() if dtype.is_numeric()]
            if not numeric:
                raise ValueError(f"No numeric price column in {file_path}")
            column = numeric[-1]
        prices = df.get_column(column).cast(pl.Float64).drop_nulls().to_list()

    logger.debug("Loaded %d prices from %s", len(prices), file_path)
    return prices
