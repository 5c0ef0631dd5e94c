from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from statsmodels.stats.diagnostic import acorr_ljungbox
from statsmodels.tsa.stattools import acf

logger = logging.getLogger(__name__)


@dataclass
class DiagnosticsConfig:
    lags: Tuple[int, ...] = (24, 48)
    significance_level: float = 0.05
    borderline_level: float = 0.10
    acf_lags: int = 24


@dataclass
class WhiteNoiseReport:
    acf: pd.Series
    p_values: Dict[int, float]
    effective_lags: Dict[int, int]
    is_white_noise: bool
    borderline: bool
    notes: list = field(default_factory=list)


def residual_acf(residuals: Sequence[float] | np.ndarray, nlags: int = 24) -> pd.Series:
    """Autocorrelations of the residuals at lags 1..nlags (capped at nobs - 1)."""
    values = _clean(residuals)
    nlags = min(nlags, values.size - 1)
    coefficients = acf(values, nlags=nlags, fft=False)
    return pd.Series(coefficients[1:], index=pd.Index(np.arange(1, nlags + 1), name="lag"), name="acf")


def _clean(residuals: Sequence[float] | np.ndarray) -> np.ndarray:
    values = np.asarray(residuals, dtype=float)
    values = values[~np.isnan(values)]
    if values.size < 3:
        raise ValueError("Residual diagnostics need at least three non-missing residuals.")
    return values


def white_noise_test(
    residuals: Sequence[float] | np.ndarray,
    config: Optional[DiagnosticsConfig] = None,
) -> WhiteNoiseReport:
    """Ljung-Box tests at each configured depth.

    Residuals count as white noise when every p-value exceeds the
    significance level. The verdict is borderline when it would flip
    under the stricter ``borderline_level``.
    """
    if config is None:
        config = DiagnosticsConfig()
    values = _clean(residuals)
    notes = []

    effective_lags: Dict[int, int] = {}
    for requested in config.lags:
        effective = min(requested, values.size - 1)
        if effective < requested:
            notes.append(f"Ljung-Box lag {requested} capped at {effective} for {values.size} residuals")
        effective_lags[requested] = effective

    table = acorr_ljungbox(values, lags=sorted(set(effective_lags.values())), return_df=True)
    p_values = {
        requested: float(table.loc[effective, "lb_pvalue"]) for requested, effective in effective_lags.items()
    }

    is_white_noise = all(p > config.significance_level for p in p_values.values())
    strict_verdict = all(p > config.borderline_level for p in p_values.values())
    borderline = is_white_noise != strict_verdict
    if borderline:
        notes.append(
            f"White-noise verdict flips at significance level {config.borderline_level:.2f}"
        )

    return WhiteNoiseReport(
        acf=residual_acf(values, config.acf_lags),
        p_values=p_values,
        effective_lags=effective_lags,
        is_white_noise=is_white_noise,
        borderline=borderline,
        notes=notes,
    )
