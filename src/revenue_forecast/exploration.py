"""Exploratory statistics for the revenue and leads series.

Correlation, cross-correlation lag search and spectral peak detection.
A spectral peak whose period is close to the series length comes from a
non-periodic low-frequency component (the trend) and is not evidence of
seasonality; only peaks with periods well below the series length are
flagged as seasonal.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional

import numpy as np
import pandas as pd
from scipy import fft as scipy_fft
from statsmodels.tsa.stattools import acf

logger = logging.getLogger(__name__)

DEFAULT_MAX_LAG = 20
DEFAULT_MAX_PERIOD_FRACTION = 0.25


@dataclass
class CrossCorrelation:
    coefficients: pd.Series
    best_lag: int
    best_coefficient: float


@dataclass
class SpectralPeak:
    frequency: float
    period: float
    db: float
    is_seasonal: bool


@dataclass
class SpectralSummary:
    spectrum: pd.Series
    dominant: SpectralPeak
    seasonal: Optional[SpectralPeak]


def lead_correlations(table: pd.DataFrame) -> Dict[str, float]:
    """Pearson r of invoice_amount against leads and lagged_leads (pairwise complete)."""
    return {
        column: float(table["invoice_amount"].corr(table[column], method="pearson"))
        for column in ("leads", "lagged_leads")
    }


def cross_correlation(
    x: pd.Series | np.ndarray,
    y: pd.Series | np.ndarray,
    max_lag: int = DEFAULT_MAX_LAG,
) -> CrossCorrelation:
    """Sample cross-correlation r(k) = cor(x[t+k], y[t]) for k in -max_lag..max_lag.

    With x = leads and y = revenue, a negative best lag means leads move
    ahead of revenue by that many months.
    """
    x_arr = np.asarray(x, dtype=float)
    y_arr = np.asarray(y, dtype=float)
    if x_arr.shape != y_arr.shape:
        raise ValueError("Cross-correlation needs two series of equal length.")
    n = x_arr.size
    if n < 2:
        raise ValueError("Cross-correlation needs at least two observations.")
    max_lag = min(max_lag, n - 1)

    x_centered = x_arr - x_arr.mean()
    y_centered = y_arr - y_arr.mean()
    denom = n * x_arr.std() * y_arr.std()
    if denom == 0:
        raise ValueError("Cross-correlation is undefined for a constant series.")

    full = np.correlate(x_centered, y_centered, mode="full") / denom
    lags = np.arange(-max_lag, max_lag + 1)
    coefficients = pd.Series(full[lags + n - 1], index=pd.Index(lags, name="lag"), name="ccf")

    best_lag = int(coefficients.idxmax())
    return CrossCorrelation(
        coefficients=coefficients,
        best_lag=best_lag,
        best_coefficient=float(coefficients.loc[best_lag]),
    )


def _parzen_weights(truncation: int) -> np.ndarray:
    u = np.arange(truncation + 1) / truncation
    return np.where(u <= 0.5, 1 - 6 * u**2 + 6 * u**3, 2 * (1 - u) ** 3)


def _fourier_frequencies(n: int) -> np.ndarray:
    return np.arange(1, n // 2 + 1) / n


def spectral_density(series: pd.Series | np.ndarray, truncation: Optional[int] = None) -> pd.Series:
    """Parzen-window spectral estimate in dB, indexed by frequency in (0, 0.5].

    ``truncation`` is the number of autocorrelations kept; larger values
    give a rougher estimate. Default is floor(2 * sqrt(n)).
    """
    values = np.asarray(series, dtype=float)
    n = values.size
    if n < 4:
        raise ValueError("Spectral density needs at least four observations.")
    if truncation is None:
        truncation = int(np.floor(2 * np.sqrt(n)))
    truncation = max(1, min(truncation, n - 1))

    rho = acf(values, nlags=truncation, fft=False)
    weights = _parzen_weights(truncation)
    freqs = _fourier_frequencies(n)
    lags = np.arange(1, truncation + 1)
    cosines = np.cos(2 * np.pi * np.outer(freqs, lags))
    power = 1 + 2 * cosines @ (weights[1:] * rho[1:])
    db = 10 * np.log10(np.maximum(power, np.finfo(float).tiny))
    return pd.Series(db, index=pd.Index(freqs, name="frequency"), name="db")


def periodogram(series: pd.Series | np.ndarray, detrend: bool = True) -> pd.Series:
    values = np.asarray(series, dtype=float)
    n = values.size
    if n < 4:
        raise ValueError("Periodogram needs at least four observations.")
    if detrend:
        t = np.arange(n)
        values = values - np.polyval(np.polyfit(t, values, 1), t)
    else:
        values = values - values.mean()

    variance = values.var()
    if variance == 0:
        raise ValueError("Periodogram is undefined for a constant series.")
    power = np.abs(scipy_fft.rfft(values)) ** 2 / n
    freqs = _fourier_frequencies(n)
    power = power[1 : freqs.size + 1] / variance
    db = 10 * np.log10(np.maximum(power, np.finfo(float).tiny))
    return pd.Series(db, index=pd.Index(freqs, name="frequency"), name="db")


def _peak(spectrum: pd.Series, n_obs: int, max_period_fraction: float) -> SpectralPeak:
    frequency = float(spectrum.idxmax())
    period = 1.0 / frequency
    return SpectralPeak(
        frequency=frequency,
        period=period,
        db=float(spectrum.loc[frequency]),
        is_seasonal=period <= max_period_fraction * n_obs,
    )


def dominant_peak(
    spectrum: pd.Series,
    n_obs: int,
    max_period_fraction: float = DEFAULT_MAX_PERIOD_FRACTION,
) -> SpectralSummary:
    dominant = _peak(spectrum, n_obs, max_period_fraction)
    candidates = spectrum[np.asarray(1.0 / spectrum.index <= max_period_fraction * n_obs)]
    seasonal = _peak(candidates, n_obs, max_period_fraction) if not candidates.empty else None
    if not dominant.is_seasonal:
        logger.info(
            "Strongest spectral peak at period %.1f of %d months is a trend artefact, not seasonality",
            dominant.period,
            n_obs,
        )
    return SpectralSummary(spectrum=spectrum, dominant=dominant, seasonal=seasonal)


@dataclass
class ExplorationSummary:
    correlations: Dict[str, float]
    cross_correlation: CrossCorrelation
    spectral: SpectralSummary
    periodogram: SpectralSummary


def explore(
    table: pd.DataFrame,
    max_lag: int = DEFAULT_MAX_LAG,
    truncation: Optional[int] = None,
    max_period_fraction: float = DEFAULT_MAX_PERIOD_FRACTION,
) -> ExplorationSummary:
    revenue = table["invoice_amount"]
    n_obs = len(revenue)
    ccf = cross_correlation(table["leads"], revenue, max_lag=max_lag)
    logger.info("Leads/revenue cross-correlation peaks at lag %d (r=%.3f)", ccf.best_lag, ccf.best_coefficient)
    return ExplorationSummary(
        correlations=lead_correlations(table),
        cross_correlation=ccf,
        spectral=dominant_peak(spectral_density(revenue, truncation), n_obs, max_period_fraction),
        periodogram=dominant_peak(periodogram(revenue), n_obs, max_period_fraction),
    )
