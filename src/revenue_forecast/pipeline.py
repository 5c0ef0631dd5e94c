from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

import numpy as np
import pandas as pd

from .backtest import MODEL_NAMES, BacktestConfig, BacktestResult, run_backtest
from .data import future_calendar
from .exploration import ExplorationSummary, explore
from .models import (
    MLP_ENSEMBLE,
    PERT_BLEND,
    TREND_NOISE,
    ForecastResult,
    MlpEnsembleConfig,
    TrendNoiseConfig,
    VarConfig,
    forecast_models,
)

logger = logging.getLogger(__name__)


@dataclass
class ForecastConfig:
    n_ahead: int = 12
    trend_noise: TrendNoiseConfig = field(default_factory=TrendNoiseConfig)
    var: VarConfig = field(default_factory=VarConfig)
    mlp_ensemble: MlpEnsembleConfig = field(default_factory=MlpEnsembleConfig)


@dataclass
class ProductionForecast:
    forecasts: pd.DataFrame
    results: Dict[str, ForecastResult]
    errors: Dict[str, str]
    selected_model: str | None

    @property
    def trend_slope(self) -> float | None:
        result = self.results.get(TREND_NOISE)
        return None if result is None else result.parameters["slope"]


def build_forecasts(
    table: pd.DataFrame,
    config: ForecastConfig,
    future_regressors: Optional[pd.DataFrame] = None,
    preferred_model: Optional[str] = None,
) -> ProductionForecast:
    """Refit every model on the full table and forecast ``n_ahead`` months past its end.

    ``future_regressors`` supplies year, month_number and leads for the
    horizon; without it the MLP ensemble (and so the blend) is skipped.
    """
    forecasts, errors = forecast_models(
        table,
        config.n_ahead,
        future_regressors,
        trend_noise=config.trend_noise,
        var=config.var,
        mlp_ensemble=config.mlp_ensemble,
    )

    selected = preferred_model or PERT_BLEND
    if selected not in forecasts:
        fallback = next((name for name in (PERT_BLEND, TREND_NOISE) if name in forecasts), None)
        if fallback is None and forecasts:
            fallback = next(iter(forecasts))
        logger.warning("Preferred model %s unavailable, using %s", selected, fallback)
        selected = fallback

    frame = future_calendar(table, config.n_ahead)[["year", "month_number", "time_index"]].copy()
    for name in MODEL_NAMES:
        result = forecasts.get(name)
        frame[name] = result.point_forecasts if result is not None else np.nan
    ensemble = forecasts.get(MLP_ENSEMBLE)
    if ensemble is not None:
        frame[f"{MLP_ENSEMBLE}_lower"] = ensemble.lower
        frame[f"{MLP_ENSEMBLE}_upper"] = ensemble.upper
    frame["selected_model"] = selected
    frame["selected_forecast"] = frame[selected] if selected is not None else np.nan

    return ProductionForecast(forecasts=frame, results=forecasts, errors=errors, selected_model=selected)


@dataclass
class AnalysisReport:
    exploration: Optional[ExplorationSummary]
    backtest: BacktestResult
    production: ProductionForecast


def run_analysis(
    table: pd.DataFrame,
    backtest_config: BacktestConfig,
    forecast_config: ForecastConfig,
    future_regressors: Optional[pd.DataFrame] = None,
) -> AnalysisReport:
    try:
        exploration = explore(table)
    except ValueError as exc:
        logger.warning("Exploratory statistics skipped: %s", exc)
        exploration = None
    backtest_result = run_backtest(table, backtest_config)
    production = build_forecasts(
        table,
        forecast_config,
        future_regressors=future_regressors,
        preferred_model=backtest_result.best_model,
    )
    return AnalysisReport(exploration=exploration, backtest=backtest_result, production=production)
