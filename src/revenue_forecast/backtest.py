from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List

import numpy as np
import pandas as pd

from .data import train_test_split
from .diagnostics import DiagnosticsConfig, WhiteNoiseReport, white_noise_test
from .metrics import average_squared_error
from .models import (
    MLP_ENSEMBLE,
    PERT_BLEND,
    REGRESSOR_COLUMNS,
    TREND_NOISE,
    VAR_MODEL,
    ForecastResult,
    MlpEnsembleConfig,
    TrendNoiseConfig,
    VarConfig,
    forecast_models,
)

logger = logging.getLogger(__name__)

MODEL_NAMES = (TREND_NOISE, VAR_MODEL, MLP_ENSEMBLE, PERT_BLEND)


@dataclass
class BacktestConfig:
    n_ahead: int = 12
    trend_noise: TrendNoiseConfig = field(default_factory=TrendNoiseConfig)
    var: VarConfig = field(default_factory=VarConfig)
    mlp_ensemble: MlpEnsembleConfig = field(default_factory=MlpEnsembleConfig)
    diagnostics: DiagnosticsConfig = field(default_factory=DiagnosticsConfig)


@dataclass
class BacktestResult:
    scores: pd.DataFrame
    forecasts: Dict[str, ForecastResult]
    diagnostics: Dict[str, WhiteNoiseReport]
    actual: np.ndarray

    @property
    def best_model(self) -> str | None:
        valid = self.scores[self.scores["ase"].notna()]
        if valid.empty:
            return None
        return str(valid.iloc[0]["model"])


def rank_scores(records: List[dict]) -> pd.DataFrame:
    scores = pd.DataFrame.from_records(records, columns=["model", "ase", "error"])
    scores = scores.sort_values("ase", na_position="last", kind="mergesort").reset_index(drop=True)
    scores.insert(2, "rank", scores["ase"].rank(method="min"))
    return scores


def run_backtest(table: pd.DataFrame, config: BacktestConfig) -> BacktestResult:
    """Fit every model on all but the last ``n_ahead`` months and score it on the rest.

    The split is shared by all models. A model that cannot be fitted is
    scored NaN with its error message; a length mismatch between actual
    and forecast values aborts the run.
    """
    train, test = train_test_split(table, config.n_ahead)
    actual = test["invoice_amount"].to_numpy(dtype=float)
    logger.info("Backtest: %d training months, %d held out", len(train), len(test))

    forecasts, errors = forecast_models(
        train,
        config.n_ahead,
        test[list(REGRESSOR_COLUMNS)],
        trend_noise=config.trend_noise,
        var=config.var,
        mlp_ensemble=config.mlp_ensemble,
    )

    records: List[dict] = []
    for name in MODEL_NAMES:
        result = forecasts.get(name)
        if result is None:
            records.append({"model": name, "ase": np.nan, "error": errors.get(name, "")})
            continue
        score = average_squared_error(actual, result.point_forecasts)
        logger.info("%s ASE %.4g", name, score)
        records.append({"model": name, "ase": score, "error": ""})

    diagnostics: Dict[str, WhiteNoiseReport] = {}
    for name, result in forecasts.items():
        if result.residuals is None:
            continue
        try:
            diagnostics[name] = white_noise_test(result.residuals, config.diagnostics)
        except ValueError as exc:
            logger.warning("Residual diagnostics skipped for %s: %s", name, exc)

    return BacktestResult(
        scores=rank_scores(records),
        forecasts=forecasts,
        diagnostics=diagnostics,
        actual=actual,
    )
