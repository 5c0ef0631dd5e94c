from __future__ import annotations

import logging
import warnings
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import statsmodels.api as sm
from joblib import Parallel, delayed
from sklearn.compose import TransformedTargetRegressor
from sklearn.exceptions import ConvergenceWarning
from sklearn.model_selection import GridSearchCV, KFold
from sklearn.neural_network import MLPRegressor
from sklearn.pipeline import make_pipeline
from sklearn.preprocessing import StandardScaler
from statsmodels.tools.sm_exceptions import ConvergenceWarning as StatsmodelsConvergenceWarning
from statsmodels.tsa.api import VAR
from statsmodels.tsa.statespace.sarimax import SARIMAX

from .errors import (
    DataAlignmentError,
    InsufficientObservationsError,
    LengthMismatchError,
    ModelFitError,
    NumericInstabilityError,
)

logger = logging.getLogger(__name__)

TREND_NOISE = "trend_noise"
VAR_MODEL = "var"
MLP_ENSEMBLE = "mlp_ensemble"
PERT_BLEND = "pert_blend"

REGRESSOR_COLUMNS: Sequence[str] = ("year", "month_number", "leads", "time_index")
TREND_TERMS = {"n": 0, "c": 1, "ct": 2, "ctt": 3}


@dataclass
class ForecastResult:
    model: str
    point_forecasts: np.ndarray
    residuals: Optional[np.ndarray] = None
    lower: Optional[np.ndarray] = None
    upper: Optional[np.ndarray] = None
    parameters: dict = field(default_factory=dict)


def _pad_residuals(residuals: np.ndarray, n_obs: int) -> np.ndarray:
    padded = np.full(n_obs, np.nan)
    padded[n_obs - residuals.size :] = residuals
    return padded


# Linear trend plus AR noise


@dataclass
class TrendNoiseConfig:
    max_ar_order: int = 5


@dataclass
class FittedTrendNoise:
    intercept: float
    slope: float
    ar_order: int
    aic: float
    n_obs: int
    noise: object

    def forecast(self, n_ahead: int) -> ForecastResult:
        t = np.arange(self.n_obs + 1, self.n_obs + n_ahead + 1, dtype=float)
        trend = self.intercept + self.slope * t
        noise = np.asarray(self.noise.forecast(steps=n_ahead), dtype=float)
        return ForecastResult(
            model=TREND_NOISE,
            point_forecasts=trend + noise,
            residuals=np.asarray(self.noise.resid, dtype=float),
            parameters={"intercept": self.intercept, "slope": self.slope, "ar_order": self.ar_order},
        )


def _fit_ar_noise(noise: np.ndarray, order: int):
    model = SARIMAX(noise, order=(order, 0, 0), trend="n")
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", StatsmodelsConvergenceWarning)
        return model.fit(disp=False)


def fit_trend_noise(series: pd.Series | np.ndarray, config: Optional[TrendNoiseConfig] = None) -> FittedTrendNoise:
    """Fit revenue = a + b * t + AR(p) noise, choosing p in 0..max_ar_order by AIC."""
    if config is None:
        config = TrendNoiseConfig()
    y = np.asarray(series, dtype=float)
    n = y.size
    if n < 3:
        raise InsufficientObservationsError(f"Trend-plus-noise needs at least 3 observations, got {n}.")

    max_order = min(config.max_ar_order, n // 2 - 1)
    if max_order < config.max_ar_order:
        logger.warning("Reduced AR order search to 0..%d for %d observations", max_order, n)

    t = np.arange(1, n + 1, dtype=float)
    try:
        ols = sm.OLS(y, sm.add_constant(t)).fit()
    except np.linalg.LinAlgError as exc:
        raise NumericInstabilityError(f"Trend regression failed: {exc}") from exc
    intercept, slope = (float(value) for value in ols.params)
    noise = y - ols.fittedvalues

    best_aic = np.inf
    best_order = None
    best_fit = None
    for order in range(0, max_order + 1):
        try:
            fitted = _fit_ar_noise(noise, order)
        except (ValueError, np.linalg.LinAlgError):
            continue
        if np.isfinite(fitted.aic) and fitted.aic < best_aic:
            best_aic = fitted.aic
            best_order = order
            best_fit = fitted

    if best_fit is None:
        raise NumericInstabilityError("No AR noise order could be fitted to the trend residuals.")

    logger.info("Trend-plus-noise: slope %.2f per period, AR(%d), AIC %.2f", slope, best_order, best_aic)
    return FittedTrendNoise(
        intercept=intercept,
        slope=slope,
        ar_order=best_order,
        aic=float(best_aic),
        n_obs=n,
        noise=best_fit,
    )


# Vector autoregression


@dataclass
class VarConfig:
    lag_max: int = 10
    companion: str = "leads"
    trend: str = "ct"


@dataclass
class FittedVar:
    order: int
    companion: str
    selected_orders: dict
    n_window: int
    history: np.ndarray
    results: object

    def forecast(self, n_ahead: int) -> ForecastResult:
        forecast = self.results.forecast(self.history[-self.order :], steps=n_ahead)
        residuals = np.asarray(self.results.resid, dtype=float)[:, 0]
        return ForecastResult(
            model=VAR_MODEL,
            point_forecasts=np.asarray(forecast[:, 0], dtype=float),
            residuals=_pad_residuals(residuals, self.n_window),
            parameters={"order": self.order, "companion": self.companion},
        )


def vote_order(selected_orders: dict) -> int:
    """Most frequently selected order among the criteria; ties go to the smaller order."""
    votes = Counter(max(1, int(order)) for order in selected_orders.values())
    top = max(votes.values())
    return min(order for order, count in votes.items() if count == top)


def _check_var_window(n_obs: int, n_vars: int, order: int, n_trend: int) -> None:
    if order >= n_obs - n_trend or n_obs - order <= n_vars * order + n_trend:
        raise InsufficientObservationsError(
            f"VAR({order}) with {n_trend} deterministic terms cannot be fitted on {n_obs} observations."
        )


def fit_var(train: pd.DataFrame, config: Optional[VarConfig] = None) -> FittedVar:
    if config is None:
        config = VarConfig()
    if config.companion not in ("leads", "lagged_leads"):
        raise ValueError(f"Unknown VAR companion series: {config.companion}")
    if config.trend not in TREND_TERMS:
        raise ValueError(f"Unknown VAR trend specification: {config.trend}")

    data = train[["invoice_amount", config.companion]].dropna().to_numpy(dtype=float)
    n_obs, n_vars = data.shape
    n_trend = TREND_TERMS[config.trend]

    lag_cap = min(config.lag_max, (n_obs - n_trend - 1) // (n_vars + 1))
    if lag_cap < 1:
        raise InsufficientObservationsError(f"VAR needs more than {n_obs} observations.")
    if lag_cap < config.lag_max:
        logger.warning("Reduced VAR lag search to 1..%d for %d observations", lag_cap, n_obs)

    model = VAR(data)
    try:
        selection = model.select_order(maxlags=lag_cap, trend=config.trend)
        order = vote_order(selection.selected_orders)
        _check_var_window(n_obs, n_vars, order, n_trend)
        results = model.fit(order, trend=config.trend)
    except (ValueError, np.linalg.LinAlgError) as exc:
        # constant columns clash with trend="ct"
        raise NumericInstabilityError(f"VAR estimation failed: {exc}") from exc

    logger.info("VAR(%d) on invoice_amount + %s, criteria %s", order, config.companion, selection.selected_orders)
    return FittedVar(
        order=order,
        companion=config.companion,
        selected_orders=dict(selection.selected_orders),
        n_window=len(train),
        history=data,
        results=results,
    )


# Multilayer perceptron ensemble


@dataclass
class MlpEnsembleConfig:
    reps: int = 30
    lag_depth: int = 4
    hidden_candidates: Tuple[Tuple[int, ...], ...] = ((2,), (5,), (10,), (5, 5))
    cv_folds: int = 5
    random_seed: int = 8
    interval_level: float = 0.95
    max_iter: int = 500
    n_jobs: int = 1


def lagged_design(y: np.ndarray, regressors: np.ndarray, lag_depth: int) -> Tuple[np.ndarray, np.ndarray]:
    """Rows t = lag_depth..n-1 of [y[t-1], ..., y[t-lag_depth], regressors[t]] and target y[t]."""
    n = y.size
    lags = [y[lag_depth - lag : n - lag] for lag in range(1, lag_depth + 1)]
    features = np.column_stack(lags + [regressors[lag_depth:]])
    return features, y[lag_depth:]


def _build_member(config: MlpEnsembleConfig, seed: int) -> GridSearchCV:
    estimator = TransformedTargetRegressor(
        regressor=make_pipeline(
            StandardScaler(),
            MLPRegressor(solver="lbfgs", max_iter=config.max_iter, random_state=seed),
        ),
        transformer=StandardScaler(),
    )
    return GridSearchCV(
        estimator,
        {"regressor__mlpregressor__hidden_layer_sizes": list(config.hidden_candidates)},
        cv=KFold(n_splits=config.cv_folds, shuffle=True, random_state=seed),
        scoring="neg_mean_squared_error",
    )


def _fit_member(features: np.ndarray, target: np.ndarray, config: MlpEnsembleConfig, seed: int):
    search = _build_member(config, seed)
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", ConvergenceWarning)
        search.fit(features, target)
    return search.best_estimator_


@dataclass
class FittedMlpEnsemble:
    members: List[object]
    lag_depth: int
    history: np.ndarray
    interval_level: float = 0.95

    def member_paths(self, future_regressors: pd.DataFrame | np.ndarray) -> np.ndarray:
        future = np.asarray(future_regressors, dtype=float)
        if np.isnan(future).any():
            raise ModelFitError("Future regressors contain missing values; leads for the horizon must be known.")
        paths = np.empty((len(self.members), future.shape[0]))
        for idx, member in enumerate(self.members):
            history = list(self.history[-self.lag_depth :])
            for step in range(future.shape[0]):
                lags = history[::-1][: self.lag_depth]
                row = np.concatenate([lags, future[step]]).reshape(1, -1)
                yhat = float(np.ravel(member.predict(row))[0])
                paths[idx, step] = yhat
                history.append(yhat)
        return paths

    def forecast(
        self,
        n_ahead: int,
        future_regressors: pd.DataFrame | np.ndarray,
        insample_regressors: Optional[pd.DataFrame | np.ndarray] = None,
    ) -> ForecastResult:
        if len(future_regressors) != n_ahead:
            raise ModelFitError(f"Need {n_ahead} rows of future regressors, got {len(future_regressors)}.")
        paths = self.member_paths(future_regressors)
        tail = (1 - self.interval_level) / 2
        residuals = None
        if insample_regressors is not None:
            features, target = lagged_design(
                self.history, np.asarray(insample_regressors, dtype=float), self.lag_depth
            )
            fitted = np.mean([np.ravel(member.predict(features)) for member in self.members], axis=0)
            residuals = _pad_residuals(target - fitted, self.history.size)
        return ForecastResult(
            model=MLP_ENSEMBLE,
            point_forecasts=paths.mean(axis=0),
            residuals=residuals,
            lower=np.quantile(paths, tail, axis=0),
            upper=np.quantile(paths, 1 - tail, axis=0),
            parameters={"reps": len(self.members), "lag_depth": self.lag_depth},
        )


def member_seeds(random_seed: int, reps: int) -> np.ndarray:
    return np.random.RandomState(random_seed).randint(0, 2**31 - 1, size=reps)


def fit_mlp_ensemble(
    series: pd.Series | np.ndarray,
    regressors: pd.DataFrame | np.ndarray,
    config: Optional[MlpEnsembleConfig] = None,
) -> FittedMlpEnsemble:
    """Train ``reps`` MLP regressors on lagged revenue plus the exogenous regressors.

    Each member picks its hidden layer sizes by k-fold cross-validation.
    Member seeds derive from ``config.random_seed`` only, so repeated
    calls with the same inputs give the same ensemble.
    """
    if config is None:
        config = MlpEnsembleConfig()
    y = np.asarray(series, dtype=float)
    exog = np.asarray(regressors, dtype=float)
    if exog.shape[0] != y.size:
        raise LengthMismatchError(f"Regressors have {exog.shape[0]} rows for {y.size} observations.")
    if np.isnan(exog).any() or np.isnan(y).any():
        raise ModelFitError("MLP ensemble inputs contain missing values.")
    if y.size - config.lag_depth < 2 * config.cv_folds:
        raise InsufficientObservationsError(
            f"MLP ensemble with lag depth {config.lag_depth} and {config.cv_folds}-fold CV needs more than {y.size} observations."
        )

    features, target = lagged_design(y, exog, config.lag_depth)
    seeds = member_seeds(config.random_seed, config.reps)
    members = Parallel(n_jobs=config.n_jobs)(
        delayed(_fit_member)(features, target, config, int(seed)) for seed in seeds
    )
    logger.info("Fitted %d MLP ensemble members on %d rows", len(members), len(target))
    return FittedMlpEnsemble(
        members=list(members),
        lag_depth=config.lag_depth,
        history=y,
        interval_level=config.interval_level,
    )


def pert_blend(
    optimistic: Sequence[float] | np.ndarray,
    most_likely: Sequence[float] | np.ndarray,
    pessimistic: Sequence[float] | np.ndarray,
) -> np.ndarray:
    """(pessimistic + 4 * most_likely + optimistic) / 6, elementwise."""
    arrays = [np.asarray(values, dtype=float) for values in (optimistic, most_likely, pessimistic)]
    if len({array.shape for array in arrays}) != 1:
        raise LengthMismatchError("PERT blend inputs must have the same length.")
    optimistic_arr, most_likely_arr, pessimistic_arr = arrays
    return (pessimistic_arr + 4 * most_likely_arr + optimistic_arr) / 6


def forecast_models(
    train: pd.DataFrame,
    n_ahead: int,
    future_regressors: Optional[pd.DataFrame],
    trend_noise: Optional[TrendNoiseConfig] = None,
    var: Optional[VarConfig] = None,
    mlp_ensemble: Optional[MlpEnsembleConfig] = None,
) -> Tuple[Dict[str, ForecastResult], Dict[str, str]]:
    """Fit every model on ``train`` and forecast ``n_ahead`` periods.

    A model that fails is left out of the returned forecasts and its
    message is recorded under its name in the errors. Length mismatches
    and misaligned data still propagate.
    """
    forecasts: Dict[str, ForecastResult] = {}
    errors: Dict[str, str] = {}
    revenue = train["invoice_amount"]

    def run_mlp_ensemble() -> ForecastResult:
        if future_regressors is None:
            raise ModelFitError("Future regressors (year, month_number, leads) are required.")
        insample = train[list(REGRESSOR_COLUMNS)]
        ensemble = fit_mlp_ensemble(revenue, insample, mlp_ensemble)
        return ensemble.forecast(n_ahead, future_regressors[list(REGRESSOR_COLUMNS)], insample_regressors=insample)

    runners = (
        (TREND_NOISE, lambda: fit_trend_noise(revenue, trend_noise).forecast(n_ahead)),
        (VAR_MODEL, lambda: fit_var(train, var).forecast(n_ahead)),
        (MLP_ENSEMBLE, run_mlp_ensemble),
    )
    for name, runner in runners:
        try:
            forecasts[name] = runner()
        except (LengthMismatchError, DataAlignmentError):
            raise
        except Exception as exc:  # noqa: BLE001
            logger.warning("%s failed: %s", name, exc)
            errors[name] = str(exc) or type(exc).__name__

    components = (MLP_ENSEMBLE, TREND_NOISE, VAR_MODEL)
    missing = [name for name in components if name not in forecasts]
    if missing:
        errors[PERT_BLEND] = f"Blend needs forecasts from {', '.join(missing)}."
    else:
        optimistic, most_likely, pessimistic = (forecasts[name] for name in components)
        forecasts[PERT_BLEND] = ForecastResult(
            model=PERT_BLEND,
            point_forecasts=pert_blend(
                optimistic.point_forecasts, most_likely.point_forecasts, pessimistic.point_forecasts
            ),
            residuals=pert_blend(optimistic.residuals, most_likely.residuals, pessimistic.residuals),
        )
    return forecasts, errors
