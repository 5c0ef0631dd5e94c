"""Monthly revenue forecasting from revenue and sales-lead history."""

from .backtest import BacktestConfig, BacktestResult, run_backtest
from .data import build_feature_table, load_feature_table, train_test_split
from .diagnostics import DiagnosticsConfig, white_noise_test
from .errors import (
    DataAlignmentError,
    InsufficientObservationsError,
    LengthMismatchError,
    ModelFitError,
    NumericInstabilityError,
)
from .exploration import explore
from .metrics import average_squared_error
from .models import fit_mlp_ensemble, fit_trend_noise, fit_var, pert_blend
from .pipeline import ForecastConfig, build_forecasts, run_analysis

__all__ = [
    "BacktestConfig",
    "BacktestResult",
    "DataAlignmentError",
    "DiagnosticsConfig",
    "ForecastConfig",
    "InsufficientObservationsError",
    "LengthMismatchError",
    "ModelFitError",
    "NumericInstabilityError",
    "average_squared_error",
    "build_feature_table",
    "build_forecasts",
    "explore",
    "fit_mlp_ensemble",
    "fit_trend_noise",
    "fit_var",
    "load_feature_table",
    "pert_blend",
    "run_analysis",
    "run_backtest",
    "train_test_split",
    "white_noise_test",
]

__version__ = "0.1.0"
