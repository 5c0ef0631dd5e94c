import numpy as np
import pytest

from revenue_forecast.backtest import BacktestConfig
from revenue_forecast.data import future_calendar
from revenue_forecast.pipeline import ForecastConfig, build_forecasts, run_analysis


@pytest.fixture
def forecast_config(small_mlp_config):
    return ForecastConfig(n_ahead=12, mlp_ensemble=small_mlp_config)


@pytest.fixture
def future(feature_table):
    return future_calendar(feature_table, 12, leads=[40.0] * 12)


def test_production_forecast_extends_past_series_end(feature_table, forecast_config, future):
    production = build_forecasts(feature_table, forecast_config, future_regressors=future)
    frame = production.forecasts

    assert len(frame) == 12
    assert (frame["year"].iloc[0], frame["month_number"].iloc[0]) == (2020, 1)
    assert frame["time_index"].iloc[0] == 76
    for column in ("trend_noise", "var", "mlp_ensemble", "pert_blend"):
        assert np.isfinite(frame[column]).all()
    assert (frame["mlp_ensemble_lower"] <= frame["mlp_ensemble_upper"]).all()
    assert production.selected_model == "pert_blend"
    np.testing.assert_allclose(frame["selected_forecast"], frame["pert_blend"])
    assert production.errors == {}


def test_production_trend_slope_reported(feature_table, forecast_config, future):
    production = build_forecasts(feature_table, forecast_config, future_regressors=future)
    # synthetic revenue grows by 900 per month
    assert production.trend_slope == pytest.approx(900, rel=0.5)


def test_without_future_leads_ensemble_and_blend_are_skipped(feature_table, forecast_config):
    production = build_forecasts(feature_table, forecast_config, preferred_model="pert_blend")
    frame = production.forecasts

    assert frame["mlp_ensemble"].isna().all()
    assert frame["pert_blend"].isna().all()
    assert np.isfinite(frame["trend_noise"]).all()
    assert set(production.errors) == {"mlp_ensemble", "pert_blend"}
    assert production.selected_model == "trend_noise"
    np.testing.assert_allclose(frame["selected_forecast"], frame["trend_noise"])


def test_run_analysis_threads_backtest_choice_into_production(feature_table, small_mlp_config, forecast_config, future):
    report = run_analysis(
        feature_table,
        BacktestConfig(n_ahead=12, mlp_ensemble=small_mlp_config),
        forecast_config,
        future_regressors=future,
    )
    assert report.exploration.cross_correlation.best_lag == -2
    assert report.production.selected_model == report.backtest.best_model
    assert len(report.production.forecasts) == 12


def test_run_analysis_survives_constant_leads(feature_table, small_mlp_config, forecast_config, future):
    table = feature_table.copy()
    table["leads"] = 40.0
    table["lagged_leads"] = table["lagged_leads"].where(table["lagged_leads"].isna(), 40.0)

    report = run_analysis(
        table,
        BacktestConfig(n_ahead=12, mlp_ensemble=small_mlp_config),
        forecast_config,
        future_regressors=future,
    )
    assert report.exploration is None
    assert "var" in report.production.errors
    assert np.isfinite(report.production.forecasts["trend_noise"]).all()
    assert report.production.selected_model is not None
