import numpy as np
import pandas as pd
import pytest

import revenue_forecast.diagnostics as diagnostics
from revenue_forecast.diagnostics import DiagnosticsConfig, residual_acf, white_noise_test


def _ar1(n=200, phi=0.9, seed=2):
    rng = np.random.RandomState(seed)
    values = np.zeros(n)
    for t in range(1, n):
        values[t] = phi * values[t - 1] + rng.normal()
    return values


def _fake_ljungbox(p_values):
    def fake(values, lags, return_df=True):
        return pd.DataFrame({"lb_stat": np.zeros(len(lags)), "lb_pvalue": p_values}, index=lags)

    return fake


def test_residual_acf_skips_missing_and_starts_at_lag_one():
    residuals = np.concatenate([[np.nan, np.nan], np.random.RandomState(0).normal(size=60)])
    acf = residual_acf(residuals, nlags=10)
    assert acf.index.tolist() == list(range(1, 11))
    assert (acf.abs() <= 1).all()


def test_autocorrelated_residuals_are_not_white_noise():
    report = white_noise_test(_ar1())
    assert set(report.p_values) == {24, 48}
    assert not report.is_white_noise
    assert all(p < 0.05 for p in report.p_values.values())
    assert report.acf.iloc[0] > 0.5


def test_white_noise_verdict_matches_p_values():
    report = white_noise_test(np.random.RandomState(11).normal(size=200))
    assert all(0.0 <= p <= 1.0 for p in report.p_values.values())
    assert report.is_white_noise == all(p > 0.05 for p in report.p_values.values())
    assert len(report.acf) == 24


def test_borderline_when_stricter_level_flips_verdict(monkeypatch):
    monkeypatch.setattr(diagnostics, "acorr_ljungbox", _fake_ljungbox([0.07, 0.30]))
    report = white_noise_test(np.random.RandomState(0).normal(size=100))
    assert report.is_white_noise
    assert report.borderline
    assert any("flips" in note for note in report.notes)


def test_clear_pass_is_not_borderline(monkeypatch):
    monkeypatch.setattr(diagnostics, "acorr_ljungbox", _fake_ljungbox([0.40, 0.60]))
    report = white_noise_test(np.random.RandomState(0).normal(size=100))
    assert report.is_white_noise
    assert not report.borderline


def test_lags_capped_for_short_residual_series():
    residuals = np.random.RandomState(4).normal(size=30)
    report = white_noise_test(residuals, DiagnosticsConfig(lags=(24, 48)))
    assert report.effective_lags == {24: 24, 48: 29}
    assert set(report.p_values) == {24, 48}
    assert any("capped" in note for note in report.notes)


def test_custom_significance_level():
    report = white_noise_test(_ar1(), DiagnosticsConfig(lags=(6, 12), significance_level=0.01))
    assert set(report.p_values) == {6, 12}


def test_rejects_too_few_residuals():
    with pytest.raises(ValueError):
        white_noise_test([np.nan, 1.0, np.nan])
