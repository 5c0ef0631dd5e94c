"""Shared fixtures: synthetic monthly revenue and leads with a two-month lead effect."""

import numpy as np
import pandas as pd
import pytest

from revenue_forecast.data import align_series, build_feature_table
from revenue_forecast.models import MlpEnsembleConfig


def make_monthly_frames(n_months=75, start_year=2013, start_month=10, seed=42):
    rng = np.random.RandomState(seed)
    leads = rng.poisson(40, size=n_months + 2).astype(float)
    noise = np.zeros(n_months)
    shocks = rng.normal(0, 4000, size=n_months)
    for t in range(n_months):
        noise[t] = (0.5 * noise[t - 1] if t else 0.0) + shocks[t]
    t = np.arange(1, n_months + 1)
    revenue = 50000 + 900 * t + 2500 * leads[:-2] + noise

    months = pd.period_range(f"{start_year}-{start_month:02d}", periods=n_months, freq="M")
    revenue_df = pd.DataFrame({"Year": months.year, "Month_Nbr": months.month, "Invoice_Amount": revenue})
    leads_df = pd.DataFrame({"Year": months.year, "Month_Nbr": months.month, "Leads": leads[2:]})
    return revenue_df, leads_df


@pytest.fixture
def monthly_frames():
    return make_monthly_frames()


@pytest.fixture
def feature_table(monthly_frames):
    revenue_df, leads_df = monthly_frames
    return build_feature_table(align_series(revenue_df, leads_df))


@pytest.fixture
def small_mlp_config():
    return MlpEnsembleConfig(reps=2, hidden_candidates=((3,),), cv_folds=3, max_iter=200)


@pytest.fixture
def csv_inputs(tmp_path, monthly_frames):
    revenue_df, leads_df = monthly_frames
    revenue_path = tmp_path / "revenue.csv"
    leads_path = tmp_path / "leads.csv"
    revenue_df.to_csv(revenue_path, index=False)
    leads_df.to_csv(leads_path, index=False)
    return revenue_path, leads_path
