import numpy as np
import pandas as pd
import pytest

from revenue_forecast.data import (
    align_series,
    build_feature_table,
    future_calendar,
    future_regressors,
    load_feature_table,
    load_revenue_data,
    train_test_split,
)
from revenue_forecast.errors import DataAlignmentError, InsufficientObservationsError


def test_lagged_leads_trail_leads_by_two_months(feature_table):
    leads = feature_table["leads"].to_numpy()
    lagged = feature_table["lagged_leads"].to_numpy()
    assert np.isnan(lagged[0]) and np.isnan(lagged[1])
    np.testing.assert_array_equal(lagged[2:], leads[:-2])


def test_feature_table_is_indexed_by_sequential_month(feature_table):
    assert list(feature_table.columns) == [
        "year",
        "month_number",
        "invoice_amount",
        "leads",
        "lagged_leads",
        "time_index",
    ]
    assert feature_table.index[0] == 1
    assert feature_table["time_index"].tolist() == list(range(1, 76))
    assert (feature_table["year"].iloc[0], feature_table["month_number"].iloc[0]) == (2013, 10)


def test_align_truncates_leads_to_revenue_range(monthly_frames):
    revenue_df, leads_df = monthly_frames
    extra = pd.DataFrame({"Year": [2013, 2020], "Month_Nbr": [9, 1], "Leads": [11.0, 12.0]})
    aligned = align_series(revenue_df, pd.concat([extra, leads_df], ignore_index=True))
    assert len(aligned) == len(revenue_df)
    np.testing.assert_array_equal(aligned["Leads"].to_numpy(), leads_df["Leads"].to_numpy())


def test_align_rejects_missing_leads_month(monthly_frames):
    revenue_df, leads_df = monthly_frames
    with pytest.raises(DataAlignmentError, match="Leads missing"):
        align_series(revenue_df, leads_df.drop(index=10))


def test_align_rejects_revenue_gap(monthly_frames):
    revenue_df, leads_df = monthly_frames
    with pytest.raises(DataAlignmentError, match="missing calendar months"):
        align_series(revenue_df.drop(index=5), leads_df)


def test_align_rejects_duplicate_keys(monthly_frames):
    revenue_df, leads_df = monthly_frames
    duplicated = pd.concat([leads_df, leads_df.iloc[[3]]], ignore_index=True)
    with pytest.raises(DataAlignmentError, match="duplicated"):
        align_series(revenue_df, duplicated)


def test_load_feature_table_from_csv(csv_inputs):
    revenue_path, leads_path = csv_inputs
    table = load_feature_table(revenue_path, leads_path)
    assert len(table) == 75
    assert table["lagged_leads"].isna().sum() == 2


def test_load_rejects_missing_columns(tmp_path):
    path = tmp_path / "revenue.csv"
    pd.DataFrame({"Year": [2019], "Month_Nbr": [1]}).to_csv(path, index=False)
    with pytest.raises(DataAlignmentError, match="Invoice_Amount"):
        load_revenue_data(path)


def test_train_test_split_holds_out_last_window(feature_table):
    train, test = train_test_split(feature_table, 12)
    assert len(train) == 63
    assert len(test) == 12
    assert test["time_index"].iloc[0] == 64


def test_train_test_split_requires_enough_rows(feature_table):
    with pytest.raises(InsufficientObservationsError):
        train_test_split(feature_table.iloc[:10], 12)


def test_future_calendar_rolls_over_year_end(feature_table):
    history = feature_table.iloc[:72]
    calendar = future_calendar(history, 12, leads=list(range(12)))
    assert (calendar["year"].iloc[0], calendar["month_number"].iloc[0]) == (2019, 10)
    assert (calendar["year"].iloc[3], calendar["month_number"].iloc[3]) == (2020, 1)
    assert calendar["time_index"].tolist() == list(range(73, 85))
    assert calendar["leads"].tolist() == [float(value) for value in range(12)]


def test_future_regressors_require_every_horizon_month(feature_table):
    future = pd.DataFrame({"Year": [2020, 2020], "Month_Nbr": [1, 2], "Leads": [40.0, 41.0]})
    with pytest.raises(DataAlignmentError, match="cover 2 of the 12"):
        future_regressors(feature_table, future, 12)

    matched = future_regressors(feature_table, future, 2)
    assert matched["leads"].tolist() == [40.0, 41.0]
    assert list(matched.columns) == ["year", "month_number", "leads", "time_index"]


def test_build_feature_table_custom_lag(monthly_frames):
    revenue_df, leads_df = monthly_frames
    table = build_feature_table(align_series(revenue_df, leads_df), lead_lag=3)
    assert table["lagged_leads"].isna().sum() == 3
