import logging
from pathlib import Path
from typing import Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from dateutil.relativedelta import relativedelta

from .errors import DataAlignmentError, InsufficientObservationsError

logger = logging.getLogger(__name__)

REVENUE_COLUMNS: Sequence[str] = ("Year", "Month_Nbr", "Invoice_Amount")
LEADS_COLUMNS: Sequence[str] = ("Year", "Month_Nbr", "Leads")
KEY_COLUMNS: Sequence[str] = ("Year", "Month_Nbr")

LEAD_LAG = 2


def _read_monthly_table(path: Path, columns: Sequence[str]) -> pd.DataFrame:
    df = pd.read_csv(path)
    missing = set(columns) - set(df.columns)
    if missing:
        raise DataAlignmentError(f"{path} missing required columns: {sorted(missing)}")

    df = df[list(columns)].copy()
    for column in columns:
        df[column] = pd.to_numeric(df[column], errors="coerce")
    df = df.dropna(subset=list(columns))
    if df.empty:
        raise DataAlignmentError(f"No usable rows in {path}. Check the source data.")

    df["Year"] = df["Year"].astype(int)
    df["Month_Nbr"] = df["Month_Nbr"].astype(int)
    return df.sort_values(list(KEY_COLUMNS)).reset_index(drop=True)


def load_revenue_data(revenue_path: Path) -> pd.DataFrame:
    return _read_monthly_table(revenue_path, REVENUE_COLUMNS)


def load_leads_data(leads_path: Path) -> pd.DataFrame:
    return _read_monthly_table(leads_path, LEADS_COLUMNS)


def _month_ordinal(frame: pd.DataFrame) -> pd.Series:
    return frame["Year"] * 12 + (frame["Month_Nbr"] - 1)


def _check_keys(frame: pd.DataFrame, label: str) -> None:
    if frame.duplicated(subset=list(KEY_COLUMNS)).any():
        raise DataAlignmentError(f"{label} table has duplicated (Year, Month_Nbr) keys.")
    bad_months = ~frame["Month_Nbr"].between(1, 12)
    if bad_months.any():
        raise DataAlignmentError(f"{label} table has month numbers outside 1..12.")


def align_series(revenue: pd.DataFrame, leads: pd.DataFrame) -> pd.DataFrame:
    """Join revenue and leads on (Year, Month_Nbr).

    The leads table is truncated to the revenue date range first. Every
    revenue month must be present in the leads table and the revenue
    series must be contiguous; otherwise ``DataAlignmentError`` is raised.
    """
    _check_keys(revenue, "Revenue")
    _check_keys(leads, "Leads")

    revenue = revenue.sort_values(list(KEY_COLUMNS)).reset_index(drop=True)
    ordinals = _month_ordinal(revenue)
    gaps = ordinals.diff().dropna()
    if (gaps != 1).any():
        raise DataAlignmentError("Revenue series has missing calendar months.")

    lead_ordinals = _month_ordinal(leads)
    truncated = leads[lead_ordinals.between(ordinals.iloc[0], ordinals.iloc[-1])]
    dropped = len(leads) - len(truncated)
    if dropped:
        logger.info("Truncated %d leads rows outside the revenue date range", dropped)

    merged = revenue.merge(truncated, on=list(KEY_COLUMNS), how="left", validate="one_to_one")
    if merged["Leads"].isna().any():
        missing = merged.loc[merged["Leads"].isna(), list(KEY_COLUMNS)]
        first = missing.iloc[0]
        raise DataAlignmentError(
            f"Leads missing for {len(missing)} revenue month(s), first {int(first['Year'])}-{int(first['Month_Nbr']):02d}."
        )
    return merged


def build_feature_table(aligned: pd.DataFrame, lead_lag: int = LEAD_LAG) -> pd.DataFrame:
    table = aligned.rename(
        columns={
            "Year": "year",
            "Month_Nbr": "month_number",
            "Invoice_Amount": "invoice_amount",
            "Leads": "leads",
        }
    )
    table = table[["year", "month_number", "invoice_amount", "leads"]].copy()
    table["invoice_amount"] = table["invoice_amount"].astype(float)
    table["leads"] = table["leads"].astype(float)
    table["lagged_leads"] = table["leads"].shift(lead_lag)
    table["time_index"] = np.arange(1, len(table) + 1)
    table.index = pd.RangeIndex(1, len(table) + 1, name="month")
    return table


def load_feature_table(revenue_path: Path, leads_path: Path) -> pd.DataFrame:
    revenue = load_revenue_data(revenue_path)
    leads = load_leads_data(leads_path)
    table = build_feature_table(align_series(revenue, leads))
    logger.info(
        "Loaded %d months (%d-%02d to %d-%02d)",
        len(table),
        table["year"].iloc[0],
        table["month_number"].iloc[0],
        table["year"].iloc[-1],
        table["month_number"].iloc[-1],
    )
    return table


def train_test_split(table: pd.DataFrame, n_test: int = 12) -> Tuple[pd.DataFrame, pd.DataFrame]:
    if n_test < 1:
        raise ValueError("n_test must be at least 1.")
    if len(table) <= n_test:
        raise InsufficientObservationsError(
            f"Table has {len(table)} rows; cannot hold out {n_test} for evaluation."
        )
    return table.iloc[:-n_test].copy(), table.iloc[-n_test:].copy()


def future_calendar(
    table: pd.DataFrame,
    periods: int,
    leads: Optional[Sequence[float]] = None,
) -> pd.DataFrame:
    """Regressor frame (year, month_number, leads) for the months after ``table``.

    Leads for the horizon are not forecast; callers supply them. When
    ``leads`` is omitted the column is NaN.
    """
    last = pd.Timestamp(year=int(table["year"].iloc[-1]), month=int(table["month_number"].iloc[-1]), day=1)
    dates = [last + relativedelta(months=step + 1) for step in range(periods)]
    if leads is not None and len(leads) != periods:
        raise DataAlignmentError(f"Expected {periods} future leads values, got {len(leads)}.")

    last_index = int(table["time_index"].iloc[-1])
    return pd.DataFrame(
        {
            "year": [date.year for date in dates],
            "month_number": [date.month for date in dates],
            "leads": np.asarray(leads, dtype=float) if leads is not None else np.full(periods, np.nan),
            "time_index": np.arange(last_index + 1, last_index + periods + 1),
        }
    )


def future_regressors(table: pd.DataFrame, future_leads: pd.DataFrame, periods: int) -> pd.DataFrame:
    """Match a leads table (Year, Month_Nbr, Leads) onto the months after ``table``."""
    calendar = future_calendar(table, periods).drop(columns=["leads"])
    _check_keys(future_leads, "Future leads")
    merged = calendar.merge(
        future_leads.rename(columns={"Year": "year", "Month_Nbr": "month_number", "Leads": "leads"}),
        on=["year", "month_number"],
        how="left",
    )
    if merged["leads"].isna().any():
        raise DataAlignmentError(
            f"Future leads cover {int(merged['leads'].notna().sum())} of the {periods} forecast months."
        )
    merged["leads"] = merged["leads"].astype(float)
    return merged[["year", "month_number", "leads", "time_index"]]
