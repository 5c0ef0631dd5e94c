from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Optional, Sequence, Tuple

from .backtest import BacktestConfig, BacktestResult
from .data import future_regressors, load_feature_table, load_leads_data
from .diagnostics import DiagnosticsConfig
from .exploration import ExplorationSummary
from .models import MlpEnsembleConfig, TrendNoiseConfig, VarConfig
from .pipeline import ForecastConfig, ProductionForecast, run_analysis


def parse_lags(raw: str) -> Tuple[int, ...]:
    return tuple(int(token) for token in raw.split(",") if token.strip())


def summarize_exploration(summary: ExplorationSummary) -> str:
    lines = ["Exploratory statistics:"]
    for column, value in summary.correlations.items():
        lines.append(f"  corr(invoice_amount, {column}) = {value:.3f}")
    ccf = summary.cross_correlation
    lines.append(f"  cross-correlation peak at lag {ccf.best_lag} (r={ccf.best_coefficient:.3f})")
    for label, spectral in (("spectral density", summary.spectral), ("periodogram", summary.periodogram)):
        peak = spectral.dominant
        kind = "seasonal" if peak.is_seasonal else "trend artefact"
        lines.append(
            f"  {label}: peak frequency {peak.frequency:.3f} (period {peak.period:.1f}, {peak.db:.2f} dB, {kind})"
        )
        if spectral.seasonal is not None and not peak.is_seasonal:
            lines.append(
                f"  {label}: strongest seasonal candidate period {spectral.seasonal.period:.1f} ({spectral.seasonal.db:.2f} dB)"
            )
    return "\n".join(lines)


def summarize_backtest(result: BacktestResult) -> str:
    scores = result.scores
    if scores["ase"].notna().sum() == 0:
        return "All models failed; inspect the error column."

    lines = ["Backtest ASE (lower is better):"]
    lines.append(scores[["model", "ase", "rank"]].to_string(index=False, float_format=lambda x: f"{x:.4g}"))

    failures = scores[scores["error"].str.len().gt(0)]
    if not failures.empty:
        lines.append("\nWarnings:")
        for _, row in failures.iterrows():
            lines.append(f"- {row['model']} -> {row['error']}")

    lines.append("\nResidual white-noise tests (Ljung-Box p-values):")
    for name, report in result.diagnostics.items():
        p_values = ", ".join(f"K={lag}: {p:.3f}" for lag, p in report.p_values.items())
        verdict = "white noise" if report.is_white_noise else "autocorrelated"
        if report.borderline:
            verdict += " (borderline)"
        lines.append(f"- {name}: {p_values} -> {verdict}")
    return "\n".join(lines)


def summarize_production(production: ProductionForecast) -> str:
    lines = []
    if production.trend_slope is not None:
        lines.append(f"Trend slope: {production.trend_slope:,.2f} per month")
    lines.append(f"Selected model: {production.selected_model}")
    lines.append(production.forecasts.to_string(index=False, float_format=lambda x: f"{x:.2f}"))
    return "\n".join(lines)


def build_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Monthly revenue forecasting from revenue and sales-lead history.",
    )
    parser.add_argument(
        "--revenue-path",
        type=Path,
        required=True,
        help="Path to the revenue CSV (columns: Year, Month_Nbr, Invoice_Amount).",
    )
    parser.add_argument(
        "--leads-path",
        type=Path,
        required=True,
        help="Path to the leads CSV (columns: Year, Month_Nbr, Leads).",
    )
    parser.add_argument(
        "--future-leads-path",
        type=Path,
        help="Leads CSV covering the forecast horizon; required for the MLP ensemble and blend.",
    )
    parser.add_argument("--horizon", type=int, default=12, help="Months to forecast and hold out (default: 12).")
    parser.add_argument("--max-ar-order", type=int, default=5, help="Largest AR order for the trend model (default: 5).")
    parser.add_argument("--var-lag-max", type=int, default=10, help="Largest VAR lag order considered (default: 10).")
    parser.add_argument(
        "--var-companion",
        choices=("leads", "lagged_leads"),
        default="leads",
        help="Series paired with revenue in the VAR (default: leads).",
    )
    parser.add_argument("--ensemble-reps", type=int, default=30, help="MLP ensemble members (default: 30).")
    parser.add_argument("--ensemble-lag-depth", type=int, default=4, help="Revenue lags fed to the MLPs (default: 4).")
    parser.add_argument("--random-seed", type=int, default=8, help="Seed for the MLP ensemble (default: 8).")
    parser.add_argument("--n-jobs", type=int, default=1, help="Parallel workers for ensemble members (default: 1).")
    parser.add_argument(
        "--ljung-box-lags",
        type=str,
        default="24,48",
        help="Comma-separated Ljung-Box lag depths (default: 24,48).",
    )
    parser.add_argument(
        "--significance-level",
        type=float,
        default=0.05,
        help="Significance level for the white-noise test (default: 0.05).",
    )
    parser.add_argument("--scores-output", type=Path, help="Optional path to write backtest scores as CSV.")
    parser.add_argument("--forecast-output", type=Path, help="Optional path to write the production forecast as CSV.")
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO).")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = build_argument_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    table = load_feature_table(args.revenue_path, args.leads_path)

    trend_cfg = TrendNoiseConfig(max_ar_order=args.max_ar_order)
    var_cfg = VarConfig(lag_max=args.var_lag_max, companion=args.var_companion)
    mlp_cfg = MlpEnsembleConfig(
        reps=args.ensemble_reps,
        lag_depth=args.ensemble_lag_depth,
        random_seed=args.random_seed,
        n_jobs=args.n_jobs,
    )
    backtest_cfg = BacktestConfig(
        n_ahead=args.horizon,
        trend_noise=trend_cfg,
        var=var_cfg,
        mlp_ensemble=mlp_cfg,
        diagnostics=DiagnosticsConfig(
            lags=parse_lags(args.ljung_box_lags),
            significance_level=args.significance_level,
        ),
    )
    forecast_cfg = ForecastConfig(n_ahead=args.horizon, trend_noise=trend_cfg, var=var_cfg, mlp_ensemble=mlp_cfg)

    future = None
    if args.future_leads_path:
        future = future_regressors(table, load_leads_data(args.future_leads_path), args.horizon)

    report = run_analysis(table, backtest_cfg, forecast_cfg, future_regressors=future)

    if report.exploration is not None:
        print(summarize_exploration(report.exploration))
    else:
        print("Exploratory statistics unavailable; see the log.")
    print()
    print(summarize_backtest(report.backtest))
    print()
    print(summarize_production(report.production))

    if args.scores_output:
        report.backtest.scores.to_csv(args.scores_output, index=False)
        print(f"\nSaved scores to {args.scores_output}")

    if args.forecast_output:
        report.production.forecasts.to_csv(args.forecast_output, index=False)
        print(f"Saved forecast to {args.forecast_output}")


if __name__ == "__main__":
    main()
