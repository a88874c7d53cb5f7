"""Command line entry point for backtests, projections and risk reports."""

from __future__ import annotations

import argparse
import json
import sys
from datetime import date, timedelta
from pathlib import Path
from typing import Optional, Sequence

from quantfolio.config import QuantfolioConfig
from quantfolio.errors import (
    DataUnavailableError,
    InsufficientDataError,
    QuantfolioError,
    SimulationCancelledError,
    ValidationError,
)
from quantfolio.logging_config import get_logger, setup_logging

logger = get_logger(__name__)

# Exit codes
EXIT_OK = 0
EXIT_INTERNAL = 1
EXIT_USER = 2

_USER_ERRORS = (ValidationError, InsufficientDataError, DataUnavailableError, SimulationCancelledError)


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid date {value!r}, expected YYYY-MM-DD") from exc


def _print_json(payload: dict) -> None:
    json.dump(payload, sys.stdout, indent=2, default=str)
    sys.stdout.write("\n")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_backtest(args: argparse.Namespace, config: QuantfolioConfig) -> int:
    from quantfolio.api import run_backtest
    from quantfolio.backtest.runner import BacktestConfig
    from quantfolio.models import AllocationTarget
    from quantfolio.providers import create_price_provider

    defaults = config.backtest
    benchmark = args.benchmark if args.benchmark is not None else defaults.benchmark_ticker
    bt_config = BacktestConfig(
        tickers=args.tickers,
        allocation=AllocationTarget.from_lists(args.tickers, args.weights),
        start_date=args.start,
        end_date=args.end,
        initial_capital=args.capital if args.capital is not None else defaults.initial_capital,
        rebalancing_frequency=args.rebalance or defaults.rebalancing_frequency,
        benchmark_ticker=benchmark or None,
        calendar_policy=args.calendar or defaults.calendar_policy,
        risk_free_rate=config.risk.risk_free_rate,
    )

    provider = create_price_provider(config.data)
    logger.info("backtest_start", tickers=list(bt_config.tickers), provider=provider.name)
    result = run_backtest(bt_config, provider)

    if args.json:
        _print_json(result.to_dict())
    else:
        print(result.summary())
    return EXIT_OK


def cmd_montecarlo(args: argparse.Namespace, config: QuantfolioConfig) -> int:
    from quantfolio.api import run_monte_carlo
    from quantfolio.models import AllocationTarget
    from quantfolio.montecarlo.projector import MonteCarloConfig
    from quantfolio.providers import create_price_provider

    defaults = config.monte_carlo
    simulations = args.sims if args.sims is not None else defaults.simulations
    if not defaults.min_simulations <= simulations <= defaults.max_simulations:
        raise ValidationError(
            f"Simulations count must be between {defaults.min_simulations} and "
            f"{defaults.max_simulations}, got {simulations}",
            field="simulations",
        )
    if args.years > defaults.max_horizon_years:
        raise ValidationError(
            f"Time horizon is limited to {defaults.max_horizon_years:g} years, got {args.years}",
            field="horizon_years",
        )

    mc_config = MonteCarloConfig(
        allocation=AllocationTarget.from_lists(args.tickers, args.weights),
        horizon_years=args.years,
        simulations=simulations,
        initial_capital=args.capital if args.capital is not None else config.backtest.initial_capital,
        seed=args.seed if args.seed is not None else defaults.seed,
        history_years=defaults.history_years,
        history_end=args.history_end,
    )

    provider = create_price_provider(config.data)
    logger.info("montecarlo_start", tickers=mc_config.tickers, simulations=simulations)
    result = run_monte_carlo(
        mc_config,
        provider,
        max_workers=defaults.max_workers,
        batch_size=defaults.batch_size,
        use_processes=defaults.use_processes,
    )

    if args.json:
        _print_json(result.to_dict())
    else:
        print(result.summary())
    return EXIT_OK


def cmd_risk(args: argparse.Namespace, config: QuantfolioConfig) -> int:
    from quantfolio.analytics.returns import price_returns
    from quantfolio.analytics.risk import historical_cvar, historical_var, rolling_volatility
    from quantfolio.api import compute_risk_metrics
    from quantfolio.models import DateRange
    from quantfolio.providers import create_price_provider

    end = args.end or date.today()
    start = args.start or end - timedelta(days=365)
    period = DateRange(start, end)

    provider = create_price_provider(config.data)
    series = provider(args.ticker, period)
    returns = price_returns(series)
    if len(returns) < 2:
        raise InsufficientDataError(
            f"Need at least 3 usable closes for {args.ticker} between {start} and {end}",
            ticker=args.ticker,
        )

    benchmark_returns = None
    if args.benchmark:
        bench = price_returns(provider(args.benchmark, period))
        # Compare on shared dates only.
        joined = returns.to_frame("asset").join(bench.rename("bench"), how="inner")
        returns, benchmark_returns = joined["asset"], joined["bench"]

    metrics = compute_risk_metrics(returns, benchmark_returns, config.risk.risk_free_rate)
    confidence = config.risk.var_confidence
    rolling = rolling_volatility(series, config.risk.rolling_window)

    payload = {
        "ticker": args.ticker,
        "start": start.isoformat(),
        "end": end.isoformat(),
        "metrics": metrics.to_dict(),
        "var_confidence": confidence,
        "value_at_risk": historical_var(returns, confidence),
        "conditional_value_at_risk": historical_cvar(returns, confidence),
        "rolling_volatility": {
            ts.date().isoformat(): float(v) for ts, v in rolling.items()
        },
    }

    if args.json:
        _print_json(payload)
        return EXIT_OK

    print(f"\n  Risk report: {args.ticker} ({start} to {end})")
    print("-" * 60)
    for key, value in metrics.to_dict().items():
        if value is None:
            continue
        print(f"  {key:<32} {value:>12.4f}" if isinstance(value, float) else f"  {key:<32} {value:>12}")
    print(f"  {'VaR (' + format(confidence, '.0%') + ')':<32} {payload['value_at_risk']:>12.4f}")
    print(f"  {'CVaR (' + format(confidence, '.0%') + ')':<32} {payload['conditional_value_at_risk']:>12.4f}")
    if not rolling.empty:
        print(f"  {'latest rolling volatility':<32} {float(rolling.iloc[-1]):>12.4f}")
    print()
    return EXIT_OK


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="quantfolio",
        description="Portfolio backtesting, Monte Carlo projection and risk analytics",
    )
    parser.add_argument("--mode", help="Deployment mode override (selects config/<mode>.yaml)")
    parser.add_argument("--config-dir", type=Path, help="Path to config directory")
    parser.add_argument("--prices-dir", help="Directory of <ticker>.csv price files")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # backtest
    bt = subparsers.add_parser("backtest", help="Replay a fixed-weight portfolio over history")
    bt.add_argument("--tickers", nargs="+", required=True)
    bt.add_argument("--weights", nargs="+", type=float, required=True,
                    help="Fractional weights in ticker order, summing to 1.0")
    bt.add_argument("--start", type=_parse_date, required=True)
    bt.add_argument("--end", type=_parse_date, required=True)
    bt.add_argument("--capital", type=float)
    bt.add_argument("--rebalance", choices=["monthly", "quarterly", "annually", "none"])
    bt.add_argument("--benchmark", help="Benchmark ticker; pass an empty string to skip")
    bt.add_argument("--calendar", choices=["longest", "union"])
    bt.add_argument("--json", action="store_true", help="Print the full result as JSON")

    # montecarlo
    mc = subparsers.add_parser("montecarlo", help="Project portfolio value forward")
    mc.add_argument("--tickers", nargs="+", required=True)
    mc.add_argument("--weights", nargs="+", type=float, required=True)
    mc.add_argument("--years", type=float, required=True)
    mc.add_argument("--sims", type=int)
    mc.add_argument("--capital", type=float)
    mc.add_argument("--seed", type=int)
    mc.add_argument("--history-end", type=_parse_date,
                    help="Last day of the price history used for estimation (default today)")
    mc.add_argument("--json", action="store_true")

    # risk
    rk = subparsers.add_parser("risk", help="Risk metrics of one ticker's daily returns")
    rk.add_argument("--ticker", required=True)
    rk.add_argument("--start", type=_parse_date)
    rk.add_argument("--end", type=_parse_date)
    rk.add_argument("--benchmark")
    rk.add_argument("--json", action="store_true")

    return parser


_COMMANDS = {
    "backtest": cmd_backtest,
    "montecarlo": cmd_montecarlo,
    "risk": cmd_risk,
}


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return EXIT_INTERNAL

    config = QuantfolioConfig.load(deployment_mode=args.mode, config_dir=args.config_dir)
    if args.prices_dir:
        config.data.prices_dir = args.prices_dir

    setup_logging(
        level=config.deployment.log_level,
        log_format=config.deployment.log_format,
        log_dir=config.deployment.log_dir,
    )

    try:
        return _COMMANDS[args.command](args, config)
    except _USER_ERRORS as exc:
        logger.error("command_failed", command=args.command, error=str(exc),
                     error_type=type(exc).__name__)
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_USER
    except QuantfolioError:
        logger.exception("internal_error", command=args.command)
        return EXIT_INTERNAL


def cli_entry() -> None:
    """CLI entry point for `quantfolio` command."""
    sys.exit(main())
