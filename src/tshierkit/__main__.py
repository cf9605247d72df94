"""CLI entry point for tshierkit.

Enables ``python -m tshierkit <command>`` usage.

Subcommands:
    doctor   : Environment check: core dependencies.
    version  : Print tshierkit version.
    cv       : Cross-validate reconciliation methods on a CSV of bottom series.
    forecast : Print a coherent forecast for a CSV of bottom series.
"""

from __future__ import annotations

import argparse
import importlib
import json
import logging
import sys
from pathlib import Path
from typing import Any


def _check_import(module_name: str) -> tuple[bool, str | None]:
    """Try importing a module and return (success, version_or_none)."""
    try:
        mod = importlib.import_module(module_name)
        version = getattr(mod, "__version__", getattr(mod, "VERSION", None))
        return True, str(version) if version is not None else "installed"
    except ImportError:
        return False, None


def _cmd_doctor() -> int:
    """Run environment diagnostics."""
    import tshierkit

    print(f"tshierkit {tshierkit.__version__}")
    print(f"Python {sys.version}")
    print()

    core_deps = [
        ("numpy", "numpy"),
        ("pandas", "pandas"),
        ("pydantic", "pydantic"),
        ("statsforecast", "statsforecast"),
    ]

    print("Core dependencies:")
    all_core_ok = True
    for display_name, module_name in core_deps:
        ok, version = _check_import(module_name)
        status = f"  {version}" if ok else "  NOT INSTALLED"
        marker = "ok" if ok else "MISSING"
        print(f"  [{marker:>7s}] {display_name}{status}")
        if not ok:
            all_core_ok = False

    print()
    if all_core_ok:
        print("All systems go.")
    else:
        print("WARNING: Some core dependencies are missing. Install with:")
        print("  pip install tshierkit")
    return 0


def _cmd_version() -> int:
    """Print version string."""
    import tshierkit

    print(tshierkit.__version__)
    return 0


def _load_grouping(value: str) -> Any:
    """Grouping as inline JSON (``"[2, [2, 6]]"``) or a path to a JSON file."""
    path = Path(value)
    text = path.read_text(encoding="utf-8") if path.is_file() else value
    return json.loads(text)


def _load_hierarchy(args: argparse.Namespace, frequency: int, start_period: Any) -> Any:
    import pandas as pd

    from tshierkit.pipeline import build_hierarchy

    df = pd.read_csv(args.data)
    return build_hierarchy(
        df,
        _load_grouping(args.grouping),
        frequency=frequency,
        start_period=start_period,
        time_col=args.time_col,
    )


def _cmd_cv(args: argparse.Namespace) -> int:
    """Run cross-validation and print the horizon summary."""
    from pydantic import ValidationError

    from tshierkit.core.config import CVConfig
    from tshierkit.core.errors import TSHierKitError
    from tshierkit.pipeline import run_cross_validation

    try:
        config = CVConfig.from_file(args.config) if args.config else CVConfig()
        hierarchy = _load_hierarchy(args, config.frequency, config.start_period)
        table = run_cross_validation(hierarchy, config)
    except (TSHierKitError, ValidationError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    print(table.summary())
    if args.output:
        table.to_frame().to_csv(args.output, index=False)
        print(f"\nWrote {len(table)} rows to {args.output}")
    return 0


def _cmd_forecast(args: argparse.Namespace) -> int:
    """Print the coherent forecast matrix."""
    from tshierkit.core.errors import TSHierKitError
    from tshierkit.pipeline import forecast

    try:
        hierarchy = _load_hierarchy(args, args.frequency, args.start_period)
        coherent = forecast(
            hierarchy,
            horizon=args.horizon,
            reconciliation=args.method,
            base=args.base,
        )
    except TSHierKitError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    print(coherent.to_frame().T.to_string(float_format=lambda v: f"{v:.4f}"))
    return 0


def _add_data_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--data", required=True, help="CSV with one column per bottom series")
    parser.add_argument(
        "--grouping",
        required=True,
        help="Branching factors as JSON, e.g. '[2, [2, 6]]', or a JSON file path",
    )
    parser.add_argument("--time-col", default=None, help="Column holding period labels")


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="tshierkit",
        description="tshierkit: Coherent forecasting for hierarchical time series",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log progress to stderr")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("doctor", help="Environment check: core dependencies")
    subparsers.add_parser("version", help="Print version")

    cv_parser = subparsers.add_parser("cv", help="Cross-validate reconciliation methods")
    _add_data_args(cv_parser)
    cv_parser.add_argument("--config", default=None, help="CVConfig JSON file")
    cv_parser.add_argument("--output", default=None, help="Write the long result table as CSV")

    fc_parser = subparsers.add_parser("forecast", help="Print a coherent forecast")
    _add_data_args(fc_parser)
    fc_parser.add_argument("--method", default="bu", help="Reconciliation method")
    fc_parser.add_argument("--base", default="arima", help="Base forecasting method")
    fc_parser.add_argument("--horizon", type=int, default=4, help="Forecast length")
    fc_parser.add_argument("--frequency", type=int, default=1, help="Observations per cycle")
    fc_parser.add_argument("--start-period", default=None, help="First period, e.g. 1998Q1")

    args = parser.parse_args(argv)
    if args.verbose:
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )

    if args.command == "doctor":
        return _cmd_doctor()
    elif args.command == "version":
        return _cmd_version()
    elif args.command == "cv":
        return _cmd_cv(args)
    elif args.command == "forecast":
        return _cmd_forecast(args)
    else:
        parser.print_help()
        return 0


if __name__ == "__main__":
    sys.exit(main())
