"""
quantsim CLI runner.

Usage:
    python run.py request.json [--risk-profile profile.json] [--run-id my-run]

Prints the BacktestResult as JSON on stdout.
"""

import argparse
import logging
import sys
from pathlib import Path

import orjson
from dotenv import load_dotenv
from pydantic import ValidationError

# Load env immediately, before any imports that might initialize configuration
load_dotenv()

from quantsim.backtest.engine import BacktestEngine  # noqa: E402
from quantsim.core.exceptions import QuantSimError  # noqa: E402
from quantsim.core.models import RiskProfile  # noqa: E402
from quantsim.core.telemetry import setup_logging, setup_telemetry  # noqa: E402

logger = logging.getLogger("quantsim.cli")


def _read_json(path: Path):
    return orjson.loads(Path(path).read_bytes())


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Run a deterministic backtest")
    parser.add_argument("request", type=Path, help="BacktestRequest JSON file")
    parser.add_argument("--risk-profile", type=Path, help="RiskProfile JSON file")
    parser.add_argument("--run-id", type=str, help="Fixed run id (default: generated)")
    parser.add_argument("--log-level", type=str, default=None, help="Logging level")
    args = parser.parse_args(argv)

    setup_logging(args.log_level)
    setup_telemetry("quantsim-cli")

    try:
        request = _read_json(args.request)
        profile = None
        if args.risk_profile:
            profile = RiskProfile.model_validate(_read_json(args.risk_profile))
        result = BacktestEngine().run(request, risk_profile=profile, run_id=args.run_id)
    except (OSError, orjson.JSONDecodeError, ValidationError) as e:
        logger.error(f"Unable to read input: {e}")
        return 2
    except QuantSimError as e:
        logger.error(f"Backtest failed: {e}")
        return 1

    sys.stdout.buffer.write(
        orjson.dumps(result.model_dump(mode="json", by_alias=True), option=orjson.OPT_INDENT_2)
    )
    sys.stdout.buffer.write(b"\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
