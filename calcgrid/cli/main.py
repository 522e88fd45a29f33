"""Entry point for the CalcGrid command line.

Usage:
    calcgrid calc "3 + 5 * (2 - 4) / 2"          # submit to the coordinator
    calcgrid calc --wait "100 * (2 + 12) / 14"   # submit and wait for the result
    calcgrid list                                # all expressions
    calcgrid get expr_1                          # one expression
    calcgrid wait expr_1                         # block until expr_1 completes
    calcgrid health                              # coordinator status
    calcgrid eval "10 + 2 * 6"                   # evaluate locally, no server
"""

import argparse
import asyncio
import os
import sys
from typing import Optional

from calcgrid.calculator import CalculationError, calc, format_result
from calcgrid.cli.client import APIError, CalcGridClient
from calcgrid.cli.formatter import CLIFormatter


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="CalcGrid distributed arithmetic calculator",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__.split("Usage:", 1)[1],
    )
    parser.add_argument(
        "--url",
        default=os.environ.get("CALCGRID_API_URL", "http://localhost:8080"),
        help="Coordinator base URL (default: $CALCGRID_API_URL or localhost:8080)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=30.0,
        help="HTTP request timeout in seconds (default: 30)",
    )
    parser.add_argument("--json", action="store_true", help="Print raw JSON responses")

    sub = parser.add_subparsers(dest="command", required=True)

    p_calc = sub.add_parser("calc", help="Submit an expression")
    p_calc.add_argument("expression")
    p_calc.add_argument("--wait", action="store_true", help="Wait for the result")
    p_calc.add_argument(
        "--max-wait", type=float, default=60.0, help="Seconds to wait with --wait before giving up"
    )

    sub.add_parser("list", help="List all expressions")

    p_get = sub.add_parser("get", help="Show one expression")
    p_get.add_argument("id")

    p_wait = sub.add_parser("wait", help="Wait for an expression to complete")
    p_wait.add_argument("id")
    p_wait.add_argument("--max-wait", type=float, default=60.0, help="Seconds before giving up")

    sub.add_parser("health", help="Coordinator health")

    p_eval = sub.add_parser("eval", help="Evaluate locally without a coordinator")
    p_eval.add_argument("expression")

    return parser.parse_args(argv)


async def run_command(args: argparse.Namespace, fmt: CLIFormatter) -> int:
    """Run one remote command; returns the process exit code."""
    async with CalcGridClient(base_url=args.url, timeout=args.timeout) as api:
        try:
            if args.command == "calc":
                data = await api.calculate(args.expression)
                if args.wait and "result" not in data:
                    data = await api.wait_for_expression(data["id"], timeout=args.max_wait)
                    _show(fmt, args, data, fmt.print_expression)
                else:
                    _show(fmt, args, data, fmt.print_submitted)
            elif args.command == "list":
                _show(fmt, args, await api.list_expressions(), fmt.print_expressions)
            elif args.command == "get":
                _show(fmt, args, await api.get_expression(args.id), fmt.print_expression)
            elif args.command == "wait":
                data = await api.wait_for_expression(args.id, timeout=args.max_wait)
                _show(fmt, args, data, fmt.print_expression)
            elif args.command == "health":
                _show(fmt, args, await api.health(), fmt.print_health)
        except APIError as e:
            fmt.error(e.detail)
            return 1
        except (ConnectionError, TimeoutError) as e:
            fmt.error(str(e))
            return 1
    return 0


def _show(fmt: CLIFormatter, args: argparse.Namespace, data, printer) -> None:
    if args.json:
        fmt.print_json(data)
    else:
        printer(data)


def main(argv: Optional[list[str]] = None) -> None:
    args = parse_args(argv)
    fmt = CLIFormatter()

    if args.command == "eval":
        try:
            fmt.success(format_result(calc(args.expression)))
        except CalculationError as e:
            fmt.error(f"{e.kind}: {e.message}")
            sys.exit(1)
        return

    sys.exit(asyncio.run(run_command(args, fmt)))


if __name__ == "__main__":
    main()
