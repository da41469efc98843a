# main.py

"""Entry point for the supplywatch monitoring engine CLI."""

import argparse
import asyncio
import logging
import sys

from supplywatch.config.logging_config import setup_logging

logger = logging.getLogger("supplywatch.main")


def _build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="supplywatch",
        description="Supplier monitoring and automation engine.",
    )
    parser.add_argument(
        "--db",
        default=None,
        dest="db_path",
        help="SQLite product store (default: data/products.db).",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p_import = sub.add_parser("import", help="Import a JSON product catalogue.")
    p_import.add_argument("file", help="JSON list of products.")

    p_replay = sub.add_parser(
        "replay", help="Process a recorded observation feed."
    )
    p_replay.add_argument("file", help="JSON list of supplier observations.")
    p_replay.add_argument(
        "-w",
        "--workers",
        type=int,
        default=None,
        help="Worker pool size (default: WORKER_COUNT).",
    )

    p_rescore = sub.add_parser(
        "rescore", help="Rescore every product and run the policy."
    )
    p_rescore.add_argument("--user", default=None, dest="user_id")

    p_show = sub.add_parser("show", help="Show one product.")
    p_show.add_argument("product_id")
    p_show.add_argument(
        "-f",
        "--format",
        choices=["json", "table"],
        default="table",
        dest="output_format",
        help="Output format (default: table).",
    )

    p_list = sub.add_parser("list", help="List monitored products.")
    p_list.add_argument("--user", default=None, dest="user_id")
    return parser


def main(argv: list[str] | None = None) -> None:
    """Dispatch to the requested sub-command and exit with its code."""
    log_file = setup_logging()
    logger.info("supplywatch starting, log file: %s", log_file)

    args = _build_parser().parse_args(argv)

    from supplywatch.cli import runner

    try:
        if args.command == "import":
            exit_code = runner.run_import(args.file, args.db_path)
        elif args.command == "replay":
            exit_code = asyncio.run(
                runner.run_replay(args.file, args.db_path, args.workers)
            )
        elif args.command == "rescore":
            exit_code = asyncio.run(runner.run_rescore(args.db_path, args.user_id))
        elif args.command == "show":
            exit_code = runner.show_product(
                args.product_id, args.output_format, args.db_path
            )
        else:
            exit_code = runner.list_products(args.user_id, args.db_path)
    except Exception:
        logger.critical("Fatal error during %s", args.command, exc_info=True)
        raise
    finally:
        logger.info("supplywatch shutting down")
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
