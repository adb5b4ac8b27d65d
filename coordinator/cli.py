"""
Command line entry point for Fleetbuild.

Usage:
    # Build using ./dist.build.json
    fleetbuild build

    # Explicit plan and project directory
    fleetbuild build --config plans/farm.json --project-dir ./webapp

Exit status is 0 on success and a failure-specific non-zero value
otherwise (see core.errors).
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from coordinator.config import BuildPlanConfig, PLAN_FILE_NAME
from coordinator.orchestrator import Orchestrator
from core.errors import FleetBuildError, VerificationError


logger = logging.getLogger(__name__)

EXIT_USAGE = 1
EXIT_FAILURE = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fleetbuild",
        description="Distribute a build across local and SSH worker nodes"
    )
    subparsers = parser.add_subparsers(dest="command")

    build = subparsers.add_parser("build", help="Run one distributed build")
    build.add_argument(
        "--config",
        type=str,
        default=PLAN_FILE_NAME,
        help=f"Build plan file (default: {PLAN_FILE_NAME})"
    )
    build.add_argument(
        "--project-dir",
        type=str,
        default=".",
        help="Project root to archive and build (default: current directory)"
    )
    build.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Show debug output"
    )

    return parser


def run_build(args: argparse.Namespace) -> int:
    """Run the build subcommand and map failures to exit codes."""
    try:
        config = BuildPlanConfig.from_json_file(args.config)
        if args.verbose:
            config.log_level = "DEBUG"
        asyncio.run(Orchestrator(config, project_dir=args.project_dir).run())

    except VerificationError as e:
        for name in e.missing:
            print(f"  missing: {name}", file=sys.stderr)
        print(f"Failed: {e}", file=sys.stderr)
        return e.exit_code

    except FleetBuildError as e:
        print(f"Failed: {e}", file=sys.stderr)
        return e.exit_code

    except KeyboardInterrupt:
        print("Failed: interrupted", file=sys.stderr)
        return EXIT_FAILURE

    except Exception as e:
        logger.debug("Unexpected failure", exc_info=True)
        print(f"Failed: {e}", file=sys.stderr)
        return EXIT_FAILURE

    return 0


def main(argv: Optional[List[str]] = None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as e:
        return EXIT_USAGE if e.code else 0

    if args.command == "build":
        return run_build(args)

    print("No command or invalid command specified", file=sys.stderr)
    return EXIT_USAGE


if __name__ == "__main__":
    sys.exit(main())
