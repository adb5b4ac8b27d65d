"""
Reference unit runner for Fleetbuild nodes.

Builds every unit listed in a project's build configuration, in order,
and reports each completion through the progress reporter. Nodes run it as
their build command; run standalone (outside worker context) it builds the
same way without any network activity.

Usage:
    python -m worker.runner
    python -m worker.runner --root /srv/build --config build.config.json
"""

import argparse
import asyncio
import logging
import os
import sys
from typing import Any, Dict, List, Optional

from core.build_config import BUILD_CONFIG_NAME, load_build_config
from worker.reporter import ProgressReporter


logger = logging.getLogger(__name__)


class UnitFailed(Exception):
    """A unit's command exited with a non-zero status."""

    def __init__(self, name: str, returncode: int):
        self.name = name
        self.returncode = returncode
        super().__init__(f"Unit '{name}' failed with exit code {returncode}")


class UnitRunner:
    """Runs the units of one (possibly sliced) build configuration."""

    def __init__(self, root: str, reporter: ProgressReporter, config_name: str = BUILD_CONFIG_NAME):
        self.root = root
        self.reporter = reporter
        self.config_name = config_name

    async def _stream_output(self, name: str, stream):
        while True:
            line = await stream.readline()
            if not line:
                break
            print(f"[{name}] {line.decode('utf-8', errors='replace').rstrip()}", flush=True)

    async def run_unit(self, unit: Dict[str, Any]):
        """
        Run a single unit's command in the project root.

        Raises:
            UnitFailed: If the command exits non-zero
        """
        name = unit.get('name', '?')
        command: List[str] = [str(arg) for arg in unit.get('command', [])]
        if not command:
            logger.info(f"Unit '{name}' has no command, nothing to do")
            return

        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                cwd=self.root
            )
        except OSError as e:
            logger.error(f"Unit '{name}' could not start: {e}")
            raise UnitFailed(name, 127)
        await self._stream_output(name, process.stdout)
        returncode = await process.wait()

        if returncode != 0:
            raise UnitFailed(name, returncode)

    async def run(self) -> int:
        """
        Build all units.

        Returns:
            Number of units built
        """
        config = load_build_config(os.path.join(self.root, self.config_name))
        units = config['units']
        logger.info(f"Building {len(units)} unit(s) from {self.config_name}")

        await self.reporter.start()
        try:
            for unit in units:
                await self.run_unit(unit)
                await self.reporter.unit_complete()
        finally:
            await self.reporter.close()

        return len(units)


async def main(root: str, config_name: str = BUILD_CONFIG_NAME, environ: Optional[dict] = None) -> int:
    """
    Run all units under ``root``.

    Returns:
        Process exit status
    """
    reporter = ProgressReporter.from_environment(root, environ)
    runner = UnitRunner(root, reporter, config_name=config_name)

    try:
        built = await runner.run()
    except UnitFailed as e:
        logger.error(str(e))
        return 1

    logger.info(f"✓ Built {built} unit(s)")
    return 0


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    parser = argparse.ArgumentParser(description="Fleetbuild unit runner")
    parser.add_argument(
        "--root",
        type=str,
        default=os.getcwd(),
        help="Project root containing the build configuration (default: current directory)"
    )
    parser.add_argument(
        "--config",
        type=str,
        default=BUILD_CONFIG_NAME,
        help=f"Build configuration file name (default: {BUILD_CONFIG_NAME})"
    )

    args = parser.parse_args()
    sys.exit(asyncio.run(main(args.root, args.config)))
