"""
Local node backend.

Runs every lifecycle step directly on this machine: the working directory
is a local path and commands are child processes.
"""

import asyncio
import glob
import logging
import os
import shutil
import zipfile
from typing import Dict, List, Optional, Tuple

from coordinator.config import ArtifactSpec
from core.archive import extract_archive
from core.errors import BuildError, RemoteCommandError, TransferError
from transport.base import NodeBackend
from worker.sentinel import write_sentinel


logger = logging.getLogger(__name__)


async def run_command(
    command: List[str],
    cwd: str,
    env: Optional[Dict[str, str]] = None
) -> Tuple[int, str, str]:
    """
    Run a command to completion, capturing its output.

    Returns:
        Tuple of (exit code, stdout, stderr). A missing executable is
        reported as exit code 127.
    """
    try:
        process = await asyncio.create_subprocess_exec(
            *command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
            env=env
        )
    except FileNotFoundError as e:
        return 127, "", str(e)

    stdout, stderr = await process.communicate()
    return (
        process.returncode,
        stdout.decode('utf-8', errors='replace'),
        stderr.decode('utf-8', errors='replace')
    )


class LocalBackend(NodeBackend):
    """Backend for nodes that build in a local directory."""

    async def connect(self):
        logger.debug(f"[{self.node_id}] Local node, nothing to connect")

    async def send_package(self, archive_path: str):
        try:
            await asyncio.to_thread(extract_archive, archive_path, self.node.working_dir)
        except (OSError, zipfile.BadZipFile) as e:
            raise TransferError(f"Failed to unpack project into {self.node.working_dir}: {e}")

    async def install_dependencies(self):
        command = self.context.install_command
        returncode, stdout, stderr = await run_command(command, cwd=self.node.working_dir)
        logger.debug(f"[{self.node_id}] install output:\n{stdout}")

        if returncode != 0:
            raise RemoteCommandError(
                f"Install command {' '.join(command)} failed on {self.node_id}",
                returncode,
                stderr
            )

    def _install_build_config(self, staged: str):
        working_dir = self.node.working_dir
        current = os.path.join(working_dir, self.context.build_config_name)
        original = os.path.join(working_dir, self.context.original_config_name)

        if os.path.exists(current):
            os.replace(current, original)
        shutil.copyfile(staged, current)
        write_sentinel(working_dir, self.sentinel())

    async def run_build_range(self, first: int, last: int):
        staged = None
        try:
            staged = self.stage_build_config(first, last)
            await asyncio.to_thread(self._install_build_config, staged)

            env = dict(os.environ)
            env.update(self.context.build_env())
            returncode, stdout, stderr = await run_command(
                self.context.build_command,
                cwd=self.node.working_dir,
                env=env
            )
            logger.debug(f"[{self.node_id}] build output:\n{stdout}")

            if returncode != 0:
                raise BuildError(
                    f"Build of units [{first}, {last}] failed on {self.node_id} "
                    f"(exit code {returncode})",
                    returncode=returncode,
                    stderr=stderr
                )
        except OSError as e:
            raise BuildError(f"Could not prepare build on {self.node_id}: {e}")
        finally:
            self.remove_staged(staged)

    def _copy_matches(self, artifact: ArtifactSpec) -> List[str]:
        pattern = os.path.join(self.node.working_dir, artifact.remote)
        matches = sorted(p for p in glob.glob(pattern, recursive=True) if os.path.isfile(p))

        copied = []
        os.makedirs(artifact.local, exist_ok=True)
        for path in matches:
            destination = os.path.join(artifact.local, os.path.basename(path))
            shutil.copy2(path, destination)
            copied.append(destination)
        return copied

    async def retrieve_artifacts(self, artifacts: List[ArtifactSpec]) -> List[str]:
        copied = []
        for artifact in artifacts:
            files = await asyncio.to_thread(self._copy_matches, artifact)
            logger.debug(f"[{self.node_id}] {artifact.remote}: {len(files)} file(s)")
            copied.extend(files)
        return copied

    async def _close(self):
        logger.debug(f"[{self.node_id}] Local node, nothing to disconnect")
