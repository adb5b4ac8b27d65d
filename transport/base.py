"""
Node lifecycle contract shared by the local and SSH backends.
"""

import logging
import os
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from coordinator.config import ArtifactSpec
from coordinator.plan import NodeSpec
from core.build_config import (
    BUILD_CONFIG_NAME,
    ORIGINAL_CONFIG_NAME,
    render_config,
    slice_config,
)
from worker.reporter import WORKER_CONTEXT_ENV
from worker.sentinel import NodeSentinel


logger = logging.getLogger(__name__)

# Remote non-interactive shells may start without a usable PATH
MINIMAL_PATH = "/usr/local/sbin:/usr/local/bin:/usr/sbin:/usr/bin:/sbin:/bin"


@dataclass
class BackendContext:
    """Run-wide settings every backend needs."""
    project_config: Dict[str, Any]
    build_command: List[str]
    install_command: List[str]
    progress_host: str
    progress_port: int
    build_config_name: str = BUILD_CONFIG_NAME
    original_config_name: str = ORIGINAL_CONFIG_NAME
    staging_dir: Optional[str] = None  # local temp files; system default if None

    def build_env(self) -> Dict[str, str]:
        """Environment additions for a build launched on a node."""
        return {WORKER_CONTEXT_ENV: "1"}


class NodeBackend(ABC):
    """
    Drives one node through connect, transfer, install, build, retrieve
    and disconnect.

    The backend owns the node's transport handle. disconnect() releases it
    and is a no-op on every call after the first.
    """

    def __init__(self, node: NodeSpec, context: BackendContext):
        self.node = node
        self.context = context
        self._disconnected = False

    @property
    def node_id(self) -> str:
        return self.node.node_id

    def sentinel(self) -> NodeSentinel:
        """Addressing information written for this node's reporter."""
        return NodeSentinel(
            node_id=self.node.node_id,
            host=self.context.progress_host,
            port=self.context.progress_port
        )

    def stage_build_config(self, first: int, last: int) -> str:
        """
        Write the sliced build configuration to a local temp file.

        The file name is unique per call so nodes building concurrently
        never share a staging file. The caller removes it.

        Returns:
            Path of the staged file
        """
        sliced = slice_config(
            self.context.project_config,
            first,
            last,
            source=self.context.original_config_name
        )
        fd, path = tempfile.mkstemp(
            prefix=f"fleetbuild-{self.node.node_id}-",
            suffix=".json",
            dir=self.context.staging_dir
        )
        with os.fdopen(fd, 'w') as f:
            f.write(render_config(sliced))
        return path

    @staticmethod
    def remove_staged(path: Optional[str]):
        """Remove a staged file, logging rather than raising on failure."""
        if not path:
            return
        try:
            os.unlink(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove staged file {path}: {e}")

    @abstractmethod
    async def connect(self):
        """Open the transport to the node."""

    @abstractmethod
    async def send_package(self, archive_path: str):
        """Place the archived project tree in the node's working directory."""

    @abstractmethod
    async def install_dependencies(self):
        """Run the install command in the node's working directory."""

    @abstractmethod
    async def run_build_range(self, first: int, last: int):
        """Build units ``[first, last]`` on the node."""

    @abstractmethod
    async def retrieve_artifacts(self, artifacts: List[ArtifactSpec]) -> List[str]:
        """Copy declared artifacts back; returns the local paths written."""

    async def disconnect(self):
        """Release the transport handle (only the first call has an effect)."""
        if self._disconnected:
            return
        self._disconnected = True
        await self._close()

    @abstractmethod
    async def _close(self):
        """Backend-specific release of the transport handle."""
