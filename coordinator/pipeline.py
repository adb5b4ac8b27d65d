"""
Per-node build pipeline.

Sequences one node through its lifecycle:

    connect -> send package -> install -> [install barrier] ->
    build range -> retrieve artifacts -> disconnect

Steps within a node are strictly ordered. The backend is always
disconnected exactly once on the way out, whether the pipeline succeeded,
failed or was aborted at the barrier.
"""

import asyncio
import logging
from enum import Enum
from typing import List, Optional

from coordinator.plan import NodeSpec
from transport.base import NodeBackend


logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    PENDING = "pending"
    CONNECTING = "connecting"
    TRANSFERRING = "transferring"
    INSTALLING = "installing"
    WAITING = "waiting"
    BUILDING = "building"
    RETRIEVING = "retrieving"
    DONE = "done"
    FAILED = "failed"
    ABORTED = "aborted"


class NodePipeline:
    """
    Drives one node's backend through a full build.
    """

    def __init__(self, node: NodeSpec, backend: NodeBackend):
        """
        Initialize node pipeline.

        Args:
            node: Node being driven (range already assigned)
            backend: Transport backend owning the node's connection
        """
        self.node = node
        self.backend = backend

        self.state = PipelineState.PENDING
        self.error: Optional[BaseException] = None
        self.retrieved: List[str] = []

    def _enter(self, state: PipelineState, message: str):
        self.state = state
        logger.info(f"[{self.node.node_id}] {message}")

    async def prepare(self, archive_path: str):
        """Connect, transfer the project and install its dependencies."""
        self._enter(PipelineState.CONNECTING, f"Connecting to {self.node.config.label}...")
        await self.backend.connect()

        self._enter(PipelineState.TRANSFERRING, "Transferring project...")
        await self.backend.send_package(archive_path)

        self._enter(PipelineState.INSTALLING, "Installing project...")
        await self.backend.install_dependencies()

        self._enter(PipelineState.WAITING, "✓ Installed, waiting for other nodes")

    async def build(self):
        """Build the assigned range and collect artifacts."""
        node = self.node
        self._enter(
            PipelineState.BUILDING,
            f"Building project ({node.first}-{node.last}, {node.total_units} units)..."
        )
        await self.backend.run_build_range(node.first, node.last)

        if node.artifacts:
            self._enter(PipelineState.RETRIEVING, "Retrieving artifacts...")
            self.retrieved = await self.backend.retrieve_artifacts(node.artifacts)
            logger.info(f"[{node.node_id}] ✓ Retrieved {len(self.retrieved)} file(s)")

        self._enter(PipelineState.DONE, "✓ Done")

    async def release(self):
        """Disconnect the backend; errors are logged, never raised."""
        try:
            await self.backend.disconnect()
        except Exception as e:
            logger.warning(f"[{self.node.node_id}] Error while disconnecting: {e}")

    async def run(self, archive_path: str, install_barrier: asyncio.Barrier) -> bool:
        """
        Run the whole pipeline.

        Args:
            archive_path: Project archive to send
            install_barrier: Passed once every node has installed; aborted
                when the run fails

        Returns:
            True if the node finished, False if it was aborted at the barrier

        Raises:
            FleetBuildError: The first failing step's error
        """
        try:
            await self.prepare(archive_path)

            try:
                await install_barrier.wait()
            except asyncio.BrokenBarrierError:
                self._enter(PipelineState.ABORTED, "Build aborted, another node failed")
                return False

            await self.build()
            return True

        except Exception as e:
            self.state = PipelineState.FAILED
            self.error = e
            logger.error(f"[{self.node.node_id}] Failed: {e}")
            raise

        finally:
            await self.release()
