"""
Distributed build orchestrator.

Runs one build across every configured node:

1. Partition the project's units across nodes by weight
2. Start the progress aggregation endpoint
3. Archive the project and fan out one pipeline per node
4. Install barrier: every node finishes installing before any builds;
   the archive is removed once all nodes have it
5. Wait for every pipeline, then verify outputs if configured
6. Tear down: archive and endpoint are released even on failure

The first node failure fails the run. There are no retries and no
timeouts: a node that hangs stalls the run.
"""

import asyncio
import logging
import os
import time
from typing import Any, Callable, Dict, List, Optional

from coordinator.config import BuildPlanConfig
from coordinator.pipeline import NodePipeline
from coordinator.plan import BuildPlan, NodeSpec
from coordinator.progress import ProgressBoard
from coordinator.progress_server import ProgressServer
from coordinator.verification import verify_outputs
from core.archive import archive_project
from core.build_config import load_build_config, unit_count
from core.errors import ConfigError
from core.partitioner import describe_plan, UnitRange
from transport import BackendContext, NodeBackend, create_backend


logger = logging.getLogger(__name__)


class Orchestrator:
    """
    Coordinates one distributed build run.
    """

    def __init__(
        self,
        config: BuildPlanConfig,
        project_dir: str = ".",
        backend_factory: Callable[[NodeSpec, BackendContext], NodeBackend] = create_backend,
        server_factory: Callable[..., ProgressServer] = ProgressServer,
        listen_host: str = "0.0.0.0"
    ):
        """
        Initialize orchestrator.

        Args:
            config: Build plan configuration
            project_dir: Project root to archive and build
            backend_factory: Creates the transport backend for a node
            server_factory: Creates the progress aggregation endpoint
            listen_host: Interface the progress endpoint binds to
        """
        self.config = config
        self.project_dir = os.path.abspath(project_dir)
        self.backend_factory = backend_factory
        self.server_factory = server_factory
        self.listen_host = listen_host

        self.plan: Optional[BuildPlan] = None
        self.board: Optional[ProgressBoard] = None
        self.pipelines: List[NodePipeline] = []

    @property
    def archive_path(self) -> str:
        return os.path.join(self.project_dir, self.config.archive_name)

    def _load_project_config(self) -> Dict[str, Any]:
        path = os.path.join(self.project_dir, self.config.build_config)
        try:
            return load_build_config(path)
        except FileNotFoundError:
            raise ConfigError(f"Build configuration not found: {path}")
        except ValueError as e:
            raise ConfigError(str(e))

    def _remove_archive(self):
        try:
            os.unlink(self.archive_path)
            logger.debug(f"Removed archive {self.archive_path}")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove archive {self.archive_path}: {e}")

    async def _release_archive_after_install(self, barrier: asyncio.Barrier):
        try:
            await barrier.wait()
        except asyncio.BrokenBarrierError:
            return
        logger.info("✓ All nodes installed, starting builds")
        self._remove_archive()

    @staticmethod
    def _collect_result(task: asyncio.Task):
        # Failures after the first one are only logged
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.debug(f"Pipeline task {task.get_name()} ended with: {error!r}")

    async def _run_pipelines(self, pipelines: List[NodePipeline]):
        barrier = asyncio.Barrier(len(pipelines) + 1)

        tasks = []
        for pipeline in pipelines:
            task = asyncio.create_task(
                pipeline.run(self.archive_path, barrier),
                name=pipeline.node.node_id
            )
            task.add_done_callback(self._collect_result)
            tasks.append(task)

        gate = asyncio.create_task(self._release_archive_after_install(barrier))

        try:
            await asyncio.gather(*tasks)
        except BaseException:
            # Nodes still waiting at the barrier disconnect and stop
            await barrier.abort()
            raise
        finally:
            await asyncio.gather(gate, return_exceptions=True)

    async def run(self) -> Dict[str, Any]:
        """
        Run the distributed build.

        Returns:
            Results dictionary (unit count, per-node summary, timings)

        Raises:
            FleetBuildError: The first failure of the run
        """
        logging.getLogger().setLevel(self.config.log_level)
        start_time = time.time()

        project_config = self._load_project_config()
        self.plan = BuildPlan.create(unit_count(project_config), self.config.nodes)

        logger.info("=" * 60)
        logger.info("Starting Distributed Build")
        logger.info("=" * 60)
        logger.info(f"Project: {self.project_dir}")
        logger.info(f"Artifacts: {self.plan.unit_count}")
        ranges = [UnitRange(n.first, n.last, n.total_units) for n in self.plan.nodes]
        for node, line in zip(self.plan.nodes, describe_plan(ranges)):
            logger.info(f"{line} -> {node.node_id} ({node.config.label})")
        logger.info("=" * 60)

        self.board = ProgressBoard(self.plan.nodes)
        server = self.server_factory(self.board, host=self.listen_host, port=self.config.progress_port)
        await server.start()

        try:
            logger.info("Archiving project...")
            archived = await asyncio.to_thread(archive_project, self.project_dir, self.archive_path)
            logger.info(f"✓ Archived {archived} files")

            context = BackendContext(
                project_config=project_config,
                build_command=self.config.build_command,
                install_command=self.config.install_command,
                progress_host=self.config.progress_host,
                progress_port=server.port,
                build_config_name=self.config.build_config
            )
            self.pipelines = [
                NodePipeline(node, self.backend_factory(node, context))
                for node in self.plan.nodes
            ]

            await self._run_pipelines(self.pipelines)

            verified: List[str] = []
            if self.config.verify is not None:
                verified = verify_outputs(project_config, self.config.verify)

        finally:
            self._remove_archive()
            try:
                await server.stop()
            except Exception as e:
                logger.warning(f"Error stopping progress server: {e}")

        total_time = time.time() - start_time
        results = {
            'unit_count': self.plan.unit_count,
            'nodes': [n.to_dict() for n in self.plan.nodes],
            'retrieved': sum(len(p.retrieved) for p in self.pipelines),
            'verified': len(verified),
            'total_time': total_time
        }

        logger.info("=" * 60)
        logger.info("Build Results")
        logger.info("=" * 60)
        logger.info(f"Units built: {self.plan.unit_count}")
        logger.info(f"Files retrieved: {results['retrieved']}")
        if self.config.verify is not None:
            logger.info(f"Outputs verified: {results['verified']}")
        logger.info(f"Total time: {total_time:.2f}s")
        logger.info("=" * 60)

        return results
