"""
Progress reporter embedded in builds spawned by the orchestrator.

Sends a moduleComplete event to the aggregation endpoint after every
finished unit. Reporting is best-effort: no failure here may ever fail
the build that hosts the reporter.
"""

import json
import logging
import os
from typing import Mapping, Optional

import websockets

from worker.sentinel import NodeSentinel, read_sentinel


logger = logging.getLogger(__name__)

# Set by the transport backends when they launch a build on a node
WORKER_CONTEXT_ENV = "FLEETBUILD_WORKER_CONTEXT"
PROGRESS_SUBPROTOCOL = "fleetbuild-progress"


def in_worker_context(environ: Optional[Mapping[str, str]] = None) -> bool:
    """
    Check whether this build was spawned by the orchestrator.

    Args:
        environ: Environment to inspect (defaults to os.environ)

    Returns:
        True if the worker context flag is set
    """
    environ = os.environ if environ is None else environ
    return environ.get(WORKER_CONTEXT_ENV, "") == "1"


class ProgressReporter:
    """
    Reports completed unit counts for one node.

    A disabled reporter is a no-op: it never reads the sentinel and never
    opens a connection.
    """

    def __init__(self, root: str, enabled: bool = True):
        """
        Initialize progress reporter.

        Args:
            root: Node working directory holding the sentinel file
            enabled: Whether this build runs in worker context
        """
        self.root = root
        self.enabled = enabled

        self._sentinel: Optional[NodeSentinel] = None
        self._connection = None
        self._completed = 0
        self._failed_sends = 0

    @classmethod
    def from_environment(
        cls,
        root: str,
        environ: Optional[Mapping[str, str]] = None
    ) -> 'ProgressReporter':
        """Create a reporter enabled only in worker context."""
        return cls(root=root, enabled=in_worker_context(environ))

    @property
    def completed(self) -> int:
        return self._completed

    @property
    def connected(self) -> bool:
        return self._connection is not None

    async def start(self):
        """Read the sentinel and open the connection to the aggregator."""
        if not self.enabled:
            return

        try:
            self._sentinel = read_sentinel(self.root)
        except (OSError, ValueError) as e:
            logger.warning(f"Progress reporting disabled, cannot read sentinel: {e}")
            return

        try:
            self._connection = await websockets.connect(
                self._sentinel.url,
                subprotocols=[PROGRESS_SUBPROTOCOL]
            )
            logger.debug(f"Reporting progress for {self._sentinel.node_id} to {self._sentinel.url}")
        except Exception as e:
            logger.warning(f"Could not reach progress endpoint {self._sentinel.url}: {e}")
            self._connection = None

    async def unit_complete(self):
        """Count one finished unit and report the running total."""
        if not self.enabled:
            return

        self._completed += 1

        if self._connection is None:
            return

        message = json.dumps({
            'type': 'moduleComplete',
            'nodeID': self._sentinel.node_id,
            'count': self._completed
        })
        try:
            await self._connection.send(message)
        except Exception as e:
            self._failed_sends += 1
            logger.debug(f"Dropped progress event {self._completed}: {e}")

    async def close(self):
        """Close the connection at build completion."""
        if self._connection is None:
            return

        try:
            await self._connection.close()
        except Exception as e:
            logger.debug(f"Error closing progress connection: {e}")
        finally:
            self._connection = None

    def get_status(self) -> dict:
        """
        Get reporter status.

        Returns:
            Status dictionary with statistics
        """
        return {
            'enabled': self.enabled,
            'node_id': self._sentinel.node_id if self._sentinel else None,
            'connected': self.connected,
            'completed': self._completed,
            'failed_sends': self._failed_sends
        }
