"""
Per-node progress tracking for the operator view.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from coordinator.plan import NodeSpec


logger = logging.getLogger(__name__)


class ProgressBoard:
    """
    Tracks completed unit counts per node.

    Counts only move forward: events for unknown nodes and events that do
    not raise a node's count are discarded.
    """

    def __init__(
        self,
        nodes: List[NodeSpec],
        on_update: Optional[Callable[[NodeSpec], None]] = None
    ):
        """
        Initialize progress board.

        Args:
            nodes: Nodes of the current run
            on_update: Called with the node after each accepted event
        """
        self._nodes: Dict[str, NodeSpec] = {node.node_id: node for node in nodes}
        self._on_update = on_update or self._log_progress

        self._accepted = 0
        self._discarded = 0

    def update(self, node_id: str, count: int) -> bool:
        """
        Apply a progress event.

        Args:
            node_id: Reporting node
            count: Units completed so far on that node

        Returns:
            True if the event changed the node's progress
        """
        node = self._nodes.get(node_id)
        if node is None:
            logger.warning(f"Discarding progress for unknown node {node_id}")
            self._discarded += 1
            return False

        if count <= node.completed_count:
            logger.debug(
                f"Ignoring stale progress for {node_id}: {count} <= {node.completed_count}"
            )
            self._discarded += 1
            return False

        node.completed_count = count
        self._accepted += 1
        self._on_update(node)
        return True

    def get(self, node_id: str) -> Optional[int]:
        """Completed count for a node, or None if unknown."""
        node = self._nodes.get(node_id)
        return node.completed_count if node else None

    @staticmethod
    def _log_progress(node: NodeSpec):
        if node.total_units:
            percent = min(node.completed_count / node.total_units, 1.0) * 100
            logger.info(
                f"[{node.node_id}] {node.completed_count}/{node.total_units} units built ({percent:.0f}%)"
            )
        else:
            logger.info(f"[{node.node_id}] {node.completed_count} units built")

    def snapshot(self) -> Dict[str, Any]:
        """
        Get current progress of every node.

        Returns:
            Dictionary keyed by node id plus overall totals
        """
        completed = sum(n.completed_count for n in self._nodes.values())
        total = sum(n.total_units for n in self._nodes.values())
        return {
            'nodes': {node_id: node.to_dict() for node_id, node in self._nodes.items()},
            'completed': completed,
            'total': total,
            'accepted_events': self._accepted,
            'discarded_events': self._discarded
        }
