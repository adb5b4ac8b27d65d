"""
Progress sentinel file.

Written into a node's working directory before its build starts, the
sentinel tells the in-build reporter which node it is and where the
aggregation endpoint listens. Format: a single ``nodeID,host,port`` line.
"""

import os
from dataclasses import dataclass


SENTINEL_NAME = "dist-node.info"


@dataclass(frozen=True)
class NodeSentinel:
    """Addressing information for one node's reporter."""
    node_id: str
    host: str
    port: int

    def render(self) -> str:
        """Serialize to the single-line file format."""
        return f"{self.node_id},{self.host},{self.port}"

    @classmethod
    def parse(cls, text: str) -> 'NodeSentinel':
        """
        Parse the single-line file format.

        Raises:
            ValueError: If the line does not have exactly three fields
        """
        fields = text.strip().split(",")
        if len(fields) != 3:
            raise ValueError(f"Malformed sentinel line: {text.strip()!r}")
        node_id, host, port = (field.strip() for field in fields)
        return cls(node_id=node_id, host=host, port=int(port))

    @property
    def url(self) -> str:
        return f"ws://{self.host}:{self.port}/"


def write_sentinel(root: str, sentinel: NodeSentinel) -> str:
    """Write the sentinel into ``root`` and return its path."""
    path = os.path.join(root, SENTINEL_NAME)
    with open(path, 'w') as f:
        f.write(sentinel.render())
    return path


def read_sentinel(root: str) -> NodeSentinel:
    """Read the sentinel from ``root``."""
    with open(os.path.join(root, SENTINEL_NAME), 'r') as f:
        return NodeSentinel.parse(f.read())
