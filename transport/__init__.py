"""
Transport backends for Fleetbuild nodes.

Both backends implement the same node lifecycle:
- connect / disconnect
- send_package: unpack the project archive in the working directory
- install_dependencies
- run_build_range: build a contiguous slice of units
- retrieve_artifacts: copy declared outputs back to this machine
"""

from transport.base import BackendContext, NodeBackend
from transport.local import LocalBackend
from transport.remote import RemoteBackend

__version__ = "0.1.0"

BACKENDS = {
    "local": LocalBackend,
    "ssh": RemoteBackend,
}


def create_backend(node, context: BackendContext) -> NodeBackend:
    """
    Create the backend matching a node's kind.

    Raises:
        ValueError: If the node kind has no backend
    """
    try:
        backend_class = BACKENDS[node.kind]
    except KeyError:
        raise ValueError(f"Unknown node type: {node.kind}")
    return backend_class(node, context)


__all__ = [
    "BackendContext",
    "NodeBackend",
    "LocalBackend",
    "RemoteBackend",
    "create_backend",
]
