"""
Per-run build plan.

Binds each configured node to its unit range and run-state for the
duration of one orchestrated build.
"""

import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List

from coordinator.config import ArtifactSpec, NodeConfig
from core.partitioner import UnitRange, plan_ranges


@dataclass
class NodeSpec:
    """One worker node and its mutable run-state."""
    config: NodeConfig
    node_id: str
    first: int = 0
    last: int = -1
    total_units: int = 0
    completed_count: int = 0

    @property
    def kind(self) -> str:
        return self.config.node_type

    @property
    def weight(self) -> float:
        return self.config.weight

    @property
    def working_dir(self) -> str:
        return self.config.working_dir

    @property
    def artifacts(self) -> List[ArtifactSpec]:
        return self.config.artifacts

    def assign(self, unit_range: UnitRange):
        """Attach a unit range and reset progress."""
        self.first = unit_range.first
        self.last = unit_range.last
        self.total_units = unit_range.count
        self.completed_count = 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for status reporting."""
        return {
            'node_id': self.node_id,
            'kind': self.kind,
            'target': self.config.label,
            'first': self.first,
            'last': self.last,
            'total_units': self.total_units,
            'completed_count': self.completed_count
        }


@dataclass
class BuildPlan:
    """Total unit count and the ordered node list sharing it."""
    unit_count: int
    nodes: List[NodeSpec] = field(default_factory=list)

    @classmethod
    def create(cls, unit_count: int, node_configs: List[NodeConfig]) -> 'BuildPlan':
        """
        Partition ``unit_count`` units across the configured nodes.

        Node ids are unique for the lifetime of this plan.
        """
        ranges = plan_ranges(unit_count, [n.weight for n in node_configs])
        run_tag = uuid.uuid4().hex[:8]

        nodes = []
        for index, (node_config, unit_range) in enumerate(zip(node_configs, ranges)):
            spec = NodeSpec(config=node_config, node_id=f"node{index}_{run_tag}")
            spec.assign(unit_range)
            nodes.append(spec)

        return cls(unit_count=unit_count, nodes=nodes)
