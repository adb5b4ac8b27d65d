"""
Weighted unit partitioner.

This module divides an ordered sequence of build units across nodes.
Each node receives one contiguous range whose size is proportional to its
weight. Rounding always goes up, so nodes earlier in the list are favoured
and trailing nodes may end up with an empty range.
"""

import math
from dataclasses import dataclass
from fractions import Fraction
from typing import List, Sequence


@dataclass(frozen=True)
class UnitRange:
    """Contiguous range of units assigned to a single node"""

    first: int
    last: int
    count: int

    @property
    def is_empty(self) -> bool:
        return self.count == 0

    def indices(self) -> range:
        """Unit indices covered by this range"""
        return range(self.first, self.first + self.count)

    def __repr__(self):
        if self.is_empty:
            return f"UnitRange(empty at {self.first})"
        return f"UnitRange([{self.first}, {self.last}], count={self.count})"


def plan_ranges(unit_count: int, weights: Sequence[float]) -> List[UnitRange]:
    """
    Partition ``unit_count`` units across nodes by weight.

    Nodes are visited in input order. Each takes
    ``ceil(weight / remaining_weight * remaining_units)`` units, clamped to
    what is left, so the assigned counts always add up to ``unit_count``.

    Args:
        unit_count: Total number of units (N >= 0)
        weights: Positive weight per node, relative to each other

    Returns:
        One UnitRange per node, in input order. Empty ranges have
        ``count == 0`` and ``last == first - 1``.

    Raises:
        ValueError: If unit_count is negative, weights is empty, or any
            weight is not positive
    """
    if unit_count < 0:
        raise ValueError(f"Unit count must be non-negative, got {unit_count}")
    if not weights:
        raise ValueError("At least one node weight is required")
    for weight in weights:
        if weight <= 0:
            raise ValueError(f"Node weights must be positive, got {weight}")

    # Exact arithmetic so decimal weights like 0.1 split proportionally
    exact = [Fraction(str(weight)) for weight in weights]

    ranges = []
    items_left = unit_count
    weight_left = sum(exact)
    next_index = 0

    for weight in exact:
        share = math.ceil(weight / weight_left * items_left)
        count = min(share, items_left)

        ranges.append(UnitRange(first=next_index, last=next_index + count - 1, count=count))

        items_left -= count
        next_index += count
        weight_left -= weight

    return ranges


def describe_plan(ranges: Sequence[UnitRange]) -> List[str]:
    """Human readable lines describing an assignment, one per node"""
    total = sum(r.count for r in ranges)
    lines = []
    for index, unit_range in enumerate(ranges):
        if unit_range.is_empty:
            lines.append(f"Node {index}: no units")
            continue
        share = unit_range.count / total * 100 if total else 0.0
        lines.append(
            f"Node {index}: units [{unit_range.first}, {unit_range.last}] "
            f"({unit_range.count} units, {share:.1f}%)"
        )
    return lines
