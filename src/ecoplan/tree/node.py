"""
Impact tree node.

The tree is single-owner: the builder constructs it, the resolver is the only
mutator, and a new tree is built for every analysis.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterator


@dataclass
class ImpactNode:
    """
    A node of the impact tree.

    Attributes:
        id: Stable key (e.g. "mem", "scalability")
        label: Display name
        value: Normalized severity in [0, 1]; written by the resolver for branches
        weight: Relative weight among siblings, compared as a ratio
        children: Ordered children, exclusively owned by this node
        is_critical: Set by the builder for saturated leaves
        description: Optional explanation of what the node measures
    """

    id: str
    label: str
    value: float = 0.0
    weight: float = 1.0
    children: list[ImpactNode] = field(default_factory=list)
    is_critical: bool = False
    description: str | None = None

    @property
    def is_leaf(self) -> bool:
        return not self.children

    def iter_nodes(self) -> Iterator[ImpactNode]:
        """Yield this node and all descendants in pre-order."""
        yield self
        for child in self.children:
            yield from child.iter_nodes()

    def leaves(self) -> list[ImpactNode]:
        return [node for node in self.iter_nodes() if node.is_leaf]

    def find(self, node_id: str) -> ImpactNode | None:
        """Find a node by id in this subtree."""
        for node in self.iter_nodes():
            if node.id == node_id:
                return node
        return None

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON output and visualization."""
        data: dict[str, Any] = {
            "id": self.id,
            "label": self.label,
            "value": round(self.value, 4),
            "weight": self.weight,
            "is_critical": self.is_critical,
        }
        if self.description:
            data["description"] = self.description
        if self.children:
            data["children"] = [child.to_dict() for child in self.children]
        return data
