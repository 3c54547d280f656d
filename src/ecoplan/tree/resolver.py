"""
Bottom-up resolution of the impact tree.

Algorithm (post-order):
1. A node without children is a leaf; its value is authoritative.
2. Resolve every child first.
3. Weighted average of child values: sum(v * w) / sum(w).
4. Dominance: for designated nodes (scalability and the root), an average at
   or above the threshold is amplified so one catastrophic sub-branch is not
   diluted into a "moderate" score.
5. Clamp to [0, 1] unconditionally.
6. Store the value on the node and return it.

Resolution is a pure function of current leaf values, so resolving an
already-resolved tree again yields the same root value.
"""

from __future__ import annotations

import logging
import math

from ecoplan.tree.builder import ROOT_ID
from ecoplan.tree.node import ImpactNode
from ecoplan.tree.normalize import clamp

logger = logging.getLogger(__name__)

DEFAULT_DOMINANCE_THRESHOLD = 0.85
DEFAULT_DOMINANCE_AMPLIFIER = 1.1
DEFAULT_TOTAL_IMPACT_TOLERANCE = 1.5
DOMINANT_NODE_IDS = frozenset({"scalability", ROOT_ID})


def _finite(value: float) -> float:
    return value if math.isfinite(value) else 0.0


class TreeResolver:
    """
    Weighted aggregation with dominance and saturation cap.

    The resolver is the only component that mutates the tree, and it never
    raises: zero total weight resolves to 0, and non-finite values count as 0.
    """

    def __init__(
        self,
        dominance_threshold: float = DEFAULT_DOMINANCE_THRESHOLD,
        dominance_amplifier: float = DEFAULT_DOMINANCE_AMPLIFIER,
        dominant_node_ids: frozenset[str] = DOMINANT_NODE_IDS,
        total_impact_tolerance: float = DEFAULT_TOTAL_IMPACT_TOLERANCE,
    ) -> None:
        self.dominance_threshold = dominance_threshold
        self.dominance_amplifier = dominance_amplifier
        self.dominant_node_ids = dominant_node_ids
        self.total_impact_tolerance = total_impact_tolerance

    def resolve(self, node: ImpactNode) -> float:
        """
        Resolve a subtree in place.

        Args:
            node: Subtree root

        Returns:
            The node's resolved value
        """
        if node.is_leaf:
            return node.value

        weighted_sum = 0.0
        total_weight = 0.0
        for child in node.children:
            child_value = _finite(self.resolve(child))
            weight = _finite(child.weight)
            if weight <= 0:
                continue
            weighted_sum += child_value * weight
            total_weight += weight

        if total_weight <= 0:
            average = 0.0
        else:
            average = weighted_sum / total_weight

        value = average
        if node.id in self.dominant_node_ids and average >= self.dominance_threshold:
            value = average * self.dominance_amplifier
            logger.debug("Dominance on %s: %.3f -> %.3f", node.id, average, value)

        node.value = clamp(value)
        return node.value

    @staticmethod
    def efficiency_score(root_value: float) -> float:
        """(1 - root) * 100, bounded to [0, 100]."""
        return (1.0 - clamp(_finite(root_value))) * 100

    @staticmethod
    def flatten(root: ImpactNode) -> list[ImpactNode]:
        """All nodes in pre-order."""
        return list(root.iter_nodes())

    @staticmethod
    def find_node(root: ImpactNode, node_id: str) -> ImpactNode | None:
        return root.find(node_id)

    @staticmethod
    def top_offenders(root: ImpactNode, n: int = 3) -> list[ImpactNode]:
        """The n leaves with the highest value (stable for ties)."""
        if n <= 0:
            return []
        return sorted(root.leaves(), key=lambda leaf: leaf.value, reverse=True)[:n]

    def total_impact(self, root: ImpactNode) -> float:
        """
        Sum of every node value (branches and leaves) within [0, tolerance].

        Out-of-band values are skipped rather than faulting. This is a rough
        share-of-blame denominator, not a partition of the root score.
        """
        total = 0.0
        for node in root.iter_nodes():
            if math.isfinite(node.value) and 0.0 <= node.value <= self.total_impact_tolerance:
                total += node.value
        return total
