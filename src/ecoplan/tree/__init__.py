"""Impact tree - weighted hierarchical scoring of plan metrics."""

from ecoplan.tree.builder import DEFAULT_BRANCH_WEIGHTS, ROOT_ID, ImpactTreeBuilder
from ecoplan.tree.node import ImpactNode
from ecoplan.tree.normalize import clamp, log_normalize
from ecoplan.tree.resolver import TreeResolver

__all__ = [
    "DEFAULT_BRANCH_WEIGHTS",
    "ROOT_ID",
    "ImpactNode",
    "ImpactTreeBuilder",
    "TreeResolver",
    "clamp",
    "log_normalize",
]
