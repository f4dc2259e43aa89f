"""
Dendrogram construction from an agglomeration schedule.

Nodes live in a flat list and refer to their children by integer id, so
the tree needs no back pointers. Leaves take ids 0..n-1 (the case
indices); the node created at stage s gets id n + s - 1.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from clustermath.errors import DendrogramError
from clustermath.math.agglomeration import AgglomerationSchedule

logger = logging.getLogger(__name__)

# Rescaled heights span 0..RESCALE_MAX, like a "rescaled distance cluster combine" axis
RESCALE_MAX = 25.0


@dataclass
class DendrogramNode:
    """
    A node of the dendrogram.

    Attributes:
        id: Position in the node arena
        height: Merge coefficient (0 for leaves)
        leaves: Case indices under this node, ascending
        left: Id of the left child (the larger subtree), None for leaves
        right: Id of the right child, None for leaves
        x: Horizontal position; leaves sit at 0..n-1 in leaf order
        stage: Stage that created the node, 0 for leaves
        label: Case label for leaves
    """

    id: int
    height: float
    leaves: List[int]
    left: Optional[int] = None
    right: Optional[int] = None
    x: float = 0.0
    stage: int = 0
    label: Optional[str] = None

    @property
    def is_leaf(self) -> bool:
        return self.left is None and self.right is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'height': self.height,
            'x': self.x,
            'left': self.left,
            'right': self.right,
            'stage': self.stage,
            'label': self.label,
            'leaves': list(self.leaves),
            'is_leaf': self.is_leaf
        }


@dataclass
class Dendrogram:
    """A finished binary tree with layout."""

    nodes: List[DendrogramNode]
    root: int
    leaf_order: List[int]
    is_similarity: bool = False

    @property
    def n_leaves(self) -> int:
        return len(self.leaf_order)

    def node(self, node_id: int) -> DendrogramNode:
        return self.nodes[node_id]

    def leaves(self) -> List[DendrogramNode]:
        return [n for n in self.nodes if n.is_leaf]

    def internal_nodes(self) -> List[DendrogramNode]:
        return [n for n in self.nodes if not n.is_leaf]

    def is_monotone(self) -> bool:
        """
        True if every internal node sits no lower than its children.

        Centroid and median linkage may legitimately fail this.
        """
        for node in self.internal_nodes():
            child_heights = [self.nodes[node.left].height, self.nodes[node.right].height]
            if self.is_similarity:
                internal = [h for c, h in zip((node.left, node.right), child_heights)
                            if not self.nodes[c].is_leaf]
                if internal and node.height > min(internal):
                    return False
            elif node.height < max(child_heights):
                return False
        return True

    def rescaled_heights(self, scale: float = RESCALE_MAX) -> Dict[int, float]:
        """
        Internal-node heights mapped onto 0..scale.

        The closest merge maps to 0 and the most distant merge to scale;
        for similarities the direction is reversed. Leaves stay at 0.

        Returns:
            Mapping node id -> rescaled height
        """
        internal = self.internal_nodes()
        result = {n.id: 0.0 for n in self.nodes if n.is_leaf}
        if not internal:
            return result

        heights = [n.height for n in internal]
        low, high = min(heights), max(heights)
        spread = high - low
        for node in internal:
            if spread == 0:
                result[node.id] = scale
            elif self.is_similarity:
                result[node.id] = scale * (high - node.height) / spread
            else:
                result[node.id] = scale * (node.height - low) / spread
        return result

    def to_dict(self) -> Dict[str, Any]:
        rescaled = self.rescaled_heights()
        nodes = []
        for node in self.nodes:
            entry = node.to_dict()
            entry['rescaled_height'] = rescaled[node.id]
            nodes.append(entry)
        return {
            'root': self.root,
            'leaf_order': list(self.leaf_order),
            'is_similarity': self.is_similarity,
            'nodes': nodes
        }


class DendrogramBuilder:
    """
    Turns an agglomeration schedule into a Dendrogram.
    """

    def __init__(self, labels: Optional[Sequence[str]] = None):
        """
        Args:
            labels: Optional case labels, one per original item
        """
        self.labels = list(labels) if labels is not None else None

    def build(self, schedule: AgglomerationSchedule) -> Dendrogram:
        """
        Build the tree bottom-up from the schedule.

        Args:
            schedule: A complete agglomeration schedule

        Returns:
            Dendrogram
        """
        n = schedule.n_items
        if n < 1:
            raise DendrogramError("no cases")
        if not schedule.complete:
            raise DendrogramError(f"{len(schedule)} stages for {n} cases")
        if self.labels is not None and len(self.labels) != n:
            raise DendrogramError(f"{len(self.labels)} labels for {n} cases")

        nodes = [
            DendrogramNode(i, 0.0, [i], label=self.labels[i] if self.labels else str(i + 1))
            for i in range(n)
        ]
        current: Dict[int, int] = {i: i for i in range(n)}

        for stage in schedule:
            if stage.cluster1 == stage.cluster2:
                raise DendrogramError(f"stage {stage.stage} merges cluster {stage.cluster1} with itself")
            try:
                first = nodes[current.pop(stage.cluster1)]
                second = nodes[current.pop(stage.cluster2)]
            except KeyError:
                raise DendrogramError(f"stage {stage.stage} references an inactive cluster")

            # larger subtree on the left; ties keep encounter order
            left, right = (second, first) if len(second.leaves) > len(first.leaves) else (first, second)
            parent = DendrogramNode(
                id=len(nodes),
                height=stage.coefficient,
                leaves=sorted(left.leaves + right.leaves),
                left=left.id,
                right=right.id,
                stage=stage.stage
            )
            nodes.append(parent)
            current[stage.cluster1] = parent.id

        if len(current) != 1:
            raise DendrogramError(f"{len(current)} roots remain")
        root = next(iter(current.values()))

        leaf_order = _in_order_leaves(nodes, root)
        if sorted(leaf_order) != list(range(n)):
            raise DendrogramError("leaves do not cover every case exactly once")

        _assign_positions(nodes, leaf_order)
        logger.debug(f"Built dendrogram with {n} leaves")
        return Dendrogram(nodes, root, leaf_order, schedule.is_similarity)


def _in_order_leaves(nodes: List[DendrogramNode], root: int) -> List[int]:
    order = []
    stack = [root]
    while stack:
        node = nodes[stack.pop()]
        if node.is_leaf:
            order.append(node.id)
        else:
            # right pushed first so the left subtree is visited first
            stack.append(node.right)
            stack.append(node.left)
    return order


def _assign_positions(nodes: List[DendrogramNode], leaf_order: List[int]) -> None:
    for position, leaf in enumerate(leaf_order):
        nodes[leaf].x = float(position)
    # children always have smaller ids than their parent
    for node in nodes:
        if not node.is_leaf:
            node.x = (nodes[node.left].x + nodes[node.right].x) / 2.0


def build_dendrogram(schedule: AgglomerationSchedule,
                     labels: Optional[Sequence[str]] = None) -> Dendrogram:
    """Convenience wrapper around DendrogramBuilder."""
    return DendrogramBuilder(labels).build(schedule)
