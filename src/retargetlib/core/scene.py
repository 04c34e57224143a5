"""
Scene Graph

Minimal loaded-model hierarchy handed to the engine by an external loader.
Nodes are tagged as groups, meshes or bones; only bones become part of a
Skeleton, the rest contribute container transforms and bounds.
"""

from enum import Enum
from typing import Dict, Iterator, List, Optional, Tuple

import numpy as np

from .transform import Transform, trs_compose


class NodeKind(Enum):
    """Scene node variants."""
    GROUP = "group"
    MESH = "mesh"
    BONE = "bone"


class SceneNode:
    """
    Node in a loaded scene hierarchy.

    Each node has:
    - Local transform (relative to parent)
    - Kind tag (group, mesh or bone)
    - Free-form userdata (loader metadata, coordinate system marker)
    - Optional mesh points in local space, used for bounds only
    """

    def __init__(
        self,
        name: str,
        kind: NodeKind = NodeKind.GROUP,
        transform: Optional[Transform] = None,
        points=None,
        userdata: Optional[Dict] = None,
    ):
        """
        Initialize a scene node.

        Args:
            name: Node name (bone name for bone nodes)
            kind: Node variant
            transform: Local transform, identity if omitted
            points: Optional (N, 3) array of local vertex positions
            userdata: Optional metadata dictionary
        """
        self.name = name
        self.kind = kind
        self.transform = transform.copy() if transform is not None else Transform()
        self.points = None if points is None else np.asarray(points, dtype=np.float64).reshape(-1, 3)
        self.userdata: Dict = dict(userdata) if userdata else {}
        self.parent: Optional['SceneNode'] = None
        self.children: List['SceneNode'] = []

    @property
    def is_bone(self) -> bool:
        return self.kind == NodeKind.BONE

    def add_child(self, child: 'SceneNode') -> 'SceneNode':
        """Attach child to this node, detaching it from any previous parent."""
        if child.parent is not None:
            child.parent.children.remove(child)
        self.children.append(child)
        child.parent = self
        return child

    def traverse(self) -> Iterator['SceneNode']:
        """Pre-order walk of this node and its descendants."""
        stack = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def traverse_with_world(self, parent_world: Optional[Transform] = None) -> Iterator[Tuple['SceneNode', Transform]]:
        """Pre-order walk yielding each node with its world transform."""
        base = parent_world if parent_world is not None else Transform()
        stack = [(self, base)]
        while stack:
            node, parent = stack.pop()
            world = trs_compose(parent, node.transform)
            yield node, world
            for child in reversed(node.children):
                stack.append((child, world))

    def find(self, name: str) -> Optional['SceneNode']:
        for node in self.traverse():
            if node.name == name:
                return node
        return None

    def world_transform(self) -> Transform:
        """Compose transforms from the scene root down to this node."""
        chain = []
        node = self
        while node is not None:
            chain.append(node.transform)
            node = node.parent

        world = Transform()
        for local in reversed(chain):
            world = trs_compose(world, local)
        return world

    def bounding_box(self) -> Optional[Tuple[np.ndarray, np.ndarray]]:
        """
        World-space axis-aligned bounds of bone positions and mesh points.

        Returns:
            (min, max) corner arrays, or None if the subtree has no geometry
        """
        points = []
        for node, world in self.traverse_with_world():
            if node.is_bone:
                points.append(np.asarray(world.translation))
            if node.points is not None:
                for point in node.points:
                    points.append(np.asarray(world.apply_point(point)))

        if not points:
            return None

        stacked = np.vstack(points)
        return stacked.min(axis=0), stacked.max(axis=0)

    def __repr__(self):
        return f"SceneNode(name='{self.name}', kind={self.kind.value}, children={len(self.children)})"
