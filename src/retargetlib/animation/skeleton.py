"""
Skeleton

Represents a hierarchical skeleton as a contiguous, parent-sorted bone array.
Parent relationships are indices (``parent_index[i] < i``), never pointers.
"""

import logging
import re
from collections import Counter
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from ..config.settings import FUNCTIONAL_ROOT_PATTERN
from ..core.scene import SceneNode
from ..core.transform import Transform, trs_compose, trs_inverse
from ..errors import DegenerateBindError, InvalidInputError, UnknownBoneError

logger = logging.getLogger(__name__)

_FUNCTIONAL_ROOT = re.compile(FUNCTIONAL_ROOT_PATTERN)


class Bone:
    """
    Single bone in a skeleton.

    Each bone has:
    - Index in the skeleton's bone array
    - Parent index (-1 for roots)
    - Local rest transform (relative to parent)
    """

    def __init__(self, name: str, index: int, parent_index: int = -1, local_rest: Optional[Transform] = None):
        """
        Initialize a bone.

        Args:
            name: Bone name (case-sensitive)
            index: Bone index in skeleton
            parent_index: Parent bone index, -1 for roots
            local_rest: Bind-time transform relative to the parent
        """
        self.name = name
        self.index = index
        self.parent_index = parent_index
        self.local_rest = local_rest.copy() if local_rest is not None else Transform()
        self.children: List[int] = []

    @property
    def parent_id(self) -> Optional[int]:
        return None if self.parent_index < 0 else self.parent_index

    @property
    def is_root(self) -> bool:
        return self.parent_index < 0

    def __repr__(self):
        return f"Bone(name='{self.name}', index={self.index}, parent={self.parent_index})"


class Skeleton:
    """
    Hierarchical skeleton structure.

    Bones are stored parent-first. ``name_index`` maps each name to its first
    occurrence; repeated names are counted in ``duplicates`` and are not fatal.
    """

    def __init__(self, name: str = "Skeleton", embedded_world: Optional[Transform] = None):
        """
        Initialize skeleton.

        Args:
            name: Skeleton name for debugging
            embedded_world: Transform of the container the skeleton lived in
        """
        self.name = name
        self.bones: List[Bone] = []
        self.name_index: Dict[str, int] = {}
        self.duplicates: Dict[str, int] = {}
        self.embedded_world: Optional[Transform] = embedded_world.copy() if embedded_world is not None else None
        self._root_override: Optional[int] = None

    def add_bone(self, name: str, parent_index: int = -1, local_rest: Optional[Transform] = None) -> Bone:
        """
        Append a bone. Parents must already be present.

        Raises:
            InvalidInputError: On a forward parent reference or non-finite transform
        """
        index = len(self.bones)
        if parent_index >= index or parent_index < -1:
            raise InvalidInputError(
                f"Bone '{name}' references parent {parent_index}; bones must be added parent-first"
            )
        if local_rest is not None and not local_rest.is_finite():
            raise InvalidInputError(f"Bone '{name}' has a non-finite rest transform")

        bone = Bone(name, index, parent_index, local_rest)
        self.bones.append(bone)
        if parent_index >= 0:
            self.bones[parent_index].children.append(index)

        if name in self.name_index:
            self.duplicates[name] = self.duplicates.get(name, 1) + 1
        else:
            self.name_index[name] = index
        return bone

    @classmethod
    def from_bones(
        cls,
        records: Iterable[Tuple[str, Optional[str], Optional[Transform]]],
        name: str = "Skeleton",
        embedded_world: Optional[Transform] = None,
    ) -> 'Skeleton':
        """
        Build a skeleton from (name, parent_name, local_rest) records in any order.

        Records are sorted parent-first, keeping input order among siblings.

        Raises:
            InvalidInputError: On unknown parents or cycles
        """
        pending = list(records)
        all_names = {record[0] for record in pending}
        skeleton = cls(name, embedded_world)

        while pending:
            remaining = []
            for record in pending:
                bone_name, parent_name, local_rest = record
                if parent_name is None:
                    skeleton.add_bone(bone_name, -1, local_rest)
                elif parent_name in skeleton.name_index:
                    skeleton.add_bone(bone_name, skeleton.name_index[parent_name], local_rest)
                else:
                    remaining.append(record)

            if len(remaining) == len(pending):
                missing = [record[1] for record in remaining if record[1] not in all_names]
                if missing:
                    raise InvalidInputError(f"Unknown parent bone '{missing[0]}'")
                raise InvalidInputError(
                    f"Bone hierarchy contains a cycle through {sorted(record[0] for record in remaining)}"
                )
            pending = remaining

        return skeleton

    def __len__(self):
        return len(self.bones)

    def __iter__(self) -> Iterator[Bone]:
        return iter(self.bones)

    @property
    def bone_names(self) -> List[str]:
        return [bone.name for bone in self.bones]

    @property
    def parent_index(self) -> np.ndarray:
        return np.array([bone.parent_index for bone in self.bones], dtype=np.int64)

    def has_bone(self, name: str) -> bool:
        return name in self.name_index

    def find_bone(self, name: str) -> Optional[Bone]:
        """
        Find a bone by name.

        Returns:
            First bone with this name, None if not found
        """
        index = self.name_index.get(name)
        return self.bones[index] if index is not None else None

    def index_of(self, name: str) -> int:
        """Raises UnknownBoneError if the name is missing."""
        try:
            return self.name_index[name]
        except KeyError:
            raise UnknownBoneError(name, self.name) from None

    def find_root_bones(self) -> List[int]:
        """Indices of topological roots (bones without a bone parent)."""
        return [bone.index for bone in self.bones if bone.is_root]

    def children_of(self, index: int) -> List[int]:
        return list(self.bones[index].children)

    def depth_of(self, index: int) -> int:
        depth = 0
        parent = self.bones[index].parent_index
        while parent >= 0:
            depth += 1
            parent = self.bones[parent].parent_index
        return depth

    @property
    def root_id(self) -> int:
        """Functional root: user selection if set, else detected."""
        if self._root_override is not None:
            return self._root_override
        return detect_root(self.bones)

    @property
    def root_bone(self) -> Bone:
        return self.bones[self.root_id]

    def set_root(self, name: Optional[str]):
        """Override functional root detection; None restores detection."""
        if name is None:
            self._root_override = None
            return
        self._root_override = self.index_of(name)
        logger.debug("Skeleton '%s' functional root set to '%s'", self.name, name)

    def __repr__(self):
        return f"Skeleton(name='{self.name}', bones={len(self.bones)}, roots={len(self.find_root_bones())})"


def detect_root(bones: Sequence[Bone]) -> int:
    """
    Functional root bone index.

    The first bone whose lowercased name looks like hips/pelvis/root wins,
    otherwise the first topological root.

    Raises:
        InvalidInputError: If there are no bones
    """
    if not bones:
        raise InvalidInputError("Cannot detect the root of an empty skeleton")

    for bone in bones:
        if _FUNCTIONAL_ROOT.match(bone.name.lower()):
            return bone.index

    for bone in bones:
        if bone.is_root:
            return bone.index

    return bones[0].index


def detect_duplicate_names(names: Iterable[str]) -> Dict[str, int]:
    """Names that occur more than once, with their counts."""
    return {name: count for name, count in Counter(names).items() if count > 1}


def _nearest_bone_ancestor(node: SceneNode) -> Tuple[Optional[SceneNode], List[SceneNode]]:
    """Closest bone ancestor and the non-bone nodes in between (nearest first)."""
    between = []
    parent = node.parent
    while parent is not None and not parent.is_bone:
        between.append(parent)
        parent = parent.parent
    return parent, between


def _compose_chain(nodes: Sequence[SceneNode]) -> Transform:
    """Compose node transforms given nearest-first, outermost applied first."""
    result = Transform()
    for node in reversed(nodes):
        result = trs_compose(result, node.transform)
    return result


def extract_from_scene(root: SceneNode, name: Optional[str] = None) -> Skeleton:
    """
    Build a Skeleton from the bone nodes of a loaded scene.

    Bones are visited pre-order, so parents always precede children.
    Non-bone nodes between two bones are folded into the child's local rest.
    The container of the first root bone becomes the skeleton's
    ``embedded_world``.

    Args:
        root: Scene root node
        name: Skeleton name, defaults to the scene root name

    Returns:
        Skeleton with duplicates recorded in ``skeleton.duplicates``

    Raises:
        InvalidInputError: If the scene has no bones
    """
    bone_nodes = [node for node in root.traverse() if node.is_bone]
    if not bone_nodes:
        raise InvalidInputError(f"Scene '{root.name}' contains no bones")

    # Container of the first root bone, world space
    _, first_between = _nearest_bone_ancestor(bone_nodes[0])
    container = _compose_chain(first_between)
    container_inverse = None

    skeleton = Skeleton(name or root.name)
    index_by_node: Dict[int, int] = {}

    for node in bone_nodes:
        parent_bone, between = _nearest_bone_ancestor(node)
        if parent_bone is not None:
            local = trs_compose(_compose_chain(between), node.transform) if between else node.transform
            parent_index = index_by_node[id(parent_bone)]
        else:
            node_container = _compose_chain(between)
            if _same_transform(node_container, container):
                local = node.transform
            else:
                if container_inverse is None:
                    container_inverse = trs_inverse(container)
                local = trs_compose(trs_compose(container_inverse, node_container), node.transform)
            parent_index = -1

        bone = skeleton.add_bone(node.name, parent_index, local)
        index_by_node[id(node)] = bone.index

    if not _same_transform(container, Transform()):
        skeleton.embedded_world = container

    if skeleton.duplicates:
        logger.debug("Skeleton '%s' has duplicate bone names: %s", skeleton.name, skeleton.duplicates)

    return skeleton


def build_skeleton(scene: SceneNode) -> Skeleton:
    """Skeleton of a loaded scene (see extract_from_scene)."""
    return extract_from_scene(scene)


def _same_transform(a: Transform, b: Transform, tolerance: float = 1e-9) -> bool:
    # Plain arrays, pyrr overrides the operators np.isclose relies on
    rotation_a = np.asarray(a.rotation)
    rotation_b = np.asarray(b.rotation)
    return (
        np.allclose(np.asarray(a.translation), np.asarray(b.translation), atol=tolerance)
        and (np.allclose(rotation_a, rotation_b, atol=tolerance)
             or np.allclose(rotation_a, -rotation_b, atol=tolerance))
        and np.allclose(np.asarray(a.scale), np.asarray(b.scale), atol=tolerance)
    )


@dataclass(frozen=True, eq=False)
class BindPoseSnapshot:
    """
    Bind-pose transforms of a skeleton, captured once before retargeting.

    Per-bone transform lists plus contiguous arrays for the retargeter.
    Valid as long as the skeleton's rest pose is unchanged.
    """

    skeleton: Skeleton
    local_rest: Tuple[Transform, ...]
    world_rest: Tuple[Transform, ...]
    world_rest_inverse: Tuple[Transform, ...]
    container: Transform
    embedded: bool
    local_rotations: np.ndarray
    local_scales: np.ndarray
    world_positions: np.ndarray
    world_rotations: np.ndarray
    world_scales: np.ndarray

    def __len__(self):
        return len(self.world_rest)

    @property
    def root_id(self) -> int:
        return self.skeleton.root_id

    def parent_world(self, index: int) -> Transform:
        """World transform of a bone's parent frame (the container for roots)."""
        parent = self.skeleton.bones[index].parent_index
        return self.world_rest[parent] if parent >= 0 else self.container

    def bone_length(self, index: int) -> float:
        """Bind-time world distance to the parent bone, 0 for roots."""
        parent = self.skeleton.bones[index].parent_index
        if parent < 0:
            return 0.0
        return float(np.linalg.norm(self.world_positions[index] - self.world_positions[parent]))


def capture_bind(skeleton: Skeleton, embed_world: bool = False) -> BindPoseSnapshot:
    """
    Capture world bind transforms with one parent-first walk.

    ``world_rest[i] = world_rest[parent[i]] o local_rest[i]``; roots start from
    the embedded container when ``embed_world`` is set, identity otherwise.

    Args:
        skeleton: Skeleton to capture
        embed_world: Include the skeleton's embedded_world container

    Returns:
        BindPoseSnapshot

    Raises:
        DegenerateBindError: If any bone has zero world scale
    """
    embedded = bool(embed_world and skeleton.embedded_world is not None)
    container = skeleton.embedded_world.copy() if embedded else Transform()

    world_rest: List[Transform] = []
    world_inverse: List[Transform] = []
    for bone in skeleton.bones:
        parent_world = world_rest[bone.parent_index] if bone.parent_index >= 0 else container
        world = trs_compose(parent_world, bone.local_rest)
        if world.has_degenerate_scale():
            raise DegenerateBindError(bone.name)
        world_rest.append(world)
        world_inverse.append(trs_inverse(world))

    local_rest = tuple(bone.local_rest.copy() for bone in skeleton.bones)

    def stack(values, width):
        if not values:
            return np.zeros((0, width))
        return np.array([np.asarray(v, dtype=np.float64) for v in values])

    logger.debug("Captured bind pose for '%s' (%d bones, embedded=%s)", skeleton.name, len(world_rest), embedded)

    return BindPoseSnapshot(
        skeleton=skeleton,
        local_rest=local_rest,
        world_rest=tuple(world_rest),
        world_rest_inverse=tuple(world_inverse),
        container=container,
        embedded=embedded,
        local_rotations=stack([t.rotation for t in local_rest], 4),
        local_scales=stack([t.scale for t in local_rest], 3),
        world_positions=stack([t.translation for t in world_rest], 3),
        world_rotations=stack([t.rotation for t in world_rest], 4),
        world_scales=stack([t.scale for t in world_rest], 3),
    )
