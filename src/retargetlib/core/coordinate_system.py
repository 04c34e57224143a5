"""
Coordinate System

Detects the native coordinate system of a loaded scene and converts it, once,
to canonical space: right-handed, Y-up, Z-forward, 1 unit = 1 meter.

The conversion is composed into the scene root only; bone local transforms
are never touched.
"""

import logging
from dataclasses import dataclass, field
from typing import Mapping, Optional, Union

import numpy as np
from pyrr import Quaternion

from ..config.settings import (
    CANONICAL_FORWARD_AXIS,
    CANONICAL_HANDEDNESS,
    CANONICAL_MARKER_KEY,
    CANONICAL_MARKER_VALUE,
    CANONICAL_UNIT_SCALE,
    CANONICAL_UP_AXIS,
    CENTIMETER_SCALE,
    CENTIMETER_THRESHOLD,
    DEFAULT_FORWARD_FOR_UP,
    DEGENERATE_EPSILON,
    MILLIMETER_SCALE,
    MILLIMETER_THRESHOLD,
)
from ..errors import InvalidInputError
from .scene import SceneNode
from .transform import Transform, quat_from_matrix3, quat_identity, quat_mul, quat_rotate_vector

logger = logging.getLogger(__name__)


AXIS_VECTORS = {
    "X": np.array([1.0, 0.0, 0.0]),
    "-X": np.array([-1.0, 0.0, 0.0]),
    "Y": np.array([0.0, 1.0, 0.0]),
    "-Y": np.array([0.0, -1.0, 0.0]),
    "Z": np.array([0.0, 0.0, 1.0]),
    "-Z": np.array([0.0, 0.0, -1.0]),
}

HANDEDNESS_VALUES = ("right", "left")


def _normalize_axis(axis: str) -> str:
    value = str(axis).strip().upper()
    if value.startswith("+"):
        value = value[1:]
    if value not in AXIS_VECTORS:
        raise InvalidInputError(f"Unknown axis '{axis}', expected one of {sorted(AXIS_VECTORS)}")
    return value


@dataclass(frozen=True)
class CoordinateSystem:
    """
    Coordinate system descriptor.

    Attributes:
        up_axis: One of X, Y, Z, -X, -Y, -Z
        forward_axis: Same domain, orthogonal to up_axis. Defaults to the
            conventional forward axis for up_axis (see DEFAULT_FORWARD_FOR_UP)
        handedness: "right" or "left"
        unit_scale: Meters per model unit
    """

    up_axis: str = CANONICAL_UP_AXIS
    forward_axis: Optional[str] = None
    handedness: str = CANONICAL_HANDEDNESS
    unit_scale: float = CANONICAL_UNIT_SCALE

    def __post_init__(self):
        up = _normalize_axis(self.up_axis)
        if self.forward_axis is None:
            forward = DEFAULT_FORWARD_FOR_UP.get(up, CANONICAL_FORWARD_AXIS)
        else:
            forward = _normalize_axis(self.forward_axis)
        if up.lstrip("-") == forward.lstrip("-"):
            raise InvalidInputError(f"Forward axis {forward} is not orthogonal to up axis {up}")

        handedness = str(self.handedness).lower()
        if handedness not in HANDEDNESS_VALUES:
            raise InvalidInputError(f"Unknown handedness '{self.handedness}'")

        unit_scale = float(self.unit_scale)
        if not np.isfinite(unit_scale) or unit_scale <= 0.0:
            raise InvalidInputError(f"Unit scale must be positive, got {self.unit_scale}")

        # Frozen dataclass: write normalized values through object.__setattr__
        object.__setattr__(self, "up_axis", up)
        object.__setattr__(self, "forward_axis", forward)
        object.__setattr__(self, "handedness", handedness)
        object.__setattr__(self, "unit_scale", unit_scale)

    @classmethod
    def canonical(cls) -> "CoordinateSystem":
        return cls()

    @classmethod
    def from_dict(cls, data: Mapping) -> "CoordinateSystem":
        """Build a descriptor from loader metadata (snake_case or camelCase keys)."""
        def pick(*keys, default):
            for key in keys:
                if key in data:
                    return data[key]
            return default

        return cls(
            up_axis=pick("up_axis", "upAxis", default=CANONICAL_UP_AXIS),
            forward_axis=pick("forward_axis", "forwardAxis", default=None),
            handedness=pick("handedness", default=CANONICAL_HANDEDNESS),
            unit_scale=pick("unit_scale", "unitScale", default=CANONICAL_UNIT_SCALE),
        )

    def to_dict(self) -> dict:
        return {
            "up_axis": self.up_axis,
            "forward_axis": self.forward_axis,
            "handedness": self.handedness,
            "unit_scale": self.unit_scale,
        }

    @property
    def is_canonical_orientation(self) -> bool:
        return (
            self.up_axis == CANONICAL_UP_AXIS
            and self.forward_axis == CANONICAL_FORWARD_AXIS
            and self.handedness == CANONICAL_HANDEDNESS
        )

    @property
    def is_canonical(self) -> bool:
        return self.is_canonical_orientation and abs(self.unit_scale - CANONICAL_UNIT_SCALE) <= 1e-9


@dataclass
class ConversionReport:
    """Result of canonicalize()."""

    applied: bool
    rotation: Quaternion = field(default_factory=quat_identity)
    scale: float = 1.0
    scale_applied: bool = False
    mirrored: bool = False
    original_descriptor: Optional[CoordinateSystem] = None


def conversion_rotation(descriptor: CoordinateSystem) -> Quaternion:
    """
    Rotation taking the descriptor's up axis to +Y and forward axis to +Z.

    Args:
        descriptor: Source coordinate system

    Returns:
        Quaternion (x, y, z, w)
    """
    up = AXIS_VECTORS[descriptor.up_axis]
    forward = AXIS_VECTORS[descriptor.forward_axis]
    right = np.cross(up, forward)

    # Rows are the source axes that land on canonical X, Y, Z
    matrix = np.vstack([right, up, forward])
    return quat_from_matrix3(matrix)


def infer_unit_scale(root: SceneNode) -> float:
    """Meters per model unit, guessed from the largest bounding box dimension."""
    bounds = root.bounding_box()
    if bounds is None:
        return CANONICAL_UNIT_SCALE

    size = bounds[1] - bounds[0]
    largest = float(np.max(size))
    if largest <= DEGENERATE_EPSILON:
        # A single point carries no unit information
        return CANONICAL_UNIT_SCALE
    if largest > CENTIMETER_THRESHOLD:
        return CENTIMETER_SCALE
    if largest < MILLIMETER_THRESHOLD:
        return MILLIMETER_SCALE
    return CANONICAL_UNIT_SCALE


def _root_bone_world_transforms(root: SceneNode):
    """World transforms of bones whose ancestors are not bones."""
    for node, world in root.traverse_with_world():
        if not node.is_bone:
            continue
        parent = node.parent
        while parent is not None and not parent.is_bone:
            parent = parent.parent
        if parent is None:
            yield node, world


def infer_up_axis(root: SceneNode) -> str:
    """
    Guess the up axis from root bone orientation.

    A root bone whose local +Y points along world +Z more than +Y marks a
    Z-up scene. Scenes without bones fall back to their tallest dimension.
    """
    found_bone = False
    for node, world in _root_bone_world_transforms(root):
        found_bone = True
        local_up = np.asarray(quat_rotate_vector(world.rotation, [0.0, 1.0, 0.0]))
        if local_up[2] > local_up[1]:
            logger.debug("Root bone '%s' points along +Z, assuming Z-up", node.name)
            return "Z"

    if found_bone:
        return "Y"

    bounds = root.bounding_box()
    if bounds is None:
        return CANONICAL_UP_AXIS
    size = bounds[1] - bounds[0]
    tallest = int(np.argmax(size))
    if size[tallest] <= size[1]:
        return "Y"
    return "XYZ"[tallest]


def infer_handedness(root: SceneNode) -> str:
    """Left-handed when the scene root basis has a negative determinant."""
    return "left" if root.world_transform().determinant() < 0.0 else "right"


def detect_coordinate_system(root: SceneNode) -> CoordinateSystem:
    """
    Descriptor for a scene, from loader metadata if present, else inferred.

    Args:
        root: Scene root node

    Returns:
        CoordinateSystem describing the scene's native space
    """
    metadata = root.userdata.get(CANONICAL_MARKER_KEY)
    if isinstance(metadata, Mapping):
        return CoordinateSystem.from_dict(metadata)
    if metadata == CANONICAL_MARKER_VALUE:
        return CoordinateSystem.canonical()

    up_axis = infer_up_axis(root)
    return CoordinateSystem(
        up_axis=up_axis,
        forward_axis=DEFAULT_FORWARD_FOR_UP[up_axis],
        handedness=infer_handedness(root),
        unit_scale=infer_unit_scale(root),
    )


def is_canonical(root: SceneNode) -> bool:
    return root.userdata.get(CANONICAL_MARKER_KEY) == CANONICAL_MARKER_VALUE


def canonicalize(root: SceneNode, descriptor: Optional[Union[CoordinateSystem, Mapping]] = None) -> ConversionReport:
    """
    Bring a scene into canonical space by composing one transform into its root.

    Running it again on a converted scene is a no-op that reports
    ``applied = False``.

    Args:
        root: Scene root node, modified in place
        descriptor: Native coordinate system; detected when omitted

    Returns:
        ConversionReport describing the applied conversion
    """
    if is_canonical(root):
        logger.debug("Scene '%s' already canonical", root.name)
        return ConversionReport(applied=False, original_descriptor=CoordinateSystem.canonical())

    if descriptor is None:
        descriptor = detect_coordinate_system(root)
    elif isinstance(descriptor, Mapping):
        descriptor = CoordinateSystem.from_dict(descriptor)

    rotation = conversion_rotation(descriptor)
    scale = descriptor.unit_scale / CANONICAL_UNIT_SCALE
    mirrored = descriptor.handedness != CANONICAL_HANDEDNESS
    rotation_applied = not descriptor.is_canonical_orientation
    scale_applied = abs(scale - 1.0) > 1e-9

    local = root.transform
    translation = np.asarray(local.translation, dtype=np.float64).copy()
    local_rotation = np.asarray(local.rotation, dtype=np.float64).copy()
    local_scale = np.asarray(local.scale, dtype=np.float64).copy()

    if mirrored:
        # Reflect across the X axis: M (q S) = q' (M S) with q' = (x, -y, -z, w)
        translation[0] = -translation[0]
        local_rotation[1] = -local_rotation[1]
        local_rotation[2] = -local_rotation[2]
        local_scale[0] = -local_scale[0]

    root.transform = Transform(
        translation=np.asarray(quat_rotate_vector(rotation, translation * scale)),
        rotation=quat_mul(rotation, local_rotation),
        scale=local_scale * scale,
    )
    root.userdata[CANONICAL_MARKER_KEY] = CANONICAL_MARKER_VALUE

    logger.debug(
        "Canonicalized '%s' from %s-up/%s-forward (%s-handed, %.4g m/unit)",
        root.name, descriptor.up_axis, descriptor.forward_axis, descriptor.handedness, descriptor.unit_scale,
    )

    return ConversionReport(
        applied=rotation_applied or mirrored,
        rotation=rotation,
        scale=scale,
        scale_applied=scale_applied,
        mirrored=mirrored,
        original_descriptor=descriptor,
    )
