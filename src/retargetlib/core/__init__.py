"""Core math, scene graph and coordinate-system handling."""

from .transform import (
    Transform,
    quat_equivalent,
    quat_from_axis_angle,
    quat_identity,
    quat_inverse,
    quat_mul,
    quat_normalize,
    quat_rotate_vector,
    quat_slerp,
    trs_compose,
    trs_inverse,
    trs_to_matrix4,
    vec_add,
    vec_component_mul,
    vec_scale,
    vec_sub,
)
from .scene import NodeKind, SceneNode
from .coordinate_system import (
    ConversionReport,
    CoordinateSystem,
    canonicalize,
    detect_coordinate_system,
)

__all__ = [
    'Transform',
    'quat_equivalent',
    'quat_from_axis_angle',
    'quat_identity',
    'quat_inverse',
    'quat_mul',
    'quat_normalize',
    'quat_rotate_vector',
    'quat_slerp',
    'trs_compose',
    'trs_inverse',
    'trs_to_matrix4',
    'vec_add',
    'vec_component_mul',
    'vec_scale',
    'vec_sub',
    'NodeKind',
    'SceneNode',
    'ConversionReport',
    'CoordinateSystem',
    'canonicalize',
    'detect_coordinate_system',
]
