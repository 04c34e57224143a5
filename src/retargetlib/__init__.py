"""
RetargetLib - Skeletal Animation Retargeting

Transfers animation clips between structurally different skeletons and
normalizes loaded models to a canonical right-handed, Y-up, Z-forward,
meter-scaled space.
"""

import logging

from .errors import (
    DegenerateBindError,
    DegenerateError,
    InvalidInputError,
    JobStateError,
    MalformedClipError,
    MappingConflictError,
    MathError,
    RetargetError,
    UnknownBoneError,
)

# Core
from .core.transform import Transform
from .core.scene import NodeKind, SceneNode
from .core.coordinate_system import ConversionReport, CoordinateSystem, canonicalize, detect_coordinate_system

# Animation
from .animation import (
    AnimationClip,
    AnimationController,
    BindPoseSnapshot,
    Bone,
    PositionTrack,
    RotationTrack,
    ScaleTrack,
    Skeleton,
    SkeletonAnalysis,
    TrackKind,
    analyze,
    build_skeleton,
    capture_bind,
    extract_from_scene,
)

# Retargeting
from .retargeting import (
    BoneMapper,
    BoneMapping,
    JobState,
    MappingOrigin,
    Precomputation,
    RetargetJob,
    RetargetOptions,
    RetargetResult,
    RetargetWarning,
    WarningKind,
    auto_map,
    compatibility,
    precompute,
    retarget_clip,
)

# Loaders
from .loaders import SceneLoader, SceneLoadResult

__version__ = "0.1.0"

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "DegenerateBindError",
    "DegenerateError",
    "InvalidInputError",
    "JobStateError",
    "MalformedClipError",
    "MappingConflictError",
    "MathError",
    "RetargetError",
    "UnknownBoneError",
    "Transform",
    "NodeKind",
    "SceneNode",
    "ConversionReport",
    "CoordinateSystem",
    "canonicalize",
    "detect_coordinate_system",
    "AnimationClip",
    "AnimationController",
    "BindPoseSnapshot",
    "Bone",
    "PositionTrack",
    "RotationTrack",
    "ScaleTrack",
    "Skeleton",
    "SkeletonAnalysis",
    "TrackKind",
    "analyze",
    "build_skeleton",
    "capture_bind",
    "extract_from_scene",
    "BoneMapper",
    "BoneMapping",
    "JobState",
    "MappingOrigin",
    "Precomputation",
    "RetargetJob",
    "RetargetOptions",
    "RetargetResult",
    "RetargetWarning",
    "WarningKind",
    "auto_map",
    "compatibility",
    "precompute",
    "retarget_clip",
    "SceneLoader",
    "SceneLoadResult",
]
