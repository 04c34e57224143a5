"""
Animation System

Skeletons, bind poses and keyframe clips for retargeting.
"""

from .skeleton import (
    BindPoseSnapshot,
    Bone,
    Skeleton,
    build_skeleton,
    capture_bind,
    detect_duplicate_names,
    detect_root,
    extract_from_scene,
)
from .skeleton_analyzer import PoseValidation, SkeletonAnalysis, analyze, detect_pose_type, validate_poses
from .animation import (
    AnimationClip,
    InterpolationType,
    PositionTrack,
    RotationTrack,
    ScaleTrack,
    Track,
    TrackKind,
    make_track,
    parse_track_name,
    track_from_property_path,
)
from .animation_controller import AnimationController, Pose

__all__ = [
    'BindPoseSnapshot',
    'Bone',
    'Skeleton',
    'build_skeleton',
    'capture_bind',
    'detect_duplicate_names',
    'detect_root',
    'extract_from_scene',
    'PoseValidation',
    'SkeletonAnalysis',
    'analyze',
    'detect_pose_type',
    'validate_poses',
    'AnimationClip',
    'InterpolationType',
    'PositionTrack',
    'RotationTrack',
    'ScaleTrack',
    'Track',
    'TrackKind',
    'make_track',
    'parse_track_name',
    'track_from_property_path',
    'AnimationController',
    'Pose',
]
