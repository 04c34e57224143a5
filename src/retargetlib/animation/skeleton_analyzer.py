"""
Skeleton Analyzer

Structure statistics and bind-pose classification (T-pose / A-pose) used to
judge whether two skeletons are good retargeting partners.
"""

import math
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import numpy as np

from ..config.settings import (
    A_POSE_MAX_ANGLE,
    LEFT_SIDE_HINTS,
    LIMB_PATTERNS,
    RIGHT_SIDE_HINTS,
    T_POSE_MAX_ANGLE,
    T_POSE_MAX_VERTICAL,
)
from .skeleton import BindPoseSnapshot, Skeleton

POSE_T = "T-pose"
POSE_A = "A-pose"
POSE_OTHER = "other"
POSE_UNKNOWN = "unknown"

# Side token must lead (after any namespace) or trail the name
_LEFT_ARM = re.compile(r"(?:^|[:|])(?:left|l[_.])[a-z_.]*arm|arm[a-z_.]*[_.]l$", re.IGNORECASE)
_RIGHT_ARM = re.compile(r"(?:^|[:|])(?:right|r[_.])[a-z_.]*arm|arm[a-z_.]*[_.]r$", re.IGNORECASE)
_NOT_ARM = re.compile(r"hand|finger|fore|lower|twist|roll", re.IGNORECASE)


@dataclass
class SkeletonAnalysis:
    """Structure summary of a skeleton."""

    bone_count: int
    root_bones: List[str]
    max_depth: int
    has_symmetry: bool
    limb_count: int
    functional_root: Optional[str] = None
    duplicates: Dict[str, int] = field(default_factory=dict)


@dataclass
class PoseValidation:
    """Bind-pose compatibility between a source and a target skeleton."""

    valid: bool
    source_pose: str = POSE_UNKNOWN
    target_pose: str = POSE_UNKNOWN
    source_in_t_pose: bool = False
    target_in_t_pose: bool = False
    recommendation: str = ""


def analyze(skeleton: Skeleton) -> SkeletonAnalysis:
    """
    Summarize skeleton structure.

    Args:
        skeleton: Skeleton to analyze

    Returns:
        SkeletonAnalysis with bone count, roots, depth, symmetry and limb count
    """
    if len(skeleton) == 0:
        return SkeletonAnalysis(bone_count=0, root_bones=[], max_depth=0, has_symmetry=False, limb_count=0)

    # Bones are parent-first, so one forward pass fills depths
    depths = []
    for bone in skeleton.bones:
        depths.append(0 if bone.is_root else depths[bone.parent_index] + 1)

    names = [bone.name.lower() for bone in skeleton.bones]
    has_left = any(hint in name for name in names for hint in LEFT_SIDE_HINTS)
    has_right = any(hint in name for name in names for hint in RIGHT_SIDE_HINTS)
    limb_count = sum(1 for name in names if any(pattern in name for pattern in LIMB_PATTERNS))

    return SkeletonAnalysis(
        bone_count=len(skeleton),
        root_bones=[skeleton.bones[i].name for i in skeleton.find_root_bones()],
        max_depth=max(depths),
        has_symmetry=has_left and has_right,
        limb_count=limb_count,
        functional_root=skeleton.root_bone.name,
        duplicates=dict(skeleton.duplicates),
    )


def _find_arm(skeleton: Skeleton, pattern) -> Optional[int]:
    for bone in skeleton.bones:
        if pattern.search(bone.name) and not _NOT_ARM.search(bone.name):
            return bone.index
    return None


def _arm_direction(snapshot: BindPoseSnapshot, arm: int) -> Optional[np.ndarray]:
    children = snapshot.skeleton.children_of(arm)
    if not children:
        return None
    direction = snapshot.world_positions[children[0]] - snapshot.world_positions[arm]
    length = float(np.linalg.norm(direction))
    if length == 0.0:
        return None
    return direction / length


def _angle_to(direction: np.ndarray, axis: np.ndarray) -> float:
    cosine = float(np.clip(np.dot(direction, axis), -1.0, 1.0))
    return math.degrees(math.acos(cosine))


def detect_pose_type(snapshot: BindPoseSnapshot) -> str:
    """
    Classify a bind pose by upper-arm direction.

    Arms within 25 degrees of horizontal (left along +X, right along -X) with
    a small vertical component form a T-pose; a left arm 25-75 degrees down
    forms an A-pose.

    Returns:
        "T-pose", "A-pose", "other" or "unknown" when arms cannot be found
    """
    skeleton = snapshot.skeleton
    left_arm = _find_arm(skeleton, _LEFT_ARM)
    right_arm = _find_arm(skeleton, _RIGHT_ARM)
    if left_arm is None or right_arm is None:
        return POSE_UNKNOWN

    left_dir = _arm_direction(snapshot, left_arm)
    right_dir = _arm_direction(snapshot, right_arm)
    if left_dir is None or right_dir is None:
        return POSE_UNKNOWN

    left_angle = _angle_to(left_dir, np.array([1.0, 0.0, 0.0]))
    right_angle = _angle_to(right_dir, np.array([-1.0, 0.0, 0.0]))
    left_vertical = abs(left_dir[1])
    right_vertical = abs(right_dir[1])

    if (left_angle < T_POSE_MAX_ANGLE and right_angle < T_POSE_MAX_ANGLE
            and left_vertical < T_POSE_MAX_VERTICAL and right_vertical < T_POSE_MAX_VERTICAL):
        return POSE_T

    if T_POSE_MAX_ANGLE < left_angle < A_POSE_MAX_ANGLE and left_vertical > T_POSE_MAX_VERTICAL:
        return POSE_A

    return POSE_OTHER


def validate_poses(source: Optional[BindPoseSnapshot], target: Optional[BindPoseSnapshot]) -> PoseValidation:
    """Compare source and target bind poses and recommend a course of action."""
    if source is None or target is None:
        return PoseValidation(valid=False, recommendation="Bind poses not initialized")

    source_pose = detect_pose_type(source)
    target_pose = detect_pose_type(target)

    compatible = (
        source_pose == target_pose
        or {source_pose, target_pose} == {POSE_T, POSE_A}
    )

    if not compatible:
        recommendation = f"Source is {source_pose} and target is {target_pose}. Consider applying T-pose normalization."
    elif source_pose != POSE_T and target_pose != POSE_T:
        recommendation = "Poses are compatible but T-pose normalization may improve results."
    else:
        recommendation = "Poses are compatible for retargeting."

    return PoseValidation(
        valid=compatible,
        source_pose=source_pose,
        target_pose=target_pose,
        source_in_t_pose=source_pose == POSE_T,
        target_in_t_pose=target_pose == POSE_T,
        recommendation=recommendation,
    )
