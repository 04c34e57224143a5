"""
Retargeter

Transfers animation clips from a source skeleton onto a target skeleton.

Per mapped bone pair two quaternions are precomputed from the bind poses:

    left  = inv(target_parent_world) * source_parent_world
    right = inv(source_world) * target_world

so that every rotation keyframe becomes ``normalize(left * q * right)``.
Root motion is re-expressed in the target root's parent frame and scaled by
the skeletons' proportion ratio.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

import numpy as np
from pyrr import Quaternion

from ..animation.animation import AnimationClip, PositionTrack, RotationTrack, Track, TrackKind
from ..animation.skeleton import BindPoseSnapshot, capture_bind
from ..config.settings import (
    COORDINATE_CORRECTION_ANGLE,
    DEFAULT_EMBED_WORLD,
    DEFAULT_PRESERVE_HIP_POSITION,
    DEFAULT_PRESERVE_SCALE,
    DEFAULT_USE_OPTIMAL_SCALE,
    DEFAULT_USE_TARGET_REST,
    MIN_BONE_LENGTH,
    QUAT_NORM_FAIL_RANGE,
    QUAT_NORM_WARN_RANGE,
    SCALE_MATCH_TOLERANCE,
)
from ..core.transform import (
    Transform,
    quat_from_axis_angle,
    quat_inverse,
    quat_mul,
    quat_mul_batch,
    quat_norm_batch,
    quat_normalize_batch,
    quat_rotate_vector_batch,
)
from ..errors import DegenerateBindError, InvalidInputError, MalformedClipError
from .bone_mapping import BoneMapping

logger = logging.getLogger(__name__)


class WarningKind(Enum):
    """Non-fatal per-track and per-mapping issues."""
    UNMAPPED_BONE = "unmapped_bone"
    MISSING_TARGET_BONE = "missing_target_bone"
    UNKNOWN_SOURCE_BONE = "unknown_source_bone"
    NON_UNIT_QUATERNION = "non_unit_quaternion"
    NON_ROOT_POSITION = "non_root_position"
    POSITION_DISABLED = "position_disabled"
    SCALE_MISMATCH = "scale_mismatch"
    SCALE_DISABLED = "scale_disabled"


@dataclass(frozen=True)
class RetargetWarning:
    kind: WarningKind
    bone_name: str
    message: str


@dataclass
class RetargetOptions:
    """
    Rest-pose strategy for a retargeting job.

    Attributes:
        use_target_rest: Hold unmapped target bones at their local rest rotation
        preserve_hip_position: Retarget the functional root's position track
        preserve_scale: Pass scale tracks through when bind scales match
        embed_world: Include skeleton container transforms in bind-pose math
        use_optimal_scale: Median of per-bone length ratios instead of summed ratio
        coordinate_correction: Rotate source root data -90 degrees about Y
        source_root: Override the source functional root by name
        target_root: Override the target functional root by name
    """

    use_target_rest: bool = DEFAULT_USE_TARGET_REST
    preserve_hip_position: bool = DEFAULT_PRESERVE_HIP_POSITION
    preserve_scale: bool = DEFAULT_PRESERVE_SCALE
    embed_world: bool = DEFAULT_EMBED_WORLD
    use_optimal_scale: bool = DEFAULT_USE_OPTIMAL_SCALE
    coordinate_correction: bool = False
    source_root: Optional[str] = None
    target_root: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping) -> 'RetargetOptions':
        known = set(cls.__dataclass_fields__)
        unknown = set(data) - known
        if unknown:
            raise InvalidInputError(f"Unknown retarget options: {sorted(unknown)}")
        return cls(**data)


@dataclass(frozen=True)
class BonePair:
    """One mapped bone pair and its precomputed quaternions."""

    source_id: int
    target_id: int
    source_name: str
    target_name: str
    left: Quaternion
    right: Quaternion
    target_bind_local_rotation: Quaternion


@dataclass(eq=False)
class Precomputation:
    """
    Everything retarget_clip needs, computed once per job.

    ``left`` and ``right`` are (P, 4) arrays indexed like ``pairs``.
    """

    source: BindPoseSnapshot
    target: BindPoseSnapshot
    mapping: BoneMapping
    options: RetargetOptions
    pairs: Tuple[BonePair, ...]
    left: np.ndarray
    right: np.ndarray
    pair_by_source: Dict[str, int]
    proportion_ratio: float
    source_root_id: int
    target_root_id: int
    bind_src_root_world_position: np.ndarray
    bind_tgt_root_world_position: np.ndarray
    bind_src_root_local_position: np.ndarray
    bind_tgt_root_local_position: np.ndarray
    source_root_frame: Transform
    target_root_frame: Transform
    warnings: List[RetargetWarning] = field(default_factory=list)

    @property
    def source_root_name(self) -> str:
        return self.source.skeleton.bones[self.source_root_id].name

    @property
    def target_root_name(self) -> str:
        return self.target.skeleton.bones[self.target_root_id].name

    @property
    def mapped_target_ids(self) -> List[int]:
        return [pair.target_id for pair in self.pairs]


@dataclass
class RetargetResult:
    clip: AnimationClip
    warnings: List[RetargetWarning] = field(default_factory=list)

    def warnings_of(self, kind: WarningKind) -> List[RetargetWarning]:
        return [warning for warning in self.warnings if warning.kind == kind]


def _snapshot_for(snapshot: BindPoseSnapshot, embed_world: bool) -> BindPoseSnapshot:
    """Recapture a snapshot when its container handling disagrees with the options."""
    skeleton = snapshot.skeleton
    wanted = bool(embed_world and skeleton.embedded_world is not None)
    if snapshot.embedded == wanted:
        return snapshot
    logger.debug("Recapturing bind pose of '%s' with embed_world=%s", skeleton.name, embed_world)
    return capture_bind(skeleton, embed_world=embed_world)


def _resolve_root(snapshot: BindPoseSnapshot, override: Optional[str]) -> int:
    if override is not None:
        return snapshot.skeleton.index_of(override)
    return snapshot.root_id


def compute_proportion_ratio(source: BindPoseSnapshot, target: BindPoseSnapshot,
                             pairs: Iterable[BonePair], use_optimal_scale: bool = False) -> float:
    """
    Target-to-source size ratio over mapped bones that both have parents.

    Summed lengths by default, or the median per-pair ratio when
    ``use_optimal_scale`` is set. Falls back to 1 for degenerate chains.
    """
    source_lengths = []
    target_lengths = []
    for pair in pairs:
        if source.skeleton.bones[pair.source_id].is_root or target.skeleton.bones[pair.target_id].is_root:
            continue
        source_lengths.append(source.bone_length(pair.source_id))
        target_lengths.append(target.bone_length(pair.target_id))

    if use_optimal_scale:
        ratios = [
            tgt / src
            for src, tgt in zip(source_lengths, target_lengths)
            if src > MIN_BONE_LENGTH and tgt > MIN_BONE_LENGTH
        ]
        return float(np.median(ratios)) if ratios else 1.0

    source_total = float(sum(source_lengths))
    target_total = float(sum(target_lengths))
    if source_total < MIN_BONE_LENGTH or target_total < MIN_BONE_LENGTH:
        return 1.0
    return target_total / source_total


def precompute(source: BindPoseSnapshot, target: BindPoseSnapshot, mapping: BoneMapping,
               options: Optional[RetargetOptions] = None) -> Precomputation:
    """
    Precompute per-pair retargeting quaternions and root-motion parameters.

    Mapping entries whose bones cannot be resolved are skipped with a warning.

    Args:
        source: Source bind-pose snapshot
        target: Target bind-pose snapshot
        mapping: Source-to-target bone mapping
        options: Rest-pose strategy

    Returns:
        Precomputation for retarget_clip

    Raises:
        DegenerateBindError: If a paired bone has zero world scale
        UnknownBoneError: If a root override names a missing bone
    """
    options = options if options is not None else RetargetOptions()
    source = _snapshot_for(source, options.embed_world)
    target = _snapshot_for(target, options.embed_world)
    source_skeleton = source.skeleton
    target_skeleton = target.skeleton

    warnings: List[RetargetWarning] = []
    pairs: List[BonePair] = []

    for source_name, entry in mapping.items():
        if not source_skeleton.has_bone(source_name):
            warnings.append(RetargetWarning(
                WarningKind.UNKNOWN_SOURCE_BONE, source_name,
                f"Mapping source '{source_name}' is not in skeleton '{source_skeleton.name}', entry ignored",
            ))
            continue
        if not target_skeleton.has_bone(entry.target):
            warnings.append(RetargetWarning(
                WarningKind.MISSING_TARGET_BONE, source_name,
                f"Mapping target '{entry.target}' is not in skeleton '{target_skeleton.name}', entry ignored",
            ))
            continue

        source_id = source_skeleton.index_of(source_name)
        target_id = target_skeleton.index_of(entry.target)
        for snapshot, index in ((source, source_id), (target, target_id)):
            if snapshot.world_rest[index].has_degenerate_scale():
                raise DegenerateBindError(snapshot.skeleton.bones[index].name)

        source_parent = source.parent_world(source_id)
        target_parent = target.parent_world(target_id)
        left = quat_mul(quat_inverse(target_parent.rotation), source_parent.rotation)
        right = quat_mul(quat_inverse(source.world_rest[source_id].rotation), target.world_rest[target_id].rotation)

        pairs.append(BonePair(
            source_id=source_id,
            target_id=target_id,
            source_name=source_name,
            target_name=entry.target,
            left=left,
            right=right,
            target_bind_local_rotation=Quaternion(target.local_rotations[target_id].copy()),
        ))

    for warning in warnings:
        logger.debug(warning.message)

    source_root_id = _resolve_root(source, options.source_root)
    target_root_id = _resolve_root(target, options.target_root)
    ratio = compute_proportion_ratio(source, target, pairs, options.use_optimal_scale)

    logger.debug(
        "Precomputed %d bone pairs '%s' -> '%s' (proportion ratio %.4f)",
        len(pairs), source_skeleton.name, target_skeleton.name, ratio,
    )

    def stack(quats):
        if not quats:
            return np.zeros((0, 4))
        return np.array([np.asarray(q, dtype=np.float64) for q in quats])

    return Precomputation(
        source=source,
        target=target,
        mapping=mapping.copy(),
        options=options,
        pairs=tuple(pairs),
        left=stack([pair.left for pair in pairs]),
        right=stack([pair.right for pair in pairs]),
        pair_by_source={pair.source_name: i for i, pair in enumerate(pairs)},
        proportion_ratio=ratio,
        source_root_id=source_root_id,
        target_root_id=target_root_id,
        bind_src_root_world_position=source.world_positions[source_root_id].copy(),
        bind_tgt_root_world_position=target.world_positions[target_root_id].copy(),
        bind_src_root_local_position=np.asarray(source.local_rest[source_root_id].translation, dtype=np.float64).copy(),
        bind_tgt_root_local_position=np.asarray(target.local_rest[target_root_id].translation, dtype=np.float64).copy(),
        source_root_frame=source.parent_world(source_root_id).copy(),
        target_root_frame=target.parent_world(target_root_id).copy(),
        warnings=warnings,
    )


def _correction_quaternion() -> np.ndarray:
    return np.asarray(quat_from_axis_angle([0.0, 1.0, 0.0], COORDINATE_CORRECTION_ANGLE))


def _checked_rotations(track: Track, warnings: List[RetargetWarning]) -> np.ndarray:
    """
    Keyframe quaternions, normalized.

    Raises:
        InvalidInputError: On NaN or infinite values
        MalformedClipError: If any norm is outside the fail range
    """
    values = np.asarray(track.values, dtype=np.float64)
    if not np.all(np.isfinite(values)):
        raise InvalidInputError(f"Track '{track.property_path}' contains non-finite quaternions")
    if values.shape[0] == 0:
        return values.reshape(0, 4)

    norms = quat_norm_batch(values)
    fail_low, fail_high = QUAT_NORM_FAIL_RANGE
    if np.any(norms < fail_low) or np.any(norms > fail_high):
        raise MalformedClipError(
            f"Track '{track.property_path}' has quaternion norms in [{norms.min():.3f}, {norms.max():.3f}]"
        )

    warn_low, warn_high = QUAT_NORM_WARN_RANGE
    off = int(np.count_nonzero((norms < warn_low) | (norms > warn_high)))
    if off:
        warnings.append(RetargetWarning(
            WarningKind.NON_UNIT_QUATERNION, track.bone_name,
            f"Normalized {off} non-unit quaternion keyframe(s) on '{track.bone_name}'",
        ))
    return quat_normalize_batch(values)


def _retarget_root_positions(precomp: Precomputation, values: np.ndarray) -> np.ndarray:
    """
    Map source root positions into the target root's parent frame.

    The displacement from the source bind position is taken to world space
    through the source root's parent frame, scaled by the proportion ratio,
    and brought back through the target root's parent frame.
    """
    delta = np.asarray(values, dtype=np.float64) - precomp.bind_src_root_local_position
    if precomp.options.coordinate_correction:
        delta = quat_rotate_vector_batch(_correction_quaternion(), delta)

    source_frame = precomp.source_root_frame
    target_frame = precomp.target_root_frame
    world_delta = quat_rotate_vector_batch(
        np.asarray(source_frame.rotation), delta * np.asarray(source_frame.scale)
    )
    world_delta = world_delta * precomp.proportion_ratio
    local_delta = quat_rotate_vector_batch(
        np.asarray(quat_inverse(target_frame.rotation)), world_delta
    ) / np.asarray(target_frame.scale)
    return precomp.bind_tgt_root_local_position + local_delta


def _scales_match(a: np.ndarray, b: np.ndarray) -> bool:
    tolerance = SCALE_MATCH_TOLERANCE * np.maximum(np.abs(a), np.abs(b))
    return bool(np.all(np.abs(a - b) <= tolerance))


def retarget_clip(precomp: Precomputation, clip: AnimationClip, rename: Optional[str] = None) -> RetargetResult:
    """
    Retarget one clip onto the target skeleton.

    Output tracks are ordered by target bone index, then track kind
    (rotation, position, scale), then source track index.

    Args:
        precomp: Result of precompute()
        clip: Source clip
        rename: Output clip name, defaults to the source name

    Returns:
        RetargetResult with the new clip and per-track warnings

    Raises:
        MalformedClipError: If rotation keyframes are far from unit length
        InvalidInputError: If keyframes contain NaN
    """
    options = precomp.options
    source_skeleton = precomp.source.skeleton
    target_skeleton = precomp.target.skeleton
    source_root_name = precomp.source_root_name
    correction = _correction_quaternion() if options.coordinate_correction else None

    warnings: List[RetargetWarning] = []
    outputs: List[Tuple[int, int, int, Track]] = []

    for index, track in enumerate(clip.tracks):
        bone_name = track.bone_name

        if track.kind == TrackKind.ROTATION:
            pair_index = precomp.pair_by_source.get(bone_name)
            if pair_index is None:
                warnings.append(RetargetWarning(
                    WarningKind.UNMAPPED_BONE, bone_name,
                    f"Dropped rotation track for unmapped bone '{bone_name}'",
                ))
                continue

            pair = precomp.pairs[pair_index]
            values = _checked_rotations(track, warnings)
            if correction is not None and pair.source_id == precomp.source_root_id:
                values = quat_mul_batch(correction, values)

            retargeted = quat_mul_batch(quat_mul_batch(precomp.left[pair_index], values), precomp.right[pair_index])
            if len(retargeted):
                retargeted = quat_normalize_batch(retargeted)
            outputs.append((
                pair.target_id, TrackKind.ROTATION.order, index,
                RotationTrack(pair.target_name, track.times.copy(), retargeted, track.interpolation),
            ))

        elif track.kind == TrackKind.POSITION:
            if not options.preserve_hip_position:
                warnings.append(RetargetWarning(
                    WarningKind.POSITION_DISABLED, bone_name,
                    f"Dropped position track for '{bone_name}' (hip position disabled)",
                ))
                continue
            if bone_name != source_root_name:
                warnings.append(RetargetWarning(
                    WarningKind.NON_ROOT_POSITION, bone_name,
                    f"Dropped position track for non-root bone '{bone_name}'",
                ))
                continue

            if not np.all(np.isfinite(track.values)):
                raise InvalidInputError(f"Track '{track.property_path}' contains non-finite positions")
            positions = _retarget_root_positions(precomp, track.values)
            outputs.append((
                precomp.target_root_id, TrackKind.POSITION.order, index,
                PositionTrack(precomp.target_root_name, track.times.copy(), positions, track.interpolation),
            ))

        elif track.kind == TrackKind.SCALE:
            if not options.preserve_scale:
                warnings.append(RetargetWarning(
                    WarningKind.SCALE_DISABLED, bone_name,
                    f"Dropped scale track for '{bone_name}' (scale passthrough disabled)",
                ))
                continue

            pair_index = precomp.pair_by_source.get(bone_name)
            if pair_index is None:
                warnings.append(RetargetWarning(
                    WarningKind.UNMAPPED_BONE, bone_name,
                    f"Dropped scale track for unmapped bone '{bone_name}'",
                ))
                continue

            pair = precomp.pairs[pair_index]
            if not _scales_match(precomp.source.local_scales[pair.source_id],
                                 precomp.target.local_scales[pair.target_id]):
                warnings.append(RetargetWarning(
                    WarningKind.SCALE_MISMATCH, bone_name,
                    f"Dropped scale track for '{bone_name}': bind scales of "
                    f"'{bone_name}' and '{pair.target_name}' differ",
                ))
                continue

            outputs.append((pair.target_id, TrackKind.SCALE.order, index, track.copy(bone_name=pair.target_name)))

    if options.use_target_rest:
        mapped_targets = set(precomp.mapped_target_ids)
        times = [0.0, clip.duration] if clip.duration > 0.0 else [0.0]
        rest_index = len(clip.tracks)
        for bone in target_skeleton.bones:
            if bone.index in mapped_targets:
                continue
            rest = precomp.target.local_rotations[bone.index]
            outputs.append((
                bone.index, TrackKind.ROTATION.order, rest_index,
                RotationTrack(bone.name, times, np.tile(rest, (len(times), 1))),
            ))
            rest_index += 1

    outputs.sort(key=lambda item: item[:3])
    result_clip = AnimationClip(
        rename if rename is not None else clip.name,
        [item[3] for item in outputs],
        clip.duration,
    )

    if warnings:
        logger.debug("Retargeted '%s' from '%s' with %d warning(s)", clip.name, source_skeleton.name, len(warnings))

    return RetargetResult(clip=result_clip, warnings=warnings)


def retarget_clips(precomp: Precomputation, clips: Iterable[AnimationClip]) -> List[RetargetResult]:
    """Retarget several clips with one precomputation."""
    return [retarget_clip(precomp, clip) for clip in clips]


def retarget_pose(precomp: Precomputation, pose: Mapping[str, object]) -> Dict[str, Quaternion]:
    """
    Retarget a single pose given as source bone name -> local rotation.

    Mapped bones missing from ``pose`` take the target's bind local rotation.

    Returns:
        Target bone name -> local rotation for every mapped pair
    """
    correction = _correction_quaternion() if precomp.options.coordinate_correction else None
    result: Dict[str, Quaternion] = {}

    for i, pair in enumerate(precomp.pairs):
        value = pose.get(pair.source_name)
        if value is None:
            result[pair.target_name] = Quaternion(np.asarray(pair.target_bind_local_rotation).copy())
            continue

        rotation = np.asarray(value, dtype=np.float64).reshape(1, 4)
        if not np.all(np.isfinite(rotation)):
            raise InvalidInputError(f"Pose rotation for '{pair.source_name}' is not finite")
        rotation = quat_normalize_batch(rotation)
        if correction is not None and pair.source_id == precomp.source_root_id:
            rotation = quat_mul_batch(correction, rotation)
        retargeted = quat_mul_batch(quat_mul_batch(precomp.left[i], rotation), precomp.right[i])
        result[pair.target_name] = Quaternion(quat_normalize_batch(retargeted)[0])

    return result
