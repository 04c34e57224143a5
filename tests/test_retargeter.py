"""Tests for bind-pose precomputation and clip retargeting"""

import math

import numpy as np
import pytest

from conftest import HALF_SQRT2, assert_quats_close, make_chain
from retargetlib.animation.animation import AnimationClip, PositionTrack, RotationTrack, ScaleTrack
from retargetlib.animation.skeleton import Skeleton, capture_bind
from retargetlib.core.transform import Transform, quat_from_axis_angle
from retargetlib.errors import DegenerateBindError, InvalidInputError, MalformedClipError, UnknownBoneError
from retargetlib.retargeting.bone_mapping import BoneMapping, auto_map
from retargetlib.retargeting.retargeter import (
    RetargetOptions,
    WarningKind,
    precompute,
    retarget_clip,
    retarget_clips,
    retarget_pose,
)

CHAIN = ["Root", "Spine", "Head"]
UNIT_OFFSETS = [[0.0, 0.0, 0.0], [0.0, 1.0, 0.0], [0.0, 1.0, 0.0]]
SPINE_KEYS = [[0.0, 0.0, 0.0, 1.0], [0.0, HALF_SQRT2, 0.0, HALF_SQRT2]]


def _precompute(source, target, mapping=None, **options):
    opts = RetargetOptions(**options)
    if mapping is None:
        mapping = auto_map(source, target).mapping
    return precompute(
        capture_bind(source, embed_world=opts.embed_world),
        capture_bind(target, embed_world=opts.embed_world),
        mapping,
        opts,
    )


def _track(clip, path):
    matches = [track for track in clip.tracks if track.property_path == path]
    assert len(matches) == 1, f"expected one '{path}' track, got {[t.property_path for t in clip.tracks]}"
    return matches[0]


def test_identity_retarget(chain_skeleton, target_chain_skeleton, spine_clip):
    """Identical skeletons leave keyframes untouched"""
    precomp = _precompute(chain_skeleton, target_chain_skeleton)

    result = retarget_clip(precomp, spine_clip)

    assert [track.property_path for track in result.clip.tracks] == ["Spine.quaternion"]
    track = result.clip.tracks[0]
    assert np.array_equal(track.times, [0.0, 1.0])
    assert_quats_close(track.values, SPINE_KEYS)
    assert result.warnings == []


def test_identity_retarget_preserves_root_positions(chain_skeleton, target_chain_skeleton):
    clip = AnimationClip("Bob", [
        PositionTrack("Root", [0.0, 0.5, 1.0], [[0.0, 0.0, 0.0], [0.25, 0.1, -0.5], [1.0, 0.0, 2.0]]),
    ])

    result = retarget_clip(_precompute(chain_skeleton, target_chain_skeleton), clip)

    assert np.allclose(_track(result.clip, "Root.position").values, clip.tracks[0].values)


def test_renamed_bones_retarget(spine_clip):
    """Prefixed target names receive the same rotations"""
    source = make_chain(["Hips", "Spine", "Head"], UNIT_OFFSETS, name="Source")
    target = make_chain(["mixamorig:Hips", "mixamorig:Spine", "mixamorig:Head"], UNIT_OFFSETS, name="Target")

    mapping = auto_map(source, target).mapping
    assert mapping.as_dict() == {
        "Hips": "mixamorig:Hips",
        "Spine": "mixamorig:Spine",
        "Head": "mixamorig:Head",
    }

    result = retarget_clip(_precompute(source, target, mapping), spine_clip)

    assert_quats_close(_track(result.clip, "mixamorig:Spine.quaternion").values, SPINE_KEYS)


def test_root_motion_scales_with_proportions(chain_skeleton, double_chain_skeleton, root_motion_clip):
    """A target twice as tall travels twice as far"""
    precomp = _precompute(chain_skeleton, double_chain_skeleton)
    assert precomp.proportion_ratio == pytest.approx(2.0)

    result = retarget_clip(precomp, root_motion_clip)

    positions = _track(result.clip, "Root.position").values
    assert np.allclose(positions, [[0.0, 0.0, 0.0], [2.0, 0.0, 0.0]], rtol=0.01)


def test_rotated_container_motion_stays_in_world_space(target_chain_skeleton):
    """Root motion inside a rotated container lands along the world direction"""
    container = Transform(rotation=quat_from_axis_angle([0.0, 1.0, 0.0], math.pi / 2))
    source = make_chain(CHAIN, UNIT_OFFSETS, name="Contained", embedded_world=container)
    clip = AnimationClip("Forward", [
        PositionTrack("Root", [0.0, 1.0], [[0.0, 0.0, 0.0], [-1.0, 0.0, 0.0]]),
    ])

    embedded = retarget_clip(_precompute(source, target_chain_skeleton, embed_world=True), clip)
    assert np.allclose(_track(embedded.clip, "Root.position").values,
                       [[0.0, 0.0, 0.0], [0.0, 0.0, 1.0]], atol=1e-9)

    # A snapshot captured with the container is recaptured without it
    mapping = auto_map(source, target_chain_skeleton).mapping
    precomp = precompute(
        capture_bind(source, embed_world=True),
        capture_bind(target_chain_skeleton),
        mapping,
        RetargetOptions(embed_world=False),
    )
    assert not precomp.source.embedded
    plain = retarget_clip(precomp, clip)
    assert np.allclose(_track(plain.clip, "Root.position").values,
                       [[0.0, 0.0, 0.0], [-1.0, 0.0, 0.0]], atol=1e-9)


def test_unmapped_bone_track_is_dropped(target_chain_skeleton):
    source = make_chain(CHAIN + ["Tail"], UNIT_OFFSETS + [[0.0, 0.0, -1.0]], name="Source")
    clip = AnimationClip("Wag", [
        RotationTrack("Spine", [0.0, 1.0], SPINE_KEYS),
        RotationTrack("Tail", [0.0, 1.0], SPINE_KEYS),
    ])

    result = retarget_clip(_precompute(source, target_chain_skeleton), clip)

    assert result.clip.bone_names == ["Spine"]
    assert len(result.warnings) == 1
    dropped = result.warnings_of(WarningKind.UNMAPPED_BONE)
    assert [warning.bone_name for warning in dropped] == ["Tail"]


def test_bind_pose_maps_to_target_bind_pose():
    """A clip holding the source bind pose yields the target bind pose"""
    source_rests = [
        quat_from_axis_angle([1.0, 0.0, 0.0], 0.3),
        quat_from_axis_angle([0.0, 1.0, 0.0], 0.5),
        quat_from_axis_angle([0.0, 0.0, 1.0], -0.4),
    ]
    target_rests = [
        quat_from_axis_angle([0.0, 1.0, 0.0], math.pi / 2),
        quat_from_axis_angle([1.0, 1.0, 0.0], 1.1),
        quat_from_axis_angle([0.0, 0.0, 1.0], 0.2),
    ]
    source = make_chain(CHAIN, UNIT_OFFSETS, name="Source", rotations=source_rests)
    target = make_chain(CHAIN, [[0.0, 0.0, 0.0], [0.0, 1.5, 0.0], [0.0, 0.5, 0.0]], name="Target",
                        rotations=target_rests)
    clip = AnimationClip("Bind", [
        RotationTrack(name, [0.0], [rest]) for name, rest in zip(CHAIN, source_rests)
    ])

    result = retarget_clip(_precompute(source, target), clip)

    for name, rest in zip(CHAIN, target_rests):
        assert_quats_close(_track(result.clip, f"{name}.quaternion").values, [rest])


def test_retarget_is_reproducible(target_chain_skeleton, spine_clip):
    container = Transform(rotation=quat_from_axis_angle([0.0, 1.0, 0.0], 0.7))
    source = make_chain(CHAIN, UNIT_OFFSETS, embedded_world=container,
                        rotations=[quat_from_axis_angle([1.0, 0.0, 0.0], 0.2)] * 3)
    precomp = _precompute(source, target_chain_skeleton)

    first = retarget_clip(precomp, spine_clip)
    second = retarget_clip(precomp, spine_clip)

    for a, b in zip(first.clip.tracks, second.clip.tracks):
        assert a.values.tobytes() == b.values.tobytes()
        assert a.times.tobytes() == b.times.tobytes()


def test_optimal_scale_uses_median_ratio():
    names = ["Root", "Spine", "Chest", "Head"]
    source = make_chain(names, [[0.0, 0.0, 0.0]] + [[0.0, 1.0, 0.0]] * 3, name="Source")
    target = make_chain(names, [[0.0, 0.0, 0.0], [0.0, 2.0, 0.0], [0.0, 2.0, 0.0], [0.0, 8.0, 0.0]], name="Target")

    assert _precompute(source, target).proportion_ratio == pytest.approx(4.0)
    assert _precompute(source, target, use_optimal_scale=True).proportion_ratio == pytest.approx(2.0)


def test_proportion_ratio_defaults_to_one_for_degenerate_chains():
    source = make_chain(["Root", "Spine"], [[0.0, 0.0, 0.0], [0.0, 0.0, 0.0]], name="Source")
    target = make_chain(["Root", "Spine"], [[0.0, 0.0, 0.0], [0.0, 1.0, 0.0]], name="Target")

    assert _precompute(source, target).proportion_ratio == pytest.approx(1.0)


def test_non_unit_quaternions_are_normalized_with_warning(chain_skeleton, target_chain_skeleton):
    clip = AnimationClip("Drift", [RotationTrack("Spine", [0.0], [[0.0, 0.0, 0.0, 1.2]])])

    result = retarget_clip(_precompute(chain_skeleton, target_chain_skeleton), clip)

    assert len(result.warnings_of(WarningKind.NON_UNIT_QUATERNION)) == 1
    values = _track(result.clip, "Spine.quaternion").values
    assert np.allclose(np.linalg.norm(values, axis=1), 1.0)


def test_far_from_unit_quaternions_fail(chain_skeleton, target_chain_skeleton):
    clip = AnimationClip("Broken", [RotationTrack("Spine", [0.0], [[0.0, 0.0, 0.0, 3.0]])])
    with pytest.raises(MalformedClipError):
        retarget_clip(_precompute(chain_skeleton, target_chain_skeleton), clip)


def test_nan_keyframes_fail(chain_skeleton, target_chain_skeleton, spine_clip):
    spine_clip.tracks[0].values[1, 0] = np.nan
    with pytest.raises(InvalidInputError):
        retarget_clip(_precompute(chain_skeleton, target_chain_skeleton), spine_clip)


def test_precompute_skips_unresolvable_entries(chain_skeleton, target_chain_skeleton):
    mapping = BoneMapping()
    mapping.set("Root", "Root")
    mapping.set("Spine", "Pelvis")
    mapping.set("Tail", "Head")

    precomp = _precompute(chain_skeleton, target_chain_skeleton, mapping)

    assert [pair.source_name for pair in precomp.pairs] == ["Root"]
    kinds = {warning.bone_name: warning.kind for warning in precomp.warnings}
    assert kinds == {
        "Spine": WarningKind.MISSING_TARGET_BONE,
        "Tail": WarningKind.UNKNOWN_SOURCE_BONE,
    }


def test_degenerate_container_fails_precompute(target_chain_skeleton):
    container = Transform(scale=[0.0, 0.0, 0.0])
    source = make_chain(CHAIN, UNIT_OFFSETS, embedded_world=container)
    mapping = auto_map(source, target_chain_skeleton).mapping

    snapshot = capture_bind(source, embed_world=False)
    with pytest.raises(DegenerateBindError):
        precompute(snapshot, capture_bind(target_chain_skeleton), mapping, RetargetOptions(embed_world=True))


def test_scale_track_passes_through_when_bind_scales_match(chain_skeleton, target_chain_skeleton):
    clip = AnimationClip("Grow", [ScaleTrack("Spine", [0.0, 1.0], [[1.0, 1.0, 1.0], [1.5, 1.5, 1.5]])])

    result = retarget_clip(_precompute(chain_skeleton, target_chain_skeleton), clip)

    assert np.allclose(_track(result.clip, "Spine.scale").values, [[1.0, 1.0, 1.0], [1.5, 1.5, 1.5]])


def test_scale_track_dropped_on_bind_mismatch(chain_skeleton):
    target = Skeleton.from_bones([
        ("Root", None, Transform()),
        ("Spine", "Root", Transform(translation=[0.0, 1.0, 0.0], scale=[2.0, 2.0, 2.0])),
        ("Head", "Spine", Transform(translation=[0.0, 0.5, 0.0])),
    ], name="Target")
    clip = AnimationClip("Grow", [ScaleTrack("Spine", [0.0], [[1.5, 1.5, 1.5]])])

    result = retarget_clip(_precompute(chain_skeleton, target), clip)

    assert result.clip.tracks == []
    assert len(result.warnings_of(WarningKind.SCALE_MISMATCH)) == 1


def test_scale_track_dropped_when_disabled(chain_skeleton, target_chain_skeleton):
    clip = AnimationClip("Grow", [ScaleTrack("Spine", [0.0], [[1.5, 1.5, 1.5]])])

    result = retarget_clip(_precompute(chain_skeleton, target_chain_skeleton, preserve_scale=False), clip)

    assert result.clip.tracks == []
    assert len(result.warnings_of(WarningKind.SCALE_DISABLED)) == 1


def test_non_root_position_track_dropped(chain_skeleton, target_chain_skeleton):
    clip = AnimationClip("Stretch", [PositionTrack("Spine", [0.0], [[0.0, 1.2, 0.0]])])

    result = retarget_clip(_precompute(chain_skeleton, target_chain_skeleton), clip)

    assert result.clip.tracks == []
    assert len(result.warnings_of(WarningKind.NON_ROOT_POSITION)) == 1


def test_root_position_dropped_when_hip_position_disabled(chain_skeleton, target_chain_skeleton, root_motion_clip):
    precomp = _precompute(chain_skeleton, target_chain_skeleton, preserve_hip_position=False)

    result = retarget_clip(precomp, root_motion_clip)

    assert result.clip.tracks == []
    assert len(result.warnings_of(WarningKind.POSITION_DISABLED)) == 1


def test_unmapped_target_bones_hold_rest_rotation(chain_skeleton, spine_clip):
    tail_rest = quat_from_axis_angle([1.0, 0.0, 0.0], 0.6)
    target = make_chain(CHAIN + ["Tail"], UNIT_OFFSETS + [[0.0, 0.0, -1.0]], name="Target",
                        rotations=[[0.0, 0.0, 0.0, 1.0]] * 3 + [tail_rest])

    with_rest = retarget_clip(_precompute(chain_skeleton, target), spine_clip)
    tail = _track(with_rest.clip, "Tail.quaternion")
    assert np.array_equal(tail.times, [0.0, 1.0])
    assert_quats_close(tail.values, [tail_rest, tail_rest])

    without_rest = retarget_clip(_precompute(chain_skeleton, target, use_target_rest=False), spine_clip)
    assert "Tail" not in without_rest.clip.bone_names


def test_output_tracks_ordered_by_target_bone_then_kind(chain_skeleton, target_chain_skeleton):
    clip = AnimationClip("Mixed", [
        RotationTrack("Head", [0.0], [[0.0, 0.0, 0.0, 1.0]]),
        PositionTrack("Root", [0.0], [[0.0, 0.0, 0.0]]),
        RotationTrack("Spine", [0.0], [[0.0, 0.0, 0.0, 1.0]]),
        RotationTrack("Root", [0.0], [[0.0, 0.0, 0.0, 1.0]]),
    ])

    result = retarget_clip(_precompute(chain_skeleton, target_chain_skeleton), clip)

    assert [track.property_path for track in result.clip.tracks] == [
        "Root.quaternion",
        "Root.position",
        "Spine.quaternion",
        "Head.quaternion",
    ]


def test_clip_name_and_duration(chain_skeleton, target_chain_skeleton, spine_clip):
    held = AnimationClip("Held", spine_clip.tracks, duration=2.5)
    precomp = _precompute(chain_skeleton, target_chain_skeleton)

    result = retarget_clip(precomp, held, rename="Held_retargeted")

    assert result.clip.name == "Held_retargeted"
    assert result.clip.duration == pytest.approx(2.5)
    assert retarget_clip(precomp, held).clip.name == "Held"


def test_coordinate_correction_rotates_root_motion(chain_skeleton, target_chain_skeleton, root_motion_clip):
    """Root motion along +X becomes +Z after the -90 degree Y correction"""
    precomp = _precompute(chain_skeleton, target_chain_skeleton, coordinate_correction=True)

    result = retarget_clip(precomp, root_motion_clip)

    assert np.allclose(_track(result.clip, "Root.position").values,
                       [[0.0, 0.0, 0.0], [0.0, 0.0, 1.0]], atol=1e-9)


def test_retarget_pose(chain_skeleton, target_chain_skeleton):
    precomp = _precompute(chain_skeleton, target_chain_skeleton)

    pose = retarget_pose(precomp, {"Spine": SPINE_KEYS[1]})

    assert set(pose) == {"Root", "Spine", "Head"}
    assert_quats_close(pose["Spine"], [SPINE_KEYS[1]])
    assert_quats_close(pose["Head"], [[0.0, 0.0, 0.0, 1.0]])


def test_retarget_clips(chain_skeleton, target_chain_skeleton, spine_clip, root_motion_clip):
    results = retarget_clips(_precompute(chain_skeleton, target_chain_skeleton), [spine_clip, root_motion_clip])
    assert [result.clip.name for result in results] == ["Turn", "Walk"]


def test_root_override(chain_skeleton, target_chain_skeleton):
    precomp = _precompute(chain_skeleton, target_chain_skeleton, target_root="Spine")
    assert precomp.target_root_name == "Spine"
    assert precomp.source_root_name == "Root"

    with pytest.raises(UnknownBoneError):
        _precompute(chain_skeleton, target_chain_skeleton, source_root="Tail")


def test_options_from_dict():
    options = RetargetOptions.from_dict({"embed_world": False, "use_optimal_scale": True})
    assert not options.embed_world
    assert options.use_optimal_scale
    assert options.use_target_rest

    with pytest.raises(InvalidInputError):
        RetargetOptions.from_dict({"retarget_fingers": True})
