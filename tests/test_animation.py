"""Tests for tracks, clips and the animation controller"""

import math

import numpy as np
import pytest
from pyrr import Quaternion

from conftest import assert_quats_close
from retargetlib.animation.animation import (
    AnimationClip,
    InterpolationType,
    PositionTrack,
    RotationTrack,
    ScaleTrack,
    TrackKind,
    parse_track_name,
    track_from_property_path,
)
from retargetlib.animation.animation_controller import AnimationController
from retargetlib.core.transform import quat_from_axis_angle
from retargetlib.errors import InvalidInputError


def test_parse_track_name():
    assert parse_track_name("Hips.quaternion") == ("Hips", TrackKind.ROTATION)
    assert parse_track_name("mixamorig:Hips.position") == ("mixamorig:Hips", TrackKind.POSITION)
    assert parse_track_name("LeftArm.scale") == ("LeftArm", TrackKind.SCALE)
    assert parse_track_name(".bones[Spine].quaternion") == ("Spine", TrackKind.ROTATION)


def test_parse_track_name_errors():
    with pytest.raises(InvalidInputError):
        parse_track_name("Hips")
    with pytest.raises(InvalidInputError):
        parse_track_name("Hips.morphTargetInfluences")


def test_track_value_count_must_match():
    with pytest.raises(InvalidInputError):
        PositionTrack("Hips", [0.0, 1.0], [0.0, 0.0, 0.0])


def test_track_rejects_non_finite_values():
    with pytest.raises(InvalidInputError):
        RotationTrack("Hips", [0.0], [[0.0, 0.0, np.nan, 1.0]])


def test_track_rejects_decreasing_times():
    with pytest.raises(InvalidInputError):
        ScaleTrack("Hips", [1.0, 0.5], [[1.0, 1.0, 1.0], [1.0, 1.0, 1.0]])


def test_flat_values_are_reshaped():
    track = PositionTrack("Hips", [0.0, 1.0], [0.0, 0.0, 0.0, 1.0, 2.0, 3.0])
    assert track.values.shape == (2, 3)
    assert track.property_path == "Hips.position"


def test_position_track_sampling():
    """Linear tracks interpolate and clamp outside their range"""
    track = PositionTrack("Hips", [0.0, 2.0], [[0.0, 0.0, 0.0], [2.0, 4.0, 0.0]])

    assert np.allclose(np.asarray(track.sample(1.0)), [1.0, 2.0, 0.0])
    assert np.allclose(np.asarray(track.sample(-1.0)), [0.0, 0.0, 0.0])
    assert np.allclose(np.asarray(track.sample(5.0)), [2.0, 4.0, 0.0])


def test_step_track_sampling():
    track = PositionTrack(
        "Hips", [0.0, 1.0], [[0.0, 0.0, 0.0], [1.0, 0.0, 0.0]],
        interpolation=InterpolationType.STEP,
    )
    assert np.allclose(np.asarray(track.sample(0.9)), [0.0, 0.0, 0.0])


def test_rotation_track_slerps(spine_clip):
    track = spine_clip.tracks[0]
    value = track.sample(0.5)

    assert isinstance(value, Quaternion)
    assert_quats_close(value, quat_from_axis_angle([0.0, 1.0, 0.0], math.pi / 4), atol=1e-4)


def test_clip_duration_covers_tracks():
    clip = AnimationClip("Idle")
    clip.add_track(PositionTrack("Hips", [0.0, 1.5], [[0.0, 0.0, 0.0], [0.0, 0.0, 0.0]]))
    assert clip.duration == pytest.approx(1.5)

    explicit = AnimationClip("Held", [PositionTrack("Hips", [0.0], [[0.0, 0.0, 0.0]])], duration=3.0)
    assert explicit.duration == pytest.approx(3.0)


def test_clip_rejects_negative_duration():
    with pytest.raises(InvalidInputError):
        AnimationClip("Bad", duration=-1.0)


def test_clip_from_dict():
    clip = AnimationClip.from_dict({
        "name": "Walk",
        "tracks": [
            {"name": "Hips.position", "times": [0.0, 1.0], "values": [0, 0, 0, 0, 0, 1]},
            {"name": "Spine.quaternion", "times": [0.0], "values": [0, 0, 0, 1], "interpolation": "step"},
        ],
    })

    assert clip.name == "Walk"
    assert clip.duration == pytest.approx(1.0)
    assert clip.bone_names == ["Hips", "Spine"]
    assert isinstance(clip.tracks[1], RotationTrack)
    assert clip.tracks[1].interpolation == InterpolationType.STEP


def test_clip_from_dict_errors():
    with pytest.raises(InvalidInputError):
        AnimationClip.from_dict({"tracks": []})
    with pytest.raises(InvalidInputError):
        AnimationClip.from_dict({"name": "Walk", "tracks": [{"name": "Hips.position", "times": [0.0]}]})
    with pytest.raises(InvalidInputError):
        AnimationClip.from_dict({
            "name": "Walk",
            "tracks": [{"name": "Hips.position", "times": [0.0], "values": [0, 0, 0], "interpolation": "cubic"}],
        })


def test_clip_to_dict_restores_equal_clip(spine_clip):
    restored = AnimationClip.from_dict(spine_clip.to_dict())
    assert restored == spine_clip


def test_clip_copy_is_independent(spine_clip):
    copy = spine_clip.copy(name="Turn copy")
    copy.tracks[0].values[1] = [0.0, 0.0, 0.0, 1.0]

    assert copy.name == "Turn copy"
    assert not np.allclose(spine_clip.tracks[0].values[1], [0.0, 0.0, 0.0, 1.0])


def test_track_from_property_path():
    track = track_from_property_path("Head.scale", [0.0], [[2.0, 2.0, 2.0]])
    assert isinstance(track, ScaleTrack)
    assert track.bone_name == "Head"


def test_controller_evaluate_world_positions(chain_skeleton):
    """Spine turned 90 degrees about Z swings Head to -X"""
    clip = AnimationClip("Lean", [
        RotationTrack("Spine", [0.0], [quat_from_axis_angle([0.0, 0.0, 1.0], math.pi / 2)]),
        PositionTrack("Ghost", [0.0], [[5.0, 5.0, 5.0]]),
    ])
    controller = AnimationController(chain_skeleton)

    pose = controller.evaluate(0.0, clip)

    assert np.allclose(np.asarray(pose.world_of("Spine").translation), [0.0, 1.0, 0.0])
    assert np.allclose(np.asarray(pose.world_of("Head").translation), [-1.0, 1.0, 0.0], atol=1e-9)
    assert np.allclose(np.asarray(pose.local_of("Root").translation), [0.0, 0.0, 0.0])


def test_controller_rest_pose(chain_skeleton):
    pose = AnimationController(chain_skeleton).rest_pose()
    assert np.allclose(np.asarray(pose.world_of("Head").translation), [0.0, 2.0, 0.0])


def test_controller_update_loops(chain_skeleton, root_motion_clip):
    controller = AnimationController(chain_skeleton)
    controller.play(root_motion_clip)

    controller.update(0.25)
    assert controller.current_time == pytest.approx(0.25)
    assert np.allclose(np.asarray(controller.current_pose.local_of("Root").translation), [0.25, 0.0, 0.0])

    controller.update(1.0)
    assert controller.current_time == pytest.approx(0.25)


def test_controller_update_stops_without_loop(chain_skeleton, root_motion_clip):
    controller = AnimationController(chain_skeleton)
    controller.play(root_motion_clip, loop=False)

    controller.update(3.0)

    assert controller.current_time == pytest.approx(1.0)
    assert not controller.is_playing


def test_controller_pause_and_stop(chain_skeleton, root_motion_clip):
    controller = AnimationController(chain_skeleton)
    controller.play(root_motion_clip)
    controller.pause()
    controller.update(0.5)
    assert controller.current_time == 0.0

    controller.resume()
    controller.update(0.5)
    controller.stop()
    assert controller.current_time == 0.0
    assert np.allclose(np.asarray(controller.current_pose.local_of("Root").translation), [0.0, 0.0, 0.0])
