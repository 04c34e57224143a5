"""Shared fixtures for retargetlib tests"""

import numpy as np
import pytest

from retargetlib.animation.animation import AnimationClip, PositionTrack, RotationTrack
from retargetlib.animation.skeleton import Skeleton
from retargetlib.core.transform import Transform

HALF_SQRT2 = 0.7071


def make_chain(names, offsets, name="Skeleton", rotations=None, embedded_world=None):
    """Build a single-chain skeleton from local offsets (and optional local rotations)."""
    records = []
    parent = None
    for i, (bone_name, offset) in enumerate(zip(names, offsets)):
        rotation = rotations[i] if rotations is not None else [0.0, 0.0, 0.0, 1.0]
        records.append((bone_name, parent, Transform(translation=offset, rotation=rotation)))
        parent = bone_name
    return Skeleton.from_bones(records, name=name, embedded_world=embedded_world)


def assert_quats_close(actual, expected, atol=1e-5):
    """Compare quaternion arrays up to double cover (q and -q are the same rotation)."""
    actual = np.asarray(actual, dtype=np.float64).reshape(-1, 4)
    expected = np.asarray(expected, dtype=np.float64).reshape(-1, 4)
    assert actual.shape == expected.shape
    for a, e in zip(actual, expected):
        assert np.allclose(a, e, atol=atol) or np.allclose(a, -e, atol=atol), f"{a} != {e}"


@pytest.fixture
def chain_skeleton():
    """Root(0,0,0) -> Spine(0,1,0) -> Head(0,2,0), identity rest rotations."""
    return make_chain(
        ["Root", "Spine", "Head"],
        [[0.0, 0.0, 0.0], [0.0, 1.0, 0.0], [0.0, 1.0, 0.0]],
        name="Source",
    )


@pytest.fixture
def target_chain_skeleton():
    return make_chain(
        ["Root", "Spine", "Head"],
        [[0.0, 0.0, 0.0], [0.0, 1.0, 0.0], [0.0, 1.0, 0.0]],
        name="Target",
    )


@pytest.fixture
def double_chain_skeleton():
    """Same topology as chain_skeleton with every bone twice as long."""
    return make_chain(
        ["Root", "Spine", "Head"],
        [[0.0, 0.0, 0.0], [0.0, 2.0, 0.0], [0.0, 2.0, 0.0]],
        name="Tall",
    )


@pytest.fixture
def spine_clip():
    """Single rotation track on Spine: identity to 90 degrees about Y."""
    track = RotationTrack(
        "Spine",
        [0.0, 1.0],
        [[0.0, 0.0, 0.0, 1.0], [0.0, HALF_SQRT2, 0.0, HALF_SQRT2]],
    )
    return AnimationClip("Turn", [track])


@pytest.fixture
def root_motion_clip():
    track = PositionTrack("Root", [0.0, 1.0], [[0.0, 0.0, 0.0], [1.0, 0.0, 0.0]])
    return AnimationClip("Walk", [track])
