"""Tests for scene descriptions, the scene graph and canonicalization on load"""

import numpy as np
import pytest

from retargetlib.animation.skeleton import build_skeleton
from retargetlib.core.scene import NodeKind, SceneNode
from retargetlib.core.transform import Transform
from retargetlib.errors import InvalidInputError
from retargetlib.loaders.scene_loader import SceneDefinition, SceneLoader


def _character_payload():
    return {
        "name": "Character",
        "root": {
            "name": "Character",
            "children": [
                {
                    "name": "Hips",
                    "type": "bone",
                    "translation": [0.0, 0.0, 100.0],
                    "children": [
                        {
                            "name": "Spine",
                            "type": "bone",
                            "translation": [0.0, 0.0, 50.0],
                            "children": [{"name": "Head", "type": "bone", "translation": [0.0, 0.0, 40.0]}],
                        },
                    ],
                },
                {"name": "Body", "type": "mesh", "points": [[-20.0, -10.0, 0.0], [20.0, 10.0, 180.0]]},
            ],
        },
        "coordinateSystem": {"upAxis": "Z", "unitScale": 0.01},
        "animations": [
            {
                "name": "Nod",
                "tracks": [
                    {"name": "Head.quaternion", "times": [0.0, 0.5], "values": [0, 0, 0, 1, 0.2588, 0, 0, 0.9659]},
                ],
            },
        ],
        "metadata": {"source": "unit-test"},
    }


def test_load_dict_builds_scene_and_clips():
    result = SceneLoader().load_dict(_character_payload())

    root = result.root
    assert root.name == "Character"
    assert [node.name for node in root.traverse()] == ["Character", "Hips", "Spine", "Head", "Body"]
    assert root.find("Body").kind == NodeKind.MESH
    assert root.find("Body").points.shape == (2, 3)
    assert root.userdata["coordinateSystem"] == {"upAxis": "Z", "unitScale": 0.01}

    assert [clip.name for clip in result.clips] == ["Nod"]
    assert result.clips[0].duration == pytest.approx(0.5)
    assert result.conversion is None
    assert result.metadata == {"source": "unit-test"}


def test_loaded_scene_yields_skeleton():
    root = SceneLoader().load_dict(_character_payload()).root
    skeleton = build_skeleton(root)

    assert skeleton.bone_names == ["Hips", "Spine", "Head"]
    assert skeleton.name == "Character"


def test_canonicalize_on_load():
    loader = SceneLoader(canonicalize_on_load=True)
    result = loader.load_dict(_character_payload())

    assert result.conversion is not None
    assert result.conversion.applied
    assert result.conversion.scale == pytest.approx(0.01)
    assert result.root.userdata["coordinateSystem"] == "canonical"

    head = result.root.find("Head").world_transform()
    assert np.allclose(np.asarray(head.translation), [0.0, 1.9, 0.0], atol=1e-9)


def test_nodes_list_is_wrapped_in_a_group():
    definition = SceneDefinition.from_dict({
        "name": "Rig",
        "nodes": [{"name": "Hips", "type": "BONE"}, {"name": "Prop"}],
    })

    assert definition.root.name == "Rig"
    assert [child.name for child in definition.root.children] == ["Hips", "Prop"]
    assert definition.root.children[0].kind == NodeKind.BONE
    assert definition.root.children[1].kind == NodeKind.GROUP


@pytest.mark.parametrize("payload", [
    {"root": {"type": "bone"}},
    {"root": {"name": "Hips", "type": "camera"}},
    {"root": {"name": "Hips", "translation": [0.0, 1.0]}},
    {"root": {"name": "Hips", "rotation": ["a", 0.0, 0.0, 1.0]}},
    {"root": {"name": "Hips"}, "coordinateSystem": 5},
    [],
])
def test_malformed_payloads_raise(payload):
    with pytest.raises(InvalidInputError):
        SceneLoader().load_dict(payload)


def test_add_child_reparents():
    first = SceneNode("First")
    second = SceneNode("Second")
    child = first.add_child(SceneNode("Child"))

    second.add_child(child)

    assert child.parent is second
    assert first.children == []
    assert second.children == [child]


def test_world_transform_composes_ancestors():
    root = SceneNode("Root", transform=Transform(translation=[1.0, 0.0, 0.0], scale=[2.0, 2.0, 2.0]))
    child = root.add_child(SceneNode("Child", transform=Transform(translation=[0.0, 1.0, 0.0])))

    world = child.world_transform()

    assert np.allclose(np.asarray(world.translation), [1.0, 2.0, 0.0])
    assert np.allclose(np.asarray(world.scale), [2.0, 2.0, 2.0])


def test_bounding_box():
    root = SceneNode("Root")
    assert root.bounding_box() is None

    root.add_child(SceneNode("Hips", NodeKind.BONE, Transform(translation=[0.0, 1.0, 0.0])))
    root.add_child(SceneNode("Mesh", NodeKind.MESH, points=[[-1.0, 0.0, 0.0], [1.0, 0.5, 0.2]]))

    low, high = root.bounding_box()

    assert np.allclose(low, [-1.0, 0.0, 0.0])
    assert np.allclose(high, [1.0, 1.0, 0.2])
