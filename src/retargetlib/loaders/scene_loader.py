"""Scene loader for dictionary-described models."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..animation.animation import AnimationClip
from ..config.settings import CANONICAL_MARKER_KEY
from ..core.coordinate_system import ConversionReport, canonicalize
from ..core.scene import NodeKind, SceneNode
from ..core.transform import Transform
from ..errors import InvalidInputError

logger = logging.getLogger(__name__)


def _vector(data: Dict[str, Any], key: str, default: List[float], size: int, owner: str) -> List[float]:
    value = data.get(key, default)
    try:
        values = [float(v) for v in value]
    except (TypeError, ValueError) as e:
        raise InvalidInputError(f"Node '{owner}' has a malformed '{key}'") from e
    if len(values) != size:
        raise InvalidInputError(f"Node '{owner}' '{key}' needs {size} components, got {len(values)}")
    return values


@dataclass(slots=True)
class SceneNodeDefinition:
    """One node of a scene description."""

    name: str
    kind: NodeKind = NodeKind.GROUP
    translation: List[float] = field(default_factory=lambda: [0.0, 0.0, 0.0])
    rotation: List[float] = field(default_factory=lambda: [0.0, 0.0, 0.0, 1.0])
    scale: List[float] = field(default_factory=lambda: [1.0, 1.0, 1.0])
    points: Optional[List[List[float]]] = None
    userdata: Dict[str, Any] = field(default_factory=dict)
    children: List["SceneNodeDefinition"] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SceneNodeDefinition":
        if not isinstance(data, dict) or "name" not in data:
            raise InvalidInputError("Scene node definition requires a 'name'")

        name = str(data["name"])
        try:
            kind = NodeKind(str(data.get("type", NodeKind.GROUP.value)).lower())
        except ValueError as e:
            raise InvalidInputError(f"Node '{name}' has unsupported type '{data.get('type')}'") from e

        return cls(
            name=name,
            kind=kind,
            translation=_vector(data, "translation", [0.0, 0.0, 0.0], 3, name),
            rotation=_vector(data, "rotation", [0.0, 0.0, 0.0, 1.0], 4, name),
            scale=_vector(data, "scale", [1.0, 1.0, 1.0], 3, name),
            points=data.get("points"),
            userdata=dict(data.get("userdata", {})),
            children=[cls.from_dict(child) for child in data.get("children", [])],
        )


@dataclass(slots=True)
class SceneDefinition:
    """Whole scene description: node tree, clips and metadata."""

    name: str
    root: SceneNodeDefinition
    animations: List[Dict[str, Any]] = field(default_factory=list)
    coordinate_system: Optional[Dict[str, Any]] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "SceneDefinition":
        """
        Parse a scene payload.

        Either ``"root"`` (a single node) or ``"nodes"`` (wrapped in a group
        named after the scene) describes the hierarchy.
        """
        if not isinstance(payload, dict):
            raise InvalidInputError("Scene payload must be a dictionary")

        name = str(payload.get("name", "Scene"))
        if "root" in payload:
            root = SceneNodeDefinition.from_dict(payload["root"])
        else:
            root = SceneNodeDefinition(
                name=name,
                children=[SceneNodeDefinition.from_dict(node) for node in payload.get("nodes", [])],
            )

        coordinate_system = payload.get("coordinateSystem", payload.get("coordinate_system"))
        if coordinate_system is not None and not isinstance(coordinate_system, (dict, str)):
            raise InvalidInputError("Scene 'coordinateSystem' must be a dictionary or a string")

        return cls(
            name=name,
            root=root,
            animations=list(payload.get("animations", [])),
            coordinate_system=coordinate_system,
            metadata=dict(payload.get("metadata", {})),
        )


@dataclass
class SceneLoadResult:
    """Result returned from :class:`SceneLoader`."""

    root: SceneNode
    clips: List[AnimationClip]
    conversion: Optional[ConversionReport] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class SceneLoader:
    """Build scene graphs and clips from dictionary descriptors."""

    def __init__(self, canonicalize_on_load: bool = False):
        self.canonicalize_on_load = canonicalize_on_load

    def load_dict(self, payload: Dict[str, Any]) -> SceneLoadResult:
        """Instantiate a scene payload, optionally bringing it into canonical space."""
        definition = SceneDefinition.from_dict(payload)
        root = self._instantiate_node(definition.root)
        if definition.coordinate_system is not None:
            root.userdata[CANONICAL_MARKER_KEY] = definition.coordinate_system

        clips = [AnimationClip.from_dict(entry) for entry in definition.animations]

        conversion = None
        if self.canonicalize_on_load:
            conversion = canonicalize(root)

        logger.debug("Loaded scene '%s' with %d clip(s)", definition.name, len(clips))
        return SceneLoadResult(root=root, clips=clips, conversion=conversion, metadata=definition.metadata)

    def _instantiate_node(self, node: SceneNodeDefinition) -> SceneNode:
        instance = SceneNode(
            node.name,
            kind=node.kind,
            transform=Transform.from_values(node.translation, node.rotation, node.scale),
            points=node.points,
            userdata=node.userdata,
        )
        for child in node.children:
            instance.add_child(self._instantiate_node(child))
        return instance
