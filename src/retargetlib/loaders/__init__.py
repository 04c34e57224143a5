"""Loaders that turn host-provided scene descriptions into engine objects."""

from .scene_loader import SceneDefinition, SceneLoader, SceneLoadResult, SceneNodeDefinition

__all__ = [
    "SceneDefinition",
    "SceneLoader",
    "SceneLoadResult",
    "SceneNodeDefinition",
]
