"""
Animation Controller

Plays a clip on a skeleton and evaluates poses. Stands in for the host
application's animation mixer when previewing or verifying retargeted clips.
"""

from dataclasses import dataclass
from typing import List, Optional

from pyrr import Quaternion

from ..core.transform import Transform, trs_compose
from ..errors import UnknownBoneError
from .animation import AnimationClip, TrackKind
from .skeleton import Skeleton


@dataclass
class Pose:
    """Local and world transforms of every bone at one instant."""

    skeleton: Skeleton
    local: List[Transform]
    world: List[Transform]

    def local_of(self, name: str) -> Transform:
        return self.local[self.skeleton.index_of(name)]

    def world_of(self, name: str) -> Transform:
        return self.world[self.skeleton.index_of(name)]

    def local_rotation(self, name: str) -> Quaternion:
        return self.local_of(name).rotation


class AnimationController:
    """
    Controls animation playback for a skeleton.

    Manages:
    - Current clip and playback time
    - Play/pause/loop states
    - Evaluating the clip into a Pose
    """

    def __init__(self, skeleton: Skeleton, embed_world: bool = False):
        """
        Initialize animation controller.

        Args:
            skeleton: Skeleton to animate
            embed_world: Start world transforms from the skeleton's container
        """
        self.skeleton = skeleton
        self.embed_world = embed_world
        self.current_animation: Optional[AnimationClip] = None
        self.current_time: float = 0.0
        self.current_pose: Optional[Pose] = None
        self.is_playing: bool = False
        self.loop: bool = True
        self.playback_speed: float = 1.0

    def play(self, animation: AnimationClip, loop: bool = True):
        """
        Start playing a clip.

        Args:
            animation: Clip to play
            loop: Whether to loop the clip
        """
        self.current_animation = animation
        self.current_time = 0.0
        self.is_playing = True
        self.loop = loop
        self.current_pose = self.evaluate(0.0)

    def pause(self):
        """Pause animation playback."""
        self.is_playing = False

    def resume(self):
        """Resume animation playback."""
        self.is_playing = True

    def stop(self):
        """Stop playback and return to bind pose."""
        self.is_playing = False
        self.current_time = 0.0
        self.current_pose = self.rest_pose()

    def update(self, delta_time: float):
        """
        Update animation playback.

        Args:
            delta_time: Time elapsed since last update (seconds)
        """
        if not self.is_playing or not self.current_animation:
            return

        duration = self.current_animation.duration
        self.current_time += delta_time * self.playback_speed

        # Handle looping
        if duration <= 0.0:
            self.current_time = 0.0
        elif self.current_time >= duration:
            if self.loop:
                self.current_time = self.current_time % duration
            else:
                self.current_time = duration
                self.is_playing = False

        self.current_pose = self.evaluate(self.current_time)

    def rest_pose(self) -> Pose:
        return self._build_pose([bone.local_rest.copy() for bone in self.skeleton.bones])

    def evaluate(self, time: float, clip: Optional[AnimationClip] = None) -> Pose:
        """
        Sample a clip into a pose.

        Bones without a track keep their local rest transform; tracks for
        bones the skeleton does not have are ignored.

        Args:
            time: Time in seconds
            clip: Clip to sample, defaults to the current animation

        Returns:
            Pose with local and world transforms
        """
        clip = clip if clip is not None else self.current_animation
        local = [bone.local_rest.copy() for bone in self.skeleton.bones]
        if clip is None:
            return self._build_pose(local)

        for (bone_name, kind), value in clip.sample_all(time).items():
            if value is None:
                continue
            try:
                index = self.skeleton.index_of(bone_name)
            except UnknownBoneError:
                continue

            if kind == TrackKind.ROTATION:
                local[index].rotation = Quaternion(value)
            elif kind == TrackKind.POSITION:
                local[index].translation = value
            elif kind == TrackKind.SCALE:
                local[index].scale = value

        return self._build_pose(local)

    def _build_pose(self, local: List[Transform]) -> Pose:
        container = self.skeleton.embedded_world if self.embed_world and self.skeleton.embedded_world else None
        world: List[Transform] = []
        for bone, local_transform in zip(self.skeleton.bones, local):
            if bone.parent_index >= 0:
                world.append(trs_compose(world[bone.parent_index], local_transform))
            elif container is not None:
                world.append(trs_compose(container, local_transform))
            else:
                world.append(local_transform.copy())
        return Pose(self.skeleton, local, world)

    def __repr__(self):
        anim_name = self.current_animation.name if self.current_animation else "None"
        return f"AnimationController(animation='{anim_name}', time={self.current_time:.2f}s, playing={self.is_playing})"
