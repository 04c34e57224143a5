"""
Animation

Keyframe tracks and animation clips.

A clip is a value: a name, a duration and a list of tracks. Each track
animates one property of one bone and is one of three explicit kinds
(rotation, position, scale); the kind is parsed once from the loader's
property path, never at sample time.
"""

import re
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np
from pyrr import Quaternion, Vector3

from ..core.transform import quat_slerp
from ..errors import InvalidInputError


class InterpolationType(Enum):
    """Animation interpolation types."""
    LINEAR = "LINEAR"
    STEP = "STEP"


class TrackKind(Enum):
    """Animated bone property. Ordered rotation < position < scale."""
    ROTATION = "rotation"
    POSITION = "position"
    SCALE = "scale"

    @property
    def order(self) -> int:
        return _KIND_ORDER[self]


_KIND_ORDER = {TrackKind.ROTATION: 0, TrackKind.POSITION: 1, TrackKind.SCALE: 2}

# Property path suffixes accepted from loaders
PROPERTY_SUFFIXES = {
    "quaternion": TrackKind.ROTATION,
    "rotation": TrackKind.ROTATION,
    "position": TrackKind.POSITION,
    "translation": TrackKind.POSITION,
    "scale": TrackKind.SCALE,
}

TRACK_PROPERTY = {
    TrackKind.ROTATION: "quaternion",
    TrackKind.POSITION: "position",
    TrackKind.SCALE: "scale",
}

# three.js style ".bones[Name]" bone references
_BONES_REFERENCE = re.compile(r"^\.?bones\[(.+)\]$")


def parse_track_name(name: str) -> Tuple[str, TrackKind]:
    """
    Split a property path like ``"Hips.quaternion"`` into bone name and kind.

    Args:
        name: Property path from a loader

    Returns:
        (bone_name, TrackKind)

    Raises:
        InvalidInputError: If the path has no bone or an unknown property
    """
    bone_name, sep, prop = str(name).rpartition(".")
    if not sep or not bone_name:
        raise InvalidInputError(f"Track name '{name}' has no property suffix")

    kind = PROPERTY_SUFFIXES.get(prop.lower())
    if kind is None:
        raise InvalidInputError(f"Track '{name}' animates unsupported property '{prop}'")

    match = _BONES_REFERENCE.match(bone_name)
    if match:
        bone_name = match.group(1)
    return bone_name, kind


class Track:
    """
    Keyframes for one property of one bone.

    Times are stored as a (N,) float64 array, values as (N, value_size).
    """

    kind: TrackKind = None
    value_size: int = 3

    def __init__(
        self,
        bone_name: str,
        times,
        values,
        interpolation: InterpolationType = InterpolationType.LINEAR
    ):
        """
        Initialize a track.

        Args:
            bone_name: Name of the animated bone
            times: Keyframe times in seconds, nondecreasing
            values: Keyframe values, flat or (N, value_size)
            interpolation: Interpolation method

        Raises:
            InvalidInputError: If sizes mismatch or data is not finite
        """
        self.bone_name = bone_name
        self.interpolation = interpolation

        times = np.array(times, dtype=np.float64).reshape(-1)
        values = np.array(values, dtype=np.float64)
        if values.size != times.size * self.value_size:
            raise InvalidInputError(
                f"Track '{bone_name}.{TRACK_PROPERTY[self.kind]}' has {times.size} times "
                f"but {values.size} values (expected {times.size * self.value_size})"
            )
        values = values.reshape(times.size, self.value_size)

        if not np.all(np.isfinite(times)):
            raise InvalidInputError(f"Track '{self.property_path}' has non-finite times")
        if not np.all(np.isfinite(values)):
            raise InvalidInputError(f"Track '{self.property_path}' has non-finite values")
        if times.size > 1 and np.any(np.diff(times) < 0.0):
            raise InvalidInputError(f"Track '{self.property_path}' times are not monotonically nondecreasing")

        self.times = times
        self.values = values

    @property
    def property_path(self) -> str:
        return f"{self.bone_name}.{TRACK_PROPERTY[self.kind]}"

    @property
    def start_time(self) -> float:
        return float(self.times[0]) if self.times.size else 0.0

    @property
    def end_time(self) -> float:
        return float(self.times[-1]) if self.times.size else 0.0

    def __len__(self):
        return int(self.times.size)

    def copy(self, bone_name: Optional[str] = None, values=None) -> 'Track':
        """Clone this track, optionally renaming it or replacing its values."""
        return type(self)(
            bone_name if bone_name is not None else self.bone_name,
            self.times.copy(),
            self.values.copy() if values is None else values,
            self.interpolation,
        )

    def sample(self, time: float):
        """
        Sample the track at a given time.

        Args:
            time: Time in seconds

        Returns:
            Interpolated value at this time, or None for an empty track
        """
        if self.times.size == 0:
            return None

        # Clamp time to track range
        if time <= self.times[0]:
            return self._wrap(self.values[0])
        if time >= self.times[-1]:
            return self._wrap(self.values[-1])

        i = int(np.searchsorted(self.times, time, side="right")) - 1
        t0 = self.times[i]
        t1 = self.times[i + 1]

        if self.interpolation == InterpolationType.STEP:
            return self._wrap(self.values[i])

        t = (time - t0) / (t1 - t0) if t1 > t0 else 0.0
        return self._interpolate(self.values[i], self.values[i + 1], t)

    def _wrap(self, value):
        return Vector3(value.copy())

    def _interpolate(self, v0, v1, t: float):
        """Linear interpolation between two keyframe values."""
        return Vector3(v0 * (1.0 - t) + v1 * t)

    def __eq__(self, other):
        if not isinstance(other, Track):
            return NotImplemented
        return (
            type(self) is type(other)
            and self.bone_name == other.bone_name
            and self.interpolation == other.interpolation
            and np.array_equal(self.times, other.times)
            and np.array_equal(self.values, other.values)
        )

    __hash__ = None

    def __repr__(self):
        return f"{type(self).__name__}(bone='{self.bone_name}', keyframes={len(self)})"


class RotationTrack(Track):
    """Quaternion keyframes (x, y, z, w), interpolated with slerp."""

    kind = TrackKind.ROTATION
    value_size = 4

    def _wrap(self, value):
        return Quaternion(value.copy())

    def _interpolate(self, v0, v1, t: float):
        return quat_slerp(v0, v1, t)


class PositionTrack(Track):
    """Local translation keyframes."""

    kind = TrackKind.POSITION


class ScaleTrack(Track):
    """Local scale keyframes."""

    kind = TrackKind.SCALE


TRACK_TYPES = {
    TrackKind.ROTATION: RotationTrack,
    TrackKind.POSITION: PositionTrack,
    TrackKind.SCALE: ScaleTrack,
}


def make_track(
    kind: TrackKind,
    bone_name: str,
    times,
    values,
    interpolation: InterpolationType = InterpolationType.LINEAR
) -> Track:
    """Build the track subclass for a kind."""
    return TRACK_TYPES[kind](bone_name, times, values, interpolation)


def track_from_property_path(path: str, times, values,
                             interpolation: InterpolationType = InterpolationType.LINEAR) -> Track:
    """Build a track from a loader property path such as ``"Hips.position"``."""
    bone_name, kind = parse_track_name(path)
    return make_track(kind, bone_name, times, values, interpolation)


class AnimationClip:
    """
    Named, finite-duration collection of tracks.

    Clips are values: retargeting and copying always produce new clips.
    """

    def __init__(self, name: str, tracks: Optional[Iterable[Track]] = None, duration: Optional[float] = None):
        """
        Initialize animation clip.

        Args:
            name: Clip name
            tracks: Initial tracks
            duration: Explicit duration; defaults to the latest keyframe time
        """
        self.name = name
        self.tracks: List[Track] = []
        self.duration: float = 0.0

        if duration is not None:
            duration = float(duration)
            if not np.isfinite(duration) or duration < 0.0:
                raise InvalidInputError(f"Clip '{name}' has invalid duration {duration}")
            self.duration = duration

        for track in tracks or ():
            self.add_track(track)

    def add_track(self, track: Track):
        """Add a track, extending the duration to cover it."""
        self.tracks.append(track)
        self.duration = max(self.duration, track.end_time)

    def tracks_for(self, bone_name: str) -> List[Track]:
        return [track for track in self.tracks if track.bone_name == bone_name]

    @property
    def bone_names(self) -> List[str]:
        names = []
        for track in self.tracks:
            if track.bone_name not in names:
                names.append(track.bone_name)
        return names

    def copy(self, name: Optional[str] = None) -> 'AnimationClip':
        return AnimationClip(
            name if name is not None else self.name,
            [track.copy() for track in self.tracks],
            self.duration,
        )

    def sample_all(self, time: float) -> Dict[Tuple[str, TrackKind], object]:
        """
        Sample all tracks at a given time.

        Args:
            time: Time in seconds

        Returns:
            Dictionary mapping (bone_name, TrackKind) -> value
        """
        results = {}
        for track in self.tracks:
            results[(track.bone_name, track.kind)] = track.sample(time)
        return results

    @classmethod
    def from_dict(cls, data: dict) -> 'AnimationClip':
        """
        Build a clip from a loader dictionary.

        Expected layout::

            {"name": "Walk", "duration": 1.0,
             "tracks": [{"name": "Hips.quaternion", "times": [...], "values": [...],
                         "interpolation": "LINEAR"}]}
        """
        if "name" not in data:
            raise InvalidInputError("Clip definition is missing 'name'")

        tracks = []
        for track_data in data.get("tracks", []):
            try:
                path = track_data["name"]
                times = track_data["times"]
                values = track_data["values"]
            except KeyError as e:
                raise InvalidInputError(f"Track in clip '{data['name']}' is missing {e}") from e
            try:
                interpolation = InterpolationType(str(track_data.get("interpolation", "LINEAR")).upper())
            except ValueError as e:
                raise InvalidInputError(f"Track '{path}' has unknown interpolation") from e
            tracks.append(track_from_property_path(path, times, values, interpolation))

        return cls(data["name"], tracks, data.get("duration"))

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "duration": self.duration,
            "tracks": [
                {
                    "name": track.property_path,
                    "times": track.times.tolist(),
                    "values": track.values.reshape(-1).tolist(),
                    "interpolation": track.interpolation.value,
                }
                for track in self.tracks
            ],
        }

    def __eq__(self, other):
        if not isinstance(other, AnimationClip):
            return NotImplemented
        return self.name == other.name and self.duration == other.duration and self.tracks == other.tracks

    __hash__ = None

    def __repr__(self):
        return f"AnimationClip(name='{self.name}', duration={self.duration:.2f}s, tracks={len(self.tracks)})"
