"""
Retarget Job

Per-job state machine tying skeletons, mapping, precomputation and clip
emission together:

    IDLE -> CONFIGURED -> MAPPED -> PRECOMPUTED -> EMITTING

Loading a model drops the mapping and precomputation; editing the mapping or
changing options drops the precomputation. Emitting a clip returns the job to
PRECOMPUTED so more clips can follow; close() returns it to IDLE.
"""

import logging
from enum import Enum
from typing import Iterable, List, Mapping, Optional, Union

from ..animation.animation import AnimationClip
from ..animation.skeleton import BindPoseSnapshot, Skeleton, build_skeleton, capture_bind
from ..animation.skeleton_analyzer import PoseValidation, validate_poses
from ..core.scene import SceneNode
from ..errors import JobStateError
from .bone_mapping import AutoMapResult, BoneMapper, BoneMapping, CompatibilityReport
from .retargeter import Precomputation, RetargetOptions, RetargetResult, RetargetWarning, precompute, retarget_clip

logger = logging.getLogger(__name__)


class JobState(Enum):
    IDLE = "idle"
    CONFIGURED = "configured"
    MAPPED = "mapped"
    PRECOMPUTED = "precomputed"
    EMITTING = "emitting"


_READY_STATES = (JobState.CONFIGURED, JobState.MAPPED, JobState.PRECOMPUTED)


class RetargetJob:
    """
    One source-to-target retargeting job.

    Single-threaded: a job owns its mapper, snapshots and precomputation.
    """

    def __init__(self, options: Optional[RetargetOptions] = None):
        self.options = options if options is not None else RetargetOptions()
        self.state = JobState.IDLE
        self.source: Optional[Skeleton] = None
        self.target: Optional[Skeleton] = None
        self.mapper = BoneMapper()
        self.source_bind: Optional[BindPoseSnapshot] = None
        self.target_bind: Optional[BindPoseSnapshot] = None
        self.precomputation: Optional[Precomputation] = None

    def _require(self, *states: JobState, action: str):
        if self.state not in states:
            allowed = ", ".join(state.value for state in states)
            raise JobStateError(f"Cannot {action} in state '{self.state.value}' (expected {allowed})")

    def _set_state(self, state: JobState):
        if state != self.state:
            logger.debug("Retarget job %s -> %s", self.state.value, state.value)
        self.state = state

    # Models

    def _load(self, model: Union[Skeleton, SceneNode]) -> Skeleton:
        self._require(JobState.IDLE, *_READY_STATES, action="load a model")
        return build_skeleton(model) if isinstance(model, SceneNode) else model

    def load_source(self, model: Union[Skeleton, SceneNode]) -> Skeleton:
        """Load the source model, invalidating mapping and precomputation."""
        self.source = self._load(model)
        self.source_bind = None
        self._models_changed()
        return self.source

    def load_target(self, model: Union[Skeleton, SceneNode]) -> Skeleton:
        """Load the target model, invalidating mapping and precomputation."""
        self.target = self._load(model)
        self.target_bind = None
        self._models_changed()
        return self.target

    def _models_changed(self):
        self.mapper.set_skeletons(self.source, self.target)
        self.mapper.clear()
        self.precomputation = None
        if self.source is not None and self.target is not None:
            self._set_state(JobState.CONFIGURED)
        else:
            self._set_state(JobState.IDLE)

    # Mapping

    def _mapping_changed(self):
        self.precomputation = None
        self._set_state(JobState.MAPPED)

    def auto_map(self) -> AutoMapResult:
        self._require(*_READY_STATES, action="auto-map bones")
        result = self.mapper.auto_map()
        self._mapping_changed()
        return result

    def add_manual(self, source_name: str, target_name: str) -> bool:
        self._require(*_READY_STATES, action="edit the mapping")
        changed = self.mapper.add_manual(source_name, target_name)
        if changed or self.state == JobState.CONFIGURED:
            self._mapping_changed()
        return changed

    def remove_mapping(self, source_name: str) -> bool:
        self._require(*_READY_STATES, action="edit the mapping")
        removed = self.mapper.remove(source_name)
        if removed or self.state == JobState.CONFIGURED:
            self._mapping_changed()
        return removed

    def clear_mapping(self):
        self._require(*_READY_STATES, action="edit the mapping")
        self.mapper.clear()
        self._mapping_changed()

    def set_mapping(self, mapping: Union[BoneMapping, Mapping]):
        """Adopt a mapping object or its serialized dictionary."""
        self._require(*_READY_STATES, action="set the mapping")
        if isinstance(mapping, BoneMapping):
            self.mapper.mapping = mapping.copy()
        else:
            self.mapper.load(mapping)
        self._mapping_changed()

    @property
    def mapping(self) -> BoneMapping:
        return self.mapper.mapping

    def compatibility(self) -> CompatibilityReport:
        self._require(*_READY_STATES, action="check compatibility")
        return self.mapper.compatibility()

    def validate_poses(self) -> PoseValidation:
        self._require(*_READY_STATES, action="validate poses")
        self._capture_binds()
        return validate_poses(self.source_bind, self.target_bind)

    # Options

    def set_options(self, options: RetargetOptions):
        """Change the rest-pose strategy, invalidating any precomputation."""
        self._require(JobState.IDLE, *_READY_STATES, action="change options")
        self.options = options
        if self.state == JobState.PRECOMPUTED:
            self.precomputation = None
            self._set_state(JobState.MAPPED)

    # Precompute and emit

    def _capture_binds(self):
        if self.source_bind is None or self.source_bind.embedded != self._wants_embedded(self.source):
            self.source_bind = capture_bind(self.source, embed_world=self.options.embed_world)
        if self.target_bind is None or self.target_bind.embedded != self._wants_embedded(self.target):
            self.target_bind = capture_bind(self.target, embed_world=self.options.embed_world)

    def _wants_embedded(self, skeleton: Skeleton) -> bool:
        return bool(self.options.embed_world and skeleton.embedded_world is not None)

    def precompute(self) -> Precomputation:
        """
        Capture bind poses and precompute the bone pairs.

        Failures leave the job in its previous state.
        """
        self._require(JobState.MAPPED, JobState.PRECOMPUTED, action="precompute")
        self._capture_binds()
        self.precomputation = precompute(self.source_bind, self.target_bind, self.mapper.mapping, self.options)
        self._set_state(JobState.PRECOMPUTED)
        return self.precomputation

    @property
    def warnings(self) -> List[RetargetWarning]:
        return list(self.precomputation.warnings) if self.precomputation is not None else []

    def retarget(self, clip: AnimationClip, rename: Optional[str] = None) -> RetargetResult:
        """Emit one retargeted clip."""
        self._require(JobState.PRECOMPUTED, action="retarget a clip")
        self._set_state(JobState.EMITTING)
        try:
            return retarget_clip(self.precomputation, clip, rename)
        finally:
            self._set_state(JobState.PRECOMPUTED)

    def retarget_all(self, clips: Iterable[AnimationClip]) -> List[RetargetResult]:
        return [self.retarget(clip) for clip in clips]

    def close(self):
        """Release everything and return to IDLE."""
        self.source = None
        self.target = None
        self.source_bind = None
        self.target_bind = None
        self.precomputation = None
        self.mapper = BoneMapper()
        self._set_state(JobState.IDLE)

    reset = close

    def __repr__(self):
        return f"RetargetJob(state={self.state.value}, pairs={len(self.precomputation.pairs) if self.precomputation else 0})"
