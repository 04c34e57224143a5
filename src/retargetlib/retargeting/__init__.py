"""
Retargeting

Bone mapping, precomputation and clip retargeting.
"""

from .bone_mapping import (
    AutoMapResult,
    BoneMapper,
    BoneMapping,
    CompatibilityReport,
    MappingEntry,
    MappingInfo,
    MappingOrigin,
    MatchRecord,
    auto_map,
    compatibility,
    detect_rig_type,
)
from .retargeter import (
    BonePair,
    Precomputation,
    RetargetOptions,
    RetargetResult,
    RetargetWarning,
    WarningKind,
    compute_proportion_ratio,
    precompute,
    retarget_clip,
    retarget_clips,
    retarget_pose,
)
from .retarget_job import JobState, RetargetJob

__all__ = [
    'AutoMapResult',
    'BoneMapper',
    'BoneMapping',
    'CompatibilityReport',
    'MappingEntry',
    'MappingInfo',
    'MappingOrigin',
    'MatchRecord',
    'auto_map',
    'compatibility',
    'detect_rig_type',
    'BonePair',
    'Precomputation',
    'RetargetOptions',
    'RetargetResult',
    'RetargetWarning',
    'WarningKind',
    'compute_proportion_ratio',
    'precompute',
    'retarget_clip',
    'retarget_clips',
    'retarget_pose',
    'JobState',
    'RetargetJob',
]
