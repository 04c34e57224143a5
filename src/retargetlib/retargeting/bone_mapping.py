"""
Bone Mapping

Injective source-to-target bone name mapping, heuristic auto-mapping and
compatibility reporting.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

from ..animation.skeleton import Skeleton
from ..config.settings import COMPATIBILITY_THRESHOLD, LEVENSHTEIN_MAX_DISTANCE, MAPPING_FORMAT_VERSION
from ..errors import InvalidInputError, MappingConflictError, UnknownBoneError
from .name_matching import canonical_form, levenshtein_distance, semantic_key, split_side, strip_namespace

logger = logging.getLogger(__name__)


class MappingOrigin(Enum):
    """Who created a mapping entry. Manual entries always win."""
    AUTO = "auto"
    MANUAL = "manual"


@dataclass(frozen=True)
class MappingEntry:
    target: str
    origin: MappingOrigin = MappingOrigin.AUTO


class BoneMapping:
    """
    Ordered, injective partial mapping from source bone names to target bone names.
    """

    def __init__(self):
        self._entries: Dict[str, MappingEntry] = {}
        self._by_target: Dict[str, str] = {}

    def set(self, source: str, target: str, origin: MappingOrigin = MappingOrigin.AUTO):
        """
        Map source to target, replacing any previous target of source.

        Raises:
            MappingConflictError: If another source already maps to target
        """
        holder = self._by_target.get(target)
        if holder is not None and holder != source:
            raise MappingConflictError(
                f"Target bone '{target}' is already mapped from '{holder}', cannot map '{source}'"
            )

        previous = self._entries.get(source)
        if previous is not None:
            del self._by_target[previous.target]
        self._entries[source] = MappingEntry(target, origin)
        self._by_target[target] = source

    def get(self, source: str) -> Optional[str]:
        entry = self._entries.get(source)
        return entry.target if entry is not None else None

    def entry(self, source: str) -> Optional[MappingEntry]:
        return self._entries.get(source)

    def source_for(self, target: str) -> Optional[str]:
        return self._by_target.get(target)

    def remove(self, source: str) -> bool:
        entry = self._entries.pop(source, None)
        if entry is None:
            return False
        del self._by_target[entry.target]
        return True

    def clear(self):
        self._entries.clear()
        self._by_target.clear()

    def copy(self) -> 'BoneMapping':
        clone = BoneMapping()
        for source, entry in self._entries.items():
            clone.set(source, entry.target, entry.origin)
        return clone

    def items(self) -> Iterator[Tuple[str, MappingEntry]]:
        return iter(list(self._entries.items()))

    def sources(self) -> List[str]:
        return list(self._entries)

    def targets(self) -> List[str]:
        return [entry.target for entry in self._entries.values()]

    def manual_sources(self) -> List[str]:
        return [source for source, entry in self._entries.items() if entry.origin == MappingOrigin.MANUAL]

    def as_dict(self) -> Dict[str, str]:
        return {source: entry.target for source, entry in self._entries.items()}

    def __contains__(self, source):
        return source in self._entries

    def __len__(self):
        return len(self._entries)

    def __iter__(self):
        return iter(list(self._entries))

    def __eq__(self, other):
        if not isinstance(other, BoneMapping):
            return NotImplemented
        return self._entries == other._entries

    __hash__ = None

    def serialize(self) -> dict:
        """Portable dictionary form (version 1)."""
        return {
            "version": MAPPING_FORMAT_VERSION,
            "mapping": {
                source: {"target": entry.target, "origin": entry.origin.value}
                for source, entry in self._entries.items()
            },
        }

    @classmethod
    def deserialize(cls, data: Mapping) -> 'BoneMapping':
        """
        Rebuild a mapping from its serialized form.

        Raises:
            InvalidInputError: On an unsupported version or malformed entry
            MappingConflictError: If two sources share a target
        """
        if not isinstance(data, Mapping):
            raise InvalidInputError("Serialized mapping must be a dictionary")
        if data.get("version") != MAPPING_FORMAT_VERSION:
            raise InvalidInputError(f"Unsupported mapping version {data.get('version')!r}")

        entries = data.get("mapping", {})
        if not isinstance(entries, Mapping):
            raise InvalidInputError("Serialized mapping 'mapping' must be a dictionary")

        mapping = cls()
        for source, value in entries.items():
            if isinstance(value, str):
                target, origin = value, MappingOrigin.AUTO.value
            elif isinstance(value, Mapping) and isinstance(value.get("target"), str):
                target, origin = value["target"], value.get("origin", MappingOrigin.AUTO.value)
            else:
                raise InvalidInputError(f"Malformed mapping entry for '{source}'")

            try:
                origin = MappingOrigin(origin)
            except ValueError as e:
                raise InvalidInputError(f"Unknown mapping origin {origin!r} for '{source}'") from e
            mapping.set(str(source), target, origin)

        return mapping

    def __repr__(self):
        return f"BoneMapping(entries={len(self._entries)}, manual={len(self.manual_sources())})"


@dataclass
class MatchRecord:
    source: str
    target: str
    strategy: str


@dataclass
class AutoMapResult:
    """Outcome of auto_map."""

    mapping: BoneMapping
    successes: List[MatchRecord] = field(default_factory=list)
    failures: List[str] = field(default_factory=list)
    confidence: float = 0.0


@dataclass
class CompatibilityReport:
    """How much of the source skeleton a mapping covers on the target."""

    match_percentage: float
    matching: List[str]
    missing: List[str]
    extra: List[str]
    compatible: bool


@dataclass
class MappingInfo:
    mapped: Dict[str, str]
    unmapped_source: List[str]
    unmapped_target: List[str]
    source_rig: str = "custom"
    target_rig: str = "custom"
    confidence: float = 0.0


def detect_rig_type(bone_names: Sequence[str]) -> str:
    """
    Guess the rig family from bone names.

    Returns:
        "mixamo", "ue5", "unity", "humanoid" or "custom"
    """
    if not bone_names:
        return "custom"

    joined = "|".join(name.lower() for name in bone_names)

    if any("mixamorig:" in name for name in bone_names):
        return "mixamo"

    if "pelvis" in joined and "spine_01" in joined and ("clavicle_l" in joined or "clavicle_r" in joined):
        return "ue5"

    if ("hips" in joined and "spine" in joined and "chest" in joined
            and ("leftupperarm" in joined or "left upper arm" in joined)):
        return "unity"

    has_hips = "hips" in joined or "pelvis" in joined
    has_spine = "spine" in joined
    has_head = "head" in joined or "neck" in joined
    has_arms = "arm" in joined or "shoulder" in joined
    has_legs = "leg" in joined or "thigh" in joined
    if has_hips and has_spine and has_head and has_arms and has_legs:
        return "humanoid"

    return "custom"


# Exact-key strategies, tried in order; fuzzy matching runs last
_KEY_STRATEGIES = (
    ("exact", lambda name: name.lower()),
    ("prefix", lambda name: strip_namespace(name).lower()),
    ("canonical", canonical_form),
    ("synonym", semantic_key),
)


def _unique_names(skeleton: Skeleton) -> List[str]:
    return list(skeleton.name_index)


def auto_map(source: Skeleton, target: Skeleton, existing: Optional[BoneMapping] = None) -> AutoMapResult:
    """
    Pair source and target bones by name heuristics.

    Each strategy runs over every still-unmapped source bone before the next
    one is tried: exact, prefix strip, canonical form, synonym table, then
    Levenshtein distance on the canonical form. Manual entries of
    ``existing`` are kept and their targets are never reused. Finally the
    functional roots are paired if both are still free.

    Args:
        source: Source skeleton
        target: Target skeleton
        existing: Mapping whose manual entries must survive

    Returns:
        AutoMapResult with the new mapping, per-bone strategy and failures
    """
    mapping = BoneMapping()
    if existing is not None:
        for source_name, entry in existing.items():
            if entry.origin == MappingOrigin.MANUAL:
                mapping.set(source_name, entry.target, MappingOrigin.MANUAL)

    source_names = _unique_names(source)
    target_names = _unique_names(target)
    used = set(mapping.targets())
    remaining = [name for name in source_names if name not in mapping]
    successes: List[MatchRecord] = []

    def accept(src: str, tgt: str, strategy: str):
        mapping.set(src, tgt, MappingOrigin.AUTO)
        used.add(tgt)
        successes.append(MatchRecord(src, tgt, strategy))

    for strategy, key_fn in _KEY_STRATEGIES:
        index: Dict[object, List[str]] = {}
        for name in target_names:
            key = key_fn(name)
            if key is not None and key != "":
                index.setdefault(key, []).append(name)

        still_remaining = []
        for src in remaining:
            key = key_fn(src)
            candidates = index.get(key, []) if key is not None and key != "" else []
            match = next((tgt for tgt in candidates if tgt not in used), None)
            if match is None:
                still_remaining.append(src)
            else:
                accept(src, match, strategy)
        remaining = still_remaining

    # Fuzzy fallback on canonical forms, same side only
    target_forms = [(name, canonical_form(name), split_side(strip_namespace(name))[0]) for name in target_names]
    still_remaining = []
    for src in remaining:
        src_form = canonical_form(src)
        src_side = split_side(strip_namespace(src))[0]
        best, best_distance = None, LEVENSHTEIN_MAX_DISTANCE + 1
        for tgt, tgt_form, tgt_side in target_forms:
            if tgt in used or tgt_side != src_side:
                continue
            distance = levenshtein_distance(src_form, tgt_form)
            if distance < best_distance:
                best, best_distance = tgt, distance
        if best is None:
            still_remaining.append(src)
        else:
            accept(src, best, "fuzzy")
    remaining = still_remaining

    # Pair functional roots when the heuristics left them free
    if len(source) and len(target):
        src_root = source.root_bone.name
        tgt_root = target.root_bone.name
        if src_root not in mapping and tgt_root not in used:
            accept(src_root, tgt_root, "root")
            remaining = [name for name in remaining if name != src_root]

    confidence = (len(source_names) - len(remaining)) / len(source_names) if source_names else 0.0

    logger.debug(
        "Auto-mapped %d/%d bones from '%s' to '%s'",
        len(source_names) - len(remaining), len(source_names), source.name, target.name,
    )

    return AutoMapResult(mapping=mapping, successes=successes, failures=remaining, confidence=confidence)


def compatibility(source: Skeleton, target: Skeleton, mapping: BoneMapping) -> CompatibilityReport:
    """
    Report mapping coverage as ``|matched| / |source bones|``.

    A source bone counts as matched when it is mapped to a bone the target
    actually has. The engine never refuses to retarget on a low score.
    """
    source_names = _unique_names(source)
    matching = [name for name in source_names if target.has_bone(mapping.get(name) or "")]
    matched_set = set(matching)
    missing = [name for name in source_names if name not in matched_set]
    targeted = {mapping.get(name) for name in matching}
    extra = [name for name in _unique_names(target) if name not in targeted]

    ratio = len(matching) / len(source_names) if source_names else 0.0
    return CompatibilityReport(
        match_percentage=round(ratio * 100.0, 2),
        matching=matching,
        missing=missing,
        extra=extra,
        compatible=ratio >= COMPATIBILITY_THRESHOLD,
    )


class BoneMapper:
    """
    Owns the bone mapping of one retargeting job.

    Manages:
    - Heuristic auto-mapping between the two skeletons
    - Manual overrides (which auto-mapping never replaces)
    - Coverage and compatibility reports
    """

    def __init__(self, source: Optional[Skeleton] = None, target: Optional[Skeleton] = None):
        """
        Initialize bone mapper.

        Args:
            source: Source skeleton
            target: Target skeleton
        """
        self.source = source
        self.target = target
        self.mapping = BoneMapping()
        self.confidence: float = 0.0

    def set_skeletons(self, source: Optional[Skeleton], target: Optional[Skeleton]):
        self.source = source
        self.target = target

    def _require_skeletons(self):
        if self.source is None or self.target is None:
            raise InvalidInputError("Both source and target skeletons are required")

    def auto_map(self) -> AutoMapResult:
        """Recompute auto entries, keeping manual ones."""
        self._require_skeletons()
        result = auto_map(self.source, self.target, self.mapping)
        self.mapping = result.mapping
        self.confidence = result.confidence
        return result

    def add_manual(self, source_name: str, target_name: str) -> bool:
        """
        Map a source bone to a target bone, overriding auto entries.

        Returns:
            True if the mapping changed, False if the entry already existed

        Raises:
            UnknownBoneError: If either name is missing from its skeleton
            MappingConflictError: If the target is manually mapped from another source
        """
        if self.source is not None and not self.source.has_bone(source_name):
            raise UnknownBoneError(source_name, self.source.name)
        if self.target is not None and not self.target.has_bone(target_name):
            raise UnknownBoneError(target_name, self.target.name)

        if self.mapping.entry(source_name) == MappingEntry(target_name, MappingOrigin.MANUAL):
            return False

        holder = self.mapping.source_for(target_name)
        if holder is not None and holder != source_name:
            if self.mapping.entry(holder).origin == MappingOrigin.MANUAL:
                raise MappingConflictError(
                    f"Target bone '{target_name}' is manually mapped from '{holder}'"
                )
            logger.debug("Manual mapping %s -> %s displaces auto entry from '%s'", source_name, target_name, holder)
            self.mapping.remove(holder)

        self.mapping.set(source_name, target_name, MappingOrigin.MANUAL)
        return True

    def remove(self, source_name: str) -> bool:
        return self.mapping.remove(source_name)

    def clear(self):
        self.mapping.clear()
        self.confidence = 0.0

    def mapping_info(self) -> MappingInfo:
        """Mapped pairs plus the bones left over on each side."""
        mapped = self.mapping.as_dict()
        source_names = _unique_names(self.source) if self.source is not None else []
        target_names = _unique_names(self.target) if self.target is not None else []
        targeted = set(mapped.values())
        return MappingInfo(
            mapped=mapped,
            unmapped_source=[name for name in source_names if name not in mapped],
            unmapped_target=[name for name in target_names if name not in targeted],
            source_rig=detect_rig_type(source_names),
            target_rig=detect_rig_type(target_names),
            confidence=self.confidence,
        )

    def compatibility(self) -> CompatibilityReport:
        self._require_skeletons()
        return compatibility(self.source, self.target, self.mapping)

    def serialize(self) -> dict:
        return self.mapping.serialize()

    def load(self, data: Mapping):
        """Replace the mapping with a deserialized one."""
        self.mapping = BoneMapping.deserialize(data)

    def __repr__(self):
        return f"BoneMapper(mapping={self.mapping!r}, confidence={self.confidence:.2f})"
