"""
Name Matching

Bone name normalization helpers used by the auto-mapper.
"""

import re
from typing import Optional, Tuple

from ..config.settings import BONE_SYNONYMS, NAMESPACE_PREFIXES

_SEPARATORS = re.compile(r"[_.|\-\s]+")
_TRAILING_NUMBER = re.compile(r"^(.*?)(\d*)$")
_CAMEL_SIDE = re.compile(r"^([LR])[A-Z]")

# Synonym -> group id, built once from the configured table
_SYNONYM_GROUPS = {
    synonym: group_id
    for group_id, synonyms in BONE_SYNONYMS.items()
    for synonym in synonyms
}


def strip_namespace(name: str) -> str:
    """
    Remove namespaces (``ns:``, ``Armature|``) and rig prefixes.

    Case is preserved; prefix comparison is case-insensitive.
    """
    stripped = re.split(r"[:|]", name)[-1]

    changed = True
    while changed:
        changed = False
        lower = stripped.lower()
        for prefix in NAMESPACE_PREFIXES:
            if lower.startswith(prefix) and len(stripped) > len(prefix):
                stripped = stripped[len(prefix):]
                changed = True
                break
    return stripped


def split_side(name: str) -> Tuple[str, str]:
    """
    Split a (namespace-free) bone name into side token and remainder.

    Returns:
        ("l" | "r" | "", lowercase remainder)
    """
    camel = _CAMEL_SIDE.match(name)
    lower = name.lower()

    if "left" in lower:
        return "l", lower.replace("left", "", 1)
    if "right" in lower:
        return "r", lower.replace("right", "", 1)

    tokens = [token for token in _SEPARATORS.split(lower) if token]
    if len(tokens) > 1:
        if tokens[0] in ("l", "r"):
            return tokens[0], "".join(tokens[1:])
        if tokens[-1] in ("l", "r"):
            return tokens[-1], "".join(tokens[:-1])

    if camel:
        return camel.group(1).lower(), lower[1:]

    return "", lower


def canonical_form(name: str) -> str:
    """
    Lowercase, namespace-free, separator-free name with the side token first.

    ``"mixamorig:LeftUpLeg"`` and ``"UpLeg_L"`` both become ``"lupleg"``.
    """
    side, rest = split_side(strip_namespace(name))
    return side + _SEPARATORS.sub("", rest)


def semantic_key(name: str) -> Optional[Tuple[str, str, int]]:
    """
    (side, synonym group, index) for names found in the synonym table.

    ``"LeftUpLeg"`` and ``"thigh_l"`` share the key ``("l", "thigh", 0)``;
    ``"Spine1"`` and ``"spine_01"`` share ``("", "spine", 1)``.

    Shoulder and clavicle names form their own group, apart from
    upperarm/arm, so a rig with both ``LeftShoulder`` and ``LeftArm`` keeps
    them on separate targets.
    """
    side, rest = split_side(strip_namespace(name))
    rest = _SEPARATORS.sub("", rest)
    base, digits = _TRAILING_NUMBER.match(rest).groups()
    group = _SYNONYM_GROUPS.get(base)
    if group is None:
        return None
    return side, group, int(digits) if digits else 0


def levenshtein_distance(s1: str, s2: str) -> int:
    """Calculate Levenshtein distance between two strings for typo detection"""
    if len(s1) < len(s2):
        return levenshtein_distance(s2, s1)
    if len(s2) == 0:
        return len(s1)

    previous_row = range(len(s2) + 1)
    for i, c1 in enumerate(s1):
        current_row = [i + 1]
        for j, c2 in enumerate(s2):
            insertions = previous_row[j + 1] + 1
            deletions = current_row[j] + 1
            substitutions = previous_row[j] + (c1 != c2)
            current_row.append(min(insertions, deletions, substitutions))
        previous_row = current_row

    return previous_row[-1]
