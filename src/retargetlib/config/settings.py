"""
Retargeting Configuration Settings

All configuration constants for the retargeting engine.
Modify these values to change engine behavior.
"""

import json
import logging
import math
from pathlib import Path

logger = logging.getLogger(__name__)

# ============================================================================
# Package Paths
# ============================================================================

CONFIG_DIR = Path(__file__).parent
BONE_SYNONYMS_PATH = CONFIG_DIR / "bone_synonyms.json"

# ============================================================================
# Numeric Contract
# ============================================================================

# Quaternions are renormalized when |q| drifts more than this from 1
QUAT_RENORMALIZE_TOLERANCE = 1e-5

# Keyframe quaternion norms outside the warn range are normalized with a
# warning, outside the fail range the clip is rejected
QUAT_NORM_WARN_RANGE = (0.9, 1.1)
QUAT_NORM_FAIL_RANGE = (0.5, 2.0)

DEGENERATE_EPSILON = 1e-8     # Below this a length counts as zero
BIND_POSE_TOLERANCE = 1e-5    # "Identical bind pose" comparison tolerance
SCALE_MATCH_TOLERANCE = 0.01  # Relative tolerance for scale track passthrough
MIN_BONE_LENGTH = 1e-3        # Shorter bones are ignored by proportion ratios

# ============================================================================
# Canonical Space
# ============================================================================
#
# Right-handed, Y-up, Z-forward, 1 unit = 1 meter.
# ============================================================================

CANONICAL_UP_AXIS = "Y"
CANONICAL_FORWARD_AXIS = "Z"
CANONICAL_HANDEDNESS = "right"
CANONICAL_UNIT_SCALE = 1.0

# Unit inference from the largest bounding box dimension
CENTIMETER_THRESHOLD = 100.0  # Larger than this: centimeters (x0.01)
MILLIMETER_THRESHOLD = 0.1    # Smaller than this: millimeters (x0.001)
CENTIMETER_SCALE = 0.01
MILLIMETER_SCALE = 0.001

# Marker stored in the scene root's userdata after conversion
CANONICAL_MARKER_KEY = "coordinateSystem"
CANONICAL_MARKER_VALUE = "canonical"

# Forward axis assumed when only the up axis is known
DEFAULT_FORWARD_FOR_UP = {
    "Y": "Z",
    "-Y": "Z",
    "Z": "-Y",  # Blender style: Z-up, character faces -Y
    "-Z": "Y",
    "X": "Z",
    "-X": "Z",
}

# ============================================================================
# Skeleton
# ============================================================================

FUNCTIONAL_ROOT_PATTERN = r"^.*(hips?|pelvis|root).*$"

# Name fragments used by skeleton analysis
LEFT_SIDE_HINTS = ("left", "_l")
RIGHT_SIDE_HINTS = ("right", "_r")
LIMB_PATTERNS = ("arm", "leg", "thigh", "shoulder")

# Pose detection thresholds (degrees from horizontal / vertical component)
T_POSE_MAX_ANGLE = 25.0
T_POSE_MAX_VERTICAL = 0.3
A_POSE_MAX_ANGLE = 75.0

# ============================================================================
# Bone Mapping
# ============================================================================

# Prefixes stripped before name comparison (lowercase)
NAMESPACE_PREFIXES = (
    "mixamorig:",
    "mixamorig_",
    "mixamorig",
    "armature|",
    "bip01_",
    "bip001_",
    "bip01 ",
    "bip001 ",
    "def_",
    "def-",
    "rig_",
    "joint_",
    "bone_",
    "valvebiped_",
)

LEVENSHTEIN_MAX_DISTANCE = 2

# Fraction of source bones that must be mapped for a "compatible" report
COMPATIBILITY_THRESHOLD = 0.5

MAPPING_FORMAT_VERSION = 1

# ============================================================================
# Retargeting Defaults
# ============================================================================

DEFAULT_USE_TARGET_REST = True
DEFAULT_PRESERVE_HIP_POSITION = True
DEFAULT_PRESERVE_SCALE = True
DEFAULT_EMBED_WORLD = True
DEFAULT_USE_OPTIMAL_SCALE = False

# Unreal imports face +X; rotate root data -90 degrees about Y
COORDINATE_CORRECTION_ANGLE = -math.pi / 2


_FALLBACK_BONE_SYNONYMS = {
    "hips": ("hips", "hip", "pelvis"),
    "upperarm": ("upperarm", "arm"),
    "forearm": ("forearm", "lowerarm"),
    "thigh": ("thigh", "upperleg", "upleg"),
    "shin": ("shin", "lowerleg", "calf", "leg"),
}


def _load_bone_synonyms():
    """
    Load the semantic bone synonym table from JSON configuration file.

    Returns:
        Dictionary mapping group id to a tuple of lowercase synonyms
    """
    if not BONE_SYNONYMS_PATH.exists():
        logger.warning("Bone synonym table not found at %s, using fallback", BONE_SYNONYMS_PATH)
        return dict(_FALLBACK_BONE_SYNONYMS)

    try:
        with open(BONE_SYNONYMS_PATH, 'r', encoding="utf-8") as f:
            config = json.load(f)

        synonyms = {}
        for group in config.get("groups", []):
            group_id = str(group["id"]).lower()
            synonyms[group_id] = tuple(str(name).lower() for name in group.get("names", []))

        return synonyms
    except (OSError, ValueError, KeyError, TypeError) as e:
        logger.warning("Error loading bone synonyms: %s", e)
        return dict(_FALLBACK_BONE_SYNONYMS)

# Load bone synonyms from JSON configuration
BONE_SYNONYMS = _load_bone_synonyms()
