"""
Errors

Exception types raised by the retargeting engine.
"""

from typing import Optional


class RetargetError(Exception):
    """Base class for every error raised by retargetlib."""


class InvalidInputError(RetargetError, ValueError):
    """Raised when skeletons, transforms or clips are malformed."""


class MalformedClipError(InvalidInputError):
    """Raised when a clip's quaternion keyframes are too far from unit length."""


class UnknownBoneError(InvalidInputError, KeyError):
    """Raised when a mapping references a bone name the skeleton does not have."""

    def __init__(self, bone_name: str, skeleton_name: Optional[str] = None):
        self.bone_name = bone_name
        self.skeleton_name = skeleton_name
        where = f" in skeleton '{skeleton_name}'" if skeleton_name else ""
        super().__init__(f"Unknown bone '{bone_name}'{where}")

    def __str__(self):
        # KeyError would otherwise repr() the message
        return self.args[0]


class MappingConflictError(InvalidInputError):
    """Raised when a bone mapping would stop being injective."""


class DegenerateBindError(RetargetError):
    """Raised when a bone's bind pose has zero scale and cannot be inverted."""

    def __init__(self, bone_name: str):
        self.bone_name = bone_name
        super().__init__(f"Degenerate bind pose for bone '{bone_name}'")


class MathError(RetargetError, ArithmeticError):
    """Base class for numeric failures in the math kernel."""


class DegenerateError(MathError):
    """Raised when normalising or inverting a zero-length quantity."""


class JobStateError(RetargetError, RuntimeError):
    """Raised when a retarget job operation is called in the wrong state."""
