"""
KT Dance Asset Decoders

Decode a rhythm game's character assets and pose them per frame.

File Formats:
- .model: Skeleton (bone bases, parents) plus skinned mesh sections
- animation: Per-bone packed-quaternion rotation and translation tracks
- camera: One rotation track and one translation track
- .arc: Bundle of the files above, optionally LZ compressed
- .b2it: Bone index to bone name table
"""

__version__ = "1.0.0"

from .config import Settings, load_settings
from .errors import CyclicHierarchyError, DanceFormatError, OutOfBoundsError, StructuralMismatchError
from .evaluators.pose import Pose, evaluate_pose, rotate_vector
from .formats.anim_format import AnimationSample, CameraSample, DanceAnimation, DanceCamera
from .formats.archive_format import DanceArchive, read_bone_names
from .formats.model_format import DanceModel, Mesh, Skeleton
from .operators import AssetSession

__all__ = [
    "AnimationSample",
    "AssetSession",
    "CameraSample",
    "CyclicHierarchyError",
    "DanceAnimation",
    "DanceArchive",
    "DanceCamera",
    "DanceFormatError",
    "DanceModel",
    "Mesh",
    "OutOfBoundsError",
    "Pose",
    "Settings",
    "Skeleton",
    "StructuralMismatchError",
    "evaluate_pose",
    "load_settings",
    "read_bone_names",
    "rotate_vector",
]
