"""
Dance Animation (.anm) and Camera Animation Binary Formats

Bone animation files carry one translation and one rotation track per bone,
addressed through a directory of track offsets. Camera files carry exactly
one rotation track followed by one translation track.

Tracks are either dense (one sample per frame) or sparse (frame index list
plus values, forward-filled so every frame has a value).
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Sequence, Tuple, TypeVar

import numpy as np

from ..errors import StructuralMismatchError
from .binary_reader import BinaryReader
from .quat_codec import IDENTITY_QUAT, PACKED_QUAT_SIZE, Quat, decode_quat

logger = logging.getLogger(__name__)

T = TypeVar('T')
Vec3 = Tuple[float, float, float]

ZERO_VEC3 = (0.0, 0.0, 0.0)

# =============================================================================
# Constants
# =============================================================================

# Bone animation file header
# typedef struct {
#     uint32 unknown;          // 0x00
#     uint32 maxFrame;         // 0x04 - last frame index
#     ...                      // 0x08 - 0x1F unknown
#     uint32 boneCount;        // 0x20
#     byte   unknown[8];       // 0x24
#     uint16 boneInfo[boneCount];
#     // "section 2" starts here:
#     byte   unknown2[8];
#     uint32 ofsTracks[2 * (boneCount - 3)];  // relative to section 2
# } anmHeader_t;

ANM_OFS_MAX_FRAME = 0x04
ANM_OFS_BONE_COUNT = 0x20
ANM_HEADER_SKIP = 8
ANM_DIRECTORY_SKIP = 8

# The last three bones of a skeleton never carry tracks in this format
ANM_UNTRACKED_BONES = 3

# Camera animation file: rotation track header is at a fixed offset, the
# translation track follows at the next 16-byte boundary
CAM_OFS_ROTATION_TRACK = 0x38

# trackHeader_t (16 bytes), payload starts at the next 16-byte boundary
# typedef struct {
#     uint16 type;            // 28 = rotation, anything else = translation
#     uint16 interpolation;   // 0 = sparse keys, otherwise dense
#     uint16 count;           // number of samples
#     uint16 bone;            // bone index
#     uint32 zero;
#     uint32 unknown;
# } trackHeader_t;

TRACK_HEADER_FORMAT = '<HHHHII'
TRACK_ALIGNMENT = 16

TRACK_TYPE_ROTATION = 28
TRACK_TYPE_HALF = 30          # translation as 3 half floats
TRACK_TYPE_HALF_OFFSET = 31   # sparse: base vec3f + 3 half floats per sample; dense: f32
INTERPOLATION_SPARSE = 0

TRANSLATION_SNAP_EPSILON = 0.001


# =============================================================================
# Shared helpers
# =============================================================================

def forward_fill(mapping: Dict[int, T], length: int, default: T) -> List[T]:
    """
    Expand sparse (frame -> value) keys into one value per frame.

    Frames without a key hold the previous frame's value; an unkeyed frame 0
    takes the default.
    """
    values: List[T] = []
    for frame in range(length):
        if frame in mapping:
            values.append(mapping[frame])
        elif frame > 0:
            values.append(values[-1])
        else:
            values.append(default)
    return values


def clamp_frame(frame: int, length: int) -> int:
    return min(max(frame, 0), length - 1)


def _snap_vec3(v: Sequence[float]) -> Vec3:
    return tuple(0.0 if abs(c) < TRANSLATION_SNAP_EPSILON else c for c in v)


@dataclass
class TrackHeader:
    """16-byte track header"""
    track_type: int
    interpolation: int
    count: int
    bone: int
    zero: int
    unknown: int
    address: int = 0

    @classmethod
    def read(cls, reader: BinaryReader) -> 'TrackHeader':
        """Read the header and leave the reader at the aligned payload"""
        address = reader.tell()
        track_type, interpolation, count, bone, zero, unknown = reader.unpack(TRACK_HEADER_FORMAT)
        reader.align(TRACK_ALIGNMENT)
        return cls(
            track_type=track_type,
            interpolation=interpolation,
            count=count,
            bone=bone,
            zero=zero,
            unknown=unknown,
            address=address,
        )

    @property
    def is_rotation(self) -> bool:
        return self.track_type == TRACK_TYPE_ROTATION

    @property
    def is_sparse(self) -> bool:
        return self.interpolation == INTERPOLATION_SPARSE


def _read_frame_indices(reader: BinaryReader, count: int) -> List[int]:
    """Read sparse key frame numbers and align to the value block"""
    index = list(reader.unpack(f'<{count}H')) if count else []
    reader.align(TRACK_ALIGNMENT)
    return index


def _read_translations(reader: BinaryReader, track_type: int, count: int, sparse: bool) -> List[Vec3]:
    """
    Decode translation samples according to the track type.

    Type 30 is always three half floats. Type 31 is a base vec3f plus half
    floats only in sparse tracks; dense type 31 samples are plain f32.
    """
    offset_halves = sparse and track_type == TRACK_TYPE_HALF_OFFSET
    base = reader.read_vec3f() if offset_halves else ZERO_VEC3

    values = []
    for _ in range(count):
        if track_type == TRACK_TYPE_HALF:
            v = reader.read_vec3h()
        elif offset_halves:
            h = reader.read_vec3h()
            v = (h[0] + base[0], h[1] + base[1], h[2] + base[2])
        else:
            v = reader.read_vec3f()
        values.append(_snap_vec3(v))
    return values


def _read_packed_quats(reader: BinaryReader, count: int) -> List[Quat]:
    return [decode_quat(reader.read_bytes(PACKED_QUAT_SIZE)) for _ in range(count)]


# =============================================================================
# Bone animation
# =============================================================================

@dataclass
class TrackInfo:
    """Metadata of a bone's translation track, kept for diagnostics"""
    interpolation: int = 0
    track_type: int = 0
    unknown: int = 0
    address: int = 0


@dataclass
class BoneTrack:
    """Decoded curves of one bone, one value per frame"""
    translations: List[Vec3] = field(default_factory=list)
    rotations: List[Quat] = field(default_factory=list)
    info: TrackInfo = field(default_factory=TrackInfo)

    def sample(self, frame: int) -> Tuple[Vec3, Quat]:
        """Translation and rotation at a frame, each clamped to its own track"""
        translation = ZERO_VEC3
        if self.translations:
            translation = self.translations[clamp_frame(frame, len(self.translations))]
        rotation = IDENTITY_QUAT
        if self.rotations:
            rotation = self.rotations[clamp_frame(frame, len(self.rotations))]
        return translation, rotation


@dataclass(frozen=True)
class BoneState:
    """One bone of an animation sample"""
    translation: Vec3
    rotation: Quat
    count: int = 0
    interpolation: int = 0
    track_type: int = 0
    unknown: int = 0
    address: int = 0


@dataclass(frozen=True)
class AnimationSample:
    """Per-bone translation and rotation at one frame"""
    max_frame: int
    frame: int
    bones: Tuple[BoneState, ...]

    def __len__(self) -> int:
        return len(self.bones)

    @property
    def translations(self) -> np.ndarray:
        return np.array([b.translation for b in self.bones], dtype=np.float64).reshape(-1, 3)

    @property
    def rotations(self) -> np.ndarray:
        return np.array([b.rotation for b in self.bones], dtype=np.float64).reshape(-1, 4)

    @classmethod
    def identity(cls, bone_count: int) -> 'AnimationSample':
        """Sample with no displacement and no rotation for every bone"""
        return cls(
            max_frame=0,
            frame=0,
            bones=tuple(BoneState(ZERO_VEC3, IDENTITY_QUAT) for _ in range(bone_count)),
        )


@dataclass
class DanceAnimation:
    """Complete bone animation file"""
    max_frame: int
    tracks: List[BoneTrack]

    @property
    def bone_count(self) -> int:
        return len(self.tracks)

    @classmethod
    def read(cls, filepath: str) -> 'DanceAnimation':
        """Read complete animation from file"""
        with open(filepath, 'rb') as f:
            file_data = f.read()

        return cls.read_from_bytes(file_data, name=str(filepath))

    @classmethod
    def read_from_bytes(cls, data: bytes, name: str = "<animation>") -> 'DanceAnimation':
        """Read complete animation from bytes"""
        reader = BinaryReader(data, name=name)

        reader.seek(ANM_OFS_MAX_FRAME)
        max_frame = reader.read_u32()
        reader.seek(ANM_OFS_BONE_COUNT)
        bone_count = reader.read_u32()
        if bone_count < ANM_UNTRACKED_BONES:
            raise StructuralMismatchError(
                f"Animation declares {bone_count} bones, at least {ANM_UNTRACKED_BONES} are required",
                offset=ANM_OFS_BONE_COUNT,
                context=reader.context,
            )

        reader.skip(ANM_HEADER_SKIP + 2 * bone_count)
        section2 = reader.tell()
        reader.seek(section2 + ANM_DIRECTORY_SKIP)
        track_count = 2 * (bone_count - ANM_UNTRACKED_BONES)
        with reader.scope("track directory"):
            addrs = list(reader.unpack(f'<{track_count}I')) if track_count else []
        logger.debug("Animation %s: max frame %d, %d bones, %d tracks", name, max_frame, bone_count, track_count)

        tracks = [BoneTrack() for _ in range(bone_count)]
        for i, addr in enumerate(addrs):
            with reader.scope(f"track {i}"):
                reader.seek(section2 + addr)
                header = TrackHeader.read(reader)
                if header.bone >= bone_count:
                    raise StructuralMismatchError(
                        f"Track targets bone {header.bone}, animation has {bone_count} bones",
                        offset=header.address,
                        context=reader.context,
                    )
                track = tracks[header.bone]
                if header.is_rotation:
                    cls._read_rotation_track(reader, header, track, max_frame)
                else:
                    cls._read_translation_track(reader, header, track, max_frame)

        return cls(max_frame=max_frame, tracks=tracks)

    @staticmethod
    def _sparse_mapping(index: List[int], values: list, max_frame: int, header: TrackHeader) -> dict:
        late = [f for f in index if f > max_frame]
        if late:
            logger.warning("Track at 0x%X keys frames %s beyond max frame %d, ignored",
                           header.address, late, max_frame)
        return dict(zip(index, values))

    @classmethod
    def _read_rotation_track(cls, reader: BinaryReader, header: TrackHeader,
                             track: BoneTrack, max_frame: int) -> None:
        if header.is_sparse:
            index = _read_frame_indices(reader, header.count)
            values = _read_packed_quats(reader, header.count)
            mapping = cls._sparse_mapping(index, values, max_frame, header)
            track.rotations = forward_fill(mapping, max_frame + 1, IDENTITY_QUAT)
        else:
            track.rotations.extend(_read_packed_quats(reader, header.count))

    @classmethod
    def _read_translation_track(cls, reader: BinaryReader, header: TrackHeader,
                                track: BoneTrack, max_frame: int) -> None:
        track.info = TrackInfo(
            interpolation=header.interpolation,
            track_type=header.track_type,
            unknown=header.unknown,
            address=header.address,
        )
        if header.is_sparse:
            index = _read_frame_indices(reader, header.count)
            values = _read_translations(reader, header.track_type, header.count, sparse=True)
            mapping = cls._sparse_mapping(index, values, max_frame, header)
            track.translations = forward_fill(mapping, max_frame + 1, ZERO_VEC3)
        else:
            track.translations.extend(_read_translations(reader, header.track_type, header.count, sparse=False))

    def sample(self, bone: int, frame: int) -> Tuple[Vec3, Quat]:
        """Translation and rotation of one bone at a frame"""
        return self.tracks[bone].sample(frame)

    def sample_pose(self, frame: int) -> AnimationSample:
        """Sample every bone at a frame"""
        bones = []
        for track in self.tracks:
            translation, rotation = track.sample(frame)
            bones.append(BoneState(
                translation=translation,
                rotation=rotation,
                count=len(track.translations),
                interpolation=track.info.interpolation,
                track_type=track.info.track_type,
                unknown=track.info.unknown,
                address=track.info.address,
            ))
        return AnimationSample(max_frame=self.max_frame, frame=frame, bones=tuple(bones))


# =============================================================================
# Camera animation
# =============================================================================

@dataclass(frozen=True)
class CameraSample:
    translation: Vec3
    rotation: Quat


@dataclass
class DanceCamera:
    """Camera animation: one translation curve and one rotation curve"""
    translations: List[Vec3]
    rotations: List[Quat]

    @classmethod
    def read(cls, filepath: str) -> 'DanceCamera':
        """Read camera animation from file"""
        with open(filepath, 'rb') as f:
            file_data = f.read()

        return cls.read_from_bytes(file_data, name=str(filepath))

    @classmethod
    def read_from_bytes(cls, data: bytes, name: str = "<camera>") -> 'DanceCamera':
        """Read camera animation from bytes"""
        reader = BinaryReader(data, name=name)

        reader.seek(CAM_OFS_ROTATION_TRACK)
        with reader.scope("rotation track"):
            header = TrackHeader.read(reader)
            if header.is_sparse:
                index = _read_frame_indices(reader, header.count)
                values = [reader.read_vec4f() for _ in range(header.count)]
                rotations = _fill_to_last_key(index, values, IDENTITY_QUAT)
            else:
                rotations = [reader.read_vec4f() for _ in range(header.count)]

        reader.align(TRACK_ALIGNMENT)
        with reader.scope("translation track"):
            header = TrackHeader.read(reader)
            if header.is_sparse:
                index = _read_frame_indices(reader, header.count)
                values = [cls._read_translation(reader) for _ in range(header.count)]
                translations = _fill_to_last_key(index, values, ZERO_VEC3)
            else:
                translations = [cls._read_translation(reader) for _ in range(header.count)]

        logger.debug("Camera %s: %d translation frames, %d rotation frames",
                     name, len(translations), len(rotations))
        return cls(translations=translations, rotations=rotations)

    @staticmethod
    def _read_translation(reader: BinaryReader) -> Vec3:
        x, y, z, _ = reader.read_vec4f()
        return _snap_vec3((x, y, z))

    def sample(self, frame: int) -> CameraSample:
        """Translation and rotation at a frame, each clamped to its own curve"""
        translation = ZERO_VEC3
        if self.translations:
            translation = self.translations[clamp_frame(frame, len(self.translations))]
        rotation = IDENTITY_QUAT
        if self.rotations:
            rotation = self.rotations[clamp_frame(frame, len(self.rotations))]
        return CameraSample(translation=translation, rotation=rotation)


def _fill_to_last_key(index: List[int], values: list, default: T) -> List[T]:
    """Forward-fill camera keys over [0, last listed frame]"""
    if not index:
        return []
    return forward_fill(dict(zip(index, values)), index[-1] + 1, default)
