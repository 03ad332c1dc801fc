"""
Synthetic asset writers for the test suite.

Each builder packs the same layouts the decoders read, so tests can state
their inputs as plain Python values instead of shipping binary files.
"""

import math
import struct
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np

from ktdance.formats.binary_reader import align_to
from ktdance.formats.quat_codec import QUAT_FIELD_CENTER, QUAT_FIELD_MASK, QUAT_FIELD_SCALE

MODEL_HEADER_SIZE = 0x40
BONE_RECORD_FORMAT = '<16x16f92xi'           # 176 bytes
SECTION_RECORD_FORMAT = '<IIBB22xII24x'      # 64 bytes
VERTEX_FORMAT = '<3f4B3f3f3f3f2e'            # 68 bytes

IDENTITY_BASIS = np.eye(4)


def _pad(buf: bytearray, boundary: int = 16) -> None:
    buf.extend(b'\x00' * (align_to(len(buf), boundary) - len(buf)))


def _pad_from(buf: bytearray, start: int, boundary: int = 16) -> None:
    """Pad a block that will be placed at absolute offset start"""
    end = start + len(buf)
    buf.extend(b'\x00' * (align_to(end, boundary) - end))


def basis_at(x: float, y: float, z: float, rotation: Optional[np.ndarray] = None) -> np.ndarray:
    """4x4 bind basis with an optional 3x3 rotation and a translation column"""
    m = np.eye(4)
    if rotation is not None:
        m[:3, :3] = rotation
    m[:3, 3] = (x, y, z)
    return m


# =============================================================================
# Quaternions
# =============================================================================

def pack_quat_fields(variant: int, a: int, b: int, c: int) -> bytes:
    """Pack raw 15-bit fields into the 6-byte layout"""
    num = (variant & 3) | (a & QUAT_FIELD_MASK) << 2 | (b & QUAT_FIELD_MASK) << 17 | (c & QUAT_FIELD_MASK) << 32
    return num.to_bytes(6, 'little')


def quantize(value: float) -> int:
    raw = int(round(value * QUAT_FIELD_SCALE + QUAT_FIELD_CENTER))
    return min(max(raw, 0), QUAT_FIELD_MASK)


def pack_quat(q: Sequence[float]) -> bytes:
    """Reference packer for a unit quaternion (x, y, z, w)"""
    q = [float(v) for v in q]
    norm = math.sqrt(sum(v * v for v in q))
    q = [v / norm for v in q]
    variant = max(range(4), key=lambda i: abs(q[i]))
    if q[variant] < 0.0:
        q = [-v for v in q]
    c, b, a = [q[i] for i in range(4) if i != variant]
    return pack_quat_fields(variant, quantize(a), quantize(b), quantize(c))


def axis_angle_quat(axis: Sequence[float], angle: float) -> Tuple[float, float, float, float]:
    axis = np.asarray(axis, dtype=np.float64)
    axis = axis / np.linalg.norm(axis)
    s = math.sin(angle / 2.0)
    return (axis[0] * s, axis[1] * s, axis[2] * s, math.cos(angle / 2.0))


# =============================================================================
# Model
# =============================================================================

def vertex(position, bones=(0, 0, 0, 0), weights=(0.0, 0.0, 0.0), normal=(0.0, 0.0, 1.0), uv=(0.0, 0.0)):
    """One vertex description for build_model"""
    return (tuple(position), tuple(bones), tuple(weights), tuple(normal), tuple(uv))


def build_model(bases: Sequence[np.ndarray], parents: Sequence[int],
                sections: Sequence[Tuple[Sequence[tuple], Sequence[Tuple[int, int, int]]]],
                remap: Sequence[Sequence[int]],
                declared_batches: Optional[int] = None,
                stride: int = 68) -> bytes:
    """
    Pack a model file.

    sections: (vertices, triangles) per section; vertices from vertex().
    remap: global bone index per local index, one list per batch.
    """
    bone_ptr = MODEL_HEADER_SIZE
    section_ptr = bone_ptr + 176 * len(bases)
    data_ptr = section_ptr + 64 * len(sections)

    buf = bytearray(data_ptr)

    # section payloads
    records = []
    for i, (verts, tris) in enumerate(sections):
        record_ofs = section_ptr + 64 * i
        _pad(buf, 4)
        vert_ofs = len(buf)
        for pos, bones, weights, normal, uv in verts:
            buf += struct.pack(VERTEX_FORMAT, *pos, *bones, *weights, *normal,
                               0.0, 0.0, 0.0, 0.0, 0.0, 0.0, *uv)
        _pad(buf, 4)
        index_ofs = len(buf)
        for tri in tris:
            buf += struct.pack('<3H', *tri)
        records.append(struct.pack(SECTION_RECORD_FORMAT,
                                   vert_ofs - record_ofs, len(verts), 0, stride,
                                   index_ofs - (record_ofs + 0x20), 3 * len(tris)))

    _pad(buf, 4)
    remap_ptr = len(buf)
    for table in remap:
        buf += struct.pack(f'<{len(table)}h', *table)
    _pad(buf)

    for i, (basis, parent) in enumerate(zip(bases, parents)):
        m = np.asarray(basis, dtype=np.float64)
        columns = [float(v) for col in range(4) for v in m[:, col]]
        struct.pack_into(BONE_RECORD_FORMAT, buf, bone_ptr + 176 * i, *columns, parent)
    for i, record in enumerate(records):
        buf[section_ptr + 64 * i:section_ptr + 64 * (i + 1)] = record

    struct.pack_into('<IIIi', buf, 0x18, len(bases), bone_ptr,
                     len(remap) if declared_batches is None else declared_batches, remap_ptr)
    struct.pack_into('<I', buf, 0x28, len(sections))
    struct.pack_into('<I', buf, 0x34, section_ptr)
    return bytes(buf)


def single_triangle_model(bases=None, parents=(-1,), bones=(0, 0, 0, 0), weights=(0.0, 0.0, 0.0)) -> bytes:
    """Smallest useful model: one section with one triangle, identity remap"""
    bases = bases if bases is not None else [IDENTITY_BASIS]
    verts = [
        vertex((0.0, 0.0, 0.0), bones, weights, uv=(0.0, 0.0)),
        vertex((1.0, 0.0, 0.0), bones, weights, uv=(1.0, 0.0)),
        vertex((0.0, 1.0, 0.0), bones, weights, uv=(0.0, 1.0)),
    ]
    local = sorted({bones[0]} | {b for b in bones[1:] if b})
    remap = [list(range(max(local) + 1))]
    return build_model(bases, parents, [(verts, [(0, 1, 2)])], remap)


# =============================================================================
# Tracks
# =============================================================================

def rotation_track(bone: int, quats: Sequence[Sequence[float]], frames: Optional[Sequence[int]] = None) -> dict:
    """Rotation track; frames given means sparse"""
    return {'type': 28, 'bone': bone, 'values': list(quats), 'frames': frames}


def translation_track(bone: int, values: Sequence[Sequence[float]], frames: Optional[Sequence[int]] = None,
                      track_type: int = 29, base: Sequence[float] = (0.0, 0.0, 0.0), unknown: int = 0) -> dict:
    """Translation track; type 30 is half floats, sparse 31 is base + half floats, others f32"""
    return {'type': track_type, 'bone': bone, 'values': list(values), 'frames': frames,
            'base': tuple(base), 'unknown': unknown}


def _pack_track(track: dict, start: int, camera: bool = False) -> bytes:
    """Pack one track whose header lands at absolute offset start"""
    frames = track.get('frames')
    values = track['values']
    interpolation = 0 if frames is not None else 1
    buf = bytearray(struct.pack('<HHHHII', track['type'], interpolation, len(values),
                                track['bone'], 0, track.get('unknown', 0)))
    _pad_from(buf, start)
    if frames is not None:
        buf += struct.pack(f'<{len(frames)}H', *frames)
        _pad_from(buf, start)

    if camera:
        for v in values:
            v = tuple(v) + (0.0,) * (4 - len(v))
            buf += struct.pack('<4f', *v)
    elif track['type'] == 28:
        for q in values:
            buf += q if isinstance(q, bytes) else pack_quat(q)
    elif track['type'] == 30:
        for v in values:
            buf += struct.pack('<3e', *v)
    elif track['type'] == 31 and frames is not None:
        buf += struct.pack('<3f', *track['base'])
        for v in values:
            buf += struct.pack('<3e', *v)
    else:
        for v in values:
            buf += struct.pack('<3f', *v)
    _pad_from(buf, start)
    return bytes(buf)


# =============================================================================
# Animation
# =============================================================================

def build_animation(max_frame: int, bone_count: int, tracks: Iterable[dict]) -> bytes:
    """
    Pack a bone animation file.

    The directory always has 2 * (bone_count - 3) entries; missing tracks are
    filled with empty dense rotation tracks for bone 0, which change nothing.
    """
    tracks = list(tracks)
    slots = max(2 * (bone_count - 3), 0)
    if len(tracks) > slots:
        raise ValueError(f"{len(tracks)} tracks do not fit {slots} directory slots")
    tracks += [rotation_track(0, [])] * (slots - len(tracks))

    buf = bytearray(0x24)
    struct.pack_into('<I', buf, 0x04, max_frame)
    struct.pack_into('<I', buf, 0x20, bone_count)
    buf += b'\x00' * (8 + 2 * bone_count)
    section2 = len(buf)
    buf += b'\x00' * 8
    directory = len(buf)
    buf += b'\x00' * (4 * slots)
    _pad(buf)

    addrs = []
    for track in tracks:
        addrs.append(len(buf) - section2)
        buf += _pack_track(track, len(buf))
    if slots:
        struct.pack_into(f'<{slots}I', buf, directory, *addrs)
    return bytes(buf)


def build_camera(rotations: Sequence[Sequence[float]], translations: Sequence[Sequence[float]],
                 rotation_frames: Optional[Sequence[int]] = None,
                 translation_frames: Optional[Sequence[int]] = None) -> bytes:
    """Pack a camera file; rotations are raw (x, y, z, w) vec4f values"""
    buf = bytearray(0x38)
    buf += _pack_track({'type': 28, 'bone': 0, 'values': list(rotations), 'frames': rotation_frames},
                       len(buf), camera=True)
    _pad(buf)
    buf += _pack_track({'type': 29, 'bone': 0, 'values': list(translations), 'frames': translation_frames},
                       len(buf), camera=True)
    return bytes(buf)


# =============================================================================
# Archive and bone names
# =============================================================================

def compress_literals(data: bytes) -> bytes:
    """LZ stream holding only literal bytes, ended by a zero back-reference"""
    out = bytearray()
    for start in range(0, len(data), 8):
        chunk = data[start:start + 8]
        out.append((1 << len(chunk)) - 1)
        out += chunk
    if len(data) % 8 == 0:
        out.append(0)
    out += b'\x00\x00'
    return bytes(out)


def build_archive(files: Sequence[Tuple[str, bytes, bool]], version: int = 1) -> bytes:
    """Pack (name, payload, compress) entries into an archive"""
    header_size = 16 + 16 * len(files)
    buf = bytearray(header_size)
    struct.pack_into('<IIII', buf, 0, 0x43524100, version, len(files), 0)

    entries = []
    for name, payload, compress in files:
        name_ofs = len(buf)
        buf += name.encode('utf-8') + b'\x00'
        _pad(buf)
        stored = compress_literals(payload) if compress else payload
        data_ofs = len(buf)
        buf += stored
        entries.append((name_ofs, data_ofs, len(payload), len(stored)))

    for i, entry in enumerate(entries):
        struct.pack_into('<IIII', buf, 16 + 16 * i, *entry)
    return bytes(buf)


def build_bone_names(names_by_slot: Sequence[Tuple[str, int]]) -> bytes:
    """Pack a bone name table from (name, slot) pairs in file order"""
    count = len(names_by_slot)
    buf = bytearray(0x20 + 4 * count)
    slots_ofs = len(buf)
    buf += struct.pack(f'<{count}I', *[slot for _, slot in names_by_slot])

    name_ptrs: List[int] = []
    for name, _ in names_by_slot:
        name_ptrs.append(len(buf))
        buf += name.encode('utf-8') + b'\x00'

    struct.pack_into('<I', buf, 0x10, count)
    struct.pack_into('<I', buf, 0x18, slots_ofs)
    if count:
        struct.pack_into(f'<{count}I', buf, 0x20, *name_ptrs)
    return bytes(buf)
