"""
48-bit packed quaternion codec used by bone rotation tracks.

Layout of the 6 bytes, read as one little-endian integer, low bits first:

    bits  0..1   variant  - which slot holds the reconstructed component
    bits  2..16  a        - 15-bit fixed point
    bits 17..31  b        - 15-bit fixed point
    bits 32..46  c        - 15-bit fixed point
    bit  47      unused

Each 15-bit field maps [0, 32767] onto roughly [-1/sqrt(2), 1/sqrt(2)], the
range of the three smaller components of a unit quaternion. The omitted
(largest) component is sqrt(1 - a^2 - b^2 - c^2).
"""

import logging
import math
from typing import Tuple

logger = logging.getLogger(__name__)

PACKED_QUAT_SIZE = 6

QUAT_FIELD_MASK = 0x7FFF
QUAT_FIELD_CENTER = 16383.5
QUAT_FIELD_SCALE = 23169.767578125  # 32767 / sqrt(2)

# Components closer to zero than this are stored as exactly zero
QUAT_SNAP_EPSILON = 0.0001

IDENTITY_QUAT = (0.0, 0.0, 0.0, 1.0)

Quat = Tuple[float, float, float, float]  # (x, y, z, w)


def _unpack_field(raw: int) -> float:
    return (float(raw & QUAT_FIELD_MASK) - QUAT_FIELD_CENTER) / QUAT_FIELD_SCALE


def decode_quat(data: bytes) -> Quat:
    """Decode a 6-byte packed rotation into (x, y, z, w)"""
    if len(data) != PACKED_QUAT_SIZE:
        raise ValueError(f"Packed quaternion must be {PACKED_QUAT_SIZE} bytes, got {len(data)}")

    num = int.from_bytes(data, 'little')
    variant = num & 3
    num >>= 2
    a = _unpack_field(num)
    num >>= 15
    b = _unpack_field(num)
    num >>= 15
    c = _unpack_field(num)

    radicand = 1.0 - (a * a + b * b + c * c)
    if radicand < 0.0:
        logger.warning("Packed quaternion %s has negative radicand %.6f, clamping", data.hex(), radicand)
        radicand = 0.0
    recon = math.sqrt(radicand)

    # The three stored components always fill the free slots in (c, b, a) order
    stored = [c, b, a]
    quat = [_snap(v) for v in stored]
    quat.insert(variant, recon)
    return tuple(quat)


def _snap(value: float) -> float:
    return 0.0 if abs(value) < QUAT_SNAP_EPSILON else value
