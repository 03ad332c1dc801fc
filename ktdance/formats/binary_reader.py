"""
Positional little-endian reader used by every dance asset decoder.

All decoders address the file with absolute offsets read from headers and
record tables, so the reader is built around explicit seeks rather than a
streaming file object. Reads never truncate silently: going past the end of
the buffer raises OutOfBoundsError with the offset and the current scope.
"""

import struct
from contextlib import contextmanager
from typing import Dict, Iterator, List, Tuple

from ..errors import OutOfBoundsError

# =============================================================================
# Primitive formats (all little-endian)
# =============================================================================

U8_FORMAT = '<B'
U16_FORMAT = '<H'
U32_FORMAT = '<I'
I16_FORMAT = '<h'
I32_FORMAT = '<i'
F32_FORMAT = '<f'
F16_FORMAT = '<e'  # IEEE 754 binary16

VEC3F_FORMAT = '<3f'  # 12 bytes
VEC4F_FORMAT = '<4f'  # 16 bytes
VEC3H_FORMAT = '<3e'  # 6 bytes, three half floats

_STRUCTS: Dict[str, struct.Struct] = {}


def _get_struct(fmt: str) -> struct.Struct:
    s = _STRUCTS.get(fmt)
    if s is None:
        s = _STRUCTS[fmt] = struct.Struct(fmt)
    return s


def align_to(value: int, boundary: int) -> int:
    """Round value up to the next multiple of boundary"""
    return (value + boundary - 1) // boundary * boundary


class BinaryReader:
    """Cursor over an immutable byte buffer"""

    def __init__(self, data: bytes, name: str = "<buffer>"):
        self._data = memoryview(bytes(data))
        self._offset = 0
        self.name = name
        self._scopes: List[str] = []

    def __len__(self) -> int:
        return len(self._data)

    @property
    def offset(self) -> int:
        return self._offset

    def tell(self) -> int:
        return self._offset

    # -------------------------------------------------------------------------
    # Error context
    # -------------------------------------------------------------------------

    @property
    def context(self) -> str:
        return " / ".join([self.name] + self._scopes)

    @contextmanager
    def scope(self, label: str) -> Iterator[None]:
        """Label the structure being read; the label shows up in errors"""
        self._scopes.append(label)
        try:
            yield
        finally:
            self._scopes.pop()

    def _out_of_bounds(self, what: str, offset: int):
        return OutOfBoundsError(
            f"{what} outside buffer of {len(self._data)} bytes",
            offset=offset,
            context=self.context,
        )

    # -------------------------------------------------------------------------
    # Positioning
    # -------------------------------------------------------------------------

    def seek(self, offset: int) -> None:
        """Move to an absolute offset"""
        if offset < 0 or offset > len(self._data):
            raise self._out_of_bounds("seek", offset)
        self._offset = offset

    def skip(self, count: int) -> None:
        """Move relative to the current offset"""
        self.seek(self._offset + count)

    def align(self, boundary: int) -> None:
        """Advance to the next multiple of boundary (no-op when aligned)"""
        self.seek(align_to(self._offset, boundary))

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def read_bytes(self, count: int) -> bytes:
        end = self._offset + count
        if count < 0 or end > len(self._data):
            raise self._out_of_bounds(f"read of {count} bytes", self._offset)
        data = self._data[self._offset:end].tobytes()
        self._offset = end
        return data

    def unpack(self, fmt: str) -> Tuple:
        """Read one struct of the given format and advance past it"""
        s = _get_struct(fmt)
        if self._offset + s.size > len(self._data):
            raise self._out_of_bounds(f"read of {s.size} bytes", self._offset)
        values = s.unpack_from(self._data, self._offset)
        self._offset += s.size
        return values

    def read_u8(self) -> int:
        return self.unpack(U8_FORMAT)[0]

    def read_u16(self) -> int:
        return self.unpack(U16_FORMAT)[0]

    def read_u32(self) -> int:
        return self.unpack(U32_FORMAT)[0]

    def read_i16(self) -> int:
        return self.unpack(I16_FORMAT)[0]

    def read_i32(self) -> int:
        return self.unpack(I32_FORMAT)[0]

    def read_f32(self) -> float:
        return self.unpack(F32_FORMAT)[0]

    def read_f16(self) -> float:
        return self.unpack(F16_FORMAT)[0]

    def read_vec3f(self) -> Tuple[float, float, float]:
        return self.unpack(VEC3F_FORMAT)

    def read_vec4f(self) -> Tuple[float, float, float, float]:
        return self.unpack(VEC4F_FORMAT)

    def read_vec3h(self) -> Tuple[float, float, float]:
        return self.unpack(VEC3H_FORMAT)

    def read_cstring(self, encoding: str = 'utf-8') -> str:
        """Read a NUL-terminated string"""
        start = self._offset
        end = start
        while True:
            if end >= len(self._data):
                raise self._out_of_bounds("unterminated string", start)
            if self._data[end] == 0:
                break
            end += 1
        text = self._data[start:end].tobytes().decode(encoding)
        self._offset = end + 1
        return text
