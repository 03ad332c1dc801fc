"""
Dance Archive (.arc) and Bone Name Table (.b2it) Binary Formats

An archive bundles the files of one character (model, bone name table,
textures, ...). Entries are optionally compressed with a small LZ scheme.
The .b2it entry maps skeleton bone indices to bone names.
"""

import logging
import struct
from dataclasses import dataclass
from typing import List, Optional

from ..errors import StructuralMismatchError
from .binary_reader import BinaryReader

logger = logging.getLogger(__name__)

# =============================================================================
# Archive layout
# =============================================================================

# typedef struct {
#     uint32 magic;
#     uint32 version;
#     uint32 numFiles;
#     uint32 pad;
#     arcEntry_t entries[numFiles];
# } arcHeader_t;
#
# typedef struct {
#     uint32 ofsName;    // NUL-terminated path
#     uint32 offset;     // payload
#     uint32 size;       // uncompressed size
#     uint32 zsize;      // stored size, equal to size when uncompressed
# } arcEntry_t;

ARC_HEADER_FORMAT = '<IIII'
ARC_ENTRY_FORMAT = '<IIII'

# Compressed stream: each control byte supplies 8 flags, LSB first.
# Flag set: copy one literal byte. Flag clear: big-endian uint16 back-reference,
# offset = value >> 4, length = (value & 0xF) + 3, value 0 ends the stream.
LZ_MIN_MATCH = 3
LZ_LENGTH_MASK = 0xF
LZ_OFFSET_SHIFT = 4

# =============================================================================
# Bone name table layout
# =============================================================================

# 0x10: uint32 count
# 0x18: uint32 ofsSlots   - count uint32 bone slot numbers
# 0x20: uint32 ofsNames[count]
B2IT_OFS_COUNT = 0x10
B2IT_OFS_SLOTS = 0x18
B2IT_OFS_NAMES = 0x20


def decompress(data: bytes, raw_size: int) -> bytes:
    """Expand an LZ-compressed archive entry"""
    output = bytearray()
    pos = 0
    length = len(data)
    control = 0
    while pos < length:
        if control & 0x100 == 0:
            control = data[pos] | 0xFF00
            pos += 1
        if control & 1:
            if pos >= length:
                break
            output.append(data[pos])
            pos += 1
        else:
            if pos + 2 > length:
                break
            flag = struct.unpack_from('>H', data, pos)[0]
            pos += 2
            if flag == 0:
                break
            offset = flag >> LZ_OFFSET_SHIFT
            count = (flag & LZ_LENGTH_MASK) + LZ_MIN_MATCH
            for _ in range(count):
                src = len(output) - offset
                output.append(output[src] if src >= 0 else 0)
        control >>= 1

    if len(output) != raw_size:
        raise StructuralMismatchError(
            f"Decompressed {len(output)} bytes, entry declares {raw_size}"
        )
    return bytes(output)


@dataclass(frozen=True)
class ArchiveEntry:
    name: str
    offset: int
    size: int
    zsize: int

    @property
    def compressed(self) -> bool:
        return self.size != self.zsize


@dataclass
class DanceArchive:
    """Archive index plus lazily decompressed entry payloads"""
    version: int
    entries: List[ArchiveEntry]
    data: bytes

    @classmethod
    def read(cls, filepath: str) -> 'DanceArchive':
        """Read archive from file"""
        with open(filepath, 'rb') as f:
            file_data = f.read()

        return cls.read_from_bytes(file_data, name=str(filepath))

    @classmethod
    def read_from_bytes(cls, data: bytes, name: str = "<archive>") -> 'DanceArchive':
        """Read the archive index from bytes"""
        reader = BinaryReader(data, name=name)
        _magic, version, num_files, _pad = reader.unpack(ARC_HEADER_FORMAT)

        raw_entries = [reader.unpack(ARC_ENTRY_FORMAT) for _ in range(num_files)]
        entries = []
        for i, (ofs_name, offset, size, zsize) in enumerate(raw_entries):
            with reader.scope(f"entry {i}"):
                reader.seek(ofs_name)
                entry_name = reader.read_cstring()
                reader.seek(offset)
                reader.skip(zsize)
            entries.append(ArchiveEntry(name=entry_name, offset=offset, size=size, zsize=zsize))
            logger.debug("Archive entry %s: %d bytes (%d stored)", entry_name, size, zsize)

        return cls(version=version, entries=entries, data=bytes(data))

    def names(self) -> List[str]:
        return [e.name for e in self.entries]

    def find(self, suffix: str) -> Optional[ArchiveEntry]:
        """First entry whose name ends with suffix"""
        for entry in self.entries:
            if entry.name.endswith(suffix):
                return entry
        return None

    def get(self, name: str) -> bytes:
        """Payload of an entry, decompressed when needed"""
        for entry in self.entries:
            if entry.name == name:
                return self.extract(entry)
        raise KeyError(name)

    def extract(self, entry: ArchiveEntry) -> bytes:
        stored = self.data[entry.offset:entry.offset + entry.zsize]
        if not entry.compressed:
            return stored
        try:
            return decompress(stored, entry.size)
        except StructuralMismatchError as e:
            raise StructuralMismatchError(e.message, offset=entry.offset, context=entry.name) from e


def read_bone_names(data: bytes, name: str = "<b2it>") -> List[str]:
    """Bone names ordered by skeleton bone index"""
    reader = BinaryReader(data, name=name)
    reader.seek(B2IT_OFS_COUNT)
    count = reader.read_u32()
    reader.seek(B2IT_OFS_SLOTS)
    slots_ofs = reader.read_u32()
    reader.seek(B2IT_OFS_NAMES)
    name_ptrs = list(reader.unpack(f'<{count}I')) if count else []

    strings = []
    for i, ptr in enumerate(name_ptrs):
        with reader.scope(f"name {i}"):
            reader.seek(ptr)
            strings.append(reader.read_cstring())

    reader.seek(slots_ofs)
    slots = list(reader.unpack(f'<{count}I')) if count else []

    names = [""] * count
    for i, slot in enumerate(slots):
        if slot >= count:
            raise StructuralMismatchError(
                f"Bone name {strings[i]!r} targets slot {slot} of {count}",
                offset=slots_ofs + 4 * i,
                context=reader.context,
            )
        names[slot] = strings[i]
    return names
