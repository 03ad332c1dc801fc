"""
Error types raised while decoding dance assets.

Decode failures are fatal for the call that triggered them; no partially
decoded object is ever returned. Each error carries the absolute file offset
and the structure being read so a reverse-engineered layout can be debugged.
"""

from typing import Optional


class DanceFormatError(ValueError):
    """Base class for all decode failures"""

    def __init__(self, message: str, offset: Optional[int] = None, context: str = ""):
        self.message = message
        self.offset = offset
        self.context = context
        super().__init__(self._render())

    def _render(self) -> str:
        text = self.message
        if self.offset is not None:
            text += f" (offset 0x{self.offset:X})"
        if self.context:
            text += f" [{self.context}]"
        return text


class OutOfBoundsError(DanceFormatError):
    """A read, seek or skip went past the end of the buffer"""


class StructuralMismatchError(DanceFormatError):
    """A fixed-layout invariant of the file does not hold"""


class CyclicHierarchyError(DanceFormatError):
    """Bone parent links do not form a forest"""
