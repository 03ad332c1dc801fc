"""
Animation Importers - path + frame -> sampled pose / camera transform

The whole file is decoded once per path; every later call only samples the
cached curves at the requested frame.
"""

from typing import Optional

from ..formats.anim_format import AnimationSample, CameraSample, DanceAnimation, DanceCamera
from .decode_cache import DecodeCache


class AnimationImporter:
    def __init__(self, cache: Optional[DecodeCache] = None):
        self.cache = cache if cache is not None else DecodeCache()

    def load(self, filepath: str) -> DanceAnimation:
        return self.cache.get_or_decode(filepath, self._decode)

    def execute(self, filepath: str, frame: int) -> AnimationSample:
        return self.load(filepath).sample_pose(frame)

    @staticmethod
    def _decode(data: bytes, name: str) -> DanceAnimation:
        return DanceAnimation.read_from_bytes(data, name=name)


class CameraImporter:
    def __init__(self, cache: Optional[DecodeCache] = None):
        self.cache = cache if cache is not None else DecodeCache()

    def load(self, filepath: str) -> DanceCamera:
        return self.cache.get_or_decode(filepath, self._decode)

    def execute(self, filepath: str, frame: int) -> CameraSample:
        return self.load(filepath).sample(frame)

    @staticmethod
    def _decode(data: bytes, name: str) -> DanceCamera:
        return DanceCamera.read_from_bytes(data, name=name)
