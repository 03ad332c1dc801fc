"""
Host invocation contract

Each capability the node-graph host calls per evaluation tick is a method
on AssetSession with typed inputs and outputs. The session owns one cached
importer per file kind and asks the host for the current frame only when
the caller passes none.
"""

from typing import Callable, Optional, Sequence, Tuple

import numpy as np

from .config import Settings
from .evaluators import pose
from .formats.anim_format import AnimationSample
from .formats.model_format import Mesh, Skeleton
from .formats.quat_codec import Quat
from .importers.import_anim import AnimationImporter, CameraImporter
from .importers.import_model import ModelImporter

FrameProvider = Callable[[], int]


class AssetSession:
    """Decode and evaluate operations sharing decode-once caches"""

    def __init__(self, settings: Optional[Settings] = None,
                 frame_provider: Optional[FrameProvider] = None):
        self.settings = settings or Settings()
        self.frame_provider = frame_provider
        self.models = ModelImporter(self.settings)
        self.animations = AnimationImporter()
        self.cameras = CameraImporter()

    def current_frame(self, frame: Optional[int] = None) -> int:
        if frame is not None:
            return int(frame)
        if self.frame_provider is not None:
            return int(self.frame_provider())
        return self.settings.default_frame

    # -------------------------------------------------------------------------
    # Decode
    # -------------------------------------------------------------------------

    def read_mesh(self, path: str) -> Tuple[Mesh, Skeleton]:
        """path -> (mesh, skeleton)"""
        return self.models.execute(path)

    def read_archive_mesh(self, path: str) -> Tuple[Mesh, Skeleton]:
        """.arc path -> (mesh, named skeleton)"""
        model = self.models.import_archive(path)
        return model.mesh, model.skeleton

    def read_animation(self, path: str, frame: Optional[int] = None) -> AnimationSample:
        """path (+ frame) -> animation sample"""
        return self.animations.execute(path, self.current_frame(frame))

    def read_camera(self, path: str, frame: Optional[int] = None) -> Tuple[Tuple[float, float, float], Quat]:
        """path (+ frame) -> (translation, rotation)"""
        sample = self.cameras.execute(path, self.current_frame(frame))
        return sample.translation, sample.rotation

    # -------------------------------------------------------------------------
    # Evaluate
    # -------------------------------------------------------------------------

    @staticmethod
    def evaluate_pose(mesh: Mesh, skeleton: Skeleton,
                      sample: AnimationSample) -> Tuple[Mesh, Skeleton]:
        """(mesh, skeleton, sample) -> (posed mesh, posed skeleton)"""
        result = pose.evaluate_pose(skeleton, sample, mesh)
        return result.mesh, result.skeleton

    @staticmethod
    def rotate_vector(direction: Sequence[float], rotation: Sequence[float]) -> np.ndarray:
        return pose.rotate_vector(direction, rotation)
