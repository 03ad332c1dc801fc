"""
Model Importer - path -> (mesh, skeleton)

Loads a .model file, or the .model entry of an .arc archive together with
its .b2it bone names, and keeps the decoded result for later calls.
"""

import logging
from typing import Optional, Tuple

from ..config import Settings
from ..errors import StructuralMismatchError
from ..formats.archive_format import DanceArchive, read_bone_names
from ..formats.model_format import DanceModel, Mesh, Skeleton
from .decode_cache import DecodeCache

logger = logging.getLogger(__name__)

MODEL_SUFFIX = ".model"
BONE_NAMES_SUFFIX = ".b2it"


class ModelImporter:
    def __init__(self, settings: Optional[Settings] = None,
                 cache: Optional[DecodeCache] = None,
                 archive_cache: Optional[DecodeCache] = None):
        self.settings = settings or Settings()
        # plain models and archives decode the same path differently
        self.cache = cache if cache is not None else DecodeCache()
        self.archive_cache = archive_cache if archive_cache is not None else DecodeCache()

    def load(self, filepath: str) -> DanceModel:
        """Decoded model for a path (decoded at most once)"""
        return self.cache.get_or_decode(filepath, self._decode_model)

    def execute(self, filepath: str) -> Tuple[Mesh, Skeleton]:
        model = self.load(filepath)
        return model.mesh, model.skeleton

    def import_archive(self, filepath: str) -> DanceModel:
        """Decoded model of an archive, with bone names when the archive has them"""
        return self.archive_cache.get_or_decode(filepath, self._decode_archive)

    def _decode_model(self, data: bytes, name: str) -> DanceModel:
        return DanceModel.read_from_bytes(
            data, name=name,
            flip_v=self.settings.flip_v,
            strict_batch_count=self.settings.strict_batch_count,
        )

    def _decode_archive(self, data: bytes, name: str) -> DanceModel:
        archive = DanceArchive.read_from_bytes(data, name=name)

        model_entry = archive.find(MODEL_SUFFIX)
        if model_entry is None:
            raise StructuralMismatchError(f"Archive has no {MODEL_SUFFIX} entry", context=name)
        model = self._decode_model(archive.extract(model_entry), f"{name}:{model_entry.name}")

        names_entry = archive.find(BONE_NAMES_SUFFIX)
        if names_entry is None:
            logger.info("Archive %s has no bone name table", name)
            return model

        names = read_bone_names(archive.extract(names_entry), name=f"{name}:{names_entry.name}")
        return DanceModel(skeleton=model.skeleton.with_names(names), mesh=model.mesh)
