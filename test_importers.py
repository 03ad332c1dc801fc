import os
import shutil
import tempfile
import unittest

import numpy as np

from dance_fixtures import (
    IDENTITY_BASIS, build_animation, build_archive, build_bone_names, build_camera,
    single_triangle_model, translation_track,
)
from ktdance.config import Settings
from ktdance.errors import StructuralMismatchError
from ktdance.importers.decode_cache import DecodeCache
from ktdance.importers.import_anim import AnimationImporter, CameraImporter
from ktdance.importers.import_model import ModelImporter
from ktdance.operators import AssetSession


class AssetDirTestCase(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.tmpdir)

    def write(self, name, data):
        path = os.path.join(self.tmpdir, name)
        with open(path, 'wb') as f:
            f.write(data)
        return path


class TestDecodeCache(AssetDirTestCase):
    def test_decodes_once_per_file(self):
        path = self.write("a.bin", b"abc")
        calls = []

        def decode(data, name):
            calls.append(name)
            return data.upper()

        cache = DecodeCache()
        self.assertEqual(cache.get_or_decode(path, decode), b"ABC")
        # same file through a different spelling of the path
        other = os.path.join(self.tmpdir, ".", "a.bin")
        self.assertEqual(cache.get_or_decode(other, decode), b"ABC")

        self.assertEqual(len(calls), 1)
        self.assertEqual((cache.misses, cache.hits), (1, 1))
        self.assertIn(path, cache)
        self.assertEqual(len(cache), 1)

    def test_failed_decode_is_not_cached(self):
        path = self.write("bad.bin", b"")

        def decode(data, name):
            raise StructuralMismatchError("bad")

        cache = DecodeCache()
        with self.assertRaises(StructuralMismatchError):
            cache.get_or_decode(path, decode)
        self.assertNotIn(path, cache)


class TestModelImporter(AssetDirTestCase):
    def test_execute_is_cached(self):
        path = self.write("dancer.model", single_triangle_model())
        importer = ModelImporter()
        mesh, skeleton = importer.execute(path)
        again, _ = importer.execute(path)
        self.assertIs(mesh, again)
        self.assertEqual(len(skeleton), 1)
        self.assertEqual(importer.cache.misses, 1)

    def test_settings_reach_decoder(self):
        path = self.write("dancer.model", single_triangle_model())
        mesh, _ = ModelImporter(Settings(flip_v=False)).execute(path)
        np.testing.assert_allclose(mesh.uvs[2], (0.0, 1.0))

    def test_archive_with_names(self):
        model = single_triangle_model(bases=[IDENTITY_BASIS] * 2, parents=[-1, 0])
        names = build_bone_names([("hip", 1), ("root", 0)])
        path = self.write("dancer.arc", build_archive([
            ("dancer.model", model, True),
            ("dancer.b2it", names, False),
        ]))
        skeleton = ModelImporter().import_archive(path).skeleton
        self.assertEqual([b.name for b in skeleton.bones], ["root", "hip"])

    def test_archive_without_names(self):
        path = self.write("dancer.arc", build_archive([("dancer.model", single_triangle_model(), False)]))
        with self.assertLogs('ktdance.importers.import_model', level='INFO'):
            model = ModelImporter().import_archive(path)
        self.assertEqual(model.skeleton.bones[0].name, "")

    def test_archive_without_model(self):
        path = self.write("dancer.arc", build_archive([("dancer.tex", b"\x00", False)]))
        with self.assertRaises(StructuralMismatchError):
            ModelImporter().import_archive(path)

    def test_model_and_archive_loads_are_cached_apart(self):
        model_path = self.write("dancer.model", single_triangle_model())
        importer = ModelImporter()
        importer.load(model_path)
        # a plain model file is not an archive, even when already decoded as a model
        with self.assertRaises(StructuralMismatchError):
            importer.import_archive(model_path)

        arc_path = self.write("dancer.arc", build_archive([
            ("dancer.model", single_triangle_model(), False),
            ("dancer.b2it", build_bone_names([("root", 0)]), False),
        ]))
        self.assertEqual(importer.import_archive(arc_path).skeleton.bones[0].name, "root")
        self.assertIn(arc_path, importer.archive_cache)
        self.assertNotIn(arc_path, importer.cache)


class TestAnimationImporters(AssetDirTestCase):
    def test_resample_without_decoding(self):
        path = self.write("walk.anm", build_animation(2, 4, [
            translation_track(0, [(1.0, 0.0, 0.0), (2.0, 0.0, 0.0), (3.0, 0.0, 0.0)]),
        ]))
        importer = AnimationImporter()
        samples = [importer.execute(path, frame) for frame in range(3)]
        self.assertEqual([s.bones[0].translation[0] for s in samples], [1.0, 2.0, 3.0])
        self.assertEqual(importer.cache.misses, 1)
        self.assertEqual(importer.cache.hits, 2)

    def test_camera(self):
        path = self.write("cam.anm", build_camera([(0.0, 0.0, 0.0, 1.0)], [(1.0, 2.0, 3.0)]))
        sample = CameraImporter().execute(path, 9)
        self.assertEqual(sample.translation, (1.0, 2.0, 3.0))
        self.assertEqual(sample.rotation, (0.0, 0.0, 0.0, 1.0))


class TestAssetSession(AssetDirTestCase):
    def setUp(self):
        super().setUp()
        self.anim_path = self.write("walk.anm", build_animation(3, 4, [
            translation_track(0, [(float(i), 0.0, 0.0) for i in range(4)]),
        ]))

    def test_frame_resolution(self):
        session = AssetSession(Settings(default_frame=2))
        self.assertEqual(session.read_animation(self.anim_path).frame, 2)
        self.assertEqual(session.read_animation(self.anim_path, frame=1).frame, 1)

        session.frame_provider = lambda: 3
        sample = session.read_animation(self.anim_path)
        self.assertEqual(sample.frame, 3)
        self.assertEqual(sample.bones[0].translation, (3.0, 0.0, 0.0))
        self.assertEqual(session.read_animation(self.anim_path, frame=0).frame, 0)

    def test_pose_pipeline(self):
        session = AssetSession()
        mesh, skeleton = session.read_mesh(self.write("dancer.model", single_triangle_model()))
        sample = session.read_animation(self.anim_path, frame=1)
        # the model has one bone, the animation four
        posed_mesh, posed_skeleton = session.evaluate_pose(mesh, skeleton, sample)
        np.testing.assert_allclose(posed_mesh.positions, mesh.positions + (1.0, 0.0, 0.0))
        np.testing.assert_allclose(posed_skeleton.positions, [(1.0, 0.0, 0.0)])

    def test_read_camera(self):
        session = AssetSession(frame_provider=lambda: 0)
        path = self.write("cam.anm", build_camera([(0.0, 0.0, 1.0, 0.0)], [(0.0, 4.0, 0.0)]))
        translation, rotation = session.read_camera(path)
        self.assertEqual(translation, (0.0, 4.0, 0.0))
        self.assertEqual(rotation, (0.0, 0.0, 1.0, 0.0))
        np.testing.assert_allclose(session.rotate_vector((1.0, 0.0, 0.0), rotation), (-1.0, 0.0, 0.0), atol=1e-12)


if __name__ == '__main__':
    unittest.main()
