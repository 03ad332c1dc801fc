import struct
import unittest

from ktdance.errors import DanceFormatError, OutOfBoundsError
from ktdance.formats.binary_reader import BinaryReader, align_to


class TestAlign(unittest.TestCase):
    def test_align_to(self):
        self.assertEqual(align_to(0, 16), 0)
        self.assertEqual(align_to(1, 16), 16)
        self.assertEqual(align_to(16, 16), 16)
        self.assertEqual(align_to(0x38 + 16, 16), 0x50)


class TestBinaryReader(unittest.TestCase):
    def setUp(self):
        self.data = (
            struct.pack('<HiI', 0xBEEF, -2, 7)
            + struct.pack('<3e', 0.5, -1.0, 2.0)
            + b'hip\x00'
            + struct.pack('<4f', 1.0, 2.0, 3.0, 4.0)
        )
        self.reader = BinaryReader(self.data, name="sample.bin")

    def test_primitives(self):
        r = self.reader
        self.assertEqual(r.read_u16(), 0xBEEF)
        self.assertEqual(r.read_i32(), -2)
        self.assertEqual(r.read_u32(), 7)
        self.assertEqual(r.read_vec3h(), (0.5, -1.0, 2.0))
        self.assertEqual(r.read_cstring(), "hip")
        self.assertEqual(r.read_vec4f(), (1.0, 2.0, 3.0, 4.0))
        self.assertEqual(r.tell(), len(self.data))

    def test_seek_to_end_is_allowed(self):
        self.reader.seek(len(self.data))
        self.assertEqual(self.reader.offset, len(self.data))

    def test_seek_past_end(self):
        with self.assertRaises(OutOfBoundsError) as cm:
            self.reader.seek(len(self.data) + 1)
        self.assertEqual(cm.exception.offset, len(self.data) + 1)

    def test_negative_seek(self):
        with self.assertRaises(OutOfBoundsError):
            self.reader.seek(-1)

    def test_read_past_end_names_scope(self):
        self.reader.seek(len(self.data) - 2)
        with self.assertRaises(OutOfBoundsError) as cm:
            with self.reader.scope("bone 4"):
                self.reader.read_u32()
        err = cm.exception
        self.assertIsInstance(err, DanceFormatError)
        self.assertIsInstance(err, ValueError)
        self.assertEqual(err.context, "sample.bin / bone 4")
        self.assertIn("bone 4", str(err))
        self.assertIn("0x", str(err))

    def test_scope_is_popped(self):
        with self.reader.scope("outer"):
            with self.reader.scope("inner"):
                self.assertEqual(self.reader.context, "sample.bin / outer / inner")
        self.assertEqual(self.reader.context, "sample.bin")

    def test_align(self):
        reader = BinaryReader(bytes(40))
        reader.seek(3)
        reader.align(16)
        self.assertEqual(reader.tell(), 16)
        reader.align(16)
        self.assertEqual(reader.tell(), 16)

    def test_align_past_end(self):
        reader = BinaryReader(bytes(20))
        reader.seek(17)
        with self.assertRaises(OutOfBoundsError):
            reader.align(16)

    def test_unterminated_string(self):
        reader = BinaryReader(b'abc')
        with self.assertRaises(OutOfBoundsError):
            reader.read_cstring()

    def test_read_bytes(self):
        self.reader.skip(2)
        self.assertEqual(self.reader.read_bytes(4), struct.pack('<i', -2))
        with self.assertRaises(OutOfBoundsError):
            self.reader.read_bytes(len(self.data))


if __name__ == '__main__':
    unittest.main()
