import struct
from unittest import TestCase

from spi_errors import InvalidRecordBoundsError
from spi_palette import MasterPalette, palette_image, parse_palette, preview_colors, rgba5551_to_rgba


class ColorConversionTests(TestCase):
    def test_AllBitsSetIsOpaqueWhite(self):
        self.assertEqual(rgba5551_to_rgba(0xFFFF), (255, 255, 255, 255))

    def test_AlphaBitOnly(self):
        self.assertEqual(rgba5551_to_rgba(0x0001), (0, 0, 0, 255))

    def test_Zero(self):
        self.assertEqual(rgba5551_to_rgba(0x0000), (0, 0, 0, 0))

    def test_ChannelPositions(self):
        self.assertEqual(rgba5551_to_rgba(0xF800), (255, 0, 0, 0))
        self.assertEqual(rgba5551_to_rgba(0x07C0), (0, 255, 0, 0))
        self.assertEqual(rgba5551_to_rgba(0x003E), (0, 0, 255, 0))

    def test_MidValueRounds(self):
        # (16 * 255 + 15) // 31
        self.assertEqual(rgba5551_to_rgba(16 << 11)[0], 132)


class MasterPaletteTests(TestCase):
    def test_ParseReadsBigEndianWords(self):
        buf = b"\x00\x00" + struct.pack(">HH", 0xF801, 0x0001)
        pal = parse_palette(buf, 2, index=5, count=2)
        self.assertEqual(pal.index, 5)
        self.assertEqual(pal.colors, [(255, 0, 0, 255), (0, 0, 0, 255)])

    def test_ParsePastEnd(self):
        with self.assertRaises(InvalidRecordBoundsError):
            parse_palette(b"\x00" * 10, 0)

    def test_ArrayIsPaddedTo256Entries(self):
        pal = MasterPalette(0, [(1, 2, 3, 4), (5, 6, 7, 8)])
        table = pal.as_array()
        self.assertEqual(table.shape, (256, 4))
        self.assertEqual(tuple(table[1]), (5, 6, 7, 8))
        self.assertEqual(tuple(table[200]), (0, 0, 0, 0))

    def test_PreviewAndStrip(self):
        pal = MasterPalette(0, [(i, i, i, 255) for i in range(256)])
        self.assertEqual(len(preview_colors(pal)), 16)
        img = palette_image(pal.colors)
        self.assertEqual(img.size, (256, 1))
        self.assertEqual(img.mode, "RGBA")
        self.assertEqual(img.getpixel((17, 0)), (17, 17, 17, 255))
