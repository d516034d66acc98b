from unittest import TestCase

from spi_errors import TruncatedError, InvalidBackReferenceError, UnrecognizedMagicError
from spi_record import MAGIC_SPI0, MAGIC_SPI1, pack_record
from spi_decompress import (BitCursor, ByteCursor, ControlBit, NibbleCursor, WorkingPalette,
                            copy_back_reference, decompress, decompress_spi0, decompress_spi1)

SET, CLEAR, EXHAUSTED = ControlBit.SET, ControlBit.CLEAR, ControlBit.EXHAUSTED


def spi1(target, control, side=b"", literal=b""):
    return pack_record(MAGIC_SPI1, target, control, side, literal)


class BitCursorTests(TestCase):
    def test_ReadsMostSignificantBitFirst(self):
        cur = BitCursor(b"\xA0")
        bits = [cur.next_bit() for _ in range(8)]
        self.assertEqual(bits, [SET, CLEAR, SET, CLEAR, CLEAR, CLEAR, CLEAR, CLEAR])

    def test_ExhaustedAfterLastByteAndStaysExhausted(self):
        cur = BitCursor(b"\xFF\x00")
        for _ in range(16):
            self.assertIsNot(cur.next_bit(), EXHAUSTED)
        self.assertIs(cur.next_bit(), EXHAUSTED)
        self.assertIs(cur.next_bit(), EXHAUSTED)

    def test_EmptyBufferIsExhausted(self):
        self.assertIs(BitCursor(b"").next_bit(), EXHAUSTED)


class NibbleCursorTests(TestCase):
    def test_HighNibbleThenLowNibble(self):
        cur = NibbleCursor(b"\x12\x34")
        self.assertEqual(cur.next_nibble(), 1)
        self.assertEqual(cur.position, 0)
        self.assertEqual(cur.phase, NibbleCursor.AWAITING_LOW)
        self.assertEqual(cur.next_nibble(), 2)
        self.assertEqual(cur.position, 1)
        self.assertEqual([cur.next_nibble(), cur.next_nibble()], [3, 4])

    def test_PastEndIsTruncated(self):
        cur = NibbleCursor(b"\x12")
        cur.next_nibble()
        cur.next_nibble()
        with self.assertRaises(TruncatedError) as ctx:
            cur.next_nibble()
        self.assertEqual(ctx.exception.buffer_name, "side")


class WorkingPaletteTests(TestCase):
    def test_StartsAsIdentity(self):
        pal = WorkingPalette()
        self.assertEqual([pal[i] for i in range(16)], list(range(16)))

    def test_LoadsCycleThroughAllSlotsFromZero(self):
        pal = WorkingPalette()
        slots = [pal.load(0x80 + i) for i in range(20)]
        self.assertEqual(slots, list(range(16)) + [0, 1, 2, 3])
        self.assertEqual(pal[0], 0x80 + 16)
        self.assertEqual(pal[15], 0x80 + 15)


class BackReferenceTests(TestCase):
    def test_DistanceOneRepeatsLastByte(self):
        out = bytearray(b"\x07\x09")
        run = copy_back_reference(ByteCursor(b"\x30\x00"), out)
        self.assertEqual(run, 6)
        self.assertEqual(out, b"\x07\x09" + b"\x09" * 6)

    def test_HighNibbleAddsWholePages(self):
        out = bytearray(range(256)) + bytearray(44)
        copy_back_reference(ByteCursor(b"\x01\x00"), out)
        # distance 0x100 + 0 + 1 from length 300
        self.assertEqual(list(out[300:]), [43, 44, 45])

    def test_EscapeExtendsCount(self):
        out = bytearray(b"\x05")
        lit = ByteCursor(b"\xF0\x00\xFF\xFF\x02\xAA")
        run = copy_back_reference(lit, out)
        self.assertEqual(run, 15 + 255 + 255 + 2 + 3)
        self.assertEqual(len(out), 531)
        self.assertEqual(lit.position, 5)

    def test_DistancePastStartIsInvalid(self):
        with self.assertRaises(InvalidBackReferenceError):
            copy_back_reference(ByteCursor(b"\x01\x00"), bytearray(b"\x00"))

    def test_MissingDescriptorByteIsTruncated(self):
        with self.assertRaises(TruncatedError):
            copy_back_reference(ByteCursor(b"\x30"), bytearray(b"\x00"))


class DecompressSpi1Tests(TestCase):
    def test_PaletteLoadsThenIndexes(self):
        # 16 loads (bits 11), then two side lookups (bits 10 10)
        rec = spi1(18, b"\xFF" * 4 + b"\xA0", side=b"\x3F", literal=bytes(range(0x40, 0x50)))
        out = decompress_spi1(rec)
        self.assertEqual(out, bytes(range(0x40, 0x50)) + b"\x43\x4F")

    def test_SideIndexesUseIdentityPaletteBeforeAnyLoad(self):
        rec = spi1(2, b"\xAA", side=b"\x52")
        self.assertEqual(decompress_spi1(rec), b"\x05\x02")

    def test_OverlappingBackReference(self):
        # load 07, load 09, back-ref distance 2 run 3
        rec = spi1(5, b"\xF0", literal=b"\x07\x09\x00\x01")
        self.assertEqual(decompress_spi1(rec), b"\x07\x09\x07\x09\x07")

    def test_EscapedRunLength(self):
        rec = spi1(531, b"\xC0", literal=b"\x05\xF0\x00\xFF\xFF\x02")
        self.assertEqual(decompress_spi1(rec), b"\x05" * 531)

    def test_ExhaustedControlReturnsPrefix(self):
        rec = spi1(100, b"\xFF", literal=b"\x01\x02\x03\x04")
        out = decompress_spi1(rec)
        self.assertEqual(out, b"\x01\x02\x03\x04")

    def test_ExhaustedOnSecondBitStopsCleanly(self):
        # 11 0 11 11 | 1 then nothing
        rec = spi1(100, b"\xDF", literal=b"\x07\x00\x00\x08\x09")
        self.assertEqual(decompress_spi1(rec), b"\x07\x07\x07\x07\x08\x09")

    def test_StopsAtTargetLength(self):
        rec = spi1(2, b"\xFF", literal=b"\x01\x02\x03\x04")
        self.assertEqual(decompress_spi1(rec), b"\x01\x02")

    def test_RunMayOvershootTarget(self):
        rec = spi1(2, b"\xC0", literal=b"\x05\x30\x00")
        self.assertEqual(len(decompress_spi1(rec)), 7)

    def test_TruncatedLiteral(self):
        with self.assertRaises(TruncatedError) as ctx:
            decompress_spi1(spi1(4, b"\xC0"))
        self.assertEqual(ctx.exception.buffer_name, "literal")

    def test_TruncatedSide(self):
        with self.assertRaises(TruncatedError):
            decompress_spi1(spi1(4, b"\x80"))

    def test_BackReferenceBeforeAnyOutput(self):
        with self.assertRaises(InvalidBackReferenceError):
            decompress_spi1(spi1(4, b"\x00", literal=b"\x00\x00"))

    def test_RejectsSpi0(self):
        with self.assertRaises(UnrecognizedMagicError):
            decompress_spi1(pack_record(MAGIC_SPI0, 1, b"\x80", b"", b"\x01"))


class DecompressSpi0Tests(TestCase):
    def test_LiteralsAndBackReference(self):
        rec = pack_record(MAGIC_SPI0, 5, b"\xC0", b"\xEE", b"\x0A\x0B\x00\x01")
        self.assertEqual(decompress_spi0(rec), b"\x0A\x0B\x0A\x0B\x0A")

    def test_DispatchByMagic(self):
        rec0 = pack_record(MAGIC_SPI0, 2, b"\xC0", b"", b"\x0A\x0B")
        rec1 = spi1(2, b"\xF0", literal=b"\x0A\x0B")
        self.assertEqual(decompress(rec0), b"\x0A\x0B")
        self.assertEqual(decompress(rec1), b"\x0A\x0B")
