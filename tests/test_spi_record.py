import struct
from unittest import TestCase

from spi_errors import UnrecognizedMagicError, InvalidRecordBoundsError
from spi_record import HEADER_SIZE, MAGIC_SPI1, pack_record, parse_header, parse_record


def raw_record(magic, target, control, side, literal):
    return (magic + struct.pack(">IIII", target, len(control), len(side), len(literal))
            + control + side + literal)


class RecordParseTests(TestCase):
    def test_HeaderFieldsAreBigEndian(self):
        buf = raw_record(b"SPI1", 0x1234, b"\x01", b"\x02\x03", b"\x04\x05\x06")
        h = parse_header(buf)
        self.assertEqual(HEADER_SIZE, 20)
        self.assertEqual(h.magic, b"SPI1")
        self.assertEqual((h.target_length, h.len_control, h.len_side, h.len_literal), (0x1234, 1, 2, 3))

    def test_SlicesFollowControlSideLiteralOrder(self):
        buf = b"\xEE" * 7 + raw_record(b"SPI0", 9, b"\x01", b"\x02\x03", b"\x04\x05\x06") + b"junk"
        rec = parse_record(buf, 7)
        self.assertEqual(rec.slices(), (b"\x01", b"\x02\x03", b"\x04\x05\x06"))
        self.assertEqual(rec.byte_size, HEADER_SIZE + 6)

    def test_UnknownMagic(self):
        with self.assertRaises(UnrecognizedMagicError):
            parse_record(raw_record(b"SPI2", 1, b"", b"", b""))

    def test_PayloadPastEndOfBuffer(self):
        buf = raw_record(b"SPI1", 4, b"\x01", b"\x02", b"\x03\x04")
        with self.assertRaises(InvalidRecordBoundsError):
            parse_record(buf[:-1])

    def test_HeaderPastEndOfBuffer(self):
        with self.assertRaises(InvalidRecordBoundsError):
            parse_record(b"SPI1\x00\x00")

    def test_PackedRecordMatchesOnDiskLayout(self):
        rec = pack_record(MAGIC_SPI1, 3, b"\xC0", b"\x12", b"\x07\x08")
        self.assertEqual(rec.to_bytes(), raw_record(b"SPI1", 3, b"\xC0", b"\x12", b"\x07\x08"))
        self.assertEqual(parse_record(rec.to_bytes()), rec)

    def test_PackRejectsUnknownMagic(self):
        with self.assertRaises(UnrecognizedMagicError):
            pack_record(b"LZ77", 0, b"", b"", b"")
