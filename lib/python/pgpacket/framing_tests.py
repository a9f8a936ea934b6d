#!/usr/bin/env python3
#
# Self tests for pgpacket.framing.
#

''' Unit tests for the pgpacket.framing module:
    length encodings, headers and the record pipeline.
'''

import sys
import unittest

from cs.logutils import setup_logging

from .buffer import ParseBuffer
from .errors import Malformed, TrailingData, Truncated
from .framing import (
    FIVE_OCTET,
    INDETERMINATE,
    OLD_ONE_OCTET,
    OLD_TWO_OCTET,
    ONE_OCTET,
    PACKET_LENGTH,
    PARTIAL,
    SUBPACKET_LENGTH,
    TWO_OCTET,
    PacketHeader,
    RawBody,
    SubpacketHeader,
)
from .packets import Packet, Trust, UserID
from .subpackets import Issuer, KeyExpirationTime, Subpacket

KET = b'\x05\x09\x00\x01\x51\x80'
KET_TOO_LARGE = b'\x06\x09\x00\x01\x51\x80\x00'
ISSUER = b'\x09\x10\x01\x23\x45\x67\x89\xab\xcd\xef'

class TestNewFormatLength(unittest.TestCase):
  ''' Tests for the new format length encodings.
  '''

  def test_subpacket_lengths(self):
    for bs, expected in (
        (b'\x05', (5, ONE_OCTET)),
        (b'\xbf', (191, ONE_OCTET)),
        (b'\xc0\x00', (192, TWO_OCTET)),
        (b'\xc3\x28', (1000, TWO_OCTET)),
        (b'\xfe\xff', (16319, TWO_OCTET)),
        (b'\xff\x00\x00\x01\x00', (256, FIVE_OCTET)),
    ):
      with self.subTest(bs=bs):
        bfr = ParseBuffer.from_bytes(bs)
        self.assertEqual(SUBPACKET_LENGTH.match(bfr), expected)
        self.assertTrue(bfr.at_eof())
        self.assertEqual(SUBPACKET_LENGTH.transcribe_value(expected), bs)

  def test_packet_partial_lengths(self):
    for bs, expected in (
        (b'\xe0', (1, PARTIAL)),
        (b'\xe1', (2, PARTIAL)),
        (b'\xe9', (512, PARTIAL)),
        (b'\xdf\xff', (8383, TWO_OCTET)),
    ):
      with self.subTest(bs=bs):
        self.assertEqual(
            PACKET_LENGTH.match(ParseBuffer.from_bytes(bs)), expected
        )
        self.assertEqual(PACKET_LENGTH.transcribe_value(expected), bs)

  def test_truncated_length(self):
    for bs in b'', b'\xc3', b'\xff\x00\x00':
      with self.subTest(bs=bs):
        with self.assertRaises(Truncated) as cm:
          SUBPACKET_LENGTH.match(ParseBuffer.from_bytes(bs))
        self.assertEqual(cm.exception.position, 0)
        self.assertEqual(
            cm.exception.rule_message, "subpacket length is truncated"
        )

  def test_shortest_form(self):
    self.assertEqual(SUBPACKET_LENGTH.form_for(191), ONE_OCTET)
    self.assertEqual(SUBPACKET_LENGTH.form_for(192), TWO_OCTET)
    self.assertEqual(SUBPACKET_LENGTH.form_for(16319), TWO_OCTET)
    self.assertEqual(SUBPACKET_LENGTH.form_for(16320), FIVE_OCTET)
    self.assertEqual(PACKET_LENGTH.form_for(8384), FIVE_OCTET)
    # an existing form is kept if it can still express the length
    self.assertEqual(SUBPACKET_LENGTH.form_for(5, FIVE_OCTET), FIVE_OCTET)
    self.assertEqual(SUBPACKET_LENGTH.form_for(5, TWO_OCTET), ONE_OCTET)
    with self.assertRaises(ValueError):
      SUBPACKET_LENGTH.form_for(1 << 32)

class TestSubpacketFraming(unittest.TestCase):
  ''' Tests for `SubpacketHeader` and `Subpacket` framing.
  '''

  def test_header(self):
    header = SubpacketHeader.from_bytes(b'\x05\x89')
    self.assertEqual(header.type, 9)
    self.assertTrue(header.critical)
    self.assertEqual(header.length, 5)
    self.assertEqual(header.body_length, 4)
    self.assertEqual(bytes(header), b'\x05\x89')

  def test_zero_length(self):
    with self.assertRaises(Malformed) as cm:
      Subpacket.from_bytes(b'\x00\x09')
    e = cm.exception
    self.assertEqual(e.position, 0)
    self.assertEqual(e.record_offset, 0)
    self.assertIsNone(e.end_offset)

  def test_missing_type(self):
    with self.assertRaises(Truncated) as cm:
      Subpacket.from_bytes(b'\x05')
    self.assertEqual(cm.exception.rule_message, "subpacket type is missing")
    self.assertEqual(cm.exception.position, 1)

  def test_key_expiration(self):
    sp = Subpacket.from_bytes(KET)
    self.assertEqual(sp.type, 9)
    self.assertFalse(sp.critical)
    self.assertEqual(sp.name, 'key expiration time')
    self.assertEqual(sp.body, KeyExpirationTime(86400))
    self.assertEqual(sp.offset, 0)
    self.assertEqual(sp.end_offset, 6)
    self.assertEqual(bytes(sp), KET)

  def test_body_too_large(self):
    with self.assertRaises(TrailingData) as cm:
      Subpacket.from_bytes(KET_TOO_LARGE)
    e = cm.exception
    self.assertEqual(e.rule_message, "key expiration time subpacket is too large")
    self.assertEqual(e.position, 6)
    self.assertEqual(e.record_offset, 0)
    self.assertEqual(e.end_offset, 7)
    self.assertIn('Subpacket[9]', str(e))

  def test_body_too_short(self):
    with self.assertRaises(Truncated) as cm:
      Subpacket.from_bytes(b'\x04\x09\x00\x01\x51')
    e = cm.exception
    self.assertEqual(e.rule_message, "key expiration time subpacket is invalid")
    self.assertEqual(e.position, 2)
    self.assertEqual(e.end_offset, 5)

  def test_empty_body(self):
    with self.assertRaises(Truncated) as cm:
      Subpacket.from_bytes(b'\x01\x09')
    e = cm.exception
    self.assertEqual(e.rule_message, "key expiration time subpacket is invalid")
    self.assertEqual(e.position, 2)

  def test_body_beyond_input(self):
    with self.assertRaises(Truncated) as cm:
      Subpacket.from_bytes(b'\x08\x09\x00\x01\x51\x80')
    self.assertIsNone(cm.exception.end_offset)

  def test_noncanonical_length_survives(self):
    bs = b'\xff\x00\x00\x00\x05\x09\x00\x01\x51\x80'
    sp = Subpacket.from_bytes(bs)
    self.assertEqual(sp.header.length_form, FIVE_OCTET)
    self.assertEqual(bytes(sp), bs)

  def test_unknown_type_survives(self):
    bs = b'\x03\x64\xab\xcd'
    sp = Subpacket.from_bytes(bs)
    self.assertEqual(sp.type, 100)
    self.assertIsInstance(sp.body, RawBody)
    self.assertEqual(sp.body.data, b'\xab\xcd')
    self.assertEqual(sp.name, 'unknown signature subpacket')
    self.assertEqual(bytes(sp), bs)

  def test_from_body(self):
    sp = Subpacket.from_body(KeyExpirationTime(86400))
    self.assertEqual(bytes(sp), KET)
    sp = Subpacket.from_body(KeyExpirationTime(86400), critical=True)
    self.assertEqual(bytes(sp), b'\x05\x89\x00\x01\x51\x80')
    sp = Subpacket.from_body(RawBody(b'\xab\xcd'), type=100)
    self.assertEqual(bytes(sp), b'\x03\x64\xab\xcd')
    with self.assertRaises(ValueError):
      Subpacket.from_body(RawBody(b''))

  def test_long_body(self):
    body = RawBody(bytes(300))
    sp = Subpacket.from_body(body, type=100)
    bs = bytes(sp)
    self.assertEqual(sp.header.length_form, TWO_OCTET)
    self.assertEqual(bs[:3], b'\xc0\x6d\x64')
    self.assertEqual(Subpacket.from_bytes(bs).body, body)

class TestRecordEquality(unittest.TestCase):
  ''' Tests for record equality.
  '''

  def test_critical_bit_distinguishes(self):
    plain = Subpacket.from_bytes(KET)
    critical = Subpacket.from_bytes(b'\x05\x89\x00\x01\x51\x80')
    self.assertEqual(plain.body, critical.body)
    self.assertNotEqual(plain, critical)
    self.assertNotEqual(plain.header, critical.header)
    self.assertEqual(plain, Subpacket.from_bytes(KET))

  def test_length_form_does_not_distinguish(self):
    self.assertEqual(
        Subpacket.from_bytes(KET),
        Subpacket.from_bytes(b'\xff\x00\x00\x00\x05\x09\x00\x01\x51\x80'),
    )
    self.assertEqual(
        Packet.from_bytes(b'\xcd\x05Alice'),
        Packet.from_bytes(b'\xcd\xff\x00\x00\x00\x05Alice'),
    )

  def test_packet_format_distinguishes(self):
    new = Packet.from_bytes(b'\xcd\x05Alice')
    old = Packet.from_bytes(b'\xb4\x05Alice')
    self.assertEqual(new.body, old.body)
    self.assertNotEqual(new, old)

class TestScan(unittest.TestCase):
  ''' Tests for scanning streams of records.
  '''

  def test_scan(self):
    subpackets = list(Subpacket.scan(KET + ISSUER))
    self.assertEqual(len(subpackets), 2)
    self.assertIsInstance(subpackets[1].body, Issuer)

  def test_scan_raises(self):
    with self.assertRaises(TrailingData):
      list(Subpacket.scan(KET + KET_TOO_LARGE + ISSUER))

  def test_error_locality(self):
    results = list(
        Subpacket.scan(KET + KET_TOO_LARGE + ISSUER, skip_errors=True)
    )
    self.assertEqual(len(results), 3)
    ok1, bad, ok2 = results
    self.assertTrue(ok1.ok)
    self.assertEqual(ok1.value.body.expiration, 86400)
    self.assertEqual((ok1.offset, ok1.end_offset), (0, 6))
    self.assertFalse(bad.ok)
    self.assertIsNone(bad.value)
    self.assertIsInstance(bad.error, TrailingData)
    self.assertEqual((bad.offset, bad.end_offset), (6, 13))
    self.assertEqual(bad.error.position, 12)
    self.assertTrue(ok2.ok)
    self.assertEqual(ok2.value.body.key_id, b'\x01\x23\x45\x67\x89\xab\xcd\xef')
    self.assertEqual(bytes(ok2.value), ISSUER)

  def test_header_failure_stops_scan(self):
    results = list(Subpacket.scan(KET + b'\x00' + ISSUER, skip_errors=True))
    self.assertEqual(len(results), 2)
    self.assertTrue(results[0].ok)
    self.assertIsInstance(results[1].error, Malformed)
    self.assertIsNone(results[1].end_offset)

class TestPacketFraming(unittest.TestCase):
  ''' Tests for `PacketHeader` and `Packet` framing.
  '''

  def test_new_format(self):
    bs = b'\xcd\x05Alice'
    P = Packet.from_bytes(bs)
    self.assertEqual(P.tag, 13)
    self.assertTrue(P.header.new_format)
    self.assertEqual(P.body, UserID('Alice'))
    self.assertEqual(bytes(P), bs)

  def test_old_formats(self):
    for bs, length_form in (
        (b'\xb4\x05Alice', OLD_ONE_OCTET),
        (b'\xb5\x00\x05Alice', OLD_TWO_OCTET),
        (b'\xb7Alice', INDETERMINATE),
    ):
      with self.subTest(bs=bs):
        P = Packet.from_bytes(bs)
        self.assertEqual(P.tag, 13)
        self.assertFalse(P.header.new_format)
        self.assertEqual(P.header.length_form, length_form)
        self.assertEqual(P.body.user_id, 'Alice')
        self.assertEqual(bytes(P), bs)

  def test_tag_bit7_clear(self):
    with self.assertRaises(Malformed) as cm:
      Packet.from_bytes(b'\x4d\x05Alice')
    self.assertEqual(cm.exception.position, 0)
    self.assertIsNone(cm.exception.end_offset)

  def test_reserved_tag(self):
    for bs in b'\xc0\x00', b'\x80\x00':
      with self.subTest(bs=bs):
        with self.assertRaises(Malformed):
          Packet.from_bytes(bs)

  def test_partial_body(self):
    bs = b'\xcd\xe1Al\xe0i\x02ce'
    P = Packet.from_bytes(bs)
    self.assertEqual(P.body.user_id, 'Alice')
    self.assertEqual(P.header.length_form, PARTIAL)
    self.assertEqual(
        P.header.chunks, ((2, PARTIAL), (1, PARTIAL), (2, ONE_OCTET))
    )
    self.assertEqual(P.header.length, 5)
    self.assertEqual(P.end_offset, len(bs))
    self.assertEqual(bytes(P), bs)
    # a changed body reverts to a definite length
    P.body = UserID('Bob')
    self.assertEqual(bytes(P), b'\xcd\x03Bob')

  def test_partial_body_truncated(self):
    with self.assertRaises(Truncated):
      Packet.from_bytes(b'\xcd\xe1Al\xe0')
    with self.assertRaises(Truncated):
      Packet.from_bytes(b'\xcd\xe2Al')

  def test_from_body(self):
    self.assertEqual(
        bytes(Packet.from_body(UserID('Alice'))), b'\xcd\x05Alice'
    )
    self.assertEqual(
        bytes(Packet.from_body(UserID('Alice'), new_format=False)),
        b'\xb4\x05Alice',
    )
    trust = Packet.from_body(Trust(bytes(200)))
    bs = bytes(trust)
    self.assertEqual(bs[:3], b'\xcc\xc0\x08')
    self.assertEqual(len(bs), 203)
    with self.assertRaises(ValueError):
      PacketHeader(20, new_format=False)

  def test_changed_old_length(self):
    P = Packet.from_bytes(b'\xb4\x05Alice')
    P.body = UserID('A' * 300)
    bs = bytes(P)
    self.assertEqual(P.header.length_form, OLD_TWO_OCTET)
    self.assertEqual(bs[:3], b'\xb5\x01\x2c')

  def test_unknown_tag_survives(self):
    bs = b'\xd1\x03\x01\x02\x03'
    P = Packet.from_bytes(bs)
    self.assertEqual(P.tag, 17)
    self.assertIsInstance(P.body, RawBody)
    self.assertEqual(bytes(P), bs)

def selftest(argv):
  ''' Run the unit tests.
  '''
  setup_logging()
  unittest.main(__name__, None, argv)

if __name__ == '__main__':
  selftest(sys.argv)
