#!/usr/bin/env python3
#
# Self tests for pgpacket.registry.
#

''' Unit tests for the pgpacket.registry module.
'''

import sys
import unittest

from cs.logutils import setup_logging
from icontract import ViolationError

from .framing import RawBody
from .grammar import RecordBody, grammarclass
from .registry import RecordType, TypeRegistry
from .rules import UIntBE
from .subpackets import SUBPACKET_TYPES, KeyExpirationTime
from .packets import PACKET_TYPES

@grammarclass
class Small(RecordBody):
  n: UIntBE(1)

class TestTypeRegistry(unittest.TestCase):
  ''' Tests for `TypeRegistry`.
  '''

  def setUp(self):
    self.registry = TypeRegistry('test record', RawBody, 15)

  def test_register_and_lookup(self):
    R = self.registry
    R.register(3, 'small')(Small)
    self.assertIn(3, R)
    self.assertEqual(len(R), 1)
    self.assertEqual(list(R), [3])
    record_type = R.lookup(3)
    self.assertIsInstance(record_type, RecordType)
    self.assertEqual(record_type, RecordType(3, 'small', Small))
    self.assertIs(R[3], record_type)
    self.assertEqual(Small.TYPE, 3)
    self.assertEqual(Small.NAME, 'small')
    self.assertIs(record_type.grammar, Small.GRAMMAR)
    self.assertEqual(record_type.constructor, Small.parse)
    self.assertIs(record_type.serializer, Small.transcribe)

  def test_fallback(self):
    R = self.registry
    fallback = R.lookup(7)
    self.assertIs(fallback.body_class, RawBody)
    self.assertIsNone(fallback.discriminator)
    self.assertIs(R.lookup(8), fallback)
    self.assertNotIn(7, R)

  def test_duplicate(self):
    R = self.registry
    R.register(3)(Small)
    with self.assertRaises(ValueError):
      R.register(3)

  def test_range(self):
    R = self.registry
    with self.assertRaises(ViolationError):
      R.register(16)
    with self.assertRaises(ViolationError):
      R.register(-1)

  def test_freeze(self):
    R = self.registry
    R.register(1)(Small)
    R.freeze()
    self.assertTrue(R.frozen)
    with self.assertRaises(RuntimeError):
      R.register(2)
    with self.assertRaises(TypeError):
      R._types[2] = R.lookup(1)
    self.assertEqual(list(R), [1])
    # freezing again is harmless
    R.freeze()

class TestCatalogueRegistries(unittest.TestCase):
  ''' Tests for the subpacket and packet registries.
  '''

  def test_lookup_idempotent(self):
    for registry in SUBPACKET_TYPES, PACKET_TYPES:
      for discriminator in list(registry) + [0, registry.max_discriminator]:
        with self.subTest(registry=registry.name, discriminator=discriminator):
          first = registry.lookup(discriminator)
          for _ in range(3):
            again = registry.lookup(discriminator)
            self.assertIs(again, first)
            self.assertIs(again.constructor.__func__, first.constructor.__func__)

  def test_catalogue(self):
    self.assertEqual(
        sorted(SUBPACKET_TYPES),
        [
            2, 3, 4, 5, 6, 7, 9, 11, 12, 16, 20, 21, 22, 23, 24, 25, 26, 27,
            28, 29, 30, 31, 32, 33
        ],
    )
    self.assertEqual(sorted(PACKET_TYPES), [2, 3, 10, 12, 13])
    self.assertIs(SUBPACKET_TYPES[9].body_class, KeyExpirationTime)
    self.assertEqual(SUBPACKET_TYPES[9].name, 'key expiration time')

def selftest(argv):
  ''' Run the unit tests.
  '''
  setup_logging()
  unittest.main(__name__, None, argv)

if __name__ == '__main__':
  selftest(sys.argv)
