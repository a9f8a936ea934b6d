#!/usr/bin/env python3
#
# Self tests for pgpacket.secmem.
#

''' Unit tests for the pgpacket.secmem module.
'''

import sys
from threading import Thread
import unittest

from cs.logutils import setup_logging

from .errors import AllocationFailure
from .secmem import ALLOC_FLAG_SECURE, SecureAllocator

class TestSecureAllocator(unittest.TestCase):
  ''' Tests for `SecureAllocator`.
  '''

  def test_allocate_free(self):
    allocator = SecureAllocator()
    buf = allocator.allocate(8)
    self.assertEqual(buf, bytearray(8))
    self.assertEqual(allocator.in_use, 8)
    buf[:] = b'secret!!'
    allocator.free(buf)
    self.assertEqual(buf, bytes(8))
    self.assertEqual(allocator.in_use, 0)

  def test_bad_sizes(self):
    with self.assertRaises(ValueError):
      SecureAllocator(limit=-1)
    with self.assertRaises(ValueError):
      SecureAllocator().allocate(-1)

  def test_limit_without_handler(self):
    allocator = SecureAllocator(limit=10)
    allocator.allocate(6)
    with self.assertRaises(AllocationFailure) as cm:
      allocator.allocate(6)
    e = cm.exception
    self.assertIsInstance(e, MemoryError)
    self.assertEqual(e.size, 6)
    self.assertEqual(e.kind, 'allocation-failure')
    self.assertEqual(allocator.in_use, 6)

  def test_handler_declines(self):
    calls = []

    def handler(size, flags):
      calls.append((size, flags))
      return False

    allocator = SecureAllocator(limit=4, outofcore_handler=handler)
    with self.assertRaises(AllocationFailure):
      allocator.allocate(5)
    self.assertEqual(calls, [(5, ALLOC_FLAG_SECURE)])

  def test_handler_retries(self):
    allocator = SecureAllocator(limit=10)
    held = [allocator.allocate(4), allocator.allocate(4)]

    def handler(size, flags):
      if not held:
        return False
      allocator.free(held.pop())
      return True

    allocator.outofcore_handler = handler
    buf = allocator.allocate(10)
    self.assertEqual(len(buf), 10)
    self.assertEqual(held, [])
    self.assertEqual(allocator.in_use, 10)

  def test_handler_may_reenter(self):
    allocator = SecureAllocator(limit=4)

    def handler(size, flags):
      # the lock is released while the handler runs
      self.assertEqual(allocator.allocate(0), bytearray())
      allocator.limit = size
      return True

    allocator.outofcore_handler = handler
    self.assertEqual(len(allocator.allocate(8)), 8)

  def test_threads(self):
    allocator = SecureAllocator()

    def churn():
      for _ in range(200):
        allocator.free(allocator.allocate(16))

    threads = [Thread(target=churn) for _ in range(4)]
    for T in threads:
      T.start()
    for T in threads:
      T.join()
    self.assertEqual(allocator.in_use, 0)

def selftest(argv):
  ''' Run the unit tests.
  '''
  setup_logging()
  unittest.main(__name__, None, argv)

if __name__ == '__main__':
  selftest(sys.argv)
