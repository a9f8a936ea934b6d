#!/usr/bin/env python3
#
# Secure buffer allocation for sensitive decoded fields.
#

''' The secure allocator used for sensitive decoded fields.

    Parsers do not decide allocation policy; a rule marked `secure=True`
    asks the buffer's `allocator` for a `bytearray` and copies the field
    into it. The allocator may refuse, in which case `AllocationFailure`
    propagates to the caller of the decode like any other error.

    As with the classic `xmalloc_secure` contract, an allocator may
    have an out of core handler. It is called as
    `outofcore_handler(size, flags)` when an allocation would exceed the
    allocator's `limit`; bit 0 of `flags` is set for secure memory.
    If the handler returns true the allocation is retried,
    presumably because it released something;
    otherwise `AllocationFailure` is raised.
'''

from threading import Lock

from cs.logutils import debug

from .errors import AllocationFailure

ALLOC_FLAG_SECURE = 0x01

class SecureAllocator:
  ''' An accounting allocator for sensitive buffers.

      Buffers are plain `bytearray`s which are zeroed when freed.
      The accounting is protected by a `Lock` but the out of core
      handler is always called with the lock released, so that a
      handler (or a progress hook it calls) may use this allocator itself.
  '''

  def __init__(self, *, limit=None, outofcore_handler=None):
    ''' Initialise the allocator.

        Parameters:
        * `limit`: optional maximum number of bytes outstanding at once;
          the default `None` means no limit
        * `outofcore_handler`: optional callable `(size,flags)->bool`
          called when an allocation would exceed `limit`
    '''
    if limit is not None and limit < 0:
      raise ValueError(f'{limit=} must be >= 0')
    self.limit = limit
    self.outofcore_handler = outofcore_handler
    self.in_use = 0
    self._lock = Lock()

  def __str__(self):
    return f'{self.__class__.__name__}(in_use={self.in_use},limit={self.limit})'

  def _try_reserve(self, size):
    with self._lock:
      if self.limit is not None and self.in_use + size > self.limit:
        return False
      self.in_use += size
      return True

  def allocate(self, size: int) -> bytearray:
    ''' Allocate a zeroed `bytearray` of `size` bytes.
        Raise `AllocationFailure` if the allocation cannot be satisfied
        and the out of core handler (if any) declines to help.
    '''
    if size < 0:
      raise ValueError(f'{size=} must be >= 0')
    while not self._try_reserve(size):
      handler = self.outofcore_handler
      if handler is None or not handler(size, ALLOC_FLAG_SECURE):
        raise AllocationFailure(size, secure=True)
      debug("%s: out of core handler released memory, retrying", self)
    return bytearray(size)

  def free(self, buf: bytearray):
    ''' Zero `buf` and return its size to the allocator.
    '''
    size = len(buf)
    buf[:] = bytes(size)
    with self._lock:
      self.in_use = max(0, self.in_use - size)

# the allocator used when a ParseBuffer does not supply one
DEFAULT_ALLOCATOR = SecureAllocator()
