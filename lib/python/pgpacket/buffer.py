#!/usr/bin/env python3
#
# The parse buffer: a read only view of the input with a read offset.
#

''' `ParseBuffer`, the input cursor used by all the grammar rules.

    A `ParseBuffer` is a read only `memoryview` of some input bytes
    with a current `offset` and a bounding `end_offset`.
    Rules consume from it with `.take()` and friends, which advance
    the offset; a request for more bytes than remain before
    `end_offset` raises `Truncated` and consumes nothing.

    Record bodies are parsed from bounded views made with
    `.bounded()` or the `.subbuffer()` context manager, so that
    a rule can never read past the declared end of its record.
'''

from contextlib import contextmanager
from typing import Optional

from cs.deco import Promotable
from cs.lex import cropped_repr

from .errors import Truncated

class ParseBuffer(Promotable):
  ''' A read only view of some binary data with a read position.

      Attributes:
      * `offset`: the current read offset; offsets are absolute
        positions in the underlying data, so that bounded views
        report positions in the same ordinates as their parent
      * `end_offset`: the offset of the end of the readable data
      * `allocator`: an optional `SecureAllocator` for sensitive fields,
        inherited by bounded views
      * `codec`: an optional `Codec` whose configuration applies
        to records parsed from this buffer, inherited by bounded views

      Example:

          >>> bfr = ParseBuffer.from_bytes(b'\\x00\\x01\\x51\\x80tail')
          >>> bfr.take(4)
          b'\\x00\\x01Q\\x80'
          >>> bfr.offset, bfr.remaining()
          (4, 4)
          >>> bfr.take(5)
          Traceback (most recent call last):
              ...
          pgpacket.errors.Truncated: insufficient input data, wanted 5 bytes but only found 4 (offset 4)
  '''

  def __init__(
      self,
      data,
      offset: int = 0,
      end_offset: Optional[int] = None,
      *,
      allocator=None,
      codec=None,
  ):
    ''' Initialise the buffer from the bytes-like `data`.

        Parameters:
        * `data`: a bytes-like object; the buffer keeps a read only
          `memoryview` of it and never modifies it
        * `offset`: the initial read offset, default `0`
        * `end_offset`: the end of the readable data,
          default the length of `data`
        * `allocator`: optional secure allocator for sensitive fields
        * `codec`: optional `Codec` configuring record parsing
    '''
    view = memoryview(data)
    if view.ndim != 1 or view.itemsize != 1:
      view = view.cast('B')
    self._view = view.toreadonly()
    if end_offset is None:
      end_offset = len(self._view)
    if not 0 <= offset <= end_offset <= len(self._view):
      raise ValueError(
          f'invalid {offset=}, {end_offset=} for {len(self._view)} bytes of data'
      )
    self.offset = offset
    self.end_offset = end_offset
    self.allocator = allocator
    self.codec = codec

  def __str__(self):
    return f'{self.__class__.__name__}(offset:{self.offset}:{self.end_offset})'

  def __repr__(self):
    return "%s(offset=%d,end_offset=%d,next=%s)" % (
        self.__class__.__name__,
        self.offset,
        self.end_offset,
        cropped_repr(bytes(self._view[self.offset:self.offset + 16])),
    )

  @classmethod
  def from_bytes(cls, bs, offset=0, length=None, **kw):
    ''' Return a `ParseBuffer` over the bytes `bs`
        starting at `offset` and ending after `length`.

        Parameters:
        * `bs`: the bytes
        * `offset`: a starting position for the data, default `0`
        * `length`: the number of bytes to use;
          default: the number of bytes in `bs` after `offset`
        Other keyword arguments are passed to the buffer constructor.
    '''
    if offset < 0:
      raise ValueError(f'{offset=} should be >= 0')
    if offset > len(bs):
      raise ValueError(f'{offset=} beyond end of bs ({len(bs)} bytes)')
    if length is None:
      length = len(bs) - offset
    elif length < 0:
      raise ValueError(f'{length=} < 0')
    end_offset = offset + length
    if end_offset > len(bs):
      raise ValueError(f'{offset=}+{length=} > {len(bs)=}')
    return cls(bs, offset=offset, end_offset=end_offset, **kw)

  @classmethod
  def from_file(cls, f, **kw):
    ''' Return a `ParseBuffer` holding the remaining contents of
        the binary file `f`.
        The parse is synchronous, so the file is read in full up front.
    '''
    return cls(f.read(), **kw)

  @classmethod
  def from_filename(cls, filename: str, **kw):
    ''' Return a `ParseBuffer` holding the contents of the file `filename`.
    '''
    with open(filename, 'rb') as f:
      return cls.from_file(f, **kw)

  def __len__(self):
    ''' The length is the number of bytes remaining to be read.
    '''
    return self.end_offset - self.offset

  def __bool__(self):
    return self.offset < self.end_offset

  def __getitem__(self, index):
    ''' Return the byte at `index` relative to the current offset
        without consuming anything.
    '''
    if not 0 <= index < len(self):
      raise IndexError(f'index {index} out of range ({len(self)} remaining)')
    return self._view[self.offset + index]

  def position(self) -> int:
    ''' The current read offset, for diagnostics.
    '''
    return self.offset

  tell = position

  def remaining(self) -> int:
    ''' The number of bytes left before `end_offset`.
    '''
    return self.end_offset - self.offset

  def at_eof(self) -> bool:
    ''' Test whether the buffer is at the end of its readable data.
    '''
    return self.offset >= self.end_offset

  def _require(self, size):
    if size < 0:
      raise ValueError(f'{size=} must be >= 0')
    if size > self.end_offset - self.offset:
      raise Truncated(
          "insufficient input data, wanted %d bytes but only found %d" %
          (size, self.end_offset - self.offset),
          self.offset,
      )

  def peek(self, size=1) -> bytes:
    ''' Return the next `size` bytes without consuming them.
    '''
    self._require(size)
    return bytes(self._view[self.offset:self.offset + size])

  def take(self, size) -> bytes:
    ''' Consume and return the next `size` bytes as a new `bytes`.
        The returned bytes are a copy and do not alias the input.
    '''
    self._require(size)
    offset = self.offset
    bs = bytes(self._view[offset:offset + size])
    self.offset = offset + size
    return bs

  def takeview(self, size) -> memoryview:
    ''' Consume the next `size` bytes and return a read only
        `memoryview` of them, for callers which copy the data
        somewhere else themselves.
    '''
    self._require(size)
    offset = self.offset
    view = self._view[offset:offset + size]
    self.offset = offset + size
    return view

  def take_rest(self) -> bytes:
    ''' Consume and return all the remaining bytes.
    '''
    return self.take(self.end_offset - self.offset)

  def byte0(self) -> int:
    ''' Consume the leading byte and return it as an `int` (`0`..`255`).
    '''
    self._require(1)
    b = self._view[self.offset]
    self.offset += 1
    return b

  def skipto(self, new_offset):
    ''' Advance to position `new_offset`. Return the new offset.
    '''
    if new_offset < self.offset:
      raise ValueError(f'skipto: {new_offset=} < {self.offset=}')
    self._require(new_offset - self.offset)
    self.offset = new_offset
    return new_offset

  def skip(self, toskip):
    ''' Advance the position by `toskip` bytes. Return the new offset.
    '''
    return self.skipto(self.offset + toskip)

  def bounded(self, end_offset) -> "ParseBuffer":
    ''' Return a new `ParseBuffer` over the same data
        starting at the current offset and ending at `end_offset`.

        Note that `end_offset` is an absolute offset, not a length.
        If `end_offset` lies beyond the end of this buffer,
        raise `Truncated`: the bounded region is not all present.

        The new buffer shares the underlying data but has its own offset;
        consuming from it does not advance this buffer.
        See `subbuffer` for a context manager which does.

        Example:

            >>> bfr = ParseBuffer.from_bytes(b'abcdefghi')
            >>> bfr.take(2)
            b'ab'
            >>> subbfr = bfr.bounded(5)
            >>> subbfr.take(3)
            b'cde'
            >>> subbfr.at_eof(), bfr.offset
            (True, 2)
    '''
    if end_offset < self.offset:
      raise ValueError(f'bounded: {end_offset=} < {self.offset=}')
    self._require(end_offset - self.offset)
    return self.__class__(
        self._view,
        offset=self.offset,
        end_offset=end_offset,
        allocator=self.allocator,
        codec=self.codec,
    )

  def reframed(self, data) -> "ParseBuffer":
    ''' Return a new `ParseBuffer` over `data` with the same
        `allocator` and `codec` as this buffer.
        This is used for bodies which are reassembled from pieces
        and so are not a contiguous slice of the input.
    '''
    return self.__class__(data, allocator=self.allocator, codec=self.codec)

  @contextmanager
  def subbuffer(self, end_offset):
    ''' Context manager yielding a `.bounded(end_offset)` view
        and advancing this buffer to `end_offset` on successful exit,
        regardless of how much of the view was consumed.

        Example:

            with bfr.subbuffer(bfr.offset + body_length) as body_bfr:
                body = body_class.parse(body_bfr)
    '''
    subbfr = self.bounded(end_offset)
    yield subbfr
    self.offset = end_offset

  @classmethod
  def promote(cls, obj):
    ''' Promote `obj` to a `ParseBuffer`,
        used by the `@cs.deco.promote` decorator.

        Promotes:
        * `str`: assumed to be a filesystem pathname
        * `bytes` and bytes-like objects: binary data
        * has a `.read` method: assume a file open for binary read
    '''
    if isinstance(obj, cls):
      return obj
    if isinstance(obj, str):
      return cls.from_filename(obj)
    if isinstance(obj, (bytes, bytearray, memoryview)):
      return cls.from_bytes(obj)
    if hasattr(obj, 'read'):
      return cls.from_file(obj)
    raise TypeError(f'{cls.__name__}.promote: cannot promote {obj.__class__}')
