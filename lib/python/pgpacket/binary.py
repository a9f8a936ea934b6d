#!/usr/bin/env python3
#
# Base class for parsable and transcribable binary structures.
#

''' The `AbstractBinary` base class shared by every record,
    header and body in this package, and the `flatten` function
    which turns a transcription into `bytes`.

    The `.parse(cls,bfr)` class method reads binary data from a
    `ParseBuffer` and returns an instance.

    The `.transcribe(self)` method may be a regular function or a
    generator which returns or yields things which can be transcribed
    as bytes via the `flatten` function: `bytes`, `None`,
    other `AbstractBinary` instances, or iterables of these.
    The binary form of any instance is simply `bytes(instance)`.

    Naming conventions:
    - `parse`* methods parse a single instance from a buffer
    - `scan`* methods are generators yielding successive instances from a buffer
'''

from abc import ABC, abstractmethod
from typing import Iterable

from cs.deco import promote

from .buffer import ParseBuffer
from .errors import TrailingData

def flatten(transcription) -> Iterable[bytes]:
  ''' Flatten `transcription` into an iterable of bytes-like objects.
      None of the yielded objects will be empty.

      The supplied `transcription` may be any of the following:
      - `None`: yield nothing
      - an object with a `.transcribe` method: yield from
        `flatten(transcription.transcribe())`
      - a `bytes`, `bytearray` or `memoryview`: yield it if it is not empty
      - an iterable: yield from `flatten(item)` for each item in `transcription`

      This lets a `transcribe` method simply yield its fields in order:

          def transcribe(self):
              yield self.header
              yield self.body
  '''
  if transcription is None:
    pass
  elif hasattr(transcription, 'transcribe'):
    yield from flatten(transcription.transcribe())
  elif isinstance(transcription, (bytes, bytearray, memoryview)):
    if transcription:
      yield transcription
  elif isinstance(transcription, str):
    raise TypeError(f'cannot transcribe str {transcription!r}, encode it first')
  else:
    for item in transcription:
      yield from flatten(item)

def parse_offsets(parse):
  ''' Decorate `parse` (usually an `AbstractBinary` class method)
      to record the buffer starting offset as `self.offset`
      and the buffer post parse offset as `self.end_offset`.
  '''

  def parse_wrapper(cls, bfr: ParseBuffer, **parse_kw):
    offset = bfr.offset
    self = parse(cls, bfr, **parse_kw)
    self.offset = offset
    self.end_offset = bfr.offset
    return self

  return parse_wrapper

class AbstractBinary(ABC):
  ''' Abstract class for all binary structures,
      specifying the abstract `parse` and `transcribe` methods
      and providing various helper methods.
  '''

  @classmethod
  @abstractmethod
  def parse(cls, bfr: ParseBuffer):
    ''' Parse an instance of `cls` from the buffer `bfr`.
    '''
    raise NotImplementedError("parse")

  @abstractmethod
  def transcribe(self):
    ''' Return or yield `bytes`, `None`, other `AbstractBinary`s
        or iterables comprising the binary form of this instance.
    '''
    raise NotImplementedError("transcribe")

  def __bytes__(self):
    ''' The binary transcription as a single `bytes` object.
    '''
    return b''.join(flatten(self.transcribe()))

  def transcribe_flat(self):
    ''' Return a flat iterable of chunks transcribing this object.
    '''
    return flatten(self.transcribe())

  def transcribed_length(self):
    ''' Compute the length by running a transcription and measuring it.
    '''
    return sum(map(len, flatten(self.transcribe())))

  @classmethod
  @promote
  def scan(cls, bfr: ParseBuffer, count=None, *, with_offsets=False, **parse_kw):
    ''' A generator to scan the buffer `bfr` for repeated instances of `cls`
        until end of input (or `count` instances), and yield them.

        Note that if `bfr` is not already a `ParseBuffer`
        it is promoted to one from bytes, a file or a filename;
        see `ParseBuffer.promote`.

        Parameters:
        * `bfr`: the buffer to scan
        * `count`: optional number of instances to scan
        * `with_offsets`: optional flag, default `False`;
          if true yield `(pre_offset,obj,post_offset)`, otherwise just `obj`
        Other keyword arguments are passed to `cls.parse()`.
    '''
    if count is not None and count < 0:
      raise ValueError(f'{count=} must be >=0 if specified')
    scanned = 0
    while (count is None or scanned < count) and not bfr.at_eof():
      pre_offset = bfr.offset
      obj = cls.parse(bfr, **parse_kw)
      if with_offsets:
        yield pre_offset, obj, bfr.offset
      else:
        yield obj
      scanned += 1

  @classmethod
  def parse_bytes(cls, bs, offset=0, length=None, allocator=None, **parse_kw):
    ''' Factory to parse an instance from the
        bytes `bs` starting at `offset`.
        Returns `(instance,offset)` being the new instance and the post offset.

        Raises `Truncated` if `bs` has insufficient data.
    '''
    bfr = ParseBuffer.from_bytes(
        bs, offset=offset, length=length, allocator=allocator
    )
    instance = cls.parse(bfr, **parse_kw)
    return instance, bfr.offset

  @classmethod
  def from_bytes(cls, bs, **parse_bytes_kw):
    ''' Factory to parse an instance from the bytes `bs`.
        Returns the new instance.

        Raises `TrailingData` if `bs` is not entirely consumed.
        Raises `Truncated` if `bs` has insufficient data.
    '''
    instance, offset = cls.parse_bytes(bs, **parse_bytes_kw)
    if offset < len(bs):
      raise TrailingData(
          f'{len(bs) - offset} unparsed bytes after {cls.__name__}', offset
      )
    return instance

  def write(self, file, *, flush=False):
    ''' Write this instance to `file`, a file-like object supporting
        `.write(bytes)` and `.flush()`.
        Return the number of bytes written.
    '''
    length = 0
    for bs in self.transcribe_flat():
      bslen = len(bs)
      offset = 0
      while offset < bslen:
        written = file.write(bs[offset:])
        if written == 0:
          raise RuntimeError(f'wrote 0 bytes to {file}')
        offset += written
      length += bslen
    if flush:
      file.flush()
    return length
