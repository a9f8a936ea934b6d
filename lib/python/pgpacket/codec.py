#!/usr/bin/env python3
#
# The top level decode and encode API.
#

''' The `Codec` class, which holds the configuration for decoding,
    and module level functions using a default `Codec`.

    Example:

        >>> from pgpacket import decode_subpacket, encode
        >>> sp = decode_subpacket(b'\\x05\\x09\\x00\\x01\\x51\\x80')
        >>> sp.body.expiration
        86400
        >>> encode(sp)
        b'\\x05\\t\\x00\\x01Q\\x80'
'''

from cs.pfx import pfx_method

from .binary import AbstractBinary
from .buffer import ParseBuffer
from .errors import ParseError, TrailingData
from .framing import Decoded
from .packets import PACKET_TYPES, Packet
from .secmem import DEFAULT_ALLOCATOR
from .subpackets import SUBPACKET_TYPES, Subpacket

class Codec:
  ''' A packet codec configuration.

      A `Codec` has no mutable state of its own after construction
      and may be shared between threads; each decode uses a private
      `ParseBuffer`.
  '''

  def __init__(
      self,
      *,
      allocator=None,
      progress=None,
      strict_critical=False,
      subpacket_types=None,
      packet_types=None,
  ):
    ''' Initialise the codec.

        Parameters:
        * `allocator`: the `SecureAllocator` for sensitive fields,
          default `pgpacket.secmem.DEFAULT_ALLOCATOR`
        * `progress`: optional callable `progress(what,char,current,total)`
          called after each record decoded, where `what` is `'packet'`
          or `'subpacket'`, `char` is `'.'` for a decoded record
          or `'!'` for a failed one, and `current` and `total` are the
          input offset reached and the input length
        * `strict_critical`: if true, an unknown subpacket type with the
          critical bit set is `Malformed` instead of a logged warning
        * `subpacket_types`: the subpacket `TypeRegistry`,
          default `SUBPACKET_TYPES`
        * `packet_types`: the packet `TypeRegistry`, default `PACKET_TYPES`
    '''
    if allocator is None:
      allocator = DEFAULT_ALLOCATOR
    if subpacket_types is None:
      subpacket_types = SUBPACKET_TYPES
    if packet_types is None:
      packet_types = PACKET_TYPES
    self.allocator = allocator
    self.progress = progress
    self.strict_critical = strict_critical
    self.subpacket_types = subpacket_types
    self.packet_types = packet_types

  def __str__(self):
    return "%s(strict_critical=%s,allocator=%s)" % (
        self.__class__.__name__, self.strict_critical, self.allocator
    )

  def buffer(self, data) -> ParseBuffer:
    ''' Return a `ParseBuffer` for `data` configured by this codec.
        `data` may be bytes, a binary file, a filename
        or an existing `ParseBuffer`, which is used in place
        (so that the caller sees its offset advance)
        with its `allocator` and `codec` replaced by this codec's.
    '''
    bfr = ParseBuffer.promote(data)
    if bfr.codec is not self:
      bfr.allocator = self.allocator
      bfr.codec = self
    return bfr

  def _progress(self, what, char, bfr):
    if self.progress is not None:
      self.progress(what, char, bfr.offset, bfr.end_offset)

  def _decode_one(self, record_class, data):
    bfr = self.buffer(data)
    try:
      record = record_class.parse(bfr)
      if not bfr.at_eof():
        raise TrailingData(
            "%d bytes after %s" % (bfr.remaining(), record_class.__name__),
            bfr.offset,
        )
    except ParseError:
      self._progress(record_class.__name__.lower(), '!', bfr)
      raise
    self._progress(record_class.__name__.lower(), '.', bfr)
    return record

  @pfx_method
  def decode(self, data) -> Packet:
    ''' Decode exactly one packet from `data`.
        Raise a `ParseError` subclass if it is not a single valid packet.
    '''
    return self._decode_one(Packet, data)

  @pfx_method
  def decode_subpacket(self, data) -> Subpacket:
    ''' Decode exactly one subpacket from `data`.
        Raise a `ParseError` subclass if it is not a single valid subpacket.
    '''
    return self._decode_one(Subpacket, data)

  def try_decode(self, data) -> Decoded:
    ''' Decode exactly one packet from `data`
        and return a `Decoded` result instead of raising a `ParseError`.
    '''
    return self._try_decode_one(self.decode, data)

  def try_decode_subpacket(self, data) -> Decoded:
    ''' Decode exactly one subpacket from `data`
        and return a `Decoded` result instead of raising a `ParseError`.
    '''
    return self._try_decode_one(self.decode_subpacket, data)

  def _try_decode_one(self, decode, data):
    bfr = self.buffer(data)
    offset = bfr.offset
    try:
      record = decode(bfr)
    except ParseError as e:
      return Decoded(None, e, offset, e.end_offset)
    return Decoded(record, None, offset, bfr.offset)

  def _scan(self, record_class, data, skip_errors):
    bfr = self.buffer(data)
    what = record_class.__name__.lower()
    try:
      for result in record_class.scan(bfr, skip_errors=skip_errors):
        if skip_errors:
          self._progress(what, '.' if result.ok else '!', bfr)
        else:
          self._progress(what, '.', bfr)
        yield result
    except ParseError:
      self._progress(what, '!', bfr)
      raise

  def scan_packets(self, data, skip_errors=False):
    ''' Scan `data` for successive packets.
        See `Record.scan` for the meaning of `skip_errors`.
    '''
    return self._scan(Packet, data, skip_errors)

  def scan_subpackets(self, data, skip_errors=False):
    ''' Scan `data` for successive subpackets.
        See `Record.scan` for the meaning of `skip_errors`.
    '''
    return self._scan(Subpacket, data, skip_errors)

  @staticmethod
  def encode(value) -> bytes:
    ''' Return the binary transcription of a record or record body.
    '''
    if not isinstance(value, AbstractBinary):
      raise TypeError(f'cannot encode {value.__class__.__name__}: {value!r}')
    return bytes(value)

DEFAULT_CODEC = Codec()

def decode(data) -> Packet:
  ''' Decode exactly one packet from `data` using `DEFAULT_CODEC`.
  '''
  return DEFAULT_CODEC.decode(data)

def decode_subpacket(data) -> Subpacket:
  ''' Decode exactly one subpacket from `data` using `DEFAULT_CODEC`.
  '''
  return DEFAULT_CODEC.decode_subpacket(data)

def try_decode(data) -> Decoded:
  ''' Decode one packet from `data` as a `Decoded` result
      using `DEFAULT_CODEC`.
  '''
  return DEFAULT_CODEC.try_decode(data)

def scan_packets(data, skip_errors=False):
  ''' Scan `data` for packets using `DEFAULT_CODEC`.
  '''
  return DEFAULT_CODEC.scan_packets(data, skip_errors=skip_errors)

def scan_subpackets(data, skip_errors=False):
  ''' Scan `data` for subpackets using `DEFAULT_CODEC`.
  '''
  return DEFAULT_CODEC.scan_subpackets(data, skip_errors=skip_errors)

def encode(value) -> bytes:
  ''' Return the binary transcription of a record or record body.
  '''
  return Codec.encode(value)
