#!/usr/bin/env python3
#
# OpenPGP packets, RFC 4880 sections 4 and 5.
#

''' OpenPGP packets and the packet type registry.

    The signature packet lives in `pgpacket.signature`;
    this module has the packet framing class and the simpler packets.
    Unregistered packet tags decode to `RawBody`.
'''

from collections import namedtuple

from .buffer import ParseBuffer
from .errors import Truncated
from .framing import PacketHeader, PACKET_LENGTH, PARTIAL, Record, RawBody
from .grammar import RecordBody, grammarclass
from .registry import TypeRegistry
from .rules import FixedBytes, Literal, Octets, Rule, TagByte, Text, UIntBE

PACKET_TYPES = TypeRegistry('packet', RawBody, 63)

class Packet(Record):
  ''' An OpenPGP packet: a `PacketHeader` and a typed body.
  '''

  HEADER_CLASS = PacketHeader
  TYPES = PACKET_TYPES
  CODEC_TYPES = 'packet_types'

  @property
  def tag(self):
    ''' The packet tag.
    '''
    return self.header.tag

  @classmethod
  def slice_body(cls, bfr: ParseBuffer, header):
    ''' A body with partial lengths is collected from its chunks
        and reassembled into a separate buffer.
        Offsets in errors from such a body are relative to
        the reassembled body.
    '''
    if header.chunks is None:
      return super().slice_body(bfr, header)
    walker = bfr.bounded(bfr.end_offset)
    chunks = []
    pieces = []
    length, length_form = header.chunks[0]
    while True:
      chunks.append((length, length_form))
      if length > walker.remaining():
        raise Truncated(
            "partial body chunk of %d bytes extends beyond the end of the input"
            % (length,),
            walker.offset,
        )
      pieces.append(walker.take(length))
      if length_form != PARTIAL:
        break
      length, length_form = PACKET_LENGTH.match(walker)
    header.chunks = tuple(chunks)
    header.length = sum(length for length, _ in chunks)
    return bfr.reframed(b''.join(pieces)), walker.offset

  @classmethod
  def from_body(cls, body, tag=None, new_format=True):
    ''' Construct a packet for `body` with a fresh header.
    '''
    return super().from_body(body, tag, new_format=new_format)

  def transcribe(self):
    ''' Transcribe the packet.
        A partial length body which is unchanged is transcribed
        in its original chunks.
    '''
    header = self.header
    body_bs = bytes(self.body)
    header.set_body_length(len(body_bs))
    if header.chunks is None:
      yield header
      yield body_bs
      return
    yield header.transcribe_tag()
    offset = 0
    for length, length_form in header.chunks:
      yield header.transcribe_length(length, length_form)
      yield body_bs[offset:offset + length]
      offset += length

class S2KSpecifier(namedtuple('S2KSpecifier', 'type hash_algorithm salt count')):
  ''' A string to key specifier, RFC 4880 section 3.7.1.

      `salt` is `None` for the simple type
      and `count` is `None` except for the iterated and salted type,
      where it is the coded count octet.
  '''

  SIMPLE = 0
  SALTED = 1
  ITERATED_SALTED = 3

  @property
  def iterations(self):
    ''' The number of octets hashed, decoded from the count octet.
    '''
    if self.count is None:
      return None
    return (16 + (self.count & 15)) << ((self.count >> 4) + 6)

class S2K(Rule):
  ''' A string to key specifier of type 0, 1 or 3.
  '''

  value_type = S2KSpecifier

  def __init__(self, message=None):
    super().__init__(message)
    self.octet = UIntBE(1)
    self.salt = FixedBytes(8)

  def parse_value(self, bfr: ParseBuffer):
    offset = bfr.offset
    s2k_type = self.octet.parse_value(bfr)
    hash_algorithm = self.octet.parse_value(bfr)
    salt = count = None
    if s2k_type == S2KSpecifier.SIMPLE:
      pass
    elif s2k_type == S2KSpecifier.SALTED:
      salt = self.salt.parse_value(bfr)
    elif s2k_type == S2KSpecifier.ITERATED_SALTED:
      salt = self.salt.parse_value(bfr)
      count = self.octet.parse_value(bfr)
    else:
      raise self.malformed(f'unsupported S2K specifier type {s2k_type}', offset)
    return S2KSpecifier(s2k_type, hash_algorithm, salt, count)

  def transcribe_value(self, value):
    yield self.octet.transcribe_value(value.type)
    yield self.octet.transcribe_value(value.hash_algorithm)
    if value.salt is not None:
      yield value.salt
    if value.count is not None:
      yield self.octet.transcribe_value(value.count)

  def check_value(self, value):
    super().check_value(value)
    if value.type == S2KSpecifier.SIMPLE:
      ok = value.salt is None and value.count is None
    elif value.type == S2KSpecifier.SALTED:
      ok = value.salt is not None and value.count is None
    elif value.type == S2KSpecifier.ITERATED_SALTED:
      ok = value.salt is not None and value.count is not None
    else:
      ok = False
    if not ok:
      raise ValueError(f'inconsistent S2K specifier {value!r}')
    if value.salt is not None:
      self.salt.check_value(value.salt)
    self.octet.check_value(value.hash_algorithm)
    if value.count is not None:
      self.octet.check_value(value.count)

@PACKET_TYPES.register(3, 'symmetric-key encrypted session key')
@grammarclass(
    eof_message="symmetric-key encrypted session key packet is too large"
)
class SymmetricKeyEncryptedSessionKey(RecordBody):
  ''' A session key encrypted with a passphrase derived key.
      The encrypted session key, if present, is held in a buffer
      from the secure allocator. The buffer belongs to the body:
      call `.release(allocator)` when done with it, or allocators
      with a `limit` will eventually refuse further decodes.
  '''
  version: TagByte(4, "unsupported symmetric-key encrypted session key version")
  cipher_algorithm: UIntBE(
      1, "symmetric-key encrypted session key packet is invalid"
  )
  s2k: S2K("S2K specifier is invalid")
  encrypted_key: Octets(
      "symmetric-key encrypted session key packet is invalid", secure=True
  )

  TEST_CASES = (
      b'\x04\x09\x00\x08',
      b'\x04\x09\x01\x08\x01\x02\x03\x04\x05\x06\x07\x08',
      b'\x04\x07\x03\x02\xaa\xbb\xcc\xdd\xee\xff\x00\x11\x60' + bytes(17),
  )

@PACKET_TYPES.register(10, 'marker')
@grammarclass(eof_message="marker packet is too large")
class Marker(RecordBody):
  ''' The obsolete marker packet, whose body is always `PGP`.
  '''
  marker: Literal(b'PGP', "marker packet is invalid") = b'PGP'

  TEST_CASES = (b'PGP', ({}, b'PGP'))

@PACKET_TYPES.register(12, 'trust')
@grammarclass(eof_message="trust packet is too large")
class Trust(RecordBody):
  ''' Implementation specific trust data from a keyring.
  '''
  data: Octets("trust packet is invalid")

  TEST_CASES = (b'\x06\x00',)

@PACKET_TYPES.register(13, 'user id')
@grammarclass(eof_message="user id packet is too large")
class UserID(RecordBody):
  user_id: Text("user id packet is invalid")

  TEST_CASES = (b'Alice <alice@example.org>',)

  def __str__(self):
    return f'{self.__class__.__name__}({self.user_id})'
