#!/usr/bin/env python3
#
# Record framing: headers, length encodings and the record pipeline.
#

''' Record framing for OpenPGP packets and signature subpackets.

    Every record is parsed by the same pipeline:
    read the header, slice the declared body into a bounded buffer,
    look up the body class for the header's discriminator
    in the type registry, and parse the body from the bounded buffer.
    A rule can therefore never read past the end of its record;
    a declared length beyond the available input is `Truncated`
    and a body grammar which finishes early is `TrailingData`.

    Headers remember the length encoding they were parsed with,
    so an unchanged record transcribes to its original bytes.
    Freshly constructed records use the shortest encoding.
'''

from collections import namedtuple

from cs.deco import promote
from cs.logutils import warning
from cs.pfx import Pfx

from .binary import AbstractBinary, parse_offsets
from .buffer import ParseBuffer
from .errors import Malformed, ParseError, TrailingData, Truncated
from .grammar import RecordBody, grammarclass
from .rules import Octets, Rule, UIntBE

# new format length encodings, RFC 4880 sections 4.2.2 and 5.2.3.1
ONE_OCTET = 'one-octet'
TWO_OCTET = 'two-octet'
FIVE_OCTET = 'five-octet'
PARTIAL = 'partial'

# old format packet length encodings, RFC 4880 section 4.2.1
OLD_ONE_OCTET = 'old-one-octet'
OLD_TWO_OCTET = 'old-two-octet'
OLD_FOUR_OCTET = 'old-four-octet'
INDETERMINATE = 'indeterminate'

# old format length type (the low 2 bits of the tag octet) to form and size
OLD_LENGTH_TYPES = (
    (OLD_ONE_OCTET, 1),
    (OLD_TWO_OCTET, 2),
    (OLD_FOUR_OCTET, 4),
    (INDETERMINATE, 0),
)
OLD_LENGTH_FORMS = {form: ltype for ltype, (form, _) in enumerate(OLD_LENGTH_TYPES)}

MAX_LENGTH = 0xffffffff

class NewFormatLength(Rule):
  ''' A new format length: 1, 2 or 5 octets,
      and optionally a partial body length.
      The bound value is a `(length,form)` 2-tuple.

      Subpacket lengths use every first octet from 192 to 254 for
      the two octet form. Packet lengths reserve 224 to 254 for
      partial body lengths, which are only accepted if `partial` is true.
  '''

  def __init__(self, message=None, *, partial=False):
    super().__init__(message)
    self.partial = partial
    self.max_two_octet = (
        ((223 - 192) << 8) + 255 + 192 if partial else
        ((254 - 192) << 8) + 255 + 192
    )

  def parse_value(self, bfr: ParseBuffer):
    o1 = bfr.byte0()
    if o1 < 192:
      return o1, ONE_OCTET
    if self.partial and 224 <= o1 < 255:
      return 1 << (o1 & 0x1f), PARTIAL
    if o1 < 255:
      o2 = bfr.byte0()
      return ((o1 - 192) << 8) + o2 + 192, TWO_OCTET
    return int.from_bytes(bfr.take(4), 'big'), FIVE_OCTET

  def transcribe_value(self, value):
    length, form = value
    if form == ONE_OCTET:
      return bytes((length,))
    if form == TWO_OCTET:
      n = length - 192
      return bytes(((n >> 8) + 192, n & 0xff))
    if form == FIVE_OCTET:
      return b'\xff' + length.to_bytes(4, 'big')
    if form == PARTIAL:
      return bytes((224 + length.bit_length() - 1,))
    raise ValueError(f'unsupported length form {form!r}')

  def fits(self, length, form) -> bool:
    ''' Test whether `length` may be expressed in `form`.
    '''
    if form == ONE_OCTET:
      return 0 <= length < 192
    if form == TWO_OCTET:
      return 192 <= length <= self.max_two_octet
    if form == FIVE_OCTET:
      return 0 <= length <= MAX_LENGTH
    if form == PARTIAL:
      return self.partial and 0 < length <= 1 << 30 and length & (length - 1) == 0
    return False

  def form_for(self, length, form=None) -> str:
    ''' Return `form` if it can express `length`,
        otherwise the shortest form which can.
    '''
    if form is not None and form != PARTIAL and self.fits(length, form):
      return form
    for shorter_form in ONE_OCTET, TWO_OCTET, FIVE_OCTET:
      if self.fits(length, shorter_form):
        return shorter_form
    raise ValueError(f'{length=} cannot be encoded')

def old_length_form_for(length, form=None) -> str:
  ''' Return the old format length `form` if it can express `length`,
      otherwise the shortest old format form which can.
  '''
  if form == INDETERMINATE:
    return form
  for old_form in (form, OLD_ONE_OCTET, OLD_TWO_OCTET, OLD_FOUR_OCTET):
    if old_form is None:
      continue
    size = OLD_LENGTH_TYPES[OLD_LENGTH_FORMS[old_form]][1]
    if 0 <= length < 1 << (8 * size):
      return old_form
  raise ValueError(f'{length=} cannot be encoded in an old format header')

SUBPACKET_LENGTH = NewFormatLength("subpacket length is truncated")
SUBPACKET_TYPE_OCTET = UIntBE(1, "subpacket type is missing")
PACKET_TAG_OCTET = UIntBE(1, "packet header is truncated")
PACKET_LENGTH = NewFormatLength("packet length is truncated", partial=True)

class SubpacketHeader(AbstractBinary):
  ''' A signature subpacket header: the length then the type octet,
      whose high bit is the critical flag.

      Attributes:
      * `type`: the subpacket type, `0`..`127`
      * `critical`: the critical flag
      * `length`: the declared length, which includes the type octet
      * `length_form`: the length encoding
  '''

  def __init__(self, type, critical=False, length=1, length_form=None):
    if not 0 <= type < 128:
      raise ValueError(f'subpacket {type=} not in range 0..127')
    if length < 1:
      raise ValueError(f'subpacket {length=} must include the type octet')
    self.type = type
    self.critical = bool(critical)
    self.length = length
    self.length_form = SUBPACKET_LENGTH.form_for(length, length_form)

  def __repr__(self):
    return "%s(type=%d,critical=%s,length=%d,length_form=%s)" % (
        self.__class__.__name__,
        self.type,
        self.critical,
        self.length,
        self.length_form,
    )

  def __eq__(self, other):
    ''' Headers are equal if they have the same type and critical flag;
        the length and its encoding follow from the body.
    '''
    if not isinstance(other, SubpacketHeader):
      return NotImplemented
    return self.type == other.type and self.critical == other.critical

  @property
  def discriminator(self):
    ''' The registry discriminator, the subpacket type.
    '''
    return self.type

  @property
  def body_length(self):
    ''' The length of the body, excluding the type octet.
    '''
    return self.length - 1

  def set_body_length(self, body_length):
    ''' Update the declared length for a body of `body_length` bytes,
        keeping the existing length form if it can express it.
    '''
    length = body_length + 1
    if length != self.length:
      self.length_form = SUBPACKET_LENGTH.form_for(length, self.length_form)
      self.length = length

  @classmethod
  def parse(cls, bfr: ParseBuffer):
    ''' Parse a subpacket header from `bfr`.
    '''
    offset = bfr.offset
    length, length_form = SUBPACKET_LENGTH.match(bfr)
    if length == 0:
      raise Malformed("subpacket length is zero", offset)
    type_octet = SUBPACKET_TYPE_OCTET.match(bfr)
    return cls(
        type_octet & 0x7f,
        critical=type_octet & 0x80,
        length=length,
        length_form=length_form,
    )

  def transcribe(self):
    yield SUBPACKET_LENGTH.transcribe_value((self.length, self.length_form))
    yield bytes(((0x80 if self.critical else 0) | self.type,))

class PacketHeader(AbstractBinary):
  ''' A packet header in either the old or the new format.

      Attributes:
      * `tag`: the packet tag
      * `new_format`: whether this is a new format header
      * `length`: the body length, or `None` for an indeterminate length
      * `length_form`: the length encoding
      * `chunks`: for partial body lengths, the `(length,form)`
        of each body chunk as parsed, otherwise `None`
  '''

  def __init__(
      self,
      tag,
      length=0,
      length_form=None,
      *,
      new_format=True,
      chunks=None,
  ):
    if not 0 < tag < (64 if new_format else 16):
      raise ValueError(
          f'packet {tag=} not valid for a {"new" if new_format else "old"} format header'
      )
    self.tag = tag
    self.new_format = new_format
    self.length = length
    self.chunks = chunks
    if chunks is not None:
      length_form = PARTIAL
    elif new_format:
      length_form = PACKET_LENGTH.form_for(length, length_form)
    else:
      length_form = old_length_form_for(length, length_form)
    self.length_form = length_form

  def __repr__(self):
    return "%s(tag=%d,new_format=%s,length=%r,length_form=%s)" % (
        self.__class__.__name__,
        self.tag,
        self.new_format,
        self.length,
        self.length_form,
    )

  def __eq__(self, other):
    ''' Headers are equal if they have the same tag and format.
    '''
    if not isinstance(other, PacketHeader):
      return NotImplemented
    return self.tag == other.tag and self.new_format == other.new_format

  @property
  def discriminator(self):
    ''' The registry discriminator, the packet tag.
    '''
    return self.tag

  @property
  def body_length(self):
    ''' The length of the body.
    '''
    return self.length

  def set_body_length(self, body_length):
    ''' Update the declared length for a body of `body_length` bytes,
        keeping the existing length form if it can express it.
        A partial body length whose chunks no longer cover the body
        reverts to the shortest definite length.
    '''
    if self.chunks is not None:
      if sum(size for size, _ in self.chunks) == body_length:
        return
      self.chunks = None
      self.length_form = None
    if self.length_form == INDETERMINATE:
      self.length = None
      return
    if body_length != self.length or self.length_form is None:
      if self.new_format:
        self.length_form = PACKET_LENGTH.form_for(body_length, self.length_form)
      else:
        self.length_form = old_length_form_for(body_length, self.length_form)
      self.length = body_length

  @classmethod
  def parse(cls, bfr: ParseBuffer):
    ''' Parse a packet header from `bfr`.

        For a partial body length only the first chunk length is read;
        `Packet.parse` collects the remaining chunks.
    '''
    offset = bfr.offset
    tag_octet = PACKET_TAG_OCTET.match(bfr)
    if not tag_octet & 0x80:
      raise Malformed(
          "packet tag octet 0x%02x does not have bit 7 set" % (tag_octet,),
          offset,
      )
    new_format = bool(tag_octet & 0x40)
    if new_format:
      tag = tag_octet & 0x3f
    else:
      tag = (tag_octet >> 2) & 0x0f
    if tag == 0:
      raise Malformed("packet tag 0 is reserved", offset)
    if new_format:
      length, length_form = PACKET_LENGTH.match(bfr)
      if length_form == PARTIAL:
        return cls(
            tag, length, new_format=True, chunks=((length, PARTIAL),)
        )
    else:
      length_form, size = OLD_LENGTH_TYPES[tag_octet & 0x03]
      if length_form == INDETERMINATE:
        length = None
      else:
        length = UIntBE(size, "packet length is truncated").match(bfr)
    return cls(tag, length, length_form, new_format=new_format)

  def transcribe_tag(self):
    ''' Return the tag octet.
    '''
    if self.new_format:
      return bytes((0xc0 | self.tag,))
    return bytes(
        (0x80 | (self.tag << 2) | OLD_LENGTH_FORMS[self.length_form],)
    )

  def transcribe_length(self, length, length_form):
    ''' Return the encoding of `length` in `length_form`.
    '''
    if self.new_format:
      return PACKET_LENGTH.transcribe_value((length, length_form))
    if length_form == INDETERMINATE:
      return None
    size = OLD_LENGTH_TYPES[OLD_LENGTH_FORMS[length_form]][1]
    return length.to_bytes(size, 'big')

  def transcribe(self):
    ''' Transcribe the header.
        For a partial body length this is the tag octet and
        the first chunk length; see `Packet.transcribe`.
    '''
    yield self.transcribe_tag()
    if self.chunks is not None:
      yield self.transcribe_length(*self.chunks[0])
    else:
      yield self.transcribe_length(self.length, self.length_form)

@grammarclass
class RawBody(RecordBody):
  ''' The opaque body of a record of unregistered type,
      which transcribes back to exactly the bytes it was parsed from.
  '''
  data: Octets()

class Decoded(namedtuple('Decoded', 'value error offset end_offset')):
  ''' The outcome of decoding one record from a stream:
      exactly one of `value` and `error` is not `None`.
      `offset` is where the record began and `end_offset`
      where the walk resumed, or `None` if it could not.
  '''

  @property
  def ok(self):
    ''' Whether the record decoded successfully.
    '''
    return self.error is None

class Record(AbstractBinary):
  ''' Base class for framed records: a header and a typed body.

      Subclasses define:
      * `HEADER_CLASS`: the header class
      * `TYPES`: the default `TypeRegistry` for the body classes
      * `CODEC_TYPES`: the name of the `Codec` attribute
        holding the registry to use in its place
  '''

  HEADER_CLASS = None
  TYPES = None
  CODEC_TYPES = None

  def __init__(self, header, body):
    self.header = header
    self.body = body
    self.offset = None
    self.end_offset = None

  def __str__(self):
    return "%s[%d:%s](%s)" % (
        self.__class__.__name__,
        self.header.discriminator,
        self.name,
        self.body,
    )

  def __repr__(self):
    return "%s(%r,%r)" % (self.__class__.__name__, self.header, self.body)

  def __bool__(self):
    return True

  def __eq__(self, other):
    if not isinstance(other, Record):
      return NotImplemented
    return (
        type(self) is type(other) and self.header == other.header
        and self.body == other.body
    )

  @property
  def type(self):
    ''' The record's discriminator.
    '''
    return self.header.discriminator

  @property
  def name(self):
    ''' The descriptive name of the record's type.
    '''
    return self.TYPES.lookup(self.type).name

  @classmethod
  def types_for(cls, bfr: ParseBuffer):
    ''' Return the `TypeRegistry` to use when parsing from `bfr`.
    '''
    codec = bfr.codec
    if codec is None:
      return cls.TYPES
    return getattr(codec, cls.CODEC_TYPES)

  @classmethod
  def slice_body(cls, bfr: ParseBuffer, header):
    ''' Return a `(body_bfr,end_offset)` 2-tuple being a buffer
        holding exactly the body declared by `header`
        and the offset in `bfr` of the end of the record.
        `bfr` is not advanced past the body.
    '''
    if header.body_length is None:
      return bfr.bounded(bfr.end_offset), bfr.end_offset
    end_offset = bfr.offset + header.body_length
    if end_offset > bfr.end_offset:
      raise Truncated(
          "%s body of %d bytes extends beyond the end of the input" %
          (cls.__name__, header.body_length),
          bfr.offset,
      )
    return bfr.bounded(end_offset), end_offset

  @classmethod
  def check_type(cls, bfr: ParseBuffer, header, record_type, offset):
    ''' Check the record type before the body is parsed.
        The default does nothing.
    '''

  @classmethod
  @parse_offsets
  def parse(cls, bfr: ParseBuffer):
    ''' Parse a record from `bfr`.

        On failure the exception's `record_offset` is the offset of the
        record header and its `end_offset` is the end of the declared
        body, or `None` if the header could not be read.
    '''
    offset = bfr.offset
    try:
      header = cls.HEADER_CLASS.parse(bfr)
      body_bfr, end_offset = cls.slice_body(bfr, header)
    except ParseError as e:
      e.record_offset = offset
      raise
    with Pfx("%s[%d]", cls.__name__, header.discriminator):
      record_type = cls.types_for(bfr).lookup(header.discriminator)
      try:
        cls.check_type(bfr, header, record_type, offset)
        body = record_type.constructor(body_bfr)
        if not body_bfr.at_eof():
          raise TrailingData(
              "%s body has %d unconsumed bytes" %
              (record_type.name, body_bfr.remaining()),
              body_bfr.offset,
          )
      except ParseError as e:
        e.record_offset = offset
        e.end_offset = end_offset
        raise
    bfr.skipto(end_offset)
    return cls(header, body)

  @classmethod
  @promote
  def scan(
      cls,
      bfr: ParseBuffer,
      count=None,
      *,
      skip_errors=False,
      with_offsets=False,
  ):
    ''' A generator to scan `bfr` for successive records.

        Without `skip_errors` this yields records
        (or `(pre_offset,record,post_offset)` if `with_offsets`)
        and the first failure is raised.

        With `skip_errors` this yields a `Decoded` result for each
        record. A failed record is logged, yielded with its error,
        and the scan resumes at the end of its declared body.
        If the header itself failed there is no known place
        to resume, and the scan ends after yielding the failure.
    '''
    if not skip_errors:
      yield from super().scan(bfr, count, with_offsets=with_offsets)
      return
    scanned = 0
    while (count is None or scanned < count) and not bfr.at_eof():
      offset = bfr.offset
      scanned += 1
      try:
        record = cls.parse(bfr)
      except ParseError as e:
        warning("%s at offset %d: %s", cls.__name__, offset, e)
        if e.end_offset is None:
          yield Decoded(None, e, offset, None)
          return
        bfr.skipto(e.end_offset)
        yield Decoded(None, e, offset, e.end_offset)
      else:
        yield Decoded(record, None, offset, bfr.offset)

  @classmethod
  def from_body(cls, body, type=None, **header_kw):
    ''' Construct a record for `body` with a fresh header.
        The `type` defaults to the body class's registered `TYPE`.
    '''
    if type is None:
      type = getattr(body, 'TYPE', None)
      if type is None:
        raise ValueError(f'no type for unregistered body {body!r}')
    header = cls.HEADER_CLASS(type, **header_kw)
    header.set_body_length(body.transcribed_length())
    return cls(header, body)

  def transcribe(self):
    ''' Transcribe the record, updating the header length
        if the body length has changed.
    '''
    self.header.set_body_length(self.body.transcribed_length())
    yield self.header
    yield self.body
