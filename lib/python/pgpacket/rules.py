#!/usr/bin/env python3
#
# Primitive grammar rules.
#

''' The primitive grammar rules from which record grammars are composed.

    A `Rule` knows how to parse a value from a `ParseBuffer`
    (`.parse_value`), how to transcribe a value back to bytes
    (`.transcribe_value`) and how to check that a value is legal
    for explicit construction (`.check_value`).

    Parsing is normally done through `.match`, which is the
    diagnostic layer: it runs `.parse_value` and, on failure,
    raises a `ParseError` of the same kind attributed to this rule,
    carrying the rule's configured message
    and the offset at which the rule began matching.
    Failures already attributed to an inner rule or an inner framed
    record, such as a field of a nested record, propagate unchanged.
'''

from abc import ABC, abstractmethod
from collections import namedtuple
from typing import Tuple, Union

from typeguard import check_type

from .buffer import ParseBuffer
from .errors import Malformed, ParseError, TrailingData
from .secmem import DEFAULT_ALLOCATOR

class Rule(ABC):
  ''' Abstract base class for grammar rules.
  '''

  # the type of values bound by this rule, checked by check_value
  value_type = object

  def __init__(self, message=None):
    ''' Initialise the rule with an optional diagnostic `message`
        reported when the rule fails to match.
    '''
    self.message = message

  def __repr__(self):
    return "%s(%r)" % (self.__class__.__name__, self.message)

  @abstractmethod
  def parse_value(self, bfr: ParseBuffer):
    ''' Parse and return a value from `bfr`.
    '''
    raise NotImplementedError

  @abstractmethod
  def transcribe_value(self, value):
    ''' Return or yield the binary form of `value`.
    '''
    raise NotImplementedError

  def check_value(self, value):
    ''' Check that `value` may be bound by this rule.
        The default checks the type against `self.value_type`.
    '''
    check_type(value, self.value_type)

  def match(self, bfr: ParseBuffer, message=None):
    ''' Match this rule at the current position of `bfr`
        and return the bound value.

        On failure raise a `ParseError` of the same kind
        carrying `message` (default `self.message`)
        and the offset at which this rule began.
        The underlying failure message is kept as the `detail`.
    '''
    offset = bfr.offset
    try:
      return self.parse_value(bfr)
    except ParseError as e:
      if e.record_offset is not None or (e.rule is not None
                                         and e.rule is not self):
        # already attributed to an inner record or a more specific rule
        raise
      rule_message = message or self.message or e.rule_message
      raise e.reattributed(rule_message, offset, self) from e

  def malformed(self, detail, offset):
    ''' Return a `Malformed` exception attributed to this rule.
    '''
    return Malformed(detail, offset, rule=self)

class UIntBE(Rule):
  ''' A fixed width big endian unsigned integer.

      Example:

          >>> UIntBE(4).match(ParseBuffer.from_bytes(b'\\x00\\x01\\x51\\x80'))
          86400
          >>> UIntBE(4).transcribe_value(86400)
          b'\\x00\\x01Q\\x80'
  '''

  value_type = int

  def __init__(self, size: int, message=None):
    if size < 1:
      raise ValueError(f'{size=} must be >= 1')
    super().__init__(message)
    self.size = size

  def __repr__(self):
    return "%s(%d,%r)" % (self.__class__.__name__, self.size, self.message)

  def parse_value(self, bfr: ParseBuffer) -> int:
    return int.from_bytes(bfr.take(self.size), 'big')

  def transcribe_value(self, value: int):
    return value.to_bytes(self.size, 'big')

  def check_value(self, value):
    super().check_value(value)
    if isinstance(value, bool) or not 0 <= value < 1 << (8 * self.size):
      raise ValueError(f'{value!r} does not fit in {self.size} unsigned bytes')

class FixedBytes(Rule):
  ''' A fixed number of raw bytes.

      If `secure` is true the bytes are copied into a buffer obtained
      from the parse buffer's allocator (or the default allocator).
  '''

  value_type = Union[bytes, bytearray]

  def __init__(self, size: int, message=None, *, secure=False):
    if size < 0:
      raise ValueError(f'{size=} must be >= 0')
    super().__init__(message)
    self.size = size
    self.secure = secure

  def __repr__(self):
    return "%s(%d,%r)" % (self.__class__.__name__, self.size, self.message)

  def parse_value(self, bfr: ParseBuffer):
    if self.secure:
      return secure_take(bfr, self.size)
    return bfr.take(self.size)

  def transcribe_value(self, value):
    return bytes(value)

  def check_value(self, value):
    super().check_value(value)
    if len(value) != self.size:
      raise ValueError(f'expected {self.size} bytes, got {len(value)}')

class Octets(Rule):
  ''' The rest of the input as raw bytes.
  '''

  value_type = Union[bytes, bytearray]

  def __init__(self, message=None, *, secure=False):
    super().__init__(message)
    self.secure = secure

  def parse_value(self, bfr: ParseBuffer):
    if self.secure:
      return secure_take(bfr, bfr.remaining())
    return bfr.take_rest()

  def transcribe_value(self, value):
    return bytes(value)

class OctetList(Rule):
  ''' The rest of the input as a tuple of octet values,
      for example an algorithm preference list.
  '''

  value_type = Tuple[int, ...]

  def parse_value(self, bfr: ParseBuffer):
    return tuple(bfr.take_rest())

  def transcribe_value(self, value):
    return bytes(value)

  def check_value(self, value):
    super().check_value(value)
    if not all(0 <= octet < 256 for octet in value):
      raise ValueError(f'octet out of range in {value!r}')

def decode_text(bs: bytes):
  ''' Decode `bs` as UTF-8, returning the raw `bytes` if it is not valid.
      OpenPGP text is UTF-8 only by convention and older keyrings
      carry other encodings, which must survive a round trip.
  '''
  try:
    return bs.decode('utf-8')
  except UnicodeDecodeError:
    return bs

def encode_text(value) -> bytes:
  ''' Return the binary form of a text value from `decode_text`.
  '''
  if isinstance(value, str):
    return value.encode('utf-8')
  return bytes(value)

class Text(Rule):
  ''' The rest of the input as UTF-8 text.
      Input which is not valid UTF-8 is bound as the raw `bytes`.
  '''

  value_type = Union[str, bytes]

  def parse_value(self, bfr: ParseBuffer):
    return decode_text(bfr.take_rest())

  def transcribe_value(self, value):
    return encode_text(value)

class NulTerminatedText(Rule):
  ''' The rest of the input as UTF-8 text followed by a single NUL,
      which must be the last octet.
      The bound value excludes the NUL.
      Text which is not valid UTF-8 is bound as the raw `bytes`.
  '''

  value_type = Union[str, bytes]

  def parse_value(self, bfr: ParseBuffer):
    offset = bfr.offset
    bs = bfr.take_rest()
    nul_pos = bs.find(b'\0')
    if nul_pos < 0:
      raise self.malformed('missing NUL terminator', offset)
    if nul_pos != len(bs) - 1:
      raise self.malformed('data after NUL terminator', offset + nul_pos + 1)
    return decode_text(bs[:-1])

  def transcribe_value(self, value):
    return encode_text(value) + b'\0'

  def check_value(self, value):
    super().check_value(value)
    if ('\0' if isinstance(value, str) else b'\0') in value:
      raise ValueError(f'NUL in {value!r}')

class TagByte(Rule):
  ''' A single octet which must have the value `expected`.
  '''

  value_type = int

  def __init__(self, expected: int, message=None):
    if not 0 <= expected < 256:
      raise ValueError(f'{expected=} is not an octet value')
    super().__init__(message)
    self.expected = expected

  def __repr__(self):
    return "%s(0x%02x,%r)" % (
        self.__class__.__name__, self.expected, self.message
    )

  def parse_value(self, bfr: ParseBuffer):
    offset = bfr.offset
    b = bfr.byte0()
    if b != self.expected:
      raise self.malformed(
          f'expected 0x{self.expected:02x}, found 0x{b:02x}', offset
      )
    return b

  def transcribe_value(self, value):
    return bytes((value,))

  def check_value(self, value):
    super().check_value(value)
    if value != self.expected:
      raise ValueError(f'expected {self.expected}, got {value!r}')

class Literal(Rule):
  ''' A fixed sequence of bytes which must equal `expected`.
  '''

  value_type = bytes

  def __init__(self, expected: bytes, message=None):
    if not expected:
      raise ValueError('expected may not be empty')
    super().__init__(message)
    self.expected = bytes(expected)

  def __repr__(self):
    return "%s(%r,%r)" % (self.__class__.__name__, self.expected, self.message)

  def parse_value(self, bfr: ParseBuffer):
    offset = bfr.offset
    bs = bfr.take(len(self.expected))
    if bs != self.expected:
      raise self.malformed(f'expected {self.expected!r}, found {bs!r}', offset)
    return bs

  def transcribe_value(self, value):
    return value

  def check_value(self, value):
    super().check_value(value)
    if value != self.expected:
      raise ValueError(f'expected {self.expected!r}, got {value!r}')

class Boolean(Rule):
  ''' A single octet boolean, `0` for false or `1` for true.
  '''

  value_type = bool

  def parse_value(self, bfr: ParseBuffer):
    offset = bfr.offset
    b = bfr.byte0()
    if b not in (0, 1):
      raise self.malformed(f'boolean octet is 0x{b:02x}, not 0 or 1', offset)
    return b == 1

  def transcribe_value(self, value):
    return b'\1' if value else b'\0'

class EndOfInput(Rule):
  ''' Match the end of the input, binding no value.
      This closes every record grammar, so that a record body
      must be consumed exactly.
  '''

  value_type = type(None)

  def parse_value(self, bfr: ParseBuffer):
    if not bfr.at_eof():
      raise TrailingData(
          f'{bfr.remaining()} unconsumed bytes', bfr.offset, rule=self
      )

  def transcribe_value(self, value):
    return None

class MultiPrecisionInteger(namedtuple('MultiPrecisionInteger', 'bits data')):
  ''' An OpenPGP multiprecision integer.

      The declared bit count is kept as parsed, even if it is not
      the minimal bit count for `data`, so that the original octets
      can be reproduced.
  '''

  @classmethod
  def from_int(cls, n: int):
    ''' Make a `MultiPrecisionInteger` from the nonnegative `int` `n`.
    '''
    if n < 0:
      raise ValueError(f'{n=} must be >= 0')
    bits = n.bit_length()
    return cls(bits, n.to_bytes((bits + 7) // 8, 'big'))

  def __int__(self):
    return int.from_bytes(self.data, 'big')

class MPI(Rule):
  ''' A multiprecision integer: a 2 octet bit count then the value octets.
  '''

  value_type = MultiPrecisionInteger

  def __init__(self, message=None):
    super().__init__(message)
    self.bits = UIntBE(2)

  def parse_value(self, bfr: ParseBuffer):
    bits = self.bits.parse_value(bfr)
    return MultiPrecisionInteger(bits, bfr.take((bits + 7) // 8))

  def transcribe_value(self, value):
    yield self.bits.transcribe_value(value.bits)
    yield value.data

  def check_value(self, value):
    super().check_value(value)
    if len(value.data) != (value.bits + 7) // 8:
      raise ValueError(
          f'{len(value.data)} data bytes do not match {value.bits} bits'
      )

class MPIList(Rule):
  ''' The rest of the input as a tuple of multiprecision integers.
  '''

  value_type = Tuple[MultiPrecisionInteger, ...]

  def __init__(self, message=None):
    super().__init__(message)
    self.mpi = MPI(message)

  def parse_value(self, bfr: ParseBuffer):
    mpis = []
    while not bfr.at_eof():
      mpis.append(self.mpi.match(bfr))
    return tuple(mpis)

  def transcribe_value(self, value):
    return [self.mpi.transcribe_value(mpi) for mpi in value]

  def check_value(self, value):
    super().check_value(value)
    for mpi in value:
      self.mpi.check_value(mpi)

class Nested(Rule):
  ''' The rest of the input as an instance of another binary class.

      The class is obtained by calling `factory()` at parse time,
      which permits classes defined later than the rule.
  '''

  def __init__(self, factory, message=None):
    super().__init__(message)
    self.factory = factory

  def parse_value(self, bfr: ParseBuffer):
    return self.factory().parse(bfr)

  def transcribe_value(self, value):
    return value

  def check_value(self, value):
    cls = self.factory()
    if not isinstance(value, cls):
      raise TypeError(f'expected an instance of {cls.__name__}, got {value!r}')

def secure_take(bfr: ParseBuffer, size: int) -> bytearray:
  ''' Consume `size` bytes from `bfr` into a buffer from its allocator.
  '''
  allocator = bfr.allocator or DEFAULT_ALLOCATOR
  bfr.peek(size)  # raise Truncated before allocating
  buf = allocator.allocate(size)
  buf[:] = bfr.takeview(size)
  return buf
