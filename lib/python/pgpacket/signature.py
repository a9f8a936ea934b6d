#!/usr/bin/env python3
#
# The signature packet, RFC 4880 section 5.2.
#

''' The signature packet body, in versions 3 and 4,
    and the embedded signature subpacket which contains one.

    A version 4 signature carries two subpacket areas,
    the hashed area covered by the signature and the unhashed area,
    each a 2 octet length followed by subpackets.
    The subpackets are parsed through the usual subpacket framing,
    so each is bounded by its own declared length inside its area.
'''

from typing import Tuple

from .buffer import ParseBuffer
from .errors import Truncated
from .grammar import RecordBody, grammarclass
from .packets import PACKET_TYPES
from .rules import FixedBytes, MPIList, Nested, Octets, Rule, TagByte, UIntBE
from .subpackets import SUBPACKET_TYPES, Issuer, Subpacket

class SubpacketArea(Rule):
  ''' A subpacket area: a 2 octet length and then that many octets
      of subpackets. The bound value is a tuple of `Subpacket`s.
  '''

  value_type = Tuple[Subpacket, ...]

  def __init__(self, message=None):
    super().__init__(message)
    self.length = UIntBE(2)

  def parse_value(self, bfr: ParseBuffer):
    length = self.length.parse_value(bfr)
    with bfr.subbuffer(bfr.offset + length) as area_bfr:
      return tuple(Subpacket.scan(area_bfr))

  def transcribe_value(self, value):
    bs = b''.join(bytes(subpacket) for subpacket in value)
    if len(bs) > 0xffff:
      raise ValueError(f'subpacket area of {len(bs)} bytes is too large')
    yield self.length.transcribe_value(len(bs))
    yield bs

class SignatureBody(RecordBody):
  ''' The base class for signature packet bodies.

      Parsing dispatches on the version octet to the class
      registered for that version in `VERSIONS`;
      other versions decode to `UnknownVersionSignature`.
  '''

  VERSIONS = {}

  @classmethod
  def parse(cls, bfr: ParseBuffer):
    if cls is not SignatureBody:
      return super().parse(bfr)
    if bfr.at_eof():
      raise Truncated("signature packet is empty", bfr.offset)
    version_class = cls.VERSIONS.get(bfr[0], UnknownVersionSignature)
    return version_class.parse(bfr)

  def find(self, subpacket_class):
    ''' Return the body of the first subpacket of the class `subpacket_class`,
        or `None` if there is no such subpacket.
    '''
    for subpacket in self.subpackets:
      if isinstance(subpacket.body, subpacket_class):
        return subpacket.body
    return None

  @property
  def subpackets(self):
    ''' The subpackets, hashed and then unhashed.
        Versions without subpackets have none.
    '''
    return ()

PACKET_TYPES.register(2, 'signature')(SignatureBody)

@grammarclass(eof_message="version 3 signature packet is too large")
class SignatureV3(SignatureBody):
  ''' A version 3 signature.
  '''
  version: TagByte(3, "version 3 signature packet is invalid")
  hashed_length: TagByte(5, "version 3 signature hashed length is not 5")
  sig_type: UIntBE(1, "version 3 signature packet is invalid")
  created: UIntBE(4, "version 3 signature packet is invalid")
  key_id: FixedBytes(8, "version 3 signature packet is invalid")
  pubkey_algorithm: UIntBE(1, "version 3 signature packet is invalid")
  hash_algorithm: UIntBE(1, "version 3 signature packet is invalid")
  hash_left: FixedBytes(2, "version 3 signature packet is invalid")
  mpis: MPIList("signature MPI is invalid")

  TEST_CASES = (
      b'\x03\x05\x10\x5a\x00\x00\x00' + bytes(range(8)) +
      b'\x01\x08\xab\xcd\x00\x09\x01\xff',
  )

  @property
  def issuer(self):
    ''' The key id of the signing key.
    '''
    return self.key_id

@grammarclass(eof_message="version 4 signature packet is too large")
class SignatureV4(SignatureBody):
  ''' A version 4 signature.
  '''
  version: TagByte(4, "version 4 signature packet is invalid")
  sig_type: UIntBE(1, "version 4 signature packet is invalid")
  pubkey_algorithm: UIntBE(1, "version 4 signature packet is invalid")
  hash_algorithm: UIntBE(1, "version 4 signature packet is invalid")
  hashed: SubpacketArea("hashed subpacket area is invalid")
  unhashed: SubpacketArea("unhashed subpacket area is invalid")
  hash_left: FixedBytes(2, "version 4 signature packet is invalid")
  mpis: MPIList("signature MPI is invalid")

  TEST_CASES = (
      b'\x04\x13\x01\x08'
      b'\x00\x0c\x05\x02\x5a\x00\x00\x00\x05\x09\x00\x01\x51\x80'
      b'\x00\x0a\x09\x10\x01\x23\x45\x67\x89\xab\xcd\xef'
      b'\xab\xcd\x00\x09\x01\xff',
  )

  @property
  def subpackets(self):
    return self.hashed + self.unhashed

  @property
  def issuer(self):
    ''' The key id of the signing key from the issuer subpacket,
        or `None` if there is none.
    '''
    issuer = self.find(Issuer)
    return None if issuer is None else issuer.key_id

@grammarclass(eof_message="signature packet is too large")
class UnknownVersionSignature(SignatureBody):
  ''' A signature of a version which is not understood,
      kept as opaque data after the version octet.
  '''
  version: UIntBE(1, "signature packet is invalid")
  data: Octets()

  TEST_CASES = (b'\x05\x00\x01\x02',)

SignatureBody.VERSIONS.update({3: SignatureV3, 4: SignatureV4})

@SUBPACKET_TYPES.register(32, 'embedded signature')
@grammarclass(eof_message="embedded signature subpacket is too large")
class EmbeddedSignature(RecordBody):
  ''' A complete signature packet body inside a subpacket,
      usually a primary key binding signature.
  '''
  signature: Nested(
      lambda: SignatureBody, "embedded signature subpacket is invalid"
  )

  TEST_CASES = (SignatureV4.TEST_CASES[0],)
