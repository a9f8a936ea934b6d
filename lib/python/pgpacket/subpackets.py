#!/usr/bin/env python3
#
# Signature subpackets, RFC 4880 section 5.2.3.1.
#

''' Signature subpackets and the subpacket type registry.

    Each subpacket body class declares its layout as a grammar,
    with a diagnostic message for each field and for trailing data,
    and is registered by subpacket type in `SUBPACKET_TYPES`.
    Unregistered types decode to `RawBody`.

    Example:

        >>> sp = Subpacket.from_bytes(b'\\x05\\x09\\x00\\x01\\x51\\x80')
        >>> sp.type, sp.body.expiration
        (9, 86400)
        >>> bytes(Subpacket.from_body(KeyExpirationTime(86400)))
        b'\\x05\\t\\x00\\x01Q\\x80'
'''

from datetime import datetime, timedelta, timezone

from cs.logutils import warning
from cs.pfx import pfx_call

from .buffer import ParseBuffer
from .errors import Malformed, Truncated
from .framing import Record, RawBody, SubpacketHeader
from .grammar import RecordBody, grammarclass
from .registry import TypeRegistry
from .rules import (
    Boolean,
    FixedBytes,
    NulTerminatedText,
    OctetList,
    Octets,
    Text,
    UIntBE,
    encode_text,
)

SUBPACKET_TYPES = TypeRegistry('signature subpacket', RawBody, 127)

class Subpacket(Record):
  ''' A signature subpacket: a `SubpacketHeader` and a typed body.
  '''

  HEADER_CLASS = SubpacketHeader
  TYPES = SUBPACKET_TYPES
  CODEC_TYPES = 'subpacket_types'

  @property
  def critical(self):
    ''' The critical flag from the header.
    '''
    return self.header.critical

  @classmethod
  def check_type(cls, bfr: ParseBuffer, header, record_type, offset):
    ''' An unknown subpacket marked critical is reported,
        and rejected as `Malformed` if the codec is strict.
    '''
    if header.critical and record_type is cls.types_for(bfr).fallback:
      codec = bfr.codec
      if codec is not None and codec.strict_critical:
        raise Malformed(
            f'unknown critical subpacket type {header.type}', offset
        )
      warning("unknown critical subpacket type %d", header.type)

  @classmethod
  def from_body(cls, body, type=None, critical=False):
    ''' Construct a subpacket for `body` with a fresh header.
    '''
    return super().from_body(body, type, critical=critical)

class TimeStampMixin:
  ''' Methods for subpackets holding a UNIX timestamp.
  '''

  @property
  def datetime(self):
    ''' The timestamp as a UTC `datetime`.
    '''
    return pfx_call(datetime.fromtimestamp, self.timestamp, timezone.utc)

class DurationMixin:
  ''' Methods for subpackets holding a duration in seconds,
      where zero means no expiry.
  '''

  @property
  def timedelta(self):
    ''' The duration as a `timedelta`, or `None` if it never expires.
    '''
    if self.expiration == 0:
      return None
    return timedelta(seconds=self.expiration)

@SUBPACKET_TYPES.register(2, 'signature creation time')
@grammarclass(eof_message="signature creation time subpacket is too large")
class SignatureCreationTime(RecordBody, TimeStampMixin):
  ''' The time the signature was made.
  '''
  timestamp: UIntBE(4, "signature creation time subpacket is invalid")

  TEST_CASES = (b'\x5a\x00\x00\x00',)

@SUBPACKET_TYPES.register(3, 'signature expiration time')
@grammarclass(eof_message="signature expiration time subpacket is too large")
class SignatureExpirationTime(RecordBody, DurationMixin):
  ''' The validity period of the signature in seconds after its creation.
  '''
  expiration: UIntBE(4, "signature expiration time subpacket is invalid")

  TEST_CASES = (b'\x00\x01\x51\x80',)

@SUBPACKET_TYPES.register(4, 'exportable certification')
@grammarclass(eof_message="exportable certification subpacket is too large")
class ExportableCertification(RecordBody):
  exportable: Boolean("exportable certification subpacket is invalid")

  TEST_CASES = (b'\x00', b'\x01')

@SUBPACKET_TYPES.register(5, 'trust signature')
@grammarclass(eof_message="trust signature subpacket is too large")
class TrustSignature(RecordBody):
  ''' The trust level and amount of a trust signature.
  '''
  level: UIntBE(1, "trust signature subpacket is invalid")
  amount: UIntBE(1, "trust signature subpacket is invalid")

  TEST_CASES = (b'\x01\x78',)

@SUBPACKET_TYPES.register(6, 'regular expression')
@grammarclass(eof_message="regular expression subpacket is too large")
class RegularExpression(RecordBody):
  ''' A regular expression limiting the scope of a trust signature.
  '''
  regex: NulTerminatedText("regular expression subpacket is invalid")

  TEST_CASES = (b'<[^>]+[@.]example\\.com>$\0',)

@SUBPACKET_TYPES.register(7, 'revocable')
@grammarclass(eof_message="revocable subpacket is too large")
class Revocable(RecordBody):
  revocable: Boolean("revocable subpacket is invalid")

  TEST_CASES = (b'\x00',)

@SUBPACKET_TYPES.register(9, 'key expiration time')
@grammarclass(eof_message="key expiration time subpacket is too large")
class KeyExpirationTime(RecordBody, DurationMixin):
  ''' The validity period of the key in seconds after its creation.
  '''
  expiration: UIntBE(4, "key expiration time subpacket is invalid")

  TEST_CASES = (
      b'\x00\x01\x51\x80',
      (86400, b'\x00\x01\x51\x80'),
  )

@SUBPACKET_TYPES.register(11, 'preferred symmetric algorithms')
@grammarclass(
    eof_message="preferred symmetric algorithms subpacket is too large"
)
class PreferredSymmetricAlgorithms(RecordBody):
  algorithms: OctetList("preferred symmetric algorithms subpacket is invalid")

  TEST_CASES = (b'\x09\x08\x07\x02', b'')

@SUBPACKET_TYPES.register(12, 'revocation key')
@grammarclass(eof_message="revocation key subpacket is too large")
class RevocationKey(RecordBody):
  ''' A key authorised to revoke the signing key.
  '''
  key_class: UIntBE(1, "revocation key subpacket is invalid")
  algorithm: UIntBE(1, "revocation key subpacket is invalid")
  fingerprint: FixedBytes(20, "revocation key subpacket is invalid")

  TEST_CASES = (b'\x80\x01' + bytes(range(20)),)

@SUBPACKET_TYPES.register(16, 'issuer')
@grammarclass(eof_message="issuer subpacket is too large")
class Issuer(RecordBody):
  ''' The key id of the signing key.
  '''
  key_id: FixedBytes(8, "issuer subpacket is invalid")

  TEST_CASES = (b'\x01\x23\x45\x67\x89\xab\xcd\xef',)

  def __str__(self):
    return f'{self.__class__.__name__}({self.key_id.hex().upper()})'

@SUBPACKET_TYPES.register(20, 'notation data')
@grammarclass(eof_message="notation data subpacket is too large")
class NotationData(RecordBody):
  ''' A notation on the signature: a name and a value
      with 4 octets of flags.

      On the wire the flags are followed by the 2 octet lengths
      of the name and the value and then the name and value
      themselves, so this class parses and transcribes its fields
      itself using the same rules as its grammar.
  '''
  flags: UIntBE(4, "notation data subpacket is invalid")
  name: Text("notation name is invalid")
  value: Octets("notation value is invalid")

  HUMAN_READABLE = 0x80000000

  LENGTH = UIntBE(2, "notation data subpacket is invalid")

  TEST_CASES = (
      b'\x80\x00\x00\x00\x00\x04\x00\x05saltvalue',
      b'\x00\x00\x00\x00\x00\x00\x00\x00',
      (
          0x80000000,
          'salt@example.org',
          b'pepper',
          {},
          b'\x80\x00\x00\x00\x00\x10\x00\x06salt@example.orgpepper',
      ),
  )

  def __post_init__(self):
    super().__post_init__()
    for field_name, length in (
        ('name', len(encode_text(self.name))),
        ('value', len(self.value)),
    ):
      if length > 0xffff:
        raise ValueError(
            f'notation {field_name} of {length} bytes exceeds 65535 bytes'
        )

  @property
  def human_readable(self):
    ''' Whether the value is flagged as human readable text.
    '''
    return bool(self.flags & self.HUMAN_READABLE)

  @classmethod
  def parse(cls, bfr: ParseBuffer):
    flags = cls.rule('flags').match(bfr)
    name_length = cls.LENGTH.match(bfr)
    value_length = cls.LENGTH.match(bfr)
    if name_length + value_length > bfr.remaining():
      raise Truncated(
          "notation data subpacket is invalid: name and value need %d bytes, %d remain"
          % (name_length + value_length, bfr.remaining()),
          bfr.offset,
      )
    with bfr.subbuffer(bfr.offset + name_length) as name_bfr:
      name = cls.rule('name').match(name_bfr)
    with bfr.subbuffer(bfr.offset + value_length) as value_bfr:
      value = cls.rule('value').match(value_bfr)
    cls.GRAMMAR.eof.match(bfr)
    return cls(flags, name, value)

  def transcribe(self):
    name_bs = encode_text(self.name)
    yield self.rule('flags').transcribe_value(self.flags)
    yield self.LENGTH.transcribe_value(len(name_bs))
    yield self.LENGTH.transcribe_value(len(self.value))
    yield name_bs
    yield self.value

@SUBPACKET_TYPES.register(21, 'preferred hash algorithms')
@grammarclass(eof_message="preferred hash algorithms subpacket is too large")
class PreferredHashAlgorithms(RecordBody):
  algorithms: OctetList("preferred hash algorithms subpacket is invalid")

  TEST_CASES = (b'\x08\x09\x0a\x02',)

@SUBPACKET_TYPES.register(22, 'preferred compression algorithms')
@grammarclass(
    eof_message="preferred compression algorithms subpacket is too large"
)
class PreferredCompressionAlgorithms(RecordBody):
  algorithms: OctetList(
      "preferred compression algorithms subpacket is invalid"
  )

  TEST_CASES = (b'\x02\x03\x01',)

@SUBPACKET_TYPES.register(23, 'key server preferences')
@grammarclass(eof_message="key server preferences subpacket is too large")
class KeyServerPreferences(RecordBody):
  flags: Octets("key server preferences subpacket is invalid")

  NO_MODIFY = 0x80

  TEST_CASES = (b'\x80',)

  @property
  def no_modify(self):
    ''' Whether the key holder requests that only they modify the key.
    '''
    return bool(self.flags) and bool(self.flags[0] & self.NO_MODIFY)

@SUBPACKET_TYPES.register(24, 'preferred key server')
@grammarclass(eof_message="preferred key server subpacket is too large")
class PreferredKeyServer(RecordBody):
  uri: Text("preferred key server subpacket is invalid")

  TEST_CASES = (b'hkps://keys.example.org',)

@SUBPACKET_TYPES.register(25, 'primary user id')
@grammarclass(eof_message="primary user id subpacket is too large")
class PrimaryUserID(RecordBody):
  primary: Boolean("primary user id subpacket is invalid")

  TEST_CASES = (b'\x01',)

@SUBPACKET_TYPES.register(26, 'policy uri')
@grammarclass(eof_message="policy uri subpacket is too large")
class PolicyURI(RecordBody):
  uri: Text("policy uri subpacket is invalid")

  TEST_CASES = (b'https://example.org/policy',)

@SUBPACKET_TYPES.register(27, 'key flags')
@grammarclass(eof_message="key flags subpacket is too large")
class KeyFlags(RecordBody):
  ''' The permitted uses of the key, as a bit field.
  '''
  flags: Octets("key flags subpacket is invalid")

  CERTIFY = 0x01
  SIGN = 0x02
  ENCRYPT_COMMUNICATIONS = 0x04
  ENCRYPT_STORAGE = 0x08
  SPLIT = 0x10
  AUTHENTICATE = 0x20
  GROUP = 0x80

  TEST_CASES = (b'\x03', b'\x0c\x00')

  def __contains__(self, flag):
    return bool(self.flags) and bool(self.flags[0] & flag)

@SUBPACKET_TYPES.register(28, "signer's user id")
@grammarclass(eof_message="signer's user id subpacket is too large")
class SignersUserID(RecordBody):
  user_id: Text("signer's user id subpacket is invalid")

  TEST_CASES = ('Alice <alice@example.org>'.encode('utf-8'),)

@SUBPACKET_TYPES.register(29, 'reason for revocation')
@grammarclass(eof_message="reason for revocation subpacket is too large")
class ReasonForRevocation(RecordBody):
  ''' The reason a key or certification was revoked.
  '''
  code: UIntBE(1, "reason for revocation subpacket is invalid")
  reason: Text("reason for revocation subpacket is invalid")

  TEST_CASES = (b'\x02key compromised',)

@SUBPACKET_TYPES.register(30, 'features')
@grammarclass(eof_message="features subpacket is too large")
class Features(RecordBody):
  flags: Octets("features subpacket is invalid")

  MODIFICATION_DETECTION = 0x01

  TEST_CASES = (b'\x01',)

@SUBPACKET_TYPES.register(31, 'signature target')
@grammarclass(eof_message="signature target subpacket is too large")
class SignatureTarget(RecordBody):
  ''' Identifies the signature which a signature refers to.
  '''
  pubkey_algorithm: UIntBE(1, "signature target subpacket is invalid")
  hash_algorithm: UIntBE(1, "signature target subpacket is invalid")
  hash: Octets("signature target subpacket is invalid")

  TEST_CASES = (b'\x01\x08' + bytes(32),)

@SUBPACKET_TYPES.register(33, 'issuer fingerprint')
@grammarclass(eof_message="issuer fingerprint subpacket is too large")
class IssuerFingerprint(RecordBody):
  ''' The key version and fingerprint of the signing key.
  '''
  version: UIntBE(1, "issuer fingerprint subpacket is invalid")
  fingerprint: Octets("issuer fingerprint subpacket is invalid")

  TEST_CASES = (b'\x04' + bytes(range(20)),)

  def __str__(self):
    return "%s(v%d,%s)" % (
        self.__class__.__name__,
        self.version,
        self.fingerprint.hex().upper(),
    )
