#!/usr/bin/env python3
#
# OpenPGP packet and subpacket codec.
#

''' Decoding and encoding of OpenPGP (RFC 4880) packets and
    signature subpackets.

    Records are parsed by a small grammar engine: each record body
    class declares its fields as rules, each rule with its own
    diagnostic message, and the record framing layer bounds every
    body to its declared length so that a malformed record never
    disturbs the records after it.
    Every successfully decoded record transcribes back to the exact
    bytes it came from.

    Example:

        >>> from pgpacket import decode_subpacket, KeyExpirationTime
        >>> sp = decode_subpacket(b'\\x05\\x09\\x00\\x01\\x51\\x80')
        >>> sp.body
        KeyExpirationTime(expiration=86400)
        >>> bytes(sp) == b'\\x05\\x09\\x00\\x01\\x51\\x80'
        True

    Failures raise a subclass of `ParseError` whose `rule_message`
    is the message of the rule which failed and whose `position`
    is the input offset at which that rule began,
    for example a `TrailingData` with the message
    "key expiration time subpacket is too large" at offset 6
    for a key expiration time subpacket with a 5 byte body.
'''

__version__ = '20261019'

DISTINFO = {
    'keywords': ["python3", "openpgp", "rfc4880"],
    'classifiers': [
        "Development Status :: 4 - Beta",
        "Programming Language :: Python :: 3",
        "Topic :: Security :: Cryptography",
    ],
    'install_requires': [
        'cs.deco',
        'cs.lex',
        'cs.logutils',
        'cs.pfx',
        'icontract',
        'typeguard>=3',
    ],
    'python_requires': '>=3.8',
}

from .binary import AbstractBinary, flatten
from .buffer import ParseBuffer
from .errors import (
    AllocationFailure,
    Malformed,
    ParseError,
    TrailingData,
    Truncated,
)
from .framing import Decoded, PacketHeader, RawBody, Record, SubpacketHeader
from .grammar import Field, Grammar, RecordBody, grammarclass
from .registry import RecordType, TypeRegistry
from .secmem import DEFAULT_ALLOCATOR, SecureAllocator
from .subpackets import (
    SUBPACKET_TYPES,
    Subpacket,
    SignatureCreationTime,
    SignatureExpirationTime,
    ExportableCertification,
    TrustSignature,
    RegularExpression,
    Revocable,
    KeyExpirationTime,
    PreferredSymmetricAlgorithms,
    RevocationKey,
    Issuer,
    NotationData,
    PreferredHashAlgorithms,
    PreferredCompressionAlgorithms,
    KeyServerPreferences,
    PreferredKeyServer,
    PrimaryUserID,
    PolicyURI,
    KeyFlags,
    SignersUserID,
    ReasonForRevocation,
    Features,
    SignatureTarget,
    IssuerFingerprint,
)
from .packets import (
    PACKET_TYPES,
    Packet,
    S2KSpecifier,
    SymmetricKeyEncryptedSessionKey,
    Marker,
    Trust,
    UserID,
)
from .signature import (
    EmbeddedSignature,
    SignatureBody,
    SignatureV3,
    SignatureV4,
    UnknownVersionSignature,
)
from .codec import (
    Codec,
    DEFAULT_CODEC,
    decode,
    decode_subpacket,
    encode,
    scan_packets,
    scan_subpackets,
    try_decode,
)

# all the record types are registered, no more may be added
SUBPACKET_TYPES.freeze()
PACKET_TYPES.freeze()
