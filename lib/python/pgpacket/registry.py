#!/usr/bin/env python3
#
# Dispatch registries mapping type discriminators to body classes.
#

''' Type registries mapping a record's type discriminator
    (a subpacket type or a packet tag) to the `RecordType` describing
    how to parse and transcribe its body.

    A registry is populated at import time by decorating body classes:

        SUBPACKET_TYPES = TypeRegistry('signature subpacket', RawBody, 127)

        @SUBPACKET_TYPES.register(9)
        @grammarclass(eof_message="key expiration time subpacket is too large")
        class KeyExpirationTime(RecordBody):
          ...

    and then frozen, after which it is a read only table which may be
    shared freely between threads.
    Unregistered discriminators resolve to a shared fallback type
    which keeps the body bytes opaque.
'''

from collections import namedtuple
from types import MappingProxyType

from icontract import require

from cs.logutils import debug

class RecordType(namedtuple('RecordType', 'discriminator name body_class')):
  ''' A registry entry: the discriminator, a descriptive name
      and the `RecordBody` subclass for the record body.
  '''

  @property
  def grammar(self):
    ''' The body class grammar.
    '''
    return self.body_class.GRAMMAR

  @property
  def constructor(self):
    ''' The callable which parses a body from a bounded `ParseBuffer`.
    '''
    return self.body_class.parse

  @property
  def serializer(self):
    ''' The callable which transcribes a body instance.
    '''
    return self.body_class.transcribe

class TypeRegistry:
  ''' A registry of `RecordType`s keyed by discriminator.
  '''

  def __init__(self, name, fallback, max_discriminator):
    ''' Initialise the registry.

        Parameters:
        * `name`: the kind of record, used in messages
        * `fallback`: the body class for unregistered discriminators
        * `max_discriminator`: the largest legal discriminator
    '''
    self.name = name
    self.max_discriminator = max_discriminator
    self.fallback = RecordType(None, f'unknown {name}', fallback)
    self._types = {}
    self.frozen = False

  def __str__(self):
    return "%s(%r,%d types%s)" % (
        self.__class__.__name__,
        self.name,
        len(self._types),
        ',frozen' if self.frozen else '',
    )

  def __contains__(self, discriminator):
    return discriminator in self._types

  def __getitem__(self, discriminator):
    return self._types[discriminator]

  def __iter__(self):
    return iter(sorted(self._types))

  def __len__(self):
    return len(self._types)

  def _check_registrable(self, discriminator):
    if self.frozen:
      raise RuntimeError(f'{self}: registry is frozen')
    if discriminator in self._types:
      raise ValueError(
          f'{self}: discriminator {discriminator} already registered as {self._types[discriminator]}'
      )

  @require(
      lambda self, discriminator: 0 <= discriminator <= self.max_discriminator
  )
  def register(self, discriminator: int, name=None):
    ''' Return a class decorator registering the decorated body class
        for `discriminator`.
        The class gets `TYPE` and `NAME` attributes.
    '''
    self._check_registrable(discriminator)

    def register_body_class(body_class):
      self._check_registrable(discriminator)
      record_name = name or body_class.__name__
      body_class.TYPE = discriminator
      body_class.NAME = record_name
      self._types[discriminator] = RecordType(
          discriminator, record_name, body_class
      )
      return body_class

    return register_body_class

  def freeze(self):
    ''' Freeze the registry: replace the table with a read only view.
    '''
    if not self.frozen:
      self._types = MappingProxyType(dict(self._types))
      self.frozen = True
      debug("%s", self)

  def lookup(self, discriminator: int) -> RecordType:
    ''' Return the `RecordType` for `discriminator`,
        or the shared fallback type if it is not registered.
    '''
    try:
      return self._types[discriminator]
    except KeyError:
      return self.fallback
