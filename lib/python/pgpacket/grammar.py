#!/usr/bin/env python3
#
# Declarative record grammars and field binding.
#

''' Record grammars: an ordered sequence of named fields, each
    matched by a rule from `pgpacket.rules`, closed by an end of input
    rule so that every record body must be consumed exactly.

    The usual way to define a record body is the `@grammarclass`
    decorator, which reads the class annotations in order, each
    annotation being a rule instance, and makes the class a frozen
    dataclass whose instances are only ever constructed once the
    whole grammar has matched:

        @grammarclass(eof_message="key expiration time subpacket is too large")
        class KeyExpirationTime(RecordBody):
          expiration: UIntBE(4, "key expiration time subpacket is invalid")

    after which:

        >>> KeyExpirationTime.from_bytes(b'\\x00\\x01\\x51\\x80')
        KeyExpirationTime(expiration=86400)
        >>> bytes(KeyExpirationTime(expiration=86400))
        b'\\x00\\x01Q\\x80'
'''

from collections import namedtuple
from dataclasses import dataclass, fields as dataclass_fields

from cs.deco import decorator
from cs.pfx import Pfx

from .binary import AbstractBinary
from .buffer import ParseBuffer
from .rules import EndOfInput, Rule
from .secmem import DEFAULT_ALLOCATOR

class Field(namedtuple('Field', 'name rule')):
  ''' A binding of the field `name` to the `Rule` which matches it.
  '''

  def __str__(self):
    return f'{self.name}:{self.rule!r}'

class Grammar:
  ''' An ordered sequence of `Field`s closed by an `EndOfInput` rule.
  '''

  def __init__(self, name, fields, eof_message=None):
    self.name = name
    self.fields = tuple(fields)
    for field in self.fields:
      if not isinstance(field.rule, Rule):
        raise TypeError(
            f'{name}.{field.name}: expected a Rule, got {field.rule!r}'
        )
    self.eof = EndOfInput(eof_message)

  def __repr__(self):
    return "%s(%r,[%s])" % (
        self.__class__.__name__,
        self.name,
        ','.join(map(str, self.fields)),
    )

  @property
  def field_names(self):
    ''' The field names in grammar order.
    '''
    return tuple(field.name for field in self.fields)

  def parse_fields(self, bfr: ParseBuffer) -> dict:
    ''' Match every field in order and then the end of input,
        returning a `dict` mapping field names to bound values.

        Nothing is returned unless the whole grammar matches,
        so a caller never sees a partly bound record.
    '''
    values = {}
    for field in self.fields:
      with Pfx(field.name):
        values[field.name] = field.rule.match(bfr)
    self.eof.match(bfr)
    return values

  def transcribe_fields(self, obj):
    ''' Yield the transcription of each field of `obj` in order.
    '''
    for field in self.fields:
      with Pfx(field.name):
        transcription = field.rule.transcribe_value(getattr(obj, field.name))
      # outside Pfx because this is a generator
      yield transcription

  def check_fields(self, obj):
    ''' Check every field value of `obj` against its rule.
    '''
    for field in self.fields:
      with Pfx(field.name):
        field.rule.check_value(getattr(obj, field.name))

class RecordBody(AbstractBinary):
  ''' Base class for typed record bodies.

      Subclasses are normally made with `@grammarclass`,
      which supplies the `GRAMMAR` class attribute.
      Bodies whose layout depends on their own earlier fields
      override `parse` and `transcribe` but still use the grammar's
      rules so that their failures are reported in the same way.
  '''

  GRAMMAR = None

  @classmethod
  def parse(cls, bfr: ParseBuffer):
    ''' Parse an instance from the whole of `bfr`.
    '''
    return cls(**cls.GRAMMAR.parse_fields(bfr))

  def transcribe(self):
    ''' Transcribe the fields in grammar order.
    '''
    return self.GRAMMAR.transcribe_fields(self)

  def __post_init__(self):
    self.GRAMMAR.check_fields(self)

  def __str__(self):
    return "%s(%s)" % (
        self.__class__.__name__,
        ','.join(
            f'{field_name}={getattr(self, field_name)!r}'
            for field_name in self.GRAMMAR.field_names
        ),
    )

  @classmethod
  def rule(cls, field_name) -> Rule:
    ''' Return the `Rule` for `field_name`.
    '''
    for field in cls.GRAMMAR.fields:
      if field.name == field_name:
        return field.rule
    raise KeyError(field_name)

  def release(self, allocator=None):
    ''' Zero the buffers of the secure fields and return them to
        `allocator` (default `pgpacket.secmem.DEFAULT_ALLOCATOR`),
        which should be the allocator they were decoded with.

        Secure fields are owned by the decoded body;
        call this once when the body is no longer needed.
    '''
    if allocator is None:
      allocator = DEFAULT_ALLOCATOR
    if self.GRAMMAR is None:
      return
    for field in self.GRAMMAR.fields:
      if getattr(field.rule, 'secure', False):
        value = getattr(self, field.name)
        if isinstance(value, bytearray):
          allocator.free(value)

@decorator
def grammarclass(cls, *, eof_message=None):
  ''' A class decorator for `RecordBody` subclasses.

      The class annotations, in order, name the fields and supply
      their rules. The class becomes a frozen dataclass with
      keyword or positional construction, value equality
      and write once fields, and gets a `GRAMMAR` attribute.

      Parameters:
      * `eof_message`: the diagnostic message reported if the body
        has bytes left over after the last field
  '''
  if not issubclass(cls, RecordBody):
    raise TypeError(f'@grammarclass: {cls} is not a subclass of RecordBody')
  dcls = dataclass(cls, frozen=True)
  dcls.GRAMMAR = Grammar(
      cls.__name__,
      [Field(F.name, F.type) for F in dataclass_fields(dcls)],
      eof_message=eof_message,
  )
  return dcls
