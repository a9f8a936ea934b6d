#!/usr/bin/env python3
#
# Exceptions raised by the packet codec.
#

''' The exceptions raised when decoding packets and subpackets.

    Every grammar failure raises a subclass of `ParseError`
    carrying the failing rule's message as `.rule_message`
    and the buffer offset at which that rule began matching
    as `.position`.
    The `.kind` attribute names the error kind independently of
    the class hierarchy:
    * `'truncated'`: fewer bytes remained than a rule required
    * `'malformed'`: the bytes were present but unacceptable
    * `'trailing-data'`: a record grammar finished before
      consuming its whole declared body

    Allocation failures from the secure allocator are reported as
    `AllocationFailure`, a `MemoryError` and not a `ParseError`.
'''

class ParseError(ValueError):
  ''' Base class for grammar match failures.

      Attributes:
      * `rule_message`: the message configured for the failing rule
      * `position`: the buffer offset at which the failing rule began
      * `rule`: the failing rule, if known
      * `detail`: the specific reason for the failure, if known,
        such as the unexpected value found
      * `record_offset`: the offset of the enclosing record's header,
        set by the framing layer
      * `end_offset`: the end of the enclosing record's declared body,
        set by the framing layer; `None` if the header itself failed
  '''

  kind = None

  def __init__(self, rule_message, position, *, rule=None, detail=None):
    if detail is None:
      super().__init__(f'{rule_message} (offset {position})')
    else:
      super().__init__(f'{rule_message}: {detail} (offset {position})')
    self.rule_message = rule_message
    self.position = position
    self.rule = rule
    self.detail = detail
    self.record_offset = None
    self.end_offset = None

  def reattributed(self, rule_message, position, rule):
    ''' Return a new exception of the same class
        attributed to `rule` with `rule_message` at `position`.
        The original message becomes the `detail`
        unless there is already one.
    '''
    detail = self.detail
    if detail is None and self.rule_message != rule_message:
      detail = self.rule_message
      if self.position != position:
        detail += f' at offset {self.position}'
    e = type(self)(rule_message, position, rule=rule, detail=detail)
    e.record_offset = self.record_offset
    e.end_offset = self.end_offset
    return e

class Truncated(ParseError, EOFError):
  ''' Fewer bytes remain than a rule requires.
  '''

  kind = 'truncated'

class Malformed(ParseError):
  ''' The bytes are present but fail a rule's content constraint.
  '''

  kind = 'malformed'

class TrailingData(ParseError):
  ''' A record grammar completed without consuming its declared body.
  '''

  kind = 'trailing-data'

class AllocationFailure(MemoryError):
  ''' The secure allocator could not supply a buffer.
  '''

  kind = 'allocation-failure'

  def __init__(self, size, *, secure=True):
    super().__init__(
        f'out of core allocating {size} bytes'
        f'{" in secure memory" if secure else ""}'
    )
    self.size = size
    self.secure = secure
