"""
Error taxonomy for the stack machine.

Components raise a VMError subclass; the machine latches it and reports the
matching InterpretResult kind to the caller.
"""

from __future__ import annotations

import enum


class InterpretResult(enum.Enum):
    SUCCESS                 = "success"
    ERROR_DIVISION_BY_ZERO  = "division by zero"
    ERROR_UNKNOWN_OPCODE    = "unknown opcode"
    ERROR_STACK_OVERFLOW    = "stack overflow"
    ERROR_STACK_UNDERFLOW   = "stack underflow"
    ERROR_TRUNCATED_PROGRAM = "truncated program"
    ERROR_DOMAIN            = "domain error"


class VMError(Exception):
    """Base class for program errors. `kind` selects the run outcome."""

    kind = InterpretResult.ERROR_UNKNOWN_OPCODE

    def __init__(self, message: str, *, offset: int | None = None) -> None:
        self.offset = offset
        prefix = ""
        if offset is not None:
            prefix = f"offset {offset}: "
        super().__init__(prefix + str(message))


class DivisionByZero(VMError):
    kind = InterpretResult.ERROR_DIVISION_BY_ZERO


class UnknownOpcode(VMError):
    kind = InterpretResult.ERROR_UNKNOWN_OPCODE


class StackOverflow(VMError):
    kind = InterpretResult.ERROR_STACK_OVERFLOW


class StackUnderflow(VMError):
    kind = InterpretResult.ERROR_STACK_UNDERFLOW


class TruncatedProgram(VMError):
    kind = InterpretResult.ERROR_TRUNCATED_PROGRAM


class DomainError(VMError):
    kind = InterpretResult.ERROR_DOMAIN


ERROR_CLASSES: dict[InterpretResult, type[VMError]] = {
    cls.kind: cls
    for cls in (DivisionByZero, UnknownOpcode, StackOverflow,
                StackUnderflow, TruncatedProgram, DomainError)
}
