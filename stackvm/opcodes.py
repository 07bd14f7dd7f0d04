"""
Instruction set.

Opcode numbering is fixed: existing bytecode producers emit these bytes.
Only PUSHI carries an immediate (one unsigned byte); everything else is a
single opcode byte.
"""

from __future__ import annotations

import enum


class Opcode(enum.IntEnum):
    PUSHI   = 0   # push the immediate argument
    ADD     = 1   # pop b, pop a, push a + b
    SUB     = 2   # pop b, pop a, push a - b
    DIV     = 3   # pop b, pop a, push a / b
    MUL     = 4   # pop b, pop a, push a * b
    POW     = 5   # pop b, pop a, push a ^ b
    SQRT    = 6   # pop a, push sqrt(a)
    LN      = 7   # pop a, push ln(a)
    POP_RES = 8   # pop a into the result register
    DONE    = 9   # stop execution

    @property
    def immediate_bytes(self) -> int:
        return IMMEDIATE_BYTES.get(self, 0)

    @property
    def length(self) -> int:
        """Encoded size in bytes, opcode included."""
        return 1 + self.immediate_bytes

    def format(self, operand: int | None = None) -> str:
        if operand is None:
            return self.name
        return f"{self.name} {operand}"


IMMEDIATE_BYTES = {
    Opcode.PUSHI: 1,
}


def decode_opcode(byte: int) -> Opcode | None:
    """Map a raw byte to its Opcode, or None if it names no instruction."""
    try:
        return Opcode(byte)
    except ValueError:
        return None
