"""
Bytecode listing.

Walks a buffer the same way the machine decodes it, without executing
anything, and renders one line per instruction.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator

from .chips import ProgramROM
from .errors import TruncatedProgram, UnknownOpcode
from .opcodes import Opcode, decode_opcode


@dataclass(frozen=True)
class Instruction:
    offset: int
    opcode: Opcode
    operand: int | None = None

    def __str__(self) -> str:
        return f"{self.offset:04d}  {self.opcode.format(self.operand)}"


def iter_instructions(bytecode, length: int | None = None) -> Iterator[Instruction]:
    """Yield decoded instructions up to and including the first DONE.

    Bytes after DONE are never reached and are not decoded. Raises
    UnknownOpcode / TruncatedProgram at the same offsets the machine
    would fail on, including a buffer that ends without DONE.
    """
    rom = ProgramROM(bytecode, length)
    offset = 0
    while offset < len(rom):
        byte = rom.read(offset)
        op = decode_opcode(byte)
        if op is None:
            raise UnknownOpcode(f"unknown opcode {byte:#04x}", offset=offset)
        operand = rom.read(offset + 1) if op.immediate_bytes else None
        yield Instruction(offset, op, operand)
        if op is Opcode.DONE:
            return
        offset += op.length
    raise TruncatedProgram(
        f"fetch past end of program ({len(rom)} bytes)", offset=len(rom))


def disassemble(bytecode, length: int | None = None) -> str:
    return "\n".join(str(insn) for insn in iter_instructions(bytecode, length))
