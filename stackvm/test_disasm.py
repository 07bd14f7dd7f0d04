"""
Tests for the bytecode listing.
"""

from __future__ import annotations

import sys

from stackvm.disasm import Instruction, disassemble, iter_instructions
from stackvm.errors import InterpretResult, TruncatedProgram, UnknownOpcode
from stackvm.machine import interpret
from stackvm.opcodes import Opcode


def test_opcode_table_is_fixed():
    assert [(op.name, op.value) for op in Opcode] == [
        ("PUSHI", 0), ("ADD", 1), ("SUB", 2), ("DIV", 3), ("MUL", 4),
        ("POW", 5), ("SQRT", 6), ("LN", 7), ("POP_RES", 8), ("DONE", 9),
    ]
    assert Opcode.PUSHI.length == 2
    assert all(op.length == 1 for op in Opcode if op is not Opcode.PUSHI)


def test_iter_instructions_offsets():
    code = bytes([0, 2, 0, 11, 0, 3, 1, 4, 8, 9])
    insns = list(iter_instructions(code))
    assert insns[0] == Instruction(0, Opcode.PUSHI, 2)
    assert insns[2] == Instruction(4, Opcode.PUSHI, 3)
    assert [i.offset for i in insns] == [0, 2, 4, 6, 7, 8, 9]
    assert insns[-1].opcode is Opcode.DONE
    assert insns[-1].operand is None


def test_disassemble_listing():
    assert disassemble([0, 5, 8, 9]) == (
        "0000  PUSHI 5\n"
        "0002  POP_RES\n"
        "0003  DONE"
    )


def test_listing_stops_at_done():
    # The machine halts before reaching the trailing bytes.
    code = [0, 1, 8, 9, 77, 0]
    assert interpret(code).ok
    insns = list(iter_instructions(code))
    assert [i.opcode for i in insns] == [Opcode.PUSHI, Opcode.POP_RES, Opcode.DONE]


def test_unknown_opcode_offset():
    code = [0, 1, 77, 9]
    assert interpret(code).status is InterpretResult.ERROR_UNKNOWN_OPCODE
    try:
        list(iter_instructions(code))
    except UnknownOpcode as exc:
        assert exc.offset == 2
    else:
        raise AssertionError("unknown opcode not reported")


def test_truncated_push():
    try:
        list(iter_instructions([0, 1, 0]))
    except TruncatedProgram as exc:
        assert exc.offset == 3
    else:
        raise AssertionError("truncated PUSHI not reported")


def test_missing_done_is_truncated():
    for code in ([0, 5, 8], b""):
        assert interpret(code).status is InterpretResult.ERROR_TRUNCATED_PROGRAM
        try:
            disassemble(code)
        except TruncatedProgram as exc:
            assert exc.offset == len(code)
        else:
            raise AssertionError(f"{code!r} without DONE not reported")


def main():
    tests = [(name, fn) for name, fn in globals().items()
             if name.startswith("test_") and callable(fn)]
    failed = 0
    for name, fn in tests:
        try:
            fn()
            print(f"  ok    {name}")
        except AssertionError as exc:
            print(f"  FAIL  {name}: {exc}")
            failed += 1
    if failed:
        sys.exit(1)


if __name__ == "__main__":
    main()
