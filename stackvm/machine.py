"""
Stack machine — clocked fetch/decode/execute interpreter for arithmetic bytecode.

Models the interpreter as hardware: a program ROM, an instruction pointer,
a bounded operand stack, one result register, and a state register stepped
one micro-operation per tick.
"""

from __future__ import annotations

import sys
import threading
from dataclasses import dataclass, field

import numpy as np

from .chips import STACK_MAX, OperandStack, ProgramROM, Register
from .errors import (
    ERROR_CLASSES, DivisionByZero, DomainError, InterpretResult,
    UnknownOpcode, VMError,
)
from .opcodes import Opcode, decode_opcode


# ---------------------------------------------------------------------------
# States
# ---------------------------------------------------------------------------

S_FETCH   = 0
S_DECODE  = 1
S_EXECUTE = 2
S_DONE    = 3
S_FAILED  = 4

STATE_NAMES = {
    S_FETCH: "FETCH",
    S_DECODE: "DECODE",
    S_EXECUTE: "EXECUTE",
    S_DONE: "DONE",
    S_FAILED: "FAILED",
}

TERMINAL_STATES = frozenset({S_DONE, S_FAILED})

_BINARY_UFUNCS = {
    Opcode.ADD: np.add,
    Opcode.SUB: np.subtract,
    Opcode.MUL: np.multiply,
    Opcode.POW: np.power,
}

_HANDLERS = {
    Opcode.PUSHI:   "_op_pushi",
    Opcode.ADD:     "_op_binary",
    Opcode.SUB:     "_op_binary",
    Opcode.DIV:     "_op_div",
    Opcode.MUL:     "_op_binary",
    Opcode.POW:     "_op_binary",
    Opcode.SQRT:    "_op_sqrt",
    Opcode.LN:      "_op_ln",
    Opcode.POP_RES: "_op_pop_res",
    Opcode.DONE:    "_op_done",
}

_unhandled = set(Opcode) - set(_HANDLERS)
if _unhandled:
    raise RuntimeError(
        f"no handler for opcodes: {', '.join(op.name for op in sorted(_unhandled))}")


# ---------------------------------------------------------------------------
# Outcome
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RunResult:
    status: InterpretResult
    value: float | None = None
    error: str | None = None
    ip: int = 0
    stats: dict = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status is InterpretResult.SUCCESS

    def raise_for_status(self) -> RunResult:
        """Re-raise a failed run as its VMError subclass."""
        if not self.ok:
            raise ERROR_CLASSES[self.status](self.error or self.status.value)
        return self


# ---------------------------------------------------------------------------
# Machine
# ---------------------------------------------------------------------------

class StackMachine:
    """Bytecode interpreter with one result register.

    Args:
        capacity: Operand stack size. Pushing past it fails the run.
        strict_domain: When True, sqrt of a negative, ln of a non-positive
            and NaN-producing powers fail with ERROR_DOMAIN. Otherwise they
            propagate as NaN / -inf like plain IEEE arithmetic.
        verbose: Trace resets, each executed instruction and the final state
            to stderr.
    """

    def __init__(self, capacity: int = STACK_MAX, strict_domain: bool = False,
                 verbose: bool = False):
        self.strict_domain = strict_domain
        self.verbose = verbose

        # --- Chips ---
        self.rom = ProgramROM()
        self.stack = OperandStack(capacity)

        # --- Registers ---
        self.ip = Register(0)
        self.result = Register(np.float64(0.0))
        self.state = Register(S_FETCH)

        # --- Internal latches ---
        self._current_byte = 0
        self._insn_offset = 0
        self._opcode: Opcode | None = None
        self._operand: int | None = None
        self.error: VMError | None = None

        self._lock = threading.Lock()
        self.reset_counters()

    # -------------------------------------------------------------------
    # Reset / load
    # -------------------------------------------------------------------

    def reset(self):
        """Clear all run state. The loaded program is kept."""
        if self.verbose:
            print("Reset vm state", file=sys.stderr, flush=True)
        self.stack.reset()
        self.ip.clear()
        self.result.clear()
        self.state.load(S_FETCH)
        self._current_byte = 0
        self._insn_offset = 0
        self._opcode = None
        self._operand = None
        self.error = None
        self.reset_counters()

    def load(self, bytecode, length: int | None = None):
        """Install a program and reset, ready for tick() or run()."""
        self.rom = ProgramROM(bytecode, length)
        self.reset()

    # -------------------------------------------------------------------
    # Memory helpers
    # -------------------------------------------------------------------

    def _fetch_byte(self) -> int:
        addr = self.ip.value
        byte = self.rom.read(addr)
        self.ip.load(addr + 1)
        return byte

    def _push(self, value):
        self.stack.push(value)
        self.pushes += 1

    def _pop(self) -> np.float64:
        value = self.stack.pop()
        self.pops += 1
        return value

    # -------------------------------------------------------------------
    # State machine
    # -------------------------------------------------------------------

    @property
    def halted(self) -> bool:
        return self.state.value in TERMINAL_STATES

    def tick(self) -> bool:
        """One micro-step. Returns True if still running."""
        s = self.state.value
        if s in TERMINAL_STATES:
            return False
        self.cycles += 1

        try:
            if s == S_FETCH:
                self._insn_offset = self.ip.value
                self._current_byte = self._fetch_byte()
                self.state.load(S_DECODE)

            elif s == S_DECODE:
                op = decode_opcode(self._current_byte)
                if op is None:
                    raise UnknownOpcode(
                        f"unknown opcode {self._current_byte:#04x}",
                        offset=self._insn_offset)
                self._opcode = op
                self._operand = self._fetch_byte() if op.immediate_bytes else None
                self.state.load(S_EXECUTE)

            elif s == S_EXECUTE:
                self.instructions += 1
                if self.verbose:
                    self._trace()
                getattr(self, _HANDLERS[self._opcode])()
                if self.state.value == S_EXECUTE:
                    self.state.load(S_FETCH)

        except VMError as exc:
            self._fail(exc)

        if self.verbose and self.halted:
            print(f"Stopped: {self.status.value} (ip={self.ip.value})",
                  file=sys.stderr, flush=True)
        return not self.halted

    def _fail(self, exc: VMError):
        if exc.offset is None:
            # Stack errors don't know where they happened.
            exc.offset = self._insn_offset
            exc.args = (f"offset {exc.offset}: {exc}",)
        self.error = exc
        self.state.load(S_FAILED)

    def _trace(self):
        print(f"{self._insn_offset:04d}  {self._opcode.format(self._operand):<10}"
              f" depth={len(self.stack)}", file=sys.stderr, flush=True)

    # -------------------------------------------------------------------
    # Instruction handlers
    # -------------------------------------------------------------------

    def _op_pushi(self):
        self._push(np.float64(self._operand))

    def _op_binary(self):
        # Right operand was pushed last, so it comes off first.
        right = self._pop()
        left = self._pop()
        ufunc = _BINARY_UFUNCS[self._opcode]
        with np.errstate(all="ignore"):
            res = ufunc(left, right)
        if self._opcode is Opcode.POW:
            self._check_nan(res, left, right)
        self._push(res)

    def _op_div(self):
        right = self._pop()
        if right == 0:
            raise DivisionByZero("divisor is zero", offset=self._insn_offset)
        left = self._pop()
        with np.errstate(all="ignore"):
            res = np.divide(left, right)
        self._push(res)

    def _op_sqrt(self):
        arg = self._pop()
        if self.strict_domain and arg < 0:
            raise DomainError(f"SQRT undefined for {float(arg)}",
                              offset=self._insn_offset)
        with np.errstate(all="ignore"):
            res = np.sqrt(arg)
        self._push(res)

    def _op_ln(self):
        arg = self._pop()
        if self.strict_domain and arg <= 0:
            raise DomainError(f"LN undefined for {float(arg)}",
                              offset=self._insn_offset)
        with np.errstate(all="ignore"):
            res = np.log(arg)
        self._push(res)

    def _op_pop_res(self):
        self.result.load(self._pop())

    def _op_done(self):
        self.state.load(S_DONE)

    def _check_nan(self, res, *args):
        if not self.strict_domain or not np.isnan(res):
            return
        if any(np.isnan(a) for a in args):
            return
        operands = ", ".join(str(float(a)) for a in args)
        raise DomainError(f"{self._opcode.name} undefined for ({operands})",
                          offset=self._insn_offset)

    # -------------------------------------------------------------------
    # Run to completion
    # -------------------------------------------------------------------

    def run(self, bytecode, length: int | None = None) -> RunResult:
        """Reset, load and execute `bytecode` until DONE or an error."""
        if not self._lock.acquire(blocking=False):
            raise RuntimeError("machine is busy")
        try:
            self.load(bytecode, length)
            if self.verbose:
                print("Start interpreting", file=sys.stderr, flush=True)
            while self.tick():
                pass
            return self.outcome()
        finally:
            self._lock.release()

    @property
    def status(self) -> InterpretResult:
        if self.state.value == S_FAILED:
            return self.error.kind
        return InterpretResult.SUCCESS

    def outcome(self) -> RunResult:
        """Typed outcome of a halted machine."""
        if not self.halted:
            raise RuntimeError(
                f"machine still running (state {STATE_NAMES[self.state.value]})")
        if self.state.value == S_DONE:
            return RunResult(
                status=InterpretResult.SUCCESS,
                value=float(self.result.value),
                ip=self.ip.value,
                stats=self.stats(),
            )
        return RunResult(
            status=self.error.kind,
            error=str(self.error),
            ip=self.ip.value,
            stats=self.stats(),
        )

    def reset_counters(self):
        self.cycles = 0
        self.instructions = 0
        self.pushes = 0
        self.pops = 0

    def stats(self) -> dict:
        return {
            "cycles": self.cycles,
            "instructions": self.instructions,
            "pushes": self.pushes,
            "pops": self.pops,
            "stack_peak": self.stack.peak,
        }

    def stats_summary(self) -> str:
        s = self.stats()
        return (
            f"Cycles: {s['cycles']}\n"
            f"Instructions: {s['instructions']}\n"
            f"Stack: {s['pushes']} pushes / {s['pops']} pops\n"
            f"Stack peak: {s['stack_peak']}"
        )


def interpret(bytecode, *, length: int | None = None, **options) -> RunResult:
    """Run `bytecode` on a fresh machine. `options` go to StackMachine."""
    return StackMachine(**options).run(bytecode, length=length)
