"""
Component primitives for the stack machine.

Models the parts the interpreter is wired from: a program ROM holding the
bytecode, plain registers, and the bounded operand stack.
"""

from __future__ import annotations

import numpy as np

from .errors import StackOverflow, StackUnderflow, TruncatedProgram


STACK_MAX = 256


class ProgramROM:
    """Read-only bytecode buffer. Reads past the end are a truncated program."""

    def __init__(self, contents=b"", length: int | None = None):
        if isinstance(contents, (int, str)):
            raise TypeError(
                f"bytecode must be a sequence of bytes, got {type(contents).__name__}")
        self.data = self._to_bytes(contents)
        if length is None:
            length = len(self.data)
        if not 0 <= length <= len(self.data):
            raise ValueError(
                f"length must be in 0..{len(self.data)}, got {length}")
        self.length = length

    @staticmethod
    def _to_bytes(contents) -> bytes:
        """Decode element-wise; wide buffers (e.g. int64 arrays) are not raw bytes."""
        if isinstance(contents, (bytes, bytearray)):
            return bytes(contents)
        if not isinstance(contents, np.ndarray):
            contents = list(contents)
        arr = np.asarray(contents)
        if arr.size == 0:
            return b""
        if arr.ndim != 1 or arr.dtype.kind not in "iu":
            raise TypeError(
                f"bytecode must be a flat sequence of integers, got {arr.dtype} "
                f"with shape {arr.shape}")
        if arr.min() < 0 or arr.max() > 0xFF:
            raise ValueError("bytecode values must be in 0..255")
        return arr.astype(np.uint8).tobytes()

    def read(self, addr: int) -> int:
        if not 0 <= addr < self.length:
            raise TruncatedProgram(
                f"fetch past end of program ({self.length} bytes)", offset=addr)
        return self.data[addr]

    def __len__(self) -> int:
        return self.length


class Register:
    """Single-value register."""

    def __init__(self, initial=0):
        self._initial = initial
        self.value = initial

    def load(self, val):
        self.value = val

    def clear(self):
        self.value = self._initial


class OperandStack:
    """Fixed-capacity LIFO of float64 values."""

    def __init__(self, capacity: int = STACK_MAX):
        if capacity < 1:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        self._cells = np.zeros(capacity, dtype=np.float64)
        self._top = 0
        self.peak = 0

    def push(self, value):
        if self._top >= self.capacity:
            raise StackOverflow(f"push onto full stack (capacity {self.capacity})")
        self._cells[self._top] = value
        self._top += 1
        if self._top > self.peak:
            self.peak = self._top

    def pop(self) -> np.float64:
        if self._top == 0:
            raise StackUnderflow("pop from empty stack")
        self._top -= 1
        return self._cells[self._top]

    def reset(self):
        self._top = 0
        self.peak = 0

    def snapshot(self) -> tuple[float, ...]:
        """Current contents, bottom first."""
        return tuple(float(v) for v in self._cells[:self._top])

    def __len__(self) -> int:
        return self._top
