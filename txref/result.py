"""
Success/failure values returned by the txref codec.

The codec never returns None and never raises for bad input. Callers get
either ``Ok(value)`` or ``Err(kind, message)`` and can branch on ``.ok``,
or call ``.unwrap()`` to turn a failure into a ``TxrefError``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar, Union

T = TypeVar("T")


class ErrorKind(Enum):
    """Why an encode or decode failed."""

    RANGE = "range"  # height or index outside the layout's capacity
    FORMAT = "format"  # checksum, charset, length, prefix or version bit
    UNSUPPORTED_CHAIN = "unsupported_chain"


class TxrefError(ValueError):
    """A txref could not be encoded or decoded."""

    def __init__(self, kind: ErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True)
class Err:
    kind: ErrorKind
    message: str

    @property
    def ok(self) -> bool:
        return False

    def unwrap(self):
        raise TxrefError(self.kind, self.message)


Result = Union[Ok[T], Err]
