from dataclasses import dataclass
from enum import Enum
from typing import Iterator, List, Optional

from .ast import Span


class Severity(Enum):
    INFO = 'info'
    WARNING = 'warning'
    ERROR = 'error'


class ErrorCode(Enum):
    COULD_NOT_FIND_SYMBOL = 'could-not-find-symbol'
    COULD_NOT_FIND_PIN = 'could-not-find-pin'
    COULD_NOT_FIND_NODE = 'could-not-find-node'
    CONFLICTING_ORIENTATION = 'conflicting-orientation'
    NOT_STRETCHABLE = 'not-stretchable'
    CONTRADICTION = 'contradiction'


@dataclass
class Diagnostic:
    severity: Severity
    code: ErrorCode
    message: str
    span: Optional[Span] = None
    source: Optional[str] = None

    def __str__(self) -> str:  # pragma: no cover - trivial string formatting
        if self.span is None:
            return self.message
        return f'[{self.span}] {self.message}'


class DiagnosticBag:
    """Collects structural problems found while building the network."""

    def __init__(self) -> None:
        self._items: List[Diagnostic] = []

    def post(
        self,
        severity: Severity,
        code: ErrorCode,
        message: str,
        span: Optional[Span] = None,
        source: Optional[str] = None,
    ) -> Diagnostic:
        diagnostic = Diagnostic(severity, code, message, span, source)
        self._items.append(diagnostic)
        return diagnostic

    def error(self, code: ErrorCode, message: str, span: Optional[Span] = None, source: Optional[str] = None) -> Diagnostic:
        return self.post(Severity.ERROR, code, message, span, source)

    def warning(self, code: ErrorCode, message: str, span: Optional[Span] = None, source: Optional[str] = None) -> Diagnostic:
        return self.post(Severity.WARNING, code, message, span, source)

    def __iter__(self) -> Iterator[Diagnostic]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)
