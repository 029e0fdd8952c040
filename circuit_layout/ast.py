from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional

@dataclass
class Span:
    line: int
    col: int

    def __str__(self) -> str:
        return f'line {self.line}, col {self.col}'


@dataclass
class Stmt:
    kind: str
    span: Span
    data: Dict[str, Any] = field(default_factory=dict)
    opts: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Program:
    stmts: List[Stmt] = field(default_factory=list)

    @property
    def title(self) -> Optional[str]:
        for stmt in self.stmts:
            if stmt.kind == 'scene':
                return stmt.data.get('title')
        return None
