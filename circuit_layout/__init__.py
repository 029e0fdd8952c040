from .parser import parse_program
from .validate import validate, ValidationError
from .ast import Program, Stmt, Span
from .diagnostics import Diagnostic, DiagnosticBag, ErrorCode, Severity
from .solver import (
    translate,
    solve,
    solve_program,
    build_network,
    SolveOptions,
    LayoutModel,
    LayoutSolveError,
    Solution,
    SymbolPlacement,
    ConstraintResidual,
    LayoutSolverConfig,
    get_solver_config,
    set_solver_config,
)

__all__ = [
    'parse_program',
    'validate',
    'ValidationError',
    'Program',
    'Stmt',
    'Span',
    'Diagnostic',
    'DiagnosticBag',
    'ErrorCode',
    'Severity',
    'translate',
    'solve',
    'solve_program',
    'build_network',
    'SolveOptions',
    'LayoutModel',
    'LayoutSolveError',
    'Solution',
    'SymbolPlacement',
    'ConstraintResidual',
    'LayoutSolverConfig',
    'get_solver_config',
    'set_solver_config',
]
