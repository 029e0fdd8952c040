import re
from typing import Any, Dict, List, Optional, Tuple

from .ast import Program, Span, Stmt
from .lexer import tokenize_line

_ERROR_LOC_RE = re.compile(r"\[line (\d+), col (\d+)\]")

Token = Tuple[str, str, int, int]


class Cursor:
    def __init__(self, tokens: List[Token]):
        self.toks = tokens
        self.i = 0

    def peek(self):
        return self.toks[self.i] if self.i < len(self.toks) else None

    def match(self, *types: str):
        if self.i < len(self.toks) and self.toks[self.i][0] in types:
            t = self.toks[self.i]
            self.i += 1
            return t
        return None

    def expect(self, *types: str):
        t = self.peek()
        if t and t[0] in types:
            self.i += 1
            return t
        want = '|'.join(types)
        if t:
            raise SyntaxError(f'[line {t[2]}, col {t[3]}] expected {want}, got {t[0]}')
        raise SyntaxError(f'Unexpected end of line: expected {want}')


def parse_id(cur: Cursor):
    t = cur.expect('ID')
    return t[1], Span(t[2], t[3])


def parse_ref(cur: Cursor, *, allow_ground: bool = False):
    """Parse ``NAME``, ``NAME.PIN`` or ``NAME.PIN.x``; ``0`` is the ground node."""
    t = cur.peek()
    if allow_ground and t and t[0] == 'NUMBER':
        cur.i += 1
        if t[1] != '0':
            raise SyntaxError(f'[line {t[2]}, col {t[3]}] only 0 may be used as a node number')
        return '0', Span(t[2], t[3])
    name, sp = parse_id(cur)
    parts = [name]
    while cur.match('DOT'):
        part, _ = parse_id(cur)
        parts.append(part)
    return '.'.join(parts), sp


def parse_pin_ref(cur: Cursor):
    ref, sp = parse_ref(cur)
    if ref.count('.') != 1:
        raise SyntaxError(f'[line {sp.line}, col {sp.col}] expected SYMBOL.PIN, got {ref!r}')
    return ref, sp


def parse_coordinate_ref(cur: Cursor):
    ref, sp = parse_ref(cur, allow_ground=True)
    if ref in ('0', 'gnd'):
        return ref, sp
    if '.' not in ref or ref.rsplit('.', 1)[1] not in ('x', 'y'):
        raise SyntaxError(f'[line {sp.line}, col {sp.col}] expected a coordinate like NAME.x, got {ref!r}')
    return ref, sp


def _parse_number_literal(raw: str):
    return float(raw) if ('.' in raw or 'e' in raw.lower()) else int(raw)


def parse_number(cur: Cursor):
    negative = cur.match('DASH') is not None
    tok = cur.expect('NUMBER')
    value = _parse_number_literal(tok[1])
    return -value if negative else value


def parse_opt_value(cur: Cursor):
    vtok = cur.peek()
    if not vtok:
        raise SyntaxError('unterminated options value')
    if vtok[0] == 'STRING':
        return cur.match('STRING')[1]
    if vtok[0] in ('NUMBER', 'DASH'):
        return parse_number(cur)
    if vtok[0] == 'LPAREN':
        cur.i += 1
        items: List[Any] = []
        while True:
            t = cur.peek()
            if not t:
                raise SyntaxError(f'[line {vtok[2]}, col {vtok[3]}] unterminated tuple')
            if t[0] == 'RPAREN':
                cur.i += 1
                break
            if items:
                cur.expect('COMMA')
            items.append(parse_number(cur))
        return tuple(items)
    if vtok[0] == 'ID':
        raw = cur.match('ID')[1]
        low = raw.lower()
        if low in ('true', 'false'):
            return low == 'true'
        return low
    raise SyntaxError(f'[line {vtok[2]}, col {vtok[3]}] invalid option value token {vtok[0]}')


def parse_opts(cur: Cursor) -> Dict[str, Any]:
    opts: Dict[str, Any] = {}
    if not cur.match('LBRACK'):
        return opts
    need_sep = False
    last_key: Optional[str] = None
    while True:
        t = cur.peek()
        if not t:
            raise SyntaxError('unterminated options block')
        if t[0] == 'RBRACK':
            cur.i += 1
            break
        if need_sep:
            if t[0] == 'COMMA':
                cur.i += 1
                need_sep = False
                continue
            if last_key:
                raise SyntaxError(
                    f"[line {t[2]}, col {t[3]}] unexpected token '{t[1]}' after option '{last_key}'. "
                    "Did you forget to separate options with a comma or close the options block?"
                )
        k = cur.expect('ID')
        key = k[1].lower()
        if key in opts:
            raise SyntaxError(f"[line {k[2]}, col {k[3]}] duplicate option '{key}'")
        cur.expect('EQUAL')
        opts[key] = parse_opt_value(cur)
        need_sep = True
        last_key = key
    return opts


def parse_stmt(tokens: List[Token]):
    if not tokens:
        return None
    cur = Cursor(tokens)
    t0 = cur.peek()
    if t0[0] != 'ID':
        raise SyntaxError(f'[line {t0[2]}, col {t0[3]}] expected statement keyword')
    kw = t0[1].lower()
    cur.i += 1

    if kw == 'scene':
        s = cur.expect('STRING')
        stmt = Stmt('scene', Span(s[2], s[3]), {'title': s[1]})
    elif kw in ('point', 'symbol'):
        name, sp = parse_id(cur)
        stmt = Stmt(kw, sp, {'name': name}, parse_opts(cur))
    elif kw in ('pin', 'orient', 'extent'):
        ref, sp = parse_pin_ref(cur)
        stmt = Stmt(kw, sp, {'ref': ref}, parse_opts(cur))
    elif kw in ('offset', 'minimum'):
        a, sp = parse_coordinate_ref(cur)
        b, _ = parse_coordinate_ref(cur)
        stmt = Stmt(kw, sp, {'a': a, 'b': b}, parse_opts(cur))
    elif kw in ('wire', 'sloped'):
        a, sp = parse_ref(cur, allow_ground=True)
        b, _ = parse_ref(cur, allow_ground=True)
        for ref, where in ((a, sp), (b, sp)):
            if ref.count('.') > 1:
                raise SyntaxError(f'[line {where.line}, col {where.col}] expected a node, got {ref!r}')
        stmt = Stmt(kw, sp, {'a': a, 'b': b}, parse_opts(cur))
    else:
        raise SyntaxError(f'[line {t0[2]}, col {t0[3]}] unknown statement "{kw}"')

    trailing = cur.peek()
    if trailing:
        raise SyntaxError(f"[line {trailing[2]}, col {trailing[3]}] unexpected token {trailing[1]!r}")
    return stmt


def _augment_syntax_error(err: SyntaxError, line_text: str) -> Optional[SyntaxError]:
    message = str(err)
    if not line_text or "\n" in message:
        return None
    match = _ERROR_LOC_RE.search(message)
    if not match:
        return None
    col = max(int(match.group(2)), 1)
    caret_line = " " * (col - 1) + "^"
    snippet = f"    {line_text.rstrip()}\n    {caret_line}"
    return SyntaxError(f"{message}\n{snippet}")


def parse_program(text: str) -> Program:
    prog = Program()
    for i, raw in enumerate(text.splitlines(), start=1):
        try:
            tokens = tokenize_line(raw, i)
            stmt = parse_stmt(tokens)
        except SyntaxError as err:
            augmented = _augment_syntax_error(err, raw)
            if augmented is None:
                raise
            raise augmented from None
        if stmt:
            prog.stmts.append(stmt)
    return prog
