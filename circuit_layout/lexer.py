import re
from typing import List, Tuple

Token = Tuple[str, str, int, int]  # (type, value, line, col)

PUNCTUATION = {
    '[': 'LBRACK',
    ']': 'RBRACK',
    '(': 'LPAREN',
    ')': 'RPAREN',
    ',': 'COMMA',
    '-': 'DASH',
    '=': 'EQUAL',
    '.': 'DOT',
}

_token_re = re.compile(
    r'''
    (?P<SKIP>[ \t\r]+)
    | (?P<COMMENT>\#.*)
    | (?P<STRING>"(?:[^"\\]|\\.)*")
    | (?P<NUMBER>(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?)
    | (?P<ID>[A-Za-z_][A-Za-z0-9_]*)
    | (?P<PUNCT>[\[\](),\-=.])
    ''',
    re.VERBOSE,
)


def _follows_name(tokens: List[Token], col: int) -> bool:
    """True when the previous token is an identifier ending right before ``col``."""
    if not tokens or tokens[-1][0] != 'ID':
        return False
    _, name, _, start = tokens[-1]
    return start + len(name) == col


def tokenize_line(s: str, line_no: int) -> List[Token]:
    tokens: List[Token] = []
    pos = 0
    while pos < len(s):
        col = pos + 1
        # NAME.pin and NAME.pin.x: the dot is member access, not the start of a number
        if s[pos] == '.' and _follows_name(tokens, col):
            tokens.append(('DOT', '.', line_no, col))
            pos += 1
            continue
        m = _token_re.match(s, pos)
        if m is None:
            if s[pos] == '"':
                raise SyntaxError(f'[line {line_no}, col {col}] unterminated string literal')
            raise SyntaxError(f'[line {line_no}, col {col}] unexpected character: {s[pos]!r}')
        kind, raw = m.lastgroup, m.group()
        pos = m.end()
        if kind == 'COMMENT':
            break
        if kind == 'SKIP':
            continue
        if kind == 'STRING':
            tokens.append(('STRING', bytes(raw[1:-1], 'utf-8').decode('unicode_escape'), line_no, col))
        elif kind == 'PUNCT':
            tokens.append((PUNCTUATION[raw], raw, line_no, col))
        else:
            tokens.append((kind, raw, line_no, col))
    return tokens
