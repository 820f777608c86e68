"""Tokenizer for protobuf (.proto) files."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Iterator, List, Optional

from protoc_parse.errors import ProtoSyntaxError
from protoc_parse.parser.proto_ast import Loc


class ProtoTokenType(Enum):
    # Keywords
    SYNTAX = auto()
    PACKAGE = auto()
    IMPORT = auto()
    PUBLIC = auto()
    WEAK = auto()
    OPTION = auto()
    MESSAGE = auto()
    ENUM = auto()
    ONEOF = auto()
    MAP = auto()
    REPEATED = auto()
    OPTIONAL = auto()
    REQUIRED = auto()
    RESERVED = auto()
    EXTENSIONS = auto()
    EXTEND = auto()
    SERVICE = auto()
    RPC = auto()
    STREAM = auto()
    RETURNS = auto()
    GROUP = auto()
    TO = auto()
    MAX = auto()

    # Delimiters
    LBRACE = auto()
    RBRACE = auto()
    LBRACKET = auto()
    RBRACKET = auto()
    LPAREN = auto()
    RPAREN = auto()
    LANGLE = auto()
    RANGLE = auto()
    SEMICOLON = auto()
    COMMA = auto()
    EQUALS = auto()
    DOT = auto()
    MINUS = auto()
    PLUS = auto()
    COLON = auto()

    # Literals
    IDENT = auto()
    INT_LIT = auto()
    FLOAT_LIT = auto()
    STRING_LIT = auto()

    # Special
    EOF = auto()


_KEYWORDS = {
    "syntax": ProtoTokenType.SYNTAX,
    "package": ProtoTokenType.PACKAGE,
    "import": ProtoTokenType.IMPORT,
    "public": ProtoTokenType.PUBLIC,
    "weak": ProtoTokenType.WEAK,
    "option": ProtoTokenType.OPTION,
    "message": ProtoTokenType.MESSAGE,
    "enum": ProtoTokenType.ENUM,
    "oneof": ProtoTokenType.ONEOF,
    "map": ProtoTokenType.MAP,
    "repeated": ProtoTokenType.REPEATED,
    "optional": ProtoTokenType.OPTIONAL,
    "required": ProtoTokenType.REQUIRED,
    "reserved": ProtoTokenType.RESERVED,
    "extensions": ProtoTokenType.EXTENSIONS,
    "extend": ProtoTokenType.EXTEND,
    "service": ProtoTokenType.SERVICE,
    "rpc": ProtoTokenType.RPC,
    "stream": ProtoTokenType.STREAM,
    "returns": ProtoTokenType.RETURNS,
    "group": ProtoTokenType.GROUP,
    "to": ProtoTokenType.TO,
    "max": ProtoTokenType.MAX,
}

KEYWORD_TYPES = frozenset(_KEYWORDS.values())

_PUNCTUATION = {
    "{": ProtoTokenType.LBRACE,
    "}": ProtoTokenType.RBRACE,
    "[": ProtoTokenType.LBRACKET,
    "]": ProtoTokenType.RBRACKET,
    "(": ProtoTokenType.LPAREN,
    ")": ProtoTokenType.RPAREN,
    "<": ProtoTokenType.LANGLE,
    ">": ProtoTokenType.RANGLE,
    ";": ProtoTokenType.SEMICOLON,
    ",": ProtoTokenType.COMMA,
    "=": ProtoTokenType.EQUALS,
    ".": ProtoTokenType.DOT,
    "-": ProtoTokenType.MINUS,
    "+": ProtoTokenType.PLUS,
    ":": ProtoTokenType.COLON,
}

_SIMPLE_ESCAPES = {
    "a": b"\a",
    "b": b"\b",
    "f": b"\f",
    "n": b"\n",
    "r": b"\r",
    "t": b"\t",
    "v": b"\v",
    "\\": b"\\",
    "'": b"'",
    '"': b'"',
    "?": b"?",
}

_HEX_DIGITS = "0123456789abcdefABCDEF"
_OCT_DIGITS = "01234567"


@dataclass(frozen=True)
class ProtoToken:
    type: ProtoTokenType
    value: str
    line: int
    col: int
    # Decoded bytes of a string literal.
    data: bytes = b""
    # Comment text immediately preceding the token, if any.
    comment: Optional[str] = None

    @property
    def is_word(self) -> bool:
        """True for identifiers and keywords; proto keywords are not reserved."""
        return self.type == ProtoTokenType.IDENT or self.type in KEYWORD_TYPES


def _is_ident_start(ch: str) -> bool:
    return ch.isascii() and (ch.isalpha() or ch == "_")


def _is_ident_char(ch: str) -> bool:
    return ch.isascii() and (ch.isalnum() or ch == "_")


def iter_proto_tokens(text: str, path: str = "<string>") -> Iterator[ProtoToken]:
    """Lazily tokenize a protobuf source string.

    The sequence ends with a single EOF token. Scanning restarts from the
    beginning by calling the function again.
    """
    i = 0
    line = 1
    col = 1
    n = len(text)
    comments: List[str] = []

    def error(message: str, at_line: int, at_col: int) -> ProtoSyntaxError:
        return ProtoSyntaxError(message, Loc(path, at_line, at_col))

    def emit(tok_type: ProtoTokenType, value: str, at_line: int, at_col: int, data: bytes = b"") -> ProtoToken:
        comment = "\n".join(comments) if comments else None
        comments.clear()
        return ProtoToken(tok_type, value, at_line, at_col, data, comment)

    while i < n:
        ch = text[i]

        # Whitespace
        if ch in (" ", "\t", "\r", "\f", "\v"):
            i += 1
            col += 1
            continue

        if ch == "\n":
            i += 1
            line += 1
            col = 1
            continue

        # Single-line comment
        if ch == "/" and i + 1 < n and text[i + 1] == "/":
            start = i + 2
            while i < n and text[i] != "\n":
                i += 1
            comments.append(text[start:i].strip())
            continue

        # Multi-line comment
        if ch == "/" and i + 1 < n and text[i + 1] == "*":
            start_line, start_col = line, col
            i += 2
            col += 2
            start = i
            closed = False
            while i < n:
                if text[i] == "\n":
                    line += 1
                    col = 1
                elif text[i] == "*" and i + 1 < n and text[i + 1] == "/":
                    comments.append(_strip_block_comment(text[start:i]))
                    i += 2
                    col += 2
                    closed = True
                    break
                else:
                    col += 1
                i += 1
            if not closed:
                raise error("unterminated block comment", start_line, start_col)
            continue

        # String literal
        if ch in ('"', "'"):
            quote = ch
            start_col = col
            i += 1
            col += 1
            start = i
            buf = bytearray()
            while True:
                if i >= n or text[i] == "\n":
                    raise error("unterminated string literal", line, start_col)
                c = text[i]
                if c == quote:
                    break
                if c == "\\":
                    consumed, decoded = _read_escape(text, i, n)
                    if decoded is None:
                        raise error(f"invalid escape sequence {text[i:i + consumed]!r}", line, col)
                    buf += decoded
                    i += consumed
                    col += consumed
                    continue
                buf += c.encode("utf-8")
                i += 1
                col += 1
            value = text[start:i]
            i += 1  # consume closing quote
            col += 1
            yield emit(ProtoTokenType.STRING_LIT, value, line, start_col, bytes(buf))
            continue

        # Number
        if ch.isdigit() or (ch == "." and i + 1 < n and text[i + 1].isdigit()):
            start = i
            start_col = col
            is_float = False
            if ch == "0" and i + 1 < n and text[i + 1] in "xX":
                i += 2
                while i < n and text[i] in _HEX_DIGITS:
                    i += 1
                if i == start + 2:
                    raise error("expected hex digits after '0x'", line, start_col)
            else:
                while i < n and text[i].isdigit():
                    i += 1
                if i < n and text[i] == ".":
                    is_float = True
                    i += 1
                    while i < n and text[i].isdigit():
                        i += 1
                if i < n and text[i] in "eE":
                    j = i + 1
                    if j < n and text[j] in "+-":
                        j += 1
                    if j < n and text[j].isdigit():
                        is_float = True
                        i = j
                        while i < n and text[i].isdigit():
                            i += 1
                    else:
                        raise error("malformed exponent in float literal", line, start_col)
                if i < n and text[i] in "fF" and is_float:
                    i += 1
            word = text[start:i]
            col += i - start
            if i < n and _is_ident_char(text[i]):
                raise error(f"need space between number {word!r} and identifier", line, col)
            if not is_float and len(word) > 1 and word[0] == "0" and word[1] not in "xX":
                if any(d not in _OCT_DIGITS for d in word):
                    raise error(f"invalid octal literal {word!r}", line, start_col)
            tok_type = ProtoTokenType.FLOAT_LIT if is_float else ProtoTokenType.INT_LIT
            yield emit(tok_type, word, line, start_col)
            continue

        # Identifier / keyword
        if _is_ident_start(ch):
            start = i
            start_col = col
            while i < n and _is_ident_char(text[i]):
                i += 1
                col += 1
            word = text[start:i]
            tok_type = _KEYWORDS.get(word, ProtoTokenType.IDENT)
            yield emit(tok_type, word, line, start_col)
            continue

        # Single-character tokens
        tok_type = _PUNCTUATION.get(ch)
        if tok_type is not None:
            yield emit(tok_type, ch, line, col)
            i += 1
            col += 1
            continue

        raise error(f"unexpected character {ch!r}", line, col)

    yield emit(ProtoTokenType.EOF, "", line, col)


def tokenize_proto(text: str, path: str = "<string>") -> List[ProtoToken]:
    """Tokenize a protobuf source string into a list of tokens."""
    return list(iter_proto_tokens(text, path))


def parse_int_literal(text: str) -> int:
    """Value of a decimal, hex (0x) or octal (leading 0) integer literal."""
    if text[:2] in ("0x", "0X"):
        return int(text[2:], 16)
    if len(text) > 1 and text[0] == "0":
        return int(text, 8)
    return int(text)


def parse_float_literal(text: str) -> float:
    if text[-1] in "fF":
        text = text[:-1]
    return float(text)


def _strip_block_comment(body: str) -> str:
    lines = []
    for raw in body.split("\n"):
        stripped = raw.strip()
        if stripped.startswith("*"):
            stripped = stripped[1:].strip()
        lines.append(stripped)
    return "\n".join(lines).strip()


def _read_escape(text: str, i: int, n: int):
    """Decode the escape sequence starting at the backslash ``text[i]``.

    Returns ``(consumed_chars, bytes_or_None)``.
    """
    if i + 1 >= n:
        return 1, None
    c = text[i + 1]
    if c in _SIMPLE_ESCAPES:
        return 2, _SIMPLE_ESCAPES[c]
    if c in "xX":
        j = i + 2
        while j < n and j < i + 4 and text[j] in _HEX_DIGITS:
            j += 1
        if j == i + 2:
            return 2, None
        return j - i, bytes([int(text[i + 2:j], 16)])
    if c in _OCT_DIGITS:
        j = i + 1
        while j < n and j < i + 4 and text[j] in _OCT_DIGITS:
            j += 1
        value = int(text[i + 1:j], 8)
        if value > 0xFF:
            return j - i, None
        return j - i, bytes([value])
    if c in "uU":
        width = 4 if c == "u" else 8
        digits = text[i + 2:i + 2 + width]
        if len(digits) != width or any(d not in _HEX_DIGITS for d in digits):
            return 2, None
        code_point = int(digits, 16)
        if code_point > 0x10FFFF:
            return 2 + width, None
        return 2 + width, chr(code_point).encode("utf-8", errors="surrogatepass")
    return 2, None
