"""Lexical analyser for the small C subset."""

from __future__ import annotations

import enum
import sys
from dataclasses import dataclass
from typing import Iterator

from .symtab import SymbolTable

MAX_TOKEN = 100

_SPACE = frozenset(" \t\n\v\f\r")
_PUNCTUATION = frozenset("(),.:;?[]{}")


class Token(enum.IntEnum):
    """Token kinds returned by the scanner."""

    EOF = -1
    LPAREN = ord("(")
    RPAREN = ord(")")
    COMMA = ord(",")
    DOT = ord(".")
    COLON = ord(":")
    SEMICOLON = ord(";")
    QUESTION = ord("?")
    LBRACKET = ord("[")
    RBRACKET = ord("]")
    LBRACE = ord("{")
    RBRACE = ord("}")
    ID = 257
    CON = 258
    STR = 259
    RESERVED = 260
    SET = 261
    SETOR = 262
    SETXOR = 263
    SETAND = 264
    SETLSH = 265
    SETRSH = 266
    SETADD = 267
    SETSUB = 268
    SETMUL = 269
    SETDIV = 270
    SETMOD = 271
    OR = 272
    AND = 273
    BITOR = 274
    BITXOR = 275
    BITAND = 276
    EQ = 277
    NE = 278
    GT = 279
    GE = 280
    LT = 281
    LE = 282
    LSH = 283
    RSH = 284
    ADD = 285
    SUB = 286
    MUL = 287
    DIV = 288
    MOD = 289
    NOT = 290
    COM = 291
    IF = 292
    FOR = 293
    ELSE = 294
    WHILE = 295
    DO = 296
    RETURN = 297
    CONTINUE = 298
    BREAK = 299
    GOTO = 300
    CHAR = 301
    FLOAT = 302
    DOUBLE = 303
    INT = 304


RESERVED_WORDS: tuple[tuple[str, Token], ...] = (
    ("=", Token.SET),
    ("|=", Token.SETOR),
    ("^=", Token.SETXOR),
    ("&=", Token.SETAND),
    ("<<=", Token.SETLSH),
    (">>=", Token.SETRSH),
    ("+=", Token.SETADD),
    ("-=", Token.SETSUB),
    ("*=", Token.SETMUL),
    ("/=", Token.SETDIV),
    ("%=", Token.SETMOD),
    ("||", Token.OR),
    ("&&", Token.AND),
    ("|", Token.BITOR),
    ("^", Token.BITXOR),
    ("&", Token.BITAND),
    ("==", Token.EQ),
    ("!=", Token.NE),
    (">", Token.GT),
    (">=", Token.GE),
    ("<", Token.LT),
    ("<=", Token.LE),
    ("<<", Token.LSH),
    (">>", Token.RSH),
    ("+", Token.ADD),
    ("-", Token.SUB),
    ("*", Token.MUL),
    ("/", Token.DIV),
    ("%", Token.MOD),
    ("!", Token.NOT),
    ("~", Token.COM),
    ("if", Token.IF),
    ("for", Token.FOR),
    ("else", Token.ELSE),
    ("while", Token.WHILE),
    ("do", Token.DO),
    ("return", Token.RETURN),
    ("continue", Token.CONTINUE),
    ("break", Token.BREAK),
    ("goto", Token.GOTO),
    ("char", Token.CHAR),
    ("float", Token.FLOAT),
    ("double", Token.DOUBLE),
    ("int", Token.INT),
)


def install_reserved_words(symbols: SymbolTable) -> None:
    """Enter operators and keywords into the table at block level 1."""
    for text, token in RESERVED_WORDS:
        entry = symbols.install(symbols.intern(text), 1)
        entry.type = token
        entry.defined = True


@dataclass(frozen=True)
class Lexeme:
    """A scanned token with its interned text and starting line."""

    token: Token
    text: str
    line: int


def _is_letter(ch: str) -> bool:
    return ch.isascii() and ch.isalpha()


def _is_digit(ch: str) -> bool:
    return ch.isascii() and ch.isdigit()


class Scanner:
    """Splits source text into lexemes, classifying reserved words via the table."""

    def __init__(self, text: str, symbols: SymbolTable) -> None:
        self._text = text
        self._pos = 0
        self._symbols = symbols
        self.line = 1

    def _peek(self) -> str:
        return self._text[self._pos : self._pos + 1]

    def _getc(self) -> str:
        ch = self._peek()
        self._pos += len(ch)
        return ch

    def _take_while(self, accept, limit: int) -> str:
        start = self._pos
        while self._pos - start < limit and accept(self._peek()):
            self._pos += 1
        return self._text[start : self._pos]

    def _skip(self) -> None:
        while True:
            ch = self._peek()
            if ch and ch in _SPACE:
                self._pos += 1
                if ch == "\n":
                    self.line += 1
            elif ch == "/" and self._text[self._pos + 1 : self._pos + 2] == "*":
                self._pos += 2
                self._comment()
            else:
                return

    def _comment(self) -> None:
        while True:
            ch = self._getc()
            if not ch:
                return
            if ch == "*" and self._peek() == "/":
                self._pos += 1
                return
            if ch == "\n":
                self.line += 1

    def _quote(self) -> str:
        parts = ['"']
        ch = self._getc()
        while True:
            if ch == '"':
                parts.append(ch)
                return "".join(parts)
            if not ch:
                print("missing quote", file=sys.stderr)
                parts.append('"')
                return "".join(parts)
            if ch == "\\" and self._peek() == "\n":
                self._pos += 1
                self.line += 1
                ch = self._getc()
                continue
            parts.append(ch)
            previous = ch
            ch = self._getc()
            if previous == "\\" and ch:
                parts.append(ch)
                ch = self._getc()

    def next_token(self) -> Lexeme:
        """Return the next lexeme; at end of input, an EOF lexeme."""
        while True:
            self._skip()
            line = self.line
            ch = self._getc()
            if not ch:
                return Lexeme(Token.EOF, "", line)
            kind = Token.RESERVED
            if _is_letter(ch):
                rest = self._take_while(
                    lambda c: _is_letter(c) or _is_digit(c) or c == "_",
                    MAX_TOKEN - 1,
                )
                text, kind = ch + rest, Token.ID
            elif _is_digit(ch):
                text = ch + self._take_while(_is_digit, MAX_TOKEN - 1)
                kind = Token.CON
            elif ch in _PUNCTUATION:
                text, kind = ch, Token(ord(ch))
            elif ch == "~":
                text = ch
            elif ch in "!%*/^=":
                text = ch
                if self._peek() == "=":
                    text += self._getc()
            elif ch in "&+-|":
                text = ch
                if self._peek() in ("=", ch):
                    text += self._getc()
            elif ch in "<>":
                text = ch
                if self._peek() == ch:
                    text += self._getc()
                if self._peek() == "=":
                    text += self._getc()
            elif ch == '"':
                text, kind = self._quote(), Token.STR
            else:
                print(f"illegal character: {ord(ch):o}", file=sys.stderr)
                continue
            text = self._symbols.intern(text)
            entry = self._symbols.lookup(text)
            if entry is not None and entry.blevel == 1:
                kind = Token(entry.type)
            return Lexeme(kind, text, line)

    def tokens(self) -> Iterator[Lexeme]:
        """Yield lexemes up to, not including, end of input."""
        while (lexeme := self.next_token()).token is not Token.EOF:
            yield lexeme