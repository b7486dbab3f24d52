"""
Manifest reader.

A manifest is a sequence of s-expressions. Reading turns the raw text into
an ordered list of ``ParsedForm`` objects, one per top-level expression.
Syntax failures are reported with the line and column at which reading of
the offending form started.
"""

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional, Tuple, Union

from .error_handling import log_parsing_error
from .exceptions import ManifestNotFound, ManifestSyntaxError, ParseError
from .structured_logging import log_manifest_read

COMMENT_MARKER = ";"

_ATOM_PATTERN = re.compile(r"[^\s()\";']+")
_INTEGER_PATTERN = re.compile(r"^[+-]?\d+$")
_FLOAT_PATTERN = re.compile(r"^[+-]?(\d+\.\d*|\.\d+|\d+(\.\d*)?[eE][+-]?\d+)$")
_STRING_ESCAPES = {'"': '"', "\\": "\\", "n": "\n", "t": "\t"}


class Symbol(str):
    """A bare identifier, as opposed to a string literal."""

    __slots__ = ()

    def __repr__(self) -> str:
        return f"Symbol({str.__repr__(self)})"


class Integer(int):
    """Integer literal that renders back exactly as it was written."""

    def __new__(cls, token: str) -> "Integer":
        number = super().__new__(cls, token)
        number.token = token
        return number

    def __str__(self) -> str:
        return self.token


class Real(float):
    """Float literal that keeps its source text, so ``2.10`` stays ``2.10``."""

    def __new__(cls, token: str) -> "Real":
        number = super().__new__(cls, token)
        number.token = token
        return number

    def __str__(self) -> str:
        return self.token


@dataclass(frozen=True)
class SourcePosition:
    """1-based line and column in the manifest text."""

    line: int
    column: int

    def __str__(self) -> str:
        return f"{self.line}:{self.column}"


def is_symbol_name(text: str) -> bool:
    """True if ``text`` reads back as a single symbol."""
    return (
        _ATOM_PATTERN.fullmatch(text) is not None
        and not _INTEGER_PATTERN.match(text)
        and not _FLOAT_PATTERN.match(text)
    )


def position_at(text: str, offset: int) -> SourcePosition:
    """Translate a character offset into a line/column position."""
    line_start = text.rfind("\n", 0, offset) + 1
    return SourcePosition(
        line=text.count("\n", 0, offset) + 1,
        column=offset - line_start + 1,
    )


@dataclass(frozen=True)
class ParsedForm:
    """One top-level manifest expression split into head and arguments."""

    directive: Any
    arguments: Tuple[Any, ...] = ()
    position: Optional[SourcePosition] = None
    compound: bool = True

    @classmethod
    def from_expression(
        cls, expression: Any, position: Optional[SourcePosition] = None
    ) -> "ParsedForm":
        if isinstance(expression, list) and expression:
            return cls(expression[0], tuple(expression[1:]), position)
        # Atoms and empty lists have no directive head; the evaluator rejects them
        return cls(expression, (), position, compound=False)


class ManifestReader:
    """Cursor over manifest text that reads one expression at a time."""

    def __init__(self, text: str):
        self.text = text
        self.offset = 0

    def at_end(self) -> bool:
        return self.offset >= len(self.text)

    def skip_blank(self) -> None:
        """Skip whitespace and comments up to the next token."""
        text = self.text
        while self.offset < len(text):
            char = text[self.offset]
            if char.isspace():
                self.offset += 1
            elif char == COMMENT_MARKER:
                newline = text.find("\n", self.offset)
                self.offset = len(text) if newline == -1 else newline + 1
            else:
                break

    def read(self) -> Any:
        """Read the next expression."""
        self.skip_blank()
        if self.at_end():
            raise ManifestSyntaxError("Unexpected end of input", self.offset)

        char = self.text[self.offset]
        if char == "(":
            return self._read_list()
        if char == ")":
            raise ManifestSyntaxError("Unexpected ')'", self.offset)
        if char == '"':
            return self._read_string()
        if char == "'":
            return self._read_quote()
        return self._read_atom()

    def _read_list(self) -> List[Any]:
        start = self.offset
        self.offset += 1
        items: List[Any] = []
        while True:
            self.skip_blank()
            if self.at_end():
                raise ManifestSyntaxError("Unterminated list", start)
            if self.text[self.offset] == ")":
                self.offset += 1
                return items
            items.append(self.read())

    def _read_string(self) -> str:
        start = self.offset
        self.offset += 1
        chars: List[str] = []
        text = self.text
        while self.offset < len(text):
            char = text[self.offset]
            if char == '"':
                self.offset += 1
                return "".join(chars)
            if char == "\\":
                if self.offset + 1 >= len(text):
                    break
                escaped = text[self.offset + 1]
                if escaped not in _STRING_ESCAPES:
                    raise ManifestSyntaxError(
                        f"Invalid escape sequence '\\{escaped}'", self.offset
                    )
                chars.append(_STRING_ESCAPES[escaped])
                self.offset += 2
                continue
            chars.append(char)
            self.offset += 1
        raise ManifestSyntaxError("Unterminated string", start)

    def _read_quote(self) -> List[Any]:
        start = self.offset
        self.offset += 1
        self.skip_blank()
        if self.at_end() or self.text[self.offset] == ")":
            raise ManifestSyntaxError("Quote without a following expression", start)
        return [Symbol("quote"), self.read()]

    def _read_atom(self) -> Union[Integer, Real, Symbol]:
        match = _ATOM_PATTERN.match(self.text, self.offset)
        if not match:
            raise ManifestSyntaxError(
                f"Unexpected character {self.text[self.offset]!r}", self.offset
            )
        self.offset = match.end()
        token = match.group(0)
        if _INTEGER_PATTERN.match(token):
            return Integer(token)
        if _FLOAT_PATTERN.match(token):
            return Real(token)
        return Symbol(token)


def read_forms(text: str, file_path: Optional[str] = None) -> List[ParsedForm]:
    """
    Read every top-level form of a manifest.

    Args:
        text: Manifest source
        file_path: Manifest path, used only in error messages

    Returns:
        List[ParsedForm]: Forms in source order

    Raises:
        ParseError: If any form is syntactically malformed
    """
    reader = ManifestReader(text)
    forms: List[ParsedForm] = []

    while True:
        reader.skip_blank()
        if reader.at_end():
            break

        start = reader.offset
        position = position_at(text, start)
        try:
            expression = reader.read()
        except ManifestSyntaxError as e:
            log_parsing_error(
                f"Malformed manifest: {e}",
                "reader",
                "read_forms",
                line=position.line,
                column=position.column,
                file_path=file_path,
                exception=e,
            )
            raise ParseError(position, e, file_path) from e

        forms.append(ParsedForm.from_expression(expression, position))

    return forms


def read_manifest(path: Union[str, Path]) -> List[ParsedForm]:
    """
    Read the manifest stored at ``path``.

    Raises:
        ManifestNotFound: If the file does not exist
        ParseError: If the manifest is malformed
    """
    manifest_path = Path(path)
    if not manifest_path.is_file():
        raise ManifestNotFound(manifest_path)

    text = manifest_path.read_text(encoding="utf-8")
    forms = read_forms(text, str(manifest_path))
    log_manifest_read(str(manifest_path), len(forms))
    return forms
