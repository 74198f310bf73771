"""
SQL script tokenizer for migration files.

Splits a script into independently executable statements:

- comment lines and trailing ``--`` comments are dropped
- ``;`` ends a statement, except inside quoted literals
- ``CREATE TRIGGER ... BEGIN ... END;`` is kept whole despite the
  semicolons inside its body

The parser never raises. Statement validity is left to SQLite.
"""

import re
import logging
from enum import Enum
from typing import List

logger = logging.getLogger(__name__)

_TRIGGER_HEADER = re.compile(r"\bCREATE\s+(?:TEMP\s+|TEMPORARY\s+)?TRIGGER\b", re.IGNORECASE)
_WORD = re.compile(r"[A-Za-z_][A-Za-z0-9_$]*")
_TERMINATOR_AFTER_END = re.compile(r"(?:\s|--[^\n]*(?=\n|$))*;")
_LINE_COMMENT = re.compile(r"--[^\n]*")

_QUOTES = ("'", '"', "`")


class ParserState(Enum):
    """Scanner states."""
    NORMAL = "normal"
    IN_TRIGGER_BODY = "in_trigger_body"
    IN_LINE_COMMENT = "in_line_comment"
    IN_STRING = "in_string"


def strip_comment_lines(script: str) -> str:
    """Blank out lines that hold only a ``--`` comment, keeping line structure."""
    lines = script.split("\n")
    return "\n".join("" if line.strip().startswith("--") else line for line in lines)


class StatementParser:
    """
    State machine that segments a migration script into statements.

    One instance handles one script; use parse_sql_statements() for the
    common case.
    """

    def __init__(self, script: str):
        self.text = strip_comment_lines(script or "")
        self.statements: List[str] = []
        self.current: List[str] = []
        self.state = ParserState.NORMAL
        # State to resume after a comment or string closes
        self.resume_state = ParserState.NORMAL
        self.quote = ""
        # Open CASE expressions inside a trigger body
        self.case_depth = 0

    def parse(self) -> List[str]:
        text = self.text
        i = 0
        length = len(text)

        while i < length:
            char = text[i]

            if self.state is ParserState.IN_LINE_COMMENT:
                if char == "\n":
                    self.current.append(char)
                    self.state = self.resume_state
                i += 1
                continue

            if self.state is ParserState.IN_STRING:
                self.current.append(char)
                if char == self.quote:
                    # Doubled quote is an escaped quote, not the end
                    if i + 1 < length and text[i + 1] == self.quote:
                        self.current.append(text[i + 1])
                        i += 2
                        continue
                    self.state = self.resume_state
                i += 1
                continue

            if char == "-" and text.startswith("--", i):
                self.resume_state = self.state
                self.state = ParserState.IN_LINE_COMMENT
                i += 2
                continue

            if char in _QUOTES:
                self.resume_state = self.state
                self.state = ParserState.IN_STRING
                self.quote = char
                self.current.append(char)
                i += 1
                continue

            if _starts_word(text, i):
                i = self._consume_word(text, i)
                continue

            if char == ";" and self.state is ParserState.NORMAL:
                self._flush()
                i += 1
                continue

            self.current.append(char)
            i += 1

        self._flush()
        return self.statements

    def _consume_word(self, text: str, i: int) -> int:
        match = _WORD.match(text, i)
        word = match.group(0)
        keyword = word.upper()
        end = match.end()

        if self.state is ParserState.NORMAL:
            if keyword == "BEGIN" and _TRIGGER_HEADER.search("".join(self.current)):
                self.state = ParserState.IN_TRIGGER_BODY
                self.case_depth = 0
            self.current.append(word)
            return end

        # Inside a trigger body
        if keyword == "CASE":
            self.case_depth += 1
        elif keyword == "END":
            if self.case_depth > 0:
                self.case_depth -= 1
            else:
                terminator = _TERMINATOR_AFTER_END.match(text, end)
                if terminator:
                    self.current.append(word)
                    self.current.append(_LINE_COMMENT.sub("", terminator.group(0)))
                    self._flush()
                    self.state = ParserState.NORMAL
                    return terminator.end()
        self.current.append(word)
        return end

    def _flush(self) -> None:
        statement = "".join(self.current).strip()
        if statement:
            self.statements.append(statement)
        self.current = []


def _starts_word(text: str, i: int) -> bool:
    char = text[i]
    if not (char.isalpha() or char == "_"):
        return False
    if i == 0:
        return True
    previous = text[i - 1]
    return not (previous.isalnum() or previous in "_$")


def parse_sql_statements(script: str) -> List[str]:
    """
    Parse a SQL script into individual statements.

    Args:
        script: Raw SQL text, possibly with comments and triggers

    Returns:
        Ordered list of non-empty, trimmed statements
    """
    statements = StatementParser(script).parse()
    logger.debug(f"Parsed {len(statements)} statements")
    return statements
