"""
Quote-aware line splitting and separator detection.

Timesheet exports arrive either comma- or semicolon-separated depending on
the locale of the spreadsheet that produced them. Lines are split one at a
time instead of through ``csv.reader`` so that a broken row never poisons
the rows after it: an unterminated quote only swallows the rest of its own
line.
"""

from __future__ import annotations

import re

QUOTE = '"'
SEMICOLON = ";"
COMMA = ","

LINE_BREAK_RE = re.compile(r"\r\n|\n|\r")


def split_line(text: str, separator: str) -> list[str]:
    """Split one raw line into fields.

    A doubled quote inside a quoted field is a literal quote. The separator
    is ignored while inside quotes. Quote characters that open or close a
    field are not kept in the output.
    """
    fields: list[str] = []
    current: list[str] = []
    in_quote = False
    i = 0
    length = len(text)
    while i < length:
        char = text[i]
        if char == QUOTE:
            if in_quote and i + 1 < length and text[i + 1] == QUOTE:
                current.append(QUOTE)
                i += 1
            else:
                in_quote = not in_quote
        elif char == separator and not in_quote:
            fields.append("".join(current))
            current = []
        else:
            current.append(char)
        i += 1
    fields.append("".join(current))
    return fields


def non_blank_lines(text: str) -> list[str]:
    """Split on any line-break convention and drop whitespace-only lines."""
    return [line for line in LINE_BREAK_RE.split(text) if line.strip()]


def detect_data_separator(header_line: str) -> str:
    """Pick the separator for the main work-log sheet.

    The header is tokenized both ways; semicolon wins ties because
    comma-decimal locales are the ones that export with semicolons.
    """
    comma_fields = split_line(header_line, COMMA)
    semicolon_fields = split_line(header_line, SEMICOLON)
    return SEMICOLON if len(semicolon_fields) >= len(comma_fields) else COMMA


def detect_config_separator(lines: list[str], sample_size: int = 3) -> str:
    """Pick the separator for the team configuration sheet.

    Raw character counts over the first few lines; semicolon only when it
    is strictly more frequent.
    """
    sample = "\n".join(lines[:sample_size])
    return SEMICOLON if sample.count(SEMICOLON) > sample.count(COMMA) else COMMA
