"""
Top-level code block detection for the CODE chunking strategy.

Regex + structure based, no AST dependency, so it tolerates files that do
not parse (work in progress, syntax from a newer language version):

  - Python: `def`, `async def`, `class` at column 0; the block runs until the
    next non-blank line at column 0.  Decorators directly above are included.
  - Brace languages (TS/JS): `function`, `class`, `interface`, `enum`, `type X = {`
    and `const x = (...) =>` declarations at column 0; the block runs to the
    matching closing brace (string- and comment-aware).

Only top-level blocks are returned.  Methods stay inside their class block.
"""
from __future__ import annotations

import re
from bisect import bisect_right
from dataclasses import dataclass
from pathlib import PurePath

MIN_BLOCK_LINES = 3        # Shorter blocks are left to the surrounding module chunk
MAX_BRACE_DISTANCE = 200   # Chars scanned for a parameter list or opening brace

_PY_BLOCK_RE = re.compile(r"^(async\s+def|def|class)\s+(\w+)")
_PY_CONTINUATION_RE = re.compile(r"^[\s)\]}]")

_BRACE_DECL_RE = re.compile(
    r"^(?:export\s+)?(?:default\s+)?(?:declare\s+)?(?:abstract\s+)?(?:async\s+)?"
    r"(function\*?|class|interface|enum)\s+(\w+)"
)
_BRACE_TYPE_RE = re.compile(r"^(?:export\s+)?(type)\s+(\w+)\s*=\s*\{")
_BRACE_ARROW_RE = re.compile(
    r"^(?:export\s+)?(?:const|let|var)\s+(\w+)\s*(?::[^=]+)?=\s*(?:async\s*)?"
    r"(?:\([^)]*\)|\w+)\s*(?::[^=]+)?=>"
)


@dataclass(frozen=True)
class CodeBlock:
    kind: str       # "function" | "class" | "interface" | "enum" | "type"
    name: str
    start: int      # 0-based line index, inclusive
    end: int        # 0-based line index, exclusive


def find_blocks(lines: list[str], source: str) -> list[CodeBlock]:
    """Return top-level blocks in line order for the language implied by `source`."""
    if PurePath(source).suffix.lower() == ".py":
        return _python_blocks(lines)
    return _brace_blocks(lines)


# --- Python ---------------------------------------------------------------------

def _python_blocks(lines: list[str]) -> list[CodeBlock]:
    blocks: list[CodeBlock] = []
    i = 0
    while i < len(lines):
        match = _PY_BLOCK_RE.match(lines[i])
        if not match:
            i += 1
            continue

        kind = "class" if match.group(1) == "class" else "function"
        start = i
        while start > 0 and lines[start - 1].startswith("@"):
            start -= 1

        end = i + 1
        j = i + 1
        while j < len(lines):
            line = lines[j]
            if not line.strip():
                j += 1
                continue
            if not _PY_CONTINUATION_RE.match(line):
                break
            j += 1
            end = j

        if end - start >= MIN_BLOCK_LINES:
            blocks.append(CodeBlock(kind, match.group(2), start, end))
        i = max(end, i + 1)
    return blocks


# --- Brace languages ------------------------------------------------------------

def _is_word(ch: str) -> bool:
    return ch.isalnum() or ch == "_"


def _is_apostrophe(text: str, i: int) -> bool:
    """A `'` between two word characters is prose (JSX text, "Don't"), not a string."""
    return (
        text[i] == "'"
        and 0 < i < len(text) - 1
        and _is_word(text[i - 1])
        and _is_word(text[i + 1])
    )


def _find_closing_brace(text: str, open_pos: int) -> int:
    """Index of the brace matching text[open_pos], or -1 when unbalanced."""
    depth = 0
    quote: str | None = None
    i = open_pos
    n = len(text)
    while i < n:
        ch = text[i]
        if quote:
            if ch == "\\":
                i += 2
                continue
            if ch == quote:
                quote = None
            i += 1
            continue

        if ch in ("'", '"', "`") and not _is_apostrophe(text, i):
            quote = ch
        elif text.startswith("//", i):
            newline = text.find("\n", i)
            i = n if newline == -1 else newline
            continue
        elif text.startswith("/*", i):
            close = text.find("*/", i + 2)
            i = n if close == -1 else close + 2
            continue
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i
        i += 1
    return -1


def _skip_parens(text: str, open_pos: int) -> int:
    """Index just past the `)` matching text[open_pos], or -1 when unbalanced."""
    depth = 0
    quote: str | None = None
    for i in range(open_pos, len(text)):
        ch = text[i]
        if quote:
            if ch == quote and text[i - 1] != "\\":
                quote = None
            continue
        if ch in ("'", '"', "`"):
            quote = ch
        elif ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth == 0:
                return i + 1
    return -1


def _body_brace(text: str, pos: int) -> int:
    """First `{` after pos, unless a `;` ends the declaration first (overloads, `declare`)."""
    for i in range(pos, min(pos + MAX_BRACE_DISTANCE, len(text))):
        if text[i] == "{":
            return i
        if text[i] == ";":
            return -1
    return -1


def _open_brace(text: str, form: str, pos: int) -> int:
    """
    Position of the body's opening brace for a declaration ending at `pos`.

      - arrow:    the body must start right after `=>`; `=> a + b;` has none
      - function: skip the parameter list first, so `(opts: { port: number })`
                  is not mistaken for the body
      - other:    first brace before a `;`
    """
    if form == "arrow":
        while pos < len(text) and text[pos].isspace():
            pos += 1
        return pos if pos < len(text) and text[pos] == "{" else -1
    if form == "function":
        paren = text.find("(", pos, pos + MAX_BRACE_DISTANCE)
        if paren == -1:
            return -1
        pos = _skip_parens(text, paren)
        if pos == -1:
            return -1
    return _body_brace(text, pos)


def _match_declaration(line: str) -> tuple[str, str, str, int] | None:
    """(kind, name, form, end of match) for a top-level declaration line."""
    match = _BRACE_DECL_RE.match(line)
    if match:
        if match.group(1).startswith("function"):
            return "function", match.group(2), "function", match.end()
        return match.group(1), match.group(2), "decl", match.end()
    match = _BRACE_TYPE_RE.match(line)
    if match:
        return "type", match.group(2), "decl", match.end() - 1
    match = _BRACE_ARROW_RE.match(line)
    if match:
        return "function", match.group(1), "arrow", match.end()
    return None


def _brace_blocks(lines: list[str]) -> list[CodeBlock]:
    text = "\n".join(lines)
    offsets: list[int] = []
    pos = 0
    for line in lines:
        offsets.append(pos)
        pos += len(line) + 1

    blocks: list[CodeBlock] = []
    i = 0
    while i < len(lines):
        decl = _match_declaration(lines[i])
        if decl is None:
            i += 1
            continue

        kind, name, form, decl_end = decl
        open_pos = _open_brace(text, form, offsets[i] + decl_end)
        if open_pos == -1:
            i += 1
            continue

        close_pos = _find_closing_brace(text, open_pos)
        if close_pos == -1:
            i += 1
            continue

        last_line = bisect_right(offsets, close_pos) - 1
        if last_line + 1 - i >= MIN_BLOCK_LINES:
            blocks.append(CodeBlock(kind, name, i, last_line + 1))
        i = last_line + 1
    return blocks
