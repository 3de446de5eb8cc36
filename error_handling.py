"""
Error types and enhanced error reporting for MinRuby
Runtime errors abort evaluation; parse errors carry source context
"""

from typing import List, Optional
from pyparsing import ParseBaseException
import re


# ============================================================================
# RUNTIME ERRORS
# ============================================================================

class MinRubyRuntimeError(Exception):
    """Base class for every fatal error raised while evaluating a tree"""
    kind = "RuntimeError"

    def __init__(self, message: str, tag: Optional[str] = None):
        self.message = message
        self.tag = tag
        super().__init__(message)

    def __str__(self) -> str:
        if self.tag:
            return f"{self.kind}: {self.message} (in '{self.tag}')"
        return f"{self.kind}: {self.message}"


class UndefinedVariable(MinRubyRuntimeError):
    kind = "UndefinedVariable"


class UndefinedFunction(MinRubyRuntimeError):
    kind = "UndefinedFunction"


class DivisionByZero(MinRubyRuntimeError):
    kind = "DivisionByZero"


class IndexOutOfRange(MinRubyRuntimeError):
    kind = "IndexOutOfRange"


class UnrecognizedNodeTag(MinRubyRuntimeError):
    """The tree contains a tag outside the evaluator's vocabulary"""
    kind = "UnrecognizedNodeTag"


class ArityMismatch(MinRubyRuntimeError):
    kind = "ArityMismatch"


class TypeMismatch(MinRubyRuntimeError):
    kind = "TypeMismatch"


class ProgramLoadError(MinRubyRuntimeError):
    """require/minruby_load could not provide what was asked for"""
    kind = "ProgramLoadError"


# ============================================================================
# PARSE ERRORS
# ============================================================================

class MinRubyParseError(Exception):
    """
    Source text could not be turned into a tree

    Besides the message it keeps where parsing stopped, a numbered excerpt of the
    source around that point, and hints for common mistakes. main uses the hints
    to decide whether an interactive entry is merely unfinished.
    """

    def __init__(self, message: str, line: int = 0, column: int = 0,
                 expected: Optional[List[str]] = None, found: Optional[str] = None,
                 excerpt: Optional[str] = None, suggestions: Optional[List[str]] = None,
                 filename: str = "<input>"):
        self.message = message
        self.line = line
        self.column = column
        self.expected = expected or []
        self.found = found
        self.excerpt = excerpt
        self.suggestions = suggestions or []
        self.filename = filename
        super().__init__(message)

    def __str__(self) -> str:
        position = f" at line {self.line}, column {self.column}" if self.line else ""
        report = [f"{self.filename}: Parse error{position}:", f"  {self.message}"]
        if self.expected:
            report.append(f"  Expected: {', '.join(self.expected)}")
        if self.found:
            report.append(f"  Got: {self.found}")
        if self.excerpt:
            report.append("  Context:")
            report.append(self.excerpt)
        if self.suggestions:
            report.append("  Suggestions:")
            report.extend(f"    - {hint}" for hint in self.suggestions)
        return "\n".join(report) + "\n"


def source_excerpt(source_text: str, line: int, column: int, radius: int = 2) -> str:
    """Numbered lines around `line`, with a caret under `column`"""
    lines = source_text.split('\n')
    shown = []
    for number in range(max(1, line - radius), min(len(lines), line + radius) + 1):
        shown.append(f"{number:4d}: {lines[number - 1]}")
        if number == line:
            shown.append(" " * (column + 5) + "^")
    return '\n'.join(shown)


def text_at(source_text: str, line: int, column: int) -> str:
    """The next few characters where parsing stopped, quoted"""
    lines = source_text.split('\n')
    if line > len(lines):
        return "end of input"
    rest = lines[line - 1][column - 1:column + 10].strip()
    if rest:
        return f"'{rest}'"
    return "end of input" if line == len(lines) else "end of line"


def expected_tokens(exc: ParseBaseException) -> List[str]:
    match = re.search(r"Expected\s+(.+?)(?:,\s+found|\s+\(at|$)", str(exc))
    return [match.group(1)] if match else ["valid syntax"]


def generate_suggestions(source_text: str, got: str, expected: List[str]) -> List[str]:
    """Generate hints for the mistakes people usually make in MinRuby source"""
    suggestions = []
    words = re.findall(r"[A-Za-z_]+", source_text)

    openers = sum(words.count(kw) for kw in ("def", "if", "unless", "while", "case", "begin"))
    # `while` after `end` closes a begin block rather than opening a loop
    openers -= len(re.findall(r"\bend\s+while\b", source_text))
    if openers > words.count("end"):
        suggestions.append("A block is missing its closing 'end'")

    if got.startswith("'{") or "do |" in source_text:
        suggestions.append("Blocks are not supported; use while loops and functions instead")

    if "." in got and not re.match(r"'\d", got):
        suggestions.append("Method calls on values are not supported; call functions as f(x)")

    if "end" in str(expected):
        suggestions.append("Check that every def/if/while/case has a matching 'end'")

    return suggestions


def parse_error_from_exception(exc: ParseBaseException, source_text: str,
                               filename: str = "<input>") -> MinRubyParseError:
    """Build a MinRubyParseError carrying the context of a pyparsing failure"""
    line, column = exc.lineno, exc.column
    expected = expected_tokens(exc)
    found = text_at(source_text, line, column)
    return MinRubyParseError(
        str(exc), line, column,
        expected=expected,
        found=found,
        excerpt=source_excerpt(source_text, line, column),
        suggestions=generate_suggestions(source_text, found, expected),
        filename=filename
    )
