"""
The whitespace formatting engine.

Works on raw bytes only. Content is never decoded, so any ASCII
compatible encoding (UTF-8, Latin-1, ...) is handled structurally:
line terminators and whitespace are recognized by their byte values.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, NamedTuple, Optional, Tuple

from .options import (
    Configuration,
    NewlineMode,
    NonStandardWhitespaceMode,
    TrivialFileMode,
)

SPACE = b" "
TAB = b"\t"
NON_STANDARD_WHITESPACE = b"\x0b\x0c"  # \v and \f
LINE_WHITESPACE = b" \t\x0b\x0c"
FILE_WHITESPACE = LINE_WHITESPACE + b"\r\n"

# CRLF must come first so "\r\n" is one terminator, not two.
_TERMINATOR_RE = re.compile(rb"\r\n|\r|\n")

_NON_STANDARD_TO_SPACE = bytes.maketrans(NON_STANDARD_WHITESPACE, SPACE * 2)


class NewlineStyle(Enum):
    LF = b"\n"
    CR = b"\r"
    CRLF = b"\r\n"
    NONE = b""

    @property
    def visible(self) -> str:
        """Printable form of the terminator, e.g. '\\r\\n'."""
        return self.value.decode("ascii").replace("\r", "\\r").replace("\n", "\\n")


# Preference order for auto detection when counts are tied.
AUTO_PREFERENCE: Tuple[NewlineStyle, ...] = (
    NewlineStyle.LF,
    NewlineStyle.CRLF,
    NewlineStyle.CR,
)

_FIXED_NEWLINES: Dict[NewlineMode, NewlineStyle] = {
    NewlineMode.LINUX: NewlineStyle.LF,
    NewlineMode.MAC: NewlineStyle.CR,
    NewlineMode.WINDOWS: NewlineStyle.CRLF,
}


class Line(NamedTuple):
    content: bytes
    terminator: NewlineStyle

    @property
    def raw(self) -> bytes:
        return self.content + self.terminator.value


@dataclass(frozen=True)
class ParsedFile:
    lines: Tuple[Line, ...]
    counts: Dict[NewlineStyle, int]

    @property
    def raw(self) -> bytes:
        return join_lines(self.lines)


class ChangeKind(Enum):
    TRAILING_WHITESPACE_REMOVED = "TrailingWhitespaceRemoved"
    TABS_REPLACED = "TabsReplaced"
    NON_STANDARD_WHITESPACE_REPLACED = "NonStandardWhitespaceReplaced"
    NON_STANDARD_WHITESPACE_REMOVED = "NonStandardWhitespaceRemoved"
    NEWLINE_MARKER_NORMALIZED = "NewlineMarkerNormalized"
    LEADING_EMPTY_LINE_REMOVED = "LeadingEmptyLineRemoved"
    TRAILING_EMPTY_LINE_REMOVED = "TrailingEmptyLineRemoved"
    END_OF_FILE_MARKER_ADDED = "EndOfFileMarkerAdded"
    END_OF_FILE_MARKER_REMOVED = "EndOfFileMarkerRemoved"
    EMPTY_FILE_NORMALIZED = "EmptyFileNormalized"
    WHITESPACE_ONLY_FILE_NORMALIZED = "WhitespaceOnlyFileNormalized"


_MESSAGES: Dict[ChangeKind, str] = {
    ChangeKind.TRAILING_WHITESPACE_REMOVED: "Trailing whitespace{verb}removed.",
    ChangeKind.TABS_REPLACED: "Tab(s){verb}replaced.",
    ChangeKind.NON_STANDARD_WHITESPACE_REPLACED: (
        "Non-standard whitespace{verb}replaced by a space."
    ),
    ChangeKind.NON_STANDARD_WHITESPACE_REMOVED: "Non-standard whitespace{verb}removed.",
    ChangeKind.NEWLINE_MARKER_NORMALIZED: "New line marker{verb}replaced.",
    ChangeKind.LEADING_EMPTY_LINE_REMOVED: (
        "Empty line at the beginning of the file{verb}removed."
    ),
    ChangeKind.TRAILING_EMPTY_LINE_REMOVED: (
        "Empty line at the end of the file{verb}removed."
    ),
    ChangeKind.END_OF_FILE_MARKER_ADDED: (
        "New line marker{verb}added to the end of the file."
    ),
    ChangeKind.END_OF_FILE_MARKER_REMOVED: (
        "New line marker{verb}removed from the end of the file."
    ),
    ChangeKind.EMPTY_FILE_NORMALIZED: "Empty file{verb}replaced with a single empty line.",
    ChangeKind.WHITESPACE_ONLY_FILE_NORMALIZED: "Whitespace-only file{verb}replaced.",
}


@dataclass(frozen=True)
class ChangeEvent:
    """A single change made (or, in check-only mode, required) in a file."""

    line_number: Optional[int]  # None for changes to the file as a whole
    kind: ChangeKind
    detail: Optional[str] = None

    def describe(self, check_only: bool = False) -> str:
        verb: str = " would be " if check_only else " "
        message: str = _MESSAGES[self.kind].format(verb=verb)
        if self.detail:
            message = f"{message} ({self.detail})"
        if self.line_number is None:
            return f"file: {message}"
        return f"line {self.line_number}: {message}"


@dataclass(frozen=True)
class FormattingOutcome:
    data: bytes
    changed: bool
    events: Tuple[ChangeEvent, ...] = ()


# A line paired with its 1-based line number in the input.
Numbered = Tuple[int, Line]


def split_lines(data: bytes) -> ParsedFile:
    """
    Split raw bytes into lines, keeping each line's terminator.

    "\\r\\n" is a single CRLF terminator. A trailing segment without a
    terminator becomes a final line with NewlineStyle.NONE. Joining the
    lines back together always reproduces data exactly.
    """
    lines: List[Line] = []
    counts: Dict[NewlineStyle, int] = {style: 0 for style in AUTO_PREFERENCE}
    start: int = 0

    for match in _TERMINATOR_RE.finditer(data):
        terminator: NewlineStyle = NewlineStyle(match.group())
        lines.append(Line(data[start : match.start()], terminator))
        counts[terminator] += 1
        start = match.end()

    if start < len(data):
        lines.append(Line(data[start:], NewlineStyle.NONE))

    return ParsedFile(tuple(lines), counts)


def join_lines(lines: Iterable[Line]) -> bytes:
    return b"".join(line.raw for line in lines)


def resolve_newline(mode: NewlineMode, parsed: ParsedFile) -> NewlineStyle:
    """
    Pick the terminator to write for this file.

    In auto mode the most frequent terminator wins; ties go to the
    earliest entry of AUTO_PREFERENCE, and a file without any
    terminators gets LF.
    """
    if mode is not NewlineMode.AUTO:
        return _FIXED_NEWLINES[mode]
    # max() keeps the first of equal candidates.
    return max(AUTO_PREFERENCE, key=lambda style: parsed.counts.get(style, 0))


def is_whitespace_only(data: bytes) -> bool:
    """True for non-empty data made only of whitespace and terminators."""
    return bool(data) and not data.translate(None, FILE_WHITESPACE)


def replace_tabs(
    lines: List[Numbered], tab_width: int, events: List[ChangeEvent]
) -> List[Numbered]:
    if tab_width < 0:
        return lines
    spaces: bytes = SPACE * tab_width
    result: List[Numbered] = []
    for number, line in lines:
        count: int = line.content.count(TAB)
        if count:
            line = line._replace(content=line.content.replace(TAB, spaces))
            if tab_width:
                detail = f"{count} tab(s) replaced with {tab_width} space(s) each"
            else:
                detail = f"{count} tab(s) removed"
            events.append(ChangeEvent(number, ChangeKind.TABS_REPLACED, detail))
        result.append((number, line))
    return result


def normalize_non_standard_whitespace(
    lines: List[Numbered], mode: NonStandardWhitespaceMode, events: List[ChangeEvent]
) -> List[Numbered]:
    if mode is NonStandardWhitespaceMode.IGNORE:
        return lines
    if mode is NonStandardWhitespaceMode.REPLACE:
        kind = ChangeKind.NON_STANDARD_WHITESPACE_REPLACED
    else:
        kind = ChangeKind.NON_STANDARD_WHITESPACE_REMOVED

    result: List[Numbered] = []
    for number, line in lines:
        found: List[str] = []
        for char, name in ((b"\x0b", "\\v"), (b"\x0c", "\\f")):
            count: int = line.content.count(char)
            if count:
                found.append(f"'{name}' x{count}")
        if found:
            if mode is NonStandardWhitespaceMode.REPLACE:
                content = line.content.translate(_NON_STANDARD_TO_SPACE)
            else:
                content = line.content.translate(None, NON_STANDARD_WHITESPACE)
            line = line._replace(content=content)
            events.append(ChangeEvent(number, kind, ", ".join(found)))
        result.append((number, line))
    return result


def remove_trailing_whitespace(
    lines: List[Numbered], events: List[ChangeEvent]
) -> List[Numbered]:
    result: List[Numbered] = []
    for number, line in lines:
        stripped: bytes = line.content.rstrip(LINE_WHITESPACE)
        if stripped != line.content:
            removed: int = len(line.content) - len(stripped)
            line = line._replace(content=stripped)
            events.append(
                ChangeEvent(
                    number,
                    ChangeKind.TRAILING_WHITESPACE_REMOVED,
                    f"{removed} byte(s)",
                )
            )
        result.append((number, line))
    return result


def is_empty_line(line: Line) -> bool:
    return not line.content


def remove_leading_empty_lines(
    lines: List[Numbered], events: List[ChangeEvent]
) -> List[Numbered]:
    start: int = 0
    while start < len(lines) and is_empty_line(lines[start][1]):
        events.append(
            ChangeEvent(lines[start][0], ChangeKind.LEADING_EMPTY_LINE_REMOVED)
        )
        start += 1
    return lines[start:]


def remove_trailing_empty_lines(
    lines: List[Numbered], events: List[ChangeEvent]
) -> List[Numbered]:
    end: int = len(lines)
    while end > 0 and is_empty_line(lines[end - 1][1]):
        end -= 1
    for number, _ in lines[end:]:
        events.append(ChangeEvent(number, ChangeKind.TRAILING_EMPTY_LINE_REMOVED))
    return lines[:end]


def normalize_terminators(
    lines: List[Numbered], target: NewlineStyle, events: List[ChangeEvent]
) -> List[Numbered]:
    result: List[Numbered] = []
    for number, line in lines:
        if line.terminator not in (NewlineStyle.NONE, target):
            events.append(
                ChangeEvent(
                    number,
                    ChangeKind.NEWLINE_MARKER_NORMALIZED,
                    f"'{line.terminator.visible}' -> '{target.visible}'",
                )
            )
            line = line._replace(terminator=target)
        result.append((number, line))
    return result


def edit_end_of_file(
    lines: List[Numbered],
    config: Configuration,
    target: NewlineStyle,
    events: List[ChangeEvent],
) -> List[Numbered]:
    if not lines:
        return lines
    number, last = lines[-1]
    if config.add_eof_marker and last.terminator is NewlineStyle.NONE:
        events.append(ChangeEvent(number, ChangeKind.END_OF_FILE_MARKER_ADDED))
        return lines[:-1] + [(number, last._replace(terminator=target))]
    if config.remove_eof_marker and last.terminator is not NewlineStyle.NONE:
        events.append(
            ChangeEvent(
                number,
                ChangeKind.END_OF_FILE_MARKER_REMOVED,
                f"'{last.terminator.visible}'",
            )
        )
        return lines[:-1] + [(number, last._replace(terminator=NewlineStyle.NONE))]
    return lines


def transform_lines(
    parsed: ParsedFile,
    config: Configuration,
    target: NewlineStyle,
    events: List[ChangeEvent],
) -> List[Numbered]:
    """
    Run the per-line stages of the pipeline in their fixed order.

    Tabs and non-standard whitespace are rewritten before trailing
    whitespace is trimmed, and lines are classified as empty only after
    all three, so a second run finds nothing left to do.
    """
    lines: List[Numbered] = list(enumerate(parsed.lines, start=1))

    lines = replace_tabs(lines, config.tab_width, events)
    lines = normalize_non_standard_whitespace(
        lines, config.non_standard_whitespace, events
    )
    if config.remove_trailing_whitespace:
        lines = remove_trailing_whitespace(lines, events)

    # A final line with no content and no terminator holds no bytes.
    if lines and lines[-1][1] == Line(b"", NewlineStyle.NONE):
        lines = lines[:-1]

    if config.remove_leading_empty_lines:
        lines = remove_leading_empty_lines(lines, events)
    if config.remove_trailing_empty_lines:
        lines = remove_trailing_empty_lines(lines, events)
    if config.normalize_newlines:
        lines = normalize_terminators(lines, target, events)
    return edit_end_of_file(lines, config, target, events)


def detect_changes(
    original: bytes, data: bytes, events: Iterable[ChangeEvent]
) -> FormattingOutcome:
    """
    Compare output with input byte for byte.

    The byte comparison alone decides whether the file changed; events
    are kept only when it did, so the two never disagree.
    """
    changed: bool = data != original
    return FormattingOutcome(
        data=data, changed=changed, events=tuple(events) if changed else ()
    )


def format_bytes(data: bytes, config: Configuration) -> FormattingOutcome:
    """Format the content of one file according to config."""
    parsed: ParsedFile = split_lines(data)
    target: NewlineStyle = resolve_newline(config.newline_mode, parsed)
    events: List[ChangeEvent] = []

    # Whitespace-only input is replaced as a whole, decided on the input.
    if (
        is_whitespace_only(data)
        and config.whitespace_only_files is not TrivialFileMode.IGNORE
    ):
        if config.whitespace_only_files is TrivialFileMode.EMPTY:
            output: bytes = b""
            detail = "replaced with an empty file"
        else:
            output = target.value
            detail = f"replaced with a single '{target.visible}'"
        events.append(
            ChangeEvent(None, ChangeKind.WHITESPACE_ONLY_FILE_NORMALIZED, detail)
        )
        return detect_changes(data, output, events)

    lines: List[Numbered] = transform_lines(parsed, config, target, events)
    output = join_lines(line for _, line in lines)

    if not output and config.empty_files is TrivialFileMode.ONE_LINE:
        output = target.value
        events.append(
            ChangeEvent(
                None, ChangeKind.EMPTY_FILE_NORMALIZED, f"'{target.visible}'"
            )
        )

    return detect_changes(data, output, events)
