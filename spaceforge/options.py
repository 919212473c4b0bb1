"""
Formatting options and their validation.

Raw values arrive from the command line as a RequestedOptions instance.
validate_options() turns them into the one canonical, immutable
Configuration shared by every worker thread for the whole run.
"""

import dataclasses
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Type, TypeVar


class ConfigError(ValueError):
    """Raised for a contradictory or unknown option combination."""


class NewlineMode(Enum):
    AUTO = "auto"
    LINUX = "linux"
    MAC = "mac"
    WINDOWS = "windows"


class NonStandardWhitespaceMode(Enum):
    IGNORE = "ignore"
    REPLACE = "replace"
    REMOVE = "remove"


class TrivialFileMode(Enum):
    IGNORE = "ignore"
    EMPTY = "empty"
    ONE_LINE = "one-line"


# Spellings used by the whitespace-format tool this one is compatible with.
_ALIASES: Dict[str, str] = {
    "macos": "mac",
    "replace-with-space": "replace",
    "one_line": "one-line",
}

_ModeT = TypeVar("_ModeT", bound=Enum)


@dataclass
class RequestedOptions:  # pylint: disable=too-many-instance-attributes
    """Options exactly as the user asked for them, before validation."""

    new_line_marker: str = "auto"
    add_new_line_marker_at_end_of_file: bool = False
    remove_new_line_marker_from_end_of_file: bool = False
    normalize_new_line_markers: bool = False
    remove_trailing_whitespace: bool = False
    remove_leading_empty_lines: bool = False
    remove_trailing_empty_lines: bool = False
    replace_tabs_with_spaces: int = -1
    normalize_non_standard_whitespace: str = "ignore"
    normalize_empty_files: str = "ignore"
    normalize_whitespace_only_files: str = "ignore"


@dataclass(frozen=True)
class Configuration:  # pylint: disable=too-many-instance-attributes
    """Validated formatting options. Never mutated once built."""

    newline_mode: NewlineMode = NewlineMode.AUTO
    add_eof_marker: bool = False
    remove_eof_marker: bool = False
    normalize_newlines: bool = False
    remove_trailing_whitespace: bool = False
    remove_leading_empty_lines: bool = False
    remove_trailing_empty_lines: bool = False
    tab_width: int = -1
    non_standard_whitespace: NonStandardWhitespaceMode = (
        NonStandardWhitespaceMode.IGNORE
    )
    empty_files: TrivialFileMode = TrivialFileMode.IGNORE
    whitespace_only_files: TrivialFileMode = TrivialFileMode.IGNORE


def parse_mode(enum_type: Type[_ModeT], value: object, option: str) -> _ModeT:
    """Convert a user supplied mode name (or enum member) to enum_type."""
    if isinstance(value, enum_type):
        return value
    name: str = str(value).strip().lower()
    name = _ALIASES.get(name, name)
    try:
        return enum_type(name)
    except ValueError:
        choices: str = ", ".join(member.value for member in enum_type)
        raise ConfigError(
            f"invalid value '{value}' for '{option}' (choose from {choices})"
        ) from None


def validate_options(requested: RequestedOptions) -> Configuration:
    """
    Validate requested options and resolve their implications.

    Raises ConfigError when the combination cannot be formatted
    idempotently. The implied settings are applied here once, so the
    formatter never has to re-derive them.
    """
    newline_mode: NewlineMode = parse_mode(
        NewlineMode, requested.new_line_marker, "--new-line-marker"
    )
    non_standard: NonStandardWhitespaceMode = parse_mode(
        NonStandardWhitespaceMode,
        requested.normalize_non_standard_whitespace,
        "--normalize-non-standard-whitespace",
    )
    empty_files: TrivialFileMode = parse_mode(
        TrivialFileMode, requested.normalize_empty_files, "--normalize-empty-files"
    )
    whitespace_only: TrivialFileMode = parse_mode(
        TrivialFileMode,
        requested.normalize_whitespace_only_files,
        "--normalize-whitespace-only-files",
    )

    if (
        requested.add_new_line_marker_at_end_of_file
        and requested.remove_new_line_marker_from_end_of_file
    ):
        raise ConfigError(
            "'--add-new-line-marker-at-end-of-file' cannot be used with "
            "'--remove-new-line-marker-from-end-of-file'"
        )

    if whitespace_only is TrivialFileMode.EMPTY:
        if empty_files is TrivialFileMode.ONE_LINE:
            raise ConfigError(
                "'--normalize-whitespace-only-files=empty' cannot be used with "
                "'--normalize-empty-files=one-line'"
            )
        empty_files = TrivialFileMode.EMPTY

    # An empty file has nothing to strip, so "empty" is the same as "ignore".
    if empty_files is TrivialFileMode.EMPTY:
        empty_files = TrivialFileMode.IGNORE

    try:
        tab_width: int = int(requested.replace_tabs_with_spaces)
    except (TypeError, ValueError):
        raise ConfigError(
            "invalid value "
            f"'{requested.replace_tabs_with_spaces}' for '--replace-tabs-with-spaces'"
        ) from None

    return Configuration(
        newline_mode=newline_mode,
        add_eof_marker=bool(requested.add_new_line_marker_at_end_of_file),
        remove_eof_marker=bool(requested.remove_new_line_marker_from_end_of_file),
        normalize_newlines=bool(requested.normalize_new_line_markers),
        remove_trailing_whitespace=bool(requested.remove_trailing_whitespace),
        remove_leading_empty_lines=bool(requested.remove_leading_empty_lines),
        # Implied by removing the final terminator.
        remove_trailing_empty_lines=bool(
            requested.remove_trailing_empty_lines
            or requested.remove_new_line_marker_from_end_of_file
        ),
        tab_width=tab_width,
        non_standard_whitespace=non_standard,
        empty_files=empty_files,
        whitespace_only_files=whitespace_only,
    )


def describe(config: Configuration) -> Dict[str, str]:
    """Human-readable view of a configuration, used in verbose logging."""
    described: Dict[str, str] = {}
    for field in dataclasses.fields(config):
        value = getattr(config, field.name)
        described[field.name] = value.value if isinstance(value, Enum) else str(value)
    return described
