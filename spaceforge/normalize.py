#!/usr/bin/env python3
"""
SpaceForge

A cross-platform Python tool to format whitespace in text files.
"""

import argparse
import concurrent.futures
import errno
import logging
import os
import re
import shutil
import tempfile
import threading
import time
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Pattern, Set

from tqdm import tqdm

from . import __version__
from .formatter import FormattingOutcome, format_bytes
from .options import (
    ConfigError,
    Configuration,
    RequestedOptions,
    describe,
    validate_options,
)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG_ERROR = 2
EXIT_INTERRUPTED = 130

TEMP_SUFFIX = ".spaceforge.tmp"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Set up logging with thread-safe handler
logging.basicConfig(
    level=logging.INFO,
    format=LOG_FORMAT,
    handlers=[logging.StreamHandler()],
)
logger = logging.getLogger("SpaceForge")
# Add a thread lock for logging
log_lock = threading.Lock()


def configure_logging(verbose: bool = False, log_file: Optional[str] = None) -> None:
    """Set the log level and optionally mirror log records to a file."""
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    if log_file:
        file_handler = logging.FileHandler(log_file, mode="a")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(file_handler)


@dataclass
class FileResult:
    """Outcome of formatting (or checking) a single file."""

    path: str
    outcome: Optional[FormattingOutcome] = None
    error: Optional[str] = None
    written: bool = False

    @property
    def failed(self) -> bool:
        return self.error is not None

    @property
    def needs_changes(self) -> bool:
        return self.outcome is not None and self.outcome.changed


@dataclass
class RunSummary:
    """Per-file results of a run, ordered by path."""

    results: List[FileResult] = field(default_factory=list)

    @property
    def changed(self) -> List[FileResult]:
        return [r for r in self.results if r.needs_changes]

    @property
    def failed(self) -> List[FileResult]:
        return [r for r in self.results if r.failed]

    @property
    def unchanged(self) -> List[FileResult]:
        return [r for r in self.results if not r.failed and not r.needs_changes]

    def exit_status(self, check_only: bool) -> int:
        if self.failed:
            return EXIT_FAILURE
        if check_only and self.changed:
            return EXIT_FAILURE
        return EXIT_OK


def find_files(
    paths: Iterable[str],
    exclude: Optional[str] = None,
    follow_symlinks: bool = False,
) -> List[str]:
    """
    Expand files and directories into a sorted list of files.

    Directories are walked recursively. Symbolic links are skipped
    unless follow_symlinks is set. Files whose path matches the exclude
    regular expression are left out.
    """
    exclude_re: Optional[Pattern[str]] = None
    if exclude:
        try:
            exclude_re = re.compile(exclude)
        except re.error as e:
            raise ConfigError(f"invalid exclude expression '{exclude}': {e}") from e

    found: Set[str] = set()

    def consider(file_path: str) -> None:
        if exclude_re is not None and exclude_re.search(file_path):
            with log_lock:
                logger.debug("Excluding %s", file_path)
            return
        found.add(os.path.normpath(file_path))

    for path in paths:
        if not os.path.lexists(path):
            raise FileNotFoundError(f"File not found: {path}")
        if os.path.islink(path) and not follow_symlinks:
            with log_lock:
                logger.debug("Skipping symbolic link: %s", path)
            continue

        if os.path.isfile(path):
            consider(path)
            continue

        # Walk the directory tree to find files
        for root, dirs, files in os.walk(path, followlinks=follow_symlinks):
            if not follow_symlinks:
                dirs[:] = [
                    d for d in dirs if not os.path.islink(os.path.join(root, d))
                ]
            for filename in files:
                file_path: str = os.path.join(root, filename)
                if os.path.islink(file_path) and not follow_symlinks:
                    continue
                if os.path.isfile(file_path):
                    consider(file_path)

    return sorted(found)


def write_file(file_path: str, data: bytes) -> None:
    """
    Replace the content of file_path with data.

    The new bytes go to a uniquely named temporary file in the same
    directory, which takes over the original's permission bits and is
    then renamed over it. The original is either fully replaced or left
    untouched, and no other file in the directory is created or
    overwritten. Symbolic links are written through to their target.
    OSError is re-raised after the temporary file is removed.
    """
    target: str = os.path.realpath(file_path)

    # Check if the file is writable
    if not os.access(target, os.W_OK):
        raise PermissionError(errno.EACCES, os.strerror(errno.EACCES), file_path)

    fd, temp_path = tempfile.mkstemp(
        prefix=f".{os.path.basename(target)}.",
        suffix=TEMP_SUFFIX,
        dir=os.path.dirname(target),
    )
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        shutil.copymode(target, temp_path)
        os.replace(temp_path, target)
    except OSError:
        try:
            os.remove(temp_path)
        except OSError as cleanup_err:
            with log_lock:
                logger.error(
                    "Failed to remove temporary file %s: %s",
                    temp_path,
                    str(cleanup_err),
                )
        raise


def process_file(file_path: str, config: Configuration, check_only: bool) -> FileResult:
    """Format one file, or only check it when check_only is set."""
    result = FileResult(path=file_path)
    try:
        with open(file_path, "rb") as f:
            content: bytes = f.read()
    except OSError as e:
        result.error = f"Cannot read file: {e.strerror or e}"
        return result

    result.outcome = format_bytes(content, config)

    if not result.outcome.changed:
        with log_lock:
            logger.debug("No changes needed for file: %s", file_path)
        return result

    if check_only:
        with log_lock:
            logger.debug("File needs formatting: %s", file_path)
        return result

    try:
        write_file(file_path, result.outcome.data)
    except OSError as e:
        result.error = f"Cannot write file: {e.strerror or e}"
        return result

    result.written = True
    with log_lock:
        logger.debug("Updated file: %s", file_path)
    return result


def process_files_parallel(  # pylint: disable=too-many-locals
    files: List[str],
    config: Configuration,
    check_only: bool = False,
    max_workers: Optional[int] = None,
    show_progress: bool = True,
) -> RunSummary:
    """Process files in parallel using ThreadPoolExecutor."""
    results: List[FileResult] = []
    if not files:
        return RunSummary(results)

    # Two threads per CPU, capped at 32 and at the number of files
    if max_workers is None:
        cpu_count: Optional[int] = os.cpu_count()
        max_workers = min((cpu_count or 2) * 2, 32, len(files))
    else:
        max_workers = max(1, min(max_workers, 32, len(files)))

    with log_lock:
        logger.debug(
            "Using %d worker threads for processing %d files", max_workers, len(files)
        )

    # Process files in batches to avoid excessive memory usage for large file lists
    batch_size = 1000
    for i in range(0, len(files), batch_size):
        batch_files = files[i : i + batch_size]

        with tqdm(
            total=len(batch_files),
            desc=f"{'Checking' if check_only else 'Formatting'} files "
            f"(batch {i // batch_size + 1})",
            unit="file",
            disable=None if show_progress else True,
        ) as pbar:
            with concurrent.futures.ThreadPoolExecutor(
                max_workers=max_workers
            ) as executor:
                future_to_file = {
                    executor.submit(process_file, file_path, config, check_only): file_path
                    for file_path in batch_files
                }

                for future in concurrent.futures.as_completed(future_to_file):
                    file_path = future_to_file[future]
                    try:
                        results.append(future.result())
                    except Exception as e:  # pylint: disable=broad-exception-caught
                        with log_lock:
                            logger.error(
                                "Unhandled error processing %s: %s", file_path, str(e)
                            )
                        results.append(FileResult(path=file_path, error=str(e)))
                    finally:
                        pbar.update(1)

    # Workers finish in any order; reports are always by path.
    results.sort(key=lambda r: r.path)
    return RunSummary(results)


def format_elapsed(execution_time: float) -> str:
    if execution_time < 60:
        return f"{execution_time:.2f} seconds"
    if execution_time < 3600:
        minutes = int(execution_time // 60)
        seconds = execution_time % 60
        return f"{minutes} minute{'s' if minutes != 1 else ''} {seconds:.2f} seconds"
    hours = int(execution_time // 3600)
    minutes = int((execution_time % 3600) // 60)
    seconds = execution_time % 60
    return (
        f"{hours} hour{'s' if hours != 1 else ''} "
        f"{minutes} minute{'s' if minutes != 1 else ''} "
        f"{seconds:.2f} seconds"
    )


def report(summary: RunSummary, check_only: bool) -> None:
    """Log every change and error, file by file in path order."""
    for result in summary.results:
        if result.outcome is not None:
            for event in result.outcome.events:
                logger.info("%s: %s", result.path, event.describe(check_only))
        if result.error is not None:
            logger.error("%s: %s", result.path, result.error)

    if check_only:
        logger.info(
            "%d file(s) would be formatted, %d already formatted, %d error(s).",
            len(summary.changed),
            len(summary.unchanged),
            len(summary.failed),
        )
    else:
        logger.info(
            "Formatted: %d, Unchanged: %d, Errors: %d",
            len([r for r in summary.results if r.written]),
            len(summary.unchanged),
            len(summary.failed),
        )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="spaceforge",
        description="Whitespace formatter and format checker for text files "
        "and source code files.",
    )
    parser.add_argument(
        "paths",
        nargs="+",
        help="Files and/or directories to process. "
        "Files in directories are discovered recursively.",
    )
    parser.add_argument(
        "--check-only",
        action="store_true",
        help="Do not format files. Only report which files would be formatted. "
        "Exit code is non-zero if formatting is required.",
    )
    parser.add_argument(
        "--follow-symlinks",
        action="store_true",
        help="Follow symbolic links when searching for files",
    )
    parser.add_argument(
        "--exclude",
        default=None,
        help="Regular expression matched against each file path; "
        "matching files are skipped (e.g. '\\.git/|\\.png$')",
    )
    parser.add_argument(
        "--new-line-marker",
        default="auto",
        choices=["auto", "linux", "mac", "windows"],
        help="New line marker to use (default: auto, the most common "
        "marker in each file, or '\\n' if there is none)",
    )
    parser.add_argument(
        "--add-new-line-marker-at-end-of-file",
        action="store_true",
        help="Add a new line marker at the end of the file if it is missing",
    )
    parser.add_argument(
        "--remove-new-line-marker-from-end-of-file",
        action="store_true",
        help="Remove the new line marker from the end of the file. "
        "Implies --remove-trailing-empty-lines",
    )
    parser.add_argument(
        "--normalize-new-line-markers",
        action="store_true",
        help="Make new line markers the same within each file",
    )
    parser.add_argument(
        "--remove-trailing-whitespace",
        action="store_true",
        help="Remove whitespace at the end of each line",
    )
    parser.add_argument(
        "--remove-leading-empty-lines",
        action="store_true",
        help="Remove empty lines at the beginning of each file",
    )
    parser.add_argument(
        "--remove-trailing-empty-lines",
        action="store_true",
        help="Remove empty lines at the end of each file",
    )
    parser.add_argument(
        "--replace-tabs-with-spaces",
        type=int,
        default=-1,
        metavar="N",
        help="Replace each tab with N spaces; 0 removes tabs "
        "(default: -1, tabs are left alone)",
    )
    parser.add_argument(
        "--normalize-non-standard-whitespace",
        default="ignore",
        choices=["ignore", "replace", "remove"],
        help="Replace '\\v' and '\\f' with a space, or remove them (default: ignore)",
    )
    parser.add_argument(
        "--normalize-empty-files",
        default="ignore",
        choices=["ignore", "empty", "one-line"],
        help="What to do with files of zero length (default: ignore)",
    )
    parser.add_argument(
        "--normalize-whitespace-only-files",
        default="ignore",
        choices=["ignore", "empty", "one-line"],
        help="What to do with files consisting of whitespace only (default: ignore)",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Number of worker threads for parallel processing "
        "(default: auto-detect based on CPU count)",
    )
    parser.add_argument(
        "--no-progress", action="store_true", help="Do not show a progress bar"
    )
    parser.add_argument(
        "--verbose", action="store_true", help="Enable verbose logging"
    )
    parser.add_argument(
        "--log-file", default=None, help="Also append log messages to this file"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"SpaceForge v{__version__}",
        help="Show program version and exit",
    )
    return parser


def requested_options(args: argparse.Namespace) -> RequestedOptions:
    return RequestedOptions(
        new_line_marker=args.new_line_marker,
        add_new_line_marker_at_end_of_file=args.add_new_line_marker_at_end_of_file,
        remove_new_line_marker_from_end_of_file=(
            args.remove_new_line_marker_from_end_of_file
        ),
        normalize_new_line_markers=args.normalize_new_line_markers,
        remove_trailing_whitespace=args.remove_trailing_whitespace,
        remove_leading_empty_lines=args.remove_leading_empty_lines,
        remove_trailing_empty_lines=args.remove_trailing_empty_lines,
        replace_tabs_with_spaces=args.replace_tabs_with_spaces,
        normalize_non_standard_whitespace=args.normalize_non_standard_whitespace,
        normalize_empty_files=args.normalize_empty_files,
        normalize_whitespace_only_files=args.normalize_whitespace_only_files,
    )


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        configure_logging(args.verbose, args.log_file)
        logger.debug("SpaceForge v%s - Whitespace Formatter", __version__)

        try:
            config: Configuration = validate_options(requested_options(args))
            files: List[str] = find_files(
                args.paths, args.exclude, args.follow_symlinks
            )
        except ConfigError as e:
            logger.error("Error: %s", e)
            return EXIT_CONFIG_ERROR
        except FileNotFoundError as e:
            logger.error("Error: %s", e)
            return EXIT_FAILURE

        for name, value in describe(config).items():
            logger.debug("Option %s: %s", name, value)

        # Validate workers count
        if args.workers is not None and args.workers <= 0:
            logger.warning(
                "Invalid worker count (%d), using auto-detection instead", args.workers
            )
            args.workers = None

        if not files:
            logger.warning("No matching files found.")
            return EXIT_OK

        logger.debug("Found %d files to process.", len(files))

        # Measure execution time
        start_time: float = time.time()

        summary: RunSummary = process_files_parallel(
            files,
            config,
            check_only=args.check_only,
            max_workers=args.workers,
            show_progress=not args.no_progress,
        )

        report(summary, args.check_only)
        logger.debug("Done in %s.", format_elapsed(time.time() - start_time))
        return summary.exit_status(args.check_only)
    except KeyboardInterrupt:
        logger.info("Operation cancelled by user.")
        return EXIT_INTERRUPTED
    except Exception as e:  # pylint: disable=broad-exception-caught
        logger.error("An unexpected error occurred: %s", str(e))
        if logger.isEnabledFor(logging.DEBUG):
            import traceback  # pylint: disable=import-outside-toplevel

            logger.debug("Traceback: %s", traceback.format_exc())
        return EXIT_FAILURE
