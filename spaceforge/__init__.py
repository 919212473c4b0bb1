"""
SpaceForge - A cross-platform Python utility for formatting whitespace in text files.

This package provides functionality to:
- Normalize new line markers to Linux (LF), MacOS (CR) or Windows (CRLF)
- Add or remove the new line marker at the end of each file
- Remove trailing whitespace from lines
- Remove empty lines at the beginning and end of files
- Replace tabs and non-standard whitespace ('\\v', '\\f')
- Normalize empty and whitespace-only files
- Check files without modifying them (for pre-commit hooks and CI)

Formatting is idempotent: running it twice gives the same bytes as once.
"""

__version__ = "1.0.0"
__author__ = "tboy1337"
