"""
Canonical comparison keys for file paths.

Models do not always echo paths exactly as git reports them: they may use
backslashes, prefix ``./`` or leave stray whitespace. Suggested paths are
compared with change-set paths through :func:`normalize_path`; the paths
stored on the changes themselves are never rewritten.
"""

from __future__ import annotations


def normalize_path(path: str) -> str:
    """Return the comparison key for ``path``.

    Backslashes become slashes, surrounding whitespace is trimmed and the
    leading ``./`` is removed. The function is idempotent, so a repeated
    prefix such as ``././`` is removed as a whole:

    >>> normalize_path(" .\\\\src\\\\a.py ")
    'src/a.py'
    >>> normalize_path(normalize_path("././src/a.py"))
    'src/a.py'
    """
    key = path.replace("\\", "/").strip()
    while key.startswith("./"):
        key = key[2:].strip()
    return key
