"""
Ignore-pattern filtering.

See :mod:`splitify.ignore.ignore_filter` for the pattern sources and
matching rules.
"""

from .ignore_filter import IgnoreFilter  # noqa: F401
