"""
Top-level package for splitify.

splitify asks a language model to split the uncommitted changes of a Git
working tree into logically related groups, then lets the user review,
edit and commit each group on its own. The command line entry point
lives in :mod:`splitify.cli`; the grouping engine in
:mod:`splitify.grouping.engine`.
"""

__all__ = ["__version__"]

__version__ = "0.3.0"
