from __future__ import annotations


class CodemapError(Exception):
    """Base class for failures that abort a reconciliation run."""


class StructuralError(CodemapError):
    """Group boundaries in a file do not pair up."""


class TemplateError(CodemapError):
    """A group-reference template could not be parsed or rendered."""


class TokenCollisionError(CodemapError):
    """The token generator kept returning tokens already issued in this run."""
