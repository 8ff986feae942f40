#!/usr/bin/env python
"""
Exceptions Module - Error taxonomy for the calibration pipeline

Every error that can end the processing of a single gene family derives from
RatogramError, so that the batch driver can catch it at the family boundary
and continue with the next family. I/O failures (OSError) are not part of
this hierarchy: they terminate the run.
"""


class RatogramError(Exception):
    """Base class for all per-family errors."""

    def __init__(self, message, context=None):
        super().__init__(message)
        self.context = context or {}


class ParseError(RatogramError, ValueError):
    """Malformed tree, record or tool output text."""
    pass


class PruneError(RatogramError):
    """Pruning collapsed a tree or flagged every remaining tip."""
    pass


class ExternalToolError(RatogramError):
    """The external tool could not be run, exited non-zero or produced nothing."""

    def __init__(self, message, tool_name=None, return_code=None, context=None):
        super().__init__(message, context=context)
        self.tool_name = tool_name
        self.return_code = return_code
        self.context.setdefault('tool_name', tool_name)
        self.context.setdefault('return_code', return_code)


class CalibrationFailedError(RatogramError):
    """The external tool ran but the analysis did not pass."""
    pass


class MappingWarning(UserWarning):
    """A fossil or node could not be matched. Never fatal, kept for audit."""

    def __init__(self, message, taxon=None):
        super().__init__(message)
        self.taxon = taxon
