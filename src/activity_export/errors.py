"""Exception types raised by the export core.

Every error is raised before any output is handed back to the caller, so a
caller either gets a complete artifact or one of these.
"""


class ActivityExportError(Exception):
    """Base class for all export failures."""


class InsufficientDataError(ActivityExportError):
    """Fewer than two GPS fixes; no track segment can be formed."""


class InvalidTimestampError(ActivityExportError):
    """Start time is missing, unparseable or outside the FIT time range."""


class InvalidStreamError(ActivityExportError):
    """Position stream is present but malformed (bad pairs, non-finite values)."""


class UnsupportedFormatError(ActivityExportError):
    """Requested export format is not one of gpx / fit."""


class EncodingInternalError(ActivityExportError):
    """Unexpected failure while assembling FIT bytes or GPX text."""
