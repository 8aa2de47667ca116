from __future__ import annotations


class InvalidQuery(ValueError):
    """Raised when a departures query cannot be served (bad stops, bad parameters)."""


class TimeParseError(ValueError):
    """Raised when a board clock string is not a valid ``H:MM``/``HH:MM`` time."""
