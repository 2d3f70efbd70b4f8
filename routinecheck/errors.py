class RoutineValidationError(ValueError):
    """The routine request cannot be analyzed as submitted."""


class AdvisoryUnavailableError(Exception):
    """Every configured advisory model failed or none is configured."""


class AdvisoryParseError(Exception):
    """The advisory response did not contain parseable JSON."""

    def __init__(self, message: str, raw_text: str = ""):
        super().__init__(message)
        self.raw_text = raw_text


class DuplicateKeyError(Exception):
    """A row with the same natural key already exists."""

    def __init__(self, table: str, key):
        super().__init__(f"Duplicate key in {table}: {key!r}")
        self.table = table
        self.key = key


class AnalysisFailedError(Exception):
    """Routine analysis could not be completed."""
