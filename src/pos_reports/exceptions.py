"""Domain-specific exceptions for POS Reports.

This module defines custom exceptions that are part of the public API.
All exceptions inherit from PosReportsError for easy catching.

Per-row data problems (bad numbers, bad dates, unmapped columns) are never
raised; they degrade to defaults inside the normalizer. These exceptions are
reserved for structural problems.
"""


class PosReportsError(Exception):
    """Base exception for all POS Reports errors.

    Users can catch this exception to handle any POS Reports error.
    """

    pass


class ConfigError(PosReportsError):
    """Raised when there is a configuration error.

    This exception is raised when:
    - A settings document cannot be interpreted
    - Required configuration is missing
    """

    pass


class MappingError(PosReportsError):
    """Raised when a field mapping cannot be used.

    This exception is raised when:
    - A mapping document has unknown slots (strict loading)
    """

    pass


class StorageError(PosReportsError):
    """Raised when the persistent document store fails.

    Raised by ``JsonFileStore`` for invalid keys or namespaces. The report
    helpers in ``pos_reports.storage`` catch it and return ``None``/``False``.
    """

    pass
