"""Domain errors and failure typing."""

from __future__ import annotations


class GeobatchError(Exception):
    """Base class for geocoding client failures."""

    error_code = "GEOBATCH_ERROR"


class ConfigError(GeobatchError):
    """Raised for invalid or missing configuration."""

    error_code = "CONFIG_ERROR"


class IngestError(GeobatchError):
    """Raised when reading input records stops early."""

    error_code = "INGEST_ERROR"

    def __init__(self, message: str, *, source: str, records_read: int = 0) -> None:
        super().__init__(message)
        self.source = source
        self.records_read = records_read


class MalformedRecordError(IngestError):
    """Raised for a row with too few columns or an unreadable sensor flag."""

    error_code = "MALFORMED_RECORD"

    def __init__(self, message: str, *, source: str, row: int, records_read: int = 0) -> None:
        super().__init__(f"{message} in file {source} at row {row}", source=source, records_read=records_read)
        self.row = row


class InputReadError(IngestError):
    """Raised when the underlying stream cannot be read."""

    error_code = "INPUT_READ_ERROR"


class InvalidClientIDError(GeobatchError):
    error_code = "INVALID_CLIENT_ID"


class InvalidKeyError(GeobatchError):
    """Raised when the signing key is not URL-safe base64."""

    error_code = "INVALID_KEY"


class TransportError(GeobatchError):
    """Raised for network failures talking to the geocoding API."""

    error_code = "TRANSPORT_ERROR"

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class HttpStatusError(TransportError):
    error_code = "HTTP_ERROR"


class CancelledError(GeobatchError):
    """Reported for in-flight work abandoned after the grace period."""

    error_code = "CANCELLED"
