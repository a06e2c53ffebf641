"""Exception hierarchy for object store operations."""

from typing import Optional


class ObjectStoreError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(ObjectStoreError):
    """Missing or invalid endpoint/credential configuration."""


class SigningError(ObjectStoreError):
    """Request could not be signed (bad timestamp, unencodable input)."""


class RequestError(ObjectStoreError):
    """Non-2xx HTTP response or transport failure for one operation.

    Attributes:
        operation: Operation name, e.g. "PutObject"
        key: Object key (None for bucket-level calls)
        status: HTTP status code, or None when no response was received
        body_snippet: Leading part of the response body
        code: S3 error code from the XML error body, when present
    """

    operation = "Request"

    def __init__(
        self,
        key: Optional[str] = None,
        status: Optional[int] = None,
        body_snippet: str = "",
        code: Optional[str] = None,
        message: Optional[str] = None,
    ):
        self.key = key
        self.status = status
        self.body_snippet = body_snippet
        self.code = code
        super().__init__(message or self._describe())

    def _describe(self) -> str:
        target = f" {self.key!r}" if self.key is not None else ""
        if self.status is None:
            return f"{self.operation}{target} failed without a response"
        detail = f" ({self.code})" if self.code else ""
        return f"{self.operation}{target} failed with HTTP {self.status}{detail}"


class UploadError(RequestError):
    operation = "PutObject"


class DownloadError(RequestError):
    operation = "GetObject"


class HeadError(RequestError):
    operation = "HeadObject"


class ListError(RequestError):
    operation = "ListObjectsV2"


class DeleteError(RequestError):
    operation = "DeleteObject"


class ResponseParseError(ObjectStoreError):
    """Response body is not the XML document the operation expects."""


class TransformError(ObjectStoreError):
    """Payload transform could not be applied or inverted."""


class DecompressionError(TransformError):
    pass


class DecryptionError(TransformError):
    pass


class PaginationLimitError(ObjectStoreError):
    """Listing kept reporting truncation past the iteration cap."""

    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(f"Listing did not terminate within {limit} pages")
