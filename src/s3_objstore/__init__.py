"""SigV4-signed client for S3-compatible object storage"""

from s3_objstore.client import (
    ClientFactory,
    EndpointConfig,
    ObjectBody,
    ObjectInfo,
    ObjectStoreClient,
    PutOptions,
    PutResult,
)
from s3_objstore.signing import (
    Credentials,
    SignedRequest,
    SigningScope,
    derive_signing_key,
    get_credentials,
    presign_url,
    sign_request,
)
from s3_objstore.parsing import ListPage, ObjectSummary, parse_list_objects
from s3_objstore.transforms import TransformPipeline, TransformedPayload
from s3_objstore.batch import (
    BatchExecutor,
    BatchItem,
    BatchResult,
    BucketStats,
    collect_stats,
    iter_objects,
)
from s3_objstore.errors import (
    ConfigurationError,
    DecompressionError,
    DecryptionError,
    DeleteError,
    DownloadError,
    HeadError,
    ListError,
    ObjectStoreError,
    PaginationLimitError,
    RequestError,
    ResponseParseError,
    SigningError,
    TransformError,
    UploadError,
)
from s3_objstore.http_capture import HTTPCapture

__all__ = [
    # Client
    "ClientFactory",
    "EndpointConfig",
    "ObjectBody",
    "ObjectInfo",
    "ObjectStoreClient",
    "PutOptions",
    "PutResult",
    # Signing
    "Credentials",
    "SignedRequest",
    "SigningScope",
    "derive_signing_key",
    "get_credentials",
    "presign_url",
    "sign_request",
    # Parsing
    "ListPage",
    "ObjectSummary",
    "parse_list_objects",
    # Transforms
    "TransformPipeline",
    "TransformedPayload",
    # Batch
    "BatchExecutor",
    "BatchItem",
    "BatchResult",
    "BucketStats",
    "collect_stats",
    "iter_objects",
    # Errors
    "ConfigurationError",
    "DecompressionError",
    "DecryptionError",
    "DeleteError",
    "DownloadError",
    "HeadError",
    "ListError",
    "ObjectStoreError",
    "PaginationLimitError",
    "RequestError",
    "ResponseParseError",
    "SigningError",
    "TransformError",
    "UploadError",
    # HTTP Capture
    "HTTPCapture",
]
