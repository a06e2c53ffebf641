"""Signed S3 object operations over requests."""

from dataclasses import dataclass, field
from datetime import datetime
from email.utils import parsedate_to_datetime
from typing import Mapping, Optional, Tuple
from urllib.parse import urlsplit
import logging
import os

import requests

from s3_objstore.errors import (
    ConfigurationError,
    DeleteError,
    DownloadError,
    HeadError,
    ListError,
    RequestError,
    TransformError,
    UploadError,
)
from s3_objstore.http_capture import HTTPCapture
from s3_objstore.parsing import ListPage, parse_error, parse_list_objects
from s3_objstore.signing import (
    MAX_PRESIGN_EXPIRES,
    Credentials,
    canonical_query_string,
    get_credentials,
    presign_url,
    sign_request,
)
from s3_objstore.transforms import RESERVED_TAGS, TAG_ORIGINAL_CONTENT_TYPE, TransformPipeline
from s3_objstore.utils import (
    body_snippet,
    calculate_content_sha256,
    describe_request,
    describe_response,
    url_encode_key,
)

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"
META_PREFIX = "x-amz-meta-"

# Provider cap on ListObjectsV2 max-keys
MAX_LIST_KEYS = 1000

PRESIGN_METHODS = {
    "get": "GET",
    "get_object": "GET",
    "put": "PUT",
    "put_object": "PUT",
    "delete": "DELETE",
    "delete_object": "DELETE",
    "head": "HEAD",
    "head_object": "HEAD",
}


@dataclass
class EndpointConfig:
    """Configuration for an S3 endpoint and the bucket used on it."""
    base_url: str
    bucket: str
    verify_ssl: bool = True
    timeout: float = 30.0

    def __post_init__(self):
        if not self.base_url:
            raise ConfigurationError("Endpoint URL is missing")
        if not self.bucket:
            raise ConfigurationError("Bucket is missing")
        self.base_url = self._normalize_endpoint(self.base_url)

    @staticmethod
    def _normalize_endpoint(url: str) -> str:
        """Ensure endpoint URL has a scheme and no trailing slash."""
        if not url.startswith(("http://", "https://")):
            url = f"https://{url}"
        return url.rstrip("/")

    @property
    def host(self) -> str:
        return urlsplit(self.base_url).netloc

    @property
    def origin(self) -> str:
        parts = urlsplit(self.base_url)
        return f"{parts.scheme}://{parts.netloc}"

    @property
    def bucket_path(self) -> str:
        prefix = urlsplit(self.base_url).path.rstrip("/")
        return f"{prefix}/{url_encode_key(self.bucket, safe='')}"

    def object_path(self, key: str) -> str:
        return f"{self.bucket_path}/{url_encode_key(key)}"

    def url_for(self, path: str, query: str = "") -> str:
        url = f"{self.origin}{path}"
        return f"{url}?{query}" if query else url


@dataclass
class PutOptions:
    """Per-upload headers and transforms.

    ``server_side_encryption`` is sent as X-Amz-Server-Side-Encryption
    (e.g. "AES256"); ``compression``/``encrypt`` run the client-side
    transform pipeline before upload.
    """
    content_type: Optional[str] = None
    content_disposition: Optional[str] = None
    cache_control: Optional[str] = None
    metadata: dict = field(default_factory=dict)
    server_side_encryption: Optional[str] = None
    compression: Optional[str] = None
    encrypt: bool = False


@dataclass
class PutResult:
    etag: str
    version_id: Optional[str] = None
    size: int = 0
    applied_transforms: Tuple[str, ...] = ()


@dataclass
class ObjectBody:
    """Downloaded object payload and its headers."""
    body: bytes
    content_type: str
    content_length: int
    etag: str
    last_modified: Optional[datetime] = None
    metadata: dict = field(default_factory=dict)
    status: int = 200


@dataclass
class ObjectInfo:
    """HeadObject result."""
    key: str
    size: int
    content_type: str
    etag: str
    last_modified: Optional[datetime] = None
    metadata: dict = field(default_factory=dict)


def _owned_bytes(body) -> bytes:
    """Copy any bytes-like body into an immutable bytes object.

    Text must be encoded by the caller; str and int raise TypeError.
    """
    return memoryview(body).tobytes()


def _user_metadata(headers: Mapping[str, str]) -> dict:
    return {
        name[len(META_PREFIX):].lower(): value
        for name, value in headers.items()
        if name.lower().startswith(META_PREFIX)
    }


def _http_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None


def _etag(headers: Mapping[str, str]) -> str:
    return headers.get("ETag", "").strip('"')


class ObjectStoreClient:
    """Put/get/list/delete against one bucket of an S3-compatible store.

    Each call signs with a fresh timestamp; the client keeps no per-call
    state, so one instance can serve concurrent callers.

    Args:
        endpoint: Endpoint URL and bucket
        credentials: Signing credentials
        pipeline: Transform pipeline for compressed/encrypted payloads
        session: requests session (a new one by default)
        capture: When a list is given, one HTTPCapture is appended per call
    """

    def __init__(
        self,
        endpoint: EndpointConfig,
        credentials: Credentials,
        pipeline: Optional[TransformPipeline] = None,
        session: Optional[requests.Session] = None,
        capture: Optional[list] = None,
    ):
        credentials.validate()
        self.endpoint = endpoint
        self.credentials = credentials
        self.pipeline = pipeline or TransformPipeline()
        self.capture = capture
        self._session = session or requests.Session()

    def close(self):
        self._session.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    # -- transport ------------------------------------------------------------

    def _send(
        self,
        method: str,
        path: str,
        error_cls: type,
        key: Optional[str] = None,
        body: bytes = b"",
        headers: Optional[Mapping[str, str]] = None,
        query: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> requests.Response:
        request_headers = {
            "Host": self.endpoint.host,
            "X-Amz-Content-Sha256": calculate_content_sha256(body),
        }
        request_headers.update(headers or {})

        signed = sign_request(
            method, path, request_headers, self.credentials, body=body, query=query
        )
        url = self.endpoint.url_for(path, canonical_query_string(query))
        logger.debug("Request: %s", describe_request(method, url, signed.headers, body))

        try:
            prepared = self._session.prepare_request(
                requests.Request(method, url, data=body or None, headers=signed.headers)
            )
            # requests normalizes paths (dot segments, unreserved escapes); the
            # wire URL must stay byte-identical to the signed one
            prepared.url = url
            settings = self._session.merge_environment_settings(
                url, {}, None, self.endpoint.verify_ssl, None
            )
            response = self._session.send(
                prepared,
                timeout=timeout if timeout is not None else self.endpoint.timeout,
                **settings,
            )
        except requests.RequestException as exc:
            target = f" {key!r}" if key is not None else ""
            raise error_cls(key=key, message=f"{error_cls.operation}{target} failed: {exc}") from exc

        logger.debug("Response: %s", describe_response(response))
        if self.capture is not None:
            self.capture.append(HTTPCapture.from_response(response))
        return response

    @staticmethod
    def _error(error_cls: type, response: requests.Response, key: Optional[str]) -> RequestError:
        code, _ = parse_error(response.content)
        return error_cls(
            key=key,
            status=response.status_code,
            body_snippet=body_snippet(response.content),
            code=code,
        )

    # -- operations -----------------------------------------------------------

    def put_object(
        self,
        key: str,
        body,
        options: Optional[PutOptions] = None,
        timeout: Optional[float] = None,
    ) -> PutResult:
        """Upload one object in a single PUT.

        Args:
            key: Object key
            body: bytes-like payload
            options: Headers, metadata and transforms
            timeout: Request timeout in seconds (default: endpoint timeout)

        Returns:
            PutResult with the ETag (quotes stripped) and version id

        Raises:
            ValueError: empty key, or metadata named like a transform tag
            UploadError: non-2xx response or transport failure
        """
        if not key:
            raise ValueError("Object key must not be empty")
        payload = _owned_bytes(body)
        options = options or PutOptions()
        reserved = sorted(name for name in options.metadata if name.lower() in RESERVED_TAGS)
        if reserved:
            raise ValueError(f"Metadata names reserved for transforms: {', '.join(reserved)}")
        content_type = options.content_type or DEFAULT_CONTENT_TYPE
        metadata = dict(options.metadata)

        transformed = self.pipeline.apply(
            payload,
            compression=options.compression,
            encrypt=options.encrypt,
            content_type=content_type,
        )
        if transformed.is_transformed:
            payload = transformed.body
            metadata.update(transformed.metadata)
            content_type = DEFAULT_CONTENT_TYPE

        headers = {"Content-Type": content_type}
        if options.cache_control:
            headers["Cache-Control"] = options.cache_control
        if options.content_disposition:
            headers["Content-Disposition"] = options.content_disposition
        if options.server_side_encryption:
            headers["X-Amz-Server-Side-Encryption"] = options.server_side_encryption
        for name, value in metadata.items():
            headers[f"{META_PREFIX}{name}"] = str(value)

        response = self._send(
            "PUT", self.endpoint.object_path(key), UploadError,
            key=key, body=payload, headers=headers, timeout=timeout,
        )
        if not response.ok:
            raise self._error(UploadError, response, key)

        return PutResult(
            etag=_etag(response.headers),
            version_id=response.headers.get("x-amz-version-id"),
            size=len(payload),
            applied_transforms=transformed.applied_transforms,
        )

    def get_object(
        self,
        key: str,
        byte_range: Optional[str] = None,
        decompress: bool = False,
        timeout: Optional[float] = None,
    ) -> ObjectBody:
        """Download one object.

        Args:
            key: Object key
            byte_range: HTTP Range value, e.g. "bytes=0-99"
            decompress: Invert transforms recorded in the object's metadata
                (decrypt, then decompress) and restore the original
                Content-Type
            timeout: Request timeout in seconds

        Raises:
            DownloadError: status other than 200/206, or transport failure
            DecryptionError, DecompressionError: stored payload is corrupt
        """
        headers = {"Range": byte_range} if byte_range else {}
        response = self._send(
            "GET", self.endpoint.object_path(key), DownloadError,
            key=key, headers=headers, timeout=timeout,
        )
        if response.status_code not in (200, 206):
            raise self._error(DownloadError, response, key)

        body = response.content
        metadata = _user_metadata(response.headers)
        content_type = response.headers.get("Content-Type", DEFAULT_CONTENT_TYPE)

        if decompress and self.pipeline.recorded_transforms(metadata):
            if response.status_code == 206:
                raise TransformError(f"Cannot invert transforms on a partial body of {key!r}")
            body = self.pipeline.invert(body, metadata)
            content_type = metadata.get(TAG_ORIGINAL_CONTENT_TYPE, content_type)
            content_length = len(body)
        else:
            content_length = int(response.headers.get("Content-Length", len(body)))

        return ObjectBody(
            body=body,
            content_type=content_type,
            content_length=content_length,
            etag=_etag(response.headers),
            last_modified=_http_date(response.headers.get("Last-Modified")),
            metadata=metadata,
            status=response.status_code,
        )

    def head_object(self, key: str, timeout: Optional[float] = None) -> ObjectInfo:
        """Fetch object headers without the body.

        Raises:
            HeadError: any non-2xx status, 404 included
        """
        response = self._send(
            "HEAD", self.endpoint.object_path(key), HeadError, key=key, timeout=timeout,
        )
        if not response.ok:
            raise self._error(HeadError, response, key)

        return ObjectInfo(
            key=key,
            size=int(response.headers.get("Content-Length", 0)),
            content_type=response.headers.get("Content-Type", DEFAULT_CONTENT_TYPE),
            etag=_etag(response.headers),
            last_modified=_http_date(response.headers.get("Last-Modified")),
            metadata=_user_metadata(response.headers),
        )

    def list_objects(
        self,
        prefix: Optional[str] = None,
        max_keys: Optional[int] = None,
        continuation_token: Optional[str] = None,
        delimiter: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> ListPage:
        """List one page of keys with ListObjectsV2.

        Args:
            prefix: Only keys starting with this prefix
            max_keys: Page size, clamped to 1000
            continuation_token: Token from the previous page, forwarded as is
            delimiter: Group keys sharing a prefix up to this character
            timeout: Request timeout in seconds

        Raises:
            ListError: non-2xx response or transport failure
            ResponseParseError: body is not a ListBucketResult document
        """
        query = {"list-type": "2"}
        if prefix is not None:
            query["prefix"] = prefix
        if delimiter is not None:
            query["delimiter"] = delimiter
        if max_keys is not None:
            if max_keys < 0:
                raise ValueError("max_keys must not be negative")
            if max_keys > MAX_LIST_KEYS:
                logger.warning("max_keys %d clamped to %d", max_keys, MAX_LIST_KEYS)
                max_keys = MAX_LIST_KEYS
            query["max-keys"] = str(max_keys)
        if continuation_token is not None:
            query["continuation-token"] = continuation_token

        response = self._send(
            "GET", self.endpoint.bucket_path, ListError, query=query, timeout=timeout,
        )
        if not response.ok:
            raise self._error(ListError, response, None)
        return parse_list_objects(response.content)

    def delete_object(self, key: str, timeout: Optional[float] = None) -> None:
        """Delete one object. A missing object counts as deleted.

        Raises:
            DeleteError: non-2xx status other than 404, or transport failure
        """
        response = self._send(
            "DELETE", self.endpoint.object_path(key), DeleteError, key=key, timeout=timeout,
        )
        if response.status_code == 404:
            logger.debug("Delete of missing key %r treated as success", key)
            return
        if not response.ok:
            raise self._error(DeleteError, response, key)

    def object_exists(self, key: str) -> bool:
        try:
            self.head_object(key)
        except HeadError as exc:
            if exc.status == 404:
                return False
            raise
        return True

    def get_signed_url(
        self,
        operation: str,
        key: str,
        expires_in: int = 3600,
        now: Optional[datetime] = None,
    ) -> str:
        """Presign a URL for one object operation.

        Args:
            operation: "get", "put", "delete" or "head" (or the *_object forms)
            key: Object key
            expires_in: Validity in seconds, clamped to 604800
            now: Signing time (default: current UTC time)

        Returns:
            URL usable without any extra headers
        """
        method = PRESIGN_METHODS.get(operation.lower())
        if method is None:
            raise ValueError(f"Unsupported operation for presigning: {operation}")
        if expires_in > MAX_PRESIGN_EXPIRES:
            logger.warning("expires_in %d clamped to %d", expires_in, MAX_PRESIGN_EXPIRES)
            expires_in = MAX_PRESIGN_EXPIRES

        return presign_url(
            method,
            self.endpoint.origin,
            self.endpoint.object_path(key),
            self.credentials,
            expires_in=expires_in,
            now=now,
            unsigned_payload_param=method == "PUT",
        )


class ClientFactory:
    """Build clients from environment variables.

    Environment:
        S3_ENDPOINT           - Endpoint URL (required)
        S3_BUCKET             - Bucket name (required)
        S3_REGION             - Region (default: AWS_REGION, then us-east-1)
        AWS_ACCESS_KEY_ID     - Access key; with AWS_SECRET_ACCESS_KEY and
                                optional AWS_SESSION_TOKEN
        AWS_PROFILE           - Profile resolved via boto3 when no keys are set
        S3_VERIFY_SSL         - "false" disables certificate checks
        S3_TIMEOUT            - Request timeout in seconds (default: 30)
        S3_ENCRYPTION_SECRET  - Secret for client-side encryption
    """

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        self.environ = os.environ if environ is None else environ

    def _get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        value = self.environ.get(name)
        return value if value else default

    def get_region(self) -> str:
        return self._get("S3_REGION", self._get("AWS_REGION", "us-east-1"))

    def get_endpoint(self) -> EndpointConfig:
        return EndpointConfig(
            base_url=self._get("S3_ENDPOINT", ""),
            bucket=self._get("S3_BUCKET", ""),
            # SSL verification enabled by default
            verify_ssl=self._get("S3_VERIFY_SSL", "true").lower() == "true",
            timeout=float(self._get("S3_TIMEOUT", "30")),
        )

    def get_credentials(self) -> Credentials:
        region = self.get_region()
        access_key = self._get("AWS_ACCESS_KEY_ID")
        if access_key:
            credentials = Credentials(
                access_key_id=access_key,
                secret_access_key=self._get("AWS_SECRET_ACCESS_KEY", ""),
                region=region,
                session_token=self._get("AWS_SESSION_TOKEN"),
            )
        else:
            credentials = get_credentials(self._get("AWS_PROFILE"), region=region)
            if credentials is None:
                raise ConfigurationError("No credentials in environment or AWS profile")
        credentials.validate()
        return credentials

    def get_pipeline(self) -> TransformPipeline:
        return TransformPipeline(encryption_secret=self._get("S3_ENCRYPTION_SECRET"))

    def create_client(self, capture: Optional[list] = None) -> ObjectStoreClient:
        """Create a client for the configured endpoint and bucket."""
        return ObjectStoreClient(
            self.get_endpoint(),
            self.get_credentials(),
            pipeline=self.get_pipeline(),
            capture=capture,
        )
