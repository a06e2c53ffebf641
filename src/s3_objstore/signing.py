"""SigV4 signing for S3 requests.

Implements the AWS Signature Version 4 algorithm in two modes:

- header mode (``sign_request``): the signature travels in the
  ``Authorization`` header, the canonical query string holds whatever query
  parameters the request carries.
- query mode (``presign_url``): every ``X-Amz-*`` parameter is part of the
  canonical query string and the payload is ``UNSIGNED-PAYLOAD``, so the
  resulting URL needs no extra headers.

Nothing here keeps state between calls; each call stamps its own time.
"""

import hashlib
import hmac
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Mapping, Optional, Tuple, Union
from urllib.parse import urlsplit

import boto3
from botocore.exceptions import ProfileNotFound
from requests.structures import CaseInsensitiveDict

from s3_objstore.errors import ConfigurationError, SigningError
from s3_objstore.utils import calculate_content_sha256, uri_encode

logger = logging.getLogger(__name__)

ALGORITHM = "AWS4-HMAC-SHA256"
UNSIGNED_PAYLOAD = "UNSIGNED-PAYLOAD"
TERMINATOR = "aws4_request"

# S3 rejects presigned URLs valid for longer than seven days
MAX_PRESIGN_EXPIRES = 604800

QueryParams = Union[Mapping[str, str], Iterable[Tuple[str, str]]]


@dataclass(frozen=True)
class Credentials:
    """Access key pair plus the region/service it signs for."""
    access_key_id: str
    secret_access_key: str = field(repr=False)
    region: str = "us-east-1"
    service: str = "s3"
    session_token: Optional[str] = field(default=None, repr=False)

    def validate(self) -> None:
        if not self.access_key_id:
            raise ConfigurationError("Access key id is missing")
        if not self.secret_access_key:
            raise ConfigurationError("Secret access key is missing")
        if not self.region:
            raise ConfigurationError("Region is missing")


@dataclass(frozen=True)
class SigningScope:
    """Date/region/service triple a signature is valid for."""
    date_stamp: str
    region: str
    service: str

    @property
    def credential_scope(self) -> str:
        return f"{self.date_stamp}/{self.region}/{self.service}/{TERMINATOR}"


@dataclass
class SignedRequest:
    """Result of header-mode signing."""
    headers: CaseInsensitiveDict
    amz_date: str
    scope: SigningScope
    signed_headers: str
    canonical_request: str
    string_to_sign: str
    signature: str

    @property
    def authorization(self) -> str:
        return self.headers["Authorization"]


def get_credentials(
    profile_name: Optional[str] = None, region: str = "us-east-1"
) -> Optional[Credentials]:
    """Resolve credentials through a boto3 session.

    Uses the standard botocore provider chain (env vars, shared config,
    instance metadata) for the given profile.

    Returns:
        Credentials, or None when the profile does not exist or resolves
        to nothing.
    """
    try:
        session = boto3.Session(profile_name=profile_name)
    except ProfileNotFound:
        logger.warning("AWS profile %r not found", profile_name)
        return None

    resolved = session.get_credentials()
    if resolved is None:
        return None

    frozen = resolved.get_frozen_credentials()
    return Credentials(
        access_key_id=frozen.access_key,
        secret_access_key=frozen.secret_key,
        region=region,
        session_token=frozen.token,
    )


def format_amz_date(now: datetime) -> str:
    """Render a timezone-aware datetime as ``YYYYMMDDTHHMMSSZ``."""
    if now.tzinfo is None or now.utcoffset() is None:
        raise SigningError("Signing time must be timezone-aware")
    return now.astimezone(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def _hmac(key: bytes, message: str) -> bytes:
    return hmac.new(key, message.encode("utf-8"), hashlib.sha256).digest()


def derive_signing_key(secret: str, date_stamp: str, region: str, service: str) -> bytes:
    """Run the SigV4 key derivation chain.

    kDate = HMAC("AWS4" + secret, date), then region, service and
    "aws4_request" in turn.
    """
    k_date = _hmac(f"AWS4{secret}".encode("utf-8"), date_stamp)
    k_region = _hmac(k_date, region)
    k_service = _hmac(k_region, service)
    return _hmac(k_service, TERMINATOR)


def canonical_headers(headers: Mapping[str, str]) -> Tuple[str, str]:
    """Build the canonical headers block and the SignedHeaders list.

    Names are lower-cased, values trimmed with inner whitespace runs
    collapsed. Names that collide after lower-casing are joined with a comma.

    Returns:
        (canonical headers block, signed headers)
    """
    merged: dict[str, list[str]] = {}
    for name, value in headers.items():
        merged.setdefault(name.strip().lower(), []).append(" ".join(str(value).split()))

    names = sorted(merged)
    block = "".join(f"{name}:{','.join(merged[name])}\n" for name in names)
    return block, ";".join(names)


def canonical_query_string(params: Optional[QueryParams] = None) -> str:
    """Encode and sort query parameters.

    Keys and values are percent-encoded per RFC 3986, then pairs are
    sorted by encoded key and value. The same string is used on the wire.
    """
    if not params:
        return ""
    items = params.items() if isinstance(params, Mapping) else params
    encoded = sorted((uri_encode(str(k)), uri_encode(str(v))) for k, v in items)
    return "&".join(f"{k}={v}" for k, v in encoded)


def canonical_request(
    method: str,
    path: str,
    query: str,
    headers_block: str,
    signed_headers: str,
    payload_hash: str,
) -> str:
    return "\n".join([method.upper(), path or "/", query, headers_block, signed_headers, payload_hash])


def string_to_sign(amz_date: str, scope: SigningScope, request: str) -> str:
    return "\n".join([
        ALGORITHM,
        amz_date,
        scope.credential_scope,
        hashlib.sha256(request.encode("utf-8")).hexdigest(),
    ])


def _signature(credentials: Credentials, scope: SigningScope, to_sign: str) -> str:
    key = derive_signing_key(
        credentials.secret_access_key, scope.date_stamp, scope.region, scope.service
    )
    return hmac.new(key, to_sign.encode("utf-8"), hashlib.sha256).hexdigest()


def _prepare(credentials: Credentials, now: Optional[datetime]) -> Tuple[str, SigningScope]:
    if not credentials.secret_access_key:
        raise ConfigurationError("Cannot sign without a secret access key")
    if not credentials.access_key_id:
        raise ConfigurationError("Cannot sign without an access key id")
    amz_date = format_amz_date(now or datetime.now(timezone.utc))
    scope = SigningScope(amz_date[:8], credentials.region, credentials.service)
    return amz_date, scope


def sign_request(
    method: str,
    path: str,
    headers: Mapping[str, str],
    credentials: Credentials,
    body: bytes = b"",
    query: Optional[QueryParams] = None,
    now: Optional[datetime] = None,
    unsigned_payload: bool = False,
) -> SignedRequest:
    """Sign an HTTP request in header mode.

    Args:
        method: HTTP method (GET, PUT, DELETE, ...)
        path: Canonical URL path, already segment-encoded
        headers: Headers to sign; must include Host
        credentials: Access key pair and scope
        body: Raw request body
        query: Query parameters (unencoded)
        now: Signing time (default: current UTC time)
        unsigned_payload: Sign with UNSIGNED-PAYLOAD instead of the body hash

    Returns:
        SignedRequest whose headers carry X-Amz-Date and Authorization
    """
    amz_date, scope = _prepare(credentials, now)

    signed = CaseInsensitiveDict(headers)
    if "host" not in signed:
        raise SigningError("Host header is required for signing")
    signed.pop("Authorization", None)
    signed["X-Amz-Date"] = amz_date
    if credentials.session_token:
        signed["X-Amz-Security-Token"] = credentials.session_token

    if unsigned_payload:
        payload_hash = UNSIGNED_PAYLOAD
    else:
        payload_hash = signed.get("x-amz-content-sha256") or calculate_content_sha256(body)

    try:
        block, signed_names = canonical_headers(signed)
        request = canonical_request(
            method, path, canonical_query_string(query), block, signed_names, payload_hash
        )
    except UnicodeEncodeError as exc:
        raise SigningError(f"Cannot encode request for signing: {exc}") from exc

    to_sign = string_to_sign(amz_date, scope, request)
    signature = _signature(credentials, scope, to_sign)

    signed["Authorization"] = (
        f"{ALGORITHM} Credential={credentials.access_key_id}/{scope.credential_scope}, "
        f"SignedHeaders={signed_names}, Signature={signature}"
    )
    return SignedRequest(
        headers=signed,
        amz_date=amz_date,
        scope=scope,
        signed_headers=signed_names,
        canonical_request=request,
        string_to_sign=to_sign,
        signature=signature,
    )


def presign_url(
    method: str,
    endpoint: str,
    path: str,
    credentials: Credentials,
    expires_in: int = 3600,
    now: Optional[datetime] = None,
    query: Optional[Mapping[str, str]] = None,
    unsigned_payload_param: bool = False,
) -> str:
    """Build a presigned (query-mode) URL.

    Every query parameter, the X-Amz-* ones included, goes into the
    canonical query string sorted and RFC 3986 encoded. Only ``host`` is
    signed, so the URL works without extra headers.

    Args:
        method: HTTP method the URL is valid for
        endpoint: Scheme and authority, e.g. "https://s3.amazonaws.com"
        path: Canonical URL path, already segment-encoded
        credentials: Access key pair and scope
        expires_in: Validity in seconds, 1..604800
        now: Signing time (default: current UTC time)
        query: Extra query parameters to sign
        unsigned_payload_param: Add X-Amz-Content-Sha256=UNSIGNED-PAYLOAD (uploads)

    Returns:
        Fully qualified URL including X-Amz-Signature
    """
    if not 1 <= int(expires_in) <= MAX_PRESIGN_EXPIRES:
        raise SigningError(
            f"expires_in must be between 1 and {MAX_PRESIGN_EXPIRES} seconds, got {expires_in}"
        )
    amz_date, scope = _prepare(credentials, now)

    host = urlsplit(endpoint).netloc
    if not host:
        raise SigningError(f"Endpoint has no host: {endpoint!r}")

    params = dict(query or {})
    params.update({
        "X-Amz-Algorithm": ALGORITHM,
        "X-Amz-Credential": f"{credentials.access_key_id}/{scope.credential_scope}",
        "X-Amz-Date": amz_date,
        "X-Amz-Expires": str(int(expires_in)),
        "X-Amz-SignedHeaders": "host",
    })
    if credentials.session_token:
        params["X-Amz-Security-Token"] = credentials.session_token
    if unsigned_payload_param:
        params["X-Amz-Content-Sha256"] = UNSIGNED_PAYLOAD

    try:
        query_string = canonical_query_string(params)
        block, signed_names = canonical_headers({"host": host})
    except UnicodeEncodeError as exc:
        raise SigningError(f"Cannot encode request for signing: {exc}") from exc

    request = canonical_request(method, path, query_string, block, signed_names, UNSIGNED_PAYLOAD)
    signature = _signature(credentials, scope, string_to_sign(amz_date, scope, request))

    return f"{endpoint.rstrip('/')}{path}?{query_string}&X-Amz-Signature={signature}"
