"""Wire-level helpers shared by the signer, client and CLI."""

import hashlib
import mimetypes
from typing import Mapping, Optional
from urllib.parse import quote

import requests

EMPTY_SHA256 = hashlib.sha256(b"").hexdigest()

# Headers never written to logs or captures
REDACTED_HEADERS = {"authorization", "x-amz-security-token"}


def calculate_content_sha256(content: bytes) -> str:
    """Calculate x-amz-content-sha256 header value (hex encoded).

    Args:
        content: Request body

    Returns:
        Hex-encoded SHA256 hash
    """
    return hashlib.sha256(content).hexdigest()


def uri_encode(value: str) -> str:
    """Percent-encode everything except RFC 3986 unreserved characters."""
    return quote(value.encode("utf-8"), safe="-_.~")


def url_encode_key(key: str, safe: str = "/") -> str:
    """URL-encode an S3 object key.

    Each path segment is encoded on its own; slashes are kept. A segment
    that is exactly "." or ".." is written as %2E escapes so no HTTP layer
    can collapse it as a relative path step.

    Args:
        key: Object key
        safe: Characters to not encode (default: slash)

    Returns:
        URL-encoded key
    """
    encoded = quote(key.encode("utf-8"), safe=safe + "-_.~")
    return "/".join(
        "%2E" * len(segment) if segment in (".", "..") else segment
        for segment in encoded.split("/")
    )


def content_disposition(disposition: str = "attachment", filename: Optional[str] = None) -> str:
    """Build a Content-Disposition value.

    Non-ASCII filenames use the RFC 5987 ``filename*`` form; plain ASCII
    names also get a quoted ``filename`` for older clients.
    """
    if disposition not in ("inline", "attachment"):
        raise ValueError(f"Unsupported disposition: {disposition}")
    if not filename:
        return disposition
    encoded = quote(filename.encode("utf-8"), safe="")
    if filename.isascii():
        escaped = filename.replace("\\", "\\\\").replace('"', '\\"')
        return f"{disposition}; filename=\"{escaped}\"; filename*=UTF-8''{encoded}"
    return f"{disposition}; filename*=UTF-8''{encoded}"


def guess_content_type(key: str, default: str = "application/octet-stream") -> str:
    """Guess a Content-Type from the key's extension."""
    content_type, _ = mimetypes.guess_type(key)
    return content_type or default


def body_snippet(body: bytes, limit: int = 512) -> str:
    """Decode the start of a response body for error messages."""
    if not body:
        return ""
    return body[:limit].decode("utf-8", errors="replace")


def redact_headers(headers: Mapping[str, str]) -> dict:
    return {
        key: "[REDACTED]" if key.lower() in REDACTED_HEADERS else value
        for key, value in headers.items()
    }


def describe_request(method: str, url: str, headers: Mapping[str, str], body: bytes) -> dict:
    """Summarize an outgoing request for debug logs.

    Credentials are redacted. Bodies are object payloads (often binary or
    encrypted), so only their length is recorded.
    """
    return {
        "method": method,
        "url": url,
        "headers": redact_headers(headers),
        "body_length": len(body),
    }


def describe_response(response: requests.Response, snippet_limit: int = 512) -> dict:
    """Summarize a response for debug logs; the body snippet is kept for errors only."""
    summary = {
        "status_code": response.status_code,
        "headers": dict(response.headers),
        "body_length": len(response.content),
    }
    if not response.ok:
        summary["body"] = body_snippet(response.content, snippet_limit)
    return summary
