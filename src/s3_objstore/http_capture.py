"""Per-call HTTP traces, printed by the CLI with --trace."""

from dataclasses import dataclass, field
from typing import Optional
import xml.dom.minidom
from xml.parsers.expat import ExpatError

import requests

from s3_objstore.parsing import parse_error
from s3_objstore.utils import redact_headers

# Response headers that change on every call and add nothing to a trace
NOISY_HEADERS = {"date", "server", "x-amz-request-id", "x-amz-id-2", "connection"}

# Object payloads are never kept; only XML/text response bodies are
TEXT_TYPES = ("xml", "text", "json")


@dataclass
class HTTPCapture:
    """One signed exchange, with credentials redacted."""
    method: str
    url: str
    request_headers: dict = field(default_factory=dict)
    request_body_length: int = 0

    status_code: int = 0
    response_headers: dict = field(default_factory=dict)
    response_body: str = ""
    elapsed_ms: float = 0.0
    error_code: Optional[str] = None

    @classmethod
    def from_response(cls, response: requests.Response, body_limit: int = 4096) -> "HTTPCapture":
        request = response.request
        content_type = response.headers.get("Content-Type", "")
        keep_body = any(kind in content_type for kind in TEXT_TYPES)
        error_code = parse_error(response.content)[0] if not response.ok else None
        return cls(
            method=request.method,
            url=request.url,
            request_headers=redact_headers(request.headers),
            request_body_length=len(request.body or b""),
            status_code=response.status_code,
            response_headers=dict(response.headers),
            response_body=response.text[:body_limit] if keep_body else "",
            elapsed_ms=response.elapsed.total_seconds() * 1000 if response.elapsed else 0.0,
            error_code=error_code,
        )

    @property
    def summary(self) -> str:
        outcome = f"{self.status_code} {self.error_code}" if self.error_code else str(self.status_code)
        return f"{self.method} {self.url} -> {outcome} ({self.elapsed_ms:.0f} ms)"

    def request_to_markdown(self) -> str:
        lines = [f"{self.method} {self.url} HTTP/1.1"]
        lines.extend(f"{name}: {value}" for name, value in self.request_headers.items())
        if self.request_body_length:
            lines += ["", f"[{self.request_body_length} bytes]"]
        return _fence(lines)

    def response_to_markdown(self, max_body_len: int = 2000) -> str:
        lines = [f"HTTP/1.1 {self.status_code}"]
        lines.extend(
            f"{name}: {value}"
            for name, value in self.response_headers.items()
            if name.lower() not in NOISY_HEADERS
        )
        if self.response_body:
            body = _pretty_xml(self.response_body)
            if len(body) > max_body_len:
                body = body[:max_body_len] + "\n... [truncated]"
            lines += ["", body]
        return _fence(lines)

    def to_markdown(self) -> str:
        return "\n\n".join([
            f"### {self.summary}",
            self.request_to_markdown(),
            self.response_to_markdown(),
        ])


def _fence(lines) -> str:
    return "```http\n" + "\n".join(lines) + "\n```"


def _pretty_xml(text: str) -> str:
    if not text.lstrip().startswith("<"):
        return text
    try:
        pretty = xml.dom.minidom.parseString(text.encode("utf-8")).toprettyxml(indent="  ")
    except ExpatError:
        return text
    # Drop the declaration minidom adds
    return pretty.split("\n", 1)[1] if pretty.startswith("<?xml") else pretty
