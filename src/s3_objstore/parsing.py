"""ListObjectsV2 and error-body XML parsing."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Tuple
import xml.etree.ElementTree as ET

from s3_objstore.errors import ResponseParseError

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("Key", "Size", "ETag", "LastModified")


@dataclass(frozen=True)
class ObjectSummary:
    """One ``Contents`` entry of a listing."""
    key: str
    size: int
    etag: str
    last_modified: datetime


@dataclass
class ListPage:
    """One page of a ListObjectsV2 response.

    ``continuation_token`` is the provider's NextContinuationToken, passed
    back unmodified to fetch the next page. ``skipped`` counts entries
    dropped for missing or malformed fields.
    """
    objects: list = field(default_factory=list)  # List[ObjectSummary]
    continuation_token: Optional[str] = None
    is_truncated: bool = False
    common_prefixes: list = field(default_factory=list)  # List[str]
    skipped: int = 0


def _local(tag: str) -> str:
    """Strip the ``{namespace}`` prefix ElementTree puts on tags."""
    return tag.rsplit("}", 1)[-1]


def _children(element: ET.Element) -> dict:
    """Map local child tag -> text for direct children (first occurrence wins)."""
    values = {}
    for child in element:
        values.setdefault(_local(child.tag), child.text or "")
    return values


def parse_timestamp(text: str) -> datetime:
    """Parse an S3 ISO 8601 timestamp such as ``2009-10-12T17:50:30.000Z``."""
    text = text.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


def _parse_contents(element: ET.Element) -> Optional[ObjectSummary]:
    values = _children(element)
    if any(name not in values for name in REQUIRED_FIELDS):
        return None
    try:
        return ObjectSummary(
            key=values["Key"],
            size=int(values["Size"]),
            etag=values["ETag"].strip().strip('"'),
            last_modified=parse_timestamp(values["LastModified"]),
        )
    except ValueError:
        return None


def _fromstring(body) -> ET.Element:
    if isinstance(body, str):
        body = body.encode("utf-8")
    try:
        return ET.fromstring(body)
    except ET.ParseError as exc:
        raise ResponseParseError(f"Malformed XML response: {exc}") from exc


def parse_list_objects(body) -> ListPage:
    """Parse a ListBucketResult document.

    Args:
        body: Raw XML (bytes or str)

    Returns:
        ListPage

    Raises:
        ResponseParseError: body is not well-formed XML or not a ListBucketResult
    """
    root = _fromstring(body)
    if _local(root.tag) != "ListBucketResult":
        raise ResponseParseError(f"Expected ListBucketResult, got {_local(root.tag)}")

    page = ListPage()
    for child in root:
        name = _local(child.tag)
        if name == "Contents":
            summary = _parse_contents(child)
            if summary is None:
                page.skipped += 1
            else:
                page.objects.append(summary)
        elif name == "IsTruncated":
            page.is_truncated = (child.text or "").strip() == "true"
        elif name == "NextContinuationToken":
            page.continuation_token = child.text or ""
        elif name == "CommonPrefixes":
            prefix = _children(child).get("Prefix")
            if prefix is not None:
                page.common_prefixes.append(prefix)

    if page.skipped:
        logger.warning("Dropped %d listing entries with missing fields", page.skipped)
    return page


def parse_error(body) -> Tuple[Optional[str], Optional[str]]:
    """Extract (Code, Message) from an S3 ``<Error>`` body.

    Returns (None, None) when the body is empty or not an error document.
    """
    if not body:
        return None, None
    try:
        root = _fromstring(body)
    except ResponseParseError:
        return None, None
    if _local(root.tag) != "Error":
        return None, None
    values = _children(root)
    return values.get("Code"), values.get("Message")
