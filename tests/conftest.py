"""Test-level fixtures and utilities."""

import uuid
from datetime import datetime, timezone

import pytest
import responses

from s3_objstore.client import EndpointConfig, ObjectStoreClient
from s3_objstore.signing import Credentials
from s3_objstore.transforms import TransformPipeline
from s3_objstore.utils import url_encode_key

ACCESS_KEY = "AKIDEXAMPLE"
SECRET_KEY = "wJalrXUtnFEMI/K7MDENG/bPxRfiCYEXAMPLEKEY"
ENDPOINT_URL = "https://s3.example.com"
BUCKET = "test-bucket"

S3_NS = "http://s3.amazonaws.com/doc/2006-03-01/"


@pytest.fixture
def credentials():
    """Credentials from the AWS SigV4 test suite."""
    return Credentials(ACCESS_KEY, SECRET_KEY, region="us-east-1")


@pytest.fixture
def fixed_now():
    return datetime(2015, 8, 30, 12, 36, 0, tzinfo=timezone.utc)


@pytest.fixture
def endpoint():
    return EndpointConfig(base_url=ENDPOINT_URL, bucket=BUCKET)


@pytest.fixture
def pipeline():
    return TransformPipeline(encryption_secret="unit-test-secret")


@pytest.fixture
def capture():
    """List the client appends one HTTPCapture per exchange to."""
    return []


@pytest.fixture
def client(endpoint, credentials, pipeline, capture):
    with ObjectStoreClient(endpoint, credentials, pipeline=pipeline, capture=capture) as c:
        yield c


@pytest.fixture
def mocked_s3():
    """responses mock scoped to one test."""
    with responses.RequestsMock(assert_all_requests_are_fired=False) as rsps:
        yield rsps


@pytest.fixture
def object_url():
    """Build the path-style URL the client uses for a key."""

    def _url(key: str) -> str:
        return f"{ENDPOINT_URL}/{BUCKET}/{url_encode_key(key)}"

    return _url


@pytest.fixture
def bucket_url():
    return f"{ENDPOINT_URL}/{BUCKET}"


@pytest.fixture
def unique_key():
    """Generate a unique key for each test."""
    return f"test-{uuid.uuid4().hex[:8]}"


@pytest.fixture
def list_xml():
    """Factory for ListBucketResult documents.

    Each object is a dict with Key/Size/ETag/LastModified; leave a field out
    to produce an incomplete entry.
    """

    def _xml(objects, truncated=False, next_token=None, prefixes=(), namespace=True):
        contents = []
        for obj in objects:
            fields = "".join(f"<{name}>{value}</{name}>" for name, value in obj.items())
            contents.append(f"<Contents>{fields}<StorageClass>STANDARD</StorageClass></Contents>")
        common = "".join(
            f"<CommonPrefixes><Prefix>{prefix}</Prefix></CommonPrefixes>" for prefix in prefixes
        )
        token = f"<NextContinuationToken>{next_token}</NextContinuationToken>" if next_token else ""
        xmlns = f' xmlns="{S3_NS}"' if namespace else ""
        return (
            '<?xml version="1.0" encoding="UTF-8"?>\n'
            f"<ListBucketResult{xmlns}>"
            f"<Name>{BUCKET}</Name><KeyCount>{len(objects)}</KeyCount>"
            f"<IsTruncated>{'true' if truncated else 'false'}</IsTruncated>"
            f"{''.join(contents)}{common}{token}"
            "</ListBucketResult>"
        )

    return _xml


def make_object(key: str, size: int = 10, etag: str = "d41d8cd98f00b204e9800998ecf8427e",
                last_modified: str = "2026-01-01T00:00:00.000Z") -> dict:
    return {
        "Key": key,
        "Size": str(size),
        "ETag": f"&quot;{etag}&quot;",
        "LastModified": last_modified,
    }


@pytest.fixture
def s3_object():
    return make_object
