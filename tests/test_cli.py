"""Command-line entry point."""

import gzip
import json

import pytest
import responses

from s3_objstore.cli import build_parser, main
from s3_objstore.client import ClientFactory

ENV = {
    "S3_ENDPOINT": "https://s3.example.com",
    "S3_BUCKET": "test-bucket",
    "AWS_ACCESS_KEY_ID": "AKIDEXAMPLE",
    "AWS_SECRET_ACCESS_KEY": "wJalrXUtnFEMI/K7MDENG/bPxRfiCYEXAMPLEKEY",
}


@pytest.fixture
def factory():
    return ClientFactory(ENV)


def test_parser_requires_command():
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


def test_put(factory, mocked_s3, object_url, tmp_path, capsys):
    source = tmp_path / "report.json"
    source.write_bytes(b'{"a": 1}')
    mocked_s3.add(responses.PUT, object_url("logs/report.json"), status=200, headers={"ETag": '"e1"'})

    status = main(
        ["put", str(source), "logs/report.json", "--compression", "gzip", "--attachment", "--meta", "team=ops"],
        factory=factory,
    )

    assert status == 0
    output = json.loads(capsys.readouterr().out)
    assert output["etag"] == "e1"
    assert output["transforms"] == ["gzip"]

    sent = mocked_s3.calls[0].request
    assert gzip.decompress(sent.body) == b'{"a": 1}'
    assert sent.headers["x-amz-meta-team"] == "ops"
    assert sent.headers["x-amz-meta-original-content-type"] == "application/json"
    assert sent.headers["Content-Disposition"].startswith('attachment; filename="report.json"')


def test_get_to_file(factory, mocked_s3, object_url, tmp_path, capsys):
    mocked_s3.add(responses.GET, object_url("k"), body=b"content", status=200, content_type="text/plain")
    dest = tmp_path / "out.txt"

    assert main(["get", "k", str(dest)], factory=factory) == 0
    assert dest.read_bytes() == b"content"
    assert "7 bytes" in capsys.readouterr().out


def test_ls(factory, mocked_s3, bucket_url, list_xml, s3_object, capsys):
    mocked_s3.add(
        responses.GET, bucket_url, status=200,
        body=list_xml([s3_object("logs/a", size=12)], truncated=True, next_token="tok", prefixes=["logs/sub/"]),
    )
    assert main(["ls", "logs/", "--max-keys", "1"], factory=factory) == 0

    out = capsys.readouterr().out
    assert "PRE" in out and "logs/sub/" in out
    assert "logs/a" in out
    assert "--token tok" in out


def test_rm(factory, mocked_s3, object_url, capsys):
    mocked_s3.add(responses.DELETE, object_url("a"), status=204)
    mocked_s3.add(responses.DELETE, object_url("b"), status=404)
    assert main(["rm", "a", "b"], factory=factory) == 0
    assert capsys.readouterr().out.splitlines() == ["deleted a", "deleted b"]


def test_presign(factory, mocked_s3, capsys):
    assert main(["presign", "get", "k", "--expires", "60"], factory=factory) == 0
    url = capsys.readouterr().out.strip()
    assert url.startswith("https://s3.example.com/test-bucket/k?")
    assert "X-Amz-Expires=60" in url
    assert len(mocked_s3.calls) == 0


def test_stats(factory, mocked_s3, bucket_url, list_xml, s3_object, capsys):
    mocked_s3.add(
        responses.GET, bucket_url, status=200,
        body=list_xml([s3_object("a/1", size=3), s3_object("b/1", size=4)]),
    )
    assert main(["stats"], factory=factory) == 0
    stats = json.loads(capsys.readouterr().out)
    assert stats["object_count"] == 2
    assert stats["sizes_by_prefix"] == {"a": 3, "b": 4}


def test_sync_reports_failures(factory, mocked_s3, object_url, tmp_path, capsys):
    (tmp_path / "nested").mkdir()
    (tmp_path / "index.html").write_bytes(b"<html/>")
    (tmp_path / "nested" / "app.js").write_bytes(b"console.log(1)")
    mocked_s3.add(responses.PUT, object_url("site/index.html"), status=200, headers={"ETag": '"1"'})
    mocked_s3.add(responses.PUT, object_url("site/nested/app.js"), status=500)

    status = main(["sync", str(tmp_path), "site/", "--concurrency", "2"], factory=factory)

    assert status == 1
    out = capsys.readouterr().out
    assert "Uploaded: 1/2" in out
    assert "site/nested/app.js" in out
    index = next(c.request for c in mocked_s3.calls if c.request.url.endswith("/site/index.html"))
    assert index.headers["Content-Type"] == "text/html"


def test_object_store_error_exit_code(factory, mocked_s3, object_url, tmp_path, capsys):
    mocked_s3.add(responses.GET, object_url("gone"), status=404)
    assert main(["get", "gone", str(tmp_path / "x")], factory=factory) == 1
    assert "GetObject 'gone' failed with HTTP 404" in capsys.readouterr().err


def test_missing_configuration(capsys):
    assert main(["ls"], factory=ClientFactory({})) == 1
    assert "Error:" in capsys.readouterr().err


def test_trace_prints_exchanges(factory, mocked_s3, object_url, capsys):
    mocked_s3.add(responses.DELETE, object_url("k"), status=204)
    assert main(["--trace", "rm", "k"], factory=factory) == 0
    err = capsys.readouterr().err
    assert "DELETE" in err
    assert "[REDACTED]" in err
