"""Command-line access to an S3-compatible bucket.

Connection settings come from the environment (see ClientFactory).

Usage:
    s3-objstore put report.json logs/2026-01-01/report.json --compression gzip
    s3-objstore get logs/2026-01-01/report.json out.json --decompress
    s3-objstore ls logs/ --max-keys 50
    s3-objstore rm logs/2026-01-01/report.json
    s3-objstore presign get logs/2026-01-01/report.json --expires 900
    s3-objstore stats logs/
    s3-objstore sync ./build releases/v1 --concurrency 8
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from s3_objstore.batch import BatchExecutor, BatchItem, collect_stats
from s3_objstore.client import ClientFactory, ObjectStoreClient, PutOptions
from s3_objstore.errors import ObjectStoreError
from s3_objstore.utils import content_disposition, guess_content_type


def _put_options(args, key: str) -> PutOptions:
    metadata = {}
    for pair in args.meta or []:
        name, _, value = pair.partition("=")
        metadata[name] = value
    return PutOptions(
        content_type=args.content_type or guess_content_type(key),
        content_disposition=(
            content_disposition("attachment", Path(key).name) if args.attachment else None
        ),
        cache_control=args.cache_control,
        metadata=metadata,
        server_side_encryption=args.sse,
        compression=args.compression,
        encrypt=args.encrypt,
    )


def cmd_put(client: ObjectStoreClient, args) -> int:
    body = Path(args.source).read_bytes()
    key = args.key or Path(args.source).name
    result = client.put_object(key, body, _put_options(args, key))
    print(json.dumps({
        "key": key,
        "etag": result.etag,
        "version_id": result.version_id,
        "size": result.size,
        "transforms": list(result.applied_transforms),
    }, indent=2))
    return 0


def cmd_get(client: ObjectStoreClient, args) -> int:
    obj = client.get_object(args.key, byte_range=args.range, decompress=args.decompress)
    if args.dest == "-":
        sys.stdout.buffer.write(obj.body)
    else:
        Path(args.dest).write_bytes(obj.body)
        print(f"{args.key} -> {args.dest} ({obj.content_length} bytes, {obj.content_type})")
    return 0


def cmd_ls(client: ObjectStoreClient, args) -> int:
    page = client.list_objects(
        prefix=args.prefix,
        max_keys=args.max_keys,
        continuation_token=args.token,
        delimiter=args.delimiter,
    )
    for prefix in page.common_prefixes:
        print(f"{'PRE':>12}  {prefix}")
    for obj in page.objects:
        print(f"{obj.size:>12}  {obj.last_modified.isoformat()}  {obj.key}")
    if page.is_truncated:
        print(f"\n... truncated, continue with --token {page.continuation_token}")
    return 0


def cmd_rm(client: ObjectStoreClient, args) -> int:
    for key in args.keys:
        client.delete_object(key)
        print(f"deleted {key}")
    return 0


def cmd_presign(client: ObjectStoreClient, args) -> int:
    print(client.get_signed_url(args.operation, args.key, expires_in=args.expires))
    return 0


def cmd_stats(client: ObjectStoreClient, args) -> int:
    stats = collect_stats(client, prefix=args.prefix, max_pages=args.max_pages)
    print(json.dumps(stats.to_dict(), indent=2))
    return 0


def cmd_sync(client: ObjectStoreClient, args) -> int:
    root = Path(args.source)
    prefix = args.prefix.strip("/")
    items = []
    for path in sorted(p for p in root.rglob("*") if p.is_file()):
        relative = path.relative_to(root).as_posix()
        key = f"{prefix}/{relative}" if prefix else relative
        items.append(BatchItem(key=key, body=path.read_bytes(), options=_put_options(args, key)))

    results = BatchExecutor(client, concurrency=args.concurrency).put_many(items)
    failed = [r for r in results if not r.success]

    print("=" * 60)
    print(f"Uploaded: {len(results) - len(failed)}/{len(results)}")
    for result in failed:
        print(f"  ✗ {result.key}: {result.error}")
    print("=" * 60)
    return 1 if failed else 0


def _add_put_arguments(parser: argparse.ArgumentParser):
    parser.add_argument("--content-type", help="Content-Type (default: guessed from key)")
    parser.add_argument("--cache-control", help="Cache-Control header")
    parser.add_argument(
        "--attachment",
        action="store_true",
        help="Set Content-Disposition: attachment with the key's file name",
    )
    parser.add_argument(
        "--meta",
        action="append",
        metavar="NAME=VALUE",
        help="User metadata (repeatable)",
    )
    parser.add_argument("--sse", help="Server-side encryption, e.g. AES256")
    parser.add_argument(
        "--compression",
        choices=["gzip", "zstd"],
        help="Compress before upload (zstd is written as gzip)",
    )
    parser.add_argument(
        "--encrypt",
        action="store_true",
        help="Encrypt client-side with S3_ENCRYPTION_SECRET",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="s3-objstore",
        description="Signed object operations against an S3-compatible bucket",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Log requests")
    parser.add_argument(
        "--trace",
        action="store_true",
        help="Print every HTTP exchange as markdown",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    put = commands.add_parser("put", help="Upload a file")
    put.add_argument("source", help="Local file")
    put.add_argument("key", nargs="?", help="Object key (default: file name)")
    _add_put_arguments(put)
    put.set_defaults(handler=cmd_put)

    get = commands.add_parser("get", help="Download an object")
    get.add_argument("key")
    get.add_argument("dest", help="Local file, or - for stdout")
    get.add_argument("--range", help="HTTP Range, e.g. bytes=0-99")
    get.add_argument("--decompress", action="store_true", help="Invert stored transforms")
    get.set_defaults(handler=cmd_get)

    ls = commands.add_parser("ls", help="List one page of keys")
    ls.add_argument("prefix", nargs="?")
    ls.add_argument("--max-keys", type=int)
    ls.add_argument("--token", help="Continuation token from a previous page")
    ls.add_argument("--delimiter")
    ls.set_defaults(handler=cmd_ls)

    rm = commands.add_parser("rm", help="Delete objects")
    rm.add_argument("keys", nargs="+")
    rm.set_defaults(handler=cmd_rm)

    presign = commands.add_parser("presign", help="Print a presigned URL")
    presign.add_argument("operation", choices=["get", "put", "delete", "head"])
    presign.add_argument("key")
    presign.add_argument("--expires", type=int, default=3600, help="Seconds (max 604800)")
    presign.set_defaults(handler=cmd_presign)

    stats = commands.add_parser("stats", help="Count objects and bytes under a prefix")
    stats.add_argument("prefix", nargs="?")
    stats.add_argument("--max-pages", type=int, default=10000)
    stats.set_defaults(handler=cmd_stats)

    sync = commands.add_parser("sync", help="Upload a directory tree")
    sync.add_argument("source", help="Local directory")
    sync.add_argument("prefix", nargs="?", default="", help="Key prefix")
    sync.add_argument("--concurrency", type=int, default=4)
    _add_put_arguments(sync)
    sync.set_defaults(handler=cmd_sync)

    return parser


def main(argv: Optional[list] = None, factory: Optional[ClientFactory] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    capture = [] if args.trace else None
    try:
        with (factory or ClientFactory()).create_client(capture=capture) as client:
            status = args.handler(client, args)
    except ObjectStoreError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        status = 1
    finally:
        for exchange in capture or []:
            print(exchange.to_markdown(), file=sys.stderr)
    return status


if __name__ == "__main__":
    sys.exit(main())
