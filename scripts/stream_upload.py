#!/usr/bin/env python3
"""Stream a file or stdin into an S3 multipart upload.

Usage:
  .venv/bin/python scripts/stream_upload.py backups/db.dump --bucket my-bucket --file db.dump
  pg_dump mydb | .venv/bin/python scripts/stream_upload.py backups/db.dump --bucket my-bucket
  .venv/bin/python scripts/stream_upload.py big.bin --bucket my-bucket --file big.bin \\
      --upload-id ID --parts-json parts.json

Connection settings come from S3_* environment variables (or .env). Progress
is printed as one JSON line per event; the exit status is non-zero on error.
"""

from __future__ import annotations

import argparse
import json
import shutil
import sys
from pathlib import Path
from typing import IO, Sequence

from s3stream.common.config import get_settings
from s3stream.common.logging import setup_logging
from s3stream.infra.observability.metrics import serve_metrics
from s3stream.services import (
    ResumeState,
    StreamUploader,
    UploadEvent,
    UploadState,
    UploadTarget,
)

READ_SIZE = 1024 * 1024


def _emit(out: IO[str], payload: dict) -> None:
    out.write(json.dumps(payload, ensure_ascii=False) + "\n")
    out.flush()


def _load_resume(upload_id: str | None, parts_json: str | None) -> ResumeState | None:
    if upload_id is None:
        if parts_json is not None:
            raise SystemExit("--parts-json requires --upload-id")
        return None
    parts = []
    if parts_json is not None:
        parts = json.loads(Path(parts_json).read_text(encoding="utf-8"))
    return ResumeState.from_mapping({"UploadId": upload_id, "Parts": parts})


def stream_upload(
    uploader: StreamUploader,
    target: UploadTarget,
    source: IO[bytes],
    *,
    part_size: int | None = None,
    concurrency: int | None = None,
    resume: ResumeState | None = None,
    out: IO[str] | None = None,
    read_size: int = READ_SIZE,
) -> UploadState:
    if out is None:
        out = sys.stdout
    session = uploader.upload(target, resume=resume)
    if part_size is not None:
        session.max_part_size(part_size)
    if concurrency is not None:
        session.concurrent_parts(concurrency)

    session.on(
        UploadEvent.READY,
        lambda upload_id: _emit(out, {"event": "ready", "upload_id": upload_id}),
    )
    session.on(
        UploadEvent.PART,
        lambda part: _emit(out, {"event": "part", **part.as_dict()}),
    )
    session.on(UploadEvent.UPLOADED, lambda: _emit(out, {"event": "uploaded"}))
    session.on(
        UploadEvent.ERROR,
        lambda error: _emit(out, {"event": "error", "message": str(error)}),
    )

    with session:
        shutil.copyfileobj(source, session, read_size)
    return session.state


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Stream a file or stdin into an S3 multipart upload"
    )
    parser.add_argument("key", help="Target object key")
    parser.add_argument(
        "--bucket",
        default=None,
        help="Target bucket (default: S3_BUCKET)",
    )
    parser.add_argument(
        "--file",
        default=None,
        help="Read from this file instead of stdin",
    )
    parser.add_argument(
        "--part-size",
        type=int,
        default=None,
        help="Part size in bytes (minimum 5 MiB, default: UPLOAD_PART_SIZE_BYTES)",
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        default=None,
        help="Parts uploaded in parallel (default: UPLOAD_CONCURRENT_PARTS)",
    )
    parser.add_argument("--content-type", default=None, help="Object content type")
    parser.add_argument(
        "--upload-id",
        default=None,
        help="Resume this multipart upload instead of creating one",
    )
    parser.add_argument(
        "--parts-json",
        default=None,
        help='JSON file with already uploaded parts: [{"PartNumber": 1, "ETag": "..."}]',
    )
    parser.add_argument(
        "--metrics-port",
        type=int,
        default=None,
        help="Expose prometheus metrics on this port while uploading",
    )
    args = parser.parse_args(argv)

    settings = get_settings()
    setup_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)
    if args.metrics_port is not None and settings.ENABLE_METRICS:
        serve_metrics(args.metrics_port)

    bucket = args.bucket or settings.S3_BUCKET
    if not bucket:
        parser.error("a bucket is required: pass --bucket or set S3_BUCKET")
    target = UploadTarget(bucket=bucket, key=args.key, content_type=args.content_type)
    resume = _load_resume(args.upload_id, args.parts_json)
    uploader = StreamUploader.from_settings(settings)

    if args.file is None:
        state = stream_upload(
            uploader,
            target,
            sys.stdin.buffer,
            part_size=args.part_size,
            concurrency=args.concurrency,
            resume=resume,
        )
    else:
        with open(args.file, "rb") as source:
            state = stream_upload(
                uploader,
                target,
                source,
                part_size=args.part_size,
                concurrency=args.concurrency,
                resume=resume,
            )
    return 0 if state is UploadState.COMPLETED else 1


if __name__ == "__main__":
    sys.exit(main())
