"""Tests for scripts/stream_upload.py."""

from __future__ import annotations

import io
import json
from unittest.mock import patch

import pytest

from s3stream.services.upload_session import UploadState, UploadTarget
from s3stream.services.uploader import StreamUploader
from scripts import stream_upload
from tests.services.mock_storage import UPLOAD_FAIL, MockStorageClient


def _events(out: io.StringIO) -> list[dict]:
    return [json.loads(line) for line in out.getvalue().splitlines()]


class TestStreamUpload:
    def test_streams_source_and_prints_progress(self, settings):
        storage = MockStorageClient()
        uploader = StreamUploader(storage, settings=settings)
        out = io.StringIO()

        state = stream_upload.stream_upload(
            uploader,
            UploadTarget(bucket="test-bucket-name", key="test-file-name"),
            io.BytesIO(b"x" * 1000),
            out=out,
            read_size=64,
        )

        assert state is UploadState.COMPLETED
        events = _events(out)
        assert [e["event"] for e in events] == ["ready", "part", "uploaded"]
        assert events[0]["upload_id"] == "upload-id"
        assert events[1] == {
            "event": "part",
            "ETag": "etag",
            "PartNumber": 1,
            "receivedSize": 1000,
            "uploadedSize": 1000,
        }
        assert storage.uploaded_body("upload-id") == b"x" * 1000

    def test_applies_part_size_and_concurrency(self, settings):
        uploader = StreamUploader(MockStorageClient(), settings=settings)
        seen = {}
        real_upload = uploader.upload

        def spy(target, *, resume=None):
            session = real_upload(target, resume=resume)
            seen["session"] = session
            return session

        with patch.object(uploader, "upload", side_effect=spy):
            stream_upload.stream_upload(
                uploader,
                UploadTarget(bucket="b", key="k"),
                io.BytesIO(b""),
                part_size=1,
                concurrency=3,
                out=io.StringIO(),
            )

        assert seen["session"].get_max_part_size() == 5 * 1024 * 1024
        assert seen["session"].get_concurrent_parts() == 3

    def test_reports_errors(self, settings):
        uploader = StreamUploader(MockStorageClient(), settings=settings)
        out = io.StringIO()

        state = stream_upload.stream_upload(
            uploader,
            UploadTarget(bucket="b", key=UPLOAD_FAIL),
            io.BytesIO(b"data"),
            out=out,
        )

        assert state is UploadState.ABORTED
        events = _events(out)
        assert events[-1]["event"] == "error"
        assert "Failed to upload part 1" in events[-1]["message"]


class TestLoadResume:
    def test_without_upload_id(self):
        assert stream_upload._load_resume(None, None) is None

    def test_parts_json_requires_upload_id(self, tmp_path):
        with pytest.raises(SystemExit):
            stream_upload._load_resume(None, str(tmp_path / "parts.json"))

    def test_reads_parts_file(self, tmp_path):
        parts_file = tmp_path / "parts.json"
        parts_file.write_text(
            json.dumps([{"PartNumber": 1, "ETag": "etag-1"}]), encoding="utf-8"
        )

        resume = stream_upload._load_resume("resume-id", str(parts_file))

        assert resume.upload_id == "resume-id"
        assert [p.part_number for p in resume.parts] == [1]


def test_main_uploads_file(tmp_path, monkeypatch, capsys):
    source = tmp_path / "input.bin"
    source.write_bytes(b"file contents")
    storage = MockStorageClient()
    monkeypatch.setattr(
        StreamUploader, "_build_storage_client", staticmethod(lambda settings: storage)
    )
    monkeypatch.setattr(stream_upload, "setup_logging", lambda *args: None)

    exit_code = stream_upload.main(
        ["my/key", "--bucket", "my-bucket", "--file", str(source)]
    )

    assert exit_code == 0
    assert storage.uploaded_body("upload-id") == b"file contents"
    assert '"event": "uploaded"' in capsys.readouterr().out


def test_main_returns_error_status(tmp_path, monkeypatch):
    source = tmp_path / "input.bin"
    source.write_bytes(b"file contents")
    monkeypatch.setattr(
        StreamUploader,
        "_build_storage_client",
        staticmethod(lambda settings: MockStorageClient()),
    )
    monkeypatch.setattr(stream_upload, "setup_logging", lambda *args: None)

    assert stream_upload.main([UPLOAD_FAIL, "--bucket", "b", "--file", str(source)]) == 1


def test_main_uses_bucket_from_settings(tmp_path, monkeypatch):
    source = tmp_path / "input.bin"
    source.write_bytes(b"file contents")
    storage = MockStorageClient()
    monkeypatch.setenv("S3_BUCKET", "env-bucket")
    monkeypatch.setattr(
        StreamUploader, "_build_storage_client", staticmethod(lambda settings: storage)
    )
    monkeypatch.setattr(stream_upload, "setup_logging", lambda *args: None)

    assert stream_upload.main(["my/key", "--file", str(source)]) == 0
    assert storage.calls_named("init_multipart_upload")[0]["bucket"] == "env-bucket"


def test_main_requires_bucket(monkeypatch):
    monkeypatch.delenv("S3_BUCKET", raising=False)
    monkeypatch.setattr(stream_upload, "setup_logging", lambda *args: None)

    with pytest.raises(SystemExit) as excinfo:
        stream_upload.main(["my/key"])

    assert excinfo.value.code == 2
