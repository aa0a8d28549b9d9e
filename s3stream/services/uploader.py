"""Factory for upload sessions bound to one storage backend."""

from __future__ import annotations

from typing import Any, Mapping

from s3stream.common.config import Settings, get_settings
from s3stream.infra.storage.client import StorageClient
from s3stream.infra.storage.s3_client import S3StorageClient
from s3stream.services.base import (
    MissingStorageClientError,
    StorageBackendNotConfiguredError,
)
from s3stream.services.upload_session import ResumeState, UploadSession, UploadTarget


class StreamUploader:
    """Creates ``UploadSession`` objects preconfigured from settings.

    Example::

        uploader = StreamUploader.from_settings()
        with uploader.upload({"Bucket": "media", "Key": "video.mp4"}) as stream:
            shutil.copyfileobj(source, stream)
    """

    def __init__(
        self,
        storage: StorageClient | None,
        *,
        settings: Settings | None = None,
    ) -> None:
        if storage is None:
            raise MissingStorageClientError(
                "A storage client is required to create upload streams"
            )
        self._storage = storage
        self._settings = settings or get_settings()

    @property
    def storage(self) -> StorageClient:
        return self._storage

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "StreamUploader":
        settings = settings or get_settings()
        return cls(cls._build_storage_client(settings), settings=settings)

    @staticmethod
    def _build_storage_client(settings: Settings) -> StorageClient:
        """Build the S3 client, rejecting half-configured credentials."""
        has_key = bool(settings.S3_ACCESS_KEY_ID)
        has_secret = bool(settings.S3_SECRET_ACCESS_KEY)
        if has_key != has_secret:
            raise StorageBackendNotConfiguredError(
                "S3_ACCESS_KEY_ID and S3_SECRET_ACCESS_KEY must be set together"
            )
        return S3StorageClient(settings=settings)

    def upload(
        self,
        target: UploadTarget | Mapping[str, Any],
        *,
        resume: ResumeState | Mapping[str, Any] | None = None,
    ) -> UploadSession:
        """Open a new upload session, or continue ``resume`` when given."""
        if not isinstance(target, UploadTarget):
            target = UploadTarget.from_mapping(target)
        if resume is not None and not isinstance(resume, ResumeState):
            resume = ResumeState.from_mapping(resume)
        return UploadSession(
            self._storage,
            target,
            resume=resume,
            part_size=self._settings.UPLOAD_PART_SIZE_BYTES,
            concurrency=self._settings.UPLOAD_CONCURRENT_PARTS,
        )
