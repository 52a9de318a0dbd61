"""Artifact stores that stream build artifacts (local + S3)."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Iterator, Protocol
from urllib.parse import urlparse

from .errors import ReadError

DEFAULT_CHUNK_SIZE = 64 * 1024


class ArtifactStore(Protocol):
    def open_stream(self, path: str) -> Iterator[bytes]:
        ...


class LocalArtifactStore:
    def __init__(self, chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
        self.chunk_size = chunk_size

    def open_stream(self, path: str) -> Iterator[bytes]:
        try:
            handle = Path(path).open("rb")
        except OSError as exc:
            raise ReadError(f"artifact not readable: {path}") from exc
        return self._iter_chunks(handle, path)

    def _iter_chunks(self, handle: Any, path: str) -> Iterator[bytes]:
        with handle:
            while True:
                try:
                    chunk = handle.read(self.chunk_size)
                except OSError as exc:
                    raise ReadError(f"artifact read failed: {path}") from exc
                if not chunk:
                    return
                yield chunk


class S3ArtifactStore:
    def __init__(
        self,
        *,
        region: str | None = None,
        endpoint_url: str | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        import boto3

        self.chunk_size = chunk_size
        self._client = boto3.client("s3", region_name=region, endpoint_url=endpoint_url)

    def open_stream(self, path: str) -> Iterator[bytes]:
        from botocore.exceptions import BotoCoreError, ClientError

        bucket, key = _split_s3_url(path)
        try:
            response = self._client.get_object(Bucket=bucket, Key=key)
        except (ClientError, BotoCoreError) as exc:
            raise ReadError(f"artifact not readable: {path}") from exc
        return self._iter_body(response["Body"], path)

    def _iter_body(self, body: Any, path: str) -> Iterator[bytes]:
        from botocore.exceptions import BotoCoreError, ClientError

        try:
            for chunk in body.iter_chunks(self.chunk_size):
                yield chunk
        except (ClientError, BotoCoreError, OSError) as exc:
            raise ReadError(f"artifact read failed: {path}") from exc
        finally:
            body.close()


class ArtifactStoreRouter:
    """Dispatches ``s3://`` paths to S3 and everything else to the filesystem."""

    def __init__(self, local: ArtifactStore, *, region: str | None = None, endpoint_url: str | None = None) -> None:
        self.local = local
        self.region = region
        self.endpoint_url = endpoint_url
        self._s3: ArtifactStore | None = None

    def open_stream(self, path: str) -> Iterator[bytes]:
        if path.startswith("s3://"):
            if self._s3 is None:
                self._s3 = S3ArtifactStore(region=self.region, endpoint_url=self.endpoint_url)
            return self._s3.open_stream(path)
        return self.local.open_stream(path)


def build_artifact_store(*, region: str | None = None, endpoint_url: str | None = None) -> ArtifactStore:
    return ArtifactStoreRouter(LocalArtifactStore(), region=region, endpoint_url=endpoint_url)


def _split_s3_url(path: str) -> tuple[str, str]:
    parsed = urlparse(path)
    bucket = parsed.netloc
    key = parsed.path.lstrip("/")
    if not bucket or not key:
        raise ReadError(f"artifact S3 path missing bucket or key: {path}")
    return bucket, key
