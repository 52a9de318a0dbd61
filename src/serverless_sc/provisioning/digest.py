"""Content digest for deployment artifacts."""

from __future__ import annotations

import base64
import hashlib
from typing import Iterable

from .errors import ReadError


class ArtifactDigest:
    """Incremental SHA-256 rendered as padded standard base64."""

    def __init__(self) -> None:
        self._hash = hashlib.sha256()
        self._bytes_read = 0

    @property
    def bytes_read(self) -> int:
        return self._bytes_read

    def update(self, chunk: bytes) -> None:
        self._hash.update(chunk)
        self._bytes_read += len(chunk)

    def value(self) -> str:
        return base64.b64encode(self._hash.digest()).decode("ascii")


def digest_bytes(data: bytes) -> str:
    digest = ArtifactDigest()
    digest.update(data)
    return digest.value()


def digest_stream(stream: Iterable[bytes], *, source: str | None = None) -> str:
    """Consume ``stream`` in full and return its digest.

    Any failure while reading raises ``ReadError``; the partially updated hash is
    discarded with the local state.
    """
    digest = ArtifactDigest()
    try:
        for chunk in stream:
            digest.update(chunk)
    except ReadError:
        raise
    except Exception as exc:
        raise ReadError(f"artifact read failed after {digest.bytes_read} bytes: {source or '<stream>'}") from exc
    return digest.value()
