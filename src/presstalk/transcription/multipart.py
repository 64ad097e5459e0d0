"""Streaming multipart/form-data request bodies."""

from __future__ import annotations

import logging
import queue
import threading
import uuid
from concurrent.futures import Future
from pathlib import Path
from typing import Iterator, List, Optional, Sequence, Tuple

from .errors import NetworkError

logger = logging.getLogger(__name__)

MIME_TYPES = {
    "m4a": "audio/mp4",
    "mp3": "audio/mpeg",
    "mpga": "audio/mpeg",
    "mp4": "audio/mp4",
    "mpeg": "audio/mp4",
    "webm": "audio/webm",
    "wav": "audio/wav",
    "flac": "audio/flac",
    "ogg": "audio/ogg",
}

_END = object()


def mime_type_for(path: Path) -> str:
    return MIME_TYPES.get(Path(path).suffix.lower().lstrip("."), "application/octet-stream")


class MultipartBody:
    """
    A multipart/form-data body that never holds the whole file in memory.

    Length is known up front so requests sends a Content-Length header. On
    first iteration a writer thread reads the file in chunks into a bounded
    queue; the HTTP layer consumes chunks as the socket accepts them.
    `completion` resolves once the writer has produced every byte (or fails
    with the writer's error). `close()` stops the writer at the next chunk
    boundary.
    """

    def __init__(
        self,
        fields: Sequence[Tuple[str, str]],
        file_path: Path,
        file_field: str = "file",
        content_type: Optional[str] = None,
        boundary: Optional[str] = None,
        chunk_size: int = 64 * 1024,
        max_buffered_chunks: int = 8,
    ):
        self.boundary = boundary or f"Boundary-{uuid.uuid4()}"
        self._file_path = Path(file_path)
        self._chunk_size = chunk_size
        self._buffer: "queue.Queue[object]" = queue.Queue(maxsize=max_buffered_chunks)
        self._closed = threading.Event()
        self._started = False
        self._start_lock = threading.Lock()
        self._writer: Optional[threading.Thread] = None
        self.completion: "Future[int]" = Future()

        mime = content_type or mime_type_for(self._file_path)
        self._preamble = self._encode_fields(fields) + (
            f"--{self.boundary}\r\n"
            f'Content-Disposition: form-data; name="{file_field}"; filename="{self._file_path.name}"\r\n'
            f"Content-Type: {mime}\r\n\r\n"
        ).encode("utf-8")
        self._epilogue = f"\r\n--{self.boundary}--\r\n".encode("utf-8")
        self._file_size = self._file_path.stat().st_size

    @property
    def content_type(self) -> str:
        return f"multipart/form-data; boundary={self.boundary}"

    def _encode_fields(self, fields: Sequence[Tuple[str, str]]) -> bytes:
        parts: List[bytes] = []
        for name, value in fields:
            parts.append(
                (
                    f"--{self.boundary}\r\n"
                    f'Content-Disposition: form-data; name="{name}"\r\n\r\n'
                    f"{value}\r\n"
                ).encode("utf-8")
            )
        return b"".join(parts)

    def __len__(self) -> int:
        return len(self._preamble) + self._file_size + len(self._epilogue)

    def __iter__(self) -> Iterator[bytes]:
        with self._start_lock:
            if self._started:
                raise RuntimeError("MultipartBody can only be streamed once")
            self._started = True
            self._writer = threading.Thread(target=self._write_all, name="MultipartWriterThread", daemon=True)
            self._writer.start()

        while True:
            item = self._next_chunk()
            if item is _END:
                break
            yield item  # type: ignore[misc]

        if self.completion.done() and self.completion.exception() is not None:
            raise self.completion.exception()  # type: ignore[misc]

    def _next_chunk(self) -> object:
        while True:
            if self._closed.is_set():
                raise NetworkError("Upload cancelled")
            try:
                return self._buffer.get(timeout=0.1)
            except queue.Empty:
                continue

    def close(self) -> None:
        self._closed.set()
        # Unblock a writer waiting on a full buffer.
        while True:
            try:
                self._buffer.get_nowait()
            except queue.Empty:
                break

    def _put(self, chunk: object) -> bool:
        while not self._closed.is_set():
            try:
                self._buffer.put(chunk, timeout=0.1)
                return True
            except queue.Full:
                continue
        return False

    def _write_all(self) -> None:
        written = 0
        try:
            if not self._put(self._preamble):
                raise NetworkError("Upload cancelled")
            written += len(self._preamble)
            with open(self._file_path, "rb") as f:
                while True:
                    chunk = f.read(self._chunk_size)
                    if not chunk:
                        break
                    if not self._put(chunk):
                        raise NetworkError("Upload cancelled")
                    written += len(chunk)
            if written - len(self._preamble) != self._file_size:
                raise NetworkError(
                    f"Audio file changed while uploading ({written - len(self._preamble)} != {self._file_size} bytes)"
                )
            if not self._put(self._epilogue):
                raise NetworkError("Upload cancelled")
            written += len(self._epilogue)
            self.completion.set_result(written)
        except Exception as e:
            if not self._closed.is_set():
                logger.warning(f"Multipart writer failed: {e}")
            self.completion.set_exception(e)
        finally:
            self._put(_END)
