"""Multipart upload transport with incremental server-sent events."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import AsyncIterator, Callable, List, Optional, Tuple

import requests

from ..core.events import StreamEventKind
from .errors import (
    EmptyTextError,
    FileTooLargeError,
    NetworkError,
    ServerError,
    InvalidResponseError,
    TimeoutTransportError,
    TransportError,
    UnauthorizedError,
)
from .multipart import MultipartBody
from .parser import StreamEventParser
from .retry import RetryPolicy, run_with_retry

logger = logging.getLogger(__name__)

TRANSCRIPTIONS_URL = "https://api.openai.com/v1/audio/transcriptions"
MAX_UPLOAD_BYTES = 25 * 1024 * 1024
REQUEST_TIMEOUT_S = 45.0

DeltaCallback = Callable[[str], None]

_END = object()


class _PumpFailure:
    def __init__(self, error: BaseException):
        self.error = error


def map_request_exception(error: BaseException) -> TransportError:
    """Translate a requests/urllib3 failure into the transport taxonomy."""
    if isinstance(error, TransportError):
        return error
    if isinstance(error, requests.Timeout):
        return TimeoutTransportError(str(error) or "Request timed out")
    return NetworkError(str(error) or error.__class__.__name__)


def error_for_response(response: requests.Response) -> TransportError:
    status = response.status_code
    message: Optional[str] = None
    try:
        payload = json.loads(response.content or b"")
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            message = error["message"]
        elif isinstance(payload.get("message"), str):
            message = payload["message"]
    if message is None:
        text = (response.text or "").strip()
        message = text[:200] if text else None

    if status == 401:
        return UnauthorizedError(message or "Unauthorized (401)")
    if status == 413:
        return FileTooLargeError()
    return ServerError(status, message)


class UploadStreamingTranscriber:
    """
    POSTs the recording to the transcriptions endpoint.

    `transcribe` tries a streaming request first (`stream=true`, SSE-style
    response) and falls back to plain non-streaming requests, retried with
    backoff, when the streaming attempt fails with a recoverable error.
    """

    def __init__(
        self,
        endpoint: str = TRANSCRIPTIONS_URL,
        session: Optional[requests.Session] = None,
        timeout_s: float = REQUEST_TIMEOUT_S,
        max_file_bytes: int = MAX_UPLOAD_BYTES,
        retry_policy: RetryPolicy = RetryPolicy(),
        parser: Optional[StreamEventParser] = None,
    ):
        self._endpoint = endpoint
        self._session = session or requests.Session()
        self._timeout_s = timeout_s
        self._max_file_bytes = max_file_bytes
        self._retry_policy = retry_policy
        self._parser = parser or StreamEventParser()

    @property
    def endpoint(self) -> str:
        return self._endpoint

    async def transcribe(
        self,
        file_path: Path,
        model: str,
        api_key: str,
        prompt: Optional[str] = None,
        language: Optional[str] = None,
        on_delta: Optional[DeltaCallback] = None,
    ) -> str:
        try:
            return await self.transcribe_streaming(file_path, model, api_key, prompt, language, on_delta)
        except TransportError as e:
            if not e.is_recoverable:
                raise
            logger.warning(f"Streaming transcription failed ({e}); falling back to non-streaming upload")
        return await self.transcribe_once(file_path, model, api_key, prompt, language)

    async def transcribe_streaming(
        self,
        file_path: Path,
        model: str,
        api_key: str,
        prompt: Optional[str] = None,
        language: Optional[str] = None,
        on_delta: Optional[DeltaCallback] = None,
    ) -> str:
        body = self._build_body(file_path, model, prompt, language, streaming=True)
        try:
            logger.info(f"Streaming upload of {Path(file_path).name} ({len(body)} bytes)")
            response = await asyncio.to_thread(self._post, body, api_key, True)
            try:
                if not 200 <= response.status_code < 300:
                    raise await asyncio.to_thread(error_for_response, response)
                return await self._consume_stream(response, on_delta)
            finally:
                response.close()
        finally:
            body.close()

    async def transcribe_once(
        self,
        file_path: Path,
        model: str,
        api_key: str,
        prompt: Optional[str] = None,
        language: Optional[str] = None,
    ) -> str:
        async def attempt() -> str:
            return await self._transcribe_plain(file_path, model, api_key, prompt, language)

        return await run_with_retry(attempt, self._retry_policy, label="Transcription upload")

    async def _transcribe_plain(
        self,
        file_path: Path,
        model: str,
        api_key: str,
        prompt: Optional[str],
        language: Optional[str],
    ) -> str:
        body = self._build_body(file_path, model, prompt, language, streaming=False)
        try:
            response = await asyncio.to_thread(self._post, body, api_key, False)
        finally:
            body.close()
        if not 200 <= response.status_code < 300:
            raise error_for_response(response)
        text = (response.text or "").strip()
        if not text:
            raise EmptyTextError()
        return text

    def _build_body(
        self,
        file_path: Path,
        model: str,
        prompt: Optional[str],
        language: Optional[str],
        streaming: bool,
    ) -> MultipartBody:
        file_path = Path(file_path)
        size = file_path.stat().st_size
        if size > self._max_file_bytes:
            raise FileTooLargeError(size, self._max_file_bytes)

        fields: List[Tuple[str, str]] = [
            ("model", model),
            ("response_format", "json" if streaming else "text"),
        ]
        if streaming:
            fields.append(("stream", "true"))
        if language:
            fields.append(("language", language))
        if prompt and prompt.strip():
            fields.append(("prompt", prompt.strip()))
        return MultipartBody(fields, file_path)

    def _post(self, body: MultipartBody, api_key: str, stream: bool) -> requests.Response:
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": body.content_type,
        }
        if stream:
            headers["Accept"] = "text/event-stream"
        try:
            return self._session.post(
                self._endpoint,
                data=body,
                headers=headers,
                timeout=self._timeout_s,
                stream=stream,
            )
        except Exception as e:
            raise map_request_exception(e) from e

    async def _consume_stream(self, response: requests.Response, on_delta: Optional[DeltaCallback]) -> str:
        aggregated = ""
        unrecognized = 0
        recognized = 0
        async for raw in self._iter_lines(response):
            line = raw.strip()
            if not line:
                continue
            if line.startswith("data:"):
                line = line[len("data:"):].strip()
            if line == "[DONE]":
                break

            event = self._parser.parse(line)
            if event.kind is StreamEventKind.IGNORE:
                unrecognized += 1
                continue
            recognized += 1
            if event.kind is StreamEventKind.DELTA:
                if event.text:
                    aggregated += event.text
                    if on_delta is not None:
                        on_delta(aggregated)
            elif event.kind is StreamEventKind.DONE:
                final = event.text.strip()
                if final:
                    return final
            elif event.kind is StreamEventKind.ERROR:
                raise ServerError(response.status_code, event.text)

        final = aggregated.strip()
        if not final:
            if unrecognized and not recognized:
                raise InvalidResponseError(f"No transcription events in {unrecognized} streamed lines")
            raise EmptyTextError()
        return final

    async def _iter_lines(self, response: requests.Response) -> AsyncIterator[str]:
        """Read response lines on a worker thread and hand them to the event loop."""
        loop = asyncio.get_running_loop()
        lines: asyncio.Queue = asyncio.Queue()

        def put(item: object) -> None:
            try:
                loop.call_soon_threadsafe(lines.put_nowait, item)
            except RuntimeError:
                # Loop already closed; nobody is listening anymore.
                pass

        def pump() -> None:
            try:
                for raw in response.iter_lines():
                    put(raw)
            except Exception as e:
                put(_PumpFailure(e))
            finally:
                put(_END)

        loop.run_in_executor(None, pump)
        try:
            while True:
                item = await lines.get()
                if item is _END:
                    return
                if isinstance(item, _PumpFailure):
                    raise map_request_exception(item.error)
                if isinstance(item, bytes):
                    item = item.decode("utf-8", errors="replace")
                yield item
        finally:
            response.close()
