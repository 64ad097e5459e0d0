"""Realtime WebSocket transcription transport."""

from __future__ import annotations

import asyncio
import base64
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import websockets
from websockets.exceptions import InvalidHandshake, InvalidStatus

from ..audio.input.pcm import decode_to_pcm16_mono
from ..core.events import StreamEventKind
from .errors import (
    EmptyTextError,
    FileTooLargeError,
    NetworkError,
    ServerError,
    TimeoutTransportError,
    TransportError,
    UnauthorizedError,
)
from .parser import StreamEventParser
from .upload import MAX_UPLOAD_BYTES

logger = logging.getLogger(__name__)

REALTIME_URL = "wss://api.openai.com/v1/realtime?intent=transcription"
REALTIME_SAMPLE_RATE = 24000
# ~0.67 s of 24 kHz mono PCM16
AUDIO_CHUNK_BYTES = 32000
REALTIME_TIMEOUT_S = 45.0

DeltaCallback = Callable[[str], None]


@dataclass(frozen=True)
class RealtimeConfig:
    """Server-side VAD tuning sent with `session.update`."""
    silence_duration_ms: int = 600
    prefix_padding_ms: int = 240


def build_session_update(
    model: str,
    config: RealtimeConfig,
    language: Optional[str] = None,
    prompt: Optional[str] = None,
) -> Dict[str, Any]:
    transcription: Dict[str, Any] = {"model": model}
    if language:
        transcription["language"] = language
    if prompt and prompt.strip():
        transcription["prompt"] = prompt.strip()
    return {
        "type": "session.update",
        "session": {
            "input_audio_format": "pcm16",
            "input_audio_transcription": transcription,
            "turn_detection": {
                "type": "server_vad",
                "silence_duration_ms": config.silence_duration_ms,
                "prefix_padding_ms": config.prefix_padding_ms,
            },
        },
    }


class RealtimeTranscriber:
    """
    Sends a finished recording over the realtime transcription WebSocket.

    The file is converted to 24 kHz mono PCM16 in one shot, streamed as
    base64 `input_audio_buffer.append` messages and committed, while a
    receive task collects delta/done events. The whole exchange runs under a
    hard timeout.
    """

    def __init__(
        self,
        url: str = REALTIME_URL,
        timeout_s: float = REALTIME_TIMEOUT_S,
        chunk_bytes: int = AUDIO_CHUNK_BYTES,
        sample_rate: int = REALTIME_SAMPLE_RATE,
        max_file_bytes: int = MAX_UPLOAD_BYTES,
        parser: Optional[StreamEventParser] = None,
    ):
        self._url = url
        self._timeout_s = timeout_s
        self._chunk_bytes = chunk_bytes
        self._sample_rate = sample_rate
        self._max_file_bytes = max_file_bytes
        self._parser = parser or StreamEventParser()

    async def transcribe(
        self,
        file_path: Path,
        model: str,
        api_key: str,
        prompt: Optional[str] = None,
        language: Optional[str] = None,
        config: RealtimeConfig = RealtimeConfig(),
        on_delta: Optional[DeltaCallback] = None,
    ) -> str:
        file_path = Path(file_path)
        size = file_path.stat().st_size
        if size > self._max_file_bytes:
            raise FileTooLargeError(size, self._max_file_bytes)

        try:
            pcm = await asyncio.to_thread(decode_to_pcm16_mono, file_path, self._sample_rate)
        except Exception as e:
            # Realtime needs raw PCM; an undecodable source can still go through upload.
            raise NetworkError(f"Audio conversion failed: {e}") from e
        if not pcm:
            raise EmptyTextError()

        ws = await self._connect(api_key)
        logger.info(f"Realtime session opened ({len(pcm)} bytes of PCM)")
        try:
            text = await asyncio.wait_for(
                self._exchange(ws, pcm, build_session_update(model, config, language, prompt), on_delta),
                timeout=self._timeout_s,
            )
        except asyncio.TimeoutError:
            await self._close(ws, abnormal=True)
            raise TimeoutTransportError(f"Realtime transcription timed out after {self._timeout_s:.0f}s")
        except TransportError:
            await self._close(ws, abnormal=True)
            raise
        except asyncio.CancelledError:
            await self._close(ws, abnormal=True)
            raise
        except websockets.ConnectionClosed as e:
            await self._close(ws, abnormal=True)
            raise NetworkError(f"Realtime connection closed: {e}") from e
        except Exception as e:
            await self._close(ws, abnormal=True)
            raise NetworkError(str(e) or e.__class__.__name__) from e

        await self._close(ws, abnormal=False)
        return text

    async def _connect(self, api_key: str):
        headers = {
            "Authorization": f"Bearer {api_key}",
            "OpenAI-Beta": "realtime=v1",
        }
        try:
            return await websockets.connect(
                self._url,
                additional_headers=headers,
                max_size=None,
                open_timeout=self._timeout_s,
            )
        except InvalidStatus as e:
            status = e.response.status_code
            if status == 401:
                raise UnauthorizedError() from e
            raise ServerError(status, f"Realtime handshake rejected ({status})") from e
        except InvalidHandshake as e:
            raise NetworkError(f"Realtime handshake failed: {e}") from e
        except asyncio.TimeoutError as e:
            raise TimeoutTransportError("Realtime connection timed out") from e
        except OSError as e:
            raise NetworkError(str(e)) from e

    async def _exchange(self, ws, pcm: bytes, session_update: Dict[str, Any], on_delta: Optional[DeltaCallback]) -> str:
        receive_task = asyncio.create_task(self._receive_final_text(ws, on_delta))
        try:
            try:
                await ws.send(json.dumps(session_update))
                await self._send_audio(ws, pcm, receive_task)
            except websockets.ConnectionClosed:
                # Prefer the server's own error event over the bare close.
                if receive_task.done():
                    return await receive_task
                raise
            return await receive_task
        finally:
            if not receive_task.done():
                receive_task.cancel()
            elif not receive_task.cancelled():
                receive_task.exception()

    async def _send_audio(self, ws, pcm: bytes, receive_task: "asyncio.Task[str]") -> None:
        for offset in range(0, len(pcm), self._chunk_bytes):
            if receive_task.done():
                # Server already answered or failed; the result is picked up by the caller.
                return
            chunk = pcm[offset:offset + self._chunk_bytes]
            await ws.send(json.dumps({
                "type": "input_audio_buffer.append",
                "audio": base64.b64encode(chunk).decode("ascii"),
            }))
            await asyncio.sleep(0)
        await ws.send(json.dumps({"type": "input_audio_buffer.commit"}))
        logger.debug("Realtime audio committed")

    async def _receive_final_text(self, ws, on_delta: Optional[DeltaCallback]) -> str:
        aggregated = ""
        async for message in ws:
            if isinstance(message, bytes):
                message = message.decode("utf-8", errors="replace")
            event = self._parser.parse(message)

            if event.kind is StreamEventKind.ERROR:
                raise ServerError(400, event.text)
            if event.kind is StreamEventKind.DELTA:
                if event.text:
                    aggregated += event.text
                    if on_delta is not None:
                        on_delta(aggregated)
            elif event.kind is StreamEventKind.DONE:
                final = (event.text or aggregated).strip()
                if final:
                    return final

        final = aggregated.strip()
        if final:
            return final
        raise NetworkError("Realtime connection closed before a transcript arrived")

    async def _close(self, ws, abnormal: bool) -> None:
        try:
            if abnormal:
                await ws.close(code=1001, reason="going away")
            else:
                await ws.close()
        except Exception as e:
            logger.debug(f"Error closing realtime socket: {e}")
        logger.info(f"Realtime session closed ({'abnormal' if abnormal else 'normal'})")
