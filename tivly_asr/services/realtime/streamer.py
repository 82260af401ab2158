"""Realtime transcription over a duplex WebSocket.

The client streams raw PCM16LE frames (16 kHz, mono) captured from an
``AudioSource`` and receives JSON envelopes back:

- ``partial``: transient text for the phrase being spoken
- ``final``: committed text, appended to the running transcript
- ``done``: the session is finished (reply to ``{"type": "stop"}``)
- ``error``: a server-side problem; the socket stays open

Frames are produced on the audio thread and handed to the event loop with
``call_soon_threadsafe``; a single sender task writes them in capture order.
"""

import asyncio
import json
import logging
from collections.abc import Callable
from typing import Any
from urllib.parse import urlencode

import websockets
from pydantic import ValidationError
from websockets.exceptions import (
    ConnectionClosed,
    ConnectionClosedError,
    WebSocketException,
)

from tivly_asr.core.auth import TokenStore
from tivly_asr.core.config import Settings, get_settings
from tivly_asr.core.exceptions import (
    AuthTokenMissingError,
    RealtimeConnectionError,
    TivlyASRError,
)
from tivly_asr.core.models import RealtimeMessage, RealtimeMessageType
from tivly_asr.core.utils import invoke_callback, parse_json_object
from tivly_asr.services.realtime.capture import AudioSource, CaptureGraph

logger = logging.getLogger(__name__)

STOP_MESSAGE = json.dumps({"type": "stop"})


class RealtimeASRStreamer:
    """Streams live audio to the realtime ASR socket and assembles text.

    Args:
        settings: Optional Settings instance (defaults to get_settings()).
        token_store: Source of the bearer token.
        on_partial / on_final: Called with each partial / final text.
        on_done: Called with the finished transcript.
        on_error: Called with server error messages.
        connect: WebSocket connect coroutine factory (``websockets.connect``).
    """

    def __init__(
        self,
        settings: Settings | None = None,
        token_store: TokenStore | None = None,
        *,
        on_partial: Callable[[str], Any] | None = None,
        on_final: Callable[[str], Any] | None = None,
        on_done: Callable[[str], Any] | None = None,
        on_error: Callable[[str], Any] | None = None,
        connect: Callable[..., Any] | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._token_store = token_store or TokenStore(self._settings)
        self._connect = connect or websockets.connect
        self.on_partial = on_partial
        self.on_final = on_final
        self.on_done = on_done
        self.on_error = on_error

        self._ws = None
        self._graph: CaptureGraph | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._outgoing: asyncio.Queue[bytes | str] | None = None
        self._sender_task: asyncio.Task | None = None
        self._receiver_task: asyncio.Task | None = None
        self._done_event = asyncio.Event()
        self._job_id: str | None = None

        self._is_connected = False
        self._is_connecting = False
        self._partial_text = ""
        self._final_text = ""
        self._error: str | None = None

    # -- observable state --

    @property
    def is_connected(self) -> bool:
        return self._is_connected

    @property
    def is_connecting(self) -> bool:
        return self._is_connecting

    @property
    def partial_text(self) -> str:
        return self._partial_text

    @property
    def final_text(self) -> str:
        return self._final_text

    @property
    def full_transcript(self) -> str:
        """Committed text plus the current partial, joined on demand."""
        if self._partial_text:
            return f"{self._final_text} {self._partial_text}"
        return self._final_text

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def is_capturing(self) -> bool:
        return self._graph is not None and self._graph.is_active

    def _build_url(self, job_id: str) -> str:
        query = urlencode({"meetingId": job_id})
        return f"wss://{self._settings.realtime_host}/asr/realtime?{query}"

    async def _open_socket(self, job_id: str):
        token = self._token_store.get_token()
        if not token:
            raise AuthTokenMissingError()
        url = self._build_url(job_id)
        logger.info("Connecting to realtime ASR: %s", url)
        try:
            return await self._connect(
                url,
                subprotocols=["authorization", token],
                close_timeout=self._settings.realtime_stop_grace_seconds,
            )
        except (OSError, TimeoutError, WebSocketException) as exc:
            logger.debug("Realtime socket open failed: %s", exc)
            raise RealtimeConnectionError() from exc

    # -- connection --

    async def connect(self, job_id: str, source: AudioSource) -> None:
        """Open the socket for ``job_id`` and start streaming ``source``.

        A no-op while a socket is already open or opening. Connection
        failures set ``error`` and are not retried.
        """
        if self._ws is not None or self._is_connecting:
            logger.info("Realtime ASR already connected")
            return

        self._is_connecting = True
        self._error = None
        self._job_id = job_id
        self._done_event = asyncio.Event()

        try:
            ws = await self._open_socket(job_id)
        except TivlyASRError as exc:
            logger.error("Failed to connect realtime ASR: %s", exc.detail)
            self._error = exc.detail
            self._is_connecting = False
            return

        logger.info("Realtime ASR WebSocket connected for job %s", job_id)
        self._ws = ws
        self._is_connected = True
        self._is_connecting = False
        self._loop = asyncio.get_running_loop()
        self._outgoing = asyncio.Queue()
        self._sender_task = asyncio.create_task(self._send_loop(ws, self._outgoing))
        self._receiver_task = asyncio.create_task(self._receive_loop(ws))
        self._start_capture(source)

    async def stop(self) -> None:
        """Finish the session: request ``done``, wait briefly, then close.

        Waits at most ``realtime_stop_grace_seconds`` for the server's
        ``done`` reply and closes the socket whether or not it arrived.
        Safe to call repeatedly or without a connection.
        """
        self._teardown_audio()
        if self._ws is None:
            return

        logger.info("Stopping realtime ASR...")
        # Let frames already handed over by the audio thread reach the queue first
        await asyncio.sleep(0)
        if self._outgoing is not None and self._is_connected:
            self._outgoing.put_nowait(STOP_MESSAGE)
            try:
                await asyncio.wait_for(
                    self._done_event.wait(),
                    timeout=self._settings.realtime_stop_grace_seconds,
                )
            except TimeoutError:
                logger.warning("No done message within grace period, closing anyway")

        await self._close_socket()

    def pause(self) -> None:
        """Stop capturing audio but keep the socket open."""
        self._teardown_audio()
        logger.info("Realtime ASR paused")

    def resume(self, source: AudioSource) -> None:
        """Attach a fresh capture graph to the open socket."""
        if self._ws is None or not self._is_connected:
            return
        self._start_capture(source)
        logger.info("Realtime ASR resumed")

    def reset(self) -> None:
        self._partial_text = ""
        self._final_text = ""
        self._error = None

    async def aclose(self) -> None:
        """Force-close the socket and tear down capture without ``stop``."""
        self._teardown_audio()
        await self._close_socket()

    # -- audio --

    def _start_capture(self, source: AudioSource) -> None:
        self._teardown_audio()
        graph = CaptureGraph(
            source,
            on_frame=self._on_frame,
            target_rate=self._settings.realtime_sample_rate,
        )
        try:
            graph.start()
        except Exception:
            logger.exception("Failed to set up audio capture")
            graph.close()
            return
        self._graph = graph
        logger.info("Audio processing started")

    def _on_frame(self, pcm: bytes) -> None:
        """Hand a frame from the audio thread to the sender task."""
        loop, queue = self._loop, self._outgoing
        if self._ws is None or loop is None or queue is None:
            return
        try:
            loop.call_soon_threadsafe(queue.put_nowait, pcm)
        except RuntimeError:
            # Loop already closed
            pass

    def _teardown_audio(self) -> None:
        graph, self._graph = self._graph, None
        if graph is not None:
            graph.close()

    # -- socket tasks --

    async def _send_loop(self, ws, queue: asyncio.Queue) -> None:
        try:
            while True:
                message = await queue.get()
                await ws.send(message)
        except ConnectionClosed:
            logger.debug("Sender stopped: socket closed")

    async def _receive_loop(self, ws) -> None:
        try:
            async for raw in ws:
                await self._handle_message(raw)
        except ConnectionClosedError as exc:
            logger.error("Realtime ASR WebSocket dropped: %s", exc)
            self._error = "WebSocket connection error"
        except ConnectionClosed as exc:
            logger.info("Realtime ASR WebSocket closed: %s", exc)
        except WebSocketException as exc:
            logger.error("Realtime ASR WebSocket error: %s", exc)
            self._error = "WebSocket connection error"
        finally:
            self._on_closed(ws)

    def _on_closed(self, ws) -> None:
        if self._ws is not ws:
            return
        self._ws = None
        self._is_connected = False
        self._is_connecting = False
        self._teardown_audio()
        sender, self._sender_task = self._sender_task, None
        if sender is not None and not sender.done():
            sender.cancel()

    async def _close_socket(self) -> None:
        ws = self._ws
        receiver, self._receiver_task = self._receiver_task, None
        if ws is not None:
            try:
                await ws.close()
            except (OSError, WebSocketException) as exc:
                logger.debug("Error while closing realtime socket: %s", exc)
            self._on_closed(ws)
        if receiver is not None and not receiver.done():
            receiver.cancel()
            try:
                await receiver
            except asyncio.CancelledError:
                pass
        self._is_connected = False

    # -- incoming messages --

    async def _handle_message(self, raw: str | bytes) -> None:
        payload = parse_json_object(raw)
        if payload is None:
            logger.error("Failed to parse ASR message: %r", raw[:80])
            return
        try:
            msg = RealtimeMessage.model_validate(payload)
        except ValidationError:
            logger.error("Unexpected ASR message: %r", payload)
            return

        preview = (msg.text or msg.transcript or "")[:50]
        logger.debug("ASR message: %s %s", msg.type, preview)

        if msg.type is RealtimeMessageType.partial:
            self._partial_text = msg.text or ""
            await invoke_callback(self.on_partial, self._partial_text)
        elif msg.type is RealtimeMessageType.final:
            text = msg.text or ""
            if text:
                self._final_text = f"{self._final_text} {text}" if self._final_text else text
            self._partial_text = ""
            await invoke_callback(self.on_final, text)
        elif msg.type is RealtimeMessageType.done:
            self._partial_text = ""
            self._done_event.set()
            await invoke_callback(self.on_done, msg.transcript or self._final_text)
        elif msg.type is RealtimeMessageType.error:
            self._error = msg.message or "Unknown error"
            await invoke_callback(self.on_error, self._error)
