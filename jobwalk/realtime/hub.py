from __future__ import annotations

import asyncio
import hmac
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set
from uuid import uuid4

from fastapi import WebSocket, WebSocketDisconnect

from jobwalk.core.config import settings
from jobwalk.core.errors import ValidationFailure
from jobwalk.core.logging import get_logger, log_with_context

logger = get_logger(__name__)

# close code for a rejected handshake (policy violation)
WS_POLICY_VIOLATION = 1008
WS_GOING_AWAY = 1001


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class HubClient:
    id: str
    websocket: WebSocket
    subscribed_jobs: Set[int] = field(default_factory=set)
    is_alive: bool = True

    def wants(self, job_id: Optional[int]) -> bool:
        # untagged events and unfiltered clients: always
        if job_id is None or not self.subscribed_jobs:
            return True
        return job_id in self.subscribed_jobs


class NotificationHub:
    """
    In-memory registry of authenticated websocket clients.

    connect / disconnect / broadcast are the only ways the registry changes or
    is read, and all of them go through one asyncio.Lock. Delivery is
    best-effort and at-most-once; nothing is queued for absent clients.
    """

    def __init__(
        self,
        api_key: str,
        *,
        heartbeat_sec: float = 30.0,
        max_frame_bytes: int = 10240,
        max_subscriptions: int = 100,
    ) -> None:
        self.api_key = api_key
        self.heartbeat_sec = heartbeat_sec
        self.max_frame_bytes = max_frame_bytes
        self.max_subscriptions = max_subscriptions

        self._clients: Dict[str, HubClient] = {}
        self._lock = asyncio.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._pending: Set[asyncio.Task] = set()

    # ---------------------------
    # lifecycle
    # ---------------------------
    async def start(self) -> None:
        self._loop = asyncio.get_running_loop()
        if self._heartbeat_task is None:
            self._heartbeat_task = asyncio.create_task(self._heartbeat_loop(), name="hub-heartbeat")
        logger.info("Notification hub started")

    async def stop(self) -> None:
        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
            try:
                await self._heartbeat_task
            except asyncio.CancelledError:
                pass
            self._heartbeat_task = None

        async with self._lock:
            clients = list(self._clients.values())
            self._clients.clear()
        for c in clients:
            await self._close(c, WS_GOING_AWAY)
        self._loop = None
        logger.info("Notification hub stopped")

    @property
    def client_count(self) -> int:
        return len(self._clients)

    # ---------------------------
    # connections
    # ---------------------------
    def check_token(self, token: Optional[str]) -> bool:
        if not self.api_key or not token:
            return False
        return hmac.compare_digest(token.encode("utf-8"), self.api_key.encode("utf-8"))

    async def connect(self, websocket: WebSocket) -> Optional[HubClient]:
        """Authenticate before accept; a bad token never gets an open socket."""
        if not self.check_token(websocket.query_params.get("token")):
            logger.warning("Rejected websocket handshake: invalid token")
            await websocket.close(code=WS_POLICY_VIOLATION)
            return None

        await websocket.accept()
        client = HubClient(id=str(uuid4()), websocket=websocket)
        async with self._lock:
            self._clients[client.id] = client

        log_with_context(logger, logging.INFO, "Websocket client connected", client_id=client.id)
        await self._send(client, {"type": "connected", "clientId": client.id, "timestamp": _now_iso()})
        return client

    async def disconnect(self, client_id: str) -> None:
        async with self._lock:
            removed = self._clients.pop(client_id, None)
        if removed is not None:
            log_with_context(logger, logging.INFO, "Websocket client disconnected", client_id=client_id)

    async def serve(self, websocket: WebSocket) -> None:
        client = await self.connect(websocket)
        if client is None:
            return
        try:
            while True:
                frame = await websocket.receive()
                if frame["type"] == "websocket.disconnect":
                    break
                if frame.get("text") is not None:
                    await self.handle_message(client, frame["text"])
                else:
                    await self.handle_binary(client, frame.get("bytes") or b"")
        except WebSocketDisconnect:
            pass
        finally:
            await self.disconnect(client.id)

    # ---------------------------
    # inbound
    # ---------------------------
    def parse_subscription(self, job_ids: Any) -> List[int]:
        if not isinstance(job_ids, list):
            raise ValidationFailure("jobIds must be an array")
        valid = [j for j in job_ids if isinstance(j, int) and not isinstance(j, bool) and j > 0]
        return valid[: self.max_subscriptions]

    def decode_frame(self, raw: str) -> Dict[str, Any]:
        # size check first, so oversized frames are never parsed
        if len(raw.encode("utf-8")) > self.max_frame_bytes:
            raise ValidationFailure("Message too large")
        try:
            msg = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValidationFailure("Invalid message format") from e
        if not isinstance(msg, dict):
            raise ValidationFailure("Invalid message format")
        return msg

    async def handle_binary(self, client: HubClient, data: bytes) -> None:
        """The protocol is JSON text only; binary frames get an error reply."""
        client.is_alive = True
        reason = "Message too large" if len(data) > self.max_frame_bytes else "Invalid message format"
        await self._send(client, {"type": "error", "message": reason})

    async def handle_message(self, client: HubClient, raw: str) -> None:
        """One inbound frame. A bad frame gets an error reply; the socket stays open."""
        client.is_alive = True
        try:
            msg = self.decode_frame(raw)
            kind = msg.get("type")
            if kind == "ping":
                await self._send(client, {"type": "pong", "timestamp": _now_iso()})
            elif kind == "pong":
                return
            elif kind == "subscribe":
                jobs = self.parse_subscription(msg.get("jobIds"))
                client.subscribed_jobs = set(jobs)
                await self._send(client, {"type": "subscribed", "jobs": jobs})
            else:
                raise ValidationFailure(f"Unknown message type: {kind!r}")
        except ValidationFailure as e:
            await self._send(client, {"type": "error", "message": str(e)})

    # ---------------------------
    # outbound
    # ---------------------------
    async def _send(self, client: HubClient, event: Dict[str, Any]) -> None:
        await client.websocket.send_text(json.dumps(event, default=str))

    async def _close(self, client: HubClient, code: int) -> None:
        try:
            await client.websocket.close(code=code)
        except (RuntimeError, OSError) as e:
            log_with_context(logger, logging.DEBUG, "Close on dead socket", client_id=client.id, error=str(e))

    async def broadcast(self, event: Dict[str, Any], job_id: Optional[int] = None) -> int:
        """
        Deliver to every client whose filter accepts job_id. Returns the number
        of clients the event was written to; clients that fail are dropped.
        """
        async with self._lock:
            targets = [c for c in self._clients.values() if c.wants(job_id)]

        sent = 0
        for c in targets:
            try:
                await self._send(c, event)
                sent += 1
            except Exception as e:  # noqa: BLE001 - one broken socket must not stop the fan-out
                log_with_context(logger, logging.WARNING, "Broadcast send failed", client_id=c.id, error=str(e))
                await self.disconnect(c.id)
        return sent

    def publish(self, event: Dict[str, Any], job_id: Optional[int] = None) -> None:
        """
        Fire-and-forget broadcast, callable from any thread (pipeline runs live
        in worker threads). A no-op when the hub is not running.
        """
        loop = self._loop
        if loop is None or loop.is_closed():
            logger.debug(f"Hub not running, dropping {event.get('type')} event")
            return

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is loop:
            task = loop.create_task(self.broadcast(event, job_id))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
        else:
            asyncio.run_coroutine_threadsafe(self.broadcast(event, job_id), loop)

    # ---------------------------
    # liveness
    # ---------------------------
    async def heartbeat_once(self) -> int:
        """
        Close clients that never answered the previous heartbeat, then ping the
        rest. Returns how many were reaped.
        """
        async with self._lock:
            clients = list(self._clients.values())

        reaped = 0
        for c in clients:
            if not c.is_alive:
                await self.disconnect(c.id)
                await self._close(c, WS_GOING_AWAY)
                reaped += 1
                continue
            c.is_alive = False
            try:
                await self._send(c, {"type": "ping", "timestamp": _now_iso()})
            except Exception as e:  # noqa: BLE001
                log_with_context(logger, logging.WARNING, "Heartbeat send failed", client_id=c.id, error=str(e))
                await self.disconnect(c.id)
                reaped += 1
        return reaped

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_sec)
            reaped = await self.heartbeat_once()
            if reaped:
                logger.info(f"Heartbeat reaped {reaped} stale websocket client(s)")


hub = NotificationHub(
    settings.api_key,
    heartbeat_sec=settings.ws_heartbeat_sec,
    max_frame_bytes=settings.ws_max_frame_bytes,
    max_subscriptions=settings.ws_max_subscriptions,
)
