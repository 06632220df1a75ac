"""
WebSocket consumer for real-time job change notifications.

Consumers:
    JobFeedConsumer: One connection, any number of job subscriptions

Authentication:
    The JWTAuthMiddleware attaches the user to self.scope["user"].
    Anonymous connections are closed with code 4001.

Channel Groups:
    Each job has a group named "jobfeed.job.<job_id>" (see jobfeed.bus).
    Subscriptions live only as long as the connection; clients re-subscribe
    after reconnecting.

Message Types (from client):
    - subscribe_job: {"type": "subscribe_job", "job_id": "48213"}
    - unsubscribe_job: {"type": "unsubscribe_job", "job_id": "48213"}
    - ping: {"type": "ping"}

Message Types (to client):
    - connected: Sent once after the handshake, carries client_id
    - subscribed / unsubscribed: Acknowledgements
    - pong: Reply to ping
    - job_change: A change event for a subscribed job
    - error: Error response

Close Codes:
    - 4001: Not authenticated
    - 4008: No client message within JOBFEED_LIVENESS_TIMEOUT_SECONDS
"""

from __future__ import annotations

import asyncio
import logging

from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncJsonWebsocketConsumer
from django.contrib.auth.models import AnonymousUser
from django.utils import timezone

from jobfeed.bus import generate_client_id, group_name
from jobfeed.config import get_jobfeed_config
from jobfeed.middleware import JWT_SUBPROTOCOL
from jobfeed.models import JobSnapshot

logger = logging.getLogger(__name__)

CLOSE_UNAUTHENTICATED = 4001
CLOSE_LIVENESS_TIMEOUT = 4008


class JobFeedConsumer(AsyncJsonWebsocketConsumer):
    """
    Attributes:
        client_id: Connection id sent in the connected message
        subscriptions: Job ids this connection is subscribed to
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.client_id: str | None = None
        self.subscriptions: set[str] = set()
        self._last_seen: float = 0.0
        self._liveness_task: asyncio.Task | None = None

    @property
    def liveness_timeout(self) -> float:
        return float(get_jobfeed_config().liveness_timeout_seconds)

    # =========================================================================
    # Connection Lifecycle
    # =========================================================================

    async def connect(self):
        user = self.scope.get("user")

        if not user or isinstance(user, AnonymousUser):
            logger.warning("Rejected unauthenticated job feed connection")
            await self.close(code=CLOSE_UNAUTHENTICATED)
            return

        if JWT_SUBPROTOCOL in self.scope.get("subprotocols", []):
            await self.accept(subprotocol=JWT_SUBPROTOCOL)
        else:
            await self.accept()

        self.client_id = generate_client_id()
        self._touch()
        self._liveness_task = asyncio.create_task(self._watch_liveness())

        logger.info(f"User {user.id} connected to job feed as {self.client_id}")
        await self.send_json(
            {
                "type": "connected",
                "client_id": self.client_id,
                "message": "Real-time updates enabled",
            }
        )

    async def disconnect(self, close_code):
        if self._liveness_task is not None:
            self._liveness_task.cancel()
            self._liveness_task = None

        for job_id in self.subscriptions:
            await self.channel_layer.group_discard(group_name(job_id), self.channel_name)

        if self.client_id:
            logger.info(
                f"Job feed client {self.client_id} disconnected "
                f"(code={close_code}, subscriptions={len(self.subscriptions)})"
            )
        self.subscriptions.clear()

    # =========================================================================
    # Client Messages
    # =========================================================================

    async def receive_json(self, content):
        self._touch()

        message_type = content.get("type") if isinstance(content, dict) else None

        if message_type == "subscribe_job":
            await self._handle_subscribe(content)
        elif message_type == "unsubscribe_job":
            await self._handle_unsubscribe(content)
        elif message_type == "ping":
            await self._handle_ping()
        else:
            await self.send_json(
                {
                    "type": "error",
                    "message": f"Unknown message type: {message_type}",
                }
            )

    async def _handle_subscribe(self, content):
        job_id = self._job_id(content)
        if job_id is None:
            await self._send_missing_job_id()
            return

        await self.channel_layer.group_add(group_name(job_id), self.channel_name)
        self.subscriptions.add(job_id)
        await self._mark_watched([job_id])

        logger.debug(f"Client {self.client_id} subscribed to job {job_id}")
        await self.send_json({"type": "subscribed", "job_id": job_id})

    async def _handle_unsubscribe(self, content):
        job_id = self._job_id(content)
        if job_id is None:
            await self._send_missing_job_id()
            return

        await self.channel_layer.group_discard(group_name(job_id), self.channel_name)
        self.subscriptions.discard(job_id)
        await self.send_json({"type": "unsubscribed", "job_id": job_id})

    async def _handle_ping(self):
        if self.subscriptions:
            await self._mark_watched(sorted(self.subscriptions))
        await self.send_json({"type": "pong", "timestamp": timezone.now().isoformat()})

    @staticmethod
    def _job_id(content) -> str | None:
        job_id = content.get("job_id")
        if job_id in (None, ""):
            return None
        return str(job_id)

    async def _send_missing_job_id(self):
        await self.send_json({"type": "error", "message": "job_id is required"})

    # =========================================================================
    # Channel Layer Events
    # =========================================================================

    async def job_change(self, event):
        """Deliver a published change (group_send type "job.change")."""
        await self.send_json(
            {
                "type": "job_change",
                "job_id": event["job_id"],
                "data": {
                    "kind": event["kind"],
                    "data": event.get("data", {}),
                    "timestamp": event.get("timestamp"),
                },
            }
        )

    # =========================================================================
    # Liveness
    # =========================================================================

    def _touch(self):
        self._last_seen = asyncio.get_running_loop().time()

    async def _watch_liveness(self):
        loop = asyncio.get_running_loop()
        while True:
            remaining = self._last_seen + self.liveness_timeout - loop.time()
            if remaining <= 0:
                logger.info(f"Job feed client {self.client_id} timed out")
                await self.close(code=CLOSE_LIVENESS_TIMEOUT)
                return
            await asyncio.sleep(remaining)

    # =========================================================================
    # Database Operations
    # =========================================================================

    @database_sync_to_async
    def _mark_watched(self, job_ids):
        for job_id in job_ids:
            JobSnapshot.objects.watch(job_id, ttl_minutes=get_jobfeed_config().watch_ttl_minutes)
