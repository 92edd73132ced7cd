"""Realtime version-update broadcaster"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional
from skew_protection.models.schemas import RealtimeMessage

logger = logging.getLogger(__name__)

SendFunction = Callable[[str], Awaitable[None]]


@dataclass
class RealtimeSession:
    id: str
    client_version: str
    send: SendFunction
    connected_at: float = field(default_factory=time.time)
    last_ping: Optional[float] = None
    heartbeat: Optional[asyncio.Task] = None


class VersionBroadcaster:
    """
    Holds live client sessions and pushes version changes to them.

    All mutation happens on one event loop. Broadcast walks a snapshot of
    the registry, so a slow or failing session never blocks the others; a
    session whose send fails is dropped together with its heartbeat.
    """

    def __init__(self, current_version: str = "", heartbeat_interval: float = 30.0):
        self.current_version = current_version
        self.heartbeat_interval = heartbeat_interval
        self._sessions: Dict[str, RealtimeSession] = {}

    def session_count(self) -> int:
        return len(self._sessions)

    def has_session(self, session_id: str) -> bool:
        return session_id in self._sessions

    def sessions(self) -> List[dict]:
        """Diagnostics view of connected clients"""
        return [
            {"id": s.id, "version": s.client_version, "connectedAt": int(s.connected_at * 1000)}
            for s in list(self._sessions.values())
        ]

    async def connect(self, send: SendFunction, client_version: str) -> Optional[str]:
        """
        Register a session and run the handshake.

        Sends `connected` and, when the client is already behind, an immediate
        `version-update`. Returns None if the handshake could not be delivered.
        """
        session = RealtimeSession(id=str(uuid.uuid4()), client_version=client_version, send=send)
        self._sessions[session.id] = session
        logger.info(f"Realtime client connected ({session.id}). Total connections: {len(self._sessions)}")

        if not await self._send(session, RealtimeMessage(type="connected", version=self.current_version)):
            return None
        if self.current_version and client_version != self.current_version:
            logger.info(f"Client {session.id} is outdated ({client_version} vs {self.current_version})")
            if not await self._send(session, RealtimeMessage(type="version-update", version=self.current_version)):
                return None

        if self.heartbeat_interval > 0:
            session.heartbeat = asyncio.create_task(self._heartbeat(session))
        return session.id

    def disconnect(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return
        if session.heartbeat and session.heartbeat is not asyncio.current_task():
            session.heartbeat.cancel()
        logger.info(f"Realtime client disconnected ({session_id}). Total connections: {len(self._sessions)}")

    async def pong(self, session_id: str) -> bool:
        session = self._sessions.get(session_id)
        if session is None:
            return False
        session.last_ping = time.time()
        return await self._send(session, RealtimeMessage(type="pong"))

    async def broadcast(self, version: str) -> int:
        """Send `version-update` to every live session; returns how many received it"""
        message = RealtimeMessage(type="version-update", version=version)
        snapshot = list(self._sessions.values())
        results = await asyncio.gather(*(self._send(s, message) for s in snapshot))
        delivered = sum(1 for ok in results if ok)
        logger.info(f"Broadcasted version update ({version}) to {delivered} clients")
        return delivered

    async def publish(self, version: str) -> int:
        """A new version went live: remember it and tell everyone"""
        self.current_version = version
        return await self.broadcast(version)

    async def shutdown(self) -> None:
        for session_id in list(self._sessions):
            self.disconnect(session_id)

    async def _send(self, session: RealtimeSession, message: RealtimeMessage) -> bool:
        try:
            await session.send(message.to_wire())
            return True
        except Exception as e:
            logger.warning(f"Error sending to session {session.id}: {e!r}")
            self.disconnect(session.id)
            return False

    async def _heartbeat(self, session: RealtimeSession) -> None:
        while session.id in self._sessions:
            await asyncio.sleep(self.heartbeat_interval)
            if session.id not in self._sessions:
                break
            if not await self._send(session, RealtimeMessage(type="keepalive")):
                break


class VersionWatcher:
    """Polls the manifest and publishes `current` changes to the broadcaster"""

    def __init__(self, load_current: Callable[[], Awaitable[str]], broadcaster: VersionBroadcaster,
                 interval: float = 10.0):
        self.load_current = load_current
        self.broadcaster = broadcaster
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    async def check(self) -> bool:
        """Publish if `current` moved; returns whether it did"""
        try:
            current = await self.load_current()
        except Exception as e:
            logger.warning(f"Version watcher failed to read current version: {e}")
            return False
        if current and current != self.broadcaster.current_version:
            logger.info(f"New version detected: {current} (was {self.broadcaster.current_version or 'none'})")
            await self.broadcaster.publish(current)
            return True
        return False

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            await self.check()

    def start(self) -> None:
        if self._task is None and self.interval > 0:
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
