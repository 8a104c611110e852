"""
In-process registry of authenticated realtime connections.

Each connection moves unauthenticated -> authenticated -> (refreshed)* ->
terminated. The registry is owned by one application instance and is not
shared across processes; scaling out needs sticky sessions or an external
store.
"""

from __future__ import annotations

import asyncio
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable

from ridefleet.core.errors import AuthError
from ridefleet.core.logging import get_logger

log = get_logger(__name__)

Notify = Callable[[str, dict], Awaitable[None]]

TOKEN_REFRESH_REQUIRED = "token_refresh_required"


@dataclass(frozen=True)
class SocketUser:
    user_id: str
    profile_id: str | None
    roles: list[str]
    permissions: list[str]


@dataclass
class SocketSessionState:
    connection_id: str
    payload: dict
    user: SocketUser
    expires_at: float
    last_activity: float
    notify: Notify | None = None
    warning_handle: asyncio.TimerHandle | None = field(default=None, repr=False)


class SocketSessionTracker:
    def __init__(
        self,
        decode_token: Callable[[str], dict],
        expiry_warning_seconds: int = 120,
        sweep_interval_seconds: int = 60,
        notify_timeout_seconds: float = 5.0,
        clock: Callable[[], float] = time.time,
    ):
        self.decode_token = decode_token
        self.expiry_warning_seconds = expiry_warning_seconds
        self.sweep_interval_seconds = sweep_interval_seconds
        self.notify_timeout_seconds = notify_timeout_seconds
        self.clock = clock
        self._sessions: dict[str, SocketSessionState] = {}
        self._lock = threading.Lock()
        self._sweep_task: asyncio.Task | None = None
        self._warning_tasks: set[asyncio.Task] = set()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, connection_id: str) -> bool:
        with self._lock:
            return connection_id in self._sessions

    async def start(self) -> None:
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.get_running_loop().create_task(self._sweep_loop())

    async def stop(self) -> None:
        task, self._sweep_task = self._sweep_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        with self._lock:
            states = list(self._sessions.values())
            self._sessions.clear()
        for state in states:
            _cancel(state.warning_handle)
        for pending in list(self._warning_tasks):
            pending.cancel()

    def _parse(self, connection_id: str, token: str | None) -> dict | None:
        if not token:
            log.info("socket_auth_rejected", connection_id=connection_id, reason="token_missing")
            return None
        try:
            payload = self.decode_token(token)
        except AuthError as exc:
            log.info("socket_auth_rejected", connection_id=connection_id, reason=getattr(exc, "reason", exc.kind.value))
            return None
        if not payload.get("sub") or not isinstance(payload.get("exp"), (int, float)):
            log.info("socket_auth_rejected", connection_id=connection_id, reason="claims_missing")
            return None
        return payload

    def authenticate(self, connection_id: str, token: str | None, notify: Notify | None = None) -> bool:
        payload = self._parse(connection_id, token)
        if payload is None:
            return False
        now = self.clock()
        state = SocketSessionState(
            connection_id=connection_id,
            payload=payload,
            user=_user_from_payload(payload),
            expires_at=float(payload["exp"]),
            last_activity=now,
            notify=notify,
        )
        with self._lock:
            previous = self._sessions.get(connection_id)
            self._sessions[connection_id] = state
        if previous is not None:
            _cancel(previous.warning_handle)
        self._schedule_warning(state)
        log.info("socket_authenticated", connection_id=connection_id, user_id=state.user.user_id)
        return True

    def refresh(self, connection_id: str, token: str | None, notify: Notify | None = None) -> bool:
        """Swap in a new token for the same subject. A mismatch leaves state untouched."""
        payload = self._parse(connection_id, token)
        if payload is None:
            return False
        now = self.clock()
        with self._lock:
            existing = self._sessions.get(connection_id)
            if existing is None:
                log.info("socket_refresh_rejected", connection_id=connection_id, reason="not_tracked")
                return False
            if payload["sub"] != existing.user.user_id:
                log.warning("socket_refresh_rejected", connection_id=connection_id, reason="subject_mismatch")
                return False
            state = SocketSessionState(
                connection_id=connection_id,
                payload=payload,
                user=_user_from_payload(payload),
                expires_at=float(payload["exp"]),
                last_activity=now,
                notify=notify or existing.notify,
            )
            self._sessions[connection_id] = state
        _cancel(existing.warning_handle)
        self._schedule_warning(state)
        log.info("socket_token_refreshed", connection_id=connection_id, user_id=state.user.user_id)
        return True

    def is_authenticated(self, connection_id: str) -> bool:
        now = self.clock()
        with self._lock:
            state = self._sessions.get(connection_id)
            if state is None:
                return False
            if now >= state.expires_at:
                return False
            state.last_activity = now
            return True

    def get_user(self, connection_id: str) -> SocketUser | None:
        if not self.is_authenticated(connection_id):
            return None
        with self._lock:
            state = self._sessions.get(connection_id)
            return state.user if state else None

    def disconnect(self, connection_id: str) -> None:
        with self._lock:
            state = self._sessions.pop(connection_id, None)
        if state is not None:
            _cancel(state.warning_handle)
            log.info("socket_disconnected", connection_id=connection_id, user_id=state.user.user_id)

    def sweep(self) -> int:
        now = self.clock()
        with self._lock:
            expired = [cid for cid, s in self._sessions.items() if now >= s.expires_at]
            removed = [self._sessions.pop(cid) for cid in expired]
        for state in removed:
            _cancel(state.warning_handle)
        if removed:
            log.info("socket_swept", count=len(removed))
        return len(removed)

    def stats(self) -> dict:
        now = self.clock()
        expiring_soon = 0
        expired = 0
        with self._lock:
            total = len(self._sessions)
            for state in self._sessions.values():
                remaining = state.expires_at - now
                if remaining <= 0:
                    expired += 1
                elif remaining <= self.expiry_warning_seconds:
                    expiring_soon += 1
        return {"total": total, "expiring_soon": expiring_soon, "expired": expired}

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_seconds)
            try:
                self.sweep()
            except Exception:
                log.error("socket_sweep_failed", exc_info=True)

    def _schedule_warning(self, state: SocketSessionState) -> None:
        if state.notify is None:
            return
        delay = state.expires_at - self.clock() - self.expiry_warning_seconds
        if delay <= 0:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        state.warning_handle = loop.call_later(delay, self._spawn_warning, loop, state.connection_id, state.expires_at)

    def _spawn_warning(self, loop: asyncio.AbstractEventLoop, connection_id: str, expires_at: float) -> None:
        # The loop keeps only weak references to tasks.
        task = loop.create_task(self._send_warning(connection_id, expires_at))
        self._warning_tasks.add(task)
        task.add_done_callback(self._warning_tasks.discard)

    async def _send_warning(self, connection_id: str, expires_at: float) -> None:
        with self._lock:
            state = self._sessions.get(connection_id)
        # Replaced or removed since scheduling.
        if state is None or state.expires_at != expires_at or state.notify is None:
            return
        data = {
            "expiresAt": datetime.fromtimestamp(expires_at, tz=timezone.utc).isoformat(),
            "expiresIn": max(0, int(expires_at - self.clock())),
        }
        try:
            await asyncio.wait_for(state.notify(TOKEN_REFRESH_REQUIRED, data), timeout=self.notify_timeout_seconds)
        except Exception:
            log.warning("socket_warning_failed", connection_id=connection_id, exc_info=True)

    @staticmethod
    def extract_token(query_token: str | None = None, authorization: str | None = None) -> str | None:
        if query_token:
            return query_token.strip() or None
        if authorization:
            scheme, _, value = authorization.partition(" ")
            if scheme.lower() == "bearer" and value.strip():
                return value.strip()
        return None


def _user_from_payload(payload: dict) -> SocketUser:
    return SocketUser(
        user_id=str(payload["sub"]),
        profile_id=payload.get("profileId"),
        roles=list(payload.get("roles") or []),
        permissions=list(payload.get("permissions") or []),
    )


def _cancel(handle: asyncio.TimerHandle | None) -> None:
    if handle is not None:
        handle.cancel()
