"""
Routing of gateway events to each user's live real-time sessions.

Maps user_id to that user's sessions in join order, enforces the per-user
session cap by evicting the oldest session, and defers teardown of a user's
broker connections through the disconnect grace period.
"""

from collections import OrderedDict
from collections.abc import Awaitable, Callable
from typing import Any

from ..structured_logging.enhanced_logging_config import get_logger
from .disconnect_grace_period import cancel_grace_period, is_user_in_grace_period, start_grace_period
from .envelope import build_event
from .realtime_session import RealtimeSession

logger = get_logger(__name__)

# Application close code sent to a session evicted by the session cap
SESSION_EVICTED_CLOSE_CODE = 4000

GraceExpiredCallback = Callable[[str], Awaitable[None] | None]


class SessionRouter:
    """
    Session table for the whole process.

    join/leave/emit are synchronous so the table is never observed half
    updated across an await.
    """

    def __init__(
        self,
        max_sessions_per_user: int = 5,
        grace_period: float = 10.0,
        on_grace_expired: GraceExpiredCallback | None = None,
    ):
        self.max_sessions_per_user = max_sessions_per_user
        self.grace_period = grace_period
        self.on_grace_expired = on_grace_expired
        self.user_sessions: dict[str, OrderedDict[str, RealtimeSession]] = {}
        self.session_owners: dict[str, str] = {}
        self.grace_period_users: dict[str, Any] = {}

    def join(self, session: RealtimeSession) -> list[RealtimeSession]:
        """
        Admit a session, evicting the user's oldest sessions beyond the cap.

        Returns:
            list: Sessions evicted to make room, oldest first
        """
        user_id = session.user_id
        cancel_grace_period(user_id, self)

        sessions = self.user_sessions.setdefault(user_id, OrderedDict())
        evicted: list[RealtimeSession] = []
        while len(sessions) >= self.max_sessions_per_user:
            _, oldest = sessions.popitem(last=False)
            self.session_owners.pop(oldest.session_id, None)
            evicted.append(oldest)

        sessions[session.session_id] = session
        self.session_owners[session.session_id] = user_id

        for old in evicted:
            logger.info(
                "Evicting oldest session over cap",
                user_id=user_id,
                evicted_session_id=old.session_id,
                max_sessions=self.max_sessions_per_user,
            )
            old.send(
                build_event(
                    "session_evicted",
                    {"reason": "session_limit", "max_sessions": self.max_sessions_per_user},
                    user_id=user_id,
                )
            )
            old.close(SESSION_EVICTED_CLOSE_CODE, "Session limit reached")

        logger.info("Session joined", user_id=user_id, session_id=session.session_id, sessions=len(sessions))
        return evicted

    def leave(self, session_id: str) -> bool:
        """
        Remove a session after its transport disconnected.

        Leaving the last session starts the user's grace period.

        Returns:
            bool: False for unknown (or already evicted) sessions
        """
        user_id = self.session_owners.pop(session_id, None)
        if user_id is None:
            return False

        sessions = self.user_sessions.get(user_id)
        if sessions is not None:
            sessions.pop(session_id, None)
            if not sessions:
                del self.user_sessions[user_id]
                start_grace_period(user_id, self, self.grace_period)

        logger.info("Session left", user_id=user_id, session_id=session_id)
        return True

    def emit(self, user_id: str, event_type: str, data: dict[str, Any]) -> int:
        """
        Broadcast an event to every live session of one user.

        Returns:
            int: Number of sessions the event was queued for
        """
        sessions = self.user_sessions.get(user_id)
        if not sessions:
            logger.debug("No live sessions for event", user_id=user_id, event_type=event_type)
            return 0
        event = build_event(event_type, data, user_id=user_id)
        for session in sessions.values():
            session.send(event)
        return len(sessions)

    def emit_to_session(self, session_id: str, event_type: str, data: dict[str, Any]) -> bool:
        session = self.get_session(session_id)
        if session is None:
            return False
        session.send(build_event(event_type, data, user_id=session.user_id))
        return True

    def get_session(self, session_id: str) -> RealtimeSession | None:
        user_id = self.session_owners.get(session_id)
        if user_id is None:
            return None
        return self.user_sessions.get(user_id, {}).get(session_id)

    def sessions_for(self, user_id: str) -> list[RealtimeSession]:
        return list(self.user_sessions.get(user_id, {}).values())

    def is_live(self, user_id: str) -> bool:
        return bool(self.user_sessions.get(user_id))

    def in_grace_period(self, user_id: str) -> bool:
        return is_user_in_grace_period(user_id, self)

    def close_user_sessions(self, user_id: str, code: int = 1000, reason: str = "") -> int:
        """
        Close every session of a user without starting a grace period.

        Used for logout, where teardown happens immediately.
        """
        cancel_grace_period(user_id, self)
        sessions = self.user_sessions.pop(user_id, OrderedDict())
        for session_id, session in sessions.items():
            self.session_owners.pop(session_id, None)
            session.close(code, reason)
        if sessions:
            logger.info("Closed user sessions", user_id=user_id, count=len(sessions))
        return len(sessions)

    def shutdown(self) -> None:
        for user_id in list(self.grace_period_users):
            cancel_grace_period(user_id, self)
        for user_id in list(self.user_sessions):
            self.close_user_sessions(user_id, 1001, "Server shutting down")

    def get_stats(self) -> dict[str, Any]:
        return {
            "users": len(self.user_sessions),
            "sessions": len(self.session_owners),
            "users_in_grace_period": len(self.grace_period_users),
        }
