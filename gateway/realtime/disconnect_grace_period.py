"""
Disconnect grace period for users whose last session went away.

A browser refresh drops the socket for a moment; tearing down the user's MQTT
connections on every refresh would make them flap. The router therefore
waits for a grace window and only asks for teardown if nobody rejoined.
"""

import asyncio
import inspect
from typing import Any

from ..structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)

GRACE_PERIOD_DURATION = 10.0


def start_grace_period(user_id: str, router: Any, duration: float | None = None) -> bool:
    """
    Start a grace period for a user with no live sessions.

    Args:
        user_id: The user whose last session left
        router: SessionRouter owning `grace_period_users` and `on_grace_expired`
        duration: Seconds to wait, defaults to the router's configured grace period

    Returns:
        bool: False if the user was already in a grace period
    """
    if user_id in router.grace_period_users:
        logger.debug("User already in grace period", user_id=user_id)
        return False

    wait = duration if duration is not None else getattr(router, "grace_period", GRACE_PERIOD_DURATION)
    logger.info("Starting grace period for user", user_id=user_id, duration=wait)

    async def grace_period_task() -> None:
        try:
            await asyncio.sleep(wait)

            if router.grace_period_users.get(user_id) is not task:
                logger.debug("Grace period superseded (user reconnected)", user_id=user_id)
                return
            # Leave tracking before teardown so a rejoin during teardown starts clean
            del router.grace_period_users[user_id]

            logger.info("Grace period expired, tearing down user connections", user_id=user_id)
            callback = router.on_grace_expired
            if callback is not None:
                result = callback(user_id)
                if inspect.isawaitable(result):
                    await result
        except asyncio.CancelledError:
            logger.debug("Grace period task cancelled", user_id=user_id)
            raise
        except Exception as e:  # pylint: disable=broad-exception-caught  # Reason: teardown failures are logged
            logger.error("Error in grace period task", user_id=user_id, error=str(e), exc_info=True)
        finally:
            if router.grace_period_users.get(user_id) is task:
                del router.grace_period_users[user_id]

    task = asyncio.create_task(grace_period_task(), name=f"grace_period:{user_id}")
    router.grace_period_users[user_id] = task
    return True


def cancel_grace_period(user_id: str, router: Any) -> bool:
    """
    Cancel a pending grace period (e.g. on reconnection).

    Returns:
        bool: True if a grace period was pending
    """
    task = router.grace_period_users.pop(user_id, None)
    if task is None:
        return False
    logger.info("Cancelling grace period for user", user_id=user_id)
    task.cancel()
    return True


def is_user_in_grace_period(user_id: str, router: Any) -> bool:
    return user_id in getattr(router, "grace_period_users", {})
