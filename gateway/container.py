"""
Dependency injection container for the MQTT gateway.

Builds every long-lived service once and owns their shutdown order.

USAGE:
    # In application startup (lifespan.py):
    container = ApplicationContainer()
    await container.initialize()
    app.state.container = container

    # In route dependencies:
    def get_supervisor(request: Request) -> GatewaySupervisor:
        return request.app.state.container.supervisor
"""

from .app.task_registry import TaskRegistry
from .config import get_config
from .config.models import AppConfig
from .infrastructure.broker_store import BrokerStore, InMemoryBrokerStore
from .realtime.broker_connection import ProbeFunction, SessionFactory
from .realtime.gateway_supervisor import GatewaySupervisor
from .realtime.message_buffer import MessageBuffer
from .realtime.session_router import SessionRouter
from .structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)


class ApplicationContainer:
    """Holds the configured services for one application instance."""

    def __init__(
        self,
        config: AppConfig | None = None,
        store: BrokerStore | None = None,
        session_factory: SessionFactory | None = None,
        probe: ProbeFunction | None = None,
    ):
        self.config = config or get_config()
        self.store: BrokerStore = store if store is not None else InMemoryBrokerStore()
        self._session_factory = session_factory
        self._probe = probe

        self.task_registry: TaskRegistry | None = None
        self.router: SessionRouter | None = None
        self.message_buffer: MessageBuffer | None = None
        self.supervisor: GatewaySupervisor | None = None
        self._initialized = False

    async def initialize(self) -> None:
        if self._initialized:
            return
        self.task_registry = TaskRegistry()
        self.router = SessionRouter(
            max_sessions_per_user=self.config.session.max_sessions_per_user,
            grace_period=self.config.session.grace_period,
        )
        self.message_buffer = MessageBuffer(self.config.mqtt.message_buffer_size)
        self.supervisor = GatewaySupervisor(
            self.store,
            self.router,
            self.config.mqtt,
            self.task_registry,
            message_buffer=self.message_buffer,
            admin_role=self.config.auth.admin_role,
            session_factory=self._session_factory,
            probe=self._probe,
        )
        self._initialized = True
        logger.info(
            "Application container initialized",
            max_sessions_per_user=self.config.session.max_sessions_per_user,
            grace_period=self.config.session.grace_period,
            max_retries=self.config.mqtt.max_retries,
        )

    async def shutdown(self, timeout: float = 5.0) -> None:
        """Close sessions and broker connections, then cancel tracked tasks."""
        if not self._initialized:
            return
        assert self.supervisor is not None and self.task_registry is not None
        self.supervisor.shutdown()
        await self.task_registry.shutdown_all(timeout)
        self._initialized = False
        logger.info("Application container shut down")
