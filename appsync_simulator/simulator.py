"""
Simulator coordinator.

Composes the operation server, the realtime subscription server and the
broker around one uvicorn listener and manages their start/stop lifecycle.
The broker and subscription server exist only between start() and stop();
nothing is kept in module-level state.
"""

import asyncio
import socket
from typing import Any

import uvicorn

from .app.factory import create_app
from .auth.validators import AuthValidator, create_auth_validator
from .config import SimulatorConfig, get_config
from .exceptions import PortUnavailableError
from .infrastructure.port_allocator import resolve_port
from .infrastructure.pubsub_broker import InMemoryPubSubBroker
from .operations.operation_server import OperationServer
from .realtime.subscription_filter import SubscriptionFilter
from .realtime.subscription_server import SubscriptionServer
from .schema import SimulatorSchema
from .structured_logging.enhanced_logging_config import get_logger, setup_enhanced_logging

logger = get_logger(__name__)

WILDCARD_HOSTS = frozenset({"0.0.0.0", "::", ""})


def advertised_address(host: str) -> str:
    """
    Address clients on this machine's network should use to reach a listener bound to host.

    For wildcard binds this is the primary local interface address, falling
    back to loopback when the machine has no route.
    """
    if host not in WILDCARD_HOSTS:
        return host
    probe = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        # UDP connect only selects a route; nothing is sent
        probe.connect(("10.255.255.255", 1))
        return probe.getsockname()[0]
    except OSError:
        return "127.0.0.1"
    finally:
        probe.close()


class SimulatorServer:
    """
    Local AppSync-style GraphQL simulator.

    Usage:
        simulator = SimulatorServer(SimulatorSchema.from_sdl(sdl, resolvers))
        await simulator.start()
        print(simulator.url["graphql"])
        ...
        await simulator.stop()
    """

    def __init__(
        self,
        schema: SimulatorSchema,
        config: SimulatorConfig | None = None,
        auth_validator: AuthValidator | None = None,
        subscription_filter: SubscriptionFilter | None = None,
        port: int | None = None,
    ):
        """
        Args:
            schema: Loaded schema with resolver bindings
            config: Simulator configuration (loaded from the environment when omitted)
            auth_validator: Decides realtime and HTTP auth (built from config.auth when omitted)
            subscription_filter: Matches published payloads to subscriptions
            port: Preferred port, overriding config.server.port
        """
        self.config = config or get_config()
        self.schema = schema
        self.auth_validator = auth_validator or create_auth_validator(self.config.auth)
        self.subscription_filter = subscription_filter
        self.requested_port = port if port is not None else self.config.server.port

        self.operation_server = OperationServer(schema, self.auth_validator)
        self.app = create_app(self.operation_server, self.config.server)

        self.broker: InMemoryPubSubBroker | None = None
        self.subscription_server: SubscriptionServer | None = None
        self.port: int | None = None
        self._url: dict[str, str] | None = None
        self._server: uvicorn.Server | None = None
        self._serve_task: asyncio.Task | None = None

    @property
    def url(self) -> dict[str, str]:
        """Base URL of the running simulator; read only after start() has returned."""
        return self._url  # type: ignore[return-value]

    @property
    def running(self) -> bool:
        return self._serve_task is not None and not self._serve_task.done()

    async def start(self) -> None:
        """
        Resolve a port, start the realtime layer and begin listening.

        Raises:
            PortUnavailableError: If the requested port (or the whole default range) is taken
            RuntimeError: If the simulator is already running
        """
        if self._serve_task is not None:
            raise RuntimeError("Simulator is already running")

        setup_enhanced_logging(self.config.to_legacy_dict())
        host = self.config.server.host
        port = resolve_port(self.requested_port, host)

        broker = InMemoryPubSubBroker()
        subscription_server = SubscriptionServer(
            self.schema,
            broker,
            self.auth_validator,
            self.config.realtime,
            self.subscription_filter,
        )
        await subscription_server.start()
        self._attach(broker, subscription_server)

        server = uvicorn.Server(
            uvicorn.Config(
                self.app,
                host=host,
                port=port,
                lifespan="off",
                log_config=None,
                access_log=False,
                timeout_graceful_shutdown=5,
            )
        )
        self._server = server
        self._serve_task = asyncio.create_task(self._serve(server, port), name="simulator-http")

        try:
            await self._wait_until_listening(server, self._serve_task)
        except BaseException:
            await self._shutdown()
            raise

        self.port = port
        self._url = {"graphql": f"http://{advertised_address(host)}:{port}"}
        logger.info(
            "Simulator started",
            url=self._url["graphql"],
            graphql_path=self.config.server.graphql_path,
            realtime_path=self.config.server.realtime_path,
        )

    async def stop(self) -> None:
        """Close every realtime connection, then stop the HTTP listener."""
        if self._serve_task is None:
            logger.debug("Stop requested but simulator is not running")
            return
        await self._shutdown()
        logger.info("Simulator stopped", port=self.port)

    def get_stats(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "port": self.port,
            "operations": self.operation_server.get_stats(),
            "realtime": self.subscription_server.get_stats() if self.subscription_server else None,
            "broker": self.broker.get_stats() if self.broker else None,
        }

    async def _serve(self, server: uvicorn.Server, port: int) -> None:
        try:
            await server.serve()
        except SystemExit as e:
            # uvicorn exits the process when the socket cannot be bound
            raise PortUnavailableError(port) from e

    async def _wait_until_listening(self, server: uvicorn.Server, task: asyncio.Task) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.server.startup_timeout
        while not server.started:
            if task.done():
                task.result()
                raise PortUnavailableError(server.config.port)
            if loop.time() >= deadline:
                raise TimeoutError(f"Listener did not start within {self.config.server.startup_timeout}s")
            await asyncio.sleep(0.01)

    async def _shutdown(self) -> None:
        subscription_server = self.subscription_server
        if subscription_server is not None:
            await subscription_server.stop()

        server, task = self._server, self._serve_task
        if server is not None:
            server.should_exit = True
        if task is not None:
            results = await asyncio.gather(task, return_exceptions=True)
            if isinstance(results[0], Exception):
                logger.debug("Listener task ended with error", error=str(results[0]))

        if self.broker is not None:
            self.broker.clear()
        self._attach(None, None)
        self._server = None
        self._serve_task = None
        self._url = None

    def _attach(self, broker: InMemoryPubSubBroker | None, subscription_server: SubscriptionServer | None) -> None:
        self.broker = broker
        self.subscription_server = subscription_server
        self.operation_server.broker = broker
        self.app.state.broker = broker
        self.app.state.subscription_server = subscription_server
