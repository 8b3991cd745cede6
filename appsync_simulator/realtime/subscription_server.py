"""
Realtime subscription server.

Owns the connection table, drives each connection's protocol state machine,
registers subscriptions in the broker and turns broker events into "data"
frames.

Concurrency model: everything runs on one asyncio event loop. Every
mutation of the connection table, a connection's subscriptions or the broker
happens synchronously inside dispatch(), close_connection() or a timer
callback, so no other coroutine can observe a half-updated registry. The
only awaits are in the per-connection sender task (socket writes and
rendering of data payloads) and the keepalive task (sleeping).
"""

import asyncio
import inspect
import time
import uuid
from collections.abc import Mapping
from typing import Any

from graphql import OperationType, execute

from ..auth.validators import AuthValidator, normalize_auth
from ..config.models import RealtimeConfig
from ..error_types import ErrorMessages, ErrorType
from ..exceptions import (
    AuthRejectedError,
    DeliveryFailureError,
    ErrorContext,
    ExecutionError,
    InitTimeoutError,
    KeepAliveTimeoutError,
    ProtocolError,
    SimulatorError,
    SubscriptionIdConflictError,
    create_error_context,
)
from ..infrastructure.message_broker import BrokerEvent, PubSubBroker, SubscriberRef
from ..schema import SimulatorSchema, format_graphql_error
from ..structured_logging.enhanced_logging_config import get_logger, log_exception_once
from . import protocol
from .connection_models import (
    CloseRequest,
    Connection,
    OutboxItem,
    PendingDelivery,
    RealtimeTransport,
    Subscription,
    SubscriptionStatus,
)
from .connection_state_machine import ConnectionState, ConnectionStateMachine
from .subscription_filter import ArgumentEqualityFilter, SubscriptionFilter

logger = get_logger(__name__)


class SubscriptionServer:
    """
    Runs the realtime protocol for every connected WebSocket client.

    Per-connection lifecycle:
        open_connection()   -> AWAITING_INIT, init timer armed, sender task started
        connection_init     -> CONNECTED (ack) or CLOSED (connection_error)
        start / subscribe   -> subscription registered in the broker, start_ack
        stop / complete     -> subscription removed (if present), complete
        close_connection()  -> CLOSED, timers cancelled, subscriptions removed
    """

    def __init__(
        self,
        schema: SimulatorSchema,
        broker: PubSubBroker,
        auth_validator: AuthValidator,
        config: RealtimeConfig | None = None,
        subscription_filter: SubscriptionFilter | None = None,
    ):
        self.schema = schema
        self.broker = broker
        self.auth_validator = auth_validator
        self.config = config or RealtimeConfig()
        self.subscription_filter = subscription_filter or ArgumentEqualityFilter()
        self.connections: dict[str, Connection] = {}
        self.running = False
        self._sender_tasks: set[asyncio.Task] = set()
        self._total_connections = 0
        self._delivery_failures = 0

    async def start(self) -> None:
        self.running = True
        logger.info(
            "Subscription server started",
            init_timeout=self.config.init_timeout,
            keepalive_interval=self.config.keepalive_interval,
            keepalive_grace=self.config.keepalive_grace,
        )

    async def stop(self, timeout: float = 5.0) -> None:
        """
        Close every live connection and wait for their outboxes to flush.

        Args:
            timeout: Seconds to wait for sender tasks before cancelling them
        """
        self.running = False
        connection_ids = list(self.connections)
        for connection_id in connection_ids:
            self.close_connection(connection_id, protocol.CLOSE_GOING_AWAY, "server_shutdown")

        pending = [task for task in self._sender_tasks if not task.done()]
        if pending:
            _, still_running = await asyncio.wait(pending, timeout=timeout)
            for task in still_running:
                task.cancel()
            if still_running:
                await asyncio.gather(*still_running, return_exceptions=True)
                logger.warning("Cancelled sender tasks that did not finish in time", count=len(still_running))

        logger.info("Subscription server stopped", closed_connections=len(connection_ids))

    def open_connection(
        self,
        transport: RealtimeTransport,
        handshake_auth: Mapping[str, Any] | None = None,
        connection_id: str | None = None,
    ) -> Connection:
        """
        Register a freshly upgraded WebSocket in the AWAITING_INIT state.

        Args:
            transport: Socket adapter used for every outbound frame
            handshake_auth: Auth material carried on the upgrade request
            connection_id: Explicit id (generated when omitted)

        Raises:
            RuntimeError: If the server is not running
        """
        if not self.running:
            raise RuntimeError("Subscription server is not running")

        connection_id = connection_id or str(uuid.uuid4())
        connection = Connection(
            id=connection_id,
            transport=transport,
            machine=ConnectionStateMachine(connection_id),
            handshake_auth=normalize_auth(handshake_auth),
        )
        self.connections[connection_id] = connection
        self._total_connections += 1

        loop = asyncio.get_running_loop()
        connection.init_timer = loop.call_later(self.config.init_timeout, self._on_init_timeout, connection_id)

        sender = asyncio.create_task(self._run_sender(connection), name=f"realtime-sender-{connection_id}")
        connection.sender_task = sender
        self._sender_tasks.add(sender)
        sender.add_done_callback(self._sender_tasks.discard)

        logger.info("Realtime connection opened", connection_id=connection_id, live_connections=len(self.connections))
        return connection

    def dispatch(self, connection_id: str, raw: str | bytes | dict[str, Any]) -> None:
        """
        Handle one inbound frame.

        This is the single entry point for client messages. It never awaits,
        so the state change a frame causes is complete before any other
        frame, timer or broker event is processed.
        """
        connection = self.connections.get(connection_id)
        if connection is None or connection.is_closed:
            logger.debug("Dropping frame for unknown or closed connection", connection_id=connection_id)
            return

        connection.touch()
        frame = protocol.decode_frame(raw)
        if frame is None:
            self._send_error(connection, ProtocolError(ErrorMessages.INVALID_MESSAGE, self._context(connection)))
            return

        message_type = frame["type"]
        try:
            if message_type == protocol.CONNECTION_INIT:
                self._handle_connection_init(connection, frame)
            elif message_type in protocol.START_TYPES:
                self._handle_start(connection, frame)
            elif message_type in protocol.STOP_TYPES:
                self._handle_stop(connection, frame)
            elif message_type == protocol.PING:
                self._send(connection, protocol.pong(frame.get("payload")))
            elif message_type in (protocol.KEEP_ALIVE, protocol.PONG):
                pass
            elif message_type == protocol.CONNECTION_TERMINATE:
                self.close_connection(connection_id, protocol.CLOSE_NORMAL, "client_terminate")
            else:
                raise ProtocolError(
                    f"{ErrorMessages.UNKNOWN_MESSAGE_TYPE}: {message_type}",
                    self._context(connection),
                    error_type=ErrorType.UNSUPPORTED_OPERATION,
                )
        except SubscriptionIdConflictError as e:
            self._send_error(connection, e, subscription_id=e.subscription_id)
        except SimulatorError as e:
            self._send_error(connection, e, subscription_id=_frame_id(frame))
        except Exception as e:  # pylint: disable=broad-exception-caught  # Reason: one bad frame must not take down the connection
            log_exception_once(
                logger,
                "error",
                "Unhandled error dispatching realtime frame",
                exc=e,
                connection_id=connection_id,
                message_type=message_type,
                exc_info=True,
            )
            if not connection.is_closed:
                self._send(
                    connection,
                    protocol.error(ErrorType.INTERNAL_ERROR, ErrorMessages.INTERNAL_ERROR, _frame_id(frame)),
                )

    def close_connection(
        self,
        connection_id: str,
        code: int = protocol.CLOSE_NORMAL,
        reason: str = "closed",
        close_transport: bool = True,
    ) -> bool:
        """
        Move a connection to CLOSED and release everything it owns.

        The connection leaves the table, its timers are cancelled and all of
        its subscriptions leave the broker in this one synchronous call.
        Frames already queued are still flushed before the socket is closed.

        Returns:
            bool: True if the connection was live, False if unknown or already closed
        """
        connection = self.connections.pop(connection_id, None)
        if connection is None:
            return False

        self._cancel_timers(connection)
        for subscription in connection.subscriptions.values():
            subscription.status = SubscriptionStatus.STOPPED
            for topic in subscription.topics:
                self.broker.unsubscribe(topic, subscription.ref)
        released = len(connection.subscriptions)
        connection.subscriptions.clear()

        if not connection.machine.is_closed:
            connection.machine.terminate(reason=reason)
        connection.outbox.put_nowait(CloseRequest(code=code, reason=reason, close_transport=close_transport))

        logger.debug(
            "Realtime connection released",
            connection_id=connection_id,
            code=code,
            reason=reason,
            released_subscriptions=released,
        )
        return True

    def get_connection(self, connection_id: str) -> Connection | None:
        return self.connections.get(connection_id)

    def subscription_count(self) -> int:
        return sum(len(connection.subscriptions) for connection in self.connections.values())

    def get_stats(self) -> dict[str, Any]:
        by_state = {state.value: 0 for state in ConnectionState}
        for connection in self.connections.values():
            by_state[connection.state.value] += 1
        return {
            "running": self.running,
            "connections": len(self.connections),
            "connections_by_state": by_state,
            "subscriptions": self.subscription_count(),
            "total_connections": self._total_connections,
            "delivery_failures": self._delivery_failures,
        }

    # Protocol handlers

    def _handle_connection_init(self, connection: Connection, frame: dict[str, Any]) -> None:
        if not connection.machine.is_awaiting_init:
            raise ProtocolError(ErrorMessages.ALREADY_INITIALIZED, self._context(connection))

        payload = frame.get("payload")
        auth = normalize_auth(connection.handshake_auth, payload if isinstance(payload, dict) else None)
        if not self._is_authorized(connection, auth):
            error = AuthRejectedError(ErrorMessages.CONNECTION_UNAUTHORIZED, self._context(connection))
            self._send(connection, protocol.connection_error(error.error_type, error.user_friendly))
            self.close_connection(connection.id, protocol.CLOSE_UNAUTHORIZED, "auth_rejected")
            return

        if connection.init_timer is not None:
            connection.init_timer.cancel()
            connection.init_timer = None
        connection.handshake_auth = auth
        connection.machine.acknowledge()
        self._send(connection, protocol.connection_ack(self.config.connection_timeout_ms))
        connection.keepalive_task = asyncio.create_task(
            self._keepalive_loop(connection.id), name=f"realtime-keepalive-{connection.id}"
        )
        logger.info("Realtime connection acknowledged", connection_id=connection.id)

    def _handle_start(self, connection: Connection, frame: dict[str, Any]) -> None:
        subscription_id = _frame_id(frame)
        context = self._context(connection, subscription_id)
        if not connection.is_connected:
            raise ProtocolError(ErrorMessages.NOT_INITIALIZED, context)
        if subscription_id is None:
            raise ProtocolError(ErrorMessages.MISSING_ID, context)
        if subscription_id in connection.subscriptions:
            raise SubscriptionIdConflictError(subscription_id, context)

        query, variables, operation_name, authorization = protocol.extract_start_payload(frame)
        if query is None:
            raise ProtocolError(ErrorMessages.INVALID_MESSAGE, context)
        if authorization and not self._is_authorized(
            connection, normalize_auth(connection.handshake_auth, authorization)
        ):
            raise AuthRejectedError(ErrorMessages.UNAUTHORIZED, context)

        try:
            prepared = self.schema.prepare(query, variables, operation_name)
            if prepared.operation_type is not OperationType.SUBSCRIPTION or not prepared.root_fields:
                raise ProtocolError(
                    ErrorMessages.NOT_A_SUBSCRIPTION, context, error_type=ErrorType.UNSUPPORTED_OPERATION
                )
            root_field = prepared.root_fields[0]
            arguments = self.schema.resolve_arguments(prepared, root_field)
        except ExecutionError as e:
            self._send(connection, protocol.error(None, e.message, subscription_id, errors=e.errors))
            return

        subscription = Subscription(
            id=subscription_id,
            connection_id=connection.id,
            query=query,
            document=prepared.document,
            field_name=root_field.name,
            response_key=root_field.response_key,
            topics=self.schema.subscription_topics(root_field.name),
            arguments=arguments,
            variables=prepared.variables,
            operation_name=operation_name,
        )
        connection.subscriptions[subscription_id] = subscription
        for topic in subscription.topics:
            self.broker.subscribe(topic, subscription.ref, self._on_broker_event)

        self._send(connection, protocol.start_ack(subscription_id))
        logger.info(
            "Subscription started",
            connection_id=connection.id,
            subscription_id=subscription_id,
            field_name=subscription.field_name,
            topics=subscription.topics,
            arguments=list(arguments),
        )

    def _handle_stop(self, connection: Connection, frame: dict[str, Any]) -> None:
        subscription_id = _frame_id(frame)
        if subscription_id is None:
            raise ProtocolError(ErrorMessages.MISSING_ID, self._context(connection))

        subscription = connection.subscriptions.pop(subscription_id, None)
        if subscription is not None:
            subscription.status = SubscriptionStatus.STOPPED
            for topic in subscription.topics:
                self.broker.unsubscribe(topic, subscription.ref)
            logger.info("Subscription stopped", connection_id=connection.id, subscription_id=subscription_id)
        else:
            logger.debug("Stop for unknown subscription", connection_id=connection.id, subscription_id=subscription_id)

        self._send(connection, protocol.complete(subscription_id))

    # Delivery

    def _on_broker_event(self, ref: SubscriberRef, event: BrokerEvent) -> None:
        """Broker handler: queue a data frame if the subscription's predicate matches."""
        connection = self.connections.get(ref.connection_id)
        if connection is None or not connection.is_connected:
            return
        subscription = connection.subscriptions.get(ref.subscription_id)
        if subscription is None or not subscription.is_active:
            return
        if not self.subscription_filter.matches(subscription, event.payload):
            return

        if not self._enqueue(connection, PendingDelivery(subscription=subscription, event=event)):
            error = DeliveryFailureError(
                "Outbound queue full",
                self._context(connection, subscription.id),
                topic=event.topic,
                details={"max_outbox_size": self.config.max_outbox_size},
            )
            self._fail_connection(connection, error, "outbox_overflow")

    async def _render_delivery(self, delivery: PendingDelivery) -> dict[str, Any] | None:
        """Execute the subscription's selection set against the published payload."""
        subscription = delivery.subscription
        if not subscription.is_active:
            return None

        result = execute(
            self.schema.schema,
            subscription.document,
            root_value={subscription.field_name: delivery.event.payload},
            variable_values=subscription.variables,
            operation_name=subscription.operation_name,
        )
        if inspect.isawaitable(result):
            result = await result
        if not subscription.is_active:
            return None

        payload: dict[str, Any] = {"data": result.data}
        if result.errors:
            payload["errors"] = [format_graphql_error(e) for e in result.errors]
        subscription.delivered_count += 1
        return protocol.data(subscription.id, payload)

    async def _run_sender(self, connection: Connection) -> None:
        """Write queued frames to the transport, in order, until a CloseRequest arrives."""
        broken = False
        while True:
            item = await connection.outbox.get()
            try:
                if isinstance(item, CloseRequest):
                    if item.close_transport:
                        await self._close_transport(connection, item)
                    return
                if broken:
                    continue

                frame = await self._render_delivery(item) if isinstance(item, PendingDelivery) else item
                if frame is None:
                    continue
                await connection.transport.send_json(frame)
                connection.frames_sent += 1
            except asyncio.CancelledError:
                raise
            except Exception as e:  # pylint: disable=broad-exception-caught  # Reason: a failed send is scoped to this connection
                broken = True
                topic = item.event.topic if isinstance(item, PendingDelivery) else None
                error = DeliveryFailureError(
                    f"Failed to send frame: {e}",
                    self._context(connection),
                    topic=topic,
                    details={"error_type": type(e).__name__},
                )
                self._fail_connection(connection, error, "delivery_failure")
            finally:
                connection.outbox.task_done()

    async def _close_transport(self, connection: Connection, request: CloseRequest) -> None:
        try:
            await connection.transport.close(request.code, request.reason)
        except Exception as e:  # pylint: disable=broad-exception-caught  # Reason: peer may already be gone
            logger.debug("Error closing realtime transport", connection_id=connection.id, error=str(e))

    # Timers

    def _on_init_timeout(self, connection_id: str) -> None:
        connection = self.connections.get(connection_id)
        if connection is None:
            return
        connection.init_timer = None
        if not connection.machine.is_awaiting_init:
            return

        error = InitTimeoutError(self.config.init_timeout, self._context(connection))
        self._send(connection, protocol.error(error.error_type, error.user_friendly))
        self.close_connection(connection_id, protocol.CLOSE_TIMEOUT, "init_timeout")

    async def _keepalive_loop(self, connection_id: str) -> None:
        """Send "ka" every keepalive_interval; force-close after keepalive_grace without inbound frames."""
        interval = self.config.keepalive_interval
        grace = self.config.keepalive_grace
        next_keepalive = time.monotonic() + interval
        while True:
            connection = self.connections.get(connection_id)
            if connection is None or not connection.is_connected:
                return

            now = time.monotonic()
            idle = now - connection.last_activity
            if idle >= grace:
                error = KeepAliveTimeoutError(idle, self._context(connection))
                self._send(connection, protocol.error(error.error_type, error.user_friendly))
                self.close_connection(connection_id, protocol.CLOSE_TIMEOUT, "keepalive_timeout")
                return
            if now >= next_keepalive:
                self._send(connection, protocol.keep_alive())
                next_keepalive = now + interval

            deadline = connection.last_activity + grace
            await asyncio.sleep(max(0.001, min(next_keepalive, deadline) - now))

    def _cancel_timers(self, connection: Connection) -> None:
        if connection.init_timer is not None:
            connection.init_timer.cancel()
            connection.init_timer = None
        keepalive = connection.keepalive_task
        if keepalive is not None:
            connection.keepalive_task = None
            if keepalive is not asyncio.current_task():
                keepalive.cancel()

    # Helpers

    def _is_authorized(self, connection: Connection, auth: Mapping[str, Any]) -> bool:
        try:
            return bool(self.auth_validator.validate(auth))
        except Exception as e:  # pylint: disable=broad-exception-caught  # Reason: a faulty validator rejects rather than crashes
            logger.error(
                "Auth validator raised; rejecting",
                connection_id=connection.id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

    def _enqueue(self, connection: Connection, item: OutboxItem) -> bool:
        if connection.outbox.qsize() >= self.config.max_outbox_size:
            return False
        connection.outbox.put_nowait(item)
        return True

    def _send(self, connection: Connection, frame: dict[str, Any]) -> None:
        if connection.is_closed:
            return
        if not self._enqueue(connection, frame):
            error = DeliveryFailureError(
                "Outbound queue full",
                self._context(connection),
                details={"max_outbox_size": self.config.max_outbox_size, "frame_type": frame.get("type")},
            )
            self._fail_connection(connection, error, "outbox_overflow")

    def _fail_connection(self, connection: Connection, error: DeliveryFailureError, reason: str) -> None:
        """Close a connection whose outbound path failed; the error was logged when it was raised."""
        self._delivery_failures += 1
        self.close_connection(connection.id, protocol.CLOSE_INTERNAL_ERROR, reason)
        logger.debug("Connection closed after delivery failure", connection_id=connection.id, topic=error.topic)

    def _send_error(
        self, connection: Connection, error: SimulatorError, subscription_id: str | None = None
    ) -> None:
        self._send(connection, protocol.error(error.error_type, error.user_friendly, subscription_id))

    @staticmethod
    def _context(connection: Connection, subscription_id: str | None = None) -> ErrorContext:
        return create_error_context(connection_id=connection.id, subscription_id=subscription_id)


def _frame_id(frame: dict[str, Any]) -> str | None:
    frame_id = frame.get("id")
    if frame_id is None or frame_id == "":
        return None
    return str(frame_id)
