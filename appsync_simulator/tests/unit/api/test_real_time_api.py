"""
Tests for the realtime WebSocket endpoint driven end to end through TestClient.
"""

import base64
import json

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from appsync_simulator.tests.helpers import CREATE_POST, ON_CREATE_POST, ON_CREATE_POST_BY_ID, TEST_API_KEY

REALTIME_PATH = "/graphql/realtime"
AUTH = {"x-api-key": TEST_API_KEY}


def header_param(headers: dict) -> str:
    return base64.urlsafe_b64encode(json.dumps(headers).encode("utf-8")).decode("ascii").rstrip("=")


def start_frame(subscription_id: str, query: str, variables: dict | None = None) -> dict:
    return {
        "id": subscription_id,
        "type": "start",
        "payload": {
            "data": json.dumps({"query": query, "variables": variables or {}}),
            "extensions": {"authorization": AUTH},
        },
    }


def handshake(websocket) -> dict:
    websocket.send_json({"type": "connection_init", "payload": {}})
    return websocket.receive_json()


class TestHandshake:
    """Test the upgrade and connection_init exchange."""

    def test_subprotocol_echoed(self, client):
        with client.websocket_connect(f"{REALTIME_PATH}?header={header_param(AUTH)}", subprotocols=["graphql-ws"]) as ws:
            assert ws.accepted_subprotocol == "graphql-ws"

    def test_unspoken_subprotocol_not_negotiated(self, client):
        """Test that graphql-transport-ws is not accepted, since its frames differ from graphql-ws."""
        with client.websocket_connect(
            f"{REALTIME_PATH}?header={header_param(AUTH)}", subprotocols=["graphql-transport-ws"]
        ) as ws:
            assert ws.accepted_subprotocol is None

    def test_graphql_ws_chosen_among_offers(self, client):
        with client.websocket_connect(
            f"{REALTIME_PATH}?header={header_param(AUTH)}", subprotocols=["graphql-transport-ws", "graphql-ws"]
        ) as ws:
            assert ws.accepted_subprotocol == "graphql-ws"

    def test_header_param_credentials_acknowledged(self, client):
        with client.websocket_connect(f"{REALTIME_PATH}?header={header_param(AUTH)}") as ws:
            ack = handshake(ws)

        assert ack == {"type": "connection_ack", "payload": {"connectionTimeoutMs": 300000}}

    def test_upgrade_header_credentials_acknowledged(self, client):
        with client.websocket_connect(REALTIME_PATH, headers=AUTH) as ws:
            assert handshake(ws)["type"] == "connection_ack"

    def test_init_payload_credentials_acknowledged(self, client):
        with client.websocket_connect(REALTIME_PATH) as ws:
            ws.send_json({"type": "connection_init", "payload": {"headers": AUTH}})

            assert ws.receive_json()["type"] == "connection_ack"

    def test_rejected_credentials_close_4401(self, client):
        """Test connection_error followed by an unauthorized close."""
        with client.websocket_connect(f"{REALTIME_PATH}?header={header_param({'x-api-key': 'bad'})}") as ws:
            frame = handshake(ws)

            assert frame["type"] == "connection_error"
            assert frame["payload"]["errors"][0]["errorType"] == "UnauthorizedException"
            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_json()

        assert exc_info.value.code == 4401

    def test_not_running_closes_1013(self, app):
        app.state.subscription_server.running = False

        with TestClient(app) as client:
            with client.websocket_connect(REALTIME_PATH) as ws:
                with pytest.raises(WebSocketDisconnect) as exc_info:
                    ws.receive_json()

        assert exc_info.value.code == 1013


class TestSubscriptionFlow:
    """Test start, fanout from HTTP mutations, and stop over a real socket."""

    def test_mutation_delivered_as_data(self, client):
        with client.websocket_connect(f"{REALTIME_PATH}?header={header_param(AUTH)}") as ws:
            handshake(ws)
            ws.send_json(start_frame("sub-1", ON_CREATE_POST))
            assert ws.receive_json() == {"type": "start_ack", "id": "sub-1"}

            client.post(
                "/graphql",
                json={"query": CREATE_POST, "variables": {"input": {"title": "live", "author": "ann"}}},
                headers=AUTH,
            )

            frame = ws.receive_json()

        assert frame == {
            "type": "data",
            "id": "sub-1",
            "payload": {"data": {"onCreatePost": {"id": "1", "title": "live", "author": "ann"}}},
        }

    def test_argument_filter_applied(self, client):
        """Test that only the matching post reaches an id-filtered subscription."""
        with client.websocket_connect(f"{REALTIME_PATH}?header={header_param(AUTH)}") as ws:
            handshake(ws)
            ws.send_json(start_frame("sub-1", ON_CREATE_POST_BY_ID, {"id": "wanted"}))
            ws.receive_json()

            for post_id in ("other", "wanted"):
                client.post(
                    "/graphql",
                    json={"query": CREATE_POST, "variables": {"input": {"id": post_id, "title": post_id}}},
                    headers=AUTH,
                )

            frame = ws.receive_json()

        assert frame["payload"]["data"]["onCreatePost"]["id"] == "wanted"

    def test_stop_completes_subscription(self, client, broker):
        with client.websocket_connect(f"{REALTIME_PATH}?header={header_param(AUTH)}") as ws:
            handshake(ws)
            ws.send_json(start_frame("sub-1", ON_CREATE_POST))
            ws.receive_json()

            ws.send_json({"type": "stop", "id": "sub-1"})

            assert ws.receive_json() == {"type": "complete", "id": "sub-1"}
            assert broker.subscriber_count() == 0

    def test_invalid_subscription_returns_error(self, client):
        with client.websocket_connect(f"{REALTIME_PATH}?header={header_param(AUTH)}") as ws:
            handshake(ws)
            ws.send_json(start_frame("sub-1", "subscription { onCreatePost { nope } }"))

            frame = ws.receive_json()

        assert frame["type"] == "error"
        assert frame["id"] == "sub-1"
        assert frame["payload"]["errors"][0]["errorType"] == "ValidationError"

    def test_disconnect_removes_connection(self, app, client, broker):
        """Test that a client going away releases its subscriptions."""
        with client.websocket_connect(f"{REALTIME_PATH}?header={header_param(AUTH)}") as ws:
            handshake(ws)
            ws.send_json(start_frame("sub-1", ON_CREATE_POST))
            ws.receive_json()
            assert app.state.subscription_server.subscription_count() == 1

        assert broker.subscriber_count() == 0
        assert app.state.subscription_server.connections == {}

    def test_connection_terminate(self, client):
        with client.websocket_connect(f"{REALTIME_PATH}?header={header_param(AUTH)}") as ws:
            handshake(ws)
            ws.send_json({"type": "connection_terminate"})

            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_json()

        assert exc_info.value.code == 1000
