"""
Starlette WebSocket adapter implementing the RealtimeTransport protocol.
"""

import json
from typing import Any

from fastapi import WebSocket
from starlette.websockets import WebSocketState

from ..structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)


class WebSocketTransport:
    """Writes protocol frames to a FastAPI/Starlette WebSocket."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket

    @property
    def is_open(self) -> bool:
        return (
            self.websocket.application_state == WebSocketState.CONNECTED
            and self.websocket.client_state == WebSocketState.CONNECTED
        )

    async def send_json(self, frame: dict[str, Any]) -> None:
        await self.websocket.send_text(json.dumps(frame, default=str))

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if self.websocket.application_state == WebSocketState.DISCONNECTED:
            return
        try:
            await self.websocket.close(code=code, reason=reason)
        except RuntimeError as e:
            # Client already went away; Starlette refuses a second close
            logger.debug("WebSocket already closed", code=code, error=str(e))
