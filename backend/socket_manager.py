from fastapi import WebSocket, WebSocketDisconnect
from typing import Dict, List
import json
import time
import uuid
import asyncio
import logging

import config

logger = logging.getLogger(__name__)


class SocketManager:
    """WebSocket transport for the game: one outbox queue per connection.

    ``send`` and ``broadcast`` only enqueue, so the game can call them from
    synchronous handlers; a writer task per connection does the actual I/O.
    """

    def __init__(self):
        self.connections: Dict[str, WebSocket] = {}
        self.outboxes: Dict[str, asyncio.Queue] = {}
        self.msg_timestamps: Dict[str, list] = {}
        self.allowed_origins: List[str] = []
        self.game = None  # TriviaGame, attached by main

    def send(self, session_id: str, message: dict):
        queue = self.outboxes.get(session_id)
        if queue is not None:
            queue.put_nowait(message)

    def broadcast(self, message: dict):
        for queue in self.outboxes.values():
            queue.put_nowait(message)

    def _add_connection(self, session_id: str, websocket: WebSocket) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        self.connections[session_id] = websocket
        self.outboxes[session_id] = queue
        return queue

    def _remove_connection(self, session_id: str):
        self.connections.pop(session_id, None)
        self.outboxes.pop(session_id, None)
        self.msg_timestamps.pop(session_id, None)

    def _is_rate_limited(self, session_id: str) -> bool:
        now = time.time()
        timestamps = self.msg_timestamps.setdefault(session_id, [])
        timestamps[:] = [t for t in timestamps if now - t < 1.0]
        if len(timestamps) >= config.WS_RATE_LIMIT_PER_SEC:
            return True
        timestamps.append(now)
        return False

    async def _writer(self, session_id: str, websocket: WebSocket, queue: asyncio.Queue):
        try:
            while True:
                message = await queue.get()
                await websocket.send_json(message)
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.info("Stopped sending to session %s", session_id)
            # Nothing drains this queue any more
            if self.outboxes.get(session_id) is queue:
                del self.outboxes[session_id]

    async def connect(self, websocket: WebSocket):
        # Validate WebSocket origin
        origin = websocket.headers.get("origin", "")
        if self.allowed_origins and origin not in self.allowed_origins:
            logger.warning("Rejected WebSocket from unauthorized origin: %s", origin)
            await websocket.close(code=1008)
            return

        await websocket.accept()
        session_id = uuid.uuid4().hex
        queue = self._add_connection(session_id, websocket)
        writer = asyncio.create_task(self._writer(session_id, websocket, queue))
        logger.info("Session %s connected", session_id)

        try:
            while True:
                data = await websocket.receive_text()

                # Enforce message size limit
                if len(data) > config.MAX_WS_MESSAGE_SIZE:
                    self.send(session_id, {"type": "error", "message": "Message too large"})
                    continue

                if self._is_rate_limited(session_id):
                    self.send(session_id, {"type": "error", "message": "Too many messages"})
                    continue

                try:
                    message = json.loads(data)
                except json.JSONDecodeError:
                    logger.warning("Malformed JSON from session %s: %s", session_id, data[:100])
                    self.send(session_id, {"type": "error", "message": "Invalid message format"})
                    continue
                if not isinstance(message, dict):
                    self.send(session_id, {"type": "error", "message": "Invalid message format"})
                    continue

                if self.game is not None:
                    self.game.handle_message(session_id, message)
        except WebSocketDisconnect:
            logger.info("Session %s disconnected", session_id)
        except Exception:
            logger.exception("WebSocket error for session %s", session_id)
        finally:
            self._remove_connection(session_id)
            if self.game is not None:
                self.game.disconnect(session_id)
            writer.cancel()
            await asyncio.gather(writer, return_exceptions=True)


socket_manager = SocketManager()
