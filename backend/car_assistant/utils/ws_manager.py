# car_assistant/utils/ws_manager.py
from __future__ import annotations
import asyncio
import contextlib
import logging
from typing import Any, Dict, List, Optional
from fastapi import WebSocket, WebSocketDisconnect

LOGGER = logging.getLogger(__name__)


class WebSocketManager:
    """按 session 维护助手前端的 WebSocket 连接"""
    def __init__(self):
        self._lock = asyncio.Lock()
        self._sessions: Dict[str, List[WebSocket]] = {}

    # ============================================================
    # 🔹 连接登记
    # ============================================================
    async def connect(self, session_id: str, websocket: WebSocket) -> None:
        if websocket.client_state.name != "CONNECTED":
            try:
                await websocket.accept()
            except RuntimeError as e:
                # 已被 accept 过的连接直接登记
                if "websocket.accept" not in str(e):
                    raise
        async with self._lock:
            peers = self._sessions.setdefault(session_id, [])
            peers.append(websocket)
            count = len(peers)
        LOGGER.info(f"[ws_manager] ➕ sid={session_id} peers={count}")

    async def disconnect(self, session_id: str, websocket: Optional[WebSocket] = None) -> None:
        async with self._lock:
            peers = self._sessions.get(session_id, [])
            closing = [websocket] if websocket in peers else ([] if websocket else list(peers))
            for ws in closing:
                peers.remove(ws)
            if not peers:
                self._sessions.pop(session_id, None)
        for ws in closing:
            with contextlib.suppress(Exception):
                await ws.close()
        LOGGER.info(f"[ws_manager] ➖ sid={session_id} closed={len(closing)}")

    async def close_all(self) -> None:
        async with self._lock:
            session_ids = list(self._sessions)
        for sid in session_ids:
            await self.disconnect(sid)

    # ============================================================
    # 🔹 推送
    # ============================================================
    async def send_json(self, session_id: str, data: Dict[str, Any]) -> None:
        async with self._lock:
            peers = list(self._sessions.get(session_id, []))
        for ws in peers:
            try:
                await ws.send_json(data)
            except WebSocketDisconnect:
                await self.disconnect(session_id, ws)
            except Exception as e:
                LOGGER.warning(f"[ws_manager] ⚠️ push {data.get('type')} failed sid={session_id}: {e}")
                await self.disconnect(session_id, ws)

    def active_sessions(self) -> Dict[str, int]:
        return {sid: len(peers) for sid, peers in self._sessions.items()}


class WebSocketDisplay:
    """把字段更新排队推送给前端，保持事件顺序"""

    def __init__(self, manager: WebSocketManager, session_id: str) -> None:
        self._manager = manager
        self._session_id = session_id
        self._queue: asyncio.Queue[dict | None] = asyncio.Queue()

    def on_field_updated(self, field, value: str) -> None:
        self._queue.put_nowait({"type": "field_updated", "field": getattr(field, "value", field), "value": value})

    def on_analysis_state_changed(self, active: bool) -> None:
        self._queue.put_nowait({"type": "analysis_state", "active": active})

    def close(self) -> None:
        self._queue.put_nowait(None)

    async def pump(self) -> None:
        """Forward queued display events until ``close()`` is called."""
        while True:
            payload = await self._queue.get()
            if payload is None:
                return
            await self._manager.send_json(self._session_id, payload)
