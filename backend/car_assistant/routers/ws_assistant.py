# car_assistant/routers/ws_assistant.py
from __future__ import annotations
import asyncio, contextlib, logging
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from ..services.coordinator import ExtractionCoordinator
from ..services.fields import TranscriptEvent
from ..services.remote import RemoteExtractor, remote_extractor
from ..services.speech import events_from_asr_payload
from ..utils.ws_manager import WebSocketDisplay, WebSocketManager

LOGGER = logging.getLogger(__name__)
router = APIRouter()
manager = WebSocketManager()


def transcript_events(data: dict) -> list[TranscriptEvent]:
    """把前端消息转换为转写事件"""
    msg_type = data.get("type")
    if msg_type == "transcript":
        return [TranscriptEvent(text=str(data.get("text") or ""), is_final=bool(data.get("final", True)))]
    if msg_type == "asr_final":
        return [TranscriptEvent(text=str(data.get("text") or ""), is_final=True)]
    if msg_type == "asr_partial":
        return [TranscriptEvent(text=str(data.get("text") or ""), is_final=False)]
    if msg_type == "asr_result":
        return events_from_asr_payload(data.get("payload"))
    return []


@router.websocket("/ws/assistant")
async def websocket_assistant(websocket: WebSocket):
    """助手 WebSocket 主入口：接收转写事件，推送提取出的购车信息"""
    session_id = websocket.query_params.get("session") or "default"
    LOGGER.info(f"[assistant] 🚗 accepted ws sid={session_id}")

    ws_manager: WebSocketManager = getattr(websocket.app.state, "ws_manager", manager)
    display = WebSocketDisplay(ws_manager, session_id)
    coordinator = ExtractionCoordinator(display, RemoteExtractor(api_key=remote_extractor.api_key or ""))
    pump_task: asyncio.Task | None = None

    try:
        await ws_manager.connect(session_id, websocket)
        pump_task = asyncio.create_task(display.pump())
        await ws_manager.send_json(session_id, {
            "type": "assistant_connected",
            "remote_configured": coordinator.remote.configured,
        })

        while True:
            if websocket.client_state == WebSocketState.DISCONNECTED:
                LOGGER.warning(f"[assistant] ⚠️ websocket already closed sid={session_id}")
                break

            try:
                data = await websocket.receive_json()
            except WebSocketDisconnect:
                LOGGER.info(f"[assistant] 🔴 disconnected sid={session_id}")
                break
            except Exception as e:
                if "not connected" in str(e).lower():
                    LOGGER.warning(f"[assistant] ⚠️ websocket broken sid={session_id}, stop loop.")
                    break
                LOGGER.warning(f"[assistant] ⚠️ receive error sid={session_id}: {e}")
                await asyncio.sleep(0.2)
                continue

            msg_type = data.get("type") if isinstance(data, dict) else None
            LOGGER.debug(f"[assistant] 📩 recv {msg_type} sid={session_id}")

            if msg_type in {"transcript", "asr_final", "asr_partial", "asr_result"}:
                for event in transcript_events(data):
                    coordinator.handle_event(event)

            elif msg_type == "start":
                coordinator.start_session()
                await ws_manager.send_json(session_id, {"type": "session_started"})

            elif msg_type == "api_key":
                coordinator.remote.api_key = data.get("key")
                await ws_manager.send_json(session_id, {
                    "type": "api_key_updated",
                    "remote_configured": coordinator.remote.configured,
                })

            elif msg_type == "analyze":
                result = await coordinator.analyze_now()
                await ws_manager.send_json(session_id, {"type": "analysis_result", "fields": result.as_dict()})

            elif msg_type == "stop":
                coordinator.stop_session()
                await ws_manager.send_json(session_id, {"type": "session_stopped"})

            else:
                await ws_manager.send_json(session_id, {"type": "assistant_unknown", "data": data})

    except Exception as e:
        LOGGER.exception(f"[assistant] ❌ exception sid={session_id}: {e}")
        with contextlib.suppress(Exception):
            await websocket.close()

    finally:
        coordinator.stop_session()
        display.close()
        if pump_task is not None:
            with contextlib.suppress(Exception):
                await pump_task
        await ws_manager.disconnect(session_id)
        if websocket.client_state != WebSocketState.DISCONNECTED:
            with contextlib.suppress(Exception):
                await websocket.close()
        LOGGER.info(f"[assistant] 🧹 cleaned sid={session_id}")
