import asyncio
import logging
from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from typing import List
from pydantic import BaseModel, Field

from packages.ai.client import AIServiceError, CredentialError
from packages.assistant.audio import OUTPUT_MIME_TYPE, decode, encode
from packages.assistant.chat import CatalogAssistant, ChatTurn
from packages.assistant.live import LiveAudioBridge
from packages.catalog.service import CatalogService
from packages.settings import Settings
from packages.storage.db import StorageError

from apps.api.dependencies import get_ai_client_override, get_app_settings, get_catalog_service

logger = logging.getLogger(__name__)

router = APIRouter()


class ChatRequest(BaseModel):
    message: str
    history: List[ChatTurn] = Field(default_factory=list)


@router.post("/chat")
async def chat(request: ChatRequest,
               service: CatalogService = Depends(get_catalog_service),
               settings: Settings = Depends(get_app_settings),
               client=Depends(get_ai_client_override)):
    if not request.message.strip():
        raise HTTPException(400, "Message is empty")
    try:
        parts = service.list_parts()
    except StorageError as e:
        raise HTTPException(500, str(e))

    assistant = CatalogAssistant(parts, client=client, settings=settings, history=request.history)
    try:
        reply = await assistant.send(request.message)
    except CredentialError as e:
        return JSONResponse(status_code=401, content={"code": "credential", "detail": str(e)})
    except AIServiceError as e:
        raise HTTPException(502, str(e))
    return {"reply": reply, "history": assistant.messages}


class InvalidFrame(ValueError):
    """Client sent something that is not a JSON audio or stop frame"""


async def _forward_microphone(websocket: WebSocket, bridge: LiveAudioBridge):
    while True:
        try:
            message = await websocket.receive_json()
        except ValueError as e:
            raise InvalidFrame(f"Frame is not JSON: {e}") from e
        if not isinstance(message, dict):
            raise InvalidFrame("Frame must be a JSON object")
        kind = message.get("type")
        if kind == "stop":
            return
        if kind == "audio" and message.get("data"):
            try:
                pcm = decode(message["data"])
            except (TypeError, ValueError) as e:
                raise InvalidFrame(f"Audio data is not base64: {e}") from e
            await bridge.send_audio(pcm)


async def _forward_speech(websocket: WebSocket, bridge: LiveAudioBridge):
    async for event in bridge.events():
        if event.kind == "audio":
            await websocket.send_json({"type": "audio", "data": encode(event.data), "mimeType": OUTPUT_MIME_TYPE})
        else:
            await websocket.send_json({"type": event.kind})


async def run_live_session(websocket: WebSocket, bridge: LiveAudioBridge):
    """Pump audio both ways until the client stops, disconnects or the session ends"""
    tasks = [
        asyncio.create_task(_forward_microphone(websocket, bridge)),
        asyncio.create_task(_forward_speech(websocket, bridge)),
    ]
    try:
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
    for task in done:
        exc = task.exception()
        if exc is not None and not isinstance(exc, WebSocketDisconnect):
            raise exc


@router.websocket("/live")
async def live(websocket: WebSocket,
               settings: Settings = Depends(get_app_settings),
               client=Depends(get_ai_client_override)):
    await websocket.accept()
    try:
        async with LiveAudioBridge(client=client, settings=settings) as bridge:
            await websocket.send_json({"type": "ready"})
            await run_live_session(websocket, bridge)
    except CredentialError as e:
        await websocket.send_json({"type": "error", "code": "credential", "detail": str(e)})
    except AIServiceError as e:
        logger.error(f"Live session error: {e}")
        await websocket.send_json({"type": "error", "code": "assistant", "detail": str(e)})
    except InvalidFrame as e:
        logger.warning(f"Closing live session: {e}")
        await websocket.send_json({"type": "error", "code": "invalid_frame", "detail": str(e)})
    except WebSocketDisconnect:
        logger.info("Live client disconnected")
        return
    await websocket.close()
