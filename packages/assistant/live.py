import logging
from dataclasses import dataclass
from typing import AsyncIterator, Optional, Sequence

from google.genai import types

from ..ai.client import AssistantError, get_ai_client, translate_error
from ..settings import Settings, get_settings
from .audio import INPUT_MIME_TYPE, float_to_pcm16

logger = logging.getLogger(__name__)

LIVE_INSTRUCTION = "You are a professional industrial assistant for AIdentify. Keep spoken answers short. Answer in {language}."


@dataclass
class LiveEvent:
    kind: str  # "audio", "turn_complete" or "interrupted"
    data: Optional[bytes] = None


class LiveAudioBridge:
    """Microphone PCM in, model speech PCM out, over one realtime session.

    Use as an async context manager:

        async with LiveAudioBridge() as bridge:
            await bridge.send_audio(pcm16_chunk)
            async for event in bridge.events():
                ...
    """

    def __init__(self, client=None, settings: Optional[Settings] = None, instruction: Optional[str] = None):
        self.settings = settings or get_settings()
        self._client = client
        self.instruction = instruction or LIVE_INSTRUCTION.format(language=self.settings.response_language)
        self._connection = None
        self.session = None

    def _config(self) -> types.LiveConnectConfig:
        return types.LiveConnectConfig(
            response_modalities=[types.Modality.AUDIO],
            system_instruction=self.instruction,
        )

    async def __aenter__(self) -> "LiveAudioBridge":
        client = self._client or get_ai_client(self.settings)
        try:
            self._connection = client.aio.live.connect(model=self.settings.live_model, config=self._config())
            self.session = await self._connection.__aenter__()
        except Exception as e:
            logger.error(f"Live session failed to open: {e}")
            raise translate_error(e, AssistantError, "Live session") from e
        logger.info("Live audio session opened")
        return self

    async def __aexit__(self, exc_type, exc, tb):
        connection, self._connection, self.session = self._connection, None, None
        if connection is not None:
            await connection.__aexit__(exc_type, exc, tb)
            logger.info("Live audio session closed")
        return False

    @property
    def is_open(self) -> bool:
        return self.session is not None

    async def send_audio(self, pcm16: bytes) -> None:
        if not self.is_open:
            raise AssistantError("Live session is not open")
        await self.session.send_realtime_input(audio=types.Blob(data=pcm16, mime_type=INPUT_MIME_TYPE))

    async def send_samples(self, samples: Sequence[float]) -> None:
        await self.send_audio(float_to_pcm16(samples))

    async def events(self) -> AsyncIterator[LiveEvent]:
        """Model output until the session ends; each receive() call covers one turn"""
        while self.is_open:
            received = 0
            async for message in self.session.receive():
                received += 1
                content = message.server_content
                if content is None:
                    continue
                if content.model_turn and content.model_turn.parts:
                    for part in content.model_turn.parts:
                        if part.inline_data and part.inline_data.data:
                            yield LiveEvent("audio", part.inline_data.data)
                if content.interrupted:
                    yield LiveEvent("interrupted")
                if content.turn_complete:
                    yield LiveEvent("turn_complete")
            if not received:
                break
