import logging
from typing import Dict, List, Literal, Optional, Sequence, Union

from google.genai import types
from pydantic import BaseModel

from ..ai.client import AssistantError, get_ai_client, translate_error
from ..catalog.schemas import PartRecord
from ..settings import Settings, get_settings

logger = logging.getLogger(__name__)

ASSISTANT_NAME = "AIdentify Assistant"


class ChatTurn(BaseModel):
    role: Literal["user", "model"]
    text: str


def catalog_summary(parts: Sequence[PartRecord]) -> str:
    if not parts:
        return "The catalog is currently empty."
    lines = []
    for p in parts:
        models = ", ".join(m.value for m in p.models) or "none"
        lines.append(
            f"- {p.part_name} (#{p.part_number}) | color: {p.color.value} | "
            f"workstation: {p.workstation} | models: {models} | photos: {len(p.image_urls)}"
        )
    return "\n".join(lines)


def system_instruction(parts: Sequence[PartRecord], language: str = "English") -> str:
    return (
        f"You are the {ASSISTANT_NAME}, an industrial parts specialist. "
        f"Help operators with questions about the parts catalog below and general industrial topics. "
        f"If a part is not listed, say so instead of guessing. Answer in {language}.\n\n"
        f"Catalog:\n{catalog_summary(parts)}"
    )


class CatalogAssistant:
    """Text chat scoped to the stored catalog. Keeps the conversation history."""

    def __init__(self, parts: Sequence[PartRecord], client=None, settings: Optional[Settings] = None,
                 history: Optional[Sequence[Union[ChatTurn, Dict[str, str]]]] = None):
        self.parts = list(parts)
        self.settings = settings or get_settings()
        self._client = client
        self.messages: List[Dict[str, str]] = [ChatTurn.model_validate(m).model_dump() for m in history or []]

    def _history(self) -> List[types.Content]:
        return [
            types.Content(role=m["role"], parts=[types.Part.from_text(text=m["text"])])
            for m in self.messages
        ]

    def _config(self) -> types.GenerateContentConfig:
        return types.GenerateContentConfig(
            system_instruction=system_instruction(self.parts, self.settings.response_language),
            thinking_config=types.ThinkingConfig(thinking_budget=self.settings.assistant_thinking_budget),
        )

    async def send(self, message: str) -> Optional[str]:
        if not message or not message.strip():
            return None
        client = self._client or get_ai_client(self.settings)
        history = self._history()
        try:
            chat = client.aio.chats.create(
                model=self.settings.assistant_model,
                config=self._config(),
                history=history,
            )
            response = await chat.send_message(message)
        except Exception as e:
            logger.error(f"Assistant call failed: {e}")
            raise translate_error(e, AssistantError, "Assistant") from e

        reply = response.text or ""
        self.messages.append({"role": "user", "text": message})
        self.messages.append({"role": "model", "text": reply})
        return reply
