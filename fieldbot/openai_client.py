from __future__ import annotations

import base64
import logging
from typing import Optional

from openai import AsyncOpenAI, OpenAIError

from .config import settings
from .errors import CollaboratorError

log = logging.getLogger(__name__)

DEFAULT_VISION_MODEL = "gpt-4o-mini"

OCR_INSTRUCTIONS = (
    "Transcribe all text visible in the image exactly as written, keeping line breaks. "
    "Reply with the text only. If there is no text, reply with an empty message."
)

_client: Optional[AsyncOpenAI] = None


def _get_client() -> AsyncOpenAI:
    global _client
    if _client is None:
        if not settings.openai_api_key:
            raise CollaboratorError("OPENAI_API_KEY is not set in environment")
        _client = AsyncOpenAI(api_key=settings.openai_api_key)
    return _client


def _output_text(resp) -> str:
    text = getattr(resp, "output_text", None)
    if text:
        return text
    # older SDKs: walk the output items
    parts = []
    for item in getattr(resp, "output", None) or []:
        for content in getattr(item, "content", None) or []:
            if getattr(content, "type", None) == "output_text":
                parts.append(getattr(content, "text", "") or "")
    return "".join(parts)


class OpenAITextExtractor:
    """Reads text from images through the OpenAI Responses API."""

    def __init__(self, model: Optional[str] = None, client: Optional[AsyncOpenAI] = None) -> None:
        self.model = model or settings.openai_model_vision or DEFAULT_VISION_MODEL
        self._client = client

    async def extract_text(self, image: bytes, mime_type: str = "image/jpeg") -> str:
        client = self._client or _get_client()
        data_url = f"data:{mime_type};base64,{base64.b64encode(image).decode('ascii')}"
        try:
            resp = await client.responses.create(
                model=self.model,
                input=[
                    {
                        "role": "user",
                        "content": [
                            {"type": "input_text", "text": OCR_INSTRUCTIONS},
                            {"type": "input_image", "image_url": data_url},
                        ],
                    }
                ],
            )
        except OpenAIError as e:
            raise CollaboratorError(f"OpenAI vision request failed: {e}") from e

        text = _output_text(resp).strip()
        log.info("OCR via %s returned %d chars", self.model, len(text))
        return text
