"""
Gemini access for the grading adapter (LlmChat, UserMessage, ImageContent).

Every grading call is a single stateless turn, so LlmChat sends each message
with generate_content instead of keeping a chat history between questions.
"""

import asyncio
from typing import List, Optional

import google.generativeai as genai

from papergrader.config import logger


class ImageContent:
    """Raw page image bytes plus their MIME type."""

    def __init__(self, image_bytes: bytes, mime_type: str = "image/jpeg"):
        self.image_bytes = image_bytes
        self.mime_type = mime_type

    def to_genai_part(self) -> dict:
        return {"inline_data": {"mime_type": self.mime_type, "data": self.image_bytes}}


class UserMessage:
    def __init__(self, text: str = "", file_contents: Optional[List[ImageContent]] = None):
        self.text = text
        self.file_contents = file_contents or []

    def to_genai_parts(self) -> list:
        # Images first, the model reads the prompt with the page already in view
        parts = [image.to_genai_part() for image in self.file_contents]
        if self.text:
            parts.append(self.text)
        return parts


class LlmChat:
    """
    Chaining API, e.g.

        chat = (LlmChat(system_message=SYSTEM_PROMPT, model_name="gemini-2.5-flash")
                .with_params(temperature=0.3, max_output_tokens=1024)
                .with_json_output())
        reply = await chat.send_message(UserMessage(text=prompt))
    """

    def __init__(self, system_message: str = "", model_name: str = "gemini-2.5-flash"):
        self.system_message = system_message
        self.model_name = model_name
        self.temperature: Optional[float] = None
        self.max_output_tokens: Optional[int] = None
        self.json_output = False
        self._model = None

    def with_model(self, model_name: str) -> "LlmChat":
        self.model_name = model_name
        self._model = None
        return self

    def with_params(self, temperature: float = None, max_output_tokens: int = None) -> "LlmChat":
        if temperature is not None:
            self.temperature = temperature
        if max_output_tokens is not None:
            self.max_output_tokens = max_output_tokens
        self._model = None
        return self

    def with_json_output(self, enabled: bool = True) -> "LlmChat":
        """Structured output mode: the reply body is a bare JSON document."""
        self.json_output = enabled
        self._model = None
        return self

    def generation_config(self) -> Optional[dict]:
        config = {}
        if self.temperature is not None:
            config["temperature"] = self.temperature
        if self.max_output_tokens is not None:
            config["max_output_tokens"] = self.max_output_tokens
        if self.json_output:
            config["response_mime_type"] = "application/json"
        return config or None

    def _get_model(self):
        if self._model is None:
            self._model = genai.GenerativeModel(
                model_name=self.model_name,
                system_instruction=self.system_message or None,
                generation_config=self.generation_config(),
            )
            logger.debug(f"[LLM] Model {self.model_name} ready (json={self.json_output})")
        return self._model

    async def send_message(self, message: UserMessage) -> str:
        """Send one message and return the reply text. The SDK call runs in the default executor."""
        model = self._get_model()
        parts = message.to_genai_parts()

        loop = asyncio.get_running_loop()
        response = await loop.run_in_executor(None, lambda: model.generate_content(parts))

        try:
            return response.text
        except ValueError:
            # .text raises when the candidate was blocked or came back empty
            feedback = getattr(response, "prompt_feedback", None)
            raise RuntimeError(f"{self.model_name} returned no text (feedback: {feedback})")
