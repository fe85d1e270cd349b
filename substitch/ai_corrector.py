"""Handles subtitle correction and translation through an OpenAI-compatible chat API."""

import json
import logging
from typing import Optional

from openai import OpenAI, OpenAIError

from .exceptions import TransformError
from .transform_pass import TextTransformer, TransformContext

logger = logging.getLogger(__name__)

CORRECT_PROMPT = (
    "You are proofreading subtitles produced by a speech recognizer. "
    "Fix misheard words, spelling and punctuation in the subtitle text. "
    "Keep the meaning and the language, and do not merge in the neighbouring lines."
)

TRANSLATE_PROMPT = (
    "You are translating subtitles into {language}. "
    "Translate only the subtitle text, keeping it short enough to be read on screen. "
    "Use the neighbouring lines for context but do not translate them."
)

FORMAT_INSTRUCTIONS = """
<Input format>
{"previous": ["..."], "text": "subtitle text", "following": ["..."]}
</Input format>

<Output format>
["result"]
</Output format>
"""


class OpenAICorrector(TextTransformer):
    """Asks a chat completion model to correct or translate one subtitle at a time."""

    MODES = ("correct", "translate")

    def __init__(
        self,
        model: str = "gpt-4o-mini",
        mode: str = "correct",
        target_language: Optional[str] = None,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        temperature: float = 1.0,
        prompt: Optional[str] = None,
        client=None,
    ):
        """
        Initializes the OpenAICorrector.

        Args:
            model: Chat model name.
            mode: "correct" or "translate".
            target_language: Required in "translate" mode.
            api_key: API key; the OpenAI client falls back to OPENAI_API_KEY.
            base_url: Base URL of an OpenAI-compatible endpoint.
            temperature: Sampling temperature.
            prompt: Replaces the built-in system prompt for the mode.
            client: Pre-built client exposing `chat.completions.create`.

        Raises:
            ValueError: If the mode is unknown or a translation target is missing.
            TransformError: If the client cannot be created.
        """
        if mode not in self.MODES:
            raise ValueError(f"Invalid mode: {mode}. Choose one of {', '.join(self.MODES)}.")
        if mode == "translate" and not target_language:
            raise ValueError("A target language is required in translate mode.")

        self.model = model
        self.mode = mode
        self.temperature = temperature
        if prompt is None:
            prompt = CORRECT_PROMPT if mode == "correct" else TRANSLATE_PROMPT.format(language=target_language)
        self.system_prompt = prompt + FORMAT_INSTRUCTIONS

        if client is not None:
            self.client = client
        else:
            try:
                self.client = OpenAI(api_key=api_key, base_url=base_url)
            except OpenAIError as e:
                raise TransformError(f"Could not create OpenAI client: {e}") from e
        logger.info(f"Initialized OpenAICorrector (mode: {self.mode}, model: {self.model})")

    def transform(self, text: str, context: TransformContext) -> str:
        """
        Raises:
            TransformError: If the request fails or the reply is not a one-element JSON array of strings.
        """
        if not text.strip():
            return text

        user_message = json.dumps(
            {"previous": list(context.previous), "text": text, "following": list(context.following)},
            ensure_ascii=False,
        )
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                temperature=self.temperature,
                messages=[
                    {"role": "system", "content": self.system_prompt},
                    {"role": "user", "content": user_message},
                ],
            )
        except OpenAIError as e:
            raise TransformError(f"Chat completion request failed: {e}") from e

        if not response.choices or not response.choices[0].message.content:
            raise TransformError("No response content")
        content = response.choices[0].message.content.strip()
        logger.debug(f"Response for '{text[:30]}': {content[:80]}")
        return self._parse(content)

    @staticmethod
    def _parse(content: str) -> str:
        # Models sometimes wrap the JSON in a markdown fence
        if content.startswith("```"):
            content = content.strip("`")
            if content.startswith("json"):
                content = content[len("json"):]
            content = content.strip()
        try:
            parsed = json.loads(content)
        except json.JSONDecodeError as e:
            raise TransformError(f"Reply is not valid JSON: {content[:80]}") from e
        if not isinstance(parsed, list) or len(parsed) != 1 or not isinstance(parsed[0], str):
            raise TransformError(f"Expected a one-element JSON array of strings, got: {content[:80]}")
        return parsed[0].strip()
