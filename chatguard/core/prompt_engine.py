"""
Prompt engine shared by every classification provider.

All adapters send the same system instruction and the same rendered user
prompt, so results from different backends stay comparable.
"""

import logging
import threading
from typing import Optional

from jinja2 import BaseLoader, Environment, StrictUndefined

logger = logging.getLogger(__name__)

SYSTEM_INSTRUCTION = """You are a child-safety moderation assistant. You analyze chat messages and classify them into exactly one threat category.

Categories:
1 - Grooming (inducement to sexual activity)
2 - Threats, blackmail, extortion
3 - Physical violence / bullying
4 - Encouragement of suicide or self-harm
5 - Encouragement of dangerous games or activities
6 - Propaganda of prohibited substances
7 - Financial fraud
8 - Collection of personal data (phishing)
9 - Neutral communication

You MUST respond with valid JSON only. No other text. Format:
{"category_id": 9, "category_name": "Neutral communication", "justification": "brief explanation", "confidence": 0.9}

Rules:
1. "category_id" MUST be an integer from 1 to 9
2. "confidence" is a number between 0.0 (uncertain) and 1.0 (certain)
3. If nothing suspicious is present, use 9 (neutral)
4. Keep "justification" brief (under 50 words)"""

CLASSIFY_TEMPLATE = """Classify the following chat message.

Message:
{{ text }}

Respond with JSON only."""

# Longer messages are truncated before being sent to a provider
MAX_MESSAGE_CHARS = 4000


def strip_code_fence(content: str) -> str:
    """
    Remove a markdown code fence wrapped around a model response.

    Handles ```json ... ``` and bare ``` ... ``` blocks.
    """
    cleaned = content.strip()
    if cleaned.startswith("```json"):
        cleaned = cleaned[len("```json"):]
    elif cleaned.startswith("```"):
        cleaned = cleaned[3:]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    return cleaned.strip()


class PromptEngine:
    """
    Jinja2-based prompt builder.

    Args:
        system_instruction: Override the shared system instruction
        template: Override the user prompt template (Jinja2 syntax, `text` variable)
        max_chars: Truncation limit for the message body
    """

    def __init__(
        self,
        system_instruction: str = SYSTEM_INSTRUCTION,
        template: str = CLASSIFY_TEMPLATE,
        max_chars: int = MAX_MESSAGE_CHARS,
    ):
        self.system_instruction = system_instruction
        self.max_chars = max_chars
        self._env = Environment(
            loader=BaseLoader(), autoescape=False, undefined=StrictUndefined
        )
        self._template = self._env.from_string(template)

    def build_user_prompt(self, text: str) -> str:
        """Render the user prompt for one message."""
        snippet = text[: self.max_chars] if text else "(empty message)"
        return self._template.render(text=snippet)


# Global prompt engine instance
_prompt_engine: Optional[PromptEngine] = None
_prompt_lock = threading.Lock()


def get_prompt_engine() -> PromptEngine:
    """Get the global prompt engine instance."""
    global _prompt_engine
    with _prompt_lock:
        if _prompt_engine is None:
            _prompt_engine = PromptEngine()
        return _prompt_engine
