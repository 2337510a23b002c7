import html
import re
from typing import Any, Dict, List, Optional

from app.core.exceptions import ValidationError
from app.llm.base import DEFAULT_SYSTEM_PROMPT

TAG_RE = re.compile(r"<[^>]*>")
WHITESPACE_RE = re.compile(r"\s+")


class PromptBuilder:
    def sanitize_message(self, message: Optional[str], max_length: int = 4000) -> str:
        """
        Strip markup from visitor input and normalize whitespace.
        """
        text = TAG_RE.sub("", message or "")
        text = html.unescape(text)
        text = WHITESPACE_RE.sub(" ", text).strip()

        if not text:
            raise ValidationError("Message cannot be empty", field="message")
        if max_length and len(text) > max_length:
            raise ValidationError(f"Message cannot exceed {max_length} characters", field="message")
        return text

    def build_system_prompt(
        self,
        base_prompt: Optional[str],
        widget_name: Optional[str] = None,
        behavior: Optional[Dict[str, Any]] = None,
        user_data: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Provider system prompt extended with the widget's context and the visitor's details.
        """
        prompt = base_prompt or DEFAULT_SYSTEM_PROMPT

        if widget_name:
            prompt += "\n\nWidget Context:\n"
            prompt += f"- Widget Name: {widget_name}\n"
            welcome = (behavior or {}).get("welcomeMessage")
            if welcome:
                prompt += f"- Welcome Message: {welcome}\n"

        user_data = user_data or {}
        if user_data.get("name") or user_data.get("email"):
            prompt += "\nUser Information:\n"
            if user_data.get("name"):
                prompt += f"- Name: {user_data['name']}\n"
            if user_data.get("email"):
                prompt += f"- Email: {user_data['email']}\n"

        return prompt

    def build_context(self, rows: List[Any]) -> List[Dict[str, str]]:
        """
        Convert stored message rows (oldest first) into prior conversation turns.
        """
        context = []
        for row in rows:
            if row.sender_type == "user" and row.message:
                context.append({"role": "user", "content": row.message})
            elif row.sender_type == "ai" and row.response:
                context.append({"role": "assistant", "content": row.response})
        return context
