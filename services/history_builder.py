# services/history_builder.py
"""
Builds the ordered prompt one debate role sees for its next turn.

Order: persona system prompt (with turn context), the topic as a user message,
then the most recent history entries visible to that role. Whispers addressed
to the other role are dropped before the window is applied, so the window
always holds `window` visible messages.
"""

import logging
from typing import Any, List, Optional, Sequence

from core.errors import ConfigurationError
from services.ai_providers import PromptMessage
from services.name_map import ROLES, display_name, label_for, to_role
from services.system_prompts import get_persona_prompt

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_WINDOW = 6


def _sender(message: Any) -> str:
    # API messages say "defender", stored rows say "DEFENDER"
    return (getattr(message, "sender", "") or "").lower()


def is_visible_to(message: Any, role: str) -> bool:
    """A whisper is visible only to the role it targets; everything else to both."""
    if not getattr(message, "is_whisper", False):
        return True
    return to_role(getattr(message, "target_ai", None)) == role


def _turn_context(role: str, total_messages: int, recent: Sequence[Any]) -> str:
    turn = total_messages // 2 + 1
    lines = [
        "## Current Context:",
        f"- This is turn {turn} of the debate",
        f"- You are responding as {display_name(role)} (The {role.title()})",
        "- Focus on NEW points - avoid repeating previous arguments",
        "- Build upon the conversation so far with fresh perspectives",
    ]
    if recent:
        lines.append("")
        lines.append("Recent conversation has covered: " + " -> ".join(_sender(m) for m in recent))
    return "\n".join(lines)


def build_conversation_history(
    messages: Sequence[Any],
    current_role: str,
    topic: str,
    window: Optional[int] = DEFAULT_HISTORY_WINDOW,
    personality: Optional[str] = None,
) -> List[PromptMessage]:
    """
    Assemble the prompt for `current_role` ("defender" or "critic").

    `messages` are chronological and need `sender`, `content`, `is_whisper`
    and `target_ai` attributes (schemas.ChatMessage or models.Message both
    work). `window=None` keeps the whole visible history.
    """
    if current_role not in ROLES:
        raise ConfigurationError(f'Invalid currentTurn. Must be "defender" or "critic", got {current_role!r}')

    visible = [m for m in messages if is_visible_to(m, current_role)]
    recent = visible[-window:] if window else visible

    system_prompt = get_persona_prompt(current_role, display_name(current_role), personality)
    history: List[PromptMessage] = [
        PromptMessage("system", f"{system_prompt}\n\n{_turn_context(current_role, len(messages), recent)}"),
        PromptMessage("user", f"Topic for debate: {topic}"),
    ]

    for message in recent:
        sender = _sender(message)
        if sender == "user":
            history.append(PromptMessage("user", message.content))
        elif sender == current_role:
            history.append(PromptMessage("assistant", message.content))
        else:
            history.append(PromptMessage("user", f"{label_for(sender)}: {message.content}"))

    logger.debug(
        "Built %d prompt messages for %s (%d visible of %d)",
        len(history), current_role, len(visible), len(messages),
    )
    return history
