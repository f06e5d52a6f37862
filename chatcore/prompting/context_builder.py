"""Conversation context assembly for plain-text turns.

Architectural role:
    Converts stored session history plus the new user message into the exact
    prompt text sent to the runtime. Pure: no I/O, no global state.

Window strategy:
    - History is sorted ascending by `created_at` before windowing, so the store
      may return pages in any order.
    - Only the last `window` entries survive.
    - A user entry whose content equals the current message is dropped. This
      keeps the current turn out of its own context even when an upstream
      caller persisted it before fetching history.

Prompt component order:
    1) surviving history blocks (`User:` / `Assistant:`)
    2) current user turn
    3) fixed direct-answer instruction
"""

from chatcore.llm.provider_config import CONTEXT_WINDOW


USER_LABEL = "User"
ASSISTANT_LABEL = "Assistant"

DIRECT_ANSWER_SUFFIX = "Please answer directly, without any role prefix:"


def _field(entry, name):
    if isinstance(entry, dict):
        return entry.get(name)
    return getattr(entry, name, None)


class ContextBuilder:
    """Builds windowed conversation prompts.

    Args:
        window: Maximum number of history entries kept (default from
            `CONTEXT_WINDOW`).
    """

    def __init__(self, window: int = CONTEXT_WINDOW):
        self.window = max(0, int(window))

    def build(self, history, current_message: str) -> str:
        """Return the prompt text for `current_message` given prior `history`.

        Args:
            history: Message records (objects or dicts with `role`, `content`,
                `created_at`). Not mutated.
            current_message: The new user message.

        Edge cases:
            - Empty history yields only the current turn and suffix.
            - Entries without `created_at` keep their relative order (stable
              sort puts them first).
        """
        ordered = sorted(
            history or [],
            key=lambda m: (_field(m, "created_at") is not None, _field(m, "created_at") or 0),
        )

        recent = ordered[-self.window:] if self.window else []

        blocks = []
        for entry in recent:
            role = _field(entry, "role")
            content = _field(entry, "content") or ""

            if role == "user" and content == current_message:
                continue

            label = USER_LABEL if role == "user" else ASSISTANT_LABEL
            blocks.append(f"{label}: {content}")

        blocks.append(f"{USER_LABEL}: {current_message}")
        blocks.append(DIRECT_ANSWER_SUFFIX)

        return "\n\n".join(blocks)
