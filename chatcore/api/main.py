"""
Minimal interactive CLI entrypoint for chatcore.

Architectural role:
- Provides a terminal-only interface over `ConversationOrchestrator`.
- Streams assistant tokens to stdout as they arrive.

Request lifecycle (per user turn, CLI):
1. Read a single line from stdin.
2. Handle local control commands (`exit`/`quit`, `new chat`/`clear chat`,
   `/title`, `/models`).
3. Forward regular prompts to `ConversationOrchestrator.handle` with streaming.
4. Print image attachments and the session title after the reply.

Error handling strategy:
- Handles EOF and keyboard interrupts without traceback output.
- Provider failures arrive as fallback replies and are printed like any reply.

Side effects:
- Configures logging from `LOG_LEVEL` (default `WARNING`).
- Mirrors the store to `STORE_SNAPSHOT_PATH` when set.
"""

import logging
import os
import sys

from dotenv import load_dotenv

from chatcore.core.engine import ConversationOrchestrator
from chatcore.llm.provider_config import STORE_SNAPSHOT_PATH
from chatcore.memory.store import InMemoryStore


# Single local identity for terminal sessions.
CLI_OWNER_ID = "local"


def _print_token(fragment, accumulated):
    print(fragment, end="", flush=True)


def main():
    """
    Run the interactive terminal session.

    Interaction with core:
    - Calls `orchestrator.handle(session_id, CLI_OWNER_ID, question, ...)` for
      non-control user inputs; the returned session id is reused next turn.
    """
    load_dotenv()
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "WARNING").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if hasattr(sys.stdout, "reconfigure"):
        sys.stdout.reconfigure(encoding="utf-8", errors="replace")

    orchestrator = ConversationOrchestrator(InMemoryStore(snapshot_path=STORE_SNAPSHOT_PATH))
    session_id = None

    print("chatcore started. (Type 'exit' to quit)\n")

    if not orchestrator.provider.is_available():
        print(f"Warning: no runtime answering at {orchestrator.provider.base_url}; replies will be fallbacks.\n")

    print("-" * 60)

    while True:

        try:
            question = input("You: ").strip()

        except EOFError:
            print()
            break

        except KeyboardInterrupt:
            print("\nInterrupted.")
            break

        if not question:
            continue

        command = question.lower()

        if command in ("exit", "quit"):
            print("Shutting down.")
            break

        if command in ("new chat", "clear chat"):
            session_id = None
            print("Started a new conversation.")
            continue

        if command == "/models":
            models = orchestrator.list_models()
            print("\n".join(models) if models else "No models available.")
            continue

        if command == "/title":
            if session_id is None:
                print("No conversation yet.")
            else:
                session = orchestrator.generate_title(CLI_OWNER_ID, session_id, force=True)
                print(f"Title: {session.title}")
            continue

        print("\nAssistant: ", end="", flush=True)

        result = orchestrator.handle(
            session_id,
            CLI_OWNER_ID,
            question,
            {"stream": True},
            on_token=_print_token,
        )
        session_id = result.session.id

        if result.assistant_message.metadata.get("model") == "fallback":
            # Fallback replies are not streamed.
            print(result.assistant_message.content, end="")
        elif result.assistant_message.metadata.get("partial"):
            print(" [interrupted]", end="")
        print()

        for attachment in result.assistant_message.attachments:
            print(f"[{attachment.type}] {attachment.url}")

        print("\n" + "-" * 60 + "\n")


if __name__ == "__main__":
    main()
