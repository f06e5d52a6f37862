"""Core conversation orchestration.

Architectural role:
    Provides the single entrypoint used by the API/CLI layers to turn one user
    message into a persisted exchange `{user_message, assistant_message,
    session}`, plus the owner-checked session operations around it.

Control-flow model (`ConversationOrchestrator.handle`):
    1. Resolve the session (create, or load and verify ownership).
    2. Fetch history BEFORE persisting the new user message.
    3. Persist the user message.
    4. Build the prompt from history + message.
    5. Image intent -> image branch (one terminal token callback).
       Otherwise -> provider call (streamed when requested).
    6. Provider failure -> canned fallback reply, never an exception. A stream
       cut off after delivering tokens keeps that prefix, flagged `partial`.
    7. Clean model output, partial prefixes included (not fallback, not image
       replies).
    8. Persist the assistant message and touch the session.

Error handling strategy:
    `AccessDenied` and `SessionNotFound` always propagate. Every other failure
    inside a turn degrades into an assistant message, so a turn always yields a
    reply.

Runtime overrides:
    `set_dynamic_config` stores a `DynamicConfig` per session. It is passed
    explicitly into every provider call of that session; the provider client
    itself holds no mutable override state.
"""

import logging
import random
import threading

from chatcore.core.errors import AccessDenied, ProviderUnavailable, SessionNotFound
from chatcore.image.service import ImageIntentRouter
from chatcore.llm.client import ProviderClient
from chatcore.llm.postprocess import clean
from chatcore.llm.provider_config import HISTORY_FETCH_LIMIT
from chatcore.llm.service import generate_conversation_title, title_from_message
from chatcore.llm.types import SAMPLING_FIELDS, DynamicConfig, ProviderRequest
from chatcore.memory.models import (
    DEFAULT_SESSION_TITLE,
    ROLE_USER,
    SESSION_ARCHIVED,
    SESSION_DELETED,
    Attachment,
    ExchangeResult,
    Message,
    Session,
)
from chatcore.prompting.context_builder import ContextBuilder


logger = logging.getLogger(__name__)


FALLBACK_RESPONSES = (
    "Sorry, I'm having technical difficulties right now. Please try again in a moment.",
    "A temporary problem occurred. Please rephrase your question.",
    "I'm experiencing some technical difficulties. Please try again.",
)

# Request options copied into session metadata on creation.
SESSION_METADATA_KEYS = ("model", "temperature", "max_tokens")


def _request_from_options(prompt: str, options: dict) -> ProviderRequest:
    sampling = {
        attr: options[attr]
        for attr, _ in SAMPLING_FIELDS
        if options.get(attr) is not None
    }
    return ProviderRequest.from_prompt(
        prompt,
        model=options.get("model"),
        stream=bool(options.get("stream")),
        timeout=options.get("timeout"),
        base_url=options.get("base_url"),
        **sampling,
    )


class ConversationOrchestrator:
    """Owner-checked conversation flow over a `MessageStore`.

    Args:
        store: Persistence collaborator implementing `MessageStore`.
        provider: Text-generation client.
        image_router: Image branch; built around `provider` when omitted.
        context_builder: Prompt builder; default window when omitted.
        history_limit: Maximum number of stored messages fetched per turn.
    """

    def __init__(
        self,
        store,
        provider: ProviderClient | None = None,
        image_router: ImageIntentRouter | None = None,
        context_builder: ContextBuilder | None = None,
        history_limit: int = HISTORY_FETCH_LIMIT,
    ):
        self.store = store
        self.provider = provider or ProviderClient()
        self.image_router = image_router or ImageIntentRouter(self.provider)
        self.context_builder = context_builder or ContextBuilder()
        self.history_limit = history_limit

        self._dynamic: dict[str, DynamicConfig] = {}
        self._dynamic_lock = threading.Lock()

    # =========================================================
    # SESSION ACCESS
    # =========================================================

    def _load_owned_session(self, owner_id: str, session_id: str) -> Session:
        session = self.store.get_session(session_id)

        if session is None:
            raise SessionNotFound(f"Session {session_id} not found")

        if session.owner_id != owner_id:
            logger.warning("Access denied: owner %s addressed session %s", owner_id, session_id)
            raise AccessDenied("Access to this session is denied")

        if session.status == SESSION_DELETED:
            raise SessionNotFound(f"Session {session_id} not found")

        return session

    def create_session(self, owner_id: str, title: str | None = None, metadata=None) -> Session:
        session = Session(
            owner_id=owner_id,
            title=title or DEFAULT_SESSION_TITLE,
            metadata=dict(metadata or {}),
        )
        return self.store.create_session(session)

    def get_session(self, owner_id: str, session_id: str) -> Session:
        return self._load_owned_session(owner_id, session_id)

    def list_sessions(self, owner_id: str, page: int = 1, limit: int = 20):
        return self.store.list_sessions(owner_id, page=page, limit=limit)

    def get_messages(self, owner_id: str, session_id: str, page: int = 1, limit: int = 50):
        self._load_owned_session(owner_id, session_id)
        return self.store.list_messages(session_id, page=page, limit=limit)

    def archive_session(self, owner_id: str, session_id: str) -> Session:
        self._load_owned_session(owner_id, session_id)
        return self.store.patch_session(session_id, status=SESSION_ARCHIVED)

    def delete_session(self, owner_id: str, session_id: str) -> Session:
        """Soft-delete: the session is hidden but never removed."""
        self._load_owned_session(owner_id, session_id)
        with self._dynamic_lock:
            self._dynamic.pop(session_id, None)
        return self.store.patch_session(session_id, status=SESSION_DELETED)

    def set_dynamic_config(self, owner_id, session_id, base_url=None, timeout=None) -> DynamicConfig:
        """Store a runtime override for one session, merged over any earlier one."""
        self._load_owned_session(owner_id, session_id)
        update = DynamicConfig(base_url=base_url, timeout=timeout)

        with self._dynamic_lock:
            merged = self._dynamic.get(session_id, DynamicConfig()).merged_with(update)
            self._dynamic[session_id] = merged

        logger.info("Dynamic runtime config for session %s: %s", session_id, merged)
        return merged

    def dynamic_config_for(self, session_id: str) -> DynamicConfig | None:
        with self._dynamic_lock:
            return self._dynamic.get(session_id)

    def attach_image(self, owner_id, message_id, url, filename, original_prompt=None, metadata=None) -> Message:
        """Append an image attachment to an assistant message the caller owns."""
        message = self.store.get_message(message_id)
        if message is None:
            raise SessionNotFound(f"Message {message_id} not found")

        self._load_owned_session(owner_id, message.session_id)

        attachment = Attachment(
            type="image",
            url=url,
            filename=filename,
            original_prompt=original_prompt,
            metadata=dict(metadata or {}),
        )
        return self.store.add_attachment(message_id, attachment)

    def generate_title(self, owner_id: str, session_id: str, model=None, force=False) -> Session:
        """Replace the default session title with a model-generated one.

        The first user message of the session is the title source. Sessions
        without one, or already carrying a custom title (unless `force`), keep
        their current title.
        """
        session = self._load_owned_session(owner_id, session_id)
        if session.title != DEFAULT_SESSION_TITLE and not force:
            return session

        # Pages run newest first; the last page holds the opening messages.
        _, total = self.store.list_messages(session_id, page=1, limit=1)
        oldest_page = max(1, -(-total // self.history_limit))
        messages, _ = self.store.list_messages(session_id, page=oldest_page, limit=self.history_limit)

        first_user = next((m for m in messages if m.role == ROLE_USER), None)
        if first_user is None:
            return session

        title = generate_conversation_title(
            self.provider,
            first_user.content,
            model=model,
            dynamic=self.dynamic_config_for(session_id),
        )
        return self.store.patch_session(session_id, title=title)

    # =========================================================
    # CONVERSATION TURN
    # =========================================================

    def handle(self, session_ref, owner_id: str, content: str, options=None, on_token=None) -> ExchangeResult:
        """Process one user message and persist the resulting exchange.

        Args:
            session_ref: Existing session id, or `None` to start a new session.
            owner_id: Caller identity from the identity provider.
            content: User message text.
            options: Optional dict of `model`, sampling parameters
                (`temperature`, `max_tokens`, `top_k`, `top_p`,
                `frequency_penalty`, `presence_penalty`, `repeat_penalty`,
                `seed`), `stream`, `timeout`, `base_url` and `image_params`.
            on_token: Optional `callback(fragment, accumulated)` for streamed
                replies. Image replies arrive as one terminal callback.

        Returns:
            `ExchangeResult` with both persisted messages and the session.

        Raises:
            AccessDenied: `session_ref` belongs to another owner.
            SessionNotFound: `session_ref` does not exist or was deleted.
            ValueError: `content` is blank.
        """
        if not content or not content.strip():
            raise ValueError("Message content is required")

        options = dict(options or {})

        if session_ref is None:
            session = self.store.create_session(
                Session(
                    owner_id=owner_id,
                    title=title_from_message(content),
                    metadata={
                        k: options[k] for k in SESSION_METADATA_KEYS if options.get(k) is not None
                    },
                )
            )
            logger.info("Created session %s for owner %s", session.id, owner_id)
        else:
            session = self._load_owned_session(owner_id, session_ref)

        # History must be read before the new user message exists in the store.
        history, _ = self.store.list_messages(session.id, page=1, limit=self.history_limit)

        user_message = self.store.create_message(Message.user(session.id, content))

        prompt = self.context_builder.build(history, content)
        dynamic = self.dynamic_config_for(session.id)

        attachments = []

        if self.image_router.classify(content):
            reply = self.image_router.handle(content, options, dynamic=dynamic)
            reply_content = reply.content
            metadata = reply.metadata
            attachments = reply.attachments

            if on_token is not None:
                on_token(reply_content, reply_content)
        else:
            reply_content, metadata = self._generate_text(prompt, options, history, on_token, dynamic)

        assistant_message = self.store.create_message(
            Message.assistant(session.id, reply_content, metadata, attachments)
        )

        # Only activity changes here; status and title may have moved on meanwhile.
        session = self.store.touch_session(session.id)

        return ExchangeResult(
            user_message=user_message,
            assistant_message=assistant_message,
            session=session,
        )

    def _generate_text(self, prompt, options, history, on_token, dynamic):
        request = _request_from_options(prompt, options)
        delivered = []

        def forward(fragment, accumulated):
            delivered[:] = [accumulated]
            if on_token is not None:
                on_token(fragment, accumulated)

        try:
            response = self.provider.complete(
                request,
                on_token=forward if request.stream else None,
                dynamic=dynamic,
            )
        except ProviderUnavailable as err:
            partial = clean(delivered[0]) if delivered else ""
            if partial:
                # The caller already holds these tokens; persist what they saw.
                logger.error("Stream aborted after partial reply: %s", err)
                return partial, {
                    "model": request.model or self.provider.default_model,
                    "error": True,
                    "partial": True,
                    "original_error": str(err),
                    "used_history": len(history) > 0,
                }

            logger.error("Provider unavailable, using fallback reply: %s", err)
            return random.choice(FALLBACK_RESPONSES), {
                "model": "fallback",
                "error": True,
                "original_error": str(err),
                "used_history": False,
            }

        metadata = {
            "model": response.model,
            "token_count": response.token_count,
            "processing_time_ms": response.processing_time_ms,
            "endpoint": response.endpoint_used,
            "used_history": len(history) > 0,
        }
        if request.temperature is not None:
            metadata["temperature"] = request.temperature

        return clean(response.content), metadata

    # =========================================================
    # RUNTIME DISCOVERY
    # =========================================================

    def list_models(self, owner_id: str | None = None, session_id: str | None = None) -> list[str]:
        """Models advertised by the runtime, honoring a session override when given."""
        dynamic = None
        if session_id is not None:
            self._load_owned_session(owner_id, session_id)
            dynamic = self.dynamic_config_for(session_id)
        return self.provider.list_models(dynamic=dynamic)
