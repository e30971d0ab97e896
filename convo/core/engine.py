"""Conversation engine: owns one chat session and drives the API.

The engine keeps the live session (system message, history, model,
temperature, conversation id), builds bounded requests, commits replies to
history and persists snapshots through an injected ``ChatStorage``.

It holds no lock. Callers serialize mutating calls on one instance.
"""

from __future__ import annotations

import asyncio
import dataclasses
from contextlib import AsyncExitStack
from datetime import datetime, timezone
from typing import Any, Iterable
from uuid import uuid4

import structlog

from convo.config import DEFAULT_SYSTEM_PROMPT, ApiConfig, ConvoConfig, clamp_temperature
from convo.core.errors import BadResponse, InvalidArgument, NoStorage, OutOfRange
from convo.core.storage import ChatStorage, build_storage
from convo.core.streaming import ChatStream
from convo.core.transport import ChatTransport, HttpxTransport
from convo.core.truncation import HistoryTruncator
from convo.core.types import (
    ChatRequest,
    CompletionResponse,
    Conversation,
    GPTModel,
    Message,
    Role,
    parse_error_message,
)

logger = structlog.get_logger()


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _model_name(model: GPTModel | str) -> str:
    return model.value if isinstance(model, GPTModel) else model


class ConversationEngine:
    """Stateful chat session on top of a chat-completions transport."""

    default_system_message = Message(role=Role.SYSTEM, content=DEFAULT_SYSTEM_PROMPT)

    def __init__(
        self,
        api_key: str | None = None,
        model: GPTModel | str = GPTModel.GPT_3_5_TURBO,
        temperature: float = 0.8,
        system_prompt: str | None = None,
        storage: ChatStorage | None = None,
        transport: ChatTransport | None = None,
        truncator: HistoryTruncator | None = None,
        base_url: str = ApiConfig().base_url,
        timeout: float = 60.0,
        max_tokens: int | None = None,
        presence_penalty: float | None = None,
        frequency_penalty: float | None = None,
        logit_bias: dict[int, int] | None = None,
    ) -> None:
        self._owns_transport = transport is None
        self._transport = transport or HttpxTransport(base_url, api_key, timeout=timeout)
        self._storage = storage
        self.truncator = truncator or HistoryTruncator()

        self._model = _model_name(model)
        self._temperature = clamp_temperature(temperature)
        self.max_tokens = max_tokens
        self.presence_penalty = presence_penalty
        self.frequency_penalty = frequency_penalty
        self.logit_bias = logit_bias

        self._system_message = (
            Message(role=Role.SYSTEM, content=system_prompt)
            if system_prompt
            else self.default_system_message
        )
        self._history: list[Message] = []
        self._conversation_id: str | None = None
        self._last_interaction = _now()

        self._pending_saves: set[asyncio.Task] = set()

    @classmethod
    def from_config(
        cls,
        config: ConvoConfig,
        storage: ChatStorage | None = None,
        transport: ChatTransport | None = None,
    ) -> ConversationEngine:
        """Build an engine from a loaded ``ConvoConfig``."""
        return cls(
            api_key=config.api.get_api_key(),
            model=config.chat.model,
            temperature=config.chat.temperature,
            system_prompt=config.chat.system_prompt,
            storage=storage if storage is not None else build_storage(config.storage),
            transport=transport,
            truncator=HistoryTruncator(
                token_limit=config.truncation.token_limit,
                chars_per_token=config.truncation.chars_per_token,
            ),
            base_url=config.api.base_url,
            timeout=config.api.timeout,
            max_tokens=config.chat.max_tokens,
            presence_penalty=config.chat.presence_penalty,
            frequency_penalty=config.chat.frequency_penalty,
        )

    # --- Read-only views ---

    @property
    def system_message(self) -> Message:
        return self._system_message

    @property
    def history_list(self) -> tuple[Message, ...]:
        return tuple(self._history)

    @property
    def conversation_id(self) -> str | None:
        return self._conversation_id

    @property
    def last_interaction(self) -> datetime:
        return self._last_interaction

    @property
    def storage(self) -> ChatStorage | None:
        return self._storage

    @property
    def model(self) -> str:
        return self._model

    @property
    def temperature(self) -> float:
        return self._temperature

    @temperature.setter
    def temperature(self, value: float) -> None:
        self._temperature = clamp_temperature(value)

    @property
    def is_default_session(self) -> bool:
        """True until the session has an id or any history."""
        return self._conversation_id is None and not self._history

    @property
    def current_full_message_history(self) -> list[Message]:
        return [self._system_message, *self._history]

    @property
    def current_conversation(self) -> Conversation:
        """Snapshot of the live session.

        Before the first save there is no id yet, so each read mints a new
        one; call ``save_conversation()`` first if the id matters.
        """
        return self._snapshot()

    # --- Configuration ---

    def set_temperature(self, value: float) -> None:
        self.temperature = value

    def set_model(self, model: GPTModel | str) -> None:
        self._model = _model_name(model)

    async def set_system_prompt(self, text: str) -> None:
        """Replace the system message and persist the session."""
        if not text or not text.strip():
            raise InvalidArgument("system prompt must not be empty")
        self._system_message = Message(role=Role.SYSTEM, content=text)
        logger.debug("system_prompt_set", conversation_id=self._conversation_id)
        await self._save_quietly()

    # --- History mutation ---

    def add_example_interaction(self, user_text: str, assistant_text: str) -> None:
        """Seed a few-shot user/assistant pair."""
        self._history.append(Message(role=Role.USER, content=user_text, is_example=True))
        self._history.append(
            Message(role=Role.ASSISTANT, content=assistant_text, is_example=True)
        )

    def set_chat_history_examples(
        self,
        messages: Iterable[Message],
        system_message: Message | None = None,
    ) -> None:
        """Replace history with example turns (and optionally the system message)."""
        self._system_message = system_message or self.default_system_message
        self._history = [
            dataclasses.replace(m, is_example=True)
            for m in messages
            if m.role != Role.SYSTEM
        ]

    async def remove_messages_from(self, index: int) -> None:
        """Keep history strictly before ``index`` and persist.

        Raises:
            OutOfRange: if ``index`` is not a position in the current history.
        """
        self._truncate_history(index)
        await self._save_quietly()

    def delete_history(self, keep_examples: bool = False) -> None:
        """Drop non-system messages. The system message and id stay.

        With ``keep_examples`` the seeded example turns survive and only the
        live exchange is dropped.
        """
        before = len(self._history)
        if keep_examples:
            self._history = [m for m in self._history if m.is_example]
        else:
            self._history.clear()
        logger.info(
            "history_deleted",
            dropped=before - len(self._history),
            conversation_id=self._conversation_id,
        )

    def _truncate_history(self, index: int) -> None:
        if not 0 <= index < len(self._history):
            raise OutOfRange(index, len(self._history))
        del self._history[index:]

    # --- Sending ---

    def _build_request(
        self,
        text: str,
        overwrite_from_index: int | None,
        stream: bool,
    ) -> tuple[dict[str, Any], Message]:
        if not text:
            raise InvalidArgument("message text must not be empty")
        if overwrite_from_index is not None:
            self._truncate_history(overwrite_from_index)

        user_msg = Message(role=Role.USER, content=text)
        messages = self.truncator.build(self._system_message, self._history, user_msg)
        request = ChatRequest(
            model=self._model,
            temperature=self._temperature,
            messages=messages,
            stream=stream,
            max_tokens=self.max_tokens,
            presence_penalty=self.presence_penalty,
            frequency_penalty=self.frequency_penalty,
            logit_bias=self.logit_bias,
        )
        logger.debug(
            "chat_request",
            model=self._model,
            messages=len(messages),
            history=len(self._history),
            stream=stream,
        )
        return request.to_payload(), user_msg

    def _commit(self, user_msg: Message, response_text: str) -> bool:
        """Append the user turn and the reply together, or neither."""
        if not response_text:
            logger.warning("empty_response_not_committed", model=self._model)
            return False
        self._history.append(user_msg)
        self._history.append(Message(role=Role.ASSISTANT, content=response_text))
        self._last_interaction = _now()
        return True

    async def send_message(
        self,
        text: str,
        overwrite_from_index: int | None = None,
        save_on_completion: bool = True,
    ) -> str:
        """Send ``text`` and return the complete assistant reply.

        With ``overwrite_from_index`` the history is first cut back to just
        before that index, which rewrites the conversation from that turn on.
        """
        payload, user_msg = self._build_request(text, overwrite_from_index, stream=False)

        response = await self._transport.post(payload)
        if not response.ok:
            error = BadResponse(response.status_code, parse_error_message(response.text))
            logger.warning("chat_bad_response", status=response.status_code, error=str(error))
            raise error

        completion = CompletionResponse.from_text(response.text)
        logger.info(
            "chat_response",
            model=self._model,
            chars=len(completion.content),
            finish_reason=completion.finish_reason,
            **completion.usage,
        )

        if self._commit(user_msg, completion.content) and save_on_completion:
            await self._save_quietly()
        return completion.content

    async def send_message_stream(
        self,
        text: str,
        overwrite_from_index: int | None = None,
        save_on_completion: bool = True,
    ) -> ChatStream:
        """Send ``text`` and return a stream of reply fragments.

        Nothing reaches history until the stream is fully consumed; then the
        user turn and the whole reply are committed at once and, if
        requested, a save is issued in the background before the stream
        reports completion.
        """
        payload, user_msg = self._build_request(text, overwrite_from_index, stream=True)

        stack = AsyncExitStack()
        try:
            response = await stack.enter_async_context(self._transport.stream(payload))
            if not response.ok:
                body = "".join([line async for line in response.lines()])
                error = BadResponse(response.status_code, parse_error_message(body))
                logger.warning(
                    "chat_bad_response", status=response.status_code, error=str(error)
                )
                raise error
        except BaseException:
            await stack.aclose()
            raise

        def on_complete(full_text: str) -> None:
            logger.info("chat_stream_complete", model=self._model, chars=len(full_text))
            if self._commit(user_msg, full_text) and save_on_completion:
                self._schedule_save()

        return ChatStream(response.lines(), on_complete, on_close=stack.aclose)

    # --- Persistence ---

    def _snapshot(self) -> Conversation:
        return Conversation(
            messages=self.current_full_message_history,
            id=self._conversation_id or str(uuid4()),
            last_interaction=self._last_interaction,
        )

    def _prepare_save(self) -> Conversation | None:
        if self.is_default_session:
            return None
        if self._conversation_id is None:
            self._conversation_id = str(uuid4())
            logger.debug("conversation_id_assigned", conversation_id=self._conversation_id)
        return self._snapshot()

    async def save_conversation(self) -> None:
        """Persist the session, assigning an id on first save.

        An untouched default session (no id, no history) is not saved.
        """
        if self._storage is None:
            raise NoStorage("save_conversation")
        snapshot = self._prepare_save()
        if snapshot is None:
            logger.debug("save_skipped_default_session")
            return
        await self._storage.save(snapshot)
        logger.info(
            "conversation_saved",
            conversation_id=snapshot.id,
            messages=snapshot.message_count,
        )

    async def _store_quietly(self, snapshot: Conversation) -> None:
        try:
            await self._storage.save(snapshot)
        except Exception as e:
            logger.warning(
                "conversation_save_failed", conversation_id=snapshot.id, error=str(e)
            )

    async def _save_quietly(self) -> None:
        if self._storage is None:
            return
        snapshot = self._prepare_save()
        if snapshot is not None:
            await self._store_quietly(snapshot)

    def _schedule_save(self) -> None:
        if self._storage is None:
            return
        snapshot = self._prepare_save()
        if snapshot is None:
            return
        task = asyncio.create_task(self._store_quietly(snapshot))
        self._pending_saves.add(task)
        task.add_done_callback(self._pending_saves.discard)

    async def wait_for_pending_saves(self) -> None:
        """Wait for background saves issued by streamed sends."""
        if self._pending_saves:
            await asyncio.gather(*list(self._pending_saves))

    async def load_conversation(self, conversation_id: str, save_existing: bool = True) -> None:
        """Switch the session to a stored conversation.

        Raises:
            NoStorage: if no storage backend is configured.
            NotFound: if the id is unknown (the current session is kept).
        """
        if self._storage is None:
            raise NoStorage("load_conversation")
        if save_existing:
            await self._save_quietly()

        conversation = await self._storage.load(conversation_id)
        self.load_snapshot(conversation)
        logger.info(
            "conversation_loaded",
            conversation_id=conversation_id,
            messages=conversation.message_count,
        )

    def load_snapshot(self, conversation: Conversation) -> None:
        """Replace the whole session with a copy of ``conversation``."""
        snapshot = conversation.copy()
        self._system_message = snapshot.system_message or self.default_system_message
        self._history = snapshot.history_list
        self._conversation_id = snapshot.id
        self._last_interaction = snapshot.last_interaction

    async def new_conversation(self, save_existing: bool = True) -> None:
        """Start over with the default system message and no id."""
        if save_existing:
            await self._save_quietly()
        self._system_message = self.default_system_message
        self._history = []
        self._conversation_id = None
        self._last_interaction = _now()

    # --- Lifecycle ---

    async def aclose(self) -> None:
        await self.wait_for_pending_saves()
        if self._owns_transport:
            await self._transport.aclose()

    async def __aenter__(self) -> ConversationEngine:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
