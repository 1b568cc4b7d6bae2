"""
Relay: the core of lawline.
Accepts one chat turn, forwards the conversation to the completion
provider, and re-streams the growing answer to the browser.

One turn goes through two phases:
  - accept(): resolve the caller, find or create the conversation, record
    the user message and the usage-log entry. Failures here are RelayErrors
    and are answered with a JSON error body.
  - stream(): relay provider SSE frames, re-emitting the whole accumulated
    answer on every delta, then persist the reply. Failures here roll back
    the provisional write from accept() and break the stream.

Guest conversations never touch the conversation tables; the final event
carries the full conversation so the browser can keep it.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from urllib.parse import quote
from uuid import uuid4

from lawline.backends.base import BaseBackend
from lawline.config import get_config, model_override
from lawline.errors import AccountNotFound, ConversationNotFound, MessageRequired
from lawline.identity import Authenticated, Guest, Identity, resolve_identity
from lawline.priming import get_priming_prompt
from lawline.storage.models import (
    Conversation,
    Message,
    UsageLogEntry,
    derive_title,
    display_time,
)
from lawline.storage.sqlite_store import SQLiteStore

logger = logging.getLogger(__name__)

# Characters encodeURIComponent leaves alone, beyond quote()'s own set
_URI_COMPONENT_SAFE = "!~*'()"


def parse_sse_deltas(chunk: str) -> list[str]:
    """
    Decode a provider chunk (one or more SSE lines) into content deltas.
    Frames that are not valid JSON are skipped with a warning.
    """
    deltas = []
    for line in chunk.split("\n"):
        line = line.strip()
        if not line.startswith("data:"):
            continue
        data_str = line[5:].strip()
        if not data_str or data_str == "[DONE]":
            continue
        try:
            frame = json.loads(data_str)
        except json.JSONDecodeError as e:
            logger.warning("Invalid JSON chunk %r: %s", data_str[:200], e)
            continue

        choices = frame.get("choices") if isinstance(frame, dict) else None
        if not choices or not isinstance(choices[0], dict):
            continue
        delta = choices[0].get("delta") or {}
        content = delta.get("content") if isinstance(delta, dict) else None
        if isinstance(content, str) and content:
            deltas.append(content)
    return deltas


def sse_event(payload: dict) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


@dataclass(frozen=True)
class RelayTurn:
    """Snapshot of an accepted turn: who asked, and the conversation so far."""
    identity: Identity
    conversation: Conversation
    created: bool = False   # this turn inserted the conversation

    @property
    def headers(self) -> dict:
        """Response metadata, fixed before the first byte is streamed."""
        return {
            "X-Session-Id": quote(self.conversation.id, safe=_URI_COMPONENT_SAFE),
            "X-Chat-Title": quote(self.conversation.title, safe=_URI_COMPONENT_SAFE),
            "X-Is-Guest": "true" if self.identity.is_guest else "false",
        }


class ChatRelay:
    """Orchestrates one request/response cycle between browser and provider."""

    def __init__(self, sqlite: SQLiteStore, backend: BaseBackend, cfg: dict | None = None):
        self.sqlite = sqlite
        self.backend = backend
        self.cfg = cfg if cfg is not None else get_config()

    def _model(self) -> str:
        """A model named in override.yaml wins over the configured one."""
        return model_override() or self.backend.default_model

    def _priming(self) -> str:
        return get_priming_prompt(self.cfg)

    # ─ Accept ───────────────────────────────────────────────────────────────

    async def accept(self, body: dict, headers=None) -> RelayTurn:
        """Validate the request and make the provisional writes for this turn."""
        identity = resolve_identity(body, headers)

        message = body.get("message")
        if not isinstance(message, str) or not message:
            raise MessageRequired()

        chat_id = body.get("chatId") or ""
        chat_id = chat_id if isinstance(chat_id, str) else str(chat_id)

        if isinstance(identity, Guest):
            turn = self._accept_guest(identity, chat_id, message)
        else:
            turn = self._accept_account(identity, chat_id, message)

        self._log_query(identity)
        logger.info(
            "Accepted %s turn for %s (conv=%s, created=%s, %d chars)",
            "guest" if identity.is_guest else "account",
            identity.actor_id, turn.conversation.id, turn.created, len(message),
        )
        return turn

    def _accept_guest(self, identity: Guest, chat_id: str, message: str) -> RelayTurn:
        conversation_id = chat_id or f"guest_chat_{int(time.time() * 1000)}"
        conv = Conversation.start(conversation_id, identity.guest_id, self._priming(), message)
        return RelayTurn(identity=identity, conversation=conv)

    def _accept_account(self, identity: Authenticated, chat_id: str, message: str) -> RelayTurn:
        account = self.sqlite.find_account(identity.identifier)
        if account is None:
            raise AccountNotFound()

        if not chat_id:
            existing = self.sqlite.find_unfinished_conversation(account.id, derive_title(message))
            if existing is not None:
                logger.info("Reusing unfinished conversation %s", existing.id)
                return RelayTurn(identity=identity, conversation=existing)

            conv = Conversation.start(uuid4().hex, account.id, self._priming(), message)
            self.sqlite.create_conversation(conv)
            return RelayTurn(identity=identity, conversation=conv, created=True)

        conv = self.sqlite.get_conversation(chat_id)
        if conv is None or conv.owner_id != account.id:
            raise ConversationNotFound()

        user_msg = Message(role="user", content=message)
        self.sqlite.append_message(conv.id, user_msg)
        return RelayTurn(identity=identity, conversation=conv.with_message(user_msg))

    def _log_query(self, identity: Identity):
        """Best effort: a failed usage-log write never fails the turn."""
        try:
            self.sqlite.log_query(
                UsageLogEntry(actor_id=identity.actor_id, is_guest=identity.is_guest)
            )
        except Exception as e:
            logger.error("Failed to log query for %s: %s", identity.actor_id, e)

    # ─ Stream ───────────────────────────────────────────────────────────────

    async def stream(self, turn: RelayTurn):
        """
        Yield SSE events carrying the full accumulated answer so far.
        Any failure, including the client going away, rolls back and re-raises.
        """
        conv = turn.conversation
        answer = ""

        try:
            async for chunk in self.backend.forward_stream(
                conv.to_provider_messages(), model=self._model(),
            ):
                for delta in parse_sse_deltas(chunk):
                    answer += delta
                    yield sse_event({"content": answer})

            if answer:
                reply = Message(role="assistant", content=answer)
                final = conv.with_message(reply).with_time(display_time())
                if turn.identity.is_guest:
                    yield sse_event({
                        "content": answer,
                        "chatData": final.to_dict(owner_key="guestId"),
                        "isGuest": True,
                    })
                else:
                    self.sqlite.append_message(final.id, reply, time=final.time)

            logger.info("Completed conversation %s (%d chars)", conv.id, len(answer))
        except (Exception, asyncio.CancelledError, GeneratorExit) as e:
            logger.error(
                "Stream for conversation %s failed: %s",
                conv.id, str(e) or type(e).__name__,
            )
            self._rollback(turn)
            raise

    def _rollback(self, turn: RelayTurn):
        """
        Undo this turn's provisional write: drop a conversation it created,
        otherwise remove the trailing user message. One attempt, log-only on
        failure.
        """
        if turn.identity.is_guest:
            return

        conv = turn.conversation
        try:
            if turn.created:
                self.sqlite.delete_conversation(conv.id)
                logger.info("Deleted new conversation %s due to error", conv.id)
            elif len(conv.messages) > 1:
                # A reused conversation may have been answered by the request
                # that created it in the meantime; its reply stays.
                if self.sqlite.remove_last_message(conv.id, time=display_time(), role="user"):
                    logger.info("Removed last message from conversation %s", conv.id)
                else:
                    logger.warning("Conversation %s does not end with a user message, left as is", conv.id)
        except Exception:
            logger.exception("Rollback failed for conversation %s", conv.id)
