"""Wire format for persisted conversations.

The blob stored on a prompt row looks like::

    {"type": "conversation", "messages": [{"id": ..., "type": "user"|"ai", "content": ..., "timestamp": ...}]}

Field order and timestamp strings are preserved as-is so that a blob which is
decoded and re-encoded without edits comes back byte-identical.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

from ..domain.conversation_models import BOOTSTRAP_MESSAGE_ID, ConversationMessage

logger = logging.getLogger("prompt_engine.codec")

BLOB_TYPE = "conversation"
_ROLE_TO_WIRE = {"user": "user", "assistant": "ai"}
_WIRE_TO_ROLE = {"user": "user", "ai": "assistant"}


class ConversationDecodeError(ValueError):
    pass


def message_to_wire(message: ConversationMessage) -> Dict[str, str]:
    return {
        "id": message.id,
        "type": _ROLE_TO_WIRE[message.role],
        "content": message.content,
        "timestamp": message.timestamp,
    }


def message_from_wire(item: Dict[str, Any]) -> ConversationMessage:
    if not isinstance(item, dict):
        raise ConversationDecodeError("Conversation entry must be an object")
    wire_type = item.get("type")
    role = _WIRE_TO_ROLE.get(str(wire_type))
    if role is None:
        raise ConversationDecodeError(f"Unknown message type: {wire_type!r}")
    msg_id = item.get("id")
    timestamp = item.get("timestamp")
    if not msg_id or not timestamp:
        raise ConversationDecodeError("Conversation entry is missing id or timestamp")
    return ConversationMessage(
        id=str(msg_id),
        role=role,
        content=str(item.get("content") or ""),
        timestamp=str(timestamp),
    )


def encode_conversation(messages: List[ConversationMessage]) -> str:
    """Serialize a conversation, dropping the transient typing placeholder."""
    payload = {
        "type": BLOB_TYPE,
        "messages": [message_to_wire(m) for m in messages if not m.is_placeholder],
    }
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":"))


def decode_conversation(blob: str) -> List[ConversationMessage]:
    try:
        data = json.loads(blob)
    except json.JSONDecodeError as exc:
        raise ConversationDecodeError(f"Conversation blob is not JSON: {exc}") from exc
    if not isinstance(data, dict) or data.get("type") != BLOB_TYPE:
        raise ConversationDecodeError("Blob is not a conversation payload")
    messages = data.get("messages")
    if not isinstance(messages, list):
        raise ConversationDecodeError("Conversation payload has no message list")
    return [message_from_wire(item) for item in messages]


def restore_conversation(
    blob: Optional[str],
    output: Optional[str],
    output_timestamp: str,
) -> List[ConversationMessage]:
    """Rebuild the visible thread when a prompt is loaded.

    A stored conversation wins. Older rows kept the first generated answer as
    plain text in the same column, so a blob that does not decode is treated
    as that answer and becomes the bootstrap assistant message.
    """

    if blob:
        try:
            restored = decode_conversation(blob)
        except ConversationDecodeError:
            logger.info("Stored blob is not a conversation; treating it as the initial output")
            output = output or blob
        else:
            if restored:
                return restored
    if output:
        return [
            ConversationMessage(
                id=BOOTSTRAP_MESSAGE_ID,
                role="assistant",
                content=output,
                timestamp=output_timestamp,
            )
        ]
    return []
