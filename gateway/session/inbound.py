"""Inbound message parsing helpers.

Transports hand over raw message dicts (``key`` / ``message`` / ``pushName``).
Everything downstream works on the normalized ``InboundMessage``.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterator

from gateway.transport.ports import MessageKey
from gateway.utils import STATUS_BROADCAST, is_group_jid

log = logging.getLogger(__name__)


LINK_RE = re.compile(
    r"(https?://\S+"
    r"|www\.\S+"
    r"|\bchat\.whatsapp\.com/\S+"
    r"|\bwa\.me/\S+"
    r"|\bt\.me/\S+"
    r"|\byoutu\.be/\S+"
    r"|\byoutube\.com/\S+"
    r"|\btelegram\.me/\S+"
    r"|\bdiscord(?:app)?\.com/invite/\S+"
    r"|\bdiscord\.gg/\S+"
    r"|\bbit\.ly/\S+)",
    re.IGNORECASE,
)

# Media plumbing fields carry CDN URLs on every attachment; they are not links
# the sender wrote.
_MEDIA_FIELDS = frozenset(
    {
        "url",
        "directPath",
        "mediaKey",
        "fileSha256",
        "fileEncSha256",
        "jpegThumbnail",
        "thumbnailDirectPath",
        "thumbnailSha256",
        "thumbnailEncSha256",
        "staticUrl",
    }
)


# -----------------
# Content variants
# -----------------


@dataclass(frozen=True)
class Text:
    text: str


@dataclass(frozen=True)
class Image:
    caption: str = ""


@dataclass(frozen=True)
class Video:
    caption: str = ""


@dataclass(frozen=True)
class Document:
    caption: str = ""
    name: str = ""


@dataclass(frozen=True)
class Other:
    kind: str = ""


MessageContent = Text | Image | Video | Document | Other


def _str(value: object) -> str:
    return value if isinstance(value, str) else ""


def extract_content(message: dict[str, Any] | None) -> MessageContent:
    """Classify a raw message payload into one content variant."""
    if not message:
        return Other()
    if "conversation" in message:
        return Text(_str(message.get("conversation")))
    ext = message.get("extendedTextMessage")
    if isinstance(ext, dict):
        return Text(_str(ext.get("text")))
    image = message.get("imageMessage")
    if isinstance(image, dict):
        return Image(_str(image.get("caption")))
    video = message.get("videoMessage")
    if isinstance(video, dict):
        return Video(_str(video.get("caption")))
    doc = message.get("documentMessage") or message.get("documentWithCaptionMessage")
    if isinstance(doc, dict):
        return Document(_str(doc.get("caption")), _str(doc.get("fileName")))
    kind = next(iter(message), "")
    return Other(kind)


def content_text(content: MessageContent) -> str:
    if isinstance(content, Text):
        return content.text
    if isinstance(content, (Image, Video, Document)):
        return content.caption
    return ""


# -----------------
# Normalized message
# -----------------


@dataclass(frozen=True)
class InboundMessage:
    key: MessageKey
    content: MessageContent
    push_name: str = ""
    mentions: tuple[str, ...] = ()
    quoted_participant: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def conversation_id(self) -> str:
        return self.key.remote_jid

    @property
    def is_group(self) -> bool:
        return is_group_jid(self.key.remote_jid)

    @property
    def sender(self) -> str:
        return self.key.participant or self.key.remote_jid

    @property
    def text(self) -> str:
        return content_text(self.content).strip()


def _context_info(message: dict[str, Any]) -> dict[str, Any]:
    for value in message.values():
        if isinstance(value, dict):
            ctx = value.get("contextInfo")
            if isinstance(ctx, dict):
                return ctx
    return {}


def parse_message(raw: dict[str, Any]) -> InboundMessage | None:
    """Normalize a raw transport message. Returns None for non-chat payloads."""
    key = raw.get("key") or {}
    message = raw.get("message")
    if not isinstance(key, dict) or not isinstance(message, dict) or not message:
        return None
    remote = _str(key.get("remoteJid"))
    if not remote or remote == STATUS_BROADCAST:
        return None

    ctx = _context_info(message)
    mentions = ctx.get("mentionedJid") or []
    return InboundMessage(
        key=MessageKey(
            remote_jid=remote,
            id=_str(key.get("id")),
            from_me=bool(key.get("fromMe")),
            participant=_str(key.get("participant")) or None,
        ),
        content=extract_content(message),
        push_name=_str(raw.get("pushName")),
        mentions=tuple(m for m in mentions if isinstance(m, str)),
        quoted_participant=_str(ctx.get("participant")) or None,
        raw=raw,
    )


# -----------------
# Link detection
# -----------------


def _walk_strings(node: object, *, depth: int = 0) -> Iterator[str]:
    if depth > 12:
        return
    if isinstance(node, str):
        yield node
    elif isinstance(node, dict):
        for k, v in node.items():
            if k in _MEDIA_FIELDS:
                continue
            yield from _walk_strings(v, depth=depth + 1)
    elif isinstance(node, (list, tuple)):
        for v in node:
            yield from _walk_strings(v, depth=depth + 1)


def contains_link(msg: InboundMessage) -> bool:
    """True when the text, or any text field of the raw payload, holds a link.

    The raw scan catches links that only live in rich previews.
    """
    if LINK_RE.search(msg.text):
        return True
    for value in _walk_strings(msg.raw.get("message")):
        if LINK_RE.search(value):
            return True
    return False
