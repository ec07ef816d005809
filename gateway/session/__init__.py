from gateway.session.inbound import InboundMessage, MessageContent, contains_link, parse_message
from gateway.session.state import (
    ConversationFlags,
    LifecycleState,
    LinkMode,
    Origin,
    ReplyMode,
    Session,
)

__all__ = [
    "ConversationFlags",
    "InboundMessage",
    "LifecycleState",
    "LinkMode",
    "MessageContent",
    "Origin",
    "ReplyMode",
    "Session",
    "contains_link",
    "parse_message",
]
