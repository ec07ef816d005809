from gateway.transport.ports import (
    Connection,
    ConnectionUpdate,
    ContactContent,
    CredsUpdated,
    DisconnectReason,
    EventSink,
    GroupMetadata,
    GroupParticipantsUpdate,
    MessageKey,
    MessagesUpsert,
    OutboundContent,
    Participant,
    TextContent,
    TransportEvent,
    TransportFactory,
)
from gateway.transport.registry import create_transport

__all__ = [
    "Connection",
    "ConnectionUpdate",
    "ContactContent",
    "CredsUpdated",
    "DisconnectReason",
    "EventSink",
    "GroupMetadata",
    "GroupParticipantsUpdate",
    "MessageKey",
    "MessagesUpsert",
    "OutboundContent",
    "Participant",
    "TextContent",
    "TransportEvent",
    "TransportFactory",
    "create_transport",
]
