"""TCP front end: wire protocol, per-connection dispatch and the listener."""

from .dispatcher import Access, CommandDispatcher, Session
from .listener import Listener
from .protocol import Command, ProtocolError, decode_request, encode_response

__all__ = [
    "Access",
    "Command",
    "CommandDispatcher",
    "Listener",
    "ProtocolError",
    "Session",
    "decode_request",
    "encode_response",
]
