# Session Registry
# Local connection state: user identity bindings and room memberships

from chatbus.session.session import (
    Connection,
    Session,
)
from chatbus.session.registry import SessionRegistry

__all__ = [
    "Connection",
    "Session",
    "SessionRegistry",
]
