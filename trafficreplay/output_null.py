"""Output that drops everything it is given."""

from __future__ import annotations

from .protocol import Message


class NullOutput:
    """Output used for debugging; discards all messages."""

    def plugin_write(self, msg: Message) -> int:
        """Accept a message and report its full size as written."""
        return len(msg.data) + len(msg.meta)

    def __str__(self) -> str:
        return "Null Output"