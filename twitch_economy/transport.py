"""Chat transport boundary.

The core never manages connections. It consumes ``ChatMessage`` events and
talks back through anything implementing ``ChatTransport``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol


@dataclass
class ChatMessage:
    """One inbound chat line, already reduced to what the core needs.

    ``emotes`` maps an emote id to the inclusive ``(start, end)`` character
    ranges where the transport rendered it in ``text``.
    """

    channel: str
    sender: str
    text: str
    privileged: bool = False
    emotes: dict[str, list[tuple[int, int]]] = field(default_factory=dict)
    badges: dict[str, str] = field(default_factory=dict)


class ChatTransport(Protocol):
    @property
    def channels(self) -> list[str]: ...

    async def send_action(self, channel: str, text: str) -> None: ...

    async def join_channel(self, channel: str) -> None: ...

    async def part_channel(self, channel: str) -> None: ...


class InboundHandler(Protocol):
    async def on_message(self, message: ChatMessage) -> None: ...

    async def on_subscription(self, channel: str, username: str) -> None: ...

    async def on_resub(self, channel: str, username: str) -> None: ...

    async def on_subgift(self, channel: str, username: str, count: int) -> None: ...

    async def on_cheer(self, channel: str, username: str, bits: int) -> None: ...
