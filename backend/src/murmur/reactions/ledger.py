"""Per-message reaction bookkeeping with toggle semantics."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, Iterator

from app.schemas.messages import Reaction, ReactionSummary


class ReactionLedger:
    """Set of ``(emoji, actor)`` pairs for a single message.

    The ledger copies the reactions it is built from; callers write the
    result back through the thread store.
    """

    def __init__(self, reactions: Iterable[Reaction] = ()) -> None:
        self._entries: dict[tuple[str, str], Reaction] = {}
        for reaction in reactions:
            self._entries.setdefault((reaction.emoji, reaction.user_id), reaction)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[Reaction]:
        return iter(self._entries.values())

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def has_reacted(self, emoji: str, actor_id: str) -> bool:
        return (emoji, actor_id) in self._entries

    def add(self, emoji: str, actor_id: str, *, created_at: datetime | None = None) -> bool:
        key = (emoji, actor_id)
        if key in self._entries:
            return False
        self._entries[key] = Reaction(
            emoji=emoji,
            user_id=actor_id,
            created_at=created_at or datetime.now(timezone.utc),
        )
        return True

    def discard(self, emoji: str, actor_id: str) -> bool:
        return self._entries.pop((emoji, actor_id), None) is not None

    def toggle(self, emoji: str, actor_id: str) -> bool:
        """Flip the actor's reaction; returns True when it is present afterwards."""

        if self.discard(emoji, actor_id):
            return False
        self.add(emoji, actor_id)
        return True

    def count(self, emoji: str) -> int:
        return sum(1 for entry_emoji, _ in self._entries if entry_emoji == emoji)

    def entries(self) -> list[Reaction]:
        return list(self._entries.values())

    def grouped(self, viewer_id: str | None = None) -> list[ReactionSummary]:
        """Summaries per emoji in order of first appearance."""

        groups: dict[str, list[str]] = {}
        for emoji, actor_id in self._entries:
            groups.setdefault(emoji, []).append(actor_id)
        return [
            ReactionSummary(
                emoji=emoji,
                count=len(actors),
                reacted=viewer_id is not None and viewer_id in actors,
                user_ids=actors,
            )
            for emoji, actors in groups.items()
        ]
