"""Bounded conversation history shared across orchestration sessions."""

from __future__ import annotations

import logging
from typing import Any

from command_agent.db import CONVERSATION_HISTORY_KEY, Database
from command_agent.models import Role, Turn

LOGGER = logging.getLogger(__name__)

SEED_PROMPT = "Keep the following context in mind for my next requests."


class ConversationHistoryStore:
    """Order-preserving turn log that never ships a structurally invalid history.

    Invariants after ``prune()``: at most ``max_turns`` entries, and the first
    turn is a genuine user text turn (or the history is empty).
    """

    def __init__(self, max_turns: int = 30, db: Database | None = None) -> None:
        self._max_turns = max_turns
        self._db = db
        self._turns: list[Turn] = self._load()

    def __len__(self) -> int:
        return len(self._turns)

    def append(self, turn: Turn) -> None:
        self._turns.append(turn)
        self._save()

    def prune(self) -> None:
        """Truncate to capacity, then drop everything before the first user text turn."""

        turns = self._turns[-self._max_turns:] if self._max_turns > 0 else []
        start = next((i for i, turn in enumerate(turns) if turn.is_user_text()), None)
        if start is None:
            if turns:
                LOGGER.warning("No user text turn left in history after truncation, discarding %d turns", len(turns))
            turns = []
        elif start > 0:
            LOGGER.info("Dropping %d leading turns to restore a valid history", start)
            turns = turns[start:]
        self._turns = turns
        self._save()

    def snapshot(self) -> list[Turn]:
        return list(self._turns)

    def replace(self, turns: list[Turn]) -> None:
        """Synchronize a finished session back, without internal reasoning parts."""

        self._turns = [turn.without_thoughts() for turn in turns]
        self._save()

    def clear(self) -> None:
        self._turns = []
        self._save()

    def seed(self, context: str) -> None:
        """Inject out-of-band context so the history ends on a model turn."""

        if self._turns and self._turns[-1].role is Role.USER:
            self._turns.append(Turn.model_text(context))
        else:
            self._turns.append(Turn.user_text(SEED_PROMPT))
            self._turns.append(Turn.model_text(context))
        self._save()

    def _load(self) -> list[Turn]:
        if self._db is None:
            return []
        stored: list[dict[str, Any]] = self._db.get_setting(CONVERSATION_HISTORY_KEY, [])
        try:
            return [Turn.from_dict(item) for item in stored]
        except (KeyError, ValueError, TypeError):
            LOGGER.warning("Persisted conversation history is corrupt, discarding it", exc_info=True)
            self._db.delete_setting(CONVERSATION_HISTORY_KEY)
            return []

    def _save(self) -> None:
        if self._db is not None:
            self._db.set_setting(CONVERSATION_HISTORY_KEY, [turn.to_dict() for turn in self._turns])
