from __future__ import annotations

from hypothesis import given, settings, strategies as st

from command_agent.db import CONVERSATION_HISTORY_KEY
from command_agent.history import SEED_PROMPT, ConversationHistoryStore
from command_agent.models import (
    InlineDataPart,
    Role,
    TextPart,
    ToolCallPart,
    ToolCallRequest,
    ToolResultPart,
    Turn,
)

_TURNS = st.sampled_from(
    [
        Turn.user_text("turn on the light"),
        Turn.model_text("Done."),
        Turn(role=Role.MODEL, parts=[ToolCallPart(ToolCallRequest("list_zones", {}))]),
        Turn(role=Role.TOOL, parts=[ToolResultPart("list_zones", {"success": True})]),
        Turn(role=Role.USER, parts=[InlineDataPart("image/png", "aGk=")]),
        Turn(role=Role.USER, parts=[TextPart("hidden", thought=True)]),
        Turn(role=Role.USER, parts=[]),
    ]
)


class TestPruneProperties:
    @given(turns=st.lists(_TURNS, max_size=40), capacity=st.integers(min_value=0, max_value=12))
    @settings(max_examples=200)
    def test_pruned_history_is_empty_or_starts_with_user_text(self, turns, capacity):
        store = ConversationHistoryStore(max_turns=capacity)
        for turn in turns:
            store.append(turn)

        store.prune()

        snapshot = store.snapshot()
        assert len(snapshot) <= capacity
        assert snapshot == [] or snapshot[0].is_user_text()

    @given(turns=st.lists(_TURNS, max_size=40))
    @settings(max_examples=100)
    def test_prune_keeps_a_suffix_of_the_original(self, turns):
        store = ConversationHistoryStore(max_turns=10)
        for turn in turns:
            store.append(turn)

        store.prune()

        snapshot = store.snapshot()
        if snapshot:
            assert turns[len(turns) - len(snapshot):] == snapshot


def test_prune_drops_leading_tool_result_turns():
    store = ConversationHistoryStore(max_turns=10)
    store.append(Turn(role=Role.TOOL, parts=[ToolResultPart("x", {})]))
    store.append(Turn.model_text("ok"))
    store.append(Turn.user_text("hello"))
    store.append(Turn.model_text("hi"))

    store.prune()

    assert [t.text for t in store.snapshot()] == ["hello", "hi"]


def test_prune_clears_when_no_user_text_turn_survives_truncation():
    store = ConversationHistoryStore(max_turns=2)
    store.append(Turn.user_text("hello"))
    store.append(Turn(role=Role.MODEL, parts=[ToolCallPart(ToolCallRequest("list_zones", {}))]))
    store.append(Turn(role=Role.TOOL, parts=[ToolResultPart("list_zones", {"success": True})]))

    store.prune()

    assert store.snapshot() == []


def test_seed_closes_pending_user_turn():
    store = ConversationHistoryStore()
    store.append(Turn.user_text("question"))

    store.seed("context")

    roles = [t.role for t in store.snapshot()]
    assert roles == [Role.USER, Role.MODEL]
    assert store.snapshot()[-1].text == "context"


def test_seed_adds_synthetic_user_turn_after_model_turn():
    store = ConversationHistoryStore()
    store.append(Turn.user_text("question"))
    store.append(Turn.model_text("answer"))

    store.seed("context")

    snapshot = store.snapshot()
    assert [t.role for t in snapshot] == [Role.USER, Role.MODEL, Role.USER, Role.MODEL]
    assert snapshot[2].text == SEED_PROMPT
    assert snapshot[3].text == "context"


def test_seed_on_empty_history_starts_with_user_text():
    store = ConversationHistoryStore()

    store.seed("context")

    snapshot = store.snapshot()
    assert snapshot[0].is_user_text()
    assert snapshot[-1].role is Role.MODEL


def test_replace_strips_thought_parts():
    store = ConversationHistoryStore()

    store.replace(
        [
            Turn.user_text("hi"),
            Turn(role=Role.MODEL, parts=[TextPart("thinking...", thought=True), TextPart("hello")]),
        ]
    )

    model_turn = store.snapshot()[-1]
    assert model_turn.parts == [TextPart("hello")]


def test_history_survives_restart(db):
    store = ConversationHistoryStore(max_turns=10, db=db)
    store.append(Turn.user_text("hi"))
    store.append(
        Turn(role=Role.MODEL, parts=[ToolCallPart(ToolCallRequest("list_zones", {"a": 1}, "c1"), signature="sig")])
    )

    reloaded = ConversationHistoryStore(max_turns=10, db=db)

    assert reloaded.snapshot() == store.snapshot()


def test_corrupt_persisted_history_is_discarded(db):
    db.set_setting(CONVERSATION_HISTORY_KEY, [{"role": "narrator", "parts": []}])

    store = ConversationHistoryStore(db=db)

    assert store.snapshot() == []
    assert db.get_setting(CONVERSATION_HISTORY_KEY) is None


def test_clear_empties_store_and_persistence(db):
    store = ConversationHistoryStore(db=db)
    store.append(Turn.user_text("hi"))

    store.clear()

    assert len(store) == 0
    assert db.get_setting(CONVERSATION_HISTORY_KEY) == []
