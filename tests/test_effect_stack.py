"""Tests for the effect stack: push/pop ordering, base state, stale pops."""

import logging

from ufo_mcp.state import (
    BASE_STATE_EFFECT_NAME,
    CONFIG_EFFECT_NAME,
    StateManager,
)


class TestPushPop:

    def test_push_sets_current_effect(self, state):
        state.push_effect("rainbow", "effect=rainbow", {"duration": 15000})
        assert state.snapshot().effect == "rainbow"
        assert state.get_effect_stack_depth() == 1
        assert state.get_current_effect().pattern == "effect=rainbow"

    def test_pop_returns_new_top(self, state):
        state.push_effect("A", "patternA")
        state.push_effect("B", "patternB")

        restore = state.pop_effect()

        assert restore.name == "A"
        assert restore.pattern == "patternA"
        assert state.snapshot().effect == "A"

    def test_push_n_pop_n_minus_one(self, state):
        for i in range(5):
            state.push_effect(f"e{i}", f"p{i}")
        for _ in range(4):
            state.pop_effect()

        assert state.get_effect_stack_depth() == 1
        assert state.get_current_effect().name == "e0"

    def test_pop_last_without_base_state(self, state):
        state.push_effect("A", "patternA")
        assert state.pop_effect() is None
        assert state.snapshot().effect == ""
        assert state.get_effect_stack_depth() == 0

    def test_pop_empty_is_noop(self, state):
        state.update_effect("stale")
        assert state.pop_effect() is None
        assert state.pop_effect() is None
        assert state.snapshot().effect == ""

    def test_current_effect_none_when_empty(self, state):
        assert state.get_current_effect() is None

    def test_current_effect_is_copy(self, state):
        state.push_effect("A", "patternA", {"duration": 1})
        state.get_current_effect().context["duration"] = 999
        assert state.get_current_effect().duration == 1

    def test_tokens_unique(self, state):
        first = state.push_effect("A", "a")
        second = state.push_effect("A", "a")
        assert first.token != second.token


class TestSyntheticLayers:
    """Configuration layers interleaved with catalog effects."""

    def test_interleaved_unwind(self, state):
        state.push_effect("X", "patternX", {"perpetual": True})
        state.push_effect(CONFIG_EFFECT_NAME, "patternY", {"synthetic": True})
        state.push_effect(CONFIG_EFFECT_NAME, "patternZ", {"synthetic": True})
        state.push_effect("A", "patternA", {"duration": 5000})
        assert state.get_effect_stack_depth() == 4

        assert state.pop_effect().pattern == "patternZ"
        assert state.pop_effect().pattern == "patternY"
        last = state.pop_effect()
        assert last.name == "X"
        assert last.perpetual is True
        assert state.pop_effect() is None

    def test_entry_flags(self, state):
        entry = state.push_effect(CONFIG_EFFECT_NAME, "q", {"synthetic": True, "perpetual": True})
        assert entry.synthetic
        assert entry.perpetual
        assert entry.duration == 0


class TestBaseState:

    def test_empty_stack_returns_base(self, state):
        state.set_base_state("top_init=1&top=0|15|0000FF")
        state.push_effect("A", "patternA")

        restore = state.pop_effect()

        assert restore.name == BASE_STATE_EFFECT_NAME
        assert restore.pattern == "top_init=1&top=0|15|0000FF"
        assert restore.context == {"synthetic": True, "isBase": True}
        assert state.snapshot().effect == ""
        assert state.get_effect_stack_depth() == 0

    def test_pop_on_empty_stack_ignores_base(self, state):
        state.set_base_state("dim=10")
        assert state.pop_effect() is None

    def test_empty_base_disables(self, state):
        state.set_base_state("dim=10")
        state.set_base_state("")
        state.push_effect("A", "patternA")
        assert state.pop_effect() is None
        assert state.get_base_state() == ""


class TestConditionalPop:
    """Timer pops only remove the layer they were scheduled for."""

    def test_matching_token_pops(self, state):
        state.push_effect("A", "patternA")
        entry = state.push_effect("B", "patternB")

        popped, restore = state.pop_effect_if_current(entry.token)

        assert popped is True
        assert restore.name == "A"

    def test_stale_token_leaves_stack_alone(self, state):
        state.push_effect("A", "patternA")
        timed = state.push_effect("B", "patternB", {"duration": 5000})
        state.pop_effect()  # manual stop of B
        state.push_effect("C", "patternC")

        popped, restore = state.pop_effect_if_current(timed.token)

        assert popped is False
        assert restore is None
        assert state.get_current_effect().name == "C"
        assert state.get_effect_stack_depth() == 2

    def test_empty_stack(self, state):
        assert state.pop_effect_if_current(1) == (False, None)


class TestStackDepthWarning:

    def test_warns_past_threshold(self, caplog):
        manager = StateManager(stack_warn_depth=2)
        with caplog.at_level(logging.WARNING, logger="ufo_mcp.state"):
            manager.push_effect("a", "a")
            manager.push_effect("b", "b")
            assert not caplog.records
            manager.push_effect("c", "c")
        assert "depth 3" in caplog.text
        assert manager.get_effect_stack_depth() == 3

    def test_zero_disables_warning(self, caplog):
        manager = StateManager(stack_warn_depth=0)
        with caplog.at_level(logging.WARNING, logger="ufo_mcp.state"):
            for i in range(50):
                manager.push_effect(str(i), "q")
        assert not caplog.records


class TestSerialization:

    def test_entry_to_dict(self, state):
        entry = state.push_effect("A", "patternA", {"duration": 5000, "startTime": "2026-01-01T00:00:00+00:00"})
        assert entry.to_dict() == {
            "name": "A",
            "pattern": "patternA",
            "context": {"duration": 5000, "startTime": "2026-01-01T00:00:00+00:00"},
        }

    def test_get_effect_stack_bottom_to_top(self, state):
        state.push_effect("A", "a")
        state.push_effect("B", "b")
        assert [e.name for e in state.get_effect_stack()] == ["A", "B"]
