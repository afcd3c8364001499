"""Tests for the per-conversation nudge counter."""

import threading

import config
from nudge import accept_nudge, generate_nudge_context, should_nudge
from session import SessionNudgeCounter


class TestSessionNudgeCounter:
    def test_starts_at_zero(self):
        assert SessionNudgeCounter().count("conv-1") == 0

    def test_increment_is_per_conversation(self):
        counter = SessionNudgeCounter()
        assert counter.increment("conv-1") == 1
        assert counter.increment("conv-1") == 2
        assert counter.count("conv-1") == 2
        assert counter.count("conv-2") == 0

    def test_reset(self):
        counter = SessionNudgeCounter()
        counter.increment("conv-1")
        counter.increment("conv-2")
        counter.reset("conv-1")
        assert counter.count("conv-1") == 0
        assert counter.count("conv-2") == 1

    def test_reset_unknown_conversation(self):
        SessionNudgeCounter().reset("never-seen")

    def test_reset_mid_turn_keeps_turns_serialized(self):
        counter = SessionNudgeCounter()
        first_inside = threading.Event()
        release_first = threading.Event()
        second_inside = threading.Event()

        def first_turn():
            with counter.turn("conv-1"):
                first_inside.set()
                release_first.wait(timeout=5)

        def second_turn():
            with counter.turn("conv-1"):
                second_inside.set()

        first = threading.Thread(target=first_turn)
        first.start()
        assert first_inside.wait(timeout=5)

        counter.reset("conv-1")
        second = threading.Thread(target=second_turn)
        second.start()
        assert not second_inside.wait(timeout=0.2)

        release_first.set()
        first.join()
        second.join()
        assert second_inside.is_set()

    def test_turn_yields_current_count(self):
        counter = SessionNudgeCounter()
        counter.increment("conv-1")
        with counter.turn("conv-1") as count:
            assert count == 1


class TestSessionCap:
    def test_second_nudge_in_session_is_refused(self, preferences, make_goal, frozen_now):
        counter = SessionNudgeCounter()
        goals = [make_goal(), make_goal()]

        first = should_nudge(preferences, goals, counter.count("conv-1"), now=frozen_now)
        assert first.shouldNudge is True
        counter.increment("conv-1")

        second = should_nudge(preferences, goals, counter.count("conv-1"), now=frozen_now)
        assert second.shouldNudge is False
        assert second.reason == "Session nudge limit reached"

        # A fresh conversation gets its own allowance
        assert should_nudge(preferences, goals, counter.count("conv-2"), now=frozen_now).shouldNudge is True

    def test_cap_is_configurable(self, preferences, make_goal, frozen_now, monkeypatch):
        monkeypatch.setattr(config, "MAX_NUDGES_PER_SESSION", 2)
        decision = should_nudge(preferences, [make_goal()], session_nudge_count=1, now=frozen_now)
        assert decision.shouldNudge is True

    def test_concurrent_turns_nudge_once(self, preferences, make_goal, frozen_now):
        counter = SessionNudgeCounter()
        goals = [make_goal(id=f"goal-{n}") for n in range(1, 4)]
        accepted = []
        start = threading.Barrier(6)

        def chat_turn():
            start.wait()
            with counter.turn("conv-1") as count:
                decision = should_nudge(preferences, goals, count, now=frozen_now)
                if decision.shouldNudge:
                    goal = next(g for g in goals if g.id == decision.resolutionId)
                    record, _ = accept_nudge(generate_nudge_context(decision), goal, frozen_now)
                    counter.increment("conv-1")
                    accepted.append(record)

        threads = [threading.Thread(target=chat_turn) for _ in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(accepted) == 1
        assert counter.count("conv-1") == 1
