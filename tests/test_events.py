"""Tests for the Observable snapshot holder."""

from __future__ import annotations

import logging

import pytest

from keyrelay.events import Observable


class TestObservable:
    def test_initial_value(self) -> None:
        assert Observable(3).value == 3

    def test_set_notifies_in_subscription_order(self) -> None:
        seen: list[tuple[str, int]] = []
        obs = Observable(0)
        obs.subscribe(lambda v: seen.append(("a", v)))
        obs.subscribe(lambda v: seen.append(("b", v)))
        obs.set(1)
        assert seen == [("a", 1), ("b", 1)]
        assert obs.value == 1

    def test_unsubscribe_function(self) -> None:
        seen: list[int] = []
        obs = Observable(0)
        unsubscribe = obs.subscribe(seen.append)
        obs.set(1)
        unsubscribe()
        obs.set(2)
        assert seen == [1]

    def test_unsubscribe_unknown_is_noop(self) -> None:
        Observable(0).unsubscribe(print)

    def test_failing_subscriber_does_not_block_others(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        seen: list[int] = []

        def _boom(value: int) -> None:
            raise RuntimeError("boom")

        obs = Observable(0)
        obs.subscribe(_boom)
        obs.subscribe(seen.append)
        with caplog.at_level(logging.ERROR, logger="keyrelay.events"):
            obs.set(5)
        assert seen == [5]
        assert "failed" in caplog.text

    def test_set_from_subscriber_is_queued(self) -> None:
        seen: list[tuple[str, int]] = []
        obs = Observable(0)

        def _first(value: int) -> None:
            seen.append(("first", value))
            if value == 1:
                obs.set(2)

        obs.subscribe(_first)
        obs.subscribe(lambda v: seen.append(("second", v)))
        obs.set(1)

        assert seen == [("first", 1), ("second", 1), ("first", 2), ("second", 2)]
        assert obs.value == 2
