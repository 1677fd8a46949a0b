"""
Saga runner: results flow through the context; failures compensate in reverse.
"""
from __future__ import annotations

import pytest

from registration.saga import Saga, SagaFailed


def test_steps_share_context():
    ctx = Saga().add("a", lambda c: 1).add("b", lambda c: c["a"] + 1).run()
    assert ctx == {"a": 1, "b": 2}


def test_failure_compensates_completed_steps_in_reverse():
    undone = []

    def boom(ctx):
        raise RuntimeError("down")

    saga = (
        Saga()
        .add("first", lambda c: "one", lambda c: undone.append("first"))
        .add("second", lambda c: "two", lambda c: undone.append("second"))
        .add("third", boom, lambda c: undone.append("third"))
    )
    with pytest.raises(SagaFailed) as exc:
        saga.run()
    assert undone == ["second", "first"]
    assert exc.value.step == "third"
    assert isinstance(exc.value.cause, RuntimeError)
    assert list(exc.value.compensated) == ["second", "first"]


def test_failing_compensation_is_reported_and_others_still_run():
    undone = []

    def broken(ctx):
        raise RuntimeError("cannot undo")

    def boom(ctx):
        raise ValueError("x")

    saga = Saga().add("a", lambda c: 1, lambda c: undone.append("a")).add("b", lambda c: 2, broken).add("c", boom)
    with pytest.raises(SagaFailed) as exc:
        saga.run()
    assert undone == ["a"]
    assert list(exc.value.compensation_errors) == ["b"]
