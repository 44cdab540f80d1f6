from __future__ import annotations

from dataclasses import dataclass, replace

from shipyard.core.result import Err, Ok, Result
from shipyard.release.errors import StoreError
from shipyard.release.fsm import FINISH, StepOutcome, UnknownStep, advance, run_state_machine


@dataclass(frozen=True, slots=True)
class _State:
    step: str
    counter: int


def test_run_state_machine_advances_and_saves() -> None:
    saved: list[_State] = []

    def save_state(s: _State) -> Result[_State, StoreError]:
        saved.append(s)
        return Ok(s)

    def step_a(s: _State) -> Result[StepOutcome[_State], StoreError]:
        return Ok(advance(replace(s, step="b", counter=s.counter + 1)))

    def step_b(s: _State) -> Result[StepOutcome[_State], StoreError]:
        return Ok(FINISH)

    result = run_state_machine(
        initial_state=_State(step="a", counter=0),
        get_step=lambda s: s.step,
        handlers={"a": step_a, "b": step_b},
        save_state=save_state,
    )

    assert result == Ok(_State(step="b", counter=1))
    assert saved == [_State(step="b", counter=1)]


def test_run_state_machine_unknown_step_fails() -> None:
    result = run_state_machine(
        initial_state=_State(step="missing", counter=0),
        get_step=lambda s: s.step,
        handlers={},
        save_state=lambda s: Ok(s),
    )

    assert result == Err(UnknownStep("missing"))
    assert result.error.message == "no handler for release step: missing"


def test_run_state_machine_propagates_handler_error() -> None:
    def bad_step(_: _State) -> Result[StepOutcome[_State], StoreError]:
        return Err(StoreError("disk full"))

    result = run_state_machine(
        initial_state=_State(step="a", counter=0),
        get_step=lambda s: s.step,
        handlers={"a": bad_step},
        save_state=lambda s: Ok(s),
    )

    assert isinstance(result, Err)


def test_run_state_machine_stops_when_save_fails() -> None:
    calls: list[str] = []

    def step_a(s: _State) -> Result[StepOutcome[_State], StoreError]:
        calls.append(s.step)
        return Ok(advance(replace(s, step="b")))

    def step_b(s: _State) -> Result[StepOutcome[_State], StoreError]:
        calls.append(s.step)
        return Ok(FINISH)

    result = run_state_machine(
        initial_state=_State(step="a", counter=0),
        get_step=lambda s: s.step,
        handlers={"a": step_a, "b": step_b},
        save_state=lambda s: Err(StoreError("read-only file system")),
    )

    assert isinstance(result, Err)
    assert calls == ["a"]
