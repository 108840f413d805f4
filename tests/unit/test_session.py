"""Unit tests for the session primitives and the transition engine."""

from __future__ import annotations

import asyncio
import logging
from typing import Any
from unittest.mock import Mock

import pytest

from phaseflow.config import EngineSettings
from phaseflow.errors import ValidationError
from phaseflow.program import ProgramDefinition, build_program
from phaseflow.runtime import Session, start


def _checkout_program() -> ProgramDefinition:
    return build_program(
        {
            "id": "checkout",
            "version": "0.2.0",
            "data": {"price": {"type": "number"}, "total": {"type": "number"}},
            "phases": {
                "cart": {
                    "exit": "leaveCart",
                    "on": {
                        "PAY": [
                            {"target": "paid", "cond": "isVip", "actions": ["setPrice", "computeTotal"]},
                            {"target": "review", "cond": "isRegular"},
                        ],
                    },
                },
                "paid": {"entry": "enterPaid", "type": "final"},
                "review": {},
            },
            "operations": {
                "leaveCart": {"type": "action"},
                "setPrice": {"type": "action"},
                "computeTotal": {"type": "action"},
                "enterPaid": {"type": "action"},
                "isVip": {"type": "guard"},
                "isRegular": {"type": "guard"},
            },
        }
    )


def test_start_enters_initial_phase_with_initialized_data(
    shop_program: ProgramDefinition, settings: EngineSettings
) -> None:
    session = Session.start(shop_program, {"userId": "u1"}, settings=settings)
    view = session.where()

    assert view.phase == "idle"
    assert view.loading is False
    assert view.error is None
    assert view.data == {
        "query": "",
        "products": [],
        "cart": [],
        "total": 0,
        "userId": "u1",
    }


def test_start_defaults_to_first_declared_phase(toggle_raw: dict[str, Any]) -> None:
    session = start(build_program(toggle_raw), settings=EngineSettings(_env_file=None))

    assert session.where().phase == "idle"
    assert session.can() == ["START"]


def test_start_rejects_invalid_overrides(
    shop_program: ProgramDefinition, settings: EngineSettings
) -> None:
    with pytest.raises(ValidationError) as excinfo:
        Session.start(shop_program, {"total": "lots", "cart": [{"id": "1"}]}, settings=settings)

    paths = sorted(v.path for v in excinfo.value.violations)
    assert paths == ["cart[0].name", "cart[0].price", "total"]


def test_where_returns_a_private_copy(
    shop_program: ProgramDefinition, settings: EngineSettings
) -> None:
    session = Session.start(shop_program, settings=settings)

    session.where().data["cart"].append({"id": "x"})

    assert session.where().data["cart"] == []


@pytest.mark.asyncio
async def test_illegal_event_is_ignored(
    shop_program: ProgramDefinition,
    settings: EngineSettings,
    caplog: pytest.LogCaptureFixture,
) -> None:
    session = Session.start(shop_program, settings=settings)
    before = session.where()

    with caplog.at_level(logging.WARNING):
        accepted = await session.do("CHECKOUT")

    assert accepted is False
    assert session.where() == before
    assert "not available in phase 'idle'" in caplog.text
    assert len(session.history()) == 1


@pytest.mark.asyncio
async def test_first_passing_guard_wins_and_later_guards_are_not_run(
    settings: EngineSettings,
) -> None:
    order: list[str] = []
    is_regular = Mock(return_value=True)

    session = Session.start(
        _checkout_program(),
        settings=settings,
        plugs={
            "isVip": lambda data, event: event.get("vip", False),
            "isRegular": is_regular,
            "leaveCart": lambda data, event: order.append("exit"),
            "setPrice": lambda data, event: order.append("action") or {"price": 100},
            "computeTotal": lambda data, event: {"total": data["price"]},
            "enterPaid": lambda data, event: order.append("entry"),
        },
    )

    assert await session.do("PAY", {"vip": True}) is True

    view = session.where()
    assert view.phase == "paid"
    assert view.data["total"] == 100
    assert order == ["exit", "action", "entry"]
    is_regular.assert_not_called()


@pytest.mark.asyncio
async def test_falls_through_to_next_alternative(settings: EngineSettings) -> None:
    session = Session.start(
        _checkout_program(),
        settings=settings,
        plugs={
            "isVip": lambda data, event: False,
            "isRegular": lambda data, event: True,
            "leaveCart": lambda data, event: None,
        },
    )

    await session.do("PAY")

    assert session.where().phase == "review"


@pytest.mark.asyncio
async def test_no_matching_guard_leaves_state_unchanged(
    settings: EngineSettings, caplog: pytest.LogCaptureFixture
) -> None:
    session = Session.start(
        _checkout_program(),
        settings=settings,
        plugs={"isVip": lambda data, event: False, "isRegular": Mock(side_effect=RuntimeError("boom"))},
    )

    with caplog.at_level(logging.WARNING):
        assert await session.do("PAY") is False

    assert session.where().phase == "cart"
    assert session.where().error is None
    assert "Guard 'isRegular' failed" in caplog.text


@pytest.mark.asyncio
async def test_failing_transition_action_does_not_change_phase(settings: EngineSettings) -> None:
    errors: list[Any] = []

    def explode(data: Any, event: Any) -> None:
        raise RuntimeError("card declined")

    session = Session.start(
        _checkout_program(),
        settings=settings,
        plugs={
            "isVip": lambda data, event: True,
            "leaveCart": lambda data, event: {"price": 1},
            "setPrice": explode,
        },
    )
    session.on("error", errors.append)

    assert await session.do("PAY") is False

    view = session.where()
    assert view.phase == "cart"
    assert view.data["price"] == 0
    assert view.error is not None
    assert view.error.message == "card declined"
    assert [e.message for e in errors] == ["card declined"]


@pytest.mark.asyncio
async def test_missing_action_plug_is_reported_as_error(settings: EngineSettings) -> None:
    session = Session.start(
        _checkout_program(), settings=settings, plugs={"isVip": lambda data, event: True}
    )

    await session.do("PAY")

    error = session.where().error
    assert error is not None
    assert error.code == "missing_plug"


@pytest.mark.asyncio
async def test_terminal_phase_notifies_done_and_rejects_events(
    toggle_raw: dict[str, Any], settings: EngineSettings
) -> None:
    session = Session.start(build_program(toggle_raw), settings=settings)
    changes: list[Any] = []
    done = Mock()
    session.on("change", changes.append)
    session.on("done", done)

    await session.do("START")

    assert changes == [{"phase": "active", "data": {}}]
    done.assert_called_once_with({})
    assert session.can() == []
    assert await session.do("START") is False


@pytest.mark.asyncio
async def test_off_removes_listener_and_unknown_kind_is_rejected(
    toggle_raw: dict[str, Any], settings: EngineSettings
) -> None:
    session = Session.start(build_program(toggle_raw), settings=settings)
    listener = Mock()
    session.on("change", listener)
    session.off("change", listener)

    await session.do("START")

    listener.assert_not_called()
    with pytest.raises(ValueError):
        session.on("finished", listener)  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_failing_listener_does_not_break_dispatch(
    toggle_raw: dict[str, Any], settings: EngineSettings, caplog: pytest.LogCaptureFixture
) -> None:
    session = Session.start(build_program(toggle_raw), settings=settings)
    session.on("change", Mock(side_effect=RuntimeError("listener bug")))

    assert await session.do("START") is True
    assert session.where().phase == "active"
    assert "'change' listener failed" in caplog.text


@pytest.mark.asyncio
async def test_payload_is_flattened_into_event(
    shop_program: ProgramDefinition, settings: EngineSettings, shop_plugs: dict[str, Any]
) -> None:
    seen: list[Any] = []
    shop_plugs["hasProduct"] = lambda data, event: seen.append(event) or True
    shop_plugs["addToCart"] = lambda data, event: None
    shop_plugs["computeTotal"] = lambda data, event: None
    session = Session.start(shop_program, settings=settings, plugs=shop_plugs)

    await session.do("START")
    await session.do("SEARCH", {"query": "mouse"})
    await session.do("ADD_TO_CART", {"productId": "2"})

    assert seen == [{"type": "ADD_TO_CART", "productId": "2"}]


@pytest.mark.asyncio
async def test_dispatches_are_serialized(
    toggle_raw: dict[str, Any], settings: EngineSettings
) -> None:
    toggle_raw["phases"]["idle"]["on"]["START"] = {"target": "active", "actions": "slow"}
    toggle_raw["operations"] = {"slow": {"type": "action"}}
    seen: list[str] = []

    async def slow(data: Any, event: Any) -> None:
        seen.append(event["type"])

    session = Session.start(build_program(toggle_raw), settings=settings, plugs={"slow": slow})

    first = session.do("START")
    second = session.do("START")

    assert await first is True
    assert await second is False
    assert seen == ["START"]


def test_has_tag_and_is_busy(shop_program: ProgramDefinition, settings: EngineSettings) -> None:
    session = Session.start(shop_program, settings=settings)

    assert session.has_tag("busy") is False
    assert session.has_tag("loading") is False
    assert session.is_busy() is False
    assert session.introspect().can_reach("idle", "done") is True


def _stepper_program() -> ProgramDefinition:
    return build_program(
        {
            "id": "stepper",
            "version": "1.0.0",
            "data": {"step": {"type": "string"}},
            "phases": {
                "idle": {"on": {"GO": "a"}},
                "a": {
                    "on": {
                        "NEXT": {"target": "b", "actions": "slowStep"},
                        "NOOP": {"target": "a", "actions": "noop"},
                    }
                },
                "b": {"on": {"NOOP": {"target": "b", "actions": "noop"}}},
            },
            "operations": {"slowStep": {"type": "action"}, "noop": {"type": "action"}},
        }
    )


def _stepper_session(settings: EngineSettings, seen: list[str]) -> Session:
    async def slow_step(data: Any, event: Any) -> dict[str, Any]:
        seen.append("NEXT-start")
        await asyncio.sleep(0.05)
        seen.append("NEXT-end")
        return {"step": "b"}

    def noop(data: Any, event: Any) -> None:
        seen.append("NOOP")

    session = Session.start(
        _stepper_program(), settings=settings, plugs={"slowStep": slow_step, "noop": noop}
    )

    def advance(change: dict[str, Any]) -> None:
        if change["phase"] == "a" and "NEXT-start" not in seen:
            session.do("NEXT")

    session.on("change", advance)
    return session


@pytest.mark.asyncio
async def test_dispatch_from_listener_completes_with_enclosing_unit(
    settings: EngineSettings,
) -> None:
    seen: list[str] = []
    session = _stepper_session(settings, seen)

    await session.do("GO")

    assert session.where().phase == "b"
    assert session.where().data == {"step": "b"}
    assert seen == ["NEXT-start", "NEXT-end"]

    await session.settle()
    assert session.where().phase == "b"


@pytest.mark.asyncio
async def test_queued_dispatch_waits_for_nested_dispatch(settings: EngineSettings) -> None:
    seen: list[str] = []
    session = _stepper_session(settings, seen)

    go = session.do("GO")
    noop = session.do("NOOP")
    await session.settle()

    assert await go is True
    assert await noop is True
    assert seen == ["NEXT-start", "NEXT-end", "NOOP"]
    assert session.where().phase == "b"
