from __future__ import annotations

import threading

import pytest

from modhost.errors import HookRegistrationFailed, RawSendRejected, UnknownSendDirection
from modhost.hooks import HookBinding


@pytest.fixture()
def binding(dispatcher) -> HookBinding:
    return HookBinding("alpha", dispatcher)


def test_hook_registers_under_owner_and_fires(binding, dispatcher):
    seen = []

    handle = binding.hook("S_CHAT", 3, lambda event: seen.append(event), {"order": -10})

    entry = dispatcher.hooks[handle.raw]
    assert (entry.owner, entry.name, entry.version, entry.options) == ("alpha", "S_CHAT", 3, {"order": -10})
    assert handle.alive and handle.module_name == "alpha"
    dispatcher.emit("S_CHAT", {"message": "hi"})
    assert seen == [{"message": "hi"}]


def test_unhook_is_idempotent(binding, dispatcher):
    handle = binding.hook("S_CHAT", 3, lambda _event: None)

    assert binding.unhook(handle) is True
    assert binding.unhook(handle) is False
    assert binding.unhook(None) is False
    assert binding.unhook(424242) is False
    assert dispatcher.hooks == {}
    assert not handle.alive


def test_unhooked_handle_never_fires_for_in_flight_dispatch(binding, dispatcher):
    seen = []
    binding.hook("S_CHAT", 3, lambda event: seen.append(event))
    in_flight = dispatcher.callbacks("S_CHAT")

    binding.unhook(binding.handles[0])
    results = [callback("late") for callback in in_flight]

    assert seen == []
    assert results == [None]


def test_hook_failure_is_raised_and_try_hook_returns_none(binding, dispatcher):
    dispatcher.fail_hooks = True

    with pytest.raises(HookRegistrationFailed) as excinfo:
        binding.hook("S_CHAT", 3, lambda _event: None)

    assert isinstance(excinfo.value.__cause__, RuntimeError)
    assert binding.try_hook("S_CHAT", 3, lambda _event: None) is None
    assert binding.try_hook_once("S_CHAT", 3, lambda _event: None) is None
    assert binding.handles == []


def test_hook_once_fires_exactly_once(binding, dispatcher):
    seen = []

    handle = binding.hook_once("S_LOGIN", 14, lambda event: seen.append(event) or "handled")

    assert dispatcher.emit("S_LOGIN", 1) == ["handled"]
    dispatcher.emit("S_LOGIN", 2)
    dispatcher.emit("S_LOGIN", 3)

    assert seen == [1]
    assert not handle.alive
    assert dispatcher.hooks == {}


def test_hook_once_unhooks_before_callback_runs(binding, dispatcher):
    observed = []

    def _callback(_event) -> None:
        observed.append(handle.raw in dispatcher.hooks)

    handle = binding.hook_once("S_LOGIN", 14, _callback)
    dispatcher.emit("S_LOGIN", None)

    assert observed == [False]


def test_hook_once_survives_concurrent_delivery(binding, dispatcher):
    calls = []
    lock = threading.Lock()

    def _callback(value) -> None:
        with lock:
            calls.append(value)

    binding.hook_once("S_SPAWN_ME", 3, _callback)
    callback = dispatcher.callbacks("S_SPAWN_ME")[0]
    barrier = threading.Barrier(8)

    def _deliver(value: int) -> None:
        barrier.wait()
        callback(value)

    threads = [threading.Thread(target=_deliver, args=(i,)) for i in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=5)

    assert len(calls) == 1
    assert dispatcher.hooks == {}


def test_hook_once_requires_callable(binding):
    with pytest.raises(TypeError):
        binding.hook_once("S_LOGIN", 14, None)


def test_unhook_all_removes_every_live_registration(binding, dispatcher):
    binding.hook("S_CHAT", 3, lambda _event: None)
    binding.hook_once("S_LOGIN", 14, lambda _event: None)
    fired = binding.hook_once("S_SPAWN_ME", 3, lambda _event: None)
    dispatcher.emit("S_SPAWN_ME", None)

    assert binding.unhook_all() == 2
    assert dispatcher.hooks == {}
    assert binding.handles == []
    assert not fired.alive


@pytest.mark.parametrize(
    ("name", "server_bound"),
    [("C_CHAT", True), ("S_CHAT", False), ("I_TELEPORT", False)],
)
def test_send_routes_by_prefix(binding, dispatcher, name, server_bound):
    assert binding.send(name, 1, {"x": 1}) is True

    assert dispatcher.writes == [(server_bound, name, 1, {"x": 1})]


def test_send_rejects_unknown_direction_and_raw_data(binding, dispatcher):
    with pytest.raises(UnknownSendDirection):
        binding.send("Xxyz", 1, {})
    with pytest.raises(UnknownSendDirection):
        binding.send("", 1, {})
    with pytest.raises(RawSendRejected):
        binding.send(b"\x01\x02", None, None)

    assert dispatcher.writes == []


def test_try_send_reports_success_as_bool(binding, dispatcher):
    assert binding.try_send("C_CHAT", 1, {}) is True
    assert binding.try_send("Xxyz", 1, {}) is False
    assert binding.try_send(1234, 1, {}) is False
    assert len(dispatcher.writes) == 1


def test_explicit_direction_helpers(binding, dispatcher):
    binding.to_client("S_CHAT", 3, {"message": "a"})
    binding.to_server("C_CHAT", 1, {"message": "b"})

    assert [write[0] for write in dispatcher.writes] == [False, True]
