from __future__ import annotations

import asyncio
from typing import List, Optional

import pytest
import requests

from app.harvester import vpn as vpn_module
from app.harvester.vpn import CommandResult, VPNController, lookup_public_ip
from tests.fakes import SleepRecorder, no_sleep


class ScriptedExecutor:
    def __init__(self, *results) -> None:
        self.results = list(results)
        self.commands: List[str] = []

    async def run(self, command: str) -> CommandResult:
        self.commands.append(command)
        outcome = self.results.pop(0) if self.results else CommandResult(0, "ok")
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


def _controller(executor: ScriptedExecutor, **kwargs) -> VPNController:
    values = {
        "enabled": True,
        "change_command": "vpn connect {location}",
        "verify_command": "vpn status",
        "executor": executor,
        "sleep": no_sleep,
    }
    values.update(kwargs)
    return VPNController(**values)


def test_disabled_controller_is_a_no_op() -> None:
    executor = ScriptedExecutor()
    controller = _controller(executor, enabled=False)

    assert asyncio.run(controller.change_and_verify("uk")) is True
    assert executor.commands == []


def test_change_substitutes_location_and_waits() -> None:
    executor = ScriptedExecutor(CommandResult(0, "switched"))
    sleeper = SleepRecorder()
    controller = _controller(executor, sleep=sleeper, wait_after_change_ms=5000)

    assert asyncio.run(controller.change_vpn("de")) is True
    assert executor.commands == ["vpn connect de"]
    assert sleeper.calls == [5000]
    assert controller.last_change is not None
    assert controller.status().location == "de"
    assert controller.status().is_connected is False


def test_non_zero_exit_fails_the_change() -> None:
    executor = ScriptedExecutor(CommandResult(1, "", "no route"))
    controller = _controller(executor)

    assert asyncio.run(controller.change_vpn("uk")) is False
    assert controller.last_change is None


def test_command_that_cannot_start_fails_the_change() -> None:
    executor = ScriptedExecutor(FileNotFoundError("vpn: not found"))
    controller = _controller(executor)

    assert asyncio.run(controller.change_vpn()) is False


def test_verify_with_command_needs_output() -> None:
    controller = _controller(ScriptedExecutor(CommandResult(0, "   ")))
    assert asyncio.run(controller.verify_connection()) is False

    controller = _controller(ScriptedExecutor(CommandResult(0, "Connected to uk-12")))
    assert asyncio.run(controller.verify_connection()) is True
    assert controller.status().is_connected is True


def test_verify_without_command_uses_public_ip() -> None:
    controller = _controller(ScriptedExecutor(), verify_command=None, ip_lookup=lambda: "203.0.113.7")

    assert asyncio.run(controller.verify_connection()) is True
    assert controller.status().current_ip == "203.0.113.7"


def test_wait_for_connection_retries_until_verified() -> None:
    executor = ScriptedExecutor(CommandResult(1), CommandResult(0, ""), CommandResult(0, "up"))
    sleeper = SleepRecorder()
    controller = _controller(executor, sleep=sleeper, max_verify_attempts=5, verify_delay_ms=2000)

    assert asyncio.run(controller.wait_for_connection()) is True
    assert len(executor.commands) == 3
    assert sleeper.calls == [2000, 2000]


def test_wait_for_connection_gives_up_after_max_attempts() -> None:
    lookups: List[Optional[str]] = []

    def lookup() -> Optional[str]:
        lookups.append(None)
        return None

    controller = _controller(
        ScriptedExecutor(), verify_command=None, ip_lookup=lookup, max_verify_attempts=3
    )

    assert asyncio.run(controller.wait_for_connection()) is False
    assert len(lookups) == 3


def test_change_and_verify_stops_when_change_fails() -> None:
    executor = ScriptedExecutor(CommandResult(2))
    controller = _controller(executor)

    assert asyncio.run(controller.change_and_verify("uk")) is False
    assert executor.commands == ["vpn connect uk"]


class _Response:
    def __init__(self, payload, status_code: int = 200) -> None:
        self._payload = payload
        self.status_code = status_code

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        return self._payload


def test_lookup_public_ip(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        vpn_module.requests, "get", lambda url, timeout: _Response({"ip": "198.51.100.4"})
    )
    assert lookup_public_ip("https://ip.example") == "198.51.100.4"

    monkeypatch.setattr(vpn_module.requests, "get", lambda url, timeout: _Response({}, 503))
    assert lookup_public_ip("https://ip.example") is None

    def boom(url, timeout):
        raise requests.ConnectionError("offline")

    monkeypatch.setattr(vpn_module.requests, "get", boom)
    assert lookup_public_ip("https://ip.example") is None
