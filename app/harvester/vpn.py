"""Operator-driven VPN location changes between and before scrape phases."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, Protocol

import requests

from . import config
from .logging_utils import _scraper_event
from .utils import log_line, sleep_ms


@dataclass
class CommandResult:
    returncode: int
    stdout: str = ""
    stderr: str = ""


class CommandExecutor(Protocol):
    async def run(self, command: str) -> CommandResult:
        """Run ``command`` and return its exit code and output.

        Raise ``OSError`` when the command cannot be started at all.
        """


class ShellCommandExecutor:
    async def run(self, command: str) -> CommandResult:
        process = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await process.communicate()
        return CommandResult(
            returncode=process.returncode if process.returncode is not None else -1,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
        )


@dataclass
class VPNStatus:
    is_connected: bool
    timestamp: datetime
    current_ip: Optional[str] = None
    location: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "is_connected": self.is_connected,
            "current_ip": self.current_ip,
            "location": self.location,
            "timestamp": self.timestamp.isoformat(),
        }


def lookup_public_ip(
    url: str = config.PUBLIC_IP_URL, timeout: float = config.PUBLIC_IP_TIMEOUT_SECONDS
) -> Optional[str]:
    """Return the current public IP from a JSON lookup service, or ``None``."""

    try:
        response = requests.get(url, timeout=timeout)
        response.raise_for_status()
        payload = response.json()
    except (requests.RequestException, ValueError) as exc:
        log_line(f"[VPN] Public IP lookup failed: {exc}")
        return None
    if isinstance(payload, dict):
        ip = payload.get("ip")
        return str(ip) if ip else None
    return None


class VPNController:
    def __init__(
        self,
        *,
        enabled: bool = False,
        change_command: Optional[str] = None,
        verify_command: Optional[str] = None,
        wait_after_change_ms: int = 5000,
        max_verify_attempts: int = 10,
        verify_delay_ms: int = 2000,
        executor: Optional[CommandExecutor] = None,
        ip_lookup: Callable[[], Optional[str]] = lookup_public_ip,
        sleep: Callable[[float], Awaitable[None]] = sleep_ms,
    ) -> None:
        self.enabled = enabled
        self.change_command = change_command or None
        self.verify_command = verify_command or None
        self.wait_after_change_ms = wait_after_change_ms
        self.max_verify_attempts = max(1, max_verify_attempts)
        self.verify_delay_ms = verify_delay_ms
        self._executor: CommandExecutor = executor or ShellCommandExecutor()
        self._ip_lookup = ip_lookup
        self._sleep = sleep
        self.last_change: Optional[datetime] = None
        self._status: Optional[VPNStatus] = None

    @classmethod
    def from_environment(cls, **kwargs) -> "VPNController":
        controller = cls(
            enabled=config.VPN_ENABLED,
            change_command=config.VPN_CHANGE_COMMAND,
            verify_command=config.VPN_VERIFY_COMMAND,
            wait_after_change_ms=config.VPN_WAIT_AFTER_CHANGE_MS,
            max_verify_attempts=config.VPN_MAX_VERIFY_ATTEMPTS,
            verify_delay_ms=config.VPN_VERIFY_DELAY_MS,
            **kwargs,
        )
        if controller.enabled:
            log_line(
                "[VPN] VPN management enabled "
                f"(change_command={'set' if controller.change_command else 'unset'}, "
                f"verify_command={'set' if controller.verify_command else 'unset'})"
            )
        else:
            log_line("[VPN] VPN management disabled")
        return controller

    def status(self) -> Optional[VPNStatus]:
        return self._status

    async def change_vpn(self, location: Optional[str] = None) -> bool:
        if not self.enabled or not self.change_command:
            log_line("[VPN] VPN change not configured, skipping")
            return True

        command = self.change_command
        if location:
            command = command.replace("{location}", location)

        log_line(f"[VPN] Executing change command: {command}")
        try:
            result = await self._executor.run(command)
        except OSError as exc:
            log_line(f"[VPN] Change command could not be executed: {exc}")
            _scraper_event("error", phase="vpn", kind="change_failed", error=str(exc))
            return False

        if result.stdout.strip():
            log_line(f"[VPN] Output: {result.stdout.strip()}")
        if result.stderr.strip():
            log_line(f"[VPN] Warning: {result.stderr.strip()}")
        if result.returncode != 0:
            log_line(f"[VPN] Change command exited with {result.returncode}")
            _scraper_event(
                "error", phase="vpn", kind="change_failed", returncode=result.returncode
            )
            return False

        log_line(f"[VPN] Waiting {self.wait_after_change_ms}ms for VPN to stabilise")
        await self._sleep(self.wait_after_change_ms)
        self.last_change = datetime.now(timezone.utc)
        self._status = VPNStatus(
            is_connected=False, timestamp=self.last_change, location=location
        )
        _scraper_event("state", phase="vpn", kind="changed", location=location)
        return True

    async def verify_connection(self) -> bool:
        if not self.enabled:
            return True
        if self.verify_command:
            return await self._verify_with_command()
        return await self._verify_with_ip_lookup()

    async def _verify_with_command(self) -> bool:
        try:
            result = await self._executor.run(self.verify_command or "")
        except OSError as exc:
            log_line(f"[VPN] Verify command could not be executed: {exc}")
            return False
        if result.returncode != 0:
            log_line(f"[VPN] Verify command exited with {result.returncode}")
            return False

        output = result.stdout.strip()
        if not output:
            log_line("[VPN] Verify command returned empty output")
            return False
        log_line(f"[VPN] Verify output: {output}")
        self._set_connected(current_ip=None)
        return True

    async def _verify_with_ip_lookup(self) -> bool:
        ip = await asyncio.to_thread(self._ip_lookup)
        if not ip:
            log_line("[VPN] Could not retrieve current IP")
            return False
        log_line(f"[VPN] Connection verified, public IP {ip}")
        self._set_connected(current_ip=ip)
        return True

    def _set_connected(self, *, current_ip: Optional[str]) -> None:
        location = self._status.location if self._status else None
        self._status = VPNStatus(
            is_connected=True,
            timestamp=datetime.now(timezone.utc),
            current_ip=current_ip,
            location=location,
        )

    async def wait_for_connection(self) -> bool:
        for attempt in range(1, self.max_verify_attempts + 1):
            log_line(f"[VPN] Connection check attempt {attempt}/{self.max_verify_attempts}")
            if await self.verify_connection():
                _scraper_event("state", phase="vpn", kind="verified", attempt=attempt)
                return True
            if attempt < self.max_verify_attempts:
                await self._sleep(self.verify_delay_ms)

        log_line(
            f"[VPN] Connection could not be verified after {self.max_verify_attempts} attempts"
        )
        _scraper_event(
            "error", phase="vpn", kind="verify_exhausted", attempts=self.max_verify_attempts
        )
        return False

    async def change_and_verify(self, location: Optional[str] = None) -> bool:
        if not self.enabled:
            return True
        if not await self.change_vpn(location):
            log_line("[VPN] VPN change failed, cannot proceed")
            return False
        if not await self.wait_for_connection():
            log_line("[VPN] VPN connection could not be verified, cannot proceed")
            return False
        return True


__all__ = [
    "CommandExecutor",
    "CommandResult",
    "ShellCommandExecutor",
    "VPNController",
    "VPNStatus",
    "lookup_public_ip",
]
