from __future__ import annotations

import logging
from pathlib import Path
import subprocess

from perf_tap.errors import AdbCommandFailed, AdbNotFound
from perf_tap.logging_utils import TRACE_LEVEL
from perf_tap.models import AdbApp, AdbDevice
from perf_tap.parsers import parse_devices, parse_packages


def _normalize_path(path: str | None) -> str | None:
    if path is None:
        return None
    path = path.strip()
    return path if path else None


class AdbTransport:
    """Runs adb commands and returns their decoded stdout.

    The binary is the configured path when set, otherwise a bundled copy
    that exists on disk. Failures raise AdbNotFound or AdbCommandFailed.
    """

    def __init__(
        self,
        adb_path: str | None = "adb",
        bundled_path: str | None = None,
        timeout_s: float | None = 10.0,
    ) -> None:
        self.timeout_s = timeout_s
        self.logger = logging.getLogger(self.__class__.__name__)
        self._custom_path: str | None = None
        self._bundled_path: str | None = None
        self.set_adb_path(adb_path)
        self.set_bundled_path(bundled_path)

    def set_adb_path(self, path: str | None) -> None:
        self._custom_path = _normalize_path(path)

    def set_bundled_path(self, path: str | None) -> None:
        path = _normalize_path(path)
        if path is not None and not Path(path).exists():
            self.logger.debug("Bundled adb not found at %s", path)
            path = None
        self._bundled_path = path

    def resolve_adb_path(self) -> str:
        if self._custom_path:
            return self._custom_path
        if self._bundled_path:
            return self._bundled_path
        raise AdbNotFound()

    def run_host(self, args: list[str]) -> str:
        return self._run_raw([self.resolve_adb_path(), *args])

    def run(self, device_id: str, args: list[str]) -> str:
        return self._run_raw([self.resolve_adb_path(), "-s", device_id, *args])

    def _run_raw(self, command: list[str]) -> str:
        try:
            result = subprocess.run(
                command,
                check=False,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=self.timeout_s,
            )
        except FileNotFoundError:
            self.logger.debug("Command not found: %s", command[0])
            raise AdbNotFound(f"adb executable not found: {command[0]}") from None
        except subprocess.TimeoutExpired:
            self.logger.debug(
                "Command timed out after %ss: %s", self.timeout_s, " ".join(command)
            )
            raise AdbCommandFailed(f"timed out after {self.timeout_s}s") from None
        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            self.logger.debug(
                "Command failed (%s): %s", result.returncode, " ".join(command)
            )
            if stderr:
                self.logger.log(TRACE_LEVEL, "stderr: %s", stderr)
            raise AdbCommandFailed(stderr)
        stdout = result.stdout or ""
        if stdout:
            self.logger.log(TRACE_LEVEL, "stdout: %s", stdout.strip())
        return stdout

    def list_devices(self) -> list[AdbDevice]:
        return parse_devices(self.run_host(["devices", "-l"]))

    def list_packages(self, device_id: str, include_system: bool = False) -> list[AdbApp]:
        packages = parse_packages(self.run(device_id, ["shell", "pm", "list", "packages"]))
        system = set(
            parse_packages(self.run(device_id, ["shell", "pm", "list", "packages", "-s"]))
        )
        apps = [
            AdbApp(package=name, is_system=name in system)
            for name in sorted(packages)
        ]
        if not include_system:
            apps = [app for app in apps if not app.is_system]
        return apps
