from __future__ import annotations

import contextlib
import logging
import os
import shutil
import socket
import subprocess
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from urllib.error import URLError
from urllib.request import urlopen

from .config import LaunchOptions, default_user_data_dir, expand_path
from .errors import AlreadyRunningConflict, LaunchFailed, LaunchTimeout

logger = logging.getLogger("mcp.devtools_bridge.launcher")


@dataclass
class LaunchedBrowser:
    command: list[str]
    process: subprocess.Popen
    port: int
    user_data_dir: str
    disposable: bool
    log_path: str | None = None

    @property
    def browser_url(self) -> str:
        return f"http://127.0.0.1:{self.port}"


def _tail_text(path: str | None, max_chars: int = 4000) -> str | None:
    if not path:
        return None
    try:
        p = Path(path)
        if not p.exists():
            return None
        raw = p.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return None
    return raw[-max_chars:]


def profile_locked(user_data_dir: str) -> bool:
    """True when a live Chrome holds the profile's SingletonLock."""
    lock = Path(user_data_dir) / "SingletonLock"
    if not os.path.lexists(lock):
        return False
    try:
        target = os.readlink(lock)
    except OSError:
        # Not a symlink (or unreadable): assume held.
        return True
    host, _, pid_raw = target.rpartition("-")
    try:
        pid = int(pid_raw)
    except ValueError:
        return True
    if host and host != socket.gethostname():
        return True
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return False
    return True


class BrowserLauncher:
    def __init__(self, options: LaunchOptions | None = None, *, launch_timeout: float = 20.0) -> None:
        self.options = options or LaunchOptions()
        self.launch_timeout = launch_timeout
        self.launched: LaunchedBrowser | None = None

    def resolve_user_data_dir(self) -> tuple[str, bool]:
        """(profile dir, disposable). Persistent unless isolation was requested."""
        if self.options.isolated:
            return tempfile.mkdtemp(prefix="devtools-bridge-profile-"), True
        path = expand_path(self.options.user_data_dir or default_user_data_dir(self.options.channel))
        Path(path).mkdir(parents=True, exist_ok=True)
        return path, False

    def build_launch_command(self, port: int, user_data_dir: str) -> list[str]:
        opts = self.options
        flags = [
            f"--remote-debugging-port={port}",
            f"--user-data-dir={user_data_dir}",
            "--remote-allow-origins=*",
            "--no-first-run",
            "--no-default-browser-check",
            "--hide-crash-restore-bubble",
        ]
        if opts.headless:
            flags.extend(["--headless=new", "--screen-info={3840x2160}"])
        if opts.devtools:
            flags.append("--auto-open-devtools-for-tabs")
        if opts.accept_insecure_certs:
            flags.append("--ignore-certificate-errors")
        if opts.proxy_server:
            flags.append(f"--proxy-server={opts.proxy_server}")
        flags.extend(opts.extra_args)
        return [opts.resolved_binary(), *flags]

    @staticmethod
    def find_free_port() -> int:
        with contextlib.closing(socket.socket(socket.AF_INET, socket.SOCK_STREAM)) as s:
            s.bind(("127.0.0.1", 0))
            return s.getsockname()[1]

    @staticmethod
    def cdp_ready(port: int, timeout: float = 0.4) -> bool:
        """Return True if the CDP HTTP endpoint responds."""
        try:
            with urlopen(f"http://127.0.0.1:{port}/json/version", timeout=timeout) as resp:  # noqa: S310
                return resp.status == 200
        except (OSError, URLError):
            return False

    def launch(self) -> LaunchedBrowser:
        """Start a local Chrome and wait until its discovery endpoint answers."""
        user_data_dir, disposable = self.resolve_user_data_dir()
        if not disposable and profile_locked(user_data_dir):
            raise AlreadyRunningConflict(user_data_dir)

        port = self.find_free_port()
        cmd = self.build_launch_command(port, user_data_dir)
        log_path = self.options.log_file
        logger.info("launch binary=%s port=%s profile=%s isolated=%s", cmd[0], port, user_data_dir, disposable)

        log_fh = None
        try:
            if log_path:
                Path(log_path).parent.mkdir(parents=True, exist_ok=True)
                log_fh = open(log_path, "ab", buffering=0)  # noqa: SIM115
                out: object = log_fh
            else:
                out = subprocess.DEVNULL
            process = subprocess.Popen(cmd, stdin=subprocess.DEVNULL, stdout=out, stderr=out)  # type: ignore[arg-type]
        except OSError as exc:
            if disposable:
                shutil.rmtree(user_data_dir, ignore_errors=True)
            raise LaunchFailed(f"Failed to start {cmd[0]}: {exc}", target=cmd[0], cause=exc) from exc
        finally:
            if log_fh is not None:
                log_fh.close()

        launched = LaunchedBrowser(
            command=cmd,
            process=process,
            port=port,
            user_data_dir=user_data_dir,
            disposable=disposable,
            log_path=log_path,
        )

        deadline = time.monotonic() + self.launch_timeout
        while time.monotonic() < deadline:
            if self.cdp_ready(port):
                self.launched = launched
                return launched
            if process.poll() is not None:
                # Chrome hands the request to the instance owning the profile and exits.
                if not disposable and profile_locked(user_data_dir):
                    raise AlreadyRunningConflict(user_data_dir, cause=f"exit code {process.returncode}")
                self._cleanup(launched)
                raise LaunchFailed(
                    f"Chrome exited during startup with code {process.returncode}",
                    target=cmd[0],
                    cause=_tail_text(log_path),
                )
            time.sleep(0.1)

        self._terminate(process)
        self._cleanup(launched)
        raise LaunchTimeout(
            f"Chrome launch timed out after {self.launch_timeout:g}s",
            target=launched.browser_url,
            cause=_tail_text(log_path),
        )

    @staticmethod
    def _terminate(proc: subprocess.Popen, timeout: float = 2.0) -> None:
        with contextlib.suppress(OSError):
            proc.terminate()
        try:
            proc.wait(timeout=max(0.1, timeout))
        except subprocess.TimeoutExpired:
            with contextlib.suppress(OSError):
                proc.kill()

    @staticmethod
    def _cleanup(launched: LaunchedBrowser) -> None:
        if launched.disposable:
            shutil.rmtree(launched.user_data_dir, ignore_errors=True)

    def stop(self, *, timeout: float = 2.0) -> bool:
        """Stop the launcher-owned Chrome; isolated profiles are removed, persistent ones kept."""
        launched = self.launched
        if launched is None:
            return False
        self.launched = None
        if launched.process.poll() is None:
            self._terminate(launched.process, timeout=timeout)
        self._cleanup(launched)
        logger.info("launch_stopped port=%s", launched.port)
        return True


__all__ = ["BrowserLauncher", "LaunchedBrowser", "profile_locked"]
