from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import logging
import re
import signal
import subprocess


class CommandError(RuntimeError):
    pass


@dataclass(frozen=True)
class ProcessExit:
    exit_code: int
    signal: str | None


LOGGER = logging.getLogger("codexcron.shell")
_URL_CREDENTIALS_PATTERN = re.compile(r"(://)[^/@\s]+@")


def _preview(text: str, *, limit: int = 200) -> str:
    compact = text.replace("\n", "\\n").strip()
    if not compact:
        return "<empty>"
    if len(compact) <= limit:
        return compact
    return f"{compact[:limit]}..."


def _redact(text: str) -> str:
    return _URL_CREDENTIALS_PATTERN.sub(r"\1***@", text)


def run(
    argv: list[str],
    *,
    cwd: Path | None = None,
    input_text: str | None = None,
    env: dict[str, str] | None = None,
    check: bool = True,
) -> str:
    proc = subprocess.run(
        argv,
        cwd=str(cwd) if cwd else None,
        input=input_text,
        env=env,
        text=True,
        capture_output=True,
        check=False,
    )
    if check and proc.returncode != 0:
        command = _redact(" ".join(argv))
        LOGGER.error(
            "event=command_failed command=%s exit_code=%s stderr=%s stdout=%s",
            command,
            proc.returncode,
            _preview(_redact(proc.stderr)),
            _preview(_redact(proc.stdout)),
        )
        raise CommandError(
            "Command failed\n"
            f"cmd: {command}\n"
            f"exit: {proc.returncode}\n"
            f"stdout:\n{_redact(proc.stdout)}\n"
            f"stderr:\n{_redact(proc.stderr)}"
        )
    return proc.stdout


def run_inherited(
    argv: list[str],
    *,
    cwd: Path | None = None,
    env: dict[str, str] | None = None,
) -> ProcessExit:
    """Run a command attached to this process's stdin/stdout/stderr and wait for it."""
    proc = subprocess.run(
        argv,
        cwd=str(cwd) if cwd else None,
        env=env,
        check=False,
    )
    return _process_exit(proc.returncode)


def _process_exit(returncode: int) -> ProcessExit:
    if returncode >= 0:
        return ProcessExit(exit_code=returncode, signal=None)
    # subprocess reports death-by-signal as a negative return code.
    try:
        signal_name = signal.Signals(-returncode).name
    except ValueError:
        signal_name = f"SIG{-returncode}"
    return ProcessExit(exit_code=1, signal=signal_name)
