from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path

from codexcron.shell import ProcessExit


class AgentAdapter(ABC):
    @abstractmethod
    def run(self, *, prompt: str, cwd: Path | None) -> ProcessExit:
        """Run one agent turn to completion and report how the process exited."""
