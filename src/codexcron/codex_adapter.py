from __future__ import annotations

from collections.abc import Mapping
import logging
import os
from pathlib import Path

from codexcron.agent_adapter import AgentAdapter
from codexcron.config import CodexConfig
from codexcron.observability import log_event
from codexcron.shell import ProcessExit, run_inherited


LOGGER = logging.getLogger("codexcron.codex_adapter")


class CodexAdapter(AgentAdapter):
    def __init__(
        self,
        config: CodexConfig,
        *,
        exec_args: tuple[str, ...],
        openai_api_key: str,
        base_env: Mapping[str, str] | None = None,
    ) -> None:
        self._config = config
        self._exec_args = exec_args
        self._openai_api_key = openai_api_key.strip()
        self._base_env = base_env

    def run(self, *, prompt: str, cwd: Path | None) -> ProcessExit:
        cmd = self.build_command(prompt)
        log_event(
            LOGGER,
            "codex_exec_started",
            cwd=str(cwd) if cwd else None,
            model=self._config.model,
            prompt_chars=len(prompt),
        )
        result = run_inherited(cmd, cwd=cwd, env=self.build_env())
        log_event(
            LOGGER,
            "codex_exec_finished",
            exit_code=result.exit_code,
            signal=result.signal,
        )
        return result

    def build_command(self, prompt: str) -> list[str]:
        cmd = [self._config.binary, "exec", *self._exec_args]
        if self._config.model:
            cmd.extend(["--model", self._config.model])
        if self._config.extra_args:
            cmd.extend(self._config.extra_args)
        # The prompt goes last as the positional instruction.
        cmd.append(prompt)
        return cmd

    def build_env(self) -> dict[str, str]:
        env = dict(os.environ if self._base_env is None else self._base_env)
        if self._openai_api_key:
            env["OPENAI_API_KEY"] = self._openai_api_key
        else:
            env.pop("OPENAI_API_KEY", None)
        return env
