from __future__ import annotations

from collections.abc import Callable, Sequence
from contextlib import AbstractContextManager
import logging
from pathlib import Path

from codexcron.agent_adapter import AgentAdapter
from codexcron.models import ActionableItem, RunResult
from codexcron.observability import log_event


LOGGER = logging.getLogger("codexcron.agent_invoker")

CheckoutFactory = Callable[[int], AbstractContextManager[Path]]
PromptBuilder = Callable[[ActionableItem], str]


class AgentInvoker:
    """Runs the agent once per actionable item, one item at a time.

    With a checkout factory each run happens inside a scoped working copy for the
    item; otherwise the agent inherits ``cwd``.
    """

    def __init__(
        self,
        agent: AgentAdapter,
        *,
        build_prompt: PromptBuilder,
        checkout: CheckoutFactory | None = None,
        cwd: Path | None = None,
    ) -> None:
        self._agent = agent
        self._build_prompt = build_prompt
        self._checkout = checkout
        self._cwd = cwd

    def invoke_all(self, items: Sequence[ActionableItem]) -> list[RunResult]:
        return [self.invoke(item) for item in items]

    def invoke(self, item: ActionableItem) -> RunResult:
        log_event(
            LOGGER,
            "agent_invocation_started",
            unit_key=item.key,
            reason=item.reason,
        )
        try:
            prompt = self._build_prompt(item)
            if self._checkout is None:
                exit_info = self._agent.run(prompt=prompt, cwd=self._cwd)
            else:
                with self._checkout(item.payload.number) as checkout_path:
                    exit_info = self._agent.run(prompt=prompt, cwd=checkout_path)
        except Exception as exc:  # noqa: BLE001
            log_event(
                LOGGER,
                "agent_invocation_failed",
                unit_key=item.key,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return RunResult(unit_key=item.key, exit_code=1, signal=None, error=str(exc))

        log_event(
            LOGGER,
            "agent_invocation_finished",
            unit_key=item.key,
            exit_code=exit_info.exit_code,
            signal=exit_info.signal,
        )
        return RunResult(
            unit_key=item.key,
            exit_code=exit_info.exit_code,
            signal=exit_info.signal,
        )


def render_run(run: RunResult) -> dict[str, object]:
    return {
        "unit_key": run.unit_key,
        "exit_code": run.exit_code,
        "signal": run.signal,
        "error": run.error,
    }
