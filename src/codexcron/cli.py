from __future__ import annotations

import argparse
from collections.abc import Sequence
import json
import logging
from pathlib import Path
import sys

from codexcron.agent_invoker import AgentInvoker
from codexcron.codex_adapter import CodexAdapter
from codexcron.config import (
    AppConfig,
    ConfigError,
    Credentials,
    MissingCredentialError,
    load_config,
    load_credentials,
)
from codexcron.git_ops import ephemeral_pr_checkout
from codexcron.github_gateway import GitHubGateway
from codexcron.issue_spec import IssueSpecReconciler
from codexcron.issue_spec import render_summary as render_issue_summary
from codexcron.models import ActionableItem, ReviewCandidate, RunResult, TrackedIssue
from codexcron.observability import configure_logging, log_event, logging_job_context
from codexcron.pr_review import PrReviewReconciler
from codexcron.pr_review import render_summary as render_review_summary
from codexcron.prompts import build_issue_prompt, build_review_prompt
from codexcron.state import JsonStateStore


LOGGER = logging.getLogger("codexcron.cli")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_MISCONFIGURED = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="codexcron")
    subparsers = parser.add_subparsers(dest="command", required=True)

    issue_parser = subparsers.add_parser(
        "issue-spec",
        help="Run one cycle of the labeled issue to agent PR job",
    )
    review_parser = subparsers.add_parser(
        "pr-review",
        help="Run one cycle of the review-bot thread reconciler",
    )
    for job_parser in (issue_parser, review_parser):
        job_parser.add_argument("--config", type=Path, default=None)
        job_parser.add_argument(
            "-v",
            "--verbose",
            nargs="?",
            const="high",
            default=None,
            choices=("low", "high"),
            help="Enable runtime logging to stderr (low keeps only high-signal events)",
        )
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        config = load_config(args.config)
    except ConfigError as exc:
        _print_error(str(exc))
        return EXIT_MISCONFIGURED
    configure_logging(args.verbose, log_dir=config.runtime.log_dir)

    try:
        credentials = load_credentials()
    except MissingCredentialError as exc:
        _print_error(str(exc))
        return EXIT_MISCONFIGURED

    github = GitHubGateway(config.repo.owner, config.repo.name, credentials.gh_token)
    with logging_job_context(args.command, config.repo.full_name):
        if args.command == "issue-spec":
            return _cmd_issue_spec(config, credentials, github)
        if args.command == "pr-review":
            return _cmd_pr_review(config, credentials, github)

    raise RuntimeError(f"Unknown command: {args.command}")


def _cmd_issue_spec(config: AppConfig, credentials: Credentials, github: GitHubGateway) -> int:
    job = config.issue_spec
    store = JsonStateStore(job.state_path)
    reconciler = IssueSpecReconciler(config=job, github=github, store=store)
    try:
        cycle = reconciler.reconcile()
    except Exception as exc:  # noqa: BLE001
        return _cycle_failed(exc)

    def summarize(runs: Sequence[RunResult], error: str | None = None) -> dict[str, object]:
        return render_issue_summary(
            repo_full_name=config.repo.full_name,
            state_path=str(store.path),
            cycle=cycle,
            runs=runs,
            error=error,
        )

    if cycle.actionable and job.require_api_key and not credentials.has_openai_api_key:
        _print_summary(summarize((), error="OPENAI_API_KEY missing"))
        return EXIT_MISCONFIGURED

    reconciler.record_triggered(cycle)

    def build_prompt(item: ActionableItem) -> str:
        if not isinstance(item.payload, TrackedIssue):
            raise TypeError(f"Expected an issue for {item.key}")
        return build_issue_prompt(
            issue=item.payload,
            repo_full_name=config.repo.full_name,
            base_prompt=job.base_prompt,
        )

    agent = CodexAdapter(
        config.codex,
        exec_args=job.exec_args,
        openai_api_key=credentials.openai_api_key,
    )
    runs = AgentInvoker(agent, build_prompt=build_prompt).invoke_all(cycle.actionable)
    _print_summary(summarize(runs))
    return _exit_code_for(runs)


def _cmd_pr_review(config: AppConfig, credentials: Credentials, github: GitHubGateway) -> int:
    job = config.pr_review
    store = JsonStateStore(job.state_path)
    reconciler = PrReviewReconciler(config=job, github=github, store=store)
    try:
        cycle = reconciler.reconcile()
    except Exception as exc:  # noqa: BLE001
        return _cycle_failed(exc)

    def summarize(runs: Sequence[RunResult], error: str | None = None) -> dict[str, object]:
        return render_review_summary(
            repo_full_name=config.repo.full_name,
            state_path=str(store.path),
            cycle=cycle,
            runs=runs,
            error=error,
        )

    if cycle.actionable and job.require_api_key and not credentials.has_openai_api_key:
        _print_summary(summarize((), error="OPENAI_API_KEY missing"))
        return EXIT_MISCONFIGURED

    def build_prompt(item: ActionableItem) -> str:
        if not isinstance(item.payload, ReviewCandidate):
            raise TypeError(f"Expected a pull request for {item.key}")
        return build_review_prompt(
            candidate=item.payload,
            repo_full_name=config.repo.full_name,
            base_prompt=job.base_prompt,
        )

    agent = CodexAdapter(
        config.codex,
        exec_args=job.exec_args,
        openai_api_key=credentials.openai_api_key,
    )
    invoker = AgentInvoker(
        agent,
        build_prompt=build_prompt,
        checkout=lambda pr_number: ephemeral_pr_checkout(
            repo=config.repo,
            pr_number=pr_number,
            token=credentials.gh_token,
            depth=job.checkout_depth,
        ),
    )
    runs = invoker.invoke_all(cycle.actionable)
    _print_summary(summarize(runs))
    return _exit_code_for(runs)


def _cycle_failed(exc: Exception) -> int:
    log_event(LOGGER, "cycle_failed", error_type=type(exc).__name__, error=str(exc))
    _print_error(str(exc))
    return EXIT_FAILED


def _exit_code_for(runs: Sequence[RunResult]) -> int:
    return EXIT_FAILED if any(run.failed for run in runs) else EXIT_OK


def _print_summary(summary: dict[str, object]) -> None:
    print(json.dumps(summary, indent=2))


def _print_error(message: str) -> None:
    print(json.dumps({"error": message}), file=sys.stderr)
