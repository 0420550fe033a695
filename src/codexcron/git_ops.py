from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
import logging
import shutil
import tempfile
from urllib.parse import quote

from codexcron.config import RepoConfig
from codexcron.observability import log_event
from codexcron.shell import CommandError, run


LOGGER = logging.getLogger("codexcron.git_ops")


def authenticated_clone_url(repo: RepoConfig, token: str) -> str:
    return f"https://x-access-token:{quote(token, safe='')}@github.com/{repo.full_name}.git"


@contextmanager
def ephemeral_pr_checkout(
    *,
    repo: RepoConfig,
    pr_number: int,
    token: str,
    depth: int = 50,
) -> Iterator[Path]:
    """Yield a throwaway clone with the PR head checked out as ``pr-<number>``.

    The directory is removed when the block exits, whether the checkout, the
    caller's work, or neither raised.
    """
    checkout_path = Path(tempfile.mkdtemp(prefix="codex-pr-review-"))
    branch = f"pr-{pr_number}"
    try:
        log_event(
            LOGGER,
            "pr_checkout_started",
            pr_number=pr_number,
            checkout_path=str(checkout_path),
        )
        try:
            _clone_pr_head(
                clone_url=authenticated_clone_url(repo, token),
                checkout_path=checkout_path,
                pr_number=pr_number,
                branch=branch,
                depth=depth,
            )
        except CommandError as exc:
            log_event(LOGGER, "pr_checkout_failed", pr_number=pr_number, error=str(exc))
            raise
        yield checkout_path
    finally:
        shutil.rmtree(checkout_path, ignore_errors=True)
        log_event(
            LOGGER,
            "pr_checkout_removed",
            pr_number=pr_number,
            checkout_path=str(checkout_path),
        )


def _clone_pr_head(
    *, clone_url: str, checkout_path: Path, pr_number: int, branch: str, depth: int
) -> None:
    run(["git", "clone", "--no-tags", "--depth", str(depth), clone_url, str(checkout_path)])
    run(
        [
            "git",
            "-C",
            str(checkout_path),
            "fetch",
            "--depth",
            str(depth),
            "origin",
            f"pull/{pr_number}/head:{branch}",
        ]
    )
    run(["git", "-C", str(checkout_path), "checkout", branch])
