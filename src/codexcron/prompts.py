from __future__ import annotations

from codexcron.models import ReviewCandidate, TrackedIssue


def compact_title(text: str, *, limit: int = 80) -> str:
    one_line = " ".join(text.split())
    if len(one_line) <= limit:
        return one_line
    return f"{one_line[: limit - 3]}..."


def build_issue_prompt(*, issue: TrackedIssue, repo_full_name: str, base_prompt: str) -> str:
    labels = ", ".join(issue.labels)
    return f"""
{base_prompt}

Repository: {repo_full_name}
Issue: #{issue.number} - {issue.title}
URL: {issue.url}
Action: {issue.action or "unknown"}
Labels: {labels}

Execution requirements:
- Ensure PR body includes: Fixes #{issue.number}
- Keep changes minimal and focused to the issue request.
- Run relevant tests or checks before opening PR.
""".strip()


def build_review_prompt(
    *, candidate: ReviewCandidate, repo_full_name: str, base_prompt: str
) -> str:
    return f"""
{base_prompt}

Repository: {repo_full_name}
Pull Request: #{candidate.number} - {candidate.title}
URL: {candidate.url}
Head SHA: {candidate.head_sha}
Unresolved review-bot threads: {candidate.unresolved_threads}
Review-bot latest activity: {candidate.latest_bot_activity}

Execution requirements:
- Resolve the unresolved review feedback on this PR.
- Push fixes to the PR branch.
- Do not open a new PR for this task.
- Post concise review-response comments if needed.
- Before running lint/tests, install dependencies for this repository if they are not installed.
- If a specific tool is missing and cannot be installed in this run, continue with
  best-effort validation and document the limitation.
""".strip()
