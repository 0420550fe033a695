from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, replace
import os
from pathlib import Path
import tomllib
from typing import cast


DEFAULT_REPO = "raid-guild/cohort-portal-spike"
DEFAULT_ISSUE_SPEC_STATE_PATH = "/workspace/.codex/cron/github-issue-spec-state.json"
DEFAULT_PR_REVIEW_STATE_PATH = "/workspace/.codex/cron/github-pr-review-state.json"

DEFAULT_ISSUE_BASE_PROMPT = " ".join(
    [
        "You are an autonomous coding agent running in cron mode.",
        "Read the linked GitHub issue and implement the requested module spec.",
        "Open a PR back to the same repository.",
        "If a PR cannot be created, explain precisely what is missing and exit non-zero.",
    ]
)
DEFAULT_REVIEW_BASE_PROMPT = " ".join(
    [
        "You are an autonomous coding agent running in cron mode.",
        "Address unresolved CodeRabbit review threads on the PR and push fixes.",
        "Keep changes minimal and scoped to review feedback.",
        "Run relevant checks before pushing.",
    ]
)


@dataclass(frozen=True)
class RepoConfig:
    owner: str
    name: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


@dataclass(frozen=True)
class RuntimeConfig:
    log_dir: Path | None = None


@dataclass(frozen=True)
class CodexConfig:
    binary: str = "codex"
    model: str | None = None
    extra_args: tuple[str, ...] = ()


@dataclass(frozen=True)
class IssueSpecConfig:
    state_path: Path
    label: str
    base_prompt: str
    sweep_enabled: bool = True
    sweep_max_pages: int = 3
    require_api_key: bool = True
    exec_args: tuple[str, ...] = ("--skip-git-repo-check",)


@dataclass(frozen=True)
class PrReviewConfig:
    state_path: Path
    base_prompt: str
    review_bot_pattern: str = "coderabbit"
    fallback_pr_limit: int = 25
    checkout_depth: int = 50
    require_api_key: bool = False
    exec_args: tuple[str, ...] = ("--dangerously-bypass-approvals-and-sandbox",)


@dataclass(frozen=True)
class AppConfig:
    repo: RepoConfig
    runtime: RuntimeConfig
    codex: CodexConfig
    issue_spec: IssueSpecConfig
    pr_review: PrReviewConfig


@dataclass(frozen=True)
class Credentials:
    gh_token: str
    openai_api_key: str

    @property
    def has_openai_api_key(self) -> bool:
        return bool(self.openai_api_key)


class ConfigError(ValueError):
    pass


class MissingCredentialError(RuntimeError):
    def __init__(self, name: str) -> None:
        super().__init__(f"{name} missing")
        self.name = name


def load_config(path: Path | None, *, environ: Mapping[str, str] | None = None) -> AppConfig:
    data: dict[str, object] = {}
    if path is not None:
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}")
        try:
            with path.open("rb") as fh:
                data = tomllib.load(fh)
        except tomllib.TOMLDecodeError as exc:
            raise ConfigError(f"Invalid TOML in {path}: {exc}") from exc

    repo_data = _optional_table(data, "repo") or {}
    runtime_data = _optional_table(data, "runtime") or {}
    codex_data = _optional_table(data, "codex") or {}
    issue_data = _optional_table(data, "issue_spec") or {}
    review_data = _optional_table(data, "pr_review") or {}

    full_name = _str_with_default(repo_data, "full_name", DEFAULT_REPO)
    config = AppConfig(
        repo=_parse_repo_full_name(full_name),
        runtime=RuntimeConfig(log_dir=_optional_path(runtime_data, "log_dir")),
        codex=CodexConfig(
            binary=_str_with_default(codex_data, "binary", "codex"),
            model=_optional_str(codex_data, "model"),
            extra_args=_tuple_of_str(codex_data, "extra_args"),
        ),
        issue_spec=IssueSpecConfig(
            state_path=Path(
                _str_with_default(issue_data, "state_path", DEFAULT_ISSUE_SPEC_STATE_PATH)
            ).expanduser(),
            label=_str_with_default(issue_data, "label", "module-spec"),
            base_prompt=_str_with_default(issue_data, "base_prompt", DEFAULT_ISSUE_BASE_PROMPT),
            sweep_enabled=_bool_with_default(issue_data, "sweep_enabled", True),
            sweep_max_pages=_int_with_default(issue_data, "sweep_max_pages", 3),
            require_api_key=_bool_with_default(issue_data, "require_api_key", True),
            exec_args=_tuple_of_str_with_default(
                issue_data, "exec_args", ("--skip-git-repo-check",)
            ),
        ),
        pr_review=PrReviewConfig(
            state_path=Path(
                _str_with_default(review_data, "state_path", DEFAULT_PR_REVIEW_STATE_PATH)
            ).expanduser(),
            base_prompt=_str_with_default(
                review_data, "base_prompt", DEFAULT_REVIEW_BASE_PROMPT
            ),
            review_bot_pattern=_str_with_default(review_data, "review_bot_pattern", "coderabbit"),
            fallback_pr_limit=_int_with_default(review_data, "fallback_pr_limit", 25),
            checkout_depth=_int_with_default(review_data, "checkout_depth", 50),
            require_api_key=_bool_with_default(review_data, "require_api_key", False),
            exec_args=_tuple_of_str_with_default(
                review_data, "exec_args", ("--dangerously-bypass-approvals-and-sandbox",)
            ),
        ),
    )
    config = _apply_env_overrides(config, os.environ if environ is None else environ)

    if config.issue_spec.sweep_max_pages < 1:
        raise ConfigError("issue_spec.sweep_max_pages must be >= 1")
    if not 1 <= config.pr_review.fallback_pr_limit <= 100:
        raise ConfigError("pr_review.fallback_pr_limit must be between 1 and 100")
    if config.pr_review.checkout_depth < 1:
        raise ConfigError("pr_review.checkout_depth must be >= 1")
    if not config.pr_review.review_bot_pattern.strip():
        raise ConfigError("pr_review.review_bot_pattern must be a non-empty string")
    return config


def load_credentials(environ: Mapping[str, str] | None = None) -> Credentials:
    env = os.environ if environ is None else environ
    gh_token = env.get("GH_TOKEN", "").strip()
    if not gh_token:
        raise MissingCredentialError("GH_TOKEN")
    return Credentials(
        gh_token=gh_token,
        openai_api_key=env.get("OPENAI_API_KEY", "").strip(),
    )


def _apply_env_overrides(config: AppConfig, environ: Mapping[str, str]) -> AppConfig:
    repo = config.repo
    if environ.get("GITHUB_REPO"):
        repo = _parse_repo_full_name(environ["GITHUB_REPO"])

    codex = config.codex
    if environ.get("CODEX_MODEL"):
        codex = replace(codex, model=environ["CODEX_MODEL"])

    issue_spec = config.issue_spec
    if environ.get("MODULE_SPEC_LABEL"):
        issue_spec = replace(issue_spec, label=environ["MODULE_SPEC_LABEL"])
    if environ.get("GITHUB_ISSUE_SPEC_STATE_PATH"):
        issue_spec = replace(
            issue_spec,
            state_path=Path(environ["GITHUB_ISSUE_SPEC_STATE_PATH"]).expanduser(),
        )
    if environ.get("CODEX_BASE_PROMPT"):
        issue_spec = replace(issue_spec, base_prompt=environ["CODEX_BASE_PROMPT"])

    pr_review = config.pr_review
    if environ.get("GITHUB_PR_REVIEW_STATE_PATH"):
        pr_review = replace(
            pr_review,
            state_path=Path(environ["GITHUB_PR_REVIEW_STATE_PATH"]).expanduser(),
        )
    if environ.get("CODEX_REVIEW_BASE_PROMPT"):
        pr_review = replace(pr_review, base_prompt=environ["CODEX_REVIEW_BASE_PROMPT"])

    return replace(config, repo=repo, codex=codex, issue_spec=issue_spec, pr_review=pr_review)


def _parse_repo_full_name(value: str) -> RepoConfig:
    parts = value.strip().split("/")
    if len(parts) != 2 or not all(parts):
        raise ConfigError(f"Repository must be in owner/name form, got {value!r}")
    return RepoConfig(owner=parts[0], name=parts[1])


def _optional_table(data: dict[str, object], key: str) -> dict[str, object] | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ConfigError(f"[{key}] must be a TOML table when provided")
    if not all(isinstance(item, str) for item in value.keys()):
        raise ConfigError(f"[{key}] must have string keys")
    return cast(dict[str, object], value)


def _optional_str(data: dict[str, object], key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str) or not value:
        raise ConfigError(f"{key} must be a non-empty string if provided")
    return value


def _int_with_default(data: dict[str, object], key: str, default: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{key} must be an integer")
    return value


def _bool_with_default(data: dict[str, object], key: str, default: bool) -> bool:
    value = data.get(key, default)
    if not isinstance(value, bool):
        raise ConfigError(f"{key} must be a boolean")
    return value


def _str_with_default(data: dict[str, object], key: str, default: str) -> str:
    value = data.get(key, default)
    if not isinstance(value, str) or not value:
        raise ConfigError(f"{key} must be a non-empty string")
    return value


def _tuple_of_str(data: dict[str, object], key: str) -> tuple[str, ...]:
    value = data.get(key, [])
    if not isinstance(value, list):
        raise ConfigError(f"{key} must be a list of strings")
    out: list[str] = []
    for item in value:
        if not isinstance(item, str):
            raise ConfigError(f"{key} must be a list of strings")
        out.append(item)
    return tuple(out)


def _tuple_of_str_with_default(
    data: dict[str, object], key: str, default: tuple[str, ...]
) -> tuple[str, ...]:
    if key not in data:
        return default
    return _tuple_of_str(data, key)


def _optional_path(data: dict[str, object], key: str) -> Path | None:
    value = _optional_str(data, key)
    if value is None:
        return None
    return Path(value).expanduser()
