from __future__ import annotations

from pathlib import Path

import pytest

from codexcron.config import (
    DEFAULT_ISSUE_BASE_PROMPT,
    DEFAULT_REPO,
    ConfigError,
    MissingCredentialError,
    load_config,
    load_credentials,
)


def _write(path: Path, content: str) -> Path:
    path.write_text(content, encoding="utf-8")
    return path


def test_defaults_without_config_file() -> None:
    cfg = load_config(None, environ={})

    assert cfg.repo.full_name == DEFAULT_REPO
    assert cfg.codex.binary == "codex"
    assert cfg.codex.model is None
    assert cfg.runtime.log_dir is None
    assert cfg.issue_spec.label == "module-spec"
    assert cfg.issue_spec.base_prompt == DEFAULT_ISSUE_BASE_PROMPT
    assert cfg.issue_spec.sweep_enabled is True
    assert cfg.issue_spec.require_api_key is True
    assert cfg.issue_spec.exec_args == ("--skip-git-repo-check",)
    assert cfg.pr_review.review_bot_pattern == "coderabbit"
    assert cfg.pr_review.fallback_pr_limit == 25
    assert cfg.pr_review.require_api_key is False
    assert cfg.pr_review.exec_args == ("--dangerously-bypass-approvals-and-sandbox",)


def test_load_config_reads_every_table(tmp_path: Path) -> None:
    cfg_path = _write(
        tmp_path / "codexcron.toml",
        """
[repo]
full_name = "acme/widgets"

[runtime]
log_dir = "~/codexcron"

[codex]
binary = "/opt/codex"
model = "gpt-5-codex"
extra_args = ["--color", "never"]

[issue_spec]
state_path = "/tmp/issue.json"
label = "Module Spec"
base_prompt = "Build it."
sweep_enabled = false
sweep_max_pages = 5
require_api_key = false
exec_args = []

[pr_review]
state_path = "/tmp/pr.json"
review_bot_pattern = "reviewbot"
fallback_pr_limit = 10
checkout_depth = 5
require_api_key = true
""",
    )

    cfg = load_config(cfg_path, environ={})

    assert cfg.repo.owner == "acme" and cfg.repo.name == "widgets"
    assert cfg.runtime.log_dir == Path("~/codexcron").expanduser()
    assert cfg.codex.binary == "/opt/codex"
    assert cfg.codex.model == "gpt-5-codex"
    assert cfg.codex.extra_args == ("--color", "never")
    assert cfg.issue_spec.state_path == Path("/tmp/issue.json")
    assert cfg.issue_spec.label == "Module Spec"
    assert cfg.issue_spec.sweep_enabled is False
    assert cfg.issue_spec.sweep_max_pages == 5
    assert cfg.issue_spec.require_api_key is False
    assert cfg.issue_spec.exec_args == ()
    assert cfg.pr_review.state_path == Path("/tmp/pr.json")
    assert cfg.pr_review.review_bot_pattern == "reviewbot"
    assert cfg.pr_review.fallback_pr_limit == 10
    assert cfg.pr_review.checkout_depth == 5
    assert cfg.pr_review.require_api_key is True


def test_environment_overrides_win(tmp_path: Path) -> None:
    cfg_path = _write(tmp_path / "c.toml", '[repo]\nfull_name = "acme/widgets"\n')

    cfg = load_config(
        cfg_path,
        environ={
            "GITHUB_REPO": "other/repo",
            "MODULE_SPEC_LABEL": "spec",
            "GITHUB_ISSUE_SPEC_STATE_PATH": "/state/issue.json",
            "GITHUB_PR_REVIEW_STATE_PATH": "/state/pr.json",
            "CODEX_MODEL": "m",
            "CODEX_BASE_PROMPT": "issue prompt",
            "CODEX_REVIEW_BASE_PROMPT": "review prompt",
        },
    )

    assert cfg.repo.full_name == "other/repo"
    assert cfg.issue_spec.label == "spec"
    assert cfg.issue_spec.state_path == Path("/state/issue.json")
    assert cfg.pr_review.state_path == Path("/state/pr.json")
    assert cfg.codex.model == "m"
    assert cfg.issue_spec.base_prompt == "issue prompt"
    assert cfg.pr_review.base_prompt == "review prompt"


def test_empty_environment_values_are_ignored() -> None:
    cfg = load_config(None, environ={"GITHUB_REPO": "", "MODULE_SPEC_LABEL": ""})

    assert cfg.repo.full_name == DEFAULT_REPO
    assert cfg.issue_spec.label == "module-spec"


def test_missing_config_file(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="Config file not found"):
        load_config(tmp_path / "nope.toml", environ={})


@pytest.mark.parametrize(
    ("content", "message"),
    [
        ('[repo]\nfull_name = "nope"\n', "owner/name"),
        ("repo = 3\n", r"\[repo\] must be a TOML table"),
        ("[issue_spec]\nsweep_max_pages = 0\n", "sweep_max_pages must be >= 1"),
        ("[issue_spec]\nsweep_max_pages = true\n", "sweep_max_pages must be an integer"),
        ('[issue_spec]\nsweep_enabled = "yes"\n', "sweep_enabled must be a boolean"),
        ('[issue_spec]\nlabel = ""\n', "label must be a non-empty string"),
        ("[pr_review]\nfallback_pr_limit = 101\n", "between 1 and 100"),
        ("[pr_review]\ncheckout_depth = 0\n", "checkout_depth must be >= 1"),
        ('[pr_review]\nreview_bot_pattern = "  "\n', "review_bot_pattern"),
        ("[codex]\nextra_args = [1]\n", "extra_args must be a list of strings"),
        ('[codex]\nmodel = ""\n', "model must be a non-empty string"),
        ('[repo\nfull_name = "o/r"\n', "Invalid TOML"),
    ],
)
def test_invalid_config_is_rejected(tmp_path: Path, content: str, message: str) -> None:
    cfg_path = _write(tmp_path / "c.toml", content)

    with pytest.raises(ConfigError, match=message):
        load_config(cfg_path, environ={})


def test_invalid_repo_override_is_rejected() -> None:
    with pytest.raises(ConfigError, match="owner/name"):
        load_config(None, environ={"GITHUB_REPO": "a/b/c"})


def test_load_credentials() -> None:
    creds = load_credentials({"GH_TOKEN": " ghp ", "OPENAI_API_KEY": " sk "})

    assert creds.gh_token == "ghp"
    assert creds.openai_api_key == "sk"
    assert creds.has_openai_api_key is True
    assert load_credentials({"GH_TOKEN": "ghp"}).has_openai_api_key is False


def test_missing_github_token() -> None:
    with pytest.raises(MissingCredentialError, match="GH_TOKEN missing") as excinfo:
        load_credentials({"GH_TOKEN": "  "})

    assert excinfo.value.name == "GH_TOKEN"
