"""
Resolved run configuration.

Every environment lookup happens here, once, at process start. The frozen config
object is passed explicitly to the components that need it.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from triage.errors import ConfigError
from triage.utils.logger import get_logger

logger = get_logger("connection_config")

DEFAULT_MODEL = "openai/gpt-4o"
DEFAULT_MODELS_URL = "https://models.github.ai/inference/chat/completions"
DEFAULT_MAX_ROUNDS = 20


@dataclass(frozen=True)
class ModelProfile:
    """Per-model limits for tool results and log tails."""
    max_result_chars: int
    default_tail_lines: int
    max_tail_lines: int


# Small-context models get aggressive truncation, everything else generous limits.
_SMALL_CONTEXT_PROFILE = ModelProfile(max_result_chars=2_000, default_tail_lines=50, max_tail_lines=200)
_DEFAULT_PROFILE = ModelProfile(max_result_chars=50_000, default_tail_lines=500, max_tail_lines=2_000)

_SMALL_CONTEXT_MARKERS = ("gpt-5",)


def resolve_model_profile(model: str) -> ModelProfile:
    """Pick the limits profile for a model identifier."""
    if any(marker in model for marker in _SMALL_CONTEXT_MARKERS):
        return _SMALL_CONTEXT_PROFILE
    return _DEFAULT_PROFILE


@dataclass(frozen=True)
class TriageConfig:
    """Immutable configuration for one triage run.

    Tokens are plaintext and live only in memory.
    """
    # GitHub
    github_token: str
    owner: str
    repo: str
    run_id: int
    fix_token: str = ""              # Separate token for write operations (empty = github_token)
    sha: str = ""
    ref_name: str = ""
    server_url: str = "https://github.com"
    api_url: str = "https://api.github.com"

    # Filesystem
    workspace: Path = Path(".")

    # Model
    model: str = DEFAULT_MODEL
    models_url: str = DEFAULT_MODELS_URL
    max_rounds: int = DEFAULT_MAX_ROUNDS
    profile: ModelProfile = field(default=_DEFAULT_PROFILE)

    # Outputs
    auto_fix: bool = False
    slack_webhook_url: str = ""

    @property
    def repository(self) -> str:
        return f"{self.owner}/{self.repo}"

    @property
    def run_url(self) -> str:
        return f"{self.server_url}/{self.owner}/{self.repo}/actions/runs/{self.run_id}"

    @property
    def write_token(self) -> str:
        return self.fix_token or self.github_token

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "TriageConfig":
        """Build the config from environment variables.

        Raises:
            ConfigError: a required variable is missing or malformed.
        """
        env = os.environ if env is None else env

        token = env.get("GITHUB_TOKEN", "")
        if not token:
            raise ConfigError("GITHUB_TOKEN environment variable is required")

        repository = env.get("GITHUB_REPOSITORY", "")
        if not repository:
            raise ConfigError("GITHUB_REPOSITORY environment variable is required")
        owner, sep, repo = repository.partition("/")
        if not sep or not owner or not repo:
            raise ConfigError(f"GITHUB_REPOSITORY must be in format owner/repo, got: {repository}")

        run_id_raw = env.get("GITHUB_RUN_ID", "")
        if not run_id_raw:
            raise ConfigError("GITHUB_RUN_ID environment variable is required")
        try:
            run_id = int(run_id_raw)
        except ValueError as e:
            raise ConfigError(f"GITHUB_RUN_ID must be a valid integer: {run_id_raw}") from e

        max_rounds_raw = env.get("MAX_TOOL_ROUNDS", "")
        try:
            max_rounds = int(max_rounds_raw) if max_rounds_raw else DEFAULT_MAX_ROUNDS
        except ValueError as e:
            raise ConfigError(f"MAX_TOOL_ROUNDS must be a valid integer: {max_rounds_raw}") from e
        if max_rounds < 1:
            raise ConfigError("MAX_TOOL_ROUNDS must be at least 1")

        model = env.get("MODEL") or DEFAULT_MODEL
        profile = resolve_model_profile(model)

        config = cls(
            github_token=token,
            owner=owner,
            repo=repo,
            run_id=run_id,
            fix_token=env.get("FIX_TOKEN", ""),
            sha=env.get("GITHUB_SHA", ""),
            ref_name=env.get("GITHUB_REF_NAME", ""),
            server_url=(env.get("GITHUB_SERVER_URL") or "https://github.com").rstrip("/"),
            api_url=(env.get("GITHUB_API_URL") or "https://api.github.com").rstrip("/"),
            workspace=Path(env.get("GITHUB_WORKSPACE") or "."),
            model=model,
            models_url=env.get("MODELS_URL") or DEFAULT_MODELS_URL,
            max_rounds=max_rounds,
            profile=profile,
            auto_fix=env.get("AUTO_FIX", "").lower() == "true",
            slack_webhook_url=env.get("SLACK_WEBHOOK_URL", ""),
        )
        logger.info("Config resolved", extra={
            "run_id": run_id, "action": "config_resolved",
            "extra": {
                "repository": config.repository,
                "model": model,
                "max_result_chars": profile.max_result_chars,
                "max_rounds": max_rounds,
                "auto_fix": config.auto_fix,
                "has_fix_token": bool(config.fix_token),
                "has_slack_webhook": bool(config.slack_webhook_url),
            },
        })
        return config
