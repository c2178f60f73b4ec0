"""
Exception hierarchy for the triage run.

Fatal errors (configuration, model endpoint, tool loop, diagnosis decode) stop the
run. FixError, PublishError and ReportError are best-effort stage failures: the
pipeline records them and carries on with the remaining stages.
"""


class TriageError(Exception):
    """Base class for every error raised by the triage pipeline."""


class ConfigError(TriageError):
    """Required configuration is missing or malformed."""


class ModelsAPIError(TriageError):
    """The chat-completion endpoint returned an unusable response."""

    def __init__(self, message: str, status_code: int | None = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class RateLimitExhausted(ModelsAPIError):
    """HTTP 429 persisted through every backoff attempt."""


class TokenLimitError(ModelsAPIError):
    """HTTP 413: the request exceeded the model's context window."""


class ContentFilterError(ModelsAPIError):
    """HTTP 400 carrying a content-filter marker."""


class ToolLoopError(TriageError):
    """A chat round failed; carries the round number it failed in."""

    def __init__(self, message: str, round_number: int):
        super().__init__(message)
        self.round_number = round_number


class RoundLimitExceeded(TriageError):
    """The model kept requesting tools past the configured round budget."""

    def __init__(self, max_rounds: int):
        super().__init__(f"tool loop exceeded {max_rounds} rounds without producing a final answer")
        self.max_rounds = max_rounds


class DiagnosisError(TriageError):
    """The final diagnosis text could not be decoded."""


class FixError(TriageError):
    """The fix stage failed to decode or apply its result."""


class PublishError(TriageError):
    """Creating the fix branch, commit or pull request failed."""


class ReportError(TriageError):
    """Posting the PR comment or chat notification failed."""
