"""CI failure triage: diagnose a failed workflow run, propose a fix, report it."""


def __getattr__(name):
    if name == "TriagePipeline":
        from .orchestrator import TriagePipeline
        return TriagePipeline
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = ["TriagePipeline"]
