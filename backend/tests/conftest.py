import pytest

from triage.integrations.connection_config import TriageConfig
from triage.models.schemas import Diagnosis


@pytest.fixture
def config(tmp_path):
    return TriageConfig(
        github_token="ghs_read",
        owner="acme",
        repo="widgets",
        run_id=4242,
        sha="abc123",
        ref_name="main",
        workspace=tmp_path,
        auto_fix=True,
    )


@pytest.fixture
def fixable_diagnosis():
    return Diagnosis(
        category="lint",
        root_cause="unused import os in main.py",
        suggested_fix="remove the import",
        confidence="high",
        fixable=True,
        affected_files=["main.py"],
    )
