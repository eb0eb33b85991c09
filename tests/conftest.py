import io
from pathlib import Path

import pytest
import yaml
from rich.console import Console


@pytest.fixture
def console() -> Console:
    """A console that records output instead of writing to the terminal."""
    return Console(file=io.StringIO(), force_terminal=False, width=200)


@pytest.fixture
def project_dir(tmp_path: Path, monkeypatch) -> Path:
    """A project root with a minimal project file and a `site` subdirectory."""
    monkeypatch.setenv("SITEBIND_STAGE", "dev")
    monkeypatch.setenv("AWS_REGION", "eu-west-1")
    (tmp_path / "sitebind.yaml").write_text(
        yaml.safe_dump({"name": "my-app", "environment": {"API_URL": "http://localhost:3000"}})
    )
    (tmp_path / "site").mkdir()
    return tmp_path
