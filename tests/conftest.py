"""
Shared test fixtures for asglab tests.

This module provides common fixtures used across test modules:
- A temporary Pulumi project directory with stack files
- An isolated preferences file
"""

from pathlib import Path

import pytest
import yaml

# ============================================================================
# PROJECT FIXTURES
# ============================================================================


def _write_stack(project_dir: Path, stack: str, values: dict) -> Path:
    """Write Pulumi.<stack>.yaml with values namespaced under the test project."""
    config = {"aws:region": "us-east-1"}
    config.update({f"asg-stress-lab:{key}": value for key, value in values.items()})
    path = project_dir / f"Pulumi.{stack}.yaml"
    path.write_text(yaml.safe_dump({"config": config}))
    return path


@pytest.fixture
def project_dir(tmp_path):
    """Temporary Pulumi project with an empty 'dev' stack.

    Pulumi.yaml declares a project-level default for instanceType, the same
    way the real project file does.
    """
    directory = tmp_path / "project"
    directory.mkdir()
    (directory / "Pulumi.yaml").write_text(
        yaml.safe_dump(
            {
                "name": "asg-stress-lab",
                "runtime": {"name": "python"},
                "config": {"instanceType": {"type": "string", "default": "t3.micro"}},
            }
        )
    )
    _write_stack(directory, "dev", {})
    return directory


@pytest.fixture
def write_stack(project_dir):
    """Factory writing Pulumi.<stack>.yaml files into the project fixture."""

    def _write(stack: str, values: dict) -> Path:
        return _write_stack(project_dir, stack, values)

    return _write


@pytest.fixture
def prefs_path(tmp_path):
    """Path for an isolated preferences file (not created)."""
    return tmp_path / "prefs" / "config.toml"
