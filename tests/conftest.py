"""Shared fixtures for the GSD test suite."""

import os
import shutil

import pytest

from gsd.config import Settings
from gsd.workflow import WorkflowManager

PHASES = [
    {"name": "Foundation", "objective": "Set up the project skeleton"},
    {"name": "Storage layer", "objective": "Persist notes on disk"},
    {"name": "Search", "objective": "Find notes by keyword"},
]


def _plan(name="Core plan", tasks=1, wave=1):
    return {
        "name": name,
        "objective": f"Deliver {name.lower()}",
        "wave": wave,
        "tasks": [
            {
                "name": f"{name} task {index}",
                "files": [f"src/{name.lower().replace(' ', '_')}_{index}.py"],
                "action": "Implement the module",
                "verify": "pytest -q",
                "done": "Tests pass",
            }
            for index in range(1, tasks + 1)
        ],
        "success_criteria": ["Module exists"],
    }


@pytest.fixture
def isolated_git(monkeypatch, tmp_path_factory):
    """Keep git away from the developer's global and system configuration."""
    if shutil.which("git") is None:
        pytest.skip("git executable not available")
    home = tmp_path_factory.mktemp("home")
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", os.devnull)
    for name in ("GIT_DIR", "GIT_WORK_TREE", "GIT_INDEX_FILE"):
        monkeypatch.delenv(name, raising=False)
    return home


@pytest.fixture
def make_plan():
    """Factory for plan request dicts."""
    return _plan


@pytest.fixture
def settings():
    return Settings(verify_timeout=10.0, output_cap=200)


@pytest.fixture
def project_dir(tmp_path):
    root = tmp_path / "project"
    root.mkdir()
    return root


@pytest.fixture
def manager(project_dir, settings, isolated_git):
    """An initialized three-phase project."""
    workflow = WorkflowManager(project_dir, settings)
    result = workflow.init(
        project_name="Notes App",
        vision="A tiny note-taking tool",
        goals=["Capture notes quickly"],
        users="Developers",
        success_criteria=["Notes persist across restarts"],
        phases=PHASES,
    )
    assert result["success"], result["message"]
    return workflow
