"""Unit tests for environment-driven settings and root detection."""

from pathlib import Path

import pytest

from gsd.config import Settings, find_project_root, resolve_root

ENV_NAMES = (
    "GSD_PROJECT_ROOT",
    "GSD_VERIFY_TIMEOUT",
    "GSD_OUTPUT_CAP",
    "GSD_GIT_AUTHOR_NAME",
    "GSD_GIT_AUTHOR_EMAIL",
    "GSD_LOG_LEVEL",
    "GSD_LOG_FILE",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_NAMES:
        monkeypatch.delenv(name, raising=False)


class TestSettings:
    """Test cases for Settings.from_env."""

    def test_defaults(self):
        settings = Settings.from_env()
        assert settings.project_root is None
        assert settings.verify_timeout == 120.0
        assert settings.output_cap == 4000
        assert (settings.git_author_name, settings.git_author_email) == ("GSD", "gsd@localhost")
        assert settings.log_level == "INFO"
        assert settings.log_file is None

    def test_overrides(self, monkeypatch, tmp_path):
        monkeypatch.setenv("GSD_PROJECT_ROOT", str(tmp_path))
        monkeypatch.setenv("GSD_VERIFY_TIMEOUT", "2.5")
        monkeypatch.setenv("GSD_OUTPUT_CAP", "500")
        monkeypatch.setenv("GSD_GIT_AUTHOR_NAME", "Robot")
        monkeypatch.setenv("GSD_GIT_AUTHOR_EMAIL", "robot@example.com")
        monkeypatch.setenv("GSD_LOG_LEVEL", "debug")
        monkeypatch.setenv("GSD_LOG_FILE", str(tmp_path / "gsd.log"))

        settings = Settings.from_env()
        assert settings.project_root == tmp_path
        assert settings.verify_timeout == 2.5
        assert settings.output_cap == 500
        assert settings.git_author_name == "Robot"
        assert settings.git_author_email == "robot@example.com"
        assert settings.log_level == "DEBUG"
        assert settings.log_file == tmp_path / "gsd.log"

    @pytest.mark.parametrize("value", ["soon", "0", "-3"])
    def test_invalid_timeout(self, monkeypatch, value):
        monkeypatch.setenv("GSD_VERIFY_TIMEOUT", value)
        with pytest.raises(ValueError, match="GSD_VERIFY_TIMEOUT"):
            Settings.from_env()

    def test_settings_are_frozen(self):
        with pytest.raises(AttributeError):
            Settings().verify_timeout = 1.0


class TestRootResolution:
    """Test cases for project root detection."""

    def test_explicit_directory_wins(self, monkeypatch, tmp_path):
        other = tmp_path / "other"
        other.mkdir()
        monkeypatch.setenv("GSD_PROJECT_ROOT", str(other))
        assert resolve_root(str(tmp_path), Settings.from_env()) == tmp_path.resolve()

    def test_missing_explicit_directory(self, tmp_path):
        with pytest.raises(ValueError, match="does not exist"):
            resolve_root(str(tmp_path / "nope"), Settings())

    def test_environment_root(self, tmp_path):
        assert resolve_root(None, Settings(project_root=tmp_path)) == tmp_path.resolve()

    def test_missing_environment_root(self, tmp_path):
        with pytest.raises(ValueError, match="GSD_PROJECT_ROOT"):
            resolve_root(None, Settings(project_root=tmp_path / "nope"))

    def test_nearest_ancestor_with_storage_dir(self, monkeypatch, tmp_path):
        (tmp_path / ".gsd").mkdir()
        nested = tmp_path / "src" / "pkg"
        nested.mkdir(parents=True)
        monkeypatch.chdir(nested)
        assert find_project_root(Path.cwd()) == tmp_path.resolve()
        assert resolve_root(None, Settings()) == tmp_path.resolve()

    def test_falls_back_to_cwd(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        assert resolve_root(None, Settings()) == (find_project_root(tmp_path) or tmp_path.resolve())
