"""Tests for configuration loading."""

from pathlib import Path

import pytest

from farm.config import DEFAULT_SHELL, Config, default_config, load_config


def write_config(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "farm.yaml"
    path.write_text(text)
    return path


class TestLoadConfig:
    def test_full_config(self, tmp_path: Path) -> None:
        path = write_config(
            tmp_path,
            """
max_jobs: 5
tick: 0.5
transport: asyncssh
log_dir: {log_dir}
hosts:
  - web1
  - web2
defaults:
  user: deploy
  port: 2222
  ssh_key: ~/.ssh/deploy
  connect_timeout: 3
""".format(log_dir=tmp_path / "logs"),
        )
        config = load_config(path)

        assert config.max_jobs == 5
        assert config.tick == 0.5
        assert config.transport == "asyncssh"
        assert config.hosts == ["web1", "web2"]
        assert config.log_dir == (tmp_path / "logs").resolve()
        assert config.defaults.user == "deploy"
        assert config.defaults.port == 2222
        assert config.defaults.ssh_key == Path("~/.ssh/deploy").expanduser()
        assert config.defaults.connect_timeout == 3
        assert config.defaults.shell == DEFAULT_SHELL
        assert config.source_path == path.resolve()

    def test_empty_file_uses_defaults(self, tmp_path: Path) -> None:
        config = load_config(write_config(tmp_path, ""))
        assert config.max_jobs == 3
        assert config.hosts == []
        assert config.transport == "openssh"
        assert config.defaults.ssh_key is None

    def test_null_log_dir_disables_logs(self, tmp_path: Path) -> None:
        config = load_config(write_config(tmp_path, "log_dir: null\n"))
        assert config.log_dir is None

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "missing.yaml")

    @pytest.mark.parametrize(
        "text",
        [
            "max_jobs: 0\n",
            "tick: 0\n",
            "transport: telnet\n",
            "hosts: web1\n",
            "hosts: ['']\n",
            "- just\n- a list\n",
            "defaults: [1, 2]\n",
            "defaults:\n  connect_timeout: 0\n",
            "max_jobs: [1\n",
            "hosts: \"web1\n",
            "max_jobs: many\n",
            "max_jobs: true\n",
            "tick: [1]\n",
            "defaults:\n  connect_timeout: soon\n",
        ],
    )
    def test_invalid(self, tmp_path: Path, text: str) -> None:
        with pytest.raises(ValueError):
            load_config(write_config(tmp_path, text))


class TestDefaultConfig:
    def test_is_valid(self) -> None:
        config = default_config()
        config.validate()
        assert isinstance(config, Config)
        assert config.log_dir is not None


class TestMalformedConfig:
    def test_yaml_error_is_value_error(self, tmp_path: Path) -> None:
        with pytest.raises(ValueError, match="Invalid YAML"):
            load_config(write_config(tmp_path, "max_jobs: [1\n"))

    def test_non_numeric_names_the_key(self, tmp_path: Path) -> None:
        with pytest.raises(ValueError, match="'tick' must be a number"):
            load_config(write_config(tmp_path, "tick: [1]\n"))
