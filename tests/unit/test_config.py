"""Tests for configuration loading."""

import pytest

from roundwise.config import Library, load_config
from roundwise.contracts import ProviderKind
from roundwise.errors import ConfigError, WorkflowNotFound

CONFIG = """
database_url: sqlite:///tmp/roundwise-test.db
streaming:
  interval_ms: 50
providers:
  - id: openai
    kind: chat
    base_url: https://api.test/v1
    api_key_env: OPENAI_API_KEY
  - id: gemini
    kind: plain
roles:
  - name: proposer
    provider_id: openai
    model_id: gpt-test
    system_prompt: Propose a plan.
    parameters:
      temperature: 0.2
  - name: critic
    provider_id: gemini
    model_id: gemini-test
workflows:
  - name: review
    rounds:
      - roles:
          - name: proposer
            history_n: 2
      - roles:
          - name: critic
            receive_from: [proposer]
pipelines:
  - name: debate
    proposer_a: proposer
    proposer_b: proposer
    critic_a: critic
    critic_b: critic
    summarizer: proposer
"""


def test_load_config_from_env(tmp_path, monkeypatch):
    config_path = tmp_path / "roundwise.yaml"
    config_path.write_text(CONFIG)
    monkeypatch.setenv("ROUNDWISE_CONFIG", str(config_path))
    monkeypatch.delenv("ROUNDWISE_DATABASE_URL", raising=False)

    config = load_config()
    assert config.database_url == "sqlite:///tmp/roundwise-test.db"
    assert config.streaming.enabled is True
    assert config.streaming.interval_ms == 50
    assert config.providers[1].kind is ProviderKind.PLAIN
    assert config.roles[0].parameters.temperature == 0.2
    assert config.workflows[0].rounds[1].roles[0].receive_from == ["proposer"]


def test_database_url_env_overrides_file(tmp_path, monkeypatch):
    config_path = tmp_path / "roundwise.yaml"
    config_path.write_text(CONFIG)
    monkeypatch.setenv("ROUNDWISE_DATABASE_URL", "sqlite:///override.db")

    config = load_config(str(config_path))
    assert config.database_url == "sqlite:///override.db"


def test_missing_file_yields_defaults(tmp_path, monkeypatch):
    monkeypatch.delenv("ROUNDWISE_DATABASE_URL", raising=False)
    config = load_config(str(tmp_path / "absent.yaml"))
    assert config.roles == []
    assert config.database_url is None


def test_invalid_config_raises(tmp_path):
    config_path = tmp_path / "roundwise.yaml"
    config_path.write_text(
        """
workflows:
  - name: too-wide
    rounds:
      - roles: [{name: a}, {name: b}, {name: c}, {name: d}, {name: e}]
"""
    )
    with pytest.raises(ConfigError):
        load_config(str(config_path))

    config_path.write_text("roles: [unclosed")
    with pytest.raises(ConfigError):
        load_config(str(config_path))


def test_library_lookups(tmp_path):
    config_path = tmp_path / "roundwise.yaml"
    config_path.write_text(CONFIG)
    library = Library(load_config(str(config_path)))

    assert library.role("critic").provider_id == "gemini"
    assert library.role("nobody") is None
    assert library.provider("openai").base_url == "https://api.test/v1"
    assert library.workflow("review").name == "review"
    assert library.pipeline("debate").summarizer == "proposer"
    assert library.workflow_names() == ["review"]
    with pytest.raises(WorkflowNotFound):
        library.workflow("missing")
    with pytest.raises(WorkflowNotFound):
        library.pipeline("missing")
