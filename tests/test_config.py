"""Tests for configuration loading."""

import pytest
from pydantic import ValidationError

from abap_migration.config import (
    DiscoveryConfig,
    MigrationConfig,
    StateConfig,
    load_config_from_yaml,
)

CONFIG_YAML = """
systems:
  ecc:
    url: https://ecc.example.com/
    token: ${ECC_TOKEN}
  S4:
    url: https://s4.example.com
    rate_limit: 5
agent:
  url: https://agent.example.com
  model: migration-large
state:
  db_path: ./state.db
worker:
  max_tool_rounds: 6
  global_migration_rules: Use ABAP SQL host variables.
"""


def test_load_config_from_yaml(tmp_path, monkeypatch):
    monkeypatch.setenv("ECC_TOKEN", "secret")
    path = tmp_path / "config.yaml"
    path.write_text(CONFIG_YAML)

    config = load_config_from_yaml(path)

    assert set(config.systems) == {"ECC", "S4"}
    assert config.systems["ECC"].url == "https://ecc.example.com"
    assert config.systems["ECC"].token == "secret"
    assert config.systems["S4"].rate_limit == 5
    assert config.agent.model == "migration-large"
    assert config.advisor is None
    assert config.worker.max_tool_rounds == 6
    assert config.worker.global_migration_rules == "Use ABAP SQL host variables."
    assert config.events.subscriber_queue_size == 100


def test_missing_environment_variable(tmp_path, monkeypatch):
    monkeypatch.delenv("ECC_TOKEN", raising=False)
    path = tmp_path / "config.yaml"
    path.write_text(CONFIG_YAML)

    with pytest.raises(ValueError, match="ECC_TOKEN"):
        load_config_from_yaml(path)


def test_missing_and_empty_files(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config_from_yaml(tmp_path / "nope.yaml")

    empty = tmp_path / "empty.yaml"
    empty.write_text("")
    with pytest.raises(ValueError, match="Empty"):
        load_config_from_yaml(empty)


def test_invalid_system_url():
    with pytest.raises(ValidationError):
        MigrationConfig(systems={"ECC": {"url": "ecc.example.com"}})


def test_customer_namespace():
    config = DiscoveryConfig(customer_prefixes=["z", " /ACME/ ", ""])

    assert config.customer_prefixes == ["Z", "/ACME/"]
    assert config.is_customer_object("zcl_order")
    assert config.is_customer_object("/ACME/CL_ORDER")
    assert not config.is_customer_object("CL_SALV_TABLE")


def test_database_url():
    assert StateConfig(db_path="./state.db").database_url == "sqlite:///./state.db"
    assert StateConfig(db_path="postgresql://u@h/db").database_url == "postgresql://u@h/db"
