"""Tests for config loading in highclaw/config."""

import json

from highclaw.config.loader import (
    camel_to_snake,
    convert_keys,
    convert_to_camel,
    load_config,
    save_config,
    snake_to_camel,
)
from highclaw.config.schema import Config
from highclaw.session.keys import DMScope


class TestCaseConversion:
    def test_camel_to_snake(self):
        assert camel_to_snake("maxTokens") == "max_tokens"
        assert camel_to_snake("idempotencyTtlS") == "idempotency_ttl_s"

    def test_snake_to_camel(self):
        assert snake_to_camel("prune_max_age_days") == "pruneMaxAgeDays"

    def test_identity_links_keys_untouched(self):
        data = {"session": {"identityLinks": {"aliceSmith": ["telegram:alice_tg"]}}}
        converted = convert_keys(data)
        assert converted == {"session": {"identity_links": {"aliceSmith": ["telegram:alice_tg"]}}}
        assert convert_to_camel(converted) == data


class TestLoadConfig:
    def test_missing_file_gives_defaults(self, tmp_path):
        config = load_config(tmp_path / "config.json")
        assert config.session.dm_scope is DMScope.PER_CHANNEL_PEER
        assert config.session.idempotency_ttl_s == 300
        assert config.gateway.port == 18790

    def test_reads_camel_case(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({
            "agents": {"defaults": {"agentId": "ops"}},
            "session": {
                "dmScope": "perPeer",
                "identityLinks": {"alice": ["telegram:alice_tg"]},
                "fileMode": "0600",
                "pruneMaxCount": 10,
            },
            "gateway": {"agentTimeoutS": 5},
        }), encoding="utf-8")

        config = load_config(path)
        assert config.agents.defaults.agent_id == "ops"
        assert config.session.dm_scope is DMScope.PER_PEER
        assert config.session.identity_links == {"alice": ["telegram:alice_tg"]}
        assert config.session.file_mode == 0o600
        assert config.session.prune_max_count == 10
        assert config.gateway.agent_timeout_s == 5

    def test_corrupt_file_falls_back(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{broken", encoding="utf-8")
        assert load_config(path).session.main_key == "main"

    def test_save_round_trip(self, tmp_path):
        path = tmp_path / "nested" / "config.json"
        config = Config()
        config.session.history_limit = 8
        save_config(config, path)

        raw = json.loads(path.read_text(encoding="utf-8"))
        assert raw["session"]["historyLimit"] == 8
        assert load_config(path).session.history_limit == 8


class TestConfig:
    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("HIGHCLAW_SESSION__DM_SCOPE", "main")
        assert Config().session.dm_scope is DMScope.MAIN

    def test_data_path(self, tmp_path):
        assert Config(data_dir=str(tmp_path)).data_path == tmp_path

    def test_provider_matching(self):
        config = Config()
        config.providers.openai.api_key = "sk-test"
        assert config.get_provider_name("gpt-4o") == "openai"
        # falls back to the only configured provider
        assert config.get_provider_name("anthropic/claude") == "openai"
        assert Config().get_provider() is None
