from datetime import timedelta
from pathlib import Path

from insight_engine.config import EngineConfig


class TestFromEnv:
    def test_defaults_without_environment(self):
        config = EngineConfig.from_env({})
        assert config == EngineConfig()
        assert config.cooldown == timedelta(days=7)

    def test_values_are_read(self):
        config = EngineConfig.from_env(
            {
                "INSIGHT_ENGINE_MAX_MATCHES": "5",
                "INSIGHT_ENGINE_COOLDOWN_DAYS": "3.5",
                "INSIGHT_ENGINE_NOT_RELEVANT_HOURS": "12",
                "INSIGHT_ENGINE_MIN_REFRESH_SECONDS": "30",
                "INSIGHT_ENGINE_SEEN_TTL_HOURS": "6",
                "INSIGHT_ENGINE_CATALOG": "/etc/insights/rules.json",
            }
        )
        assert config.max_matches == 5
        assert config.cooldown_days == 3.5
        assert config.not_relevant_window == timedelta(hours=12)
        assert config.min_refresh_interval == timedelta(seconds=30)
        assert config.seen_ttl == timedelta(hours=6)
        assert config.catalog_path == Path("/etc/insights/rules.json")

    def test_invalid_values_keep_defaults(self, caplog):
        config = EngineConfig.from_env(
            {"INSIGHT_ENGINE_MAX_MATCHES": "many", "INSIGHT_ENGINE_COOLDOWN_DAYS": "-1"}
        )
        assert config.max_matches == 3
        assert config.cooldown_days == 7.0
        assert "INSIGHT_ENGINE_MAX_MATCHES" in caplog.text
