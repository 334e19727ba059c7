"""
Unit tests for configuration loading.
"""

import pytest
import yaml

from quantcore.config import DEFAULT_CONFIG, default_config, load_config, save_config
from quantcore.exceptions import ConfigError


@pytest.mark.unit
class TestConfig:
    """Test YAML loading and merging."""

    def test_defaults_are_copies(self):
        cfg = default_config()
        cfg["RISK"]["MAX_VAR"] = 0.5
        assert DEFAULT_CONFIG["RISK"]["MAX_VAR"] == 0.03

    def test_none_gives_defaults(self):
        assert load_config(None) == DEFAULT_CONFIG

    def test_missing_file_gives_defaults(self, tmp_path):
        assert load_config(tmp_path / "absent.yaml") == DEFAULT_CONFIG

    def test_partial_file_merged_over_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({"RISK": {"MAX_VAR": 0.02}, "SEED": 7}))

        cfg = load_config(path)
        assert cfg["RISK"]["MAX_VAR"] == 0.02
        assert cfg["RISK"]["MAX_DRAWDOWN"] == 0.15
        assert cfg["SEED"] == 7
        assert cfg["FACTOR_MODEL"] == DEFAULT_CONFIG["FACTOR_MODEL"]

    def test_lists_replaced_not_merged(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({
            "STRESS_SCENARIOS": [{"name": "Flash Crash", "market_shock": -0.1}],
        }))
        assert len(load_config(path)["STRESS_SCENARIOS"]) == 1

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_config(path) == DEFAULT_CONFIG

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("RISK: [unclosed")
        with pytest.raises(ConfigError):
            load_config(path)

    def test_non_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigError):
            load_config(path)

    def test_save_and_reload(self, tmp_path):
        cfg = default_config()
        cfg["ALLOCATION"]["RISK_AVERSION"] = 5.0
        path = tmp_path / "saved.yaml"

        save_config(cfg, path)
        assert load_config(path) == cfg
