"""Tests for YAML config loading, env overrides and in-place saving."""

from __future__ import annotations

from potholewatch.config import load_config, save_config_values

YAML = """\
backends:
  model_type: "huggingface"   # which backend to use
  model_endpoint: ""
  request_timeout: 12.5
live:
  enabled: false
  cadence_ms: 250
unknown_section:
  foo: 1
"""


class TestConfig:
    def test_defaults_when_file_missing(self, tmp_path):
        config = load_config(tmp_path / "missing.yaml")
        assert config.live.cadence_ms == 200
        assert config.classification.min_score == 0.25
        assert "pothole" in config.classification.anomaly_keywords

    def test_yaml_values_applied(self, tmp_path):
        path = tmp_path / "c.yaml"
        path.write_text(YAML)
        config = load_config(path)

        assert config.backends.request_timeout == 12.5
        assert config.live.cadence_ms == 250
        assert config.live.history_size == 10

    def test_env_overrides(self, tmp_path, monkeypatch):
        monkeypatch.setenv("ROBOFLOW_API_KEY", "rf-secret")
        monkeypatch.setenv("CUSTOM_MODEL_ENDPOINT", "https://custom")
        monkeypatch.setenv("WEB_PORT", "9000")
        config = load_config(tmp_path / "missing.yaml")

        assert config.backends.roboflow_api_key == "rf-secret"
        assert config.backends.custom_endpoint == "https://custom"
        assert config.web.port == 9000

    def test_save_preserves_comments(self, tmp_path):
        path = tmp_path / "c.yaml"
        path.write_text(YAML)
        save_config_values({"model_type": "custom",
                            "model_endpoint": "https://x/y",
                            "enabled": True,
                            "cadence_ms": 300}, path)

        text = path.read_text()
        assert 'model_type: "custom"   # which backend to use' in text
        assert 'model_endpoint: "https://x/y"' in text
        config = load_config(path)
        assert config.backends.model_type == "custom"
        assert config.live.enabled is True
        assert config.live.cadence_ms == 300

    def test_save_ignores_missing_file(self, tmp_path):
        save_config_values({"model_type": "mock"}, tmp_path / "none.yaml")
        assert not (tmp_path / "none.yaml").exists()
