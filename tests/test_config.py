"""Tests for YAML + environment configuration."""

import pytest
from pydantic import ValidationError

from context_engine.config import Settings, load_settings

ENV_VARS = (
    "CONTEXTENGINE_CONFIG",
    "CONTEXTENGINE_CACHE_FILE",
    "CONTEXTENGINE_LOG_LEVEL",
    "CONTEXTENGINE_EMBEDDINGS",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


class TestLoadSettings:

    def test_defaults_without_file(self) -> None:
        settings = load_settings()
        assert settings.chunking.max_tokens == 400
        assert settings.chunking.overlap_lines == 4
        assert settings.ranking.half_life_days == 90.0
        assert settings.retrieval.keyword_weight == 0.4
        assert settings.retrieval.semantic_weight == 0.6
        assert settings.embedding.dimensions == 384
        assert settings.cache.file.endswith("embedding-cache.json")

    def test_explicit_missing_file_raises(self, tmp_path) -> None:
        with pytest.raises(FileNotFoundError):
            load_settings(tmp_path / "nope.yaml")

    def test_yaml_values(self, tmp_path) -> None:
        path = tmp_path / "custom.yaml"
        path.write_text(
            "retrieval:\n  top_k: 8\n  keyword_weight: 0.3\n  semantic_weight: 0.7\n"
            "ranking:\n  half_life_days: 30\n",
            encoding="utf-8",
        )
        settings = load_settings(path)
        assert settings.retrieval.top_k == 8
        assert settings.retrieval.keyword_weight == 0.3
        assert settings.ranking.half_life_days == 30
        assert settings.chunking.max_tokens == 400

    def test_default_location(self, tmp_path) -> None:
        (tmp_path / "config").mkdir()
        (tmp_path / "config" / "config.yaml").write_text("retrieval:\n  top_k: 3\n", encoding="utf-8")
        assert load_settings().retrieval.top_k == 3

    def test_env_config_path(self, tmp_path, monkeypatch) -> None:
        path = tmp_path / "env.yaml"
        path.write_text("embedding:\n  provider: local\n", encoding="utf-8")
        monkeypatch.setenv("CONTEXTENGINE_CONFIG", str(path))
        assert load_settings().embedding.provider == "local"

    def test_env_overrides(self, tmp_path, monkeypatch) -> None:
        monkeypatch.setenv("CONTEXTENGINE_CACHE_FILE", str(tmp_path / "v.json"))
        monkeypatch.setenv("CONTEXTENGINE_LOG_LEVEL", "DEBUG")
        monkeypatch.setenv("CONTEXTENGINE_EMBEDDINGS", "none")
        settings = load_settings()
        assert settings.cache.file == str(tmp_path / "v.json")
        assert settings.logging.level == "DEBUG"
        assert settings.embedding.provider == "none"

    def test_empty_yaml(self, tmp_path) -> None:
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")
        assert load_settings(path) == Settings()

    def test_env_override_into_empty_section(self, tmp_path, monkeypatch) -> None:
        path = tmp_path / "partial.yaml"
        path.write_text("cache:\n", encoding="utf-8")
        monkeypatch.setenv("CONTEXTENGINE_CACHE_FILE", str(tmp_path / "v.json"))
        assert load_settings(path).cache.file == str(tmp_path / "v.json")


class TestValidation:

    def test_top_level_must_be_mapping(self, tmp_path) -> None:
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ValueError, match="mapping"):
            load_settings(path)

    def test_scalar_section_with_env_override(self, tmp_path, monkeypatch) -> None:
        path = tmp_path / "scalar.yaml"
        path.write_text("cache: 5\n", encoding="utf-8")
        monkeypatch.setenv("CONTEXTENGINE_CACHE_FILE", str(tmp_path / "v.json"))
        with pytest.raises(ValidationError):
            load_settings(path)

    def test_weights_must_sum_to_one(self, tmp_path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text("retrieval:\n  keyword_weight: 0.5\n  semantic_weight: 0.6\n", encoding="utf-8")
        with pytest.raises(ValidationError):
            load_settings(path)

    def test_unknown_provider(self) -> None:
        with pytest.raises(ValidationError):
            Settings.model_validate({"embedding": {"provider": "cohere"}})

    def test_negative_overlap(self) -> None:
        with pytest.raises(ValidationError):
            Settings.model_validate({"chunking": {"overlap_lines": -1}})
