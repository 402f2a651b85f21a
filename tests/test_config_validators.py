# tests/test_config_validators.py

import config
import pytest
from config import BookForgeSettings


def test_defaults():
    settings = BookForgeSettings(_env_file=None)
    assert settings.LLM_RETRY_ATTEMPTS == 3
    assert settings.CHAPTER_DELAY_SECONDS == 0.8
    assert settings.CONTEXT_PREVIEW_CHARS == 200
    assert settings.MAX_TOKENS_PER_REQUEST == 2000
    assert settings.DETAILED_CHAPTER_MAX_TOKENS == 3000
    assert settings.DEFAULT_MODEL == "gpt-4o-mini"


@pytest.mark.parametrize("field", ["LLM_RETRY_ATTEMPTS", "CONTEXT_PREVIEW_CHARS"])
def test_non_positive_values_rejected(field):
    with pytest.raises(ValueError):
        BookForgeSettings(**{field: 0})


def test_blank_api_key_is_missing(monkeypatch):
    warnings: list[str] = []

    def fake_warning(msg: str, **_kw: object) -> None:
        warnings.append(msg)

    monkeypatch.setattr(config.logger, "warning", fake_warning)
    assert BookForgeSettings(OPENAI_API_KEY="   ").OPENAI_API_KEY is None
    assert any("OPENAI_API_KEY" in msg for msg in warnings)


def test_log_level_alias(monkeypatch):
    monkeypatch.setenv("BOOKFORGE_LOG_LEVEL", "DEBUG")
    assert BookForgeSettings().LOG_LEVEL_STR == "DEBUG"
