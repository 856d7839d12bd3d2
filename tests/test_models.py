"""Tests for model manager."""

from unittest.mock import patch

from recall.llm.models import MODEL_MAP, ModelManager, friendly


@patch("recall.llm.models.settings")
def test_default_memory_model(mock_settings) -> None:
    mock_settings.default_memory_model = "haiku"
    ModelManager._reset()
    mm = ModelManager.get()
    assert mm.get_memory_model() == MODEL_MAP["haiku"]
    ModelManager._reset()


@patch("recall.llm.models.settings")
def test_env_default_respected(mock_settings) -> None:
    mock_settings.default_memory_model = "sonnet"
    ModelManager._reset()
    assert ModelManager.get().get_memory_model() == MODEL_MAP["sonnet"]
    ModelManager._reset()


@patch("recall.llm.models.settings")
def test_unknown_default_falls_back_to_haiku(mock_settings) -> None:
    mock_settings.default_memory_model = "gpt-4"
    ModelManager._reset()
    assert ModelManager.get().get_memory_model() == MODEL_MAP["haiku"]
    ModelManager._reset()


@patch("recall.llm.models.settings")
def test_set_memory_model(mock_settings) -> None:
    mock_settings.default_memory_model = "haiku"
    ModelManager._reset()
    mm = ModelManager.get()
    result = mm.set_memory_model("sonnet")
    assert result == MODEL_MAP["sonnet"]
    assert mm.get_memory_model() == MODEL_MAP["sonnet"]
    ModelManager._reset()


@patch("recall.llm.models.settings")
def test_set_memory_model_invalid(mock_settings) -> None:
    mock_settings.default_memory_model = "haiku"
    ModelManager._reset()
    mm = ModelManager.get()
    assert mm.set_memory_model("gpt-4") is None
    assert mm.get_memory_model() == MODEL_MAP["haiku"]
    ModelManager._reset()


@patch("recall.llm.models.settings")
def test_set_by_full_model_id(mock_settings) -> None:
    mock_settings.default_memory_model = "haiku"
    ModelManager._reset()
    mm = ModelManager.get()
    assert mm.set_memory_model(MODEL_MAP["opus"]) == MODEL_MAP["opus"]
    ModelManager._reset()


def test_singleton() -> None:
    ModelManager._reset()
    assert ModelManager.get() is ModelManager.get()
    ModelManager._reset()


def test_friendly_name() -> None:
    assert friendly(MODEL_MAP["sonnet"]) == "sonnet"
    assert friendly(MODEL_MAP["haiku"]) == "haiku"
    assert friendly(MODEL_MAP["opus"]) == "opus"
    assert friendly("unknown-model") == "unknown-model"
