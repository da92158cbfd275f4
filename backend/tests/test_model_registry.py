"""
RapidTriage - Model Registry & Provider Tests

Run with: pytest tests/test_model_registry.py -v
"""

import pytest

from rapidtriage.core.exceptions import InvalidConfigurationError, UnsupportedModelError
from rapidtriage.services.ai import (
    DummyModel,
    ModelConfig,
    ModelFamily,
    ModelProvider,
    ModelRegistry,
    create_model_provider,
    default_registry,
)


class TestModelRegistry:

    def test_default_registry_has_builtin_backends(self):
        registry = default_registry()

        assert set(registry.families()) == {
            ModelFamily.GEMINI,
            ModelFamily.CLAUDE,
            ModelFamily.GPT4,
            ModelFamily.DUMMY,
        }
        assert not registry.is_registered(ModelFamily.LLAMA)

    def test_unregistered_family_raises(self):
        with pytest.raises(UnsupportedModelError):
            ModelRegistry().create(ModelFamily.LLAMA, ModelConfig())

    def test_register_overwrites(self):
        registry = ModelRegistry()
        registry.register(ModelFamily.DUMMY, DummyModel)
        registry.register(ModelFamily.DUMMY, lambda cfg: DummyModel(simulated_latency_ms=1))

        model = registry.create(ModelFamily.DUMMY, ModelConfig())

        assert isinstance(model, DummyModel)
        assert registry.families() == [ModelFamily.DUMMY]

    def test_registries_are_independent(self):
        first = ModelRegistry()
        first.register(ModelFamily.DUMMY, DummyModel)

        assert not ModelRegistry().is_registered(ModelFamily.DUMMY)


class TestModelProvider:

    @pytest.fixture
    def provider(self) -> ModelProvider:
        return ModelProvider(default_registry(), ModelFamily.DUMMY, ModelConfig())

    def test_default_model(self, provider: ModelProvider):
        assert provider.default_family == ModelFamily.DUMMY
        assert provider.default_model().name == "dummy-triage-v0.1"

    def test_absent_family_raises_without_fallback(self, provider: ModelProvider):
        with pytest.raises(UnsupportedModelError):
            provider.model(ModelFamily.GEMINI)

    def test_absent_family_falls_back_when_requested(self, provider: ModelProvider):
        model = provider.model(ModelFamily.GEMINI, fallback_to_default=True)

        assert model is provider.default_model()

    def test_add_model_and_switch_default(self, provider: ModelProvider):
        added = provider.add_model(ModelFamily.CLAUDE, ModelConfig(api_key="k"))

        switched = provider.with_default_model(ModelFamily.CLAUDE)

        assert switched.default_model() is added
        assert provider.default_family == ModelFamily.DUMMY
        assert set(switched.families()) == {ModelFamily.DUMMY, ModelFamily.CLAUDE}

    def test_add_existing_family_raises(self, provider: ModelProvider):
        with pytest.raises(ValueError):
            provider.add_model(ModelFamily.DUMMY, ModelConfig())

    def test_switch_to_absent_family_raises(self, provider: ModelProvider):
        with pytest.raises(UnsupportedModelError):
            provider.with_default_model(ModelFamily.GPT4)


class TestCreateModelProvider:

    def test_dummy_from_settings(self, test_settings):
        provider = create_model_provider(test_settings)

        assert provider.default_family == ModelFamily.DUMMY

    def test_unknown_type_raises(self, test_settings):
        settings = test_settings.model_copy(update={"ai_model_type": "mystery"})

        with pytest.raises(UnsupportedModelError):
            create_model_provider(settings)

    def test_hosted_backend_without_key_fails_fast(self, test_settings):
        settings = test_settings.model_copy(update={"ai_model_type": "gemini", "gemini_api_key": ""})

        with pytest.raises(InvalidConfigurationError):
            create_model_provider(settings)

    def test_generic_overrides_win(self, test_settings):
        settings = test_settings.model_copy(update={
            "ai_model_type": "claude",
            "claude_api_key": "provider-key",
            "ai_model_api_key": "generic-key",
            "ai_model_name": "claude-3-haiku-20240307",
        })

        model = create_model_provider(settings).default_model()

        assert model.name == "claude-3-haiku-20240307"
        assert model.config.api_key == "generic-key"
