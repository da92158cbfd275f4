"""
RapidTriage - Model Registry & Provider

ModelRegistry maps family tags to factories. It is an explicit object
built at startup and injected, so tests can construct their own.

ModelProvider holds the instantiated models for one process. Lookups are
strict: asking for an absent family raises UnsupportedModelError unless the
caller opts into ``fallback_to_default``.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, List, Optional, TYPE_CHECKING

from rapidtriage.core.exceptions import UnsupportedModelError
from rapidtriage.services.ai.base import Model, ModelConfig, ModelFamily

if TYPE_CHECKING:
    from rapidtriage.config import Settings

logger = logging.getLogger(__name__)

ModelFactory = Callable[[ModelConfig], Model]
"""Build a model from its config. May raise InvalidConfigurationError."""


class ModelRegistry:
    """Family tag -> factory. Re-registering a family overwrites it."""

    def __init__(self) -> None:
        self._factories: Dict[ModelFamily, ModelFactory] = {}
        self._lock = threading.Lock()

    def register(self, family: ModelFamily, factory: ModelFactory) -> None:
        with self._lock:
            if family in self._factories:
                logger.debug("Overwriting model factory for %s", family.value)
            self._factories[family] = factory

    def families(self) -> List[ModelFamily]:
        with self._lock:
            return list(self._factories)

    def is_registered(self, family: ModelFamily) -> bool:
        with self._lock:
            return family in self._factories

    def create(self, family: ModelFamily, config: ModelConfig) -> Model:
        with self._lock:
            factory = self._factories.get(family)
        if factory is None:
            raise UnsupportedModelError(
                f"no model registered for family '{family.value}'",
                details={"family": family.value},
            )
        return factory(config)


def default_registry() -> ModelRegistry:
    """Registry with every built-in backend."""
    from rapidtriage.services.ai.claude import ClaudeModel
    from rapidtriage.services.ai.dummy import DummyModel
    from rapidtriage.services.ai.gemini import GeminiModel
    from rapidtriage.services.ai.openai import OpenAIModel

    registry = ModelRegistry()
    registry.register(ModelFamily.GEMINI, GeminiModel)
    registry.register(ModelFamily.CLAUDE, ClaudeModel)
    registry.register(ModelFamily.GPT4, OpenAIModel)
    registry.register(ModelFamily.DUMMY, DummyModel)
    return registry


class ModelProvider:
    """
    Instantiated models for one process, with a designated default.

    Attributes:
        registry: Factory registry used to build models
        default_family: Family returned by default_model()
    """

    def __init__(
        self,
        registry: ModelRegistry,
        default_family: ModelFamily,
        config: ModelConfig,
    ):
        self._registry = registry
        self._models: Dict[ModelFamily, Model] = {
            default_family: registry.create(default_family, config),
        }
        self._default_family = default_family

        logger.info(
            "ModelProvider initialized: default=%s (%s)",
            default_family.value,
            self._models[default_family].name,
        )

    @classmethod
    def _from_models(cls, registry: ModelRegistry, models: Dict[ModelFamily, Model], default: ModelFamily) -> "ModelProvider":
        provider = cls.__new__(cls)
        provider._registry = registry
        provider._models = dict(models)
        provider._default_family = default
        return provider

    @property
    def default_family(self) -> ModelFamily:
        return self._default_family

    def default_model(self) -> Model:
        return self._models[self._default_family]

    def families(self) -> List[ModelFamily]:
        return list(self._models)

    def add_model(self, family: ModelFamily, config: ModelConfig) -> Model:
        if family in self._models:
            raise ValueError(f"model family '{family.value}' already present in provider")
        model = self._registry.create(family, config)
        self._models[family] = model
        logger.info("ModelProvider: added %s (%s)", family.value, model.name)
        return model

    def with_default_model(self, family: ModelFamily) -> "ModelProvider":
        """New provider sharing these models, with a different default."""
        if family not in self._models:
            raise UnsupportedModelError(
                f"model family '{family.value}' not present in provider",
                details={"family": family.value},
            )
        return ModelProvider._from_models(self._registry, self._models, family)

    def model(self, family: ModelFamily, fallback_to_default: bool = False) -> Model:
        """
        Look up a model by family.

        Args:
            family: Family to fetch
            fallback_to_default: Return the default model instead of raising
                when ``family`` is absent

        Raises:
            UnsupportedModelError: family absent and no fallback requested
        """
        found: Optional[Model] = self._models.get(family)
        if found is not None:
            return found

        if fallback_to_default:
            logger.warning(
                "Model family %s not available, falling back to default %s",
                family.value,
                self._default_family.value,
            )
            return self.default_model()

        raise UnsupportedModelError(
            f"model family '{family.value}' not present in provider",
            details={"family": family.value, "available": [f.value for f in self._models]},
        )


def create_model_provider(settings: "Settings", registry: Optional[ModelRegistry] = None) -> ModelProvider:
    """
    Factory function to build the process-wide ModelProvider.

    Selects the default family from ``ai_model_type``:
    "dummy" | "gemini" | "claude" | "gpt4".

    Raises:
        UnsupportedModelError: unknown or unregistered family
        InvalidConfigurationError: the backend rejected its config (e.g. no API key)
    """
    model_type = settings.ai_model_type.strip().lower()
    try:
        family = ModelFamily(model_type)
    except ValueError as e:
        raise UnsupportedModelError(
            f"unknown ai_model_type '{settings.ai_model_type}'",
            details={"model_type": settings.ai_model_type},
        ) from e

    logger.info("Using %s model backend", family.value)
    return ModelProvider(registry or default_registry(), family, settings.model_config_for(family))
