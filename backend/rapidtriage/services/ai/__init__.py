"""
RapidTriage - Generative Model Backends

Design Pattern:
    Model is a Protocol; each vendor backend implements it. The
    ModelRegistry maps family tags to backends and the ModelProvider holds
    the instantiated default model for the process.
"""

from .base import (
    Model,
    ModelConfig,
    ModelFamily,
    extract_json_from_text,
    parse_json_content,
)
from .dummy import DummyModel
from .registry import ModelProvider, ModelRegistry, create_model_provider, default_registry

__all__ = [
    "Model",
    "ModelConfig",
    "ModelFamily",
    "extract_json_from_text",
    "parse_json_content",
    "DummyModel",
    "ModelProvider",
    "ModelRegistry",
    "create_model_provider",
    "default_registry",
]
