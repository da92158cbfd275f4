"""
RapidTriage - Services Package

Contains service interfaces and implementations for:
- Generative model backends (services.ai)
- Extraction of structured situations from audio/text
- Triage classification

Design Pattern:
    Each service defines a Protocol (interface) and one or more implementations.
    The coordinator is configured with concrete implementations at startup,
    enabling dependency injection and easy testing/swapping of components.
"""

from .classifier import (
    Classifier,
    ModelClassifier,
    RuleBasedClassifier,
    create_classifier,
)
from .extraction import (
    AudioProcessor,
    StructuredAssessment,
    TextProcessor,
)

__all__ = [
    # Classifier
    "Classifier",
    "ModelClassifier",
    "RuleBasedClassifier",
    "create_classifier",
    # Extraction
    "AudioProcessor",
    "StructuredAssessment",
    "TextProcessor",
]
