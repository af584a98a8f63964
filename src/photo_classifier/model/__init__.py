"""
Model Module - Classifier Backends

This module provides:
- registry: Load and cache ONNX Runtime sessions and label files
- classifier: Classifier interface, ONNX implementation, per-backend cache
- exporter: Export torchvision classifiers to ONNX (``export`` extra)
"""

from photo_classifier.model.classifier import (
    ClassificationResult,
    Classifier,
    ClassifierSet,
    OnnxClassifier,
    Prediction,
)
from photo_classifier.model.registry import (
    ModelInfo,
    ModelRegistry,
    ModelSpec,
    SessionConfig,
    load_labels,
    load_model_specs,
)
from photo_classifier.selector import ModelSelector

__all__ = [
    # Classifiers
    "ClassificationResult",
    "Classifier",
    "ClassifierSet",
    "OnnxClassifier",
    "Prediction",
    # Registry
    "ModelInfo",
    "ModelRegistry",
    "ModelSpec",
    "SessionConfig",
    "load_labels",
    "load_model_specs",
    # Selection
    "ModelSelector",
]
