"""
Classifier Configuration Module

This module provides a Python interface to classifier.yaml, the single
source of truth for model definitions and pre-processing defaults.

Usage:
    from photo_classifier.config import get_config, get_model_config

    # Get full config
    config = get_config()

    # Get model config
    resnet = get_model_config("resnet50")

    # Pre-processing defaults as a ProcessingConfig
    defaults = get_processing_defaults()

The file shipped inside the package is used unless the
PHOTO_CLASSIFIER_CONFIG environment variable points elsewhere.

Author: Matthew Hong
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List

import yaml

from photo_classifier.processing.pipeline import ProcessingConfig
from photo_classifier.selector import ModelSelector


# =============================================================================
# Constants
# =============================================================================

CONFIG_ENV_VAR = "PHOTO_CLASSIFIER_CONFIG"

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "classifier.yaml"

_VALID_OUTPUT_KINDS = ("logits", "probabilities")


def get_config_path() -> Path:
    """Resolve the configuration file path (env override or packaged file)."""
    override = os.environ.get(CONFIG_ENV_VAR)
    if override:
        return Path(override)
    return _DEFAULT_CONFIG_PATH


# =============================================================================
# Configuration Loading
# =============================================================================

@lru_cache(maxsize=1)
def get_config() -> Dict[str, Any]:
    """
    Load and cache the classifier configuration.

    Returns:
        Complete configuration dictionary

    Raises:
        FileNotFoundError: If the configuration file is missing
        yaml.YAMLError: If YAML parsing fails

    Example:
        >>> config = get_config()
        >>> config["classification"]["default_model"]
        'googlenet'
    """
    config_path = get_config_path()

    if not config_path.exists():
        raise FileNotFoundError(
            f"Classifier configuration not found: {config_path}\n"
            f"Expected location: {config_path.absolute()}"
        )

    with open(config_path, "r") as f:
        return yaml.safe_load(f) or {}


def reload_config() -> Dict[str, Any]:
    """
    Force reload of configuration (clears cache).

    Returns:
        Freshly loaded configuration dictionary
    """
    get_config.cache_clear()
    return get_config()


def get_section(section: str) -> Dict[str, Any]:
    """
    Get a top-level configuration section.

    Raises:
        KeyError: If section not found
    """
    config = get_config()

    if section not in config:
        available = list(config.keys())
        raise KeyError(
            f"Section '{section}' not found. Available: {available}"
        )

    return config[section]


# =============================================================================
# Model Configuration
# =============================================================================

def get_model_config(model_name: str) -> Dict[str, Any]:
    """
    Get configuration for a specific model.

    Args:
        model_name: Model identifier ("googlenet", "squeezenet" or "resnet50")

    Returns:
        Model configuration dictionary

    Raises:
        KeyError: If model not configured

    Example:
        >>> get_model_config("resnet50")["file"]
        'resnet50.onnx'
    """
    models = get_section("models")

    if model_name not in models:
        available = list(models.keys())
        raise KeyError(
            f"Model '{model_name}' not found in models. Available models: {available}"
        )

    return models[model_name]


def get_model_names() -> List[str]:
    """
    Get list of configured model names.

    Example:
        >>> get_model_names()
        ['googlenet', 'squeezenet', 'resnet50']
    """
    return list(get_section("models").keys())


def get_default_model() -> ModelSelector:
    """Model used when a request does not name one."""
    name = get_section("classification").get("default_model", ModelSelector.GOOGLENET.value)
    return ModelSelector(name)


def get_onnx_runtime_config() -> Dict[str, Any]:
    """ONNX Runtime threading settings (empty dict if unset)."""
    return get_config().get("onnx_runtime", {})


# =============================================================================
# Pre-processing / Classification Defaults
# =============================================================================

def get_processing_defaults() -> ProcessingConfig | None:
    """
    Pre-processing applied when a request brings no values of its own.

    Returns:
        ProcessingConfig, or None when pre-processing is disabled

    Example:
        >>> get_processing_defaults()
        ProcessingConfig(crop=None, scale=1.0, contrast=1.0)
    """
    section = get_config().get("preprocessing", {})

    if not section.get("enabled", True):
        return None

    return ProcessingConfig.from_dict(section)


def get_classification_config() -> Dict[str, Any]:
    """
    Classification settings with defaults filled in.

    Example:
        >>> get_classification_config()["top_k"]
        5
    """
    section = dict(get_config().get("classification", {}))
    section.setdefault("default_model", ModelSelector.GOOGLENET.value)
    section.setdefault("top_k", 5)
    section.setdefault("log_threshold", 0.05)
    return section


# =============================================================================
# Validation
# =============================================================================

def validate_config() -> List[str]:
    """
    Validate the classifier configuration.

    Returns:
        List of validation error messages (empty if valid)

    Example:
        >>> errors = validate_config()
        >>> if errors:
        ...     print("Validation failed:", errors)
    """
    errors = []

    try:
        config = get_config()
    except (OSError, yaml.YAMLError) as e:
        return [f"Failed to load config: {e}"]

    for section in ["models", "preprocessing", "classification"]:
        if section not in config:
            errors.append(f"Missing required section: {section}")

    models = config.get("models", {})
    for selector in ModelSelector:
        if selector.value not in models:
            errors.append(f"Missing model configuration: {selector.value}")
            continue

        model = models[selector.value]
        for field in ["file", "labels", "input_size"]:
            if field not in model:
                errors.append(f"Model {selector.value} missing field: {field}")

        output = model.get("output", "logits")
        if output not in _VALID_OUTPUT_KINDS:
            errors.append(
                f"Model {selector.value} has invalid output '{output}'. "
                f"Expected one of {list(_VALID_OUTPUT_KINDS)}"
            )

    try:
        get_processing_defaults()
    except (KeyError, TypeError, ValueError) as e:
        errors.append(f"Invalid preprocessing section: {e}")

    default_model = config.get("classification", {}).get("default_model")
    if default_model is not None and default_model not in [s.value for s in ModelSelector]:
        errors.append(f"Unknown default_model: {default_model}")

    return errors
