"""ONNX Model Registry.

This module provides a registry for loading and caching ONNX Runtime
inference sessions for the three classifier backends.

Features:
- Lazy loading: Models loaded on first access
- Session caching: Each backend is loaded once per registry
- Thread configuration: Consistent intra_op/inter_op thread settings
- Typed failures: Anything that stops a model from loading is a ModelLoadError

Author: Matthew Hong
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from threading import Lock
from typing import Any, Mapping

import numpy as np

from photo_classifier.config import get_model_config, get_onnx_runtime_config
from photo_classifier.errors import ModelLoadError
from photo_classifier.processing.transforms import IMAGENET_MEAN, IMAGENET_STD
from photo_classifier.selector import ModelSelector

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

DEFAULT_INTRA_OP_THREADS: int = 2
"""ONNX Runtime intra-op parallelism (within single operator)."""

DEFAULT_INTER_OP_THREADS: int = 1
"""ONNX Runtime inter-op parallelism (across operators)."""

DEFAULT_INPUT_SIZE: int = 224


# =============================================================================
# Data Classes
# =============================================================================


@dataclass(frozen=True)
class ModelSpec:
    """Static description of a classifier backend (from classifier.yaml).

    Attributes:
        selector: Backend this spec describes
        display_name: Human-readable model name
        file: ONNX filename relative to the models directory
        labels: Label filename relative to the labels directory
        input_size: Square input dimension the model was trained on
        mean: Per-channel normalization mean
        std: Per-channel normalization standard deviation
        output: "logits" (softmax applied) or "probabilities"
    """

    selector: ModelSelector
    display_name: str
    file: str
    labels: str
    input_size: int = DEFAULT_INPUT_SIZE
    mean: tuple[float, ...] = tuple(float(v) for v in IMAGENET_MEAN)
    std: tuple[float, ...] = tuple(float(v) for v in IMAGENET_STD)
    output: str = "logits"

    @classmethod
    def from_dict(cls, selector: ModelSelector, data: Mapping[str, Any]) -> "ModelSpec":
        return cls(
            selector=selector,
            display_name=data.get("display_name", selector.value),
            file=data.get("file", f"{selector.value}.onnx"),
            labels=data.get("labels", f"{selector.value}.labels.txt"),
            input_size=int(data.get("input_size", DEFAULT_INPUT_SIZE)),
            mean=tuple(float(v) for v in data.get("mean", IMAGENET_MEAN)),
            std=tuple(float(v) for v in data.get("std", IMAGENET_STD)),
            output=data.get("output", "logits"),
        )


def load_model_specs() -> dict[ModelSelector, ModelSpec]:
    """Read the spec of every backend from classifier.yaml.

    Raises:
        KeyError: If a backend is missing from the configuration
    """
    return {
        selector: ModelSpec.from_dict(selector, get_model_config(selector.value))
        for selector in ModelSelector
    }


@dataclass
class ModelInfo:
    """Information about a loaded model.

    Attributes:
        name: Model identifier
        path: Path to ONNX file
        input_name: Name of input tensor
        input_shape: Expected input shape
        input_dtype: Expected input dtype
        output_name: Name of output tensor
        output_shape: Expected output shape
        num_labels: Number of class labels loaded for the model
    """

    name: str
    path: Path
    input_name: str
    input_shape: tuple[Any, ...]
    input_dtype: np.dtype
    output_name: str
    output_shape: tuple[Any, ...]
    num_labels: int = 0

    @property
    def input_hw(self) -> tuple[int, int] | None:
        """Static (height, width) of an NCHW input, None if dynamic."""
        if len(self.input_shape) != 4:
            return None
        height, width = self.input_shape[2], self.input_shape[3]
        if isinstance(height, int) and isinstance(width, int) and height > 0 and width > 0:
            return height, width
        return None


@dataclass
class SessionConfig:
    """Configuration for ONNX Runtime inference session.

    Attributes:
        intra_op_threads: Number of threads for intra-op parallelism
        inter_op_threads: Number of threads for inter-op parallelism
        providers: Execution providers (default: CPUExecutionProvider)
    """

    intra_op_threads: int = DEFAULT_INTRA_OP_THREADS
    inter_op_threads: int = DEFAULT_INTER_OP_THREADS
    providers: list[str] = field(default_factory=lambda: ["CPUExecutionProvider"])

    @classmethod
    def from_config(cls) -> "SessionConfig":
        """Thread settings from the onnx_runtime section of classifier.yaml."""
        onnx_config = get_onnx_runtime_config()
        return cls(
            intra_op_threads=onnx_config.get("intra_op_num_threads", DEFAULT_INTRA_OP_THREADS),
            inter_op_threads=onnx_config.get("inter_op_num_threads", DEFAULT_INTER_OP_THREADS),
        )


# =============================================================================
# Label Loading
# =============================================================================


def load_labels(labels_file: Path) -> list[str]:
    """Load class labels from a file with one label per line.

    Trailing blank lines are ignored.

    Raises:
        FileNotFoundError: If labels file not found
        ValueError: If the file contains no labels
    """
    labels_file = Path(labels_file)
    if not labels_file.exists():
        raise FileNotFoundError(f"Labels file not found: {labels_file}")

    with open(labels_file, encoding="utf-8") as f:
        labels = [line.strip() for line in f]

    while labels and not labels[-1]:
        labels.pop()

    if not labels:
        raise ValueError(f"Labels file is empty: {labels_file}")

    return labels


# =============================================================================
# Model Registry
# =============================================================================


class ModelRegistry:
    """Registry for loading and caching ONNX Runtime inference sessions.

    Provides consistent model loading with:
    - Configurable thread settings
    - Session and label caching to avoid redundant loading
    - Thread-safe access for concurrent inference

    Example:
        >>> registry = ModelRegistry(models_dir=Path("models/"))
        >>> session = registry.get_session(ModelSelector.RESNET50)
        >>> labels = registry.get_labels(ModelSelector.RESNET50)

    Attributes:
        models_dir: Base directory for ONNX model files
        labels_dir: Base directory for label files
        specs: Backend descriptions keyed by selector
        config: Session configuration (thread settings, providers)
    """

    def __init__(
        self,
        models_dir: Path,
        specs: Mapping[ModelSelector, ModelSpec] | None = None,
        config: SessionConfig | None = None,
        labels_dir: Path | None = None,
    ) -> None:
        """Initialize ModelRegistry.

        Args:
            models_dir: Directory containing ONNX model files
            specs: Backend specs (default: read from classifier.yaml)
            config: Session configuration (default: 2 intra-op, 1 inter-op threads)
            labels_dir: Directory containing label files (default: models_dir)
        """
        self.models_dir = Path(models_dir)
        self.labels_dir = Path(labels_dir) if labels_dir is not None else self.models_dir
        self.specs = dict(specs) if specs is not None else load_model_specs()
        self.config = config or SessionConfig()

        self._sessions: dict[ModelSelector, Any] = {}
        self._model_info: dict[ModelSelector, ModelInfo] = {}
        self._labels: dict[ModelSelector, list[str]] = {}
        self._lock = Lock()

        logger.info("ModelRegistry initialized")
        logger.info(f"  Models dir: {self.models_dir}")
        logger.info(f"  Labels dir: {self.labels_dir}")
        logger.info(f"  Intra-op threads: {self.config.intra_op_threads}")
        logger.info(f"  Inter-op threads: {self.config.inter_op_threads}")

    def get_spec(self, selector: ModelSelector) -> ModelSpec:
        """Get the configured spec for a backend.

        Raises:
            ModelLoadError: If the backend is not configured
        """
        selector = ModelSelector(selector)
        if selector not in self.specs:
            raise ModelLoadError(f"Model '{selector.value}' is not configured", model=selector)
        return self.specs[selector]

    def model_path(self, selector: ModelSelector) -> Path:
        return self.models_dir / self.get_spec(selector).file

    def labels_path(self, selector: ModelSelector) -> Path:
        return self.labels_dir / self.get_spec(selector).labels

    def get_session(self, selector: ModelSelector) -> "ort.InferenceSession":
        """Get ONNX Runtime inference session for a backend.

        Sessions are cached after first load. Thread-safe for concurrent access.

        Raises:
            ModelLoadError: If the model file or its labels cannot be loaded
        """
        selector = ModelSelector(selector)
        with self._lock:
            if selector not in self._sessions:
                self._load_model(selector)

            return self._sessions[selector]

    def get_model_info(self, selector: ModelSelector) -> ModelInfo:
        """Get information about a model, loading it if needed.

        Example:
            >>> info = registry.get_model_info(ModelSelector.RESNET50)
            >>> info.input_shape
            (1, 3, 224, 224)
        """
        selector = ModelSelector(selector)
        if selector not in self._model_info:
            self.get_session(selector)

        return self._model_info[selector]

    def get_labels(self, selector: ModelSelector) -> list[str]:
        """Get the class labels of a model, loading it if needed."""
        selector = ModelSelector(selector)
        if selector not in self._labels:
            self.get_session(selector)

        return self._labels[selector]

    def _load_model(self, selector: ModelSelector) -> None:
        """Load a model and its labels into the registry.

        Raises:
            ModelLoadError: If any part of the load fails
        """
        import onnxruntime as ort

        model_path = self.model_path(selector)
        labels_path = self.labels_path(selector)

        if not model_path.exists():
            raise ModelLoadError(
                f"Model file not found: {model_path}. "
                f"Run 'python scripts/export_models.py' first.",
                model=selector,
            )

        try:
            labels = load_labels(labels_path)
        except (OSError, ValueError) as e:
            raise ModelLoadError(f"Could not load labels for {selector.value}: {e}", model=selector) from e

        logger.info(f"Loading model: {selector.value} from {model_path}")

        sess_options = ort.SessionOptions()
        sess_options.intra_op_num_threads = self.config.intra_op_threads
        sess_options.inter_op_num_threads = self.config.inter_op_threads

        # Disable memory pattern optimization for consistent behavior
        sess_options.enable_mem_pattern = False

        try:
            session = ort.InferenceSession(
                str(model_path),
                sess_options,
                providers=self.config.providers,
            )
        except Exception as e:
            raise ModelLoadError(
                f"ONNX Runtime failed to load {selector.value}: {e}", model=selector
            ) from e

        input_meta = session.get_inputs()[0]
        output_meta = session.get_outputs()[0]

        onnx_to_numpy = {
            "tensor(float)": np.float32,
            "tensor(float16)": np.float16,
            "tensor(int64)": np.int64,
            "tensor(int32)": np.int32,
        }

        model_info = ModelInfo(
            name=selector.value,
            path=model_path,
            input_name=input_meta.name,
            input_shape=tuple(input_meta.shape),
            input_dtype=np.dtype(onnx_to_numpy.get(input_meta.type, np.float32)),
            output_name=output_meta.name,
            output_shape=tuple(output_meta.shape),
            num_labels=len(labels),
        )

        num_classes = model_info.output_shape[-1] if model_info.output_shape else None
        if isinstance(num_classes, int) and num_classes > 0 and num_classes != len(labels):
            raise ModelLoadError(
                f"Model {selector.value} outputs {num_classes} classes but "
                f"{labels_path} has {len(labels)} labels",
                model=selector,
            )

        self._sessions[selector] = session
        self._model_info[selector] = model_info
        self._labels[selector] = labels

        logger.info(f"  Loaded {selector.value}")
        logger.info(f"    Input: {model_info.input_name} {model_info.input_shape}")
        logger.info(f"    Output: {model_info.output_name} {model_info.output_shape}")
        logger.info(f"    Labels: {len(labels)}")

    def is_loaded(self, selector: ModelSelector) -> bool:
        """Check if a model session is already cached."""
        return ModelSelector(selector) in self._sessions

    def is_available(self, selector: ModelSelector) -> bool:
        """Check whether the model and label files exist on disk."""
        return self.model_path(selector).exists() and self.labels_path(selector).exists()

    def preload_all(self) -> None:
        """Preload all configured models into cache.

        Models that fail to load are logged and skipped.
        """
        for selector in self.specs:
            if not self.is_loaded(selector):
                try:
                    self.get_session(selector)
                except ModelLoadError as e:
                    logger.warning(f"Could not preload {selector.value}: {e}")

    def clear_cache(self) -> None:
        """Clear all cached sessions and labels."""
        with self._lock:
            self._sessions.clear()
            self._model_info.clear()
            self._labels.clear()
            logger.info("Model cache cleared")

    def list_available(self) -> list[ModelSelector]:
        """List backends whose files are present in the models directory."""
        return [selector for selector in self.specs if self.is_available(selector)]
