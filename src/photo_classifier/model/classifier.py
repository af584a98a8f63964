"""Classifier adapters.

This module defines the polymorphic classifier interface and its ONNX
Runtime implementation, plus the cache that hands out one classifier per
backend.

    image ─▶ Classifier.classify ─▶ ClassificationResult (descending confidence)

Author: Matthew Hong
"""

import logging
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Iterator, Protocol, Sequence, Union

import cv2
import numpy as np

from photo_classifier.errors import EmptyClassificationResult, InferenceError
from photo_classifier.model.registry import ModelInfo, ModelRegistry, ModelSpec
from photo_classifier.processing.image import ProcessedImage, RawImage
from photo_classifier.processing.transforms import imagenet_normalize
from photo_classifier.selector import ModelSelector

logger = logging.getLogger(__name__)

ImageLike = Union[ProcessedImage, RawImage]


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True)
class Prediction:
    """A single label with its confidence in [0, 1]."""

    label: str
    confidence: float

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Confidence must be in [0, 1], got {self.confidence}")


@dataclass(frozen=True)
class ClassificationResult:
    """Ranked predictions from one classifier call.

    Predictions are stored in descending confidence order regardless of the
    order they were passed in.

    Attributes:
        model: Backend that produced the result
        predictions: Predictions, highest confidence first
    """

    model: ModelSelector
    predictions: tuple[Prediction, ...]

    def __post_init__(self) -> None:
        ranked = sorted(self.predictions, key=lambda p: p.confidence, reverse=True)
        object.__setattr__(self, "predictions", tuple(ranked))

    @classmethod
    def from_pairs(
        cls,
        model: ModelSelector,
        pairs: Sequence[tuple[str, float]],
    ) -> "ClassificationResult":
        """Build from (label, confidence) pairs.

        Example:
            >>> result = ClassificationResult.from_pairs(ModelSelector.RESNET50, [("cat", 0.9)])
            >>> result.top.label
            'cat'
        """
        return cls(
            model=model,
            predictions=tuple(Prediction(label, float(conf)) for label, conf in pairs),
        )

    @property
    def top(self) -> Prediction:
        """Highest-confidence prediction.

        Raises:
            EmptyClassificationResult: If there are no predictions
        """
        if not self.predictions:
            raise EmptyClassificationResult(
                f"Classifier {ModelSelector(self.model).value} returned no predictions",
                model=self.model,
            )
        return self.predictions[0]

    def above(self, threshold: float) -> list[Prediction]:
        """Predictions with confidence strictly above ``threshold``."""
        return [p for p in self.predictions if p.confidence > threshold]

    def __iter__(self) -> Iterator[Prediction]:
        return iter(self.predictions)

    def __len__(self) -> int:
        return len(self.predictions)


# =============================================================================
# Classifier Interface
# =============================================================================


class Classifier(Protocol):
    """Anything that maps an image to ranked label/confidence pairs.

    ``input_size`` is the (height, width) the backend consumes, or None when
    the backend accepts any size.
    """

    model: ModelSelector

    @property
    def input_size(self) -> tuple[int, int] | None: ...

    def classify(self, image: ImageLike) -> ClassificationResult: ...


def softmax(scores: np.ndarray) -> np.ndarray:
    """Numerically stable softmax over a 1-D score vector."""
    exp_scores = np.exp(scores - np.max(scores))
    return exp_scores / exp_scores.sum()


class OnnxClassifier:
    """Image classifier backed by an ONNX Runtime session.

    Input preparation mirrors the torchvision training transforms: resize to
    the model input (bilinear), scale to [0, 1], mean/std normalization,
    HWC → CHW, batch dimension.

    Attributes:
        model: Backend selector
        session: ONNX Runtime inference session
        info: Input/output metadata of the session
        labels: Class labels indexed by output position
        spec: Configured backend spec
        top_k: Number of predictions returned per call
    """

    def __init__(
        self,
        model: ModelSelector,
        session: "ort.InferenceSession",
        info: ModelInfo,
        labels: list[str],
        spec: ModelSpec,
        top_k: int = 5,
    ) -> None:
        self.model = model
        self.session = session
        self.info = info
        self.labels = labels
        self.spec = spec
        self.top_k = top_k

        self._mean = np.asarray(spec.mean, dtype=np.float32)
        self._std = np.asarray(spec.std, dtype=np.float32)

        if info.input_hw is not None and info.input_hw != (spec.input_size, spec.input_size):
            logger.warning(
                f"{model.value}: session input {info.input_hw} differs from configured "
                f"input_size {spec.input_size}; using the session shape"
            )

    @classmethod
    def from_registry(
        cls,
        registry: ModelRegistry,
        model: ModelSelector,
        top_k: int = 5,
    ) -> "OnnxClassifier":
        """Load (or reuse) the session for ``model`` and wrap it.

        Raises:
            ModelLoadError: If the backend cannot be loaded
        """
        session = registry.get_session(model)
        return cls(
            model=model,
            session=session,
            info=registry.get_model_info(model),
            labels=registry.get_labels(model),
            spec=registry.get_spec(model),
            top_k=top_k,
        )

    @property
    def input_size(self) -> tuple[int, int]:
        """(height, width) of the model input."""
        if self.info.input_hw is not None:
            return self.info.input_hw
        return (self.spec.input_size, self.spec.input_size)

    def prepare(self, pixels: np.ndarray) -> np.ndarray:
        """Convert an RGB(A) uint8 image to a [1, 3, H, W] float32 tensor."""
        rgb = pixels[..., :3]
        height, width = self.input_size

        if rgb.shape[:2] != (height, width):
            rgb = cv2.resize(rgb, (width, height), interpolation=cv2.INTER_LINEAR)

        normalized = imagenet_normalize(rgb, self._mean, self._std)
        batched = np.expand_dims(normalized.transpose(2, 0, 1), axis=0)

        return np.ascontiguousarray(batched, dtype=self.info.input_dtype)

    def classify(self, image: ImageLike) -> ClassificationResult:
        """Classify an image.

        Raises:
            InferenceError: If the runtime call fails or output does not
                match the label set
            EmptyClassificationResult: If the runtime returns no scores
        """
        tensor = self.prepare(image.pixels)

        try:
            outputs = self.session.run(None, {self.info.input_name: tensor})
        except Exception as e:
            raise InferenceError(
                f"Inference failed for {self.model.value}: {e}", model=self.model
            ) from e

        if not outputs:
            raise EmptyClassificationResult(
                f"{self.model.value} returned no outputs", model=self.model
            )

        scores = np.asarray(outputs[0], dtype=np.float32).reshape(-1)

        if scores.size == 0:
            raise EmptyClassificationResult(
                f"{self.model.value} returned an empty score vector", model=self.model
            )

        if scores.size != len(self.labels):
            raise InferenceError(
                f"{self.model.value} returned {scores.size} scores for "
                f"{len(self.labels)} labels",
                model=self.model,
            )

        if not np.all(np.isfinite(scores)):
            raise InferenceError(
                f"{self.model.value} returned non-finite scores", model=self.model
            )

        if self.spec.output == "logits":
            probs = softmax(scores)
        else:
            probs = np.clip(scores, 0.0, 1.0)

        top_indices = np.argsort(probs)[::-1][: self.top_k]

        return ClassificationResult(
            model=self.model,
            predictions=tuple(
                Prediction(self.labels[idx], float(np.clip(probs[idx], 0.0, 1.0)))
                for idx in top_indices
            ),
        )


# =============================================================================
# Classifier Cache
# =============================================================================


ClassifierFactory = Callable[[ModelSelector], Classifier]


class ClassifierSet:
    """Hands out one classifier per backend, constructed on first use.

    A failed construction is not cached, so a later request retries the load
    (for example after the model file has been added).

    Example:
        >>> classifiers = ClassifierSet.from_registry(registry)
        >>> classifiers.get(ModelSelector.SQUEEZENET).classify(image)
    """

    def __init__(self, factory: ClassifierFactory) -> None:
        self._factory = factory
        self._classifiers: dict[ModelSelector, Classifier] = {}
        self._lock = Lock()

    @classmethod
    def from_registry(cls, registry: ModelRegistry, top_k: int = 5) -> "ClassifierSet":
        return cls(lambda model: OnnxClassifier.from_registry(registry, model, top_k=top_k))

    def get(self, model: ModelSelector) -> Classifier:
        """Get the classifier for a backend.

        Raises:
            ModelLoadError: If the backend cannot be loaded
        """
        model = ModelSelector(model)
        with self._lock:
            if model not in self._classifiers:
                logger.info(f"Constructing classifier for {model.value}")
                self._classifiers[model] = self._factory(model)
            return self._classifiers[model]

    def is_loaded(self, model: ModelSelector) -> bool:
        return ModelSelector(model) in self._classifiers

    def loaded(self) -> list[ModelSelector]:
        return [model for model in ModelSelector if model in self._classifiers]

    def clear(self) -> None:
        with self._lock:
            self._classifiers.clear()
