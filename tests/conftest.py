"""
Pytest Fixtures - Shared Test Fixtures for the Photo Classifier

This module provides reusable fixtures for all test modules.

Fixtures:
    sample_image: Sample RGB image (480x640) for testing
    sample_image_rgba: Sample RGBA image (120x160) for testing
    sample_image_square: Sample RGB image (224x224) for testing
    marker_image: Black image with one marker pixel at (50, 50)
    red_square_image: 2688x2688 gray image with a red 224x224 center square
    stub_classifier: Classifier stand-in returning fixed predictions
    stub_service: ClassificationService backed by stub_classifier
    tiny_onnx_model: Models directory with a 3-class ONNX model for every backend

Author: Matthew Hong
"""

from pathlib import Path

import numpy as np
import pytest

from photo_classifier.errors import InferenceError
from photo_classifier.model.classifier import ClassificationResult, ClassifierSet
from photo_classifier.selector import ModelSelector
from photo_classifier.session import ClassificationService


RED = (255, 0, 0)
MARKER = (255, 128, 7)
TINY_MODEL_LABELS = ["red", "green", "blue"]


# =============================================================================
# Image Fixtures
# =============================================================================

@pytest.fixture
def sample_image() -> np.ndarray:
    """
    Sample RGB image for testing.

    Returns:
        RGB uint8 array with shape [480, 640, 3]
    """
    rng = np.random.default_rng(42)
    return rng.integers(0, 256, (480, 640, 3), dtype=np.uint8)


@pytest.fixture
def sample_image_rgba() -> np.ndarray:
    """
    Sample RGBA image with a random alpha channel.

    Returns:
        RGBA uint8 array with shape [120, 160, 4]
    """
    rng = np.random.default_rng(43)
    return rng.integers(0, 256, (120, 160, 4), dtype=np.uint8)


@pytest.fixture
def sample_image_square() -> np.ndarray:
    """
    Sample square RGB image at classifier input size.

    Returns:
        RGB uint8 array with shape [224, 224, 3]
    """
    rng = np.random.default_rng(44)
    return rng.integers(0, 256, (224, 224, 3), dtype=np.uint8)


@pytest.fixture
def marker_image() -> np.ndarray:
    """
    Black 200x200 image with a single marker pixel at (x=50, y=50).

    Returns:
        RGB uint8 array with shape [200, 200, 3]
    """
    image = np.zeros((200, 200, 3), dtype=np.uint8)
    image[50, 50] = MARKER
    return image


@pytest.fixture
def red_square_image() -> np.ndarray:
    """
    2688x2688 noisy gray image with a solid red 224x224 square at its center.

    The square spans pixels 1232..1455 on both axes.

    Returns:
        RGB uint8 array with shape [2688, 2688, 3]
    """
    rng = np.random.default_rng(45)
    image = rng.integers(64, 192, (2688, 2688, 3), dtype=np.uint8)
    image[1232:1456, 1232:1456] = RED
    return image


# =============================================================================
# Classifier Fixtures
# =============================================================================

class StubClassifier:
    """
    Classifier stand-in that records its inputs.

    Raises InferenceError for the first ``failures`` calls, then returns the
    configured predictions.
    """

    def __init__(
        self,
        model: ModelSelector = ModelSelector.GOOGLENET,
        predictions=(("red-square", 0.97),),
        input_size: tuple[int, int] | None = (224, 224),
        failures: int = 0,
    ) -> None:
        self.model = model
        self.predictions = list(predictions)
        self._input_size = input_size
        self.failures = failures
        self.calls = []

    @property
    def input_size(self) -> tuple[int, int] | None:
        return self._input_size

    def classify(self, image) -> ClassificationResult:
        self.calls.append(image)

        if self.failures > 0:
            self.failures -= 1
            raise InferenceError("stub inference failure", model=self.model)

        return ClassificationResult.from_pairs(self.model, self.predictions)


@pytest.fixture
def stub_factory() -> type[StubClassifier]:
    """The StubClassifier class, for tests that need custom stubs."""
    return StubClassifier


@pytest.fixture
def stub_classifier() -> StubClassifier:
    """Stub returning [("red-square", 0.97)]."""
    return StubClassifier()


@pytest.fixture
def stub_service(stub_classifier: StubClassifier) -> ClassificationService:
    """Service that hands out ``stub_classifier`` for every backend."""
    return ClassificationService(ClassifierSet(lambda model: stub_classifier))


@pytest.fixture
def per_model_service() -> ClassificationService:
    """Service with one stub per backend, each naming its backend in the label."""
    return ClassificationService(
        ClassifierSet(
            lambda model: StubClassifier(model=model, predictions=[(f"{model.value}-label", 0.5)])
        )
    )


# =============================================================================
# ONNX Fixtures
# =============================================================================

def write_tiny_model(model_path: Path) -> None:
    """
    Write a classifier-shaped ONNX model without requiring torch.

    Input [1, 3, 224, 224], output [1, 3]: the per-channel spatial mean, so a
    red image scores highest on class 0. IR version 9 keeps it loadable by
    older onnxruntime releases.
    """
    onnx = pytest.importorskip("onnx")
    from onnx import TensorProto, helper

    X = helper.make_tensor_value_info("input", TensorProto.FLOAT, [1, 3, 224, 224])
    Y = helper.make_tensor_value_info("output", TensorProto.FLOAT, [1, 3])

    nodes = [
        helper.make_node("ReduceMean", ["input"], ["means"], axes=[2, 3], keepdims=0),
        helper.make_node("Identity", ["means"], ["output"]),
    ]

    graph = helper.make_graph(nodes, "tiny_classifier", [X], [Y])
    model = helper.make_model(graph, opset_imports=[helper.make_opsetid("", 17)])
    model.ir_version = 9

    onnx.save(model, str(model_path))


@pytest.fixture
def tiny_onnx_model(tmp_path: Path) -> Path:
    """
    Models directory holding the tiny 3-class model and its labels under
    every backend's configured file names.

    Returns:
        Path to the models directory
    """
    pytest.importorskip("onnxruntime")

    for selector in ModelSelector:
        write_tiny_model(tmp_path / f"{selector.value}.onnx")
        (tmp_path / f"{selector.value}.labels.txt").write_text(
            "\n".join(TINY_MODEL_LABELS) + "\n", encoding="utf-8"
        )

    return tmp_path

