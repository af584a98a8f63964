"""
Unit Tests for Classification Orchestration

This module tests session.py:
- Display text formatting
- ClassificationService: pre-processing, fallback policy, retry
- CaptureSession: model switching, error payloads, async serialization

All tests use stub classifiers; no model files are needed.

Author: Matthew Hong
"""

import asyncio
import logging
from pathlib import Path
from unittest.mock import MagicMock

import numpy as np
import pytest

from photo_classifier.errors import (
    EmptyClassificationResult,
    InferenceError,
    InvalidCropBounds,
    InvalidScaleFactor,
    ModelLoadError,
)
from photo_classifier.model.classifier import ClassifierSet, OnnxClassifier
from photo_classifier.model.registry import ModelInfo, ModelSpec
from photo_classifier.processing.image import RawImage
from photo_classifier.processing.pipeline import CropRect, ProcessingConfig
from photo_classifier.selector import ModelSelector
from photo_classifier.session import (
    ERROR_TEXT,
    CaptureSession,
    ClassificationService,
    DisplayPayload,
    format_confidence,
    format_display_text,
)

from tests.conftest import RED, TINY_MODEL_LABELS

RED_SQUARE_CONFIG = ProcessingConfig(crop=CropRect(1232, 1232, 224, 224), scale=1.0, contrast=1.0)


# =============================================================================
# Tests for Display Payload
# =============================================================================

class TestDisplayText:
    """Tests for the text shown under the captured photo."""

    def test_display_text(self) -> None:
        assert format_display_text("red-square", 0.97) == "This might be a red-square\nconf:0.97"

    @pytest.mark.parametrize(
        "confidence,expected",
        [
            (0.97, "0.97"),
            (0.812345, "0.8123"),
            (1.0, "1"),
            (0.0, "0"),
            (0.000123456, "0.0001235"),
            (0.000015, "0.000015"),
            (0.0000123456, "0.00001235"),
            (1e-9, "0.000000001"),
        ],
    )
    def test_format_confidence(self, confidence: float, expected: str) -> None:
        assert format_confidence(confidence) == expected

    def test_failure_payload(self) -> None:
        payload = DisplayPayload.failure()

        assert not payload.ok
        assert payload.text == ERROR_TEXT == "Error, could not classify"
        assert payload.label is None

    def test_success_payload(self) -> None:
        payload = DisplayPayload(label="tabby", confidence=0.5)

        assert payload.ok
        assert payload.text == "This might be a tabby\nconf:0.5"


class TestModelSelector:
    """Tests for segment index mapping."""

    def test_from_index(self) -> None:
        assert ModelSelector.from_index(0) is ModelSelector.GOOGLENET
        assert ModelSelector.from_index(1) is ModelSelector.SQUEEZENET
        assert ModelSelector.from_index(2) is ModelSelector.RESNET50

    def test_index_roundtrip(self) -> None:
        for selector in ModelSelector:
            assert ModelSelector.from_index(selector.index) is selector

    @pytest.mark.parametrize("index", [-1, 3])
    def test_unknown_index(self, index: int) -> None:
        with pytest.raises(ValueError, match="Unknown model index"):
            ModelSelector.from_index(index)


# =============================================================================
# Tests for ClassificationService
# =============================================================================

class TestClassificationService:
    """Tests for pre-process → classify with fallback."""

    def test_end_to_end_red_square(
        self, red_square_image: np.ndarray, stub_service: ClassificationService, stub_classifier
    ) -> None:
        """The centered crop reaches the classifier and yields the display text."""
        outcome = stub_service.classify(
            RawImage(red_square_image), ModelSelector.GOOGLENET, RED_SQUARE_CONFIG
        )

        assert outcome.payload.text == "This might be a red-square\nconf:0.97"
        assert not outcome.fallback_used
        assert outcome.preprocessing_error is None

        seen = stub_classifier.calls[0]
        assert seen.pixels.shape == (224, 224, 3)
        assert np.all(seen.pixels == np.array(RED, dtype=np.uint8))

    def test_fallback_on_invalid_scale(
        self, sample_image: np.ndarray, stub_service: ClassificationService, stub_classifier
    ) -> None:
        """A pre-processing failure classifies the unprocessed image instead."""
        image = RawImage(sample_image)

        outcome = stub_service.classify(image, ModelSelector.GOOGLENET, ProcessingConfig(scale=0.0))

        assert len(stub_classifier.calls) == 1
        seen = stub_classifier.calls[0]
        assert seen.is_passthrough
        np.testing.assert_array_equal(seen.pixels, image.pixels)
        assert outcome.fallback_used
        assert isinstance(outcome.preprocessing_error, InvalidScaleFactor)
        assert outcome.payload.ok

    def test_fallback_on_invalid_crop(
        self, sample_image_square: np.ndarray, stub_service: ClassificationService
    ) -> None:
        config = ProcessingConfig(crop=CropRect(300, 300, 224, 224))

        outcome = stub_service.classify(RawImage(sample_image_square), ModelSelector.SQUEEZENET, config)

        assert outcome.fallback_used
        assert isinstance(outcome.preprocessing_error, InvalidCropBounds)
        assert outcome.image.is_passthrough

    def test_no_config_skips_preprocessing(
        self, sample_image: np.ndarray, stub_service: ClassificationService
    ) -> None:
        outcome = stub_service.classify(RawImage(sample_image), ModelSelector.GOOGLENET, None)

        assert outcome.image.is_passthrough
        assert not outcome.fallback_used
        assert outcome.preprocessing_error is None

    def test_config_applied_on_every_call(
        self, sample_image: np.ndarray, stub_service: ClassificationService, stub_classifier
    ) -> None:
        """Pre-processing is decided per call, never remembered."""
        image = RawImage(sample_image)
        config = ProcessingConfig(crop=CropRect(0, 0, 224, 224))

        for _ in range(3):
            stub_service.classify(image, ModelSelector.GOOGLENET, config)

        assert [call.pixels.shape for call in stub_classifier.calls] == [(224, 224, 3)] * 3
        assert all(not call.is_passthrough for call in stub_classifier.calls)

    def test_retry_with_passthrough_on_inference_error(
        self, sample_image: np.ndarray, stub_factory
    ) -> None:
        """A failure on the processed image is retried once unprocessed."""
        stub = stub_factory(failures=1)
        service = ClassificationService(ClassifierSet(lambda model: stub))

        outcome = service.classify(RawImage(sample_image), ModelSelector.GOOGLENET, ProcessingConfig(scale=0.5))

        assert len(stub.calls) == 2
        assert not stub.calls[0].is_passthrough
        assert stub.calls[1].is_passthrough
        assert outcome.fallback_used
        assert outcome.preprocessing_error is None

    def test_inference_error_on_passthrough_raises(self, sample_image: np.ndarray, stub_factory) -> None:
        stub = stub_factory(failures=1)
        service = ClassificationService(ClassifierSet(lambda model: stub))

        with pytest.raises(InferenceError):
            service.classify(RawImage(sample_image), ModelSelector.GOOGLENET, None)

        assert len(stub.calls) == 1

    def test_inference_error_twice_raises(self, sample_image: np.ndarray, stub_factory) -> None:
        stub = stub_factory(failures=2)
        service = ClassificationService(ClassifierSet(lambda model: stub))

        with pytest.raises(InferenceError):
            service.classify(RawImage(sample_image), ModelSelector.GOOGLENET, ProcessingConfig(scale=0.5))

        assert len(stub.calls) == 2

    def test_empty_result_is_an_error(self, sample_image: np.ndarray, stub_factory) -> None:
        """Zero predictions never produce a payload."""
        stub = stub_factory(predictions=[])
        service = ClassificationService(ClassifierSet(lambda model: stub))

        with pytest.raises(EmptyClassificationResult):
            service.classify(RawImage(sample_image), ModelSelector.GOOGLENET, ProcessingConfig(scale=0.5))

    def test_model_load_error_propagates(self, sample_image: np.ndarray) -> None:
        def factory(model: ModelSelector):
            raise ModelLoadError("missing", model=model)

        service = ClassificationService(ClassifierSet(factory))

        with pytest.raises(ModelLoadError):
            service.classify(RawImage(sample_image), ModelSelector.RESNET50)

    def test_input_size_mismatch_warns(
        self, sample_image: np.ndarray, stub_service: ClassificationService, caplog
    ) -> None:
        caplog.set_level(logging.WARNING, logger="photo_classifier.session")

        stub_service.classify(RawImage(sample_image), ModelSelector.GOOGLENET, ProcessingConfig(scale=0.5))

        assert "expects 224x224" in caplog.text

    def test_uses_selected_model(self, sample_image: np.ndarray, per_model_service) -> None:
        outcome = per_model_service.classify(RawImage(sample_image), ModelSelector.SQUEEZENET)

        assert outcome.payload.label == "squeezenet-label"
        assert outcome.result.model is ModelSelector.SQUEEZENET

    def test_timing(self, sample_image: np.ndarray, stub_service: ClassificationService) -> None:
        outcome = stub_service.classify(RawImage(sample_image), ModelSelector.GOOGLENET)

        assert set(outcome.timing) == {"preprocess_ms", "classify_ms", "total_ms"}
        assert outcome.timing["total_ms"] >= outcome.timing["classify_ms"]


# =============================================================================
# Tests for CaptureSession
# =============================================================================

class TestCaptureSession:
    """Tests for the per-screen session state."""

    def test_capture(self, red_square_image: np.ndarray, stub_service: ClassificationService) -> None:
        session = CaptureSession(stub_service, config=RED_SQUARE_CONFIG)
        image = RawImage(red_square_image)

        payload = session.capture(image)

        assert payload.text == "This might be a red-square\nconf:0.97"
        assert session.last_image is image
        assert session.last_outcome.payload == payload

    def test_select_model_without_capture(self, per_model_service) -> None:
        session = CaptureSession(per_model_service)

        assert session.select_model(ModelSelector.RESNET50) is None
        assert session.model is ModelSelector.RESNET50

    def test_select_model_reclassifies(self, sample_image: np.ndarray, per_model_service) -> None:
        session = CaptureSession(per_model_service)
        session.capture(RawImage(sample_image))

        payload = session.select_model(ModelSelector.from_index(2))

        assert payload.text == "This might be a resnet50-label\nconf:0.5"

    def test_model_load_failure_shows_error(self, sample_image: np.ndarray, stub_factory) -> None:
        """A missing backend is reported and the session keeps working."""

        def factory(model: ModelSelector):
            if model is ModelSelector.RESNET50:
                raise ModelLoadError("resnet50.onnx not found", model=model)
            return stub_factory(model=model)

        session = CaptureSession(ClassificationService(ClassifierSet(factory)), model=ModelSelector.RESNET50)

        payload = session.capture(RawImage(sample_image))

        assert payload.text == ERROR_TEXT
        assert session.last_outcome is None

        recovered = session.select_model(ModelSelector.GOOGLENET)
        assert recovered.ok

    def test_inference_failure_shows_error(self, sample_image: np.ndarray, stub_factory) -> None:
        stub = stub_factory(failures=5)
        session = CaptureSession(ClassificationService(ClassifierSet(lambda model: stub)))

        assert session.capture(RawImage(sample_image)).text == ERROR_TEXT

    def test_non_finite_model_output_shows_error(self, sample_image: np.ndarray) -> None:
        """A NaN score from the runtime is shown as a failure, not raised."""
        session_mock = MagicMock()
        session_mock.run.return_value = [np.array([[np.nan, 1.0, 2.0]], dtype=np.float32)]
        info = ModelInfo(
            name="googlenet",
            path=Path("googlenet.onnx"),
            input_name="input",
            input_shape=(1, 3, 224, 224),
            input_dtype=np.dtype(np.float32),
            output_name="output",
            output_shape=(1, 3),
            num_labels=3,
        )
        spec = ModelSpec(
            selector=ModelSelector.GOOGLENET,
            display_name="GoogLeNet",
            file="googlenet.onnx",
            labels="googlenet.labels.txt",
        )
        classifier = OnnxClassifier(ModelSelector.GOOGLENET, session_mock, info, TINY_MODEL_LABELS, spec)
        session = CaptureSession(
            ClassificationService(ClassifierSet(lambda model: classifier)),
            config=ProcessingConfig(scale=0.5),
        )

        payload = session.capture(RawImage(sample_image))

        assert payload.text == ERROR_TEXT
        assert session.last_outcome is None
        assert session_mock.run.call_count == 2

    def test_preprocessing_failure_still_classifies(
        self, sample_image: np.ndarray, stub_service: ClassificationService
    ) -> None:
        session = CaptureSession(stub_service, config=ProcessingConfig(scale=-1.0))

        payload = session.capture(RawImage(sample_image))

        assert payload.ok
        assert session.last_outcome.fallback_used

    def test_async_requests(self, sample_image: np.ndarray, per_model_service) -> None:
        """Async capture and model switch are serialized on one session."""
        session = CaptureSession(per_model_service)
        image = RawImage(sample_image)

        async def scenario():
            return await asyncio.gather(
                session.capture_async(image),
                session.select_model_async(ModelSelector.SQUEEZENET),
            )

        captured, switched = asyncio.run(scenario())

        assert captured.label == "googlenet-label"
        assert switched.label == "squeezenet-label"
