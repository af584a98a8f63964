"""
Unit Tests for the Command-Line Shell

Runs cli.main() in-process with stub-backed services.

Author: Matthew Hong
"""

import json
import logging
from pathlib import Path

import cv2
import numpy as np
import pytest

from photo_classifier.cli import (
    EXIT_CLASSIFICATION_FAILED,
    EXIT_OK,
    EXIT_USAGE,
    build_parser,
    main,
)
from photo_classifier.model.classifier import ClassifierSet
from photo_classifier.session import ERROR_TEXT, ClassificationService
from photo_classifier.settings import get_settings


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture(autouse=True)
def isolate_environment(monkeypatch):
    """Fresh settings per test and root logging restored afterwards."""
    for name in ["LOG_LEVEL", "DEFAULT_MODEL", "MODELS_DIR"]:
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()

    root_logger = logging.getLogger()
    handlers, level = list(root_logger.handlers), root_logger.level
    yield
    root_logger.handlers[:] = handlers
    root_logger.setLevel(level)
    get_settings.cache_clear()


@pytest.fixture
def photo_path(tmp_path: Path, sample_image: np.ndarray) -> Path:
    path = tmp_path / "photo.png"
    cv2.imwrite(str(path), cv2.cvtColor(sample_image, cv2.COLOR_RGB2BGR))
    return path


# =============================================================================
# Tests
# =============================================================================

class TestParser:
    """Tests for argument parsing."""

    def test_defaults(self) -> None:
        args = build_parser().parse_args(["photo.jpg"])

        assert args.image == Path("photo.jpg")
        assert args.model is None
        assert args.crop is None
        assert not args.no_preprocess

    def test_crop_values(self) -> None:
        args = build_parser().parse_args(["photo.jpg", "--crop", "1", "2", "3", "4"])

        assert args.crop == [1, 2, 3, 4]

    def test_unknown_model(self) -> None:
        with pytest.raises(SystemExit) as exc_info:
            build_parser().parse_args(["photo.jpg", "--model", "alexnet"])

        assert exc_info.value.code == EXIT_USAGE


class TestMain:
    """Tests for the full capture run."""

    def test_prints_display_text(self, photo_path: Path, stub_service: ClassificationService, capsys) -> None:
        code = main([str(photo_path)], service=stub_service)

        assert code == EXIT_OK
        assert capsys.readouterr().out == "This might be a red-square\nconf:0.97\n"

    def test_json_output(self, photo_path: Path, stub_service: ClassificationService, capsys) -> None:
        code = main([str(photo_path), "--scale", "0.5", "--json"], service=stub_service)

        data = json.loads(capsys.readouterr().out)
        assert code == EXIT_OK
        assert data["ok"] is True
        assert data["model"] == "googlenet"
        assert data["label"] == "red-square"
        assert data["processed_size"] == [320, 240]
        assert data["fallback_used"] is False

    def test_selected_model(self, photo_path: Path, per_model_service, capsys) -> None:
        main([str(photo_path), "--model", "squeezenet"], service=per_model_service)

        assert "squeezenet-label" in capsys.readouterr().out

    def test_crop_override(self, photo_path: Path, stub_service: ClassificationService, stub_classifier) -> None:
        main([str(photo_path), "--crop", "10", "20", "100", "50"], service=stub_service)

        assert stub_classifier.calls[0].pixels.shape == (50, 100, 3)

    def test_center_crop(self, photo_path: Path, stub_service: ClassificationService, stub_classifier) -> None:
        """Centered 480x480 crop scaled to the 224 model input."""
        main([str(photo_path), "--center-crop", "480"], service=stub_service)

        assert stub_classifier.calls[0].pixels.shape == (224, 224, 3)

    def test_center_crop_with_crop_rejected(self, photo_path: Path, stub_service: ClassificationService) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main([str(photo_path), "--center-crop", "100", "--crop", "0", "0", "10", "10"], service=stub_service)

        assert exc_info.value.code == EXIT_USAGE

    def test_no_preprocess(self, photo_path: Path, stub_service: ClassificationService, stub_classifier) -> None:
        main([str(photo_path), "--no-preprocess"], service=stub_service)

        assert stub_classifier.calls[0].is_passthrough

    @pytest.mark.parametrize(
        "flags",
        [
            ["--no-preprocess", "--scale", "0.5"],
            ["--no-preprocess", "--contrast", "1.2"],
            ["--no-preprocess", "--crop", "0", "0", "10", "10"],
            ["--no-preprocess", "--center-crop", "100"],
            ["--center-crop", "100", "--scale", "0.5"],
        ],
    )
    def test_conflicting_flags_rejected(
        self, photo_path: Path, stub_service: ClassificationService, stub_classifier, flags: list, capsys
    ) -> None:
        """Flags that would be silently ignored are usage errors."""
        with pytest.raises(SystemExit) as exc_info:
            main([str(photo_path), *flags], service=stub_service)

        assert exc_info.value.code == EXIT_USAGE
        assert "cannot be combined" in capsys.readouterr().err
        assert stub_classifier.calls == []

    def test_center_crop_with_contrast(
        self, photo_path: Path, stub_service: ClassificationService, stub_classifier
    ) -> None:
        main([str(photo_path), "--center-crop", "480", "--contrast", "1.5"], service=stub_service)

        assert stub_classifier.calls[0].config.contrast == 1.5

    def test_invalid_scale_still_classifies(
        self, photo_path: Path, stub_service: ClassificationService, capsys
    ) -> None:
        code = main([str(photo_path), "--scale", "0", "--json"], service=stub_service)

        data = json.loads(capsys.readouterr().out)
        assert code == EXIT_OK
        assert data["fallback_used"] is True
        assert data["processed_size"] == [640, 480]

    def test_missing_image(self, tmp_path: Path, stub_service: ClassificationService, capsys) -> None:
        code = main([str(tmp_path / "missing.jpg")], service=stub_service)

        assert code == EXIT_USAGE
        assert "error:" in capsys.readouterr().err

    def test_classification_failure(self, photo_path: Path, stub_factory, capsys) -> None:
        stub = stub_factory(failures=5)
        service = ClassificationService(ClassifierSet(lambda model: stub))

        code = main([str(photo_path)], service=service)

        assert code == EXIT_CLASSIFICATION_FAILED
        assert capsys.readouterr().out.strip() == ERROR_TEXT

    def test_save_processed(self, photo_path: Path, tmp_path: Path, stub_service: ClassificationService) -> None:
        output = tmp_path / "processed.png"

        main([str(photo_path), "--scale", "0.25", "--save-processed", str(output)], service=stub_service)

        saved = cv2.imread(str(output))
        assert saved is not None
        assert saved.shape[:2] == (120, 160)
