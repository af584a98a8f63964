"""
Command-line capture shell.

Classifies one photo the way the capture screen does: pre-process with the
requested (or configured) values, classify with the selected backend, print
the display text.

Usage:
    photo-classifier photo.jpg
    photo-classifier photo.jpg --model resnet50
    photo-classifier photo.jpg --crop 1232 1232 224 224 --contrast 1.2
    photo-classifier photo.jpg --center-crop 2240 --save-processed out.png
    photo-classifier photo.jpg --no-preprocess --json

Exit codes:
    0: Classified
    1: Could not classify (model or inference failure)
    2: Usage error or unreadable image

Author: Matthew Hong
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from photo_classifier.config import (
    get_default_model,
    get_model_config,
    get_processing_defaults,
)
from photo_classifier.logger import setup_logging
from photo_classifier.processing.image import RawImage
from photo_classifier.processing.pipeline import CropRect, ProcessingConfig
from photo_classifier.selector import ModelSelector
from photo_classifier.session import (
    CaptureSession,
    ClassificationOutcome,
    ClassificationService,
    DisplayPayload,
    build_service,
)
from photo_classifier.settings import get_settings

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_CLASSIFICATION_FAILED = 1
EXIT_USAGE = 2


# =============================================================================
# Argument Parsing
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="photo-classifier",
        description="Pre-process a photo and classify it with a pretrained model",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  photo-classifier photo.jpg                          # Configured defaults
  photo-classifier photo.jpg --model squeezenet       # Pick a backend
  photo-classifier photo.jpg --crop 0 0 500 500 --scale 0.448
  photo-classifier photo.jpg --center-crop 2240       # Centered crop to model input
        """,
    )

    parser.add_argument("image", type=Path, help="Image file (JPEG, PNG, ...)")
    parser.add_argument(
        "--model",
        choices=[selector.value for selector in ModelSelector],
        default=None,
        help="Classifier backend (default: classification.default_model)",
    )
    parser.add_argument(
        "--crop",
        nargs=4,
        type=int,
        metavar=("X", "Y", "W", "H"),
        default=None,
        help="Crop rectangle in pixels",
    )
    parser.add_argument("--scale", type=float, default=None, help="Resample factor")
    parser.add_argument("--contrast", type=float, default=None, help="Contrast multiplier")
    parser.add_argument(
        "--center-crop",
        type=int,
        default=None,
        metavar="N",
        help="Centered NxN crop scaled to the model input size",
    )
    parser.add_argument(
        "--no-preprocess",
        action="store_true",
        help="Classify the image as loaded",
    )
    parser.add_argument(
        "--save-processed",
        type=Path,
        default=None,
        metavar="PATH",
        help="Write the image the classifier saw",
    )
    parser.add_argument("--json", action="store_true", help="Print the result as JSON")
    parser.add_argument(
        "--models-dir",
        type=Path,
        default=None,
        help="Directory with ONNX models and labels (default: MODELS_DIR)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: LOG_LEVEL)",
    )

    return parser


def build_processing_config(
    args: argparse.Namespace,
    image: RawImage,
    model: ModelSelector,
) -> ProcessingConfig | None:
    """
    Pre-processing for this run, or None to classify the image as loaded.

    --center-crop wins over the configured defaults; --crop, --scale and
    --contrast override individual default values. Conflicting flags are
    rejected by main() before this runs.
    """
    if args.no_preprocess:
        return None

    if args.center_crop is not None:
        target = int(get_model_config(model.value).get("input_size", 224))
        return ProcessingConfig.center_crop(
            image.width,
            image.height,
            crop_size=args.center_crop,
            target_size=target,
            contrast=args.contrast if args.contrast is not None else 1.0,
        )

    defaults = get_processing_defaults()
    if args.crop is None and args.scale is None and args.contrast is None:
        return defaults

    return (defaults or ProcessingConfig()).with_overrides(
        crop=CropRect.from_sequence(args.crop) if args.crop is not None else None,
        scale=args.scale,
        contrast=args.contrast,
    )


# =============================================================================
# Output
# =============================================================================

def render_json(
    model: ModelSelector,
    payload: DisplayPayload,
    outcome: ClassificationOutcome | None,
) -> str:
    data = {
        "model": model.value,
        "ok": payload.ok,
        "text": payload.text,
        "label": payload.label,
        "confidence": payload.confidence,
    }

    if outcome is not None:
        data["fallback_used"] = outcome.fallback_used
        data["preprocessing_error"] = (
            str(outcome.preprocessing_error) if outcome.preprocessing_error else None
        )
        data["processed_size"] = [outcome.image.width, outcome.image.height]
        data["predictions"] = [
            {"label": p.label, "confidence": p.confidence} for p in outcome.result
        ]
        data["timing"] = outcome.timing

    return json.dumps(data, indent=2)


# =============================================================================
# Main
# =============================================================================

def main(argv: list[str] | None = None, service: ClassificationService | None = None) -> int:
    """
    Entry point for the photo-classifier console script.

    Args:
        argv: Arguments (default: sys.argv[1:])
        service: Classification service to use (default: built from settings)

    Returns:
        Process exit code
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.center_crop is not None:
        if args.crop is not None:
            parser.error("--center-crop and --crop are mutually exclusive")
        if args.scale is not None:
            parser.error("--center-crop computes the scale; --scale cannot be combined with it")

    if args.no_preprocess:
        given = [
            flag
            for flag, value in [
                ("--crop", args.crop),
                ("--scale", args.scale),
                ("--contrast", args.contrast),
                ("--center-crop", args.center_crop),
            ]
            if value is not None
        ]
        if given:
            parser.error(f"--no-preprocess cannot be combined with {', '.join(given)}")

    settings = get_settings()
    if args.models_dir is not None:
        settings = settings.model_copy(update={"MODELS_DIR": str(args.models_dir)})

    setup_logging(args.log_level or settings.LOG_LEVEL, json_format=False, stream=sys.stderr)

    try:
        image = RawImage.from_file(args.image)
    except ValueError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_USAGE

    if args.model is not None:
        model = ModelSelector(args.model)
    elif settings.DEFAULT_MODEL:
        model = ModelSelector(settings.DEFAULT_MODEL)
    else:
        model = get_default_model()

    try:
        config = build_processing_config(args, image, model)
    except (KeyError, ValueError) as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_USAGE

    if service is None:
        service, _ = build_service(settings)

    session = CaptureSession(service, model=model, config=config)
    payload = session.capture(image)
    outcome = session.last_outcome

    if args.save_processed is not None and outcome is not None:
        try:
            outcome.image.save(args.save_processed)
            logger.info(f"Saved processed image to {args.save_processed}")
        except ValueError as e:
            logger.error(f"Could not save processed image: {e}")

    if args.json:
        print(render_json(model, payload, outcome))
    else:
        print(payload.text)

    return EXIT_OK if payload.ok else EXIT_CLASSIFICATION_FAILED


if __name__ == "__main__":
    sys.exit(main())
