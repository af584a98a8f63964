#!/usr/bin/env python3
"""
Export Models Script - Export GoogLeNet, SqueezeNet and ResNet-50 to ONNX.

This script is a thin CLI wrapper around photo_classifier.model.exporter.
It is idempotent: existing models are skipped unless --force is used.
Each model is written with its label file (<name>.labels.txt).

Usage:
    python scripts/export_models.py                    # Export all models
    python scripts/export_models.py --force            # Re-export even if exists
    python scripts/export_models.py --model resnet50   # Export only ResNet-50
    python scripts/export_models.py --verify           # Verify existing models

Author: Matthew Hong
"""

import argparse
import logging
import sys
from pathlib import Path

from photo_classifier.model.exporter import (
    ONNX_OPSET_VERSION,
    ExportResult,
    compute_checksum,
    export_all_models,
    verify_onnx_model,
)
from photo_classifier.model.registry import load_labels
from photo_classifier.selector import ModelSelector


# =============================================================================
# Configuration
# =============================================================================

PROJECT_ROOT = Path(__file__).parent.parent
MODELS_DIR = PROJECT_ROOT / "models"

logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",
)
logger = logging.getLogger(__name__)


# =============================================================================
# CLI Functions
# =============================================================================

def print_header(models_dir: Path) -> None:
    """Print script header."""
    print()
    print("=" * 60)
    print("Photo Classifier - Model Export")
    print("=" * 60)
    print(f"  Output directory: {models_dir}")
    print(f"  ONNX opset: {ONNX_OPSET_VERSION}")
    print()


def print_result(name: str, result: ExportResult) -> None:
    """Print export result summary."""
    print(f"\n  {name}:")
    print(f"    Path: {result.model_path}")
    print(f"    Labels: {result.labels_path}")
    print(f"    Size: {result.file_size_mb:.2f} MB")
    print(f"    Input: {result.input_shape}")
    print(f"    Output: {result.output_shape}")
    print(f"    Checksum: {result.checksum[:16]}...")


def verify_existing_models(models_dir: Path, models: list[ModelSelector]) -> bool:
    """Verify existing models and their label files."""
    print("\nVerifying existing models...")

    all_valid = True

    for model in models:
        model_path = models_dir / f"{model.value}.onnx"
        labels_path = models_dir / f"{model.value}.labels.txt"

        if not model_path.exists():
            print(f"  ✗ {model.value}: Not found")
            all_valid = False
            continue

        result = verify_onnx_model(model_path)

        if not result["valid"]:
            print(f"  {model.value}: Invalid - {result['error']}")
            all_valid = False
            continue

        try:
            num_labels = len(load_labels(labels_path))
        except (OSError, ValueError) as e:
            print(f"  {model.value}: Labels invalid - {e}")
            all_valid = False
            continue

        checksum = compute_checksum(model_path)
        size_mb = model_path.stat().st_size / (1024 * 1024)
        print(f"  {model.value}: Valid (opset {result['opset_version']}, {size_mb:.2f} MB)")
        print(f"      Input: {result['input_shapes']}")
        print(f"      Labels: {num_labels}")
        print(f"      Checksum: {checksum[:16]}...")

    return all_valid


def export_models(models_dir: Path, models: list[ModelSelector], force: bool = False) -> bool:
    """
    Export models to ONNX format.

    Args:
        models_dir: Output directory
        models: Backends to export
        force: Overwrite existing files

    Returns:
        True if all exports successful
    """
    try:
        results = export_all_models(models_dir, force=force, models=models)
    except ImportError as e:
        print(f"Missing dependency: {e}")
        print("    Install with: pip install 'photo-classifier[export]'")
        return False
    except (OSError, RuntimeError) as e:
        print(f"Export failed: {e}")
        return False

    success = len(results) == len(models)
    for model in models:
        if model not in results:
            print(f"  ✗ {model.value}: Existing file is invalid (use --force to re-export)")

    if results:
        print("\n" + "-" * 60)
        print("Export Summary:")
        for model, result in results.items():
            print_result(model.value, result)

        checksums_path = models_dir / "checksums.txt"
        with open(checksums_path, "w") as f:
            f.write("# Model checksums for reproducibility\n")
            f.write(f"# ONNX opset version: {ONNX_OPSET_VERSION}\n\n")
            for result in results.values():
                f.write(f"{result.model_path.name}: sha256:{result.checksum}\n")
        print(f"\n  Checksums saved to: {checksums_path}")

    return success


# =============================================================================
# Main
# =============================================================================

def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Export GoogLeNet, SqueezeNet and ResNet-50 to ONNX format",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/export_models.py                   # Export all models
  python scripts/export_models.py --force           # Re-export even if exists
  python scripts/export_models.py --verify          # Verify existing models only
  python scripts/export_models.py --model googlenet # Export only GoogLeNet
        """,
    )

    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite existing model files",
    )
    parser.add_argument(
        "--verify",
        action="store_true",
        help="Verify existing models without exporting",
    )
    parser.add_argument(
        "--model",
        action="append",
        choices=[selector.value for selector in ModelSelector],
        default=None,
        help="Export only this model (repeatable)",
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=MODELS_DIR,
        help=f"Output directory (default: {MODELS_DIR})",
    )

    args = parser.parse_args()

    models = [ModelSelector(name) for name in args.model] if args.model else list(ModelSelector)

    print_header(args.output_dir)

    if args.verify:
        success = verify_existing_models(args.output_dir, models)
    else:
        success = export_models(args.output_dir, models, force=args.force)

    print()
    print("=" * 60)
    if success:
        print("Complete")
    else:
        print("Operations failed")
    print("=" * 60)
    print()

    return 0 if success else 1


if __name__ == "__main__":
    sys.exit(main())
