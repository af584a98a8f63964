"""
ONNX Model Exporter

This module exports the three pretrained torchvision classifiers to ONNX so
they can be bundled as model assets, together with their label files.

Exports:
- GoogLeNet (ImageNet1K_V1)
- SqueezeNet 1.1 (ImageNet1K_V1)
- ResNet-50 (ImageNet1K_V2)

All models are exported with:
- Static input shapes (batch_size=1, 3x224x224)
- ONNX opset version 17
- SHA256 checksums for verification

torch, torchvision and onnx are only needed here; install the ``export``
extra to use this module.

Author: Matthew Hong
"""

import hashlib
import logging
from dataclasses import dataclass
from pathlib import Path

from photo_classifier.selector import ModelSelector

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

ONNX_OPSET_VERSION: int = 17
"""ONNX opset version used for every export."""

CLASSIFIER_INPUT_SIZE: int = 224
"""torchvision classifier input dimension (square)."""

TORCHVISION_MODELS: dict[ModelSelector, tuple[str, str, str]] = {
    ModelSelector.GOOGLENET: ("googlenet", "GoogLeNet_Weights", "IMAGENET1K_V1"),
    ModelSelector.SQUEEZENET: ("squeezenet1_1", "SqueezeNet1_1_Weights", "IMAGENET1K_V1"),
    ModelSelector.RESNET50: ("resnet50", "ResNet50_Weights", "IMAGENET1K_V2"),
}
"""Selector -> (torchvision builder, weights enum, weights member)."""


# =============================================================================
# Data Classes
# =============================================================================

@dataclass
class ExportResult:
    """
    Result container for model export operation.

    Attributes:
        model_path: Path to exported ONNX file
        labels_path: Path to the label file written next to it
        checksum: SHA256 checksum of exported file
        opset_version: ONNX opset version used
        input_shape: Model input tensor shape
        output_shape: Model output tensor shape
        file_size_mb: File size in megabytes
    """

    model_path: Path
    labels_path: Path
    checksum: str
    opset_version: int
    input_shape: tuple
    output_shape: tuple
    file_size_mb: float


# =============================================================================
# Checksum Utilities
# =============================================================================

def compute_checksum(file_path: Path) -> str:
    """
    Compute SHA256 checksum of a file.

    Args:
        file_path: Path to file

    Returns:
        Hex-encoded SHA256 checksum string
    """
    sha256_hash = hashlib.sha256()

    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            sha256_hash.update(chunk)

    return sha256_hash.hexdigest()


# =============================================================================
# ONNX Verification
# =============================================================================

def _shape_of(value_info) -> tuple:
    shape = []
    for dim in value_info.type.tensor_type.shape.dim:
        if dim.dim_value:
            shape.append(dim.dim_value)
        elif dim.dim_param:
            shape.append(dim.dim_param)  # Dynamic dimension
        else:
            shape.append(-1)
    return tuple(shape)


def verify_onnx_model(model_path: Path) -> dict:
    """
    Verify an ONNX model is valid and loadable.

    Checks:
    - File exists and is readable
    - Valid ONNX format (passes onnx.checker)
    - Can be loaded by ONNX Runtime

    Args:
        model_path: Path to ONNX model file

    Returns:
        Dictionary with verification results:
        - valid: bool
        - opset_version: int
        - input_shapes: list of input shapes
        - output_shapes: list of output shapes
        - error: Optional error message
    """
    result = {
        "valid": False,
        "opset_version": None,
        "input_shapes": [],
        "output_shapes": [],
        "error": None,
    }

    model_path = Path(model_path)
    if not model_path.exists():
        result["error"] = f"File not found: {model_path}"
        return result

    import onnx
    import onnxruntime as ort
    from onnx import checker

    try:
        model = onnx.load(str(model_path))
        checker.check_model(model)

        result["opset_version"] = model.opset_import[0].version
        result["input_shapes"] = [_shape_of(inp) for inp in model.graph.input]
        result["output_shapes"] = [_shape_of(out) for out in model.graph.output]

        ort.InferenceSession(str(model_path), providers=["CPUExecutionProvider"])

        result["valid"] = True

    except Exception as e:
        # Verification reports failures instead of raising
        result["error"] = str(e)

    return result


# =============================================================================
# torchvision Export
# =============================================================================

def export_classifier(
    model: ModelSelector,
    output_path: Path,
    labels_path: Path | None = None,
    opset_version: int = ONNX_OPSET_VERSION,
    input_size: int = CLASSIFIER_INPUT_SIZE,
    force: bool = False,
) -> ExportResult:
    """
    Export a pretrained torchvision classifier to ONNX.

    The class names from the weights metadata are written to ``labels_path``
    (default: ``<name>.labels.txt`` next to the model), one per line.

    Args:
        model: Backend to export
        output_path: Path to save ONNX file
        labels_path: Path to save the label file
        opset_version: ONNX opset version (default: 17)
        input_size: Input dimension (default: 224)
        force: Overwrite existing file if True

    Returns:
        ExportResult with export details

    Raises:
        FileExistsError: If output_path exists and force=False
        ImportError: If torch or torchvision not installed
        RuntimeError: If export verification fails

    Example:
        >>> result = export_classifier(ModelSelector.RESNET50, Path("models/resnet50.onnx"))
        >>> result.output_shape
        (1, 1000)
    """
    model = ModelSelector(model)
    output_path = Path(output_path)
    labels_path = Path(labels_path) if labels_path else output_path.with_suffix(".labels.txt")

    if output_path.exists() and not force:
        raise FileExistsError(
            f"Model already exists: {output_path}. Use force=True to overwrite."
        )

    output_path.parent.mkdir(parents=True, exist_ok=True)

    builder_name, weights_enum, weights_member = TORCHVISION_MODELS[model]

    logger.info(f"Exporting {model.value} to {output_path}")
    logger.info(f"  Opset version: {opset_version}")
    logger.info(f"  Input size: {input_size}x{input_size}")

    import torch
    import torchvision.models as models

    weights = getattr(getattr(models, weights_enum), weights_member)
    logger.info(f"  Loading pretrained weights ({weights_member})...")
    network = getattr(models, builder_name)(weights=weights)
    network.eval()

    dummy_input = torch.randn(1, 3, input_size, input_size)

    logger.info("  Exporting to ONNX...")
    torch.onnx.export(
        network,
        dummy_input,
        str(output_path),
        opset_version=opset_version,
        input_names=["input"],
        output_names=["output"],
        dynamic_axes=None,
    )

    categories = weights.meta["categories"]
    labels_path.write_text("\n".join(categories) + "\n", encoding="utf-8")
    logger.info(f"  Wrote {len(categories)} labels to {labels_path}")

    verification = verify_onnx_model(output_path)
    if not verification["valid"]:
        raise RuntimeError(f"Export verification failed: {verification['error']}")

    checksum = compute_checksum(output_path)
    file_size_mb = output_path.stat().st_size / (1024 * 1024)

    input_shape = verification["input_shapes"][0] if verification["input_shapes"] else ()
    output_shape = verification["output_shapes"][0] if verification["output_shapes"] else ()

    logger.info("  Export successful")
    logger.info(f"  File size: {file_size_mb:.2f} MB")
    logger.info(f"  Checksum: {checksum[:16]}...")

    return ExportResult(
        model_path=output_path,
        labels_path=labels_path,
        checksum=checksum,
        opset_version=verification["opset_version"],
        input_shape=input_shape,
        output_shape=output_shape,
        file_size_mb=file_size_mb,
    )


def describe_existing(model_path: Path, labels_path: Path) -> ExportResult | None:
    """
    Build an ExportResult for an already exported model, or None if the file
    does not verify.
    """
    verification = verify_onnx_model(model_path)
    if not verification["valid"]:
        logger.warning(f"Existing model {model_path} is invalid: {verification['error']}")
        return None

    return ExportResult(
        model_path=model_path,
        labels_path=labels_path,
        checksum=compute_checksum(model_path),
        opset_version=verification["opset_version"],
        input_shape=verification["input_shapes"][0],
        output_shape=verification["output_shapes"][0],
        file_size_mb=model_path.stat().st_size / (1024 * 1024),
    )


# =============================================================================
# Batch Export
# =============================================================================

def export_all_models(
    output_dir: Path,
    force: bool = False,
    models: list[ModelSelector] | None = None,
) -> dict[ModelSelector, ExportResult]:
    """
    Export every classifier backend (or the given subset).

    Existing files are kept unless ``force`` is set.

    Args:
        output_dir: Directory to save ONNX and label files
        force: Overwrite existing files if True
        models: Backends to export (default: all)

    Returns:
        Dictionary mapping selector to ExportResult
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    results = {}

    for model in models or list(ModelSelector):
        model_path = output_dir / f"{model.value}.onnx"
        labels_path = output_dir / f"{model.value}.labels.txt"

        try:
            results[model] = export_classifier(
                model, model_path, labels_path=labels_path, force=force
            )
        except FileExistsError:
            logger.info(f"{model.value} already exists, skipping (use force=True to overwrite)")
            existing = describe_existing(model_path, labels_path)
            if existing is not None:
                results[model] = existing

    return results
