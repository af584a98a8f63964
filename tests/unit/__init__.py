"""
Unit Tests

- test_processing.py: Image containers and low-level transforms
- test_pipeline.py: Pre-processing pipeline and its testable properties
- test_model.py: ONNX registry, classifier adapter and exporter
- test_session.py: Classification service, fallback policy, capture session
- test_config.py: classifier.yaml access and settings
- test_api.py: FastAPI shell
- test_cli.py: Command-line shell
"""
