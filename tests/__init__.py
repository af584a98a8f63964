"""
Photo Classifier - Test Suite

Test modules are organized by layer:
- tests/unit/: Pipeline, classifier, session, configuration and shell tests
"""
