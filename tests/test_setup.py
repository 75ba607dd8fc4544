"""Test that the project setup is working correctly."""

import token_snapshot_pipeline


def test_version() -> None:
    """Test that version is defined."""
    assert token_snapshot_pipeline.__version__ == "0.1.0"


def test_import_modules() -> None:
    """Test that all submodules can be imported."""
    from token_snapshot_pipeline import collector, features, ingestor, monitoring, sampling, storage, training

    # Just verify imports work
    assert collector is not None
    assert features is not None
    assert ingestor is not None
    assert monitoring is not None
    assert sampling is not None
    assert storage is not None
    assert training is not None
