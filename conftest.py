"""Global pytest configuration and fixtures."""

import os
import sys

import pytest

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "src"))

from s3_objstore.client import ClientFactory


def pytest_addoption(parser):
    """Add custom command-line options."""
    parser.addoption(
        "--live",
        action="store_true",
        default=False,
        help="Run live tests against the bucket configured by S3_ENDPOINT/S3_BUCKET",
    )


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "signing: SigV4 canonicalization and signature tests"
    )
    config.addinivalue_line(
        "markers", "known_vector: checked against published AWS signature examples"
    )
    config.addinivalue_line(
        "markers", "edge_case: mark test as edge case or boundary condition"
    )
    config.addinivalue_line(
        "markers", "transforms: compression/encryption pipeline tests"
    )
    config.addinivalue_line("markers", "batch: batch executor and statistics tests")
    config.addinivalue_line("markers", "slow: mark test as slow running")
    config.addinivalue_line(
        "markers", "live: mark test as needing a real S3-compatible endpoint"
    )


def pytest_collection_modifyitems(config, items):
    """Skip live tests unless --live is given."""
    if config.getoption("--live"):
        return
    skip_live = pytest.mark.skip(reason="needs --live and a configured endpoint")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


@pytest.fixture(scope="session")
def live_client():
    """Session-scoped client for the endpoint configured in the environment."""
    if not os.getenv("S3_ENDPOINT") or not os.getenv("S3_BUCKET"):
        pytest.skip("S3_ENDPOINT and S3_BUCKET must be set for live tests")
    client = ClientFactory().create_client()
    yield client
    client.close()
