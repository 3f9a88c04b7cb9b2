"""
Pytest configuration and fixtures for S3 object-lock tests

Unit tests run against an in-memory store and never touch the network.
Tests marked ``live`` talk to the endpoint named by S3_ENDPOINT and are
skipped when nothing answers there.
"""

import pytest

from s3lock.config import load_config
from s3lock.s3_client import S3Client, endpoint_reachable


@pytest.fixture(scope="session")
def config():
    """
    Test configuration fixture

    Returns configuration for S3 testing, read from the environment
    """
    return load_config().as_fixture()


@pytest.fixture(scope="session")
def live_endpoint(config):
    """Skip the requesting test unless the configured endpoint answers"""
    if not endpoint_reachable(config["s3_endpoint"]):
        pytest.skip(f"S3 endpoint {config['s3_endpoint']} is not reachable")
    return config["s3_endpoint"]


@pytest.fixture(scope="function")
def s3_client(config, live_endpoint):
    """
    S3 client fixture

    Creates an S3Client instance configured for the test environment
    """
    client = S3Client(
        endpoint_url=config["s3_endpoint"],
        access_key=config["s3_access_key"],
        secret_key=config["s3_secret_key"],
        region=config["s3_region"],
        use_ssl=config["s3_endpoint"].startswith("https"),
        verify_ssl=config["verify_ssl"],
        read_timeout=config["settings"].scenario_timeout,
    )

    yield client

    # Cleanup happens in test fixtures
