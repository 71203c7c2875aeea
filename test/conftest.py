import pytest


def pytest_configure(config):
    """Register the markers used under test/logic."""
    config.addinivalue_line(
        "markers", "slow: spawns a background server process, or otherwise slow"
    )
