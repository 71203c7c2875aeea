"""Every server handler has a client function and vice versa."""

from measource.types import (
    HANDLER_REGISTRY,
    assert_valid_handler_client_correspondence,
    validate_handler_client_correspondence,
)


def test_handler_client_correspondence():
    assert_valid_handler_client_correspondence()


def test_registry_covers_source_requests():
    from measource.types import CONSTS

    validate_handler_client_correspondence()  # imports the server module
    for name in ("INITIALIZE", "START_STREAM", "STOP_STREAM", "GET", "SET", "REQUEST_STATUS"):
        assert getattr(CONSTS.SOURCE, name) in HANDLER_REGISTRY
