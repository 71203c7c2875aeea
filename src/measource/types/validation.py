"""Correspondence checks between server handlers and client functions.

Every server handler is registered with the command it serves and the
client functions that call it; every client function records the command it
sends. `validate_handler_client_correspondence` checks both directions.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable


@dataclass
class HandlerInfo:
    """Stores the mapping between a server handler and its client functions.

    Attributes:
        handler_func: The server handler function
        client_methods: Names of client functions that use this handler
        command: The command string that identifies this handler
    """

    handler_func: Callable
    client_methods: list[str]
    command: str


HANDLER_REGISTRY: dict[str, HandlerInfo] = {}
PENDING_COMMAND_VALIDATIONS: list[tuple[str, str]] = []


def validate_handler_client_correspondence() -> list[str]:
    """Validates the bidirectional correspondence between handlers and clients.

    Checks that:

    1. All client commands (@command decorated) have matching handlers registered
    2. All handlers (@handler decorated) have at least one client function
    3. All declared client functions actually exist in the client module
    4. All client functions are decorated with @command, with the same command

    Returns:
        List of validation error messages, empty if all valid
    """
    # both modules must be imported for their decorators to have run
    import measource.server.client as client
    import measource.server.server  # noqa: F401

    errors = []

    for command, func_name in PENDING_COMMAND_VALIDATIONS:
        if command not in HANDLER_REGISTRY:
            errors.append(
                f"Command {command} used by {func_name} not found in handler registry"
            )

    for command, info in HANDLER_REGISTRY.items():
        if not info.client_methods:
            errors.append(
                f"Handler {info.handler_func.__name__} for command {command}"
                + " has no registered client methods"
            )
        for client_method in info.client_methods:
            if not hasattr(client, client_method):
                errors.append(
                    f"Client method {client_method} for command {command}"
                    + " not found in client module"
                )
                continue

            func = getattr(client, client_method)
            if not hasattr(func, "_is_client_method"):
                errors.append(
                    f"Client method {client_method} is not decorated with @command"
                )
            elif func._command != command:
                errors.append(
                    f"Client method {client_method} uses command {func._command}"
                    + f" but handler registered it for {command}"
                )

    return errors


def assert_valid_handler_client_correspondence():
    """Validates handler-client correspondence and raises if invalid.

    Raises:
        AssertionError: If any validation errors are found
    """
    errors = validate_handler_client_correspondence()
    if errors:
        raise AssertionError(
            "Handler-client correspondence validation failed:\n"
            + "\n".join(f"- {err}" for err in errors)
        )


__all__ = [
    "HANDLER_REGISTRY",
    "PENDING_COMMAND_VALIDATIONS",
    "HandlerInfo",
    "assert_valid_handler_client_correspondence",
    "validate_handler_client_correspondence",
]
