"""Exceptions raised inside data sources.

Request-scoped failures (`InvalidStateTransition`, `ValidationError`,
`SourceConnectionError`) are turned into failed replies at the request
boundary and never change state. Session-scoped failures (`ProtocolError`,
`ReplyTimeout`, `ResourceMissing` during configuration retrieval) are routed
through the source's error-handling transition.
"""


class SourceError(Exception):
    """Base exception for data source failures."""

    pass


class InvalidStateTransition(SourceError):
    """Raised when a request is issued from a state that does not allow it."""

    pass


class ValidationError(SourceError):
    """Raised when a parameter value is outside its allowed domain."""

    pass


class ProtocolError(SourceError):
    """Malformed or error-flagged reply, short read or undecodable stream."""

    pass


class ReplyTimeout(ProtocolError):
    """A bounded wait on the remote server ran out."""

    pass


class SourceConnectionError(SourceError):
    """The remote endpoint could not be reached."""

    pass


class ResourceMissing(SourceError):
    """An external file or lookup table is absent."""

    pass


class CodecError(SourceError):
    """A parameter value could not be encoded or decoded."""

    pass


class UnsupportedSourceError(SourceError):
    """The requested source type is known but not available here."""

    pass


class CommsError(Exception):
    """Base exception for controller <-> server communication errors."""

    pass
