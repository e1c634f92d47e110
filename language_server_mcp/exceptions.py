"""Exception hierarchy for the language server bridge."""


class LanguageServerBridgeError(Exception):
    """Base exception for all bridge errors."""

    pass


class ConfigurationMissingError(LanguageServerBridgeError):
    """No language server invocation is configured for a language."""

    def __init__(self, language_id: str):
        self.language_id = language_id
        super().__init__(f"No language server configured for {language_id}")


class SpawnFailureError(LanguageServerBridgeError):
    """The language server process could not be started."""

    pass


class HandshakeFailureError(LanguageServerBridgeError):
    """The initialize exchange with a language server failed."""

    pass


class ConnectionClosedError(LanguageServerBridgeError):
    """The protocol connection is not listening, disposed, or its process exited."""

    pass


class RequestTimeoutError(LanguageServerBridgeError):
    """An outbound request did not receive a response in time."""

    pass


class RegistryClosedError(LanguageServerBridgeError):
    """A session was requested after the registry was shut down."""

    pass
