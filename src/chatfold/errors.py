class ChatfoldError(Exception):
    pass


class ConfigError(ChatfoldError):
    """Missing or invalid provider configuration."""


class TransportError(ChatfoldError):
    """The upstream connection failed or returned a non-success status."""


class ProviderError(ChatfoldError):
    """The upstream itself reported an error."""

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class EmptyStreamError(ChatfoldError):
    def __init__(self, message: str = "no response received") -> None:
        super().__init__(message)


class UnsupportedToolError(ChatfoldError):
    pass
