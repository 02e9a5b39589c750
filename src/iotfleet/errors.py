"""Exception types raised across the fleet simulator."""


class FleetError(Exception):
    pass


class ConfigError(FleetError):
    pass


class FleetStartupError(FleetError):
    """Nothing can be instantiated: no endpoints, no TAPoS snapshot, or no credentials."""


class CredentialError(FleetError):
    pass


class ChainError(FleetError):
    """A chain RPC call failed or returned something unusable."""

    def __init__(self, message: str, *, endpoint: str | None = None, status: int | None = None, body: str | None = None):
        super().__init__(message)
        self.endpoint = endpoint
        self.status = status
        self.body = body


class ChainIdMismatch(ChainError):
    def __init__(self, endpoint: str, expected: str, actual: str | None):
        super().__init__(f"{endpoint} reports chain_id {actual}, expected {expected}", endpoint=endpoint)
        self.expected = expected
        self.actual = actual


class DescriptorError(ChainError):
    pass
