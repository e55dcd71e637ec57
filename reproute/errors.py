"""Exception taxonomy shared by the engines, adapters and the HTTP layer."""


class RepRouteError(Exception):
    """Base class for every error the engine raises on purpose."""


class ValidationError(RepRouteError):
    """Bad input from the caller. Not retryable."""


class NotFound(RepRouteError):
    def __init__(self, kind: str, key: str):
        super().__init__(f"{kind} {key!r} not found")
        self.kind = kind
        self.key = key


class NoPartnersForDestination(RepRouteError):
    def __init__(self, destination: str):
        super().__init__(f"No logistics partner serves destination {destination!r}")
        self.destination = destination


class InvalidTransition(RepRouteError):
    def __init__(self, entity: str, current: str, requested: str):
        super().__init__(f"{entity} cannot move from {current} to {requested}")
        self.entity = entity
        self.current = current
        self.requested = requested


class OracleUnavailable(RepRouteError):
    """Oracle could not be reached. Always absorbed into a fallback."""


class OracleTimeout(OracleUnavailable):
    pass


class UpstreamMalformed(RepRouteError):
    """Oracle answered with something that violates the response contract."""


class StoreUnavailable(RepRouteError):
    """A durable store failed; surfaced as-is, retried by the workflow."""


class LedgerUnavailable(StoreUnavailable):
    pass


class DirectoryUnavailable(StoreUnavailable):
    pass
