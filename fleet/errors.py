class FleetError(Exception):
    """Base exception for fleet domain errors."""

    pass


class ConfigError(FleetError):
    """Raised when .fleet/config.yaml holds values of the wrong shape."""

    pass


class BackendError(FleetError):
    """Raised when a process backend fails to start a worker."""

    pass


class MemoryStoreError(FleetError):
    """Base exception for vector memory failures."""

    pass


class SchemaMismatchError(MemoryStoreError):
    """Raised when persisted memory metadata disagrees with the active config.

    The store is not opened. Run `fleet memory reset` to rebuild it.
    """

    pass


class HealthcheckError(MemoryStoreError):
    """Raised when the memory self-test fails."""

    def __init__(self, message: str, health_error: str):
        super().__init__(message)
        self.health_error = health_error
