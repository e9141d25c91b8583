"""flannel-registrar exception classes."""


class RegistrarError(Exception):
    """Base exception for registrar operations."""

    pass


# =============================================================================
# Registry
# =============================================================================


class RegistryError(RegistrarError):
    """Etcd registry operation failed."""

    pass


class RegistryUnavailableError(RegistryError):
    """Etcd could not be reached or returned an error status."""

    def __init__(self, endpoint: str, message: str):
        self.endpoint = endpoint
        super().__init__(f"Etcd at {endpoint} unavailable: {message}")


class InvalidRegistryKeyError(RegistryError):
    """Key is malformed (e.g. two prefixes concatenated)."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Invalid registry key: {key}")


# =============================================================================
# Kernel networking
# =============================================================================


class RouteCommandError(RegistrarError):
    """A route, link or FDB operation was rejected by the kernel."""

    def __init__(self, operation: str, target: str, message: str):
        self.operation = operation
        self.target = target
        super().__init__(f"{operation} {target} failed: {message}")


# =============================================================================
# State persistence
# =============================================================================


class StateStoreError(RegistrarError):
    """Persisting a state file failed; crash recovery data may be stale."""

    def __init__(self, path: str, message: str):
        self.path = path
        super().__init__(f"Failed to write state file {path}: {message}")


# =============================================================================
# Container runtime and recovery
# =============================================================================


class ContainerRuntimeError(RegistrarError):
    """Container runtime (Docker) operation failed."""

    pass


class FlannelContainerNotFoundError(ContainerRuntimeError):
    """No container running the overlay daemon could be found."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Flannel container not found: {name}")


class RecoveryError(RegistrarError):
    """A remediation action could not be carried out."""

    pass
