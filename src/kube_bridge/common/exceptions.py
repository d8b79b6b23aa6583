"""Exception hierarchy for kube-bridge."""


class KubeBridgeError(Exception):
    """Base exception for all kube-bridge errors."""

    pass


class ConfigurationError(KubeBridgeError):
    """Raised when bridge configuration is invalid."""

    pass


class ProcessError(KubeBridgeError):
    """Raised when a managed subprocess cannot be started or controlled."""

    pass


class BinaryNotFoundError(KubeBridgeError):
    """Raised when the kubectl binary is missing or not executable."""

    pass


class ClusterConfigError(KubeBridgeError):
    """Raised when a kubeconfig cannot be parsed or lacks the requested context."""

    pass


class ClusterCommandError(KubeBridgeError):
    """Raised when a cluster API call fails or returns unusable output."""

    def __init__(self, message: str, command: str = "", stderr: str = ""):
        super().__init__(message)
        self.command = command
        self.stderr = stderr


class StoreError(KubeBridgeError):
    """Base exception for connection store failures."""

    pass


class ConnectionNotFoundError(StoreError):
    """Raised when a connection id does not exist."""

    pass


class ClusterNotFoundError(StoreError):
    """Raised when a cluster id or name does not exist."""

    pass


class DuplicateConnectionError(StoreError):
    """Raised when a k8s connection for the same namespace and service exists."""

    def __init__(self, message: str, existing_id: int | None = None):
        super().__init__(message)
        self.existing_id = existing_id


class TunnelError(KubeBridgeError):
    """Base exception for tunnel operations."""

    pass
