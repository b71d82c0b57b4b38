"""Custom exceptions for DAMP Orchestrator."""


class DampError(Exception):
    """Base exception for DAMP Orchestrator errors."""

    pass


class ValidationError(DampError):
    """Exception raised when user input is rejected before any side effect."""

    pass


# Not found


class NotFoundError(DampError):
    """Base exception for missing containers, volumes, services and projects."""

    pass


class ContainerNotFoundError(NotFoundError):
    """Exception raised when a container is not found."""

    def __init__(self, identifier: str) -> None:
        """
        Initialize ContainerNotFoundError.

        Args:
            identifier: Container ID, name or service ID that was not found
        """
        self.identifier = identifier
        super().__init__(f"Container not found: {identifier}")


class ServiceNotFoundError(NotFoundError):
    """Exception raised for an unknown service ID."""

    def __init__(self, service_id: str) -> None:
        """
        Initialize ServiceNotFoundError.

        Args:
            service_id: Service ID that has no definition
        """
        self.service_id = service_id
        super().__init__(f"Service {service_id} not found")


class ProjectNotFoundError(NotFoundError):
    """Exception raised when a project record is not found."""

    def __init__(self, project_id: str) -> None:
        """
        Initialize ProjectNotFoundError.

        Args:
            project_id: Project ID that was not found
        """
        self.project_id = project_id
        super().__init__(f"Project {project_id} not found")


class VolumeNotFoundError(NotFoundError):
    """Exception raised when an action targets a volume that does not exist."""

    def __init__(self, volume_name: str) -> None:
        self.volume_name = volume_name
        super().__init__(f"Volume not found: {volume_name}")


class FileNotInArchiveError(NotFoundError):
    """Exception raised when an archive from a container has no file entry."""

    def __init__(self, path: str) -> None:
        """
        Initialize FileNotInArchiveError.

        Args:
            path: Path that was requested from the container
        """
        self.path = path
        super().__init__(f"File not found in archive: {path}")


# Conflicts


class ConflictError(DampError):
    """Base exception for conflicts the caller can resolve by choosing differently."""

    pass


class PortUnavailableError(ConflictError):
    """Exception raised when no free host port can be found for a desired port."""

    def __init__(self, port: int, attempts: int) -> None:
        """
        Initialize PortUnavailableError.

        Args:
            port: Desired port that could not be resolved
            attempts: Number of ports scanned
        """
        self.port = port
        self.attempts = attempts
        super().__init__(
            f"No available port mapping found for port {port} (scanned {attempts} ports)"
        )


class VolumeInUseError(ConflictError):
    """Exception raised when removing a volume that a container still uses."""

    def __init__(self, volume_name: str) -> None:
        """
        Initialize VolumeInUseError.

        Args:
            volume_name: Name of the volume that is in use
        """
        self.volume_name = volume_name
        super().__init__(
            f"Cannot remove volume {volume_name}: volume is in use by a container"
        )


class DevcontainerExistsError(ConflictError):
    """Exception raised when devcontainer files exist and overwriting was not requested."""

    def __init__(self, path: str) -> None:
        """
        Initialize DevcontainerExistsError.

        Args:
            path: Project path that already has a .devcontainer folder
        """
        self.path = path
        super().__init__(
            "Devcontainer folder already exists in this project. "
            "Set overwrite_existing=true to replace it."
        )


# Docker daemon


class DockerAPIError(DampError):
    """Exception raised when Docker API calls fail."""

    def __init__(self, message: str, original_error: Exception | None = None) -> None:
        """
        Initialize DockerAPIError.

        Args:
            message: Error message
            original_error: Original exception from Docker
        """
        self.original_error = original_error
        super().__init__(message)


class DockerDaemonUnreachableError(DockerAPIError):
    """Exception raised when Docker daemon is unreachable."""

    def __init__(
        self,
        message: str = "Docker is not running. Please start Docker and try again.",
    ) -> None:
        """
        Initialize DockerDaemonUnreachableError.

        Args:
            message: Error message
        """
        super().__init__(message)


class ImagePullError(DockerAPIError):
    """Exception raised when an image cannot be pulled."""

    def __init__(self, image: str, original_error: Exception | None = None) -> None:
        """
        Initialize ImagePullError.

        Args:
            image: Image reference that failed to pull
            original_error: Original exception from Docker
        """
        self.image = image
        super().__init__(f"Failed to pull image {image}: {original_error}", original_error)


class ContainerExitedError(DockerAPIError):
    """Exception raised when a container reaches a terminal state while awaited."""

    def __init__(self, identifier: str, state: str) -> None:
        """
        Initialize ContainerExitedError.

        Args:
            identifier: Container that stopped
            state: Terminal state reported by Docker (exited or dead)
        """
        self.identifier = identifier
        self.state = state
        super().__init__(f"Container {identifier} entered terminal state '{state}'")


class WaitTimeoutError(DampError):
    """Exception raised when a bounded wait elapses without reaching its goal."""

    def __init__(self, what: str, timeout_s: float) -> None:
        """
        Initialize WaitTimeoutError.

        Args:
            what: Description of what was awaited
            timeout_s: Timeout in seconds
        """
        self.what = what
        self.timeout_s = timeout_s
        super().__init__(f"Timed out after {timeout_s} seconds waiting for {what}")


# Exec


class ExecError(DampError):
    """Base exception for exec-related errors."""

    pass


class ExecStreamError(ExecError):
    """Exception raised when the exec output stream itself fails."""

    def __init__(self, identifier: str, original_error: Exception | None = None) -> None:
        """
        Initialize ExecStreamError.

        Args:
            identifier: Container the command ran in
            original_error: Original exception from Docker
        """
        self.identifier = identifier
        self.original_error = original_error
        super().__init__(f"Exec stream failed in container {identifier}: {original_error}")


class ExecExitCodeUnavailableError(ExecError):
    """Exception raised when a command finished without reporting an exit code."""

    def __init__(self, identifier: str) -> None:
        """
        Initialize ExecExitCodeUnavailableError.

        Args:
            identifier: Container the command ran in
        """
        self.identifier = identifier
        super().__init__(f"Exit code not available for exec in container {identifier}")


class ArchiveTooLargeError(DampError):
    """Exception raised when a file extracted from a container exceeds the size cap."""

    def __init__(self, path: str, size: int, max_size: int) -> None:
        """
        Initialize ArchiveTooLargeError.

        Args:
            path: Path inside the container
            size: Size reported by the archive entry
            max_size: Maximum accepted size in bytes
        """
        self.path = path
        self.size = size
        self.max_size = max_size
        super().__init__(f"File {path} is {size} bytes, exceeding the limit of {max_size} bytes")


class VolumeOperationError(DampError):
    """Exception raised when a helper container fails to copy or sync a volume."""

    def __init__(self, volume_name: str, message: str) -> None:
        """
        Initialize VolumeOperationError.

        Args:
            volume_name: Target volume
            message: Error message including helper logs
        """
        self.volume_name = volume_name
        super().__init__(message)
