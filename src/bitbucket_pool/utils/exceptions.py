"""Custom exceptions for the Bitbucket pool."""


class PoolError(Exception):
    """Base exception for Bitbucket pool errors."""

    pass


class ConfigurationError(PoolError):
    """Exception raised when a required setting is missing or invalid."""

    pass


class CapacityExceededError(PoolError):
    """Exception raised when the pool is at or above its container ceiling."""

    def __init__(self, limit: int, current: int) -> None:
        """
        Initialize CapacityExceededError.

        Args:
            limit: Configured ceiling
            current: Number of prefix-matching containers observed
        """
        self.limit = limit
        self.current = current
        super().__init__(
            f"limit of created containers exceeded: {current} existing, limit {limit}"
        )


class InvalidVersionError(PoolError):
    """Exception raised when the configured Bitbucket version is not usable."""

    def __init__(self, version: str) -> None:
        """
        Initialize InvalidVersionError.

        Args:
            version: Rejected version string
        """
        self.version = version
        super().__init__(
            f"wrong bitbucket version: {version!r} (expected 'latest' or MAJOR.MINOR[.PATCH])"
        )


class NameDecodeError(PoolError):
    """Exception raised when a member name does not carry a readable expiry."""

    def __init__(self, name: str, reason: str) -> None:
        """
        Initialize NameDecodeError.

        Args:
            name: Container name that failed to decode
            reason: What was wrong with it
        """
        self.name = name
        self.reason = reason
        super().__init__(f"unable to decode expiry from container name {name!r}: {reason}")


class MemberNotFoundError(PoolError):
    """Exception raised when a pool member is not found."""

    def __init__(self, member_id: str) -> None:
        """
        Initialize MemberNotFoundError.

        Args:
            member_id: Container ID that was not found
        """
        self.member_id = member_id
        super().__init__(f"Container not found: {member_id}")


class UnexpectedRuntimeStateError(PoolError):
    """Exception raised when a member is neither running nor exited during teardown."""

    def __init__(self, member_id: str, state: str) -> None:
        """
        Initialize UnexpectedRuntimeStateError.

        Args:
            member_id: Container ID
            state: Runtime state reported by Docker
        """
        self.member_id = member_id
        self.state = state
        super().__init__(f"Container {member_id} is in unexpected state '{state}'")


class StillStartingError(PoolError):
    """Exception raised when Bitbucket does not report STARTED before the deadline."""

    def __init__(
        self,
        url: str,
        timeout_s: float,
        state: str | None = None,
        message: str | None = None,
    ) -> None:
        """
        Initialize StillStartingError.

        Args:
            url: Bitbucket base URL that was polled
            timeout_s: Deadline that elapsed
            state: Last observed startup state, if any
            message: Last observed progress message, if any
        """
        self.url = url
        self.timeout_s = timeout_s
        self.state = state
        self.message = message
        super().__init__(
            f"Bitbucket at {url} still starting after {timeout_s:g}s "
            f"(last state: {state or 'unknown'}, message: {message or '-'})"
        )


class CollaboratorError(PoolError):
    """Exception raised when an external collaborator call fails."""

    def __init__(self, message: str, original_error: Exception | None = None) -> None:
        """
        Initialize CollaboratorError.

        Args:
            message: Error message
            original_error: Original exception from the collaborator
        """
        self.original_error = original_error
        super().__init__(message)


class DockerAPIError(CollaboratorError):
    """Exception raised when Docker API calls fail."""

    pass


class BitbucketAPIError(CollaboratorError):
    """Exception raised when Bitbucket startup or plugin manager calls fail."""

    pass
