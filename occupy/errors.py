"""Exceptions raised by the document store and the contest services."""


class StoreError(Exception):
    """Raised when a document store call fails."""

    pass


class TransientStoreError(StoreError):
    """Network unreachable, transport failure or similar; safe to retry."""

    pass


class StoreUnavailableError(StoreError):
    """Store reported it is over capacity or missed its deadline."""

    pass


class PermissionDeniedError(StoreError):
    """Store rejected the call for the caller's credentials."""

    pass


class IssueNotFound(StoreError):
    """No issue document with the requested id."""

    def __init__(self, issue_id: str) -> None:
        super().__init__(f"Issue {issue_id} not found")
        self.issue_id = issue_id


class TeamNotFound(StoreError):
    """No team document with the requested name."""

    def __init__(self, team_id: str) -> None:
        super().__init__(f"Team {team_id} not found")
        self.team_id = team_id


class OperationTimeout(Exception):
    """An awaited store operation lost the race against its deadline.

    The operation itself keeps running; only the waiter gave up.
    """

    def __init__(self, label: str, timeout: float) -> None:
        super().__init__(f"{label} timed out after {timeout:g}s")
        self.label = label
        self.timeout = timeout


class LifecycleError(Exception):
    """Close, PR status or admin action rejected; message is user-facing."""

    pass


class SessionError(Exception):
    """Team login/logout rejected; message is user-facing."""

    pass
