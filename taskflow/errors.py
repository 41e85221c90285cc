class TaskFlowError(Exception):
    """Base class for TaskFlow errors."""


class ConfigurationError(TaskFlowError):
    pass


class AuthenticationError(TaskFlowError):
    pass


class SessionClosedError(TaskFlowError):
    pass


class GatewayError(TaskFlowError):
    """A remote store call was rejected."""

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code


class NotFoundError(GatewayError):
    pass


class PermissionDeniedError(GatewayError):
    pass


class ConflictError(GatewayError):
    """The stored row changed since the caller last read it."""


class AlreadyMemberError(GatewayError):
    pass


class InvalidJoinCodeError(GatewayError):
    pass


class ValidationFailedError(GatewayError):
    pass


class TaskBlockedError(TaskFlowError):
    def __init__(self, task_id: int, blocker_id: int):
        super().__init__(f"Task {task_id} is blocked by task {blocker_id}")
        self.task_id = task_id
        self.blocker_id = blocker_id


class AIError(TaskFlowError):
    pass
