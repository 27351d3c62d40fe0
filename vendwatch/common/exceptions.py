"""
Custom Exception Classes for vendwatch

Hierarchical exception structure shared by the monitor services,
the storage backends and the HTTP API.
"""


class VendwatchError(Exception):
    """Base exception for all vendwatch errors"""

    def __init__(self, message: str, recoverable: bool = True):
        self.message = message
        self.recoverable = recoverable
        super().__init__(message)


class NotFoundError(VendwatchError):
    """Machine or alarm does not exist"""

    def __init__(self, resource: str, identifier: str):
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource} {identifier} not found", recoverable=False)


class InvalidStateError(VendwatchError):
    """Illegal alarm lifecycle transition"""

    def __init__(self, alarm_id: str, current: str, action: str):
        self.alarm_id = alarm_id
        self.current = current
        self.action = action
        super().__init__(
            f"Cannot {action} alarm {alarm_id} in state '{current}'",
            recoverable=False,
        )


class TransientIOError(VendwatchError):
    """Repository or store read/write failure"""

    def __init__(self, message: str, operation: str | None = None):
        self.operation = operation
        prefix = f"[{operation}] " if operation else ""
        super().__init__(f"IO Error: {prefix}{message}", recoverable=True)


class ConfigValidationError(VendwatchError):
    """Malformed threshold or monitor configuration"""

    def __init__(self, message: str, errors: list[str] | None = None):
        self.errors = errors or [message]
        super().__init__(f"Config Error: {message}", recoverable=False)
