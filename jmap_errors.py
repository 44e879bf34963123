"""Errors raised by the JMAP client.

Transport and session failures mean the whole batch (or the session lookup)
failed. `RemoteMethodError` means one call inside an otherwise successful
batch failed. The `Unknown*`/`Duplicate*` errors are programming mistakes
caught while a request is being built or read.
"""


class JMAPError(Exception):
    pass


class TransportError(JMAPError):
    """The API endpoint answered with a non-2xx status or a malformed body, or could not be reached."""

    def __init__(self, status_code: int | None, reason: str, problem: dict | None = None):
        self.status_code = status_code
        self.reason = reason
        # RFC 8620 3.6.1 request-level error, when the server sent one
        self.problem = problem
        if status_code is None:
            message = reason
        else:
            message = f"HTTP {status_code}: {reason}"
        if problem and problem.get("type"):
            message += f" ({problem['type']})"
        super().__init__(message)


class SessionError(JMAPError):
    pass


class Unauthorized(SessionError):
    def __init__(self, message: str = "Invalid credentials"):
        super().__init__(message)


class SessionDiscoveryFailed(SessionError):
    def __init__(self, status_code: int, reason: str = ""):
        self.status_code = status_code
        super().__init__(
            f"Failed to discover JMAP session: HTTP {status_code} {reason}".rstrip()
        )


class NoMailAccount(SessionError):
    def __init__(self, message: str = "No mail account found in session"):
        super().__init__(message)


class RemoteMethodError(JMAPError):
    """A method call in the batch came back as an error.

    `type` is the JMAP error type tag (``unknownMethod``,
    ``invalidArguments``, ...).
    """

    def __init__(self, type: str, description: str | None = None):
        self.type = type
        self.description = description
        super().__init__(description or type)


class SetItemError(RemoteMethodError):
    """A /set call rejected one record (notCreated, notUpdated or notDestroyed)."""

    def __init__(
        self,
        type: str,
        description: str | None = None,
        *,
        record_id: str,
        operation: str,
        properties: list[str] | None = None,
    ):
        super().__init__(type, description)
        self.record_id = record_id
        self.operation = operation
        self.properties = properties or []
        message = f"Failed to {operation} {record_id}: {description or type}"
        if self.properties:
            message += f" (Failed properties: {', '.join(self.properties)})"
        self.args = (message,)


class UnknownCallId(JMAPError):
    def __init__(self, call_id: str):
        self.call_id = call_id
        super().__init__(f"Unknown call ID: {call_id}")


class DuplicateCallId(JMAPError):
    def __init__(self, call_id: str):
        self.call_id = call_id
        super().__init__(f"Call ID already used in this request: {call_id}")


class UnknownCreationId(JMAPError):
    def __init__(self, creation_id: str):
        self.creation_id = creation_id
        super().__init__(f"No earlier create with creation ID: {creation_id}")


class MailboxNotFound(JMAPError):
    def __init__(self, role: str):
        self.role = role
        super().__init__(f"No {role} mailbox found")


class IdentityNotFound(JMAPError):
    def __init__(self, identity_id: str | None = None):
        self.identity_id = identity_id
        if identity_id:
            super().__init__(f"Identity not found: {identity_id}")
        else:
            super().__init__("No identity found")
