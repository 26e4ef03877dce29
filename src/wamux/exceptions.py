from __future__ import annotations


class WamuxError(Exception):
    """Base error for the wamux gateway."""


class AlreadyRegisteredError(WamuxError):
    """A session for this phone number is already live."""

    def __init__(self, phone: str) -> None:
        super().__init__(f"phone already registered: {phone}")
        self.phone = phone


class SessionNotFoundError(WamuxError):
    """No live session exists for this phone number."""

    def __init__(self, phone: str) -> None:
        super().__init__(f"phone not found: {phone}")
        self.phone = phone


class SessionNotConnectedError(WamuxError):
    """The session exists but its transport connection is not open."""

    def __init__(self, phone: str, state: str) -> None:
        super().__init__(f"session {phone} is not connected (state={state})")
        self.phone = phone
        self.state = state


class BootstrapTimeoutError(WamuxError):
    """
    No bootstrap artifact arrived within the wait budget.

    The session and its transport connection are left running: the device may
    still be linked later, and the artifact can be fetched again.
    """

    def __init__(self, phone: str, timeout_s: float) -> None:
        super().__init__(f"bootstrap code for {phone} not available after {timeout_s:g}s")
        self.phone = phone
        self.timeout_s = timeout_s


class CredentialStoreError(WamuxError):
    """Credential persistence failure (unreadable or corrupt record)."""


class TransportError(WamuxError):
    """Raised by transport implementations when a command or connect fails."""


class ForwardingError(WamuxError):
    """The collector rejected a message or could not be reached."""
