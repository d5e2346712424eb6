"""Error taxonomy shared by every session backend, plus the stderr classifier."""

from typing import Optional, Sequence


class MuxError(Exception):
    """Base class for all session backend errors."""


class BackendUnavailable(MuxError):
    """The multiplexer daemon could not be reached."""

    def __init__(self, message: str = "multiplexer daemon not running"):
        super().__init__(message)


class SessionExists(MuxError):
    """A live session already uses the requested name."""

    def __init__(self, message: str = "session already exists"):
        super().__init__(message)


class SessionNotFound(MuxError):
    """The target session does not exist."""

    def __init__(self, message: str = "session not found"):
        super().__init__(message)


class CapabilityUnavailable(MuxError):
    """The active backend does not support the requested operation."""

    def __init__(self, operation: str, *args: str, backend: str = ""):
        self.operation = operation
        self.args_repr = ", ".join(repr(a) for a in args)
        prefix = f"{backend} " if backend else ""
        super().__init__(f"{prefix}does not support {operation}({self.args_repr})")


class EnvironmentKeyNotFound(MuxError):
    """The requested variable is not set in the session environment."""

    def __init__(self, session: str, key: str):
        self.session = session
        self.key = key
        super().__init__(f"{key} not set in session {session!r}")


class AlreadyRunning(MuxError):
    """The supervised session is already running and healthy."""

    def __init__(self, message: str = "witness already running"):
        super().__init__(message)


class NotRunning(MuxError):
    """The supervised session is not running."""

    def __init__(self, message: str = "witness not running"):
        super().__init__(message)


class LockTimeout(MuxError):
    """A nudge could not acquire the per-session lock in time."""

    def __init__(self, session: str, timeout: float):
        self.session = session
        self.timeout = timeout
        super().__init__(
            f"nudge lock timeout for session {session!r} after {timeout:g}s: "
            "previous nudge may be hung"
        )


class WaitTimeout(MuxError):
    """The hosted program never reached a ready state."""


class CommandError(MuxError):
    """Unclassified multiplexer failure, carrying the subcommand and its stderr."""

    def __init__(self, tool: str, subcommand: str, stderr: str = "", returncode: Optional[int] = None):
        self.tool = tool
        self.subcommand = subcommand
        self.stderr = stderr
        self.returncode = returncode
        detail = stderr or f"exit status {returncode}"
        super().__init__(f"{tool} {subcommand}: {detail}")


# Ordered phrase table: the first row whose phrase occurs in stderr wins.
# Backends pass their own table when the multiplexer words things differently.
DEFAULT_PHRASES: Sequence[tuple[str, type]] = (
    ("daemon not running", BackendUnavailable),
    ("connection refused", BackendUnavailable),
    ("no such file or directory", BackendUnavailable),
    ("already exists", SessionExists),
    ("not found", SessionNotFound),
    ("no such session", SessionNotFound),
)


def classify_error_kind(stderr: str, phrases: Sequence[tuple[str, type]] = DEFAULT_PHRASES) -> Optional[type]:
    """Return the error class matching ``stderr``, or None when nothing matches."""
    text = stderr.strip().lower()
    if not text:
        return None
    for phrase, kind in phrases:
        if phrase in text:
            return kind
    return None


def classify_error(
    tool: str,
    args: Sequence[str],
    stderr: str,
    cause: Optional[BaseException] = None,
    returncode: Optional[int] = None,
    phrases: Sequence[tuple[str, type]] = DEFAULT_PHRASES,
) -> MuxError:
    """
    Map a failed multiplexer invocation to a typed error.

    Args:
        tool: Binary name, used as message prefix (e.g. "amux")
        args: Arguments the binary was invoked with; args[0] is the subcommand
        stderr: Captured stderr text
        cause: Underlying process error, chained when stderr is empty
        returncode: Process exit status, if known
        phrases: Ordered (phrase, error class) table

    Returns:
        The classified error. The caller raises it.
    """
    stderr = stderr.strip()
    subcommand = args[0] if args else ""

    kind = classify_error_kind(stderr, phrases)
    if kind is not None:
        return kind(stderr) if stderr else kind()

    if stderr:
        return CommandError(tool, subcommand, stderr, returncode)

    err = CommandError(tool, subcommand, str(cause) if cause else "", returncode)
    err.__cause__ = cause
    return err
