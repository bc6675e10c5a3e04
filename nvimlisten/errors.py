"""
Error types raised by nvimlisten components.

Every error carries a JSON-RPC style code so the MCP layer can turn it
into a single error object without inspecting the message.
"""

from typing import Optional, Sequence

from mcp.types import INTERNAL_ERROR, INVALID_PARAMS, METHOD_NOT_FOUND, ErrorData

# Server-defined codes (JSON-RPC reserves -32000..-32099 for these)
EXTERNAL_PROCESS_FAILED = -32001
RESOURCE_NOT_FOUND = -32002


class NvimListenError(Exception):
    """Base class for all errors surfaced to MCP callers."""

    code = INTERNAL_ERROR
    kind = "InternalError"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_error_data(self) -> ErrorData:
        return ErrorData(code=self.code, message=self.message, data={"kind": self.kind})


class NotFoundError(NvimListenError):
    """A named script, session or file does not exist."""

    code = RESOURCE_NOT_FOUND
    kind = "NotFound"


class ToolNotFoundError(NotFoundError):
    """The requested operation is not in the catalog."""

    code = METHOD_NOT_FOUND

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown tool: {name}")


class InvalidArgumentError(NvimListenError):
    """Arguments are missing or do not match the operation schema."""

    code = INVALID_PARAMS
    kind = "InvalidArgument"


class ExternalProcessError(NvimListenError):
    """A child process could not be started, failed, or timed out."""

    code = EXTERNAL_PROCESS_FAILED
    kind = "ExternalProcessFailure"

    def __init__(
        self,
        message: str,
        argv: Sequence[str] = (),
        returncode: Optional[int] = None,
        stderr: str = "",
    ):
        self.argv = tuple(argv)
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(message)


class InternalError(NvimListenError):
    """Wraps an unexpected failure at the dispatch boundary."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(message)
