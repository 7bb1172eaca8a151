"""API error codes, their HTTP statuses, and the exceptions that carry them.

Services raise these; `doggo.responses` renders them into the error
envelope. Provider failures are not API errors: they become an assistant
error turn (see `doggo.services.llm.errors`).
"""

from enum import Enum


class ApiErrorCode(str, Enum):
    """Stable error codes (E_CATEGORY_NAME) returned to clients."""

    E_UNAUTHENTICATED = "E_UNAUTHENTICATED"

    E_FORBIDDEN = "E_FORBIDDEN"
    E_INTERNAL_ONLY = "E_INTERNAL_ONLY"

    E_NOT_FOUND = "E_NOT_FOUND"
    E_CONVERSATION_NOT_FOUND = "E_CONVERSATION_NOT_FOUND"
    E_ATTACHMENT_NOT_FOUND = "E_ATTACHMENT_NOT_FOUND"
    E_AGENT_NOT_FOUND = "E_AGENT_NOT_FOUND"

    E_INVALID_REQUEST = "E_INVALID_REQUEST"
    E_INVALID_CONTENT_TYPE = "E_INVALID_CONTENT_TYPE"
    E_FILE_TOO_LARGE = "E_FILE_TOO_LARGE"
    E_FILE_EMPTY = "E_FILE_EMPTY"
    E_TOO_MANY_ATTACHMENTS = "E_TOO_MANY_ATTACHMENTS"
    E_INVALID_URL = "E_INVALID_URL"
    E_MESSAGE_EMPTY = "E_MESSAGE_EMPTY"

    E_QUOTA_EXCEEDED = "E_QUOTA_EXCEEDED"

    E_SCRAPE_FAILED = "E_SCRAPE_FAILED"
    E_SEARCH_FAILED = "E_SEARCH_FAILED"

    E_INTERNAL = "E_INTERNAL"
    E_SIGN_DOWNLOAD_FAILED = "E_SIGN_DOWNLOAD_FAILED"
    E_STORAGE_ERROR = "E_STORAGE_ERROR"
    E_COLLABORATOR_NOT_CONFIGURED = "E_COLLABORATOR_NOT_CONFIGURED"


_CODES_BY_STATUS: dict[int, tuple[ApiErrorCode, ...]] = {
    400: (
        ApiErrorCode.E_INVALID_REQUEST,
        ApiErrorCode.E_INVALID_CONTENT_TYPE,
        ApiErrorCode.E_FILE_TOO_LARGE,
        ApiErrorCode.E_FILE_EMPTY,
        ApiErrorCode.E_TOO_MANY_ATTACHMENTS,
        ApiErrorCode.E_INVALID_URL,
        ApiErrorCode.E_MESSAGE_EMPTY,
    ),
    401: (ApiErrorCode.E_UNAUTHENTICATED,),
    403: (ApiErrorCode.E_FORBIDDEN, ApiErrorCode.E_INTERNAL_ONLY),
    404: (
        ApiErrorCode.E_NOT_FOUND,
        ApiErrorCode.E_CONVERSATION_NOT_FOUND,
        ApiErrorCode.E_ATTACHMENT_NOT_FOUND,
        ApiErrorCode.E_AGENT_NOT_FOUND,
    ),
    429: (ApiErrorCode.E_QUOTA_EXCEEDED,),
    500: (
        ApiErrorCode.E_INTERNAL,
        ApiErrorCode.E_SIGN_DOWNLOAD_FAILED,
        ApiErrorCode.E_STORAGE_ERROR,
    ),
    # Upstream page reader / search provider
    502: (ApiErrorCode.E_SCRAPE_FAILED, ApiErrorCode.E_SEARCH_FAILED),
    503: (ApiErrorCode.E_COLLABORATOR_NOT_CONFIGURED,),
}

ERROR_CODE_TO_STATUS: dict[ApiErrorCode, int] = {
    code: status for status, codes in _CODES_BY_STATUS.items() for code in codes
}


class ApiError(Exception):
    """An error with a client-facing code and message.

    ``status_code`` is derived from the code; unknown codes map to 500.
    """

    def __init__(self, code: ApiErrorCode, message: str):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = ERROR_CODE_TO_STATUS.get(code, 500)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.code.value}, {self.message!r})"


class NotFoundError(ApiError):
    def __init__(self, code: ApiErrorCode = ApiErrorCode.E_NOT_FOUND, message: str = "Not found"):
        super().__init__(code, message)


class ForbiddenError(ApiError):
    def __init__(self, code: ApiErrorCode = ApiErrorCode.E_FORBIDDEN, message: str = "Forbidden"):
        super().__init__(code, message)


class InvalidRequestError(ApiError):
    def __init__(
        self, code: ApiErrorCode = ApiErrorCode.E_INVALID_REQUEST, message: str = "Invalid request"
    ):
        super().__init__(code, message)


class QuotaExceededError(ApiError):
    """The viewer's monthly doggo allowance is spent."""

    def __init__(self, message: str = "Monthly usage limit reached"):
        super().__init__(ApiErrorCode.E_QUOTA_EXCEEDED, message)
