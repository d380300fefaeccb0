"""
TenrxChat error taxonomy.

Protocol and state errors are raised to the immediate caller. Network
unreliability never surfaces here: the live bridge recovers from it with
packet retries.
"""
from enum import Enum
from typing import Any


class ChatNotActive(Exception):
    """Raised when an operation that needs an Active relay runs while it is Idle."""

    def __init__(self, message: str, object_name: str = "ChatRelay") -> None:
        self.object_name = object_name
        super().__init__(message)


class ChatInternalError(Exception):
    """Raised when an interface or member id is unknown to the relay."""

    def __init__(self, message: str, object_name: str = "ChatRelay") -> None:
        self.object_name = object_name
        super().__init__(message)


class QuestionnaireErrorReason(str, Enum):
    REQUEST_FAILED = "request_failed"
    EMPTY_RESPONSE = "empty_response"
    EMPTY_CONTENT = "empty_content"
    EMPTY_DATA = "empty_data"
    EMPTY_TEMPLATE_LIST = "empty_template_list"
    EMPTY_QUESTION_LIST = "empty_question_list"


class QuestionnaireError(Exception):
    """Raised when the question script cannot be loaded."""

    def __init__(
        self,
        message: str,
        reason: QuestionnaireErrorReason,
        inner_exception: Any = None,
    ) -> None:
        self.reason = reason
        self.inner_exception = inner_exception
        super().__init__(f"{message} ({reason.value})")
