"""
Shared fixtures for the relay, bot and bridge unit tests.

Everything runs on a ManualScheduler: nothing is delivered until a test
calls run_pending() or advance(), so ordering and timers are deterministic.
"""
import pytest

from tenrx_chat.chat.interface import ChatInterface
from tenrx_chat.chat.models import ChatEventType
from tenrx_chat.chat.relay import ChatRelay
from tenrx_chat.scheduler import ManualScheduler


class RecordingInterface(ChatInterface):
    """Test participant that records every event it receives."""

    def __init__(self, name: str = "stub") -> None:
        super().__init__()
        self.name = name
        self.events = []

    def on_event(self, event, relay):
        self.events.append(event)

    def of_type(self, event_type: ChatEventType):
        return [e for e in self.events if e.type == event_type]


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def relay(scheduler):
    return ChatRelay(scheduler)


@pytest.fixture
def make_interface():
    def _make(name: str = "stub") -> RecordingInterface:
        return RecordingInterface(name)
    return _make


def _raw_question(qid: int, text: str, code: str, options: list[tuple[int, str, str]]) -> dict:
    return {
        "questionnaireMasterID": qid,
        "question": text,
        "questionEs": f"{text} (es)",
        "questionTypeCode": code,
        "questionTypeID": 1,
        "conditionValue1": None,
        "conditionValue2": None,
        "conditionValue3": None,
        "answers": [
            {
                "questionnaireMasterID": qid,
                "questionnaireOptionsID": oid,
                "optionValue": en,
                "optionValueEs": es,
                "optionInfo": "",
                "optionInfoEs": "",
                "numericValue": 0,
                "displayOrder": order,
            }
            for order, (oid, en, es) in enumerate(options)
        ],
    }


@pytest.fixture
def question_list_content():
    """Build a getQuestionList response body around the given raw questions (default: one yes/no question)."""
    def _build(questions=None) -> dict:
        if questions is None:
            questions = [_raw_question(101, "Do you smoke?", "YESORNO", [(1, "Yes", "Sí"), (2, "No", "No")])]
        return {
            "apiStatus": {"statusCode": 200, "message": "OK"},
            "data": [{"questionnaireTemplateList": [{"questionLists": questions}]}],
        }
    return _build


@pytest.fixture
def raw_question():
    return _raw_question
