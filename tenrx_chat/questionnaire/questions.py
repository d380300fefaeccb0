"""
Question script for the questionnaire bot.

The backend returns the script nested as
content.data[0].questionnaireTemplateList[0].questionLists; each missing
level is reported with its own QuestionnaireErrorReason.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from tenrx_chat.api import ApiResult
from tenrx_chat.errors import QuestionnaireError, QuestionnaireErrorReason

logger = logging.getLogger(__name__)


class AnswerType(str, Enum):
    TEXT = "TEXT"
    YESORNO = "YESORNO"
    MULTIPLESELECT = "MULTIPLESELECT"
    MULTIPLECHOICE = "MULTIPLECHOICE"


_QUESTION_TYPES = {
    "PLAINTEXT": AnswerType.TEXT,
    "YESORNO": AnswerType.YESORNO,
    "MULTISELECT": AnswerType.MULTIPLESELECT,
    "MULTICHOICE": AnswerType.MULTIPLECHOICE,
}


def translate_question_type(question_type_code: Optional[str]) -> AnswerType:
    """Case-exact mapping; unknown codes are treated as free text."""
    return _QUESTION_TYPES.get(question_type_code or "", AnswerType.TEXT)


@dataclass
class AnswerOption:
    id: int
    questionnaire_master_id: int
    option_value: str
    option_value_es: str = ""
    option_info: str = ""
    option_info_es: str = ""
    numeric_value: Optional[float] = None
    display_order: int = 0

    def label(self, language: str = "en") -> str:
        if language == "es" and self.option_value_es:
            return self.option_value_es
        return self.option_value

    def to_dict(self, language: str = "en") -> dict:
        info = self.option_info_es if language == "es" and self.option_info_es else self.option_info
        return {
            "id": self.id,
            "questionnaireMasterId": self.questionnaire_master_id,
            "optionValue": self.label(language),
            "optionInfo": info,
            "numericValue": self.numeric_value,
            "displayOrder": self.display_order,
        }


@dataclass
class Question:
    id: int
    text: str
    text_es: str
    question_type_code: str
    question_type_id: int
    answer_type: AnswerType
    condition_values: list[Optional[str]] = field(default_factory=list)
    options: list[AnswerOption] = field(default_factory=list)

    def prompt(self, language: str = "en") -> str:
        if language == "es" and self.text_es:
            return self.text_es
        return self.text


@dataclass
class Answer:
    question_id: int
    answer: Optional[str] = None
    option_ids: list[int] = field(default_factory=list)


def _parse_option(raw: dict) -> AnswerOption:
    return AnswerOption(
        id=raw.get("questionnaireOptionsID", 0),
        questionnaire_master_id=raw.get("questionnaireMasterID", 0),
        option_value=raw.get("optionValue") or "",
        option_value_es=raw.get("optionValueEs") or "",
        option_info=raw.get("optionInfo") or "",
        option_info_es=raw.get("optionInfoEs") or "",
        numeric_value=raw.get("numericValue"),
        display_order=raw.get("displayOrder") or 0,
    )


def _parse_question(raw: dict) -> Question:
    code = raw.get("questionTypeCode") or ""
    options = [_parse_option(o) for o in raw.get("answers") or []]
    options.sort(key=lambda o: o.display_order)
    return Question(
        id=raw.get("questionnaireMasterID", 0),
        text=raw.get("question") or "",
        text_es=raw.get("questionEs") or "",
        question_type_code=code,
        question_type_id=raw.get("questionTypeID") or 0,
        answer_type=translate_question_type(code),
        condition_values=[raw.get("conditionValue1"), raw.get("conditionValue2"), raw.get("conditionValue3")],
        options=options,
    )


def parse_question_list(result: Optional[ApiResult]) -> list[Question]:
    """Extract the question list from a getQuestionList response or raise QuestionnaireError."""
    if result is None:
        raise QuestionnaireError("No response from the question list request", QuestionnaireErrorReason.EMPTY_RESPONSE)
    if result.error is not None or result.status >= 400:
        raise QuestionnaireError(
            f"Question list request failed with status {result.status}",
            QuestionnaireErrorReason.REQUEST_FAILED,
            inner_exception=result.error,
        )
    content: Any = result.content
    if not content or not isinstance(content, dict):
        raise QuestionnaireError("Question list response has no content", QuestionnaireErrorReason.EMPTY_CONTENT)
    data = content.get("data")
    if not data:
        raise QuestionnaireError("Question list response has no data", QuestionnaireErrorReason.EMPTY_DATA)
    templates = data[0].get("questionnaireTemplateList") if isinstance(data[0], dict) else None
    if not templates:
        raise QuestionnaireError("Question list response has no templates", QuestionnaireErrorReason.EMPTY_TEMPLATE_LIST)
    raw_questions = templates[0].get("questionLists") if isinstance(templates[0], dict) else None
    if not raw_questions:
        raise QuestionnaireError("Question list response has no questions", QuestionnaireErrorReason.EMPTY_QUESTION_LIST)
    questions = [_parse_question(q) for q in raw_questions]
    logger.debug(f"Parsed {len(questions)} questions")
    return questions


class Questionnaire:
    """Linear walk over a question list plus the answers collected so far."""

    def __init__(self, questions: list[Question], language: str = "en") -> None:
        self.questions = questions
        self.language = language
        self._answers: dict[int, Answer] = {}

    @property
    def total_questions(self) -> int:
        return len(self.questions)

    @property
    def answers(self) -> list[Answer]:
        return list(self._answers.values())

    def question_at(self, index: int) -> Optional[Question]:
        if 0 <= index < len(self.questions):
            return self.questions[index]
        return None

    def index_of(self, question_id: int) -> int:
        for i, q in enumerate(self.questions):
            if q.id == question_id:
                return i
        return -1

    def save_answer(
        self,
        question_id: int,
        answer: Optional[str] = None,
        option_ids: Optional[list[int]] = None,
    ) -> Answer:
        """
        Record (or overwrite) the answer to `question_id`.

        Raises ValueError for an unknown question, an empty answer, or option
        ids that the question does not offer.
        """
        index = self.index_of(question_id)
        if index < 0:
            raise ValueError(f"Answer to unknown question {question_id}")
        option_ids = list(option_ids or [])
        if not option_ids and not answer:
            raise ValueError(f"No options or answer provided for question {question_id}")
        question = self.questions[index]
        if option_ids:
            offered = {o.id: o for o in question.options}
            unknown = [oid for oid in option_ids if oid not in offered]
            if unknown:
                raise ValueError(f"Question {question_id} has no options {unknown}")
            if answer is None:
                answer = "|".join(offered[oid].label(self.language) for oid in option_ids)
        saved = Answer(question_id=question_id, answer=answer, option_ids=option_ids)
        self._answers[question_id] = saved
        return saved
