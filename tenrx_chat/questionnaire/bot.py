"""
Scripted questionnaire participant.

The bot loads its question list from the REST backend in start(), then walks
the chat members through it: welcome, one question per message with the
possible answers in the metadata, and an end message once the list is
exhausted. Until start() succeeds every relay event is ignored.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

from tenrx_chat.api import TenrxApi
from tenrx_chat.chat.interface import ChatInterface
from tenrx_chat.chat.models import (
    ChatEvent,
    ChatEventType,
    ChatMessagePayload,
    ChatStatus,
    MessageMetadata,
    ParticipantInfo,
)
from tenrx_chat.config import BOT_TYPING_DELAY
from tenrx_chat.errors import QuestionnaireError
from tenrx_chat.questionnaire.questions import Answer, Questionnaire, parse_question_list

if TYPE_CHECKING:
    from tenrx_chat.chat.relay import ChatRelay

logger = logging.getLogger(__name__)

KIND_START = "QuestionnaireStart"
KIND_POSSIBLE_ANSWERS = "QuestionnairePossibleAnswers"
KIND_ANSWER = "QuestionnaireAnswer"
KIND_END = "QuestionnaireEnd"


class BotStatus(str, Enum):
    NOTREADY = "NOTREADY"
    READY = "READY"
    COMPLETED = "COMPLETED"


@dataclass
class BotOptions:
    nick_name: str = "Questionnaire bot"
    avatar: str = ""
    welcome_message: str = "Welcome to 10rx!"
    end_message: str = "Thank you for your time!"
    unable_to_understand_message: str = "I'm sorry, I didn't understand that."
    could_you_repeat_that_message: str = "I'm sorry. Could you repeat that?"
    typing_delay: float = BOT_TYPING_DELAY   # seconds; 0 sends right after the typing signal
    language: str = "en"                    # en | es


class QuestionnaireBot(ChatInterface):
    def __init__(
        self,
        api: TenrxApi,
        visit_type_id: int,
        options: Optional[BotOptions] = None,
        id: Optional[str] = None,
    ) -> None:
        super().__init__(id)
        self.api = api
        self.visit_type_id = visit_type_id
        self.options = options or BotOptions()
        self.current_question = -1
        self.participant_id = ""
        self.participants: dict[str, ParticipantInfo] = {}
        self._status = BotStatus.NOTREADY
        self._questionnaire = Questionnaire([], language=self.options.language)

    @property
    def status(self) -> BotStatus:
        return self._status

    @property
    def answers(self) -> list[Answer]:
        return self._questionnaire.answers

    @property
    def total_questions(self) -> int:
        return self._questionnaire.total_questions

    async def start(self) -> bool:
        """Load the question list. Raises QuestionnaireError when the backend response is unusable."""
        if self._status == BotStatus.NOTREADY:
            result = await self.api.get_question_list([{"visitTypeId": self.visit_type_id}])
            try:
                questions = parse_question_list(result)
            except QuestionnaireError as exc:
                logger.error(f"Error getting question list: {exc}")
                raise
            self._questionnaire = Questionnaire(questions, language=self.options.language)
            self._status = BotStatus.READY
            logger.info(f"Questionnaire bot ready with {len(questions)} questions (visit type {self.visit_type_id})")
        return self._status == BotStatus.READY

    # ─────────────────────────────────────────────
    # Relay events
    # ─────────────────────────────────────────────

    def on_event(self, event: ChatEvent, relay: "ChatRelay") -> None:
        if self._status != BotStatus.READY:
            logger.debug(f"QuestionnaireBot ignoring {event.type.value} while {self._status.value}")
            return
        if event.type == ChatEventType.CHAT_ENDED:
            logger.debug("QuestionnaireBot: chat ended")
        elif event.type == ChatEventType.CHAT_STARTED:
            self._handle_chat_started(event.payload or [])
        elif event.type == ChatEventType.PARTICIPANT_JOINED:
            self._handle_participant_joined(event.payload)
        elif event.type == ChatEventType.PARTICIPANT_LEFT:
            if self.participants.pop(event.sender_id or "", None) is None:
                logger.warning(f"QuestionnaireBot: unknown participant left. Id: {event.sender_id}")
        elif event.type == ChatEventType.MESSAGE:
            self._handle_message(event.sender_id, event.payload)
        elif event.type in (ChatEventType.TYPING_STARTED, ChatEventType.TYPING_ENDED):
            pass
        else:
            logger.warning(f"QuestionnaireBot: unknown event {event!r}")

    def _handle_chat_started(self, members: list[ParticipantInfo]) -> None:
        for info in members:
            if info.id != self.participant_id:
                self.participants[info.id] = info
                logger.debug(f"Adding participant '{info.nick_name}' with id {info.id}")
        if self.relay is None:
            logger.warning("QuestionnaireBot: chat started but the bot is not bound to a relay")
            return
        if not self.participant_id or self.relay.get_member(self.participant_id) is None:
            self.participant_id = self.relay.add_participant(self.id, self.options.nick_name, self.options.avatar)
            logger.debug(f"QuestionnaireBot participant id is {self.participant_id}")
        self._greet_once()

    def _handle_participant_joined(self, info: ParticipantInfo) -> None:
        self.participants[info.id] = info
        logger.debug(f"Adding participant '{info.nick_name}' with id {info.id}")
        self._greet_once()

    def _greet_once(self) -> None:
        if self.participants and self.current_question < 0 and self.participant_id:
            self.current_question = 0
            self._send(self.options.welcome_message, MessageMetadata(kind=KIND_START))
            self.ask_question(self.current_question)

    def _handle_message(self, sender_id: Optional[str], payload: ChatMessagePayload) -> None:
        if sender_id is None:
            return
        sender = self.participants.get(sender_id)
        logger.debug(f"{sender.nick_name if sender else 'Unknown'}: {payload.message}")
        metadata = payload.metadata
        if metadata is None:
            self._send(self.options.unable_to_understand_message)
            self.ask_question(self.current_question)
            return
        if metadata.kind != KIND_ANSWER:
            self._send(self.options.could_you_repeat_that_message)
            return
        try:
            answered = self._save(metadata.data)
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning(f"QuestionnaireBot: rejected answer: {exc}")
            self._send(self.options.could_you_repeat_that_message)
            return
        self.current_question = max(self.current_question, self._questionnaire.index_of(answered.question_id)) + 1
        self.ask_question(self.current_question)

    def _save(self, data: Any) -> Answer:
        if not isinstance(data, dict):
            raise ValueError(f"Answer data must be an object, got {type(data).__name__}")
        question_id = data.get("questionId", data.get("questionID"))
        option_ids = [o.get("id") if isinstance(o, dict) else o for o in data.get("options") or []]
        return self._questionnaire.save_answer(question_id, answer=data.get("answer"), option_ids=option_ids)

    def update_answer(self, data: dict) -> bool:
        """Record an answer outside the chat flow. Returns False when it does not fit the script."""
        try:
            self._save(data)
            return True
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning(f"QuestionnaireBot: unable to update answer: {exc}")
            return False

    # ─────────────────────────────────────────────
    # Outgoing messages
    # ─────────────────────────────────────────────

    def ask_question(self, index: int) -> None:
        question = self._questionnaire.question_at(index)
        if question is None:
            self._end()
            return
        language = self.options.language
        data = {
            "questionId": question.id,
            "questionTypeId": question.question_type_id,
            "questionNumber": index + 1,
            "answerType": question.answer_type.value,
            "possibleAnswers": [o.to_dict(language) for o in question.options] or None,
        }
        self._send(question.prompt(language), MessageMetadata(kind=KIND_POSSIBLE_ANSWERS, data=data))

    def _end(self) -> None:
        self._status = BotStatus.COMPLETED
        logger.info(f"Questionnaire completed with {len(self.answers)} answers")
        self._send(self.options.end_message, MessageMetadata(kind=KIND_END))

    def _send(self, message: str, metadata: Optional[MessageMetadata] = None) -> None:
        relay = self.relay
        if relay is None or relay.get_chat_status() != ChatStatus.ACTIVE:
            logger.warning(f"QuestionnaireBot: chat is not active. Unable to send message: {message}")
            return
        relay.start_typing(self.participant_id)
        if self.options.typing_delay > 0:
            relay.scheduler.call_later(self.options.typing_delay, self._deliver, message, metadata)
        else:
            self._deliver(message, metadata)

    def _deliver(self, message: str, metadata: Optional[MessageMetadata]) -> None:
        relay = self.relay
        if relay is None:
            logger.warning(f"QuestionnaireBot: chat no longer exists. Unable to send message: {message}")
            return
        if relay.get_chat_status() != ChatStatus.ACTIVE:
            logger.warning(f"QuestionnaireBot: chat is no longer active. Unable to send message: {message}")
            return
        relay.send_message(
            self.id,
            ChatMessagePayload(message=message, metadata=metadata),
            sender_id=self.participant_id,
        )
