"""
End-to-end test: a questionnaire bot and a patient talking through a relay on
the real asyncio loop, with the REST backend served by httpx.MockTransport.
"""
import asyncio

import httpx
import pytest

from tenrx_chat.api import TenrxApi
from tenrx_chat.chat.models import MessageMetadata
from tenrx_chat.chat.patient import PatientChatInterface
from tenrx_chat.chat.relay import ChatRelay
from tenrx_chat.questionnaire.bot import BotOptions, BotStatus, QuestionnaireBot
from tenrx_chat.scheduler import LoopScheduler


@pytest.mark.asyncio
async def test_patient_completes_questionnaire(raw_question, question_list_content):
    body = question_list_content([
        raw_question(1, "What is your name?", "PLAINTEXT", []),
        raw_question(2, "Any allergies?", "YESORNO", [(30, "Yes", "Sí"), (31, "No", "No")]),
    ])

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/Login/GetQuestionList"
        return httpx.Response(200, json=body)

    relay = ChatRelay(LoopScheduler())
    received = []
    done = asyncio.Event()

    async with TenrxApi(base_url="https://api.test", transport=httpx.MockTransport(handler)) as api:
        bot = QuestionnaireBot(api, visit_type_id=9, options=BotOptions(typing_delay=0.01))
        assert await bot.start()

        patient = PatientChatInterface("Pat")

        def on_message(p, sender_id, message, metadata):
            received.append((message, metadata.kind if metadata else None))
            if metadata is None:
                return
            if metadata.kind == "QuestionnairePossibleAnswers":
                question = metadata.data
                if question["answerType"] == "TEXT":
                    answer = {"questionId": question["questionId"], "answer": "Pat"}
                else:
                    answer = {"questionId": question["questionId"], "options": [{"id": question["possibleAnswers"][1]["id"]}]}
                p.send_message("answer", MessageMetadata("QuestionnaireAnswer", answer))
            elif metadata.kind == "QuestionnaireEnd":
                done.set()

        patient.on_message_received = on_message
        relay.bind_interface(bot)
        relay.bind_interface(patient)
        relay.start_chat()
        await asyncio.sleep(0)
        patient.enter_chat()

        await asyncio.wait_for(done.wait(), timeout=5)

    assert [kind for _, kind in received] == [
        "QuestionnaireStart",
        "QuestionnairePossibleAnswers",
        "QuestionnairePossibleAnswers",
        "QuestionnaireEnd",
    ]
    assert received[1][0] == "What is your name?"
    assert bot.status == BotStatus.COMPLETED
    assert [(a.question_id, a.answer) for a in bot.answers] == [(1, "Pat"), (2, "No")]
    relay.cleanup_chat()
