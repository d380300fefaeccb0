"""
tenrx-chat console entry point.

  tenrx-chat bot --visit-type 3        questionnaire bot over a local relay
  tenrx-chat live --session-id 12 --session-key abc
                                       console patient in a remote live chat

Both modes put a console patient on the relay; type /quit to leave.
"""
import argparse
import asyncio
import logging
from typing import Optional

from tenrx_chat.api import TenrxApi
from tenrx_chat.chat.models import MessageMetadata
from tenrx_chat.chat.patient import PatientChatInterface
from tenrx_chat.chat.relay import ChatRelay
from tenrx_chat.config import API_BASE_URL, BOT_TYPING_DELAY, CHAT_SOCKET_URL, LOG_LEVEL
from tenrx_chat.errors import QuestionnaireError
from tenrx_chat.live.bridge import LiveChatBridge
from tenrx_chat.live.transport import WebSocketTransport
from tenrx_chat.questionnaire.bot import KIND_ANSWER, KIND_END, KIND_POSSIBLE_ANSWERS, BotOptions, QuestionnaireBot
from tenrx_chat.scheduler import LoopScheduler

logger = logging.getLogger("tenrx_chat")


class ConsolePatient(PatientChatInterface):
    """Prints relay traffic and turns typed lines into chat messages."""

    def __init__(self, nick_name: str) -> None:
        super().__init__(nick_name)
        self.pending_question: Optional[dict] = None
        self.finished = asyncio.Event()
        self.on_message_received = self._print_message
        self.on_participant_joined = lambda _, pid: print(f"* {self.nick_name_of(pid)} joined")
        self.on_participant_left = lambda _, pid: print(f"* {self.nick_name_of(pid)} left")
        self.on_chat_ended = lambda _: self.finished.set()

    def _print_message(self, _, sender_id, message, metadata: Optional[MessageMetadata]) -> None:
        print(f"{self.nick_name_of(sender_id)}: {message}")
        if metadata is None:
            return
        if metadata.kind == KIND_POSSIBLE_ANSWERS:
            self.pending_question = metadata.data
            for number, option in enumerate(metadata.data.get("possibleAnswers") or [], start=1):
                print(f"    {number}. {option['optionValue']}")
        elif metadata.kind == KIND_END:
            self.pending_question = None
            self.finished.set()

    def answer(self, line: str) -> None:
        question = self.pending_question
        if question is None:
            self.send_message(line)
            return
        options = question.get("possibleAnswers") or []
        data: dict = {"questionId": question["questionId"]}
        if options:
            try:
                picked = [options[int(n) - 1]["id"] for n in line.replace(",", " ").split()]
            except (ValueError, IndexError):
                print(f"    pick one or more numbers between 1 and {len(options)}")
                return
            data["options"] = [{"id": oid} for oid in picked]
        else:
            data["answer"] = line
        self.send_message(line, MessageMetadata(kind=KIND_ANSWER, data=data))


async def _console(patient: ConsolePatient) -> None:
    loop = asyncio.get_running_loop()
    finished = asyncio.ensure_future(patient.finished.wait())
    try:
        while True:
            read = loop.run_in_executor(None, input)
            await asyncio.wait({read, finished}, return_when=asyncio.FIRST_COMPLETED)
            if finished.done():
                break
            line = read.result().strip()
            if line == "/quit":
                break
            if line:
                patient.answer(line)
    finally:
        finished.cancel()


async def run_bot(args: argparse.Namespace) -> int:
    relay = ChatRelay(LoopScheduler())
    async with TenrxApi(base_url=args.api_url) as api:
        bot = QuestionnaireBot(api, args.visit_type, BotOptions(language=args.lang, typing_delay=args.typing_delay))
        try:
            await bot.start()
        except QuestionnaireError as exc:
            logger.error(f"Unable to start questionnaire: {exc}")
            return 1
        patient = ConsolePatient(args.nick)
        relay.bind_interface(bot)
        relay.bind_interface(patient)
        relay.start_chat()
        await asyncio.sleep(0)
        patient.enter_chat()
        try:
            await _console(patient)
        except EOFError:
            pass
        finally:
            relay.cleanup_chat()
        for answer in bot.answers:
            logger.info(f"Answer to question {answer.question_id}: {answer.answer}")
    return 0


async def run_live(args: argparse.Namespace) -> int:
    scheduler = LoopScheduler()
    relay = ChatRelay(scheduler)
    transport = WebSocketTransport(args.url)
    bridge = LiveChatBridge(transport, args.session_id, args.session_key, scheduler=scheduler)
    patient = ConsolePatient(args.nick)
    bridge.on_ready = lambda: print("* connected to the live session")
    relay.bind_interface(bridge)
    relay.bind_interface(patient)
    relay.start_chat()
    transport.start()
    try:
        await transport.wait_connected(timeout=args.connect_timeout)
    except asyncio.TimeoutError:
        logger.error(f"Unable to connect to {args.url}")
        await transport.close()
        return 1
    patient.enter_chat()
    try:
        await _console(patient)
    except EOFError:
        pass
    finally:
        patient.leave_chat()
        relay.cleanup_chat()
        await asyncio.sleep(0)
        await transport.close()
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Tenrx chat relay tools")
    parser.add_argument("--log-level", default=LOG_LEVEL, help="Logging level")
    sub = parser.add_subparsers(dest="command", required=True)

    bot = sub.add_parser("bot", help="Answer a questionnaire from the console")
    bot.add_argument("--visit-type", type=int, required=True, help="Visit type id to load questions for")
    bot.add_argument("--api-url", default=API_BASE_URL, help="Tenrx API base URL")
    bot.add_argument("--lang", choices=("en", "es"), default="en", help="Questionnaire language")
    bot.add_argument("--typing-delay", type=float, default=BOT_TYPING_DELAY, help="Bot typing delay in seconds")
    bot.add_argument("--nick", default="Patient", help="Your nickname")

    live = sub.add_parser("live", help="Join a remote live chat session")
    live.add_argument("--url", default=CHAT_SOCKET_URL, help="Chat server WebSocket URL")
    live.add_argument("--session-id", type=int, required=True, help="Chat session id")
    live.add_argument("--session-key", required=True, help="Chat session key")
    live.add_argument("--nick", default="Patient", help="Your nickname")
    live.add_argument("--connect-timeout", type=float, default=10.0, help="Seconds to wait for the socket")

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    runner = run_bot if args.command == "bot" else run_live
    try:
        return asyncio.run(runner(args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
