"""
Unit tests for the in-process chat relay.
All fan-out is deferred onto a ManualScheduler; tests drain it with run_pending().
"""
import pytest

from tenrx_chat.chat.models import ChatEventType, ChatMessagePayload, ChatStatus
from tenrx_chat.errors import ChatInternalError, ChatNotActive


# ─────────────────────────────────────────────
# Binding
# ─────────────────────────────────────────────

class TestBinding:
    def test_bind_ids_are_unique(self, relay, make_interface):
        ids = [relay.bind_interface(make_interface()) for _ in range(50)]
        assert len(set(ids)) == 50
        assert all(ids)

    def test_bind_sets_back_reference(self, relay, make_interface):
        a = make_interface("a")
        iid = relay.bind_interface(a)
        assert a.id == iid
        assert a.relay is relay

    def test_binding_same_object_twice_returns_same_id(self, relay, make_interface):
        a = make_interface("a")
        assert relay.bind_interface(a) == relay.bind_interface(a)
        assert len(relay.interfaces) == 1

    def test_bind_has_no_membership_side_effect(self, relay, make_interface, scheduler):
        relay.bind_interface(make_interface())
        assert relay.members == []
        assert scheduler.pending == 0

    def test_unbind_unknown_raises(self, relay):
        with pytest.raises(ChatInternalError):
            relay.unbind_interface("missing")

    def test_unbind_drops_owned_members_and_notifies(self, relay, make_interface, scheduler):
        a, b = make_interface("a"), make_interface("b")
        relay.bind_interface(a)
        relay.bind_interface(b)
        relay.start_chat()
        member = relay.add_participant(b.id, "Bob")
        scheduler.run_pending()
        relay.unbind_interface(b.id)
        scheduler.run_pending()
        assert relay.get_member(member) is None
        assert b.relay is None
        left = a.of_type(ChatEventType.PARTICIPANT_LEFT)
        assert [e.sender_id for e in left] == [member]


# ─────────────────────────────────────────────
# Lifecycle
# ─────────────────────────────────────────────

class TestLifecycle:
    def test_initial_status_is_idle(self, relay):
        assert relay.get_chat_status() == ChatStatus.IDLE

    def test_start_chat_notifies_every_interface_once(self, relay, make_interface, scheduler):
        stubs = [make_interface(str(i)) for i in range(3)]
        for s in stubs:
            relay.bind_interface(s)
        relay.start_chat()
        assert relay.get_chat_status() == ChatStatus.ACTIVE
        assert all(s.events == [] for s in stubs)
        scheduler.run_pending()
        for s in stubs:
            started = s.of_type(ChatEventType.CHAT_STARTED)
            assert len(started) == 1
            assert started[0].payload == []
            assert started[0].recipient_id == s.id

    def test_start_chat_lists_current_members(self, relay, make_interface, scheduler):
        a, b = make_interface("a"), make_interface("b")
        relay.bind_interface(a)
        relay.bind_interface(b)
        relay.start_chat()
        m1 = relay.add_participant(a.id, "Alice", "a.png")
        m2 = relay.add_participant(b.id, "Bob")
        relay.stop_chat()
        relay.start_chat()
        scheduler.run_pending()
        latest = a.of_type(ChatEventType.CHAT_STARTED)[-1]
        assert {p.id for p in latest.payload} == {m1, m2}
        assert {p.nick_name for p in latest.payload} == {"Alice", "Bob"}

    def test_stop_chat_keeps_members(self, relay, make_interface, scheduler):
        a = make_interface()
        relay.bind_interface(a)
        relay.start_chat()
        relay.add_participant(a.id, "Alice")
        relay.stop_chat()
        scheduler.run_pending()
        assert relay.get_chat_status() == ChatStatus.IDLE
        assert len(relay.members) == 1
        assert len(a.of_type(ChatEventType.CHAT_ENDED)) == 1

    def test_cleanup_clears_everything_and_still_notifies(self, relay, make_interface, scheduler):
        a = make_interface()
        relay.bind_interface(a)
        relay.start_chat()
        relay.add_participant(a.id, "Alice")
        relay.cleanup_chat()
        scheduler.run_pending()
        assert relay.members == []
        assert relay.interfaces == {}
        assert a.relay is None
        assert len(a.of_type(ChatEventType.CHAT_ENDED)) == 1

    def test_restart_chat_clears_members_only(self, relay, make_interface, scheduler):
        a = make_interface()
        relay.bind_interface(a)
        relay.start_chat()
        relay.add_participant(a.id, "Alice")
        relay.restart_chat()
        scheduler.run_pending()
        assert relay.get_chat_status() == ChatStatus.IDLE
        assert relay.members == []
        assert a.id in relay.interfaces

    def test_restart_chat_can_unbind(self, relay, make_interface):
        a = make_interface()
        relay.bind_interface(a)
        relay.restart_chat(unbind_interfaces=True)
        assert relay.interfaces == {}
        assert a.relay is None


# ─────────────────────────────────────────────
# Members
# ─────────────────────────────────────────────

class TestMembers:
    def test_add_participant_requires_active(self, relay, make_interface):
        a = make_interface()
        relay.bind_interface(a)
        with pytest.raises(ChatNotActive):
            relay.add_participant(a.id, "Alice")
        assert relay.members == []

    def test_add_participant_unknown_interface(self, relay):
        relay.start_chat()
        with pytest.raises(ChatInternalError):
            relay.add_participant("nope", "Alice")

    def test_add_participant_notifies_everyone_but_owner(self, relay, make_interface, scheduler):
        stubs = [make_interface(str(i)) for i in range(4)]
        for s in stubs:
            relay.bind_interface(s)
        relay.start_chat()
        scheduler.run_pending()
        member = relay.add_participant(stubs[0].id, "Alice", "alice.png")
        scheduler.run_pending()
        assert member
        assert stubs[0].of_type(ChatEventType.PARTICIPANT_JOINED) == []
        for s in stubs[1:]:
            joined = s.of_type(ChatEventType.PARTICIPANT_JOINED)
            assert len(joined) == 1
            assert joined[0].payload.id == member
            assert joined[0].payload.nick_name == "Alice"
            assert joined[0].payload.avatar == "alice.png"

    def test_member_ids_are_fresh(self, relay, make_interface):
        a = make_interface()
        relay.bind_interface(a)
        relay.start_chat()
        ids = {relay.add_participant(a.id, f"n{i}") for i in range(30)}
        assert len(ids) == 30

    def test_silent_add_does_not_broadcast(self, relay, make_interface, scheduler):
        a, b = make_interface("a"), make_interface("b")
        relay.bind_interface(a)
        relay.bind_interface(b)
        relay.start_chat()
        scheduler.run_pending()
        member = relay.add_participant(b.id, "Quiet", silent=True)
        scheduler.run_pending()
        assert a.of_type(ChatEventType.PARTICIPANT_JOINED) == []
        assert relay.get_member(member).nick_name == "Quiet"

    def test_remove_unknown_member_leaves_membership(self, relay, make_interface):
        a = make_interface()
        relay.bind_interface(a)
        relay.start_chat()
        relay.add_participant(a.id, "Alice")
        before = [m.id for m in relay.members]
        with pytest.raises(ChatInternalError):
            relay.remove_participant("ghost", a.id)
        assert [m.id for m in relay.members] == before

    def test_remove_participant_notifies_others(self, relay, make_interface, scheduler):
        a, b = make_interface("a"), make_interface("b")
        relay.bind_interface(a)
        relay.bind_interface(b)
        relay.start_chat()
        member = relay.add_participant(a.id, "Alice")
        relay.remove_participant(member, a.id)
        scheduler.run_pending()
        assert relay.get_member(member) is None
        assert [e.sender_id for e in b.of_type(ChatEventType.PARTICIPANT_LEFT)] == [member]
        assert a.of_type(ChatEventType.PARTICIPANT_LEFT) == []


# ─────────────────────────────────────────────
# Messages & typing
# ─────────────────────────────────────────────

class TestMessages:
    @pytest.mark.parametrize("count", [2, 3, 5])
    def test_sender_is_excluded(self, relay, make_interface, scheduler, count):
        stubs = [make_interface(str(i)) for i in range(count)]
        for s in stubs:
            relay.bind_interface(s)
        relay.start_chat()
        scheduler.run_pending()
        relay.send_message(stubs[0].id, ChatMessagePayload("hello"))
        scheduler.run_pending()
        receivers = [s for s in stubs if s.of_type(ChatEventType.MESSAGE)]
        assert len(receivers) == count - 1
        assert stubs[0] not in receivers

    def test_sender_id_defaults_to_interface(self, relay, make_interface, scheduler):
        a, b = make_interface("a"), make_interface("b")
        relay.bind_interface(a)
        relay.bind_interface(b)
        relay.start_chat()
        relay.send_message(a.id, ChatMessagePayload("hi"))
        relay.send_message(a.id, ChatMessagePayload("as member"), sender_id="member-1")
        scheduler.run_pending()
        messages = b.of_type(ChatEventType.MESSAGE)
        assert [m.sender_id for m in messages] == [a.id, "member-1"]
        assert [m.payload.message for m in messages] == ["hi", "as member"]

    def test_direct_message_reaches_owner_only(self, relay, make_interface, scheduler):
        a, b, c = make_interface("a"), make_interface("b"), make_interface("c")
        for s in (a, b, c):
            relay.bind_interface(s)
        relay.start_chat()
        bob = relay.add_participant(b.id, "Bob")
        scheduler.run_pending()
        relay.send_message(a.id, ChatMessagePayload("psst"), recipient_id=bob)
        scheduler.run_pending()
        assert len(b.of_type(ChatEventType.MESSAGE)) == 1
        assert b.of_type(ChatEventType.MESSAGE)[0].recipient_id == bob
        assert c.of_type(ChatEventType.MESSAGE) == []

    def test_message_requires_active(self, relay, make_interface):
        a = make_interface()
        relay.bind_interface(a)
        with pytest.raises(ChatNotActive):
            relay.send_message(a.id, ChatMessagePayload("hi"))

    def test_typing_excludes_owner_of_member(self, relay, make_interface, scheduler):
        a, b = make_interface("a"), make_interface("b")
        relay.bind_interface(a)
        relay.bind_interface(b)
        relay.start_chat()
        alice = relay.add_participant(a.id, "Alice")
        scheduler.run_pending()
        relay.start_typing(alice)
        relay.stop_typing(alice)
        scheduler.run_pending()
        assert [e.type for e in b.events[-2:]] == [ChatEventType.TYPING_STARTED, ChatEventType.TYPING_ENDED]
        assert a.of_type(ChatEventType.TYPING_STARTED) == []

    def test_broadcasts_arrive_in_call_order(self, relay, make_interface, scheduler):
        a, b = make_interface("a"), make_interface("b")
        relay.bind_interface(a)
        relay.bind_interface(b)
        relay.start_chat()
        for text in ("one", "two", "three"):
            relay.send_message(a.id, ChatMessagePayload(text))
        scheduler.run_pending()
        assert [e.payload.message for e in b.of_type(ChatEventType.MESSAGE)] == ["one", "two", "three"]

    def test_failing_interface_does_not_block_others(self, relay, make_interface, scheduler):
        a, b, c = make_interface("a"), make_interface("b"), make_interface("c")
        for s in (a, b, c):
            relay.bind_interface(s)

        def explode(event, relay):
            raise RuntimeError("boom")

        b.on_event = explode
        relay.start_chat()
        scheduler.run_pending()
        assert len(a.of_type(ChatEventType.CHAT_STARTED)) == 1
        assert len(c.of_type(ChatEventType.CHAT_STARTED)) == 1


# ─────────────────────────────────────────────
# End-to-end scenario
# ─────────────────────────────────────────────

def test_two_interfaces_join_scenario(relay, make_interface, scheduler):
    a, b = make_interface("A"), make_interface("B")
    relay.bind_interface(a)
    relay.bind_interface(b)
    relay.start_chat()
    scheduler.run_pending()
    assert [e.type for e in a.events] == [ChatEventType.CHAT_STARTED]

    relay.add_participant(b.id, "Bob", "")
    scheduler.run_pending()
    joined = a.of_type(ChatEventType.PARTICIPANT_JOINED)
    assert len(joined) == 1
    assert joined[0].payload.nick_name == "Bob"
    assert b.of_type(ChatEventType.PARTICIPANT_JOINED) == []
