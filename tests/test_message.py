# =============================================================================
# Unit Tests — Agent Message Protocol
# =============================================================================
#
# Factories, response linkage, side-channel data and id uniqueness.
# Pure data tests; no LLM, no event loop.
# =============================================================================

from __future__ import annotations

import threading

import pytest

from app.agents.message import AgentMessage, MessageType, generate_message_id
from app.agents.roles import AgentRole


def _task(content: str = "贷款20万") -> AgentMessage:
    return AgentMessage.create_task_assignment(
        sender=AgentRole.COORDINATOR,
        receiver=AgentRole.LOAN_EXPERT,
        content=content,
        session_id="s-1",
    )


# ---------------------------------------------------------------------------
# Test: Factories
# ---------------------------------------------------------------------------


class TestFactories:
    def test_task_assignment_defaults(self):
        msg = _task()
        assert msg.message_type is MessageType.TASK_ASSIGNMENT
        assert msg.requires_response is True
        assert msg.priority == 5
        assert msg.parent_message_id is None
        assert msg.session_id == "s-1"
        assert msg.data == {}

    def test_task_result_links_parent(self):
        msg = AgentMessage.create_task_result(
            sender=AgentRole.LOAN_EXPERT,
            receiver=AgentRole.COORDINATOR,
            content="月供约 5949.37 元",
            parent_message_id="MSG-parent",
            session_id="s-1",
        )
        assert msg.message_type is MessageType.TASK_RESULT
        assert msg.requires_response is False
        assert msg.parent_message_id == "MSG-parent"

    def test_collaboration_request_ranks_above_baseline(self):
        msg = AgentMessage.create_collaboration_request(
            sender=AgentRole.LOAN_EXPERT,
            receiver=AgentRole.RISK_ASSESSMENT,
            content="请评估额度",
            session_id=None,
        )
        assert msg.message_type is MessageType.COLLABORATION_REQUEST
        assert msg.priority == 7
        assert not msg.is_urgent()

    def test_priority_out_of_range_rejected(self):
        with pytest.raises(ValueError):
            AgentMessage(
                sender=AgentRole.COORDINATOR,
                receiver=AgentRole.LOAN_EXPERT,
                message_type=MessageType.TASK_ASSIGNMENT,
                content="x",
                priority=11,
            )

    def test_urgent_threshold(self):
        msg = _task()
        msg.priority = 8
        assert msg.is_urgent()


# ---------------------------------------------------------------------------
# Test: Responses
# ---------------------------------------------------------------------------


class TestCreateResponse:
    def test_swaps_sender_and_receiver(self):
        original = _task()
        reply = original.create_response("done")
        assert reply.sender is AgentRole.LOAN_EXPERT
        assert reply.receiver is AgentRole.COORDINATOR

    def test_links_to_original_and_keeps_session(self):
        original = _task()
        reply = original.create_response("done")
        assert reply.parent_message_id == original.message_id
        assert reply.session_id == original.session_id
        assert reply.message_type is MessageType.TASK_RESULT
        assert reply.requires_response is False
        assert reply.content == "done"

    def test_reply_has_fresh_id(self):
        original = _task()
        assert original.create_response("x").message_id != original.message_id


# ---------------------------------------------------------------------------
# Test: Side-channel Data
# ---------------------------------------------------------------------------


class TestData:
    def test_add_data_chains(self):
        msg = _task().add_data("userId", "u-1").add_data("amount", 200000)
        assert msg.get_data("userId") == "u-1"
        assert msg.get_data("amount") == 200000

    def test_missing_key_returns_default(self):
        assert _task().get_data("nope") is None
        assert _task().get_data("nope", "fallback") == "fallback"

    def test_type_mismatch_raises(self):
        msg = _task().add_data("amount", "200000")
        with pytest.raises(TypeError, match="amount"):
            msg.get_data("amount", expected_type=int)

    def test_matching_type_returned(self):
        msg = _task().add_data("roles", [AgentRole.LOAN_EXPERT])
        assert msg.get_data("roles", expected_type=list) == [AgentRole.LOAN_EXPERT]

    def test_to_dict_renders_roles_by_name(self):
        msg = _task().add_data("requiredAgents", [AgentRole.POLICY_EXPERT])
        as_dict = msg.to_dict()
        assert as_dict["sender"] == "COORDINATOR"
        assert as_dict["receiver"] == "LOAN_EXPERT"
        assert as_dict["data"]["requiredAgents"] == ["POLICY_EXPERT"]


# ---------------------------------------------------------------------------
# Test: Message Ids
# ---------------------------------------------------------------------------


class TestMessageIds:
    def test_prefix(self):
        assert generate_message_id().startswith("MSG-")

    def test_unique_under_concurrent_creation(self):
        ids: list[str] = []
        lock = threading.Lock()

        def worker():
            local = [generate_message_id() for _ in range(500)]
            with lock:
                ids.extend(local)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(ids) == 4000
        assert len(set(ids)) == 4000
