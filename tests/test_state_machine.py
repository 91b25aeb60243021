"""
状态机与状态表测试 — 覆盖：
  1. 合法 / 非法状态转移 (Lifecycle Transitions)
  2. 单写者所有权 (Single-Writer Ownership)
  3. 重置纪律与变更通知 (Reset Discipline & Change Notification)

运行方式:
    pytest tests/test_state_machine.py -v
"""

from __future__ import annotations

import asyncio
import logging

import pytest

from dag.state_machine import VALID_TRANSITIONS, InvalidTransitionError, NodeStateMachine, is_terminal
from dag.status_store import StatusStore, StoreError, StoreLockedError, WriterConflictError
from schema import ACTIVE_STATUSES, TERMINAL_STATUSES, JobStatus


# ======================================================================
# State machine
# ======================================================================


class TestNodeStateMachine:

    def test_happy_path(self):
        sm = NodeStateMachine()
        status = JobStatus.IDLE
        for nxt in (JobStatus.QUEUED, JobStatus.INITIALIZING, JobStatus.PROCESSING, JobStatus.COMPLETED):
            status = sm.transition("n", status, nxt)
        assert status == JobStatus.COMPLETED

    @pytest.mark.parametrize("current,new", [
        (JobStatus.IDLE, JobStatus.PROCESSING),
        (JobStatus.QUEUED, JobStatus.COMPLETED),
        (JobStatus.PROCESSING, JobStatus.QUEUED),
        (JobStatus.INITIALIZING, JobStatus.IDLE),
    ])
    def test_skipping_or_going_back_is_rejected(self, current, new):
        with pytest.raises(InvalidTransitionError):
            NodeStateMachine().transition("n", current, new)

    @pytest.mark.parametrize("terminal", sorted(TERMINAL_STATUSES, key=lambda s: s.value))
    def test_terminal_states_are_final(self, terminal):
        assert is_terminal(terminal)
        assert VALID_TRANSITIONS[terminal] == set()
        for target in JobStatus:
            assert not NodeStateMachine.can_transition(terminal, target)

    def test_every_non_terminal_can_fail_or_cancel(self):
        for status in JobStatus:
            if is_terminal(status):
                continue
            assert NodeStateMachine.can_transition(status, JobStatus.FAILED)
            assert NodeStateMachine.can_transition(status, JobStatus.CANCELLED)

    def test_active_and_terminal_sets_are_disjoint(self):
        assert not ACTIVE_STATUSES & TERMINAL_STATUSES
        assert JobStatus.IDLE not in ACTIVE_STATUSES

    def test_transition_is_logged(self, caplog):
        with caplog.at_level(logging.DEBUG, logger="dag.state_machine"):
            NodeStateMachine().transition("n", JobStatus.IDLE, JobStatus.QUEUED)
        assert "n: IDLE -> QUEUED" in caplog.text


# ======================================================================
# Status store
# ======================================================================


class TestStatusStore:

    def test_initial_entries_are_idle(self):
        store = StatusStore(["a", "b"])
        assert store.as_dict() == {
            "a": {"status": "IDLE", "progress": 0},
            "b": {"status": "IDLE", "progress": 0},
        }

    def test_second_claim_conflicts(self):
        store = StatusStore(["a"])
        writer = store.claim("a")
        with pytest.raises(WriterConflictError):
            store.claim("a")
        writer.release()
        store.claim("a").release()

    def test_claim_unknown_node(self):
        with pytest.raises(KeyError):
            StatusStore(["a"]).claim("missing")

    def test_released_writer_cannot_write(self):
        store = StatusStore(["a"])
        with store.claim("a") as writer:
            writer.write(JobStatus.QUEUED, 0)
        assert not store.has_writer("a")
        with pytest.raises(StoreError):
            writer.write(JobStatus.INITIALIZING)

    def test_write_keeps_progress_when_omitted(self):
        store = StatusStore(["a"])
        with store.claim("a") as writer:
            writer.write(JobStatus.PROCESSING, 40)
            writer.write(JobStatus.FAILED)
        assert store.get("a").progress == 40
        assert store.get("a").status == JobStatus.FAILED

    def test_reset_refused_while_writer_active(self):
        store = StatusStore(["a", "b"])
        writer = store.claim("a")
        with pytest.raises(StoreLockedError):
            store.reset()
        # 仅重置未被占用的条目是允许的
        store.reset(["b"])
        writer.release()
        store.reset()

    def test_reset_adds_new_entries(self):
        store = StatusStore(["a"])
        store.reset(["a", "b"])
        assert "b" in store
        assert store.statuses() == {"a": JobStatus.IDLE, "b": JobStatus.IDLE}

    def test_reset_clears_progress(self):
        store = StatusStore(["a"])
        with store.claim("a") as writer:
            writer.write(JobStatus.PROCESSING, 70)
        store.reset()
        assert store.get("a").status == JobStatus.IDLE
        assert store.get("a").progress == 0

    def test_snapshot_is_a_copy(self):
        store = StatusStore(["a"])
        snap = store.snapshot()
        with store.claim("a") as writer:
            writer.write(JobStatus.QUEUED, 0)
        assert snap["a"].status == JobStatus.IDLE

    def test_listeners_receive_events(self):
        store = StatusStore(["a"])
        events = []
        store.subscribe(events.append)
        with store.claim("a") as writer:
            writer.write(JobStatus.QUEUED, 0)
        store.unsubscribe(events.append)
        store.reset()

        assert len(events) == 1
        assert events[0].node_id == "a"
        assert events[0].previous == JobStatus.IDLE
        assert events[0].status == JobStatus.QUEUED

    def test_listener_error_is_logged_not_raised(self, caplog):
        store = StatusStore(["a"])

        def broken(_event):
            raise ValueError("observer bug")

        store.subscribe(broken)
        with caplog.at_level(logging.ERROR):
            with store.claim("a") as writer:
                writer.write(JobStatus.QUEUED, 0)
        assert store.get("a").status == JobStatus.QUEUED
        assert "Listener failed" in caplog.text

    @pytest.mark.asyncio
    async def test_wait_for_change_wakes_on_write(self):
        store = StatusStore(["a"])
        writer = store.claim("a")

        async def write_later():
            await asyncio.sleep(0.01)
            writer.write(JobStatus.QUEUED, 0)

        task = asyncio.create_task(write_later())
        assert await store.wait_for_change(1.0) is True
        await task
        writer.release()

    @pytest.mark.asyncio
    async def test_wait_for_change_times_out(self):
        store = StatusStore(["a"])
        assert await store.wait_for_change(0.01) is False

    @pytest.mark.asyncio
    async def test_notify_wakes_without_writing(self):
        store = StatusStore(["a"])
        store.notify()
        assert await store.wait_for_change(0.01) is True
        assert store.get("a").status == JobStatus.IDLE
