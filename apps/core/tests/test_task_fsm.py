"""Task and attempt lifecycle transition tests."""

from __future__ import annotations

import unittest

from renderfarm.domain.task_fsm import (
    allowed_next_task_statuses,
    ensure_attempt_transition,
    ensure_task_transition,
    is_terminal_attempt_status,
    terminal_statuses_for,
)
from renderfarm.errors import ConflictError
from renderfarm.schemas.task import AttemptStatus, ReportKind, TaskStatus


class TaskFsmUnitTests(unittest.TestCase):
    def test_report_kind_maps_to_terminal_pair(self) -> None:
        self.assertEqual(terminal_statuses_for(ReportKind.ERROR), (AttemptStatus.FAILED, TaskStatus.FAILED))
        self.assertEqual(terminal_statuses_for(ReportKind.INFO), (AttemptStatus.DONE, TaskStatus.DONE))
        self.assertEqual(terminal_statuses_for(ReportKind.WARNING), (AttemptStatus.DONE, TaskStatus.DONE))

    def test_allowed_task_transitions(self) -> None:
        allowed_pairs = [
            (TaskStatus.QUEUED, TaskStatus.PROCESSING),
            (TaskStatus.PROCESSING, TaskStatus.PROCESSING),
            (TaskStatus.PROCESSING, TaskStatus.DONE),
            (TaskStatus.PROCESSING, TaskStatus.FAILED),
            (TaskStatus.FAILED, TaskStatus.PROCESSING),
        ]
        for old_status, new_status in allowed_pairs:
            with self.subTest(old_status=old_status, new_status=new_status):
                ensure_task_transition(old_status, new_status)

    def test_forbidden_task_transitions_carry_allowed_successors(self) -> None:
        invalid_pairs = [
            (TaskStatus.QUEUED, TaskStatus.DONE),
            (TaskStatus.QUEUED, TaskStatus.FAILED),
            (TaskStatus.FAILED, TaskStatus.DONE),
        ]
        for old_status, new_status in invalid_pairs:
            with self.subTest(old_status=old_status, new_status=new_status):
                with self.assertRaises(ConflictError) as context:
                    ensure_task_transition(old_status, new_status)
                self.assertEqual(context.exception.code, "FSM_TRANSITION_INVALID")
                details = context.exception.details
                self.assertEqual(details["current_status"], old_status)
                self.assertEqual(details["attempted_status"], new_status)
                self.assertEqual(details["allowed_next_statuses"], allowed_next_task_statuses(old_status))

    def test_done_task_is_immutable(self) -> None:
        for new_status in (TaskStatus.PROCESSING, TaskStatus.FAILED, TaskStatus.DONE):
            with self.subTest(new_status=new_status):
                with self.assertRaises(ConflictError) as context:
                    ensure_task_transition(TaskStatus.DONE, new_status)
                self.assertEqual(context.exception.code, "FSM_TERMINAL_IMMUTABLE")
                self.assertEqual(context.exception.details["allowed_next_statuses"], [])

    def test_processing_attempt_only_moves_to_terminal_states(self) -> None:
        ensure_attempt_transition(AttemptStatus.PROCESSING, AttemptStatus.DONE)
        ensure_attempt_transition(AttemptStatus.PROCESSING, AttemptStatus.FAILED)

        with self.assertRaises(ConflictError) as context:
            ensure_attempt_transition(AttemptStatus.PROCESSING, AttemptStatus.PROCESSING)
        self.assertEqual(context.exception.code, "FSM_TRANSITION_INVALID")

    def test_terminal_attempt_states_have_no_egress(self) -> None:
        for terminal_status in (AttemptStatus.DONE, AttemptStatus.FAILED):
            self.assertTrue(is_terminal_attempt_status(terminal_status))
            for new_status in AttemptStatus:
                with self.subTest(terminal_status=terminal_status, new_status=new_status):
                    with self.assertRaises(ConflictError) as context:
                        ensure_attempt_transition(terminal_status, new_status)
                    self.assertEqual(context.exception.code, "FSM_TERMINAL_IMMUTABLE")
        self.assertFalse(is_terminal_attempt_status(AttemptStatus.PROCESSING))


if __name__ == "__main__":
    unittest.main()
