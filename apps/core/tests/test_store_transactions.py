"""In-memory store atomicity and data-layer constraint tests."""

from __future__ import annotations

from datetime import UTC, datetime
import unittest

from renderfarm.errors import ConflictError, NotFoundError, StoreUnavailableError
from renderfarm.repositories.base import RenderTaskAttemptLogRecord, RenderTaskAttemptRecord
from renderfarm.repositories.memory import InMemoryStore
from renderfarm.schemas.report import FinishMessage, ReportData, StartMessage
from renderfarm.schemas.task import AttemptStatus, ReportKind, TaskStatus
from renderfarm.services.task_reports import TaskReportService


def _attempt(task_id: int, slave: str = "slave-a", status: AttemptStatus = AttemptStatus.PROCESSING):
    return RenderTaskAttemptRecord(
        id=None,
        task_id=task_id,
        slave_id=slave,
        status=status,
        created_at=datetime.now(UTC),
    )


class FinishAtomicityTests(unittest.TestCase):
    def _prepare(self) -> tuple[InMemoryStore, TaskReportService, int, int]:
        store = InMemoryStore()
        service = TaskReportService(store)
        task = store.create_task()
        attempt_id = service.handle_start(StartMessage(action="start", task=task.id, slave="slave-a")).attempt_id
        return store, service, task.id, attempt_id

    def test_finish_write_failure_rolls_back_every_entity(self) -> None:
        for failpoint in ("log", "attempt", "task"):
            with self.subTest(failpoint=failpoint):
                store, service, task_id, attempt_id = self._prepare()
                logs_before = store.list_attempt_logs(attempt_id)
                writes_before = (store.task_write_count, store.attempt_write_count, store.log_write_count)
                store.save_failpoint_entity = failpoint

                with self.assertRaises(StoreUnavailableError) as context:
                    service.handle_finish(
                        FinishMessage(
                            action="finish",
                            task=task_id,
                            slave="slave-a",
                            reportType=ReportKind.INFO,
                            data=ReportData(message="done"),
                        )
                    )

                self.assertTrue(context.exception.transient)
                self.assertEqual(context.exception.details, {"entity": failpoint})
                self.assertEqual(store.get_task(task_id).status, TaskStatus.PROCESSING)
                attempt = store.find_attempt(attempt_id)
                self.assertEqual(attempt.status, AttemptStatus.PROCESSING)
                self.assertEqual(attempt.progress, 0)
                self.assertEqual(store.list_attempt_logs(attempt_id), logs_before)
                self.assertEqual(
                    (store.task_write_count, store.attempt_write_count, store.log_write_count),
                    writes_before,
                )

    def test_finish_succeeds_after_failpoint_clears(self) -> None:
        store, service, task_id, attempt_id = self._prepare()
        store.save_failpoint_entity = "task"
        message = FinishMessage(
            action="finish",
            task=task_id,
            slave="slave-a",
            reportType=ReportKind.ERROR,
            data=ReportData(),
        )
        with self.assertRaises(StoreUnavailableError):
            service.handle_finish(message)

        service.handle_finish(message)

        self.assertEqual(store.get_task(task_id).status, TaskStatus.FAILED)
        self.assertEqual(store.find_attempt(attempt_id).status, AttemptStatus.FAILED)
        self.assertEqual(len(store.list_attempt_logs(attempt_id)), 2)

    def test_unavailable_transaction_rejects_before_any_read(self) -> None:
        store = InMemoryStore()
        service = TaskReportService(store)
        task = store.create_task()
        store.unavailable_transactions = 1

        with self.assertRaises(StoreUnavailableError):
            service.handle_start(StartMessage(action="start", task=task.id, slave="slave-a"))
        self.assertEqual(store.attempts, {})

        service.handle_start(StartMessage(action="start", task=task.id, slave="slave-a"))
        self.assertEqual(len(store.attempts), 1)


class StoreConstraintTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = InMemoryStore()
        self.task = self.store.create_task()

    def test_second_processing_attempt_is_refused(self) -> None:
        first = self.store.save(_attempt(self.task.id, slave="slave-a"))

        with self.assertRaises(ConflictError) as context:
            self.store.save(_attempt(self.task.id, slave="slave-b"))

        self.assertEqual(context.exception.code, "ACTIVE_ATTEMPT_EXISTS")
        self.assertEqual(context.exception.details["active_attempt_id"], first.id)
        self.assertEqual(len(self.store.attempts), 1)

    def test_processing_attempts_on_different_tasks_coexist(self) -> None:
        other_task = self.store.create_task()
        self.store.save(_attempt(self.task.id))
        self.store.save(_attempt(other_task.id))
        self.assertEqual(len(self.store.attempts), 2)

    def test_compare_and_swap_detects_concurrent_status_change(self) -> None:
        attempt = self.store.save(_attempt(self.task.id))
        self.store.save(
            RenderTaskAttemptRecord(
                id=attempt.id,
                task_id=attempt.task_id,
                slave_id=attempt.slave_id,
                status=AttemptStatus.FAILED,
                created_at=attempt.created_at,
            ),
            expected_status=AttemptStatus.PROCESSING,
        )

        attempt.status = AttemptStatus.DONE
        with self.assertRaises(ConflictError) as context:
            self.store.save(attempt, expected_status=AttemptStatus.PROCESSING)

        self.assertEqual(context.exception.code, "CONCURRENT_UPDATE")
        self.assertEqual(context.exception.details["current_status"], AttemptStatus.FAILED)
        self.assertEqual(self.store.find_attempt(attempt.id).status, AttemptStatus.FAILED)

    def test_task_compare_and_swap(self) -> None:
        task = self.store.get_task(self.task.id)
        task.status = TaskStatus.PROCESSING
        with self.assertRaises(ConflictError) as context:
            self.store.save(task, expected_status=TaskStatus.FAILED)
        self.assertEqual(context.exception.code, "CONCURRENT_UPDATE")
        self.assertEqual(self.store.get_task(self.task.id).status, TaskStatus.QUEUED)

    def test_attempt_binding_is_immutable(self) -> None:
        attempt = self.store.save(_attempt(self.task.id, slave="slave-a"))
        attempt.slave_id = "slave-b"
        with self.assertRaises(ConflictError) as context:
            self.store.save(attempt)
        self.assertEqual(context.exception.code, "ATTEMPT_BINDING_IMMUTABLE")
        self.assertEqual(self.store.find_attempt(attempt.id).slave_id, "slave-a")

    def test_attempt_for_missing_task_is_refused(self) -> None:
        with self.assertRaises(NotFoundError):
            self.store.save(_attempt(4242))

    def test_attempt_logs_are_append_only(self) -> None:
        attempt = self.store.save(_attempt(self.task.id))
        entry = self.store.save(
            RenderTaskAttemptLogRecord(
                id=None,
                attempt_id=attempt.id,
                severity=ReportKind.INFO,
                message="first",
                created_at=datetime.now(UTC),
            )
        )
        entry.message = "rewritten"

        with self.assertRaises(ConflictError) as context:
            self.store.save(entry)

        self.assertEqual(context.exception.code, "LOG_APPEND_ONLY")
        self.assertEqual([log.message for log in self.store.list_attempt_logs(attempt.id)], ["first"])

    def test_readers_receive_copies(self) -> None:
        attempt = self.store.save(_attempt(self.task.id))
        loaded = self.store.find_attempt(attempt.id)
        loaded.progress = 99
        self.assertEqual(self.store.find_attempt(attempt.id).progress, 0)

    def test_nested_transaction_rolls_back_with_outer_block(self) -> None:
        with self.assertRaises(RuntimeError):
            with self.store.transaction():
                self.store.save(_attempt(self.task.id))
                with self.store.transaction():
                    self.store.save(_attempt(self.task.id, status=AttemptStatus.FAILED))
                raise RuntimeError("abort")

        self.assertEqual(self.store.attempts, {})
        self.assertEqual(self.store.attempt_write_count, 0)


if __name__ == "__main__":
    unittest.main()
