"""
Unit Tests: Celery dispatch and task entry points
═══════════════════════════════════════════════════
The broker is never contacted: CeleryDispatcher is given a mock task, and
task bodies are invoked directly via `.run` against the test SQLite file.
"""

from __future__ import annotations

import uuid
from unittest.mock import MagicMock, patch

import pytest

from docdump.workers.celery_app import TASK_ROUTES, _beat_schedule, celery_app
from docdump.workers.dispatch import CeleryDispatcher
from docdump.workers.tasks import expire_stuck_processing, process_document, run_async
from tests.conftest import PNG_BYTES


@pytest.mark.unit
class TestCeleryDispatcher:

    async def test_publishes_document_id_to_extract_queue(self):
        task = MagicMock()
        doc_id = uuid.uuid4()

        await CeleryDispatcher(task).dispatch(doc_id)

        task.apply_async.assert_called_once_with(
            kwargs={"document_id": str(doc_id)},
            queue="documents.extract",
        )

    async def test_broker_error_propagates_to_caller(self):
        task = MagicMock()
        task.apply_async.side_effect = ConnectionError("broker unreachable")

        with pytest.raises(ConnectionError):
            await CeleryDispatcher(task).dispatch(uuid.uuid4())


@pytest.mark.unit
class TestCeleryConfiguration:

    def test_extraction_and_maintenance_are_routed_separately(self):
        assert TASK_ROUTES["docdump.workers.tasks.process_document"]["queue"] == "documents.extract"
        assert TASK_ROUTES["docdump.workers.tasks.expire_stuck_processing"]["queue"] == "documents.maintenance"
        assert celery_app.conf.task_acks_late is True
        assert celery_app.conf.accept_content == ["json"]

    def test_auto_retry_sweep_only_scheduled_when_enabled(self):
        tasks_off = {e["task"] for e in _beat_schedule(False).values()}
        tasks_on = {e["task"] for e in _beat_schedule(True).values()}

        assert "docdump.workers.tasks.retry_failed_documents" not in tasks_off
        assert "docdump.workers.tasks.retry_failed_documents" in tasks_on
        assert "docdump.workers.tasks.requeue_stale_pending" in tasks_off


@pytest.mark.unit
class TestTaskBodies:

    def test_run_async_without_running_loop(self):
        async def _answer():
            return 42

        assert run_async(_answer()) == 42

    async def test_process_document_runs_worker_in_fresh_container(
        self, test_settings, engines, make_document, records,
    ):
        doc = await make_document(store_bytes=PNG_BYTES)

        with patch("docdump.core.config.get_settings", return_value=test_settings), \
             patch("docdump.container.build_engines", return_value=engines):
            result = process_document.run(document_id=str(doc.id))

        assert result["outcome"] == "completed"
        assert result["document_id"] == str(doc.id)
        assert (await records.get(doc.id)).status == "completed"

    async def test_redelivered_message_is_a_noop(self, test_settings, engines, make_document, image_engine):
        doc = await make_document(status="completed", extracted_text="done")

        with patch("docdump.core.config.get_settings", return_value=test_settings), \
             patch("docdump.container.build_engines", return_value=engines):
            result = process_document.run(document_id=str(doc.id))

        assert result["outcome"] == "skipped"
        assert image_engine.calls == []

    async def test_sweep_task_returns_counts(self, test_settings, engines, database):
        with patch("docdump.core.config.get_settings", return_value=test_settings), \
             patch("docdump.container.build_engines", return_value=engines):
            assert expire_stuck_processing.run() == {"expired": 0}
