# assistant/tests/test_artifacts.py
"""
AI Artifact Store Tests
=======================

Versioning invariant: per (task, type) exactly one current row once
anything was saved, and versions 1..n without gaps or duplicates.
"""

import threading
from unittest.mock import patch

from django.db import IntegrityError, connection, transaction
from django.test import TestCase, TransactionTestCase
from rest_framework import status
from rest_framework.exceptions import NotFound
from rest_framework.test import APITestCase

from assistant.ai_engine.artifacts import ArtifactStore
from assistant.ai_engine.rate_limit import get_rate_limiter
from assistant.models import AIArtifact
from assistant.tests.helpers import make_task, make_user
from tasks.models import Task


def assert_versioning_invariant(testcase, task, type):
    rows = AIArtifact.objects.filter(task=task, type=type)
    versions = sorted(rows.values_list("version", flat=True))
    testcase.assertEqual(versions, list(range(1, len(versions) + 1)))
    testcase.assertEqual(rows.filter(is_current=True).count(), 1 if versions else 0)


# ===========================================================================
# SAVE / GET CURRENT
# ===========================================================================


class ArtifactSaveTests(TestCase):

    def setUp(self):
        self.user = make_user()
        self.task = make_task(self.user)
        self.store = ArtifactStore()

    def test_second_save_supersedes_first(self):
        """v1 then v2: one current row with v2; two rows overall."""
        self.store.save(self.user, self.task.id, "research", "v1")
        self.store.save(self.user, self.task.id, "research", "v2")

        current = self.store.get_current(self.user, self.task.id, "research")
        self.assertEqual(len(current), 1)
        self.assertEqual(current[0].content, "v2")
        self.assertEqual(current[0].version, 2)
        self.assertTrue(current[0].is_current)

        everything = self.store.get_current(self.user, self.task.id, "research", current_only=False)
        self.assertEqual(len(everything), 2)

    def test_versions_stay_contiguous_over_many_saves(self):
        """Any sequence of saves keeps one current row and versions 1..n."""
        for i in range(6):
            self.store.save(self.user, self.task.id, "draft", f"draft {i}")
            self.store.save(self.user, self.task.id, "note", f"note {i}")
            assert_versioning_invariant(self, self.task, "draft")
            assert_versioning_invariant(self, self.task, "note")

    def test_no_rows_means_no_current(self):
        assert_versioning_invariant(self, self.task, "outline")
        self.assertEqual(self.store.get_current(self.user, self.task.id, "outline"), [])

    def test_types_are_versioned_independently(self):
        self.store.save(self.user, self.task.id, "research", "r1")
        draft = self.store.save(self.user, self.task.id, "draft", "d1")

        self.assertEqual(draft.version, 1)
        self.assertEqual(len(self.store.get_current(self.user, self.task.id)), 2)

    def test_foreign_task_is_not_found(self):
        """Another user's task is reported exactly like a missing one."""
        intruder = make_user(email="intruder@example.com")

        with self.assertRaisesMessage(NotFound, "Task not found"):
            self.store.save(intruder, self.task.id, "note", "x")
        with self.assertRaisesMessage(NotFound, "Task not found"):
            self.store.get_current(intruder, self.task.id)
        with self.assertRaisesMessage(NotFound, "Task not found"):
            self.store.get_current(self.user, "not-a-uuid")
        self.assertFalse(AIArtifact.objects.exists())

    def test_deleted_task_is_not_found(self):
        self.task.status = Task.Status.DELETED
        self.task.save()

        with self.assertRaises(NotFound):
            self.store.save(self.user, self.task.id, "note", "x")

    def test_metadata_and_title_are_stored(self):
        artifact = self.store.save(
            self.user, self.task.id, "research", "body", title="Findings", metadata={"query": "q"}
        )
        artifact.refresh_from_db()
        self.assertEqual(artifact.title, "Findings")
        self.assertEqual(artifact.metadata, {"query": "q"})


# ===========================================================================
# STORAGE-LEVEL GUARD AND RETRY
# ===========================================================================


class ArtifactConcurrencyTests(TestCase):

    def setUp(self):
        self.user = make_user()
        self.task = make_task(self.user)
        self.store = ArtifactStore()

    def test_database_rejects_second_current_row(self):
        """The partial unique constraint refuses two current rows for one (task, type)."""
        AIArtifact.objects.create(task=self.task, type="research", content="a", version=1, is_current=True)

        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                AIArtifact.objects.create(task=self.task, type="research", content="b", version=2, is_current=True)

    def test_database_rejects_duplicate_version(self):
        AIArtifact.objects.create(task=self.task, type="research", content="a", version=1, is_current=False)

        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                AIArtifact.objects.create(task=self.task, type="research", content="b", version=1, is_current=True)

    def test_lost_race_is_retried(self):
        """An IntegrityError from a racing writer triggers a fresh attempt."""
        real_create = AIArtifact.objects.create
        calls = {"count": 0}

        def flaky_create(**kwargs):
            calls["count"] += 1
            if calls["count"] == 1:
                raise IntegrityError("one_current_artifact_per_task_type")
            return real_create(**kwargs)

        with patch.object(AIArtifact.objects, "create", side_effect=flaky_create):
            artifact = self.store.save(self.user, self.task.id, "research", "v1")

        self.assertEqual(calls["count"], 2)
        self.assertEqual(artifact.version, 1)
        assert_versioning_invariant(self, self.task, "research")

    def test_gives_up_after_bounded_attempts(self):
        with patch.object(AIArtifact.objects, "create", side_effect=IntegrityError("conflict")) as mock_create:
            with self.assertRaises(IntegrityError):
                self.store.save(self.user, self.task.id, "research", "v1")

        self.assertEqual(mock_create.call_count, ArtifactStore.MAX_SAVE_ATTEMPTS)

    def test_failed_attempt_rolls_back_the_flip(self):
        """A failed insert never leaves the previous version un-current."""
        self.store.save(self.user, self.task.id, "research", "v1")

        with patch.object(AIArtifact.objects, "create", side_effect=IntegrityError("conflict")):
            with self.assertRaises(IntegrityError):
                self.store.save(self.user, self.task.id, "research", "v2")

        assert_versioning_invariant(self, self.task, "research")
        self.assertEqual(self.store.get_current(self.user, self.task.id, "research")[0].content, "v1")


class ConcurrentArtifactSaveTests(TransactionTestCase):
    """
    Real parallel writers, each thread on its own database connection.

    TransactionTestCase because every save must commit for the other
    threads to see it.
    """

    WRITERS = 4

    def setUp(self):
        self.user = make_user()
        self.task = make_task(self.user)

    def _save_in_parallel(self, contents):
        barrier = threading.Barrier(len(contents), timeout=10)
        saved, errors = [], []

        def writer(content):
            try:
                barrier.wait()
                saved.append(ArtifactStore().save(self.user, self.task.id, "research", content))
            except Exception as e:
                errors.append(e)
            finally:
                connection.close()

        threads = [threading.Thread(target=writer, args=(content,)) for content in contents]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        return saved, errors

    def test_parallel_saves_leave_one_current_version(self):
        contents = [f"writer {i}" for i in range(self.WRITERS)]

        saved, errors = self._save_in_parallel(contents)

        self.assertEqual(errors, [])
        self.assertEqual(sorted(a.version for a in saved), list(range(1, self.WRITERS + 1)))
        assert_versioning_invariant(self, self.task, "research")
        current = AIArtifact.objects.get(task=self.task, type="research", is_current=True)
        self.assertEqual(current.version, self.WRITERS)

    def test_parallel_saves_on_top_of_existing_history(self):
        ArtifactStore().save(self.user, self.task.id, "research", "seed")

        saved, errors = self._save_in_parallel(["left", "right"])

        self.assertEqual(errors, [])
        self.assertEqual(sorted(a.version for a in saved), [2, 3])
        assert_versioning_invariant(self, self.task, "research")


# ===========================================================================
# HISTORY / RESTORE / DELETE
# ===========================================================================


class ArtifactHistoryTests(TestCase):

    def setUp(self):
        self.user = make_user()
        self.task = make_task(self.user)
        self.store = ArtifactStore()
        self.v1 = self.store.save(self.user, self.task.id, "draft", "first")
        self.v2 = self.store.save(self.user, self.task.id, "draft", "second")

    def test_history_is_newest_first(self):
        versions = self.store.history(self.user, self.task.id, "draft")
        self.assertEqual([a.version for a in versions], [2, 1])

    def test_restore_saves_old_content_as_new_version(self):
        """Restoring never rewrites history."""
        restored = self.store.restore(self.user, self.v1.id)

        self.assertEqual(restored.version, 3)
        self.assertEqual(restored.content, "first")
        self.assertEqual(restored.metadata["restoredFromVersion"], 1)
        assert_versioning_invariant(self, self.task, "draft")

    def test_restoring_current_version_is_a_no_op(self):
        restored = self.store.restore(self.user, self.v2.id)
        self.assertEqual(restored.pk, self.v2.pk)
        self.assertEqual(AIArtifact.objects.filter(task=self.task).count(), 2)

    def test_deleting_current_promotes_newest_remaining(self):
        self.store.delete(self.user, self.v2.id)

        current = self.store.get_current(self.user, self.task.id, "draft")
        self.assertEqual([a.pk for a in current], [self.v1.pk])

    def test_deleting_old_version_keeps_current(self):
        self.store.delete(self.user, self.v1.id)

        current = self.store.get_current(self.user, self.task.id, "draft")
        self.assertEqual([a.pk for a in current], [self.v2.pk])

    def test_foreign_artifact_is_not_found(self):
        intruder = make_user(email="intruder@example.com")
        with self.assertRaisesMessage(NotFound, "Context not found"):
            self.store.delete(intruder, self.v1.id)
        self.assertTrue(AIArtifact.objects.filter(pk=self.v1.pk).exists())


# ===========================================================================
# HTTP
# ===========================================================================


class ContextAPITests(APITestCase):

    def setUp(self):
        get_rate_limiter.cache_clear()
        self.user = make_user()
        self.task = make_task(self.user)
        self.client.force_authenticate(user=self.user)

    def tearDown(self):
        get_rate_limiter.cache_clear()

    def test_save_and_list(self):
        url = "/api/v1/ai/context/"
        payload = {"taskId": str(self.task.id), "type": "research", "content": "v1", "title": "Notes"}

        created = self.client.post(url, payload, format="json")
        self.client.post(url, dict(payload, content="v2"), format="json")
        listed = self.client.get(url, {"taskId": str(self.task.id), "type": "research"})

        self.assertEqual(created.status_code, status.HTTP_201_CREATED)
        self.assertTrue(created.data["success"])
        self.assertEqual(created.data["data"]["context"]["version"], 1)
        contexts = listed.data["data"]["contexts"]
        self.assertEqual(len(contexts), 1)
        self.assertEqual(contexts[0]["content"], "v2")
        self.assertTrue(contexts[0]["isCurrent"])

        all_versions = self.client.get(url, {"taskId": str(self.task.id), "currentOnly": "false"})
        self.assertEqual(len(all_versions.data["data"]["contexts"]), 2)

    def test_history_restore_and_delete_routes(self):
        store = ArtifactStore()
        v1 = store.save(self.user, self.task.id, "note", "one")
        store.save(self.user, self.task.id, "note", "two")

        history = self.client.get("/api/v1/ai/context/history/", {"taskId": str(self.task.id), "type": "note"})
        self.assertEqual([v["version"] for v in history.data["data"]["versions"]], [2, 1])

        restored = self.client.post(f"/api/v1/ai/context/{v1.id}/restore/")
        self.assertEqual(restored.data["data"]["context"]["version"], 3)

        deleted = self.client.delete(f"/api/v1/ai/context/{v1.id}/")
        self.assertEqual(deleted.status_code, status.HTTP_200_OK)
        self.assertFalse(AIArtifact.objects.filter(pk=v1.pk).exists())

    def test_foreign_task_answers_404(self):
        other = make_task(make_user(email="other@example.com"))

        response = self.client.post(
            "/api/v1/ai/context/", {"taskId": str(other.id), "type": "note", "content": "x"}, format="json"
        )

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data, {"success": False, "error": "Task not found"})

    def test_invalid_payload_answers_400(self):
        response = self.client.post("/api/v1/ai/context/", {"taskId": "nope", "type": "poem"}, format="json")

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["error"], "Validation error")
        self.assertIn("taskId", response.data["details"])
        self.assertIn("type", response.data["details"])
        self.assertIn("content", response.data["details"])

    def test_anonymous_request_answers_401(self):
        self.client.force_authenticate(user=None)

        response = self.client.get("/api/v1/ai/context/", {"taskId": str(self.task.id)})

        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertEqual(response.data, {"success": False, "error": "Unauthorized"})
