"""
存储与任务队列测试
"""
import threading
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from mediagen.services.storage import (
    LocalStorage, S3Storage, StorageError, extension_for_content_type, generate_file_path,
)
from mediagen.services.task_queue import TaskQueue, WorkItemStatus


class TestStoragePaths:

    def test_generate_file_path(self):
        path = generate_file_path(42, "Photo.JPG")
        parts = path.split("/")
        assert parts[0] == "uploads"
        assert parts[1] == "42"
        assert len(parts) == 6
        assert path.endswith(".jpg")

    def test_generate_file_path_kind(self):
        assert generate_file_path(1, "out.mp4", "videos").startswith("videos/1/")

    @pytest.mark.parametrize("content_type,expected", [
        ("video/mp4", "mp4"),
        ("video/quicktime", "mov"),
        ("image/jpeg", "jpg"),
        ("image/webp", "webp"),
        ("application/x-unknown", "bin"),
        (None, "bin"),
    ])
    def test_extension_for_content_type(self, content_type, expected):
        assert extension_for_content_type(content_type) == expected


class TestLocalStorage:

    def test_put_get_delete(self, tmp_path):
        storage = LocalStorage(str(tmp_path), base_url="http://cdn.local")
        url = storage.put("images/1/a.png", b"data", "image/png")

        assert url == "http://cdn.local/files/images/1/a.png"
        assert storage.get("images/1/a.png") == b"data"
        storage.delete("images/1/a.png")
        with pytest.raises(StorageError):
            storage.get("images/1/a.png")

    def test_path_traversal_rejected(self, tmp_path):
        storage = LocalStorage(str(tmp_path / "root"))
        with pytest.raises(StorageError):
            storage.put("../escape.txt", b"x", "text/plain")


class TestS3Storage:
    """S3 兼容存储（mock boto3 客户端）"""

    def _storage(self, **kwargs):
        client = MagicMock()
        storage = S3Storage(bucket="media", region="ap-southeast-1", access_key_id="k",
                            secret_access_key="s", client=client, **kwargs)
        return storage, client

    def test_put_uses_content_type(self):
        storage, client = self._storage()
        url = storage.put("videos/1/a.mp4", b"mp4", "video/mp4")

        client.put_object.assert_called_once_with(
            Bucket="media", Key="videos/1/a.mp4", Body=b"mp4", ContentType="video/mp4"
        )
        assert url == "https://media.s3.ap-southeast-1.amazonaws.com/videos/1/a.mp4"

    def test_public_url_variants(self):
        storage, _ = self._storage(endpoint_url="https://obs.example.com")
        assert storage.public_url("a.png") == "https://obs.example.com/media/a.png"

        storage, _ = self._storage(public_base_url="https://cdn.example.com/")
        assert storage.public_url("a.png") == "https://cdn.example.com/a.png"

    def test_client_error_wrapped(self):
        storage, client = self._storage()
        client.put_object.side_effect = ClientError(
            {"Error": {"Code": "503", "Message": "Slow Down"}}, "PutObject"
        )
        with pytest.raises(StorageError):
            storage.put("a.png", b"x", "image/png")

    def test_get_reads_body(self):
        storage, client = self._storage()
        client.get_object.return_value = {"Body": MagicMock(read=MagicMock(return_value=b"bytes"))}
        assert storage.get("a.png") == b"bytes"


class TestTaskQueue:
    """工作线程池"""

    def test_runs_work_item(self):
        queue = TaskQueue(max_workers=2)
        calls = []

        item = queue.submit("t1", "sora2", 1, lambda task_type, task_id, resume: calls.append(
            (task_type, task_id, resume)), resume=True)
        queue._executor.shutdown(wait=True)

        assert calls == [("sora2", "t1", True)]
        assert item.status == WorkItemStatus.DONE
        assert queue.is_active("t1") is False

    def test_duplicate_submission_skipped(self):
        queue = TaskQueue(max_workers=2)
        release = threading.Event()
        calls = []

        def work(task_type, task_id, resume):
            calls.append(task_id)
            release.wait(5)

        first = queue.submit("t1", "video", 1, work)
        second = queue.submit("t1", "video", 1, work)
        assert first is second
        assert queue.is_active("t1")
        assert "t1" in queue.active_task_ids()

        release.set()
        queue._executor.shutdown(wait=True)
        assert calls == ["t1"]

    def test_crash_recorded(self):
        queue = TaskQueue(max_workers=1)

        def boom(task_type, task_id, resume):
            raise RuntimeError("worker died")

        item = queue.submit("t1", "runway", 1, boom)
        queue._executor.shutdown(wait=True)

        assert item.status == WorkItemStatus.CRASHED
        assert item.error_message == "worker died"
        stats = queue.get_queue_stats()
        assert stats["total"] == 1
        assert stats["crashed"] == 1

    def test_shutdown_cancels_queued_and_wakes_sleepers(self):
        queue = TaskQueue(max_workers=1)
        started = threading.Event()
        woke = threading.Event()
        calls = []

        def sleeper(task_type, task_id, resume):
            calls.append(task_id)
            started.set()
            queue.sleep(60)
            woke.set()

        queue.submit("t1", "sora2", 1, sleeper)
        queued = queue.submit("t2", "sora2", 1, sleeper)
        assert started.wait(5)

        queue.shutdown(wait=True)

        assert queue.is_shutting_down()
        assert woke.is_set()
        assert calls == ["t1"]
        assert queued.status == WorkItemStatus.QUEUED

    def test_maintenance_callback(self):
        queue = TaskQueue(max_workers=1)
        ran = threading.Event()

        queue.start_maintenance(0.01, ran.set)
        try:
            assert ran.wait(2)
        finally:
            queue.stop_maintenance()
        queue._executor.shutdown(wait=True)
