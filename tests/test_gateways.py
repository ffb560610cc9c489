"""Tests for the blob store and job queue adapters."""

from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError
from redis.exceptions import ConnectionError as RedisConnectionError
from rq.exceptions import NoSuchJobError
from rq.job import JobStatus

from app.errors import GatewayUnavailableError
from app.services.blob_store import LocalBlobStore, S3BlobStore, build_key
from app.services.job_queue import PROCESS_JOB_FUNC, RQJobQueue, job_id_for


def _client_error(code: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, "Operation")


class TestBuildKey:
    def test_key_layout(self):
        key = build_key("project-1", "note.mp3")
        scope, name = key.split("/")
        assert scope == "project-1"
        assert name.endswith("-note.mp3")
        assert len(name) == 36 + 1 + len("note.mp3")

    def test_keys_are_unique(self):
        assert build_key("p", "a.mp3") != build_key("p", "a.mp3")

    def test_directory_components_are_dropped(self):
        assert "/../" not in build_key("p", "../../etc/passwd")


class TestS3BlobStore:
    """Tests for the S3 adapter with a mocked client."""

    def test_upload(self):
        client = MagicMock()
        store = S3BlobStore("audio", client=client)

        key = store.upload("project-1", "note.mp3", b"data", "audio/mpeg")

        assert key.startswith("project-1/")
        client.put_object.assert_called_once_with(Bucket="audio", Key=key, Body=b"data", ContentType="audio/mpeg")

    def test_upload_failure(self):
        client = MagicMock()
        client.put_object.side_effect = _client_error("InternalError")
        store = S3BlobStore("audio", client=client)

        with pytest.raises(GatewayUnavailableError):
            store.upload("project-1", "note.mp3", b"data", "audio/mpeg")

    def test_delete_missing_key_is_tolerated(self):
        client = MagicMock()
        client.delete_object.side_effect = _client_error("NoSuchKey")
        S3BlobStore("audio", client=client).delete("project-1/missing.mp3")

    def test_delete_failure(self):
        client = MagicMock()
        client.delete_object.side_effect = _client_error("AccessDenied")
        with pytest.raises(GatewayUnavailableError):
            S3BlobStore("audio", client=client).delete("project-1/a.mp3")

    def test_download(self):
        client = MagicMock()
        client.get_object.return_value = {"Body": MagicMock(read=MagicMock(return_value=b"audio"))}
        assert S3BlobStore("audio", client=client).download("k") == b"audio"


class TestLocalBlobStore:
    """Tests for the local disk adapter."""

    def test_round_trip(self, tmp_path):
        store = LocalBlobStore(str(tmp_path))
        key = store.upload("project-1", "note.mp3", b"data", "audio/mpeg")
        assert (tmp_path / key).read_bytes() == b"data"
        assert store.download(key) == b"data"

        store.delete(key)
        assert not (tmp_path / key).exists()

    def test_delete_missing_is_tolerated(self, tmp_path):
        LocalBlobStore(str(tmp_path)).delete("project-1/nothing.mp3")

    def test_delete_failure(self, tmp_path):
        """An OS error while removing a blob surfaces as a gateway error."""
        (tmp_path / "project-1" / "folder.mp3").mkdir(parents=True)
        with pytest.raises(GatewayUnavailableError):
            LocalBlobStore(str(tmp_path)).delete("project-1/folder.mp3")

    def test_rejects_escaping_keys(self, tmp_path):
        with pytest.raises(GatewayUnavailableError):
            LocalBlobStore(str(tmp_path)).download("../outside.mp3")


class TestRQJobQueue:
    """Tests for the RQ adapter with mocked queue and job lookups."""

    @patch("app.services.job_queue.Queue")
    def test_enqueue_uses_message_job_id(self, mock_queue_cls):
        queue = mock_queue_cls.return_value
        job_queue = RQJobQueue(MagicMock(), "audio-processing", job_timeout=60)

        job_queue.enqueue_processing("m-1", "project-1")

        args, kwargs = queue.enqueue.call_args
        assert args == (PROCESS_JOB_FUNC, "m-1", "project-1")
        assert kwargs["job_id"] == "audio-m-1"
        assert kwargs["job_timeout"] == 60

    @patch("app.services.job_queue.Queue")
    def test_enqueue_redis_error(self, mock_queue_cls):
        mock_queue_cls.return_value.enqueue.side_effect = RedisConnectionError("refused")
        job_queue = RQJobQueue(MagicMock(), "audio-processing")

        with pytest.raises(GatewayUnavailableError):
            job_queue.enqueue_processing("m-1", "project-1")

    @patch("app.services.job_queue.Job")
    @patch("app.services.job_queue.Queue")
    def test_retry_requeues_failed_job(self, mock_queue_cls, mock_job_cls):
        job = MagicMock()
        job.get_status.return_value = JobStatus.FAILED
        mock_job_cls.fetch.return_value = job

        RQJobQueue(MagicMock(), "audio-processing").retry("m-1", "project-1")

        job.requeue.assert_called_once()
        mock_queue_cls.return_value.enqueue.assert_not_called()

    @patch("app.services.job_queue.Job")
    @patch("app.services.job_queue.Queue")
    def test_retry_leaves_running_job(self, mock_queue_cls, mock_job_cls):
        job = MagicMock()
        job.get_status.return_value = JobStatus.STARTED
        mock_job_cls.fetch.return_value = job

        RQJobQueue(MagicMock(), "audio-processing").retry("m-1", "project-1")

        job.requeue.assert_not_called()
        mock_queue_cls.return_value.enqueue.assert_not_called()

    @patch("app.services.job_queue.Job")
    @patch("app.services.job_queue.Queue")
    def test_retry_expired_job_enqueues_again(self, mock_queue_cls, mock_job_cls):
        mock_job_cls.fetch.side_effect = NoSuchJobError("gone")

        RQJobQueue(MagicMock(), "audio-processing").retry("m-1", "project-1")

        assert mock_queue_cls.return_value.enqueue.call_args.kwargs["job_id"] == job_id_for("m-1")

    @patch("app.services.job_queue.Job")
    @patch("app.services.job_queue.Queue")
    def test_retry_finished_job_enqueues_again(self, mock_queue_cls, mock_job_cls):
        job = MagicMock()
        job.get_status.return_value = JobStatus.FINISHED
        mock_job_cls.fetch.return_value = job

        RQJobQueue(MagicMock(), "audio-processing").retry("m-1", "project-1")

        mock_queue_cls.return_value.enqueue.assert_called_once()

    @patch("app.services.job_queue.Job")
    @patch("app.services.job_queue.Queue")
    def test_retry_redis_error(self, mock_queue_cls, mock_job_cls):
        mock_job_cls.fetch.side_effect = RedisConnectionError("refused")

        with pytest.raises(GatewayUnavailableError):
            RQJobQueue(MagicMock(), "audio-processing").retry("m-1", "project-1")
