import json
from unittest.mock import MagicMock, patch

import psycopg
import pytest

from image_extractor.adapters.job_state_document import to_document
from image_extractor.adapters.postgres_job_state_repository import PostgresJobStateRepository, build_conninfo
from image_extractor.domain.errors import StatePersistenceError
from image_extractor.domain.job_models import JobState, JobStatus, ProcessingStep


def _mock_connection(fetchone=None):
    conn = MagicMock()
    cursor = MagicMock()
    cursor.fetchone.return_value = fetchone
    conn.__enter__.return_value = conn
    conn.cursor.return_value.__enter__.return_value = cursor
    return conn, cursor


def test_build_conninfo_contains_all_parts():
    conninfo = build_conninfo(host="db", port=5433, user="worker", password="secret", dbname="jobs")

    for part in ["host=db", "port=5433", "user=worker", "password=secret", "dbname=jobs", "connect_timeout=10"]:
        assert part in conninfo


@patch("image_extractor.adapters.postgres_job_state_repository.psycopg.connect")
def test_save_upserts_json_document(mock_connect):
    conn, cursor = _mock_connection()
    mock_connect.return_value = conn
    state = JobState(job_id="vid", status=JobStatus.RUNNING, current_step=ProcessingStep.EXTRACTING, current_block=2)

    PostgresJobStateRepository("dbname=jobs", collection="job_states").save_job_state(state)

    mock_connect.assert_called_once_with("dbname=jobs")
    query, params = cursor.execute.call_args.args
    assert params[0] == "vid"
    assert json.loads(params[1]) == to_document(state)
    conn.commit.assert_called_once()


@patch("image_extractor.adapters.postgres_job_state_repository.psycopg.connect")
def test_get_returns_none_when_missing(mock_connect):
    conn, cursor = _mock_connection(fetchone=None)
    mock_connect.return_value = conn

    assert PostgresJobStateRepository("dbname=jobs").get_job_state("vid") is None
    assert cursor.execute.call_args.args[1] == ("vid",)


@pytest.mark.parametrize("as_text", [True, False])
@patch("image_extractor.adapters.postgres_job_state_repository.psycopg.connect")
def test_get_restores_document(mock_connect, as_text):
    state = JobState(job_id="vid", status=JobStatus.INTERRUPTED, current_step=ProcessingStep.ZIPPING, total_blocks=4)
    document = to_document(state)
    conn, _ = _mock_connection(fetchone=(json.dumps(document) if as_text else document,))
    mock_connect.return_value = conn

    restored = PostgresJobStateRepository("dbname=jobs").get_job_state("vid")

    assert restored == state


@patch("image_extractor.adapters.postgres_job_state_repository.psycopg.connect")
def test_database_errors_are_wrapped(mock_connect):
    mock_connect.side_effect = psycopg.OperationalError("connection refused")
    repository = PostgresJobStateRepository("dbname=jobs")

    with pytest.raises(StatePersistenceError):
        repository.get_job_state("vid")

    with pytest.raises(StatePersistenceError):
        repository.save_job_state(JobState(job_id="vid"))

    with pytest.raises(StatePersistenceError):
        repository.ensure_schema()
