import json
import logging
from typing import Optional

import psycopg
from psycopg import sql
from psycopg.conninfo import make_conninfo

from image_extractor.adapters.job_state_document import from_document, to_document
from image_extractor.application.ports import JobStateRepositoryPort
from image_extractor.domain.errors import StatePersistenceError
from image_extractor.domain.job_models import JobState

logger = logging.getLogger(__name__)


def build_conninfo(host: str, port: int, user: str, password: str, dbname: str) -> str:
    """接続文字列を組み立てます。"""

    return make_conninfo(host=host, port=port, user=user, password=password, dbname=dbname, connect_timeout=10)


class PostgresJobStateRepository(JobStateRepositoryPort):
    """PostgreSQL の JSONB テーブルをジョブIDキーのドキュメントストアとして使うアダプターです。"""

    def __init__(self, dsn: str, collection: str = "job_states") -> None:
        self._dsn = dsn
        self._table = sql.Identifier(collection)

    def ensure_schema(self) -> None:
        """テーブルがなければ作成します。"""

        query = sql.SQL(
            """
            CREATE TABLE IF NOT EXISTS {table} (
                job_id TEXT PRIMARY KEY,
                document JSONB NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            )
            """
        ).format(table=self._table)

        try:
            with psycopg.connect(self._dsn) as conn:
                with conn.cursor() as cur:
                    cur.execute(query)
                conn.commit()
        except psycopg.Error as ex:
            raise StatePersistenceError("ジョブ状態テーブルを作成できません: {0}".format(ex)) from ex

    def get_job_state(self, job_id: str) -> Optional[JobState]:
        """ジョブ状態を取得します。"""

        query = sql.SQL("SELECT document FROM {table} WHERE job_id = %s").format(table=self._table)

        try:
            with psycopg.connect(self._dsn) as conn:
                with conn.cursor() as cur:
                    cur.execute(query, (job_id,))
                    row = cur.fetchone()
        except psycopg.Error as ex:
            raise StatePersistenceError("ジョブ状態を取得できません: job_id={0}: {1}".format(job_id, ex)) from ex

        if row is None:
            return None

        document = row[0]
        if isinstance(document, str):
            document = json.loads(document)

        return from_document(document)

    def save_job_state(self, state: JobState) -> None:
        """ジョブ状態を UPSERT します。同じジョブIDは上書きされます。"""

        query = sql.SQL(
            """
            INSERT INTO {table} (job_id, document, updated_at)
            VALUES (%s, %s::jsonb, NOW())
            ON CONFLICT (job_id)
            DO UPDATE SET
                document = EXCLUDED.document,
                updated_at = NOW()
            """
        ).format(table=self._table)

        document_json_text = json.dumps(to_document(state))

        try:
            with psycopg.connect(self._dsn) as conn:
                with conn.cursor() as cur:
                    cur.execute(query, (state.job_id, document_json_text))
                conn.commit()
        except psycopg.Error as ex:
            raise StatePersistenceError(
                "ジョブ状態を保存できません: job_id={0}: {1}".format(state.job_id, ex)
            ) from ex

        logger.debug(
            "saved job state job_id=%s status=%s step=%s block=%s/%s",
            state.job_id,
            state.status.value,
            state.current_step.name,
            state.current_block,
            state.total_blocks,
        )
