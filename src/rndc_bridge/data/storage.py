import sqlite3
from pathlib import Path


class Database:
    """
    Thin wrapper over sqlite3 for batch and query-history persistence.
    Keeps schema creation in one place; the tracker owns the queries.
    """

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    def _connect(self):
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_schema(self):
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS batches (
                    id TEXT PRIMARY KEY,
                    type TEXT NOT NULL,
                    total_records INTEGER NOT NULL,
                    success_count INTEGER NOT NULL DEFAULT 0,
                    error_count INTEGER NOT NULL DEFAULT 0,
                    pending_count INTEGER NOT NULL,
                    status TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    completed_at TEXT
                );
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS submissions (
                    id TEXT PRIMARY KEY,
                    batch_id TEXT NOT NULL,
                    kind TEXT NOT NULL,
                    row_index INTEGER NOT NULL,
                    row_key TEXT,
                    fields_json TEXT NOT NULL,
                    xml_request TEXT NOT NULL,
                    xml_query_request TEXT,
                    query_response TEXT,
                    status TEXT NOT NULL,
                    response_code TEXT,
                    response_message TEXT,
                    xml_response TEXT,
                    created_at TEXT NOT NULL,
                    processed_at TEXT,
                    FOREIGN KEY (batch_id) REFERENCES batches(id)
                );
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS queries (
                    id TEXT PRIMARY KEY,
                    query_type TEXT NOT NULL,
                    query_name TEXT NOT NULL,
                    num_nit_empresa TEXT,
                    num_id_tercero TEXT,
                    xml_request TEXT NOT NULL,
                    xml_response TEXT,
                    response_data TEXT,
                    status TEXT NOT NULL,
                    response_code TEXT,
                    response_message TEXT,
                    created_at TEXT NOT NULL
                );
                """
            )
            cur.execute("CREATE INDEX IF NOT EXISTS idx_submissions_batch ON submissions(batch_id, row_index);")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_batches_type ON batches(type, created_at);")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_queries_type ON queries(query_type, created_at);")
            conn.commit()
