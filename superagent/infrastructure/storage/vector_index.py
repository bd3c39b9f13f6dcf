import json
from pathlib import Path
from typing import List, Sequence

import aiosqlite
import numpy as np
import structlog

from superagent.domain.ports import VectorEntry, VectorMatch

logger = structlog.get_logger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS vectors (
    id TEXT PRIMARY KEY,
    vector TEXT NOT NULL,
    metadata TEXT NOT NULL
)
"""


class SqliteVectorIndex:
    """Vector index stored in SQLite; vectors are JSON arrays scored with cosine similarity"""

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)

    async def initialize(self):
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(SCHEMA)
            await db.commit()

    async def upsert(self, entries: Sequence[VectorEntry]) -> None:
        rows = [(entry.id, json.dumps(list(entry.vector)), json.dumps(entry.metadata)) for entry in entries]
        async with aiosqlite.connect(self.db_path) as db:
            await db.executemany(
                "INSERT INTO vectors (id, vector, metadata) VALUES (?, ?, ?) "
                "ON CONFLICT(id) DO UPDATE SET vector = excluded.vector, metadata = excluded.metadata",
                rows
            )
            await db.commit()

    async def query(self, vector: Sequence[float], top_k: int) -> List[VectorMatch]:
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute("SELECT id, vector, metadata FROM vectors") as cursor:
                rows = await cursor.fetchall()

        if not rows or top_k <= 0:
            return []

        query_vec = np.asarray(vector, dtype=float)
        query_norm = np.linalg.norm(query_vec)
        if query_norm == 0:
            return []

        matches = []
        for row_id, raw_vector, raw_metadata in rows:
            stored = np.asarray(json.loads(raw_vector), dtype=float)
            if stored.shape != query_vec.shape:
                logger.warning("Skipping vector with mismatched dimension", id=row_id)
                continue
            norm = np.linalg.norm(stored)
            if norm == 0:
                continue
            score = float(np.dot(query_vec, stored) / (query_norm * norm))
            matches.append(VectorMatch(id=row_id, score=score, metadata=json.loads(raw_metadata)))

        matches.sort(key=lambda match: match.score, reverse=True)
        return matches[:top_k]

    async def count(self) -> int:
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute("SELECT COUNT(*) FROM vectors") as cursor:
                (total,) = await cursor.fetchone()
        return total
