import os
import aiosqlite
from dataclasses import dataclass
from typing import Optional

from ..errors import PersistenceError


CREATE_SQL = """
CREATE TABLE IF NOT EXISTS observations (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  metric TEXT NOT NULL,
  value REAL,
  observed_at INTEGER NOT NULL,
  source TEXT NOT NULL
);
"""

CREATE_INDEX_SQL = """
CREATE INDEX IF NOT EXISTS idx_observations_metric
ON observations (metric, id);
"""

# Latest row for a metric; rows are append-only so the max id is the newest.
LATEST_ID_SQL = "SELECT MAX(id) FROM observations WHERE metric=?"


@dataclass
class Observation:
  id: int
  metric: str
  value: Optional[float]
  observed_at: int  # ms
  source: str


def _row_to_observation(row) -> Observation:
  return Observation(
    id=row["id"],
    metric=row["metric"],
    value=row["value"],
    observed_at=row["observed_at"],
    source=row["source"],
  )


class SQLiteSnapshotStore:
  """
  Append-only history of scalar observations.

  Rows are never updated. ``insert`` is a compare-and-swap on the latest row
  id so two processes racing on the same transition write it once.
  """

  def __init__(self, path: str):
    self.path = path

  async def init(self) -> None:
    try:
      directory = os.path.dirname(self.path)
      if directory:
        os.makedirs(directory, exist_ok=True)
      async with aiosqlite.connect(self.path) as db:
        await db.execute(CREATE_SQL)
        await db.execute(CREATE_INDEX_SQL)
        await db.commit()
    except (aiosqlite.Error, OSError) as e:
      raise PersistenceError(f"Could not initialise snapshot store at {self.path}: {e}") from e

  async def get_latest(self, metric: str) -> Optional[Observation]:
    try:
      async with aiosqlite.connect(self.path) as db:
        db.row_factory = aiosqlite.Row
        cur = await db.execute(
          """
          SELECT id, metric, value, observed_at, source
          FROM observations
          WHERE metric=?
          ORDER BY id DESC
          LIMIT 1;
          """,
          (metric,),
        )
        row = await cur.fetchone()
        return _row_to_observation(row) if row else None
    except aiosqlite.Error as e:
      raise PersistenceError(f"get_latest({metric}) failed: {e}") from e

  async def get_latest_different(
    self,
    metric: str,
    excluding_value: Optional[float],
  ) -> Optional[Observation]:
    """
    Most recent observation whose value differs from ``excluding_value``.

    ``IS NOT`` keeps the comparison NULL-safe.
    """
    try:
      async with aiosqlite.connect(self.path) as db:
        db.row_factory = aiosqlite.Row
        cur = await db.execute(
          """
          SELECT id, metric, value, observed_at, source
          FROM observations
          WHERE metric=? AND value IS NOT ?
          ORDER BY id DESC
          LIMIT 1;
          """,
          (metric, excluding_value),
        )
        row = await cur.fetchone()
        return _row_to_observation(row) if row else None
    except aiosqlite.Error as e:
      raise PersistenceError(f"get_latest_different({metric}) failed: {e}") from e

  async def insert(
    self,
    metric: str,
    value: Optional[float],
    observed_at: int,
    source: str = "live",
    expected_last_id: Optional[int] = None,
  ) -> bool:
    """
    Append an observation if the latest row for ``metric`` is still ``expected_last_id``.

    Pass ``expected_last_id=None`` when no row is expected to exist yet.

    Returns:
        True if the row was written, False if another writer got there first
    """
    try:
      async with aiosqlite.connect(self.path) as db:
        cur = await db.execute(
          f"""
          INSERT INTO observations (metric, value, observed_at, source)
          SELECT ?, ?, ?, ?
          WHERE ({LATEST_ID_SQL}) IS ?;
          """,
          (metric, value, observed_at, source, metric, expected_last_id),
        )
        await db.commit()
        return cur.rowcount == 1
    except aiosqlite.Error as e:
      raise PersistenceError(f"insert({metric}) failed: {e}") from e

  async def history(self, metric: str, limit: int = 50) -> list[Observation]:
    """Latest ``limit`` observations for ``metric``, oldest first."""
    try:
      async with aiosqlite.connect(self.path) as db:
        db.row_factory = aiosqlite.Row
        cur = await db.execute(
          """
          SELECT id, metric, value, observed_at, source
          FROM observations
          WHERE metric=?
          ORDER BY id DESC
          LIMIT ?;
          """,
          (metric, limit),
        )
        rows = await cur.fetchall()
        return [_row_to_observation(r) for r in reversed(rows)]
    except aiosqlite.Error as e:
      raise PersistenceError(f"history({metric}) failed: {e}") from e

  async def get_distinct_metrics(self) -> list[str]:
    """
    Get distinct metric names that have at least one observation.

    Returns:
        List of metric names
    """
    try:
      async with aiosqlite.connect(self.path) as db:
        cur = await db.execute(
          "SELECT DISTINCT metric FROM observations ORDER BY metric"
        )
        rows = await cur.fetchall()
        return [row[0] for row in rows]
    except aiosqlite.Error as e:
      raise PersistenceError(f"get_distinct_metrics failed: {e}") from e
