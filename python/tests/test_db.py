"""Database smoke tests.

Verifies the test engine opens sessions and carries the full schema.
"""

from sqlalchemy import inspect, text
from sqlalchemy.orm import Session

from doggo.db.models import Base
from doggo.db.session import session_scope


class TestDatabaseConnectivity:
    def test_session_opens_and_executes_query(self, db_session: Session):
        row = db_session.execute(text("SELECT 1 AS value")).fetchone()

        assert row is not None
        assert row[0] == 1

    def test_schema_created(self, engine):
        tables = set(inspect(engine).get_table_names())

        assert tables == set(Base.metadata.tables)
        assert {"agents", "conversations", "messages", "attachments", "usage_events"} <= tables

    def test_sessions_share_the_in_memory_database(self, db_session: Session, agent):
        """A second session sees rows committed by the first."""
        with session_scope() as other:
            assert other.execute(text("SELECT COUNT(*) FROM agents")).scalar() == 1
