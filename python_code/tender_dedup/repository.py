"""
Read access to the relational tender store.

Tenders are stored with table-per-type inheritance: a `BaseTender` parent row
holds the source, and one child table per source holds the tender number. The
dedup cache only needs the list of tender numbers for each source, so each
query touches a single child table.
"""

from typing import Dict, List, Mapping, Optional

from sqlalchemy import Column, ForeignKey, MetaData, String, Table, select
from sqlalchemy.engine import Engine

metadata = MetaData()

base_tender = Table(
    "BaseTender",
    metadata,
    Column("TenderID", String(36), primary_key=True),
    Column("Source", String(100), nullable=False),
)


def _tender_table(name: str) -> Table:
    return Table(
        name,
        metadata,
        Column("TenderID", String(36), ForeignKey("BaseTender.TenderID"), primary_key=True),
        Column("TenderNumber", String(255), nullable=False),
    )


# Source name (as it appears in the message `source` field) -> child table.
SOURCE_TABLES: Dict[str, Table] = {
    "SARS": _tender_table("SarsTender"),
    "eTenders": _tender_table("eTender"),
    "Eskom": _tender_table("EskomTender"),
    "Transnet": _tender_table("TransnetTender"),
    "SANRAL": _tender_table("SanralTender"),
}


class TenderRepository:
    """
    Lists the tender numbers already ingested for each known source.

    Every call checks out its own connection from the engine's pool, so calls
    may run concurrently from different threads without sharing a session.
    """

    def __init__(self, engine: Engine, source_tables: Optional[Mapping[str, Table]] = None):
        self._engine = engine
        self._source_tables = dict(source_tables if source_tables is not None else SOURCE_TABLES)

    def known_sources(self) -> List[str]:
        return list(self._source_tables)

    def list_known_tender_numbers(self, source: str) -> List[str]:
        """
        Returns every non-null tender number stored for `source`.

        Raises:
            KeyError: If `source` has no mapped table.
            sqlalchemy.exc.SQLAlchemyError: If the query fails.
        """
        table = self._source_tables[source]
        stmt = select(table.c.TenderNumber).where(table.c.TenderNumber.is_not(None))
        with self._engine.connect() as conn:
            return [row[0] for row in conn.execute(stmt)]
