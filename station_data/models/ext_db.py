"""Index tables describing the external data sets of a root database"""

from sqlalchemy import Column, Integer, String, DateTime, Boolean, Index
from station_data.database import Base


class ExtDbRecord(Base):
    """One imported or generic data set"""

    __tablename__ = "ext_db"

    ext_db_key = Column(Integer, primary_key=True, autoincrement=False)
    db_type = Column(Integer, nullable=False)
    db_date = Column(DateTime, nullable=True)  # content date, not import time
    version = Column(Integer, nullable=False, default=0)
    id = Column(String(255), nullable=False, default="")
    name = Column(String(255), nullable=False, default="")  # '' means unnamed
    deleted = Column(Boolean, nullable=False, default=False)
    locked = Column(Boolean, nullable=False, default=False)
    is_download = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        Index("idx_ext_db_type", "db_type"),
    )


class ExtDbKeySequence(Base):
    """Single-row counter handing out data set keys"""

    __tablename__ = "ext_db_key_sequence"

    ext_db_key = Column(Integer, primary_key=True, autoincrement=False)
