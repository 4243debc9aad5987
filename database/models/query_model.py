# database/models/query_model.py
from sqlalchemy import Column, Integer, Text
from database.db import Base


class OpenAlexQuery(Base):
    """
    Result of the last successful fetch for one combination and year.
    Overwritten, never appended, when the combination is fetched again.
    """
    __tablename__ = "openalex_queries"

    combination = Column(Text, primary_key=True)   # "ai&health"
    year = Column(Integer, primary_key=True)
    update_time = Column(Integer)                   # unix seconds

    ids = Column(Text)       # comma-joined publication ids
    ref_ids = Column(Text)   # comma-joined union of the publications' references


class OpenAlexToken(Base):
    """
    Marks that a fetch for (combination, year) was attempted, whether or not
    it returned any publication.
    """
    __tablename__ = "openalex_tokens"

    combination = Column(Text, primary_key=True)
    year = Column(Integer, primary_key=True)
    update_time = Column(Integer)
