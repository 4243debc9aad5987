# database/models/analysis_model.py
from sqlalchemy import JSON, Column, Integer, LargeBinary, Text
from database.db import Base


class ScopeBiterms(Base):
    __tablename__ = "scope_biterms"

    keywords = Column(Text, primary_key=True)
    year = Column(Integer, primary_key=True)
    update_time = Column(Integer)

    # {"term_a&term_b": weight}
    weights = Column(JSON, nullable=False, default=dict)


class ScopeCandidates(Base):
    __tablename__ = "scope_candidates"

    keywords = Column(Text, primary_key=True)
    year = Column(Integer, primary_key=True)
    update_time = Column(Integer)

    # Biterms ordered by descending weight
    candidates = Column(JSON, nullable=False, default=list)


class ScopeTopics(Base):
    __tablename__ = "scope_topics"

    keywords = Column(Text, primary_key=True)
    year = Column(Integer, primary_key=True)
    update_time = Column(Integer)

    # [[biterm, ...], ...]
    topics = Column(JSON, nullable=False, default=list)


class TimeSeries(Base):
    """Per-publication feature matrices, stored as opaque numpy blobs."""
    __tablename__ = "time_series"

    keywords = Column(Text, primary_key=True)
    year = Column(Integer, primary_key=True)
    id = Column(Integer, primary_key=True, autoincrement=False)
    update_time = Column(Integer)

    inputs = Column(LargeBinary, nullable=False)
    targets = Column(LargeBinary, nullable=False)


class Prediction(Base):
    __tablename__ = "predictions"

    keywords = Column(Text, primary_key=True)
    year = Column(Integer, primary_key=True)
    id = Column(Integer, primary_key=True, autoincrement=False)
    update_time = Column(Integer)

    inputs = Column(LargeBinary, nullable=False)
    predicted = Column(LargeBinary, nullable=False)


class TaskStep(Base):
    """Marks a derived-pipeline step (one task, one year) as computed."""
    __tablename__ = "task_steps"

    keywords = Column(Text, primary_key=True)
    task = Column(Text, primary_key=True)
    year = Column(Integer, primary_key=True)
    update_time = Column(Integer)
