# database/models/publication_model.py
from sqlalchemy import Column, Integer, Text
from database.db import Base


class Publication(Base):
    __tablename__ = "publications"

    # OpenAlex work number; inserted once, never updated
    id = Column(Integer, primary_key=True, autoincrement=False)

    year = Column(Integer)
    title = Column(Text)
    abstract = Column(Text)
    source = Column(Text)
    language = Column(Text)

    # Comma-joined text lists (legacy on-disk encoding)
    authors = Column(Text)
    ref_ids = Column(Text)
