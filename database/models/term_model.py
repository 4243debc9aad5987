# database/models/term_model.py
from sqlalchemy import Column, Integer, Text
from database.db import Base


class PubTerms(Base):
    """Terms extracted from one publication's title and abstract."""
    __tablename__ = "pub_terms"

    id = Column(Integer, primary_key=True, autoincrement=False)
    terms = Column(Text)


class PubScopeTerms(Base):
    """A publication's terms restricted to the vocabulary of its scope and year."""
    __tablename__ = "pub_scope_terms"

    id = Column(Integer, primary_key=True, autoincrement=False)
    scope_keywords = Column(Text, primary_key=True)
    year = Column(Integer)
    update_time = Column(Integer)
    terms = Column(Text)


class ScopeTerms(Base):
    """Vocabulary of a scope for one year."""
    __tablename__ = "scope_terms"

    keywords = Column(Text, primary_key=True)
    year = Column(Integer, primary_key=True)
    update_time = Column(Integer)
    terms = Column(Text)
