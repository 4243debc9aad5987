# database/models/scope_model.py
from sqlalchemy import Column, Integer, Text
from database.db import Base


class ResearchScopeRecord(Base):
    __tablename__ = "research_scopes"

    keywords = Column(Text, primary_key=True)   # "k1a,k1b;k2a,k2b"
    combinations = Column(Text)                 # "a&b,a&c,..."
    update_time = Column(Integer)
