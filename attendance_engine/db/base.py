# attendance_engine/db/base.py
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy ORM models of the attendance engine.

    Model modules import this class; `attendance_engine.db.session` imports
    every model module so Base.metadata is complete before create_all.
    """
    pass
