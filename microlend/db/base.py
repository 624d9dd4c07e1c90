from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    # server-generated columns (created_at, updated_at onupdate) come back via
    # RETURNING so they are readable after flush without a lazy load
    __mapper_args__ = {"eager_defaults": True}
