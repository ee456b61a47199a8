from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


# Import all models so that Base.metadata.create_all picks them up.
from app.models.reference import Garment, UserPhoto  # noqa: E402, F401
from app.models.job import TryOnJob  # noqa: E402, F401
