from datetime import datetime

from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.orm import relationship

from twofactor.database import Base


# Identity row owned by the account layer; the second factor only reads it
class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, index=True)
    username = Column(String, index=True)
    email = Column(String, unique=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    second_factor = relationship(
        "SecondFactorProfile",
        back_populates="user",
        uselist=False,
        cascade="all, delete-orphan",
    )
