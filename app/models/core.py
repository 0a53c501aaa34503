"""
Core reference models.

- Payer: insurance payers identified by the N1*PR identification code

Models inherit from Base and TimestampMixin, providing automatic
created_at and updated_at timestamps.
"""
from sqlalchemy import Column, String, Integer, JSON
from sqlalchemy.orm import relationship

from app.config.database import Base, TimestampMixin


class Payer(Base, TimestampMixin):
    """
    Insurance payer model.

    Payers are created on first sight of an ERA from them and are referenced
    by claims and ERA files.

    Attributes:
        payer_id: Payer identification code (N1*PR NM104, or TRN03 when absent)
        name: Payer name as sent on the remittance
        payer_type: Free-form classification (Medicare, Medicaid, Commercial, ...)
        address: Last known address from the N3/N4 segments
    """

    __tablename__ = "payers"

    id = Column(Integer, primary_key=True, index=True)
    payer_id = Column(String(80), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    payer_type = Column(String(50))
    address = Column(JSON)

    claims = relationship("Claim", back_populates="payer")
    era_files = relationship("EraFile", back_populates="payer")
