from schemeresolver.db.base import Base
from sqlalchemy import Column, Integer, String, DateTime, Index, ForeignKey
import datetime


class AlleleDesignationModel(Base):
    """
    Allele call for an isolate at a locus.

    Several rows for the same isolate and locus mean the typing at that locus
    is ambiguous.
    """

    __tablename__ = "allele_designations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    isolate_id = Column(Integer, nullable=False)
    locus = Column(
        String(255), ForeignKey("loci.id", ondelete="CASCADE"), nullable=False
    )
    allele_id = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default="confirmed")
    date_entered = Column(
        DateTime, default=lambda: datetime.datetime.now(datetime.timezone.utc)
    )

    __table_args__ = (
        Index("ix_allele_designations_isolate_locus", "isolate_id", "locus"),
    )
