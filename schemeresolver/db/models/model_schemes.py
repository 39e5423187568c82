from schemeresolver.db.base import Base
from sqlalchemy.orm import relationship
from sqlalchemy import (
    Column,
    Integer,
    String,
    Boolean,
    Text,
    ForeignKey,
)


class SchemeModel(Base):
    """
    A typing scheme: an ordered set of loci whose allele combinations
    (profiles) map to field values such as a sequence type.

    Profiles live in ``dbase_table``; when ``dbase_name`` is set that table is
    in a separate scheme database reached with the ``dbase_*`` attributes.
    """

    __tablename__ = "schemes"

    id = Column(Integer, primary_key=True, autoincrement=False)
    description = Column(String(255), nullable=False, default="")
    dbase_driver = Column(String(50), nullable=True)
    dbase_name = Column(String(512), nullable=True)
    dbase_host = Column(String(255), nullable=True)
    dbase_port = Column(Integer, nullable=True)
    dbase_user = Column(String(255), nullable=True)
    dbase_password = Column(String(255), nullable=True)
    dbase_table = Column(String(255), nullable=True)
    allow_missing_loci = Column(Boolean, nullable=False, default=False)
    max_missing = Column(Integer, nullable=True)
    display_order = Column(Integer, nullable=True)

    # Relationships
    members = relationship(
        "SchemeMember",
        back_populates="scheme",
        order_by="[SchemeMember.field_order, SchemeMember.locus]",
        cascade="all, delete-orphan",
    )
    fields = relationship(
        "SchemeField",
        back_populates="scheme",
        order_by="SchemeField.field_order",
        cascade="all, delete-orphan",
    )


class LocusModel(Base):
    __tablename__ = "loci"

    id = Column(String(255), primary_key=True)
    allele_id_format = Column(String(20), nullable=False, default="text")
    common_name = Column(String(255), nullable=True)


class SchemeMember(Base):
    """Membership of a locus in a scheme, with its profile column alias."""

    __tablename__ = "scheme_members"

    scheme_id = Column(
        Integer,
        ForeignKey("schemes.id", ondelete="CASCADE"),
        primary_key=True,
    )
    locus = Column(
        String(255),
        ForeignKey("loci.id", ondelete="CASCADE"),
        primary_key=True,
    )
    profile_name = Column(String(255), nullable=True)
    field_order = Column(Integer, nullable=True)

    scheme = relationship("SchemeModel", back_populates="members")
    locus_info = relationship("LocusModel")


class SchemeField(Base):
    __tablename__ = "scheme_fields"

    scheme_id = Column(
        Integer,
        ForeignKey("schemes.id", ondelete="CASCADE"),
        primary_key=True,
    )
    field = Column(String(255), primary_key=True)
    type = Column(String(20), nullable=False, default="text")
    primary_key = Column(Boolean, nullable=False, default=False)
    field_order = Column(Integer, nullable=True)
    description = Column(Text, nullable=True)

    scheme = relationship("SchemeModel", back_populates="fields")
