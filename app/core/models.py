import uuid

from sqlalchemy import (
    Column,
    ForeignKey,
    String,
    Boolean,
    TIMESTAMP,
    Text,
    JSON,
    Uuid,
    UniqueConstraint,
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from app.core.database import Base


# =========================
# Organization
# =========================
class Organization(Base):
    __tablename__ = "organizations"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False)

    created_at = Column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    users = relationship("User", back_populates="organization")


# =========================
# User
# =========================
class User(Base):
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)

    email = Column(String, nullable=False, unique=True, index=True)
    # workspace_admin / data_admin / querier / viewer
    role = Column(String, nullable=False, server_default="viewer")

    organization_id = Column(
        Uuid,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )

    created_at = Column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    organization = relationship("Organization", back_populates="users")


# =========================
# DataSource (external warehouse connection)
# =========================
class DataSource(Base):
    """
    A configured warehouse connection.
    Identified by name + env inside an organization, credentials live
    behind secret_id and are never stored here.
    """

    __tablename__ = "data_sources"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)

    name = Column(String, nullable=False)
    type = Column(String, nullable=False)  # postgres / redshift / supabase
    env = Column(String, nullable=False, server_default="dev")
    secret_id = Column(String, nullable=False)

    organization_id = Column(
        Uuid,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    created_at = Column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at = Column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    deleted_at = Column(TIMESTAMP(timezone=True), nullable=True)

    datasets = relationship("Dataset", back_populates="data_source")


# =========================
# Dataset (CATALOG LAYER)
# =========================
class Dataset(Base):
    """
    Catalog row for one declared table.

    Natural key is (database_name, data_source_id). Rows are never removed,
    a soft-deleted row comes back through the deploy upsert with its id intact.
    """

    __tablename__ = "datasets"
    __table_args__ = (
        UniqueConstraint(
            "database_name", "data_source_id", name="uq_datasets_database_name_source"
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)

    name = Column(String, nullable=False)
    database_name = Column(String, nullable=False)
    schema = Column(String, nullable=False)

    data_source_id = Column(
        Uuid,
        ForeignKey("data_sources.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    organization_id = Column(
        Uuid,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    type = Column(String, nullable=False, server_default="view")
    definition = Column(Text, nullable=False, server_default="")
    when_to_use = Column(Text)
    when_not_to_use = Column(Text)
    enabled = Column(Boolean, nullable=False, default=True)
    imported = Column(Boolean, nullable=False, default=False)

    model = Column(String)
    yml_file = Column(Text)
    database_identifier = Column(String)
    entity_relationships = Column(JSON, nullable=True)

    created_by = Column(Uuid, nullable=False)
    updated_by = Column(Uuid, nullable=False)

    created_at = Column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at = Column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    deleted_at = Column(TIMESTAMP(timezone=True), nullable=True)

    # Relationships
    data_source = relationship("DataSource", back_populates="datasets")
    columns = relationship(
        "DatasetColumn",
        back_populates="dataset",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class DatasetColumn(Base):
    __tablename__ = "dataset_columns"
    __table_args__ = (
        UniqueConstraint("dataset_id", "name", name="uq_dataset_columns_dataset_name"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)

    dataset_id = Column(
        Uuid,
        ForeignKey("datasets.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    name = Column(String, nullable=False)
    type = Column(String, nullable=False, server_default="text")
    dim_type = Column(String)
    description = Column(Text)
    semantic_type = Column(String)
    expr = Column(Text)
    nullable = Column(Boolean, nullable=False, default=True)
    stored_values = Column(Boolean, nullable=False, default=False)

    created_at = Column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at = Column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    deleted_at = Column(TIMESTAMP(timezone=True), nullable=True)

    dataset = relationship("Dataset", back_populates="columns")


# =========================
# DatasetPermission
# =========================
class DatasetPermission(Base):
    __tablename__ = "dataset_permissions"
    __table_args__ = (
        UniqueConstraint(
            "dataset_id",
            "permission_id",
            "permission_type",
            name="uq_dataset_permissions_target",
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)

    dataset_id = Column(
        Uuid,
        ForeignKey("datasets.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # id of the grantee, permission_type says what kind of grantee it is
    permission_id = Column(Uuid, nullable=False, index=True)
    permission_type = Column(String, nullable=False, server_default="user")

    organization_id = Column(
        Uuid,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )

    created_at = Column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at = Column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    deleted_at = Column(TIMESTAMP(timezone=True), nullable=True)
