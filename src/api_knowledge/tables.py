"""
SQLAlchemy tables mirroring schema.sql.

Column types are portable: UUID / JSONB / TEXT[] on Postgres, their generic
equivalents elsewhere (SQLite in tests). Enumerated text columns are checked on
assignment against the vocabularies below.
"""
from __future__ import annotations

import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import ARRAY, JSONB
from sqlalchemy.orm import declarative_base, relationship, validates
from sqlalchemy.sql import func

Base = declarative_base()

JSONType = JSON().with_variant(JSONB(), "postgresql")
TextArray = JSON().with_variant(ARRAY(Text), "postgresql")

AUTH_TYPES = {"api_key", "oauth", "bearer", "basic", "none"}
HTTP_METHODS = {"GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"}
RATE_LIMIT_PERIODS = {"second", "minute", "hour", "day", "month"}
PAGINATION_TYPES = {"offset", "cursor", "page", "none"}
PARAM_TYPES = {"query", "path", "body", "header", "cookie"}
DATA_TYPES = {"string", "integer", "number", "boolean", "array", "object"}
QUIRK_TYPES = {"time", "currency", "encoding", "pagination", "rate_limit", "custom"}
SEVERITIES = {"low", "medium", "high", "critical"}
DISCOVERED_BY = {"auto", "manual", "user"}
RELATIONSHIP_TYPES = {"integrates_with", "alternative_to", "complements", "requires"}


def _check(value, allowed, column):
    if value is not None and value not in allowed:
        raise ValueError(f"{column}={value!r} is not one of {sorted(allowed)}")
    return value


class Api(Base):
    __tablename__ = "apis"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False)
    base_url = Column(Text, nullable=False)
    auth_type = Column(Text)
    documentation_url = Column(Text)
    description = Column(Text)
    version = Column(Text)
    ingested_at = Column(DateTime(timezone=True), server_default=func.now())
    last_updated = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    provider = Column(Text)
    category = Column(Text)
    is_free = Column(Boolean, default=False)
    requires_approval = Column(Boolean, default=False)

    endpoints = relationship("Endpoint", back_populates="api", cascade="all, delete-orphan", passive_deletes=True)
    quirks = relationship("Quirk", back_populates="api", cascade="all, delete-orphan", passive_deletes=True)

    __table_args__ = (
        UniqueConstraint("name", "version"),
        Index("idx_apis_category", "category"),
        Index("idx_apis_provider", "provider"),
        Index("idx_apis_is_free", "is_free"),
    )

    @validates("auth_type")
    def _validate_auth_type(self, key, value):
        return _check(value, AUTH_TYPES, key)


class Endpoint(Base):
    __tablename__ = "endpoints"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    api_id = Column(Uuid, ForeignKey("apis.id", ondelete="CASCADE"), nullable=False)

    method = Column(Text, nullable=False)
    path = Column(Text, nullable=False)
    description = Column(Text)

    rate_limit = Column(Integer)
    rate_limit_period = Column(Text)

    cost_per_call = Column(Numeric(10, 6))
    cost_currency = Column(Text, default="USD")

    response_format = Column(Text)
    success_status_code = Column(Integer, default=200)

    is_deprecated = Column(Boolean, default=False)
    requires_auth = Column(Boolean, default=True)
    pagination_type = Column(Text)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    api = relationship("Api", back_populates="endpoints")
    parameters = relationship(
        "Parameter", back_populates="endpoint", cascade="all, delete-orphan", passive_deletes=True
    )

    __table_args__ = (
        UniqueConstraint("api_id", "method", "path"),
        Index("idx_endpoints_api", "api_id"),
        Index("idx_endpoints_method", "method"),
    )

    @validates("method")
    def _validate_method(self, key, value):
        return _check(value.upper() if value else value, HTTP_METHODS, key)

    @validates("rate_limit_period")
    def _validate_period(self, key, value):
        return _check(value, RATE_LIMIT_PERIODS, key)

    @validates("pagination_type")
    def _validate_pagination(self, key, value):
        return _check(value, PAGINATION_TYPES, key)


class Parameter(Base):
    __tablename__ = "parameters"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    endpoint_id = Column(Uuid, ForeignKey("endpoints.id", ondelete="CASCADE"), nullable=False)

    name = Column(Text, nullable=False)
    param_type = Column(Text, nullable=False)
    data_type = Column(Text, nullable=False)

    required = Column(Boolean, default=False)
    default_value = Column(Text)
    enum_values = Column(TextArray)
    pattern = Column(Text)
    min_value = Column(Numeric)
    max_value = Column(Numeric)
    min_length = Column(Integer)
    max_length = Column(Integer)

    description = Column(Text)
    example = Column(Text)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    endpoint = relationship("Endpoint", back_populates="parameters")

    __table_args__ = (Index("idx_parameters_endpoint", "endpoint_id"),)

    @validates("param_type")
    def _validate_param_type(self, key, value):
        return _check(value, PARAM_TYPES, key)

    @validates("data_type")
    def _validate_data_type(self, key, value):
        return _check(value, DATA_TYPES, key)


class Quirk(Base):
    __tablename__ = "quirks"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    api_id = Column(Uuid, ForeignKey("apis.id", ondelete="CASCADE"), nullable=False)

    quirk_type = Column(Text, nullable=False)
    severity = Column(Text, default="medium")

    field_name = Column(Text)
    description = Column(Text, nullable=False)

    conversion_function = Column(Text)
    conversion_language = Column(Text)

    example_input = Column(Text)
    example_output = Column(Text)

    discovered_at = Column(DateTime(timezone=True), server_default=func.now())
    discovered_by = Column(Text)

    is_verified = Column(Boolean, default=False)

    api = relationship("Api", back_populates="quirks")

    __table_args__ = (
        Index("idx_quirks_api", "api_id"),
        Index("idx_quirks_type", "quirk_type"),
        Index("idx_quirks_severity", "severity"),
    )

    @validates("quirk_type")
    def _validate_quirk_type(self, key, value):
        return _check(value, QUIRK_TYPES, key)

    @validates("severity")
    def _validate_severity(self, key, value):
        return _check(value, SEVERITIES, key)

    @validates("discovered_by")
    def _validate_discovered_by(self, key, value):
        return _check(value, DISCOVERED_BY, key)


class Workflow(Base):
    __tablename__ = "workflows"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False)
    description = Column(Text)

    steps = Column(JSONType, nullable=False)

    estimated_cost = Column(Numeric(10, 2))
    cost_currency = Column(Text, default="USD")
    cost_per_execution = Column(Numeric(10, 4))

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    created_by = Column(Text)

    execution_count = Column(Integer, default=0)
    last_executed_at = Column(DateTime(timezone=True))
    average_duration_ms = Column(Integer)

    apis = relationship(
        "WorkflowApi", back_populates="workflow", cascade="all, delete-orphan", passive_deletes=True,
        order_by="WorkflowApi.step_order",
    )

    __table_args__ = (
        Index("idx_workflows_created_by", "created_by"),
        Index("idx_workflows_created_at", "created_at"),
    )


class WorkflowApi(Base):
    __tablename__ = "workflow_apis"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    workflow_id = Column(Uuid, ForeignKey("workflows.id", ondelete="CASCADE"), nullable=False)
    api_id = Column(Uuid, ForeignKey("apis.id", ondelete="CASCADE"), nullable=False)

    step_order = Column(Integer, nullable=False)
    calls_per_execution = Column(Integer, default=1)

    workflow = relationship("Workflow", back_populates="apis")
    api = relationship("Api")

    __table_args__ = (
        UniqueConstraint("workflow_id", "api_id", "step_order"),
        Index("idx_workflow_apis_workflow", "workflow_id"),
        Index("idx_workflow_apis_api", "api_id"),
    )


class ApiRelationship(Base):
    __tablename__ = "api_relationships"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    api_1_id = Column(Uuid, ForeignKey("apis.id", ondelete="CASCADE"), nullable=False)
    api_2_id = Column(Uuid, ForeignKey("apis.id", ondelete="CASCADE"), nullable=False)

    relationship_type = Column(Text)
    description = Column(Text)
    usage_count = Column(Integer, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("api_1_id", "api_2_id", "relationship_type"),
        Index("idx_api_rel_api1", "api_1_id"),
        Index("idx_api_rel_api2", "api_2_id"),
        Index("idx_api_rel_type", "relationship_type"),
    )

    @validates("relationship_type")
    def _validate_relationship_type(self, key, value):
        return _check(value, RELATIONSHIP_TYPES, key)


class CostTracking(Base):
    __tablename__ = "cost_tracking"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    api_id = Column(Uuid, ForeignKey("apis.id", ondelete="CASCADE"), nullable=False)

    tracked_date = Column(Date, nullable=False)
    total_calls = Column(Integer, nullable=False, default=0)
    total_cost = Column(Numeric(10, 2), nullable=False, default=0)
    cost_currency = Column(Text, default="USD")

    # {"<endpoint_id>": {"calls": 100, "cost": 0.50}}
    endpoint_costs = Column(JSONType)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("api_id", "tracked_date"),
        Index("idx_cost_tracking_api", "api_id"),
        Index("idx_cost_tracking_date", "tracked_date"),
    )
