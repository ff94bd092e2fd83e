"""
Read/write helpers over the knowledge schema.

All functions take an open SQLAlchemy Session and leave transaction control to
the caller (see db.session_scope). The "view" helpers (api_summary,
expensive_endpoints, critical_quirks) return the same rows as the SQL views in
schema.sql, but are written as ORM queries so they also run on SQLite.
"""
from __future__ import annotations

import dataclasses
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import case, delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from .errors import StoreError
from .models import ApiDoc, EndpointDoc
from .tables import Api, ApiRelationship, CostTracking, Endpoint, Parameter, Quirk, Workflow, WorkflowApi
from .workflows import WorkflowPlan, estimate_cost

QUIRK_FIELDS = (
    "quirk_type",
    "severity",
    "field_name",
    "description",
    "conversion_function",
    "conversion_language",
    "example_input",
    "example_output",
    "discovered_by",
)


def _as_dict(obj: Any) -> Dict[str, Any]:
    if isinstance(obj, dict):
        return obj
    if dataclasses.is_dataclass(obj):
        return dataclasses.asdict(obj)
    dump = getattr(obj, "model_dump", None)
    if callable(dump):
        return dump()
    raise TypeError(f"Cannot convert {type(obj).__name__} to a mapping")


def _flush(session: Session, what: str) -> None:
    try:
        session.flush()
    except IntegrityError as e:
        session.rollback()
        raise StoreError(f"Integrity error while writing {what}: {e.orig}") from e


def _money(value: Optional[float]) -> Optional[Decimal]:
    return None if value is None else Decimal(str(value))


# ---- APIs, endpoints, parameters ----

def _endpoint_row(ep: EndpointDoc) -> Endpoint:
    row = Endpoint(
        method=ep.method,
        path=ep.path,
        description=ep.description,
        rate_limit=ep.rate_limit,
        rate_limit_period=ep.rate_limit_period,
        cost_per_call=_money(ep.cost_per_call),
        cost_currency=ep.cost_currency,
        response_format=ep.response_format,
        success_status_code=ep.success_status_code,
        is_deprecated=ep.is_deprecated,
        requires_auth=ep.requires_auth,
        pagination_type=ep.pagination_type,
    )
    for p in ep.parameters:
        row.parameters.append(
            Parameter(
                name=p.name,
                param_type=p.param_type,
                data_type=p.data_type,
                required=p.required,
                default_value=p.default_value,
                enum_values=p.enum_values,
                pattern=p.pattern,
                min_value=_money(p.min_value),
                max_value=_money(p.max_value),
                min_length=p.min_length,
                max_length=p.max_length,
                description=p.description,
                example=p.example,
            )
        )
    return row


def get_api(session: Session, name: str, version: Optional[str] = None) -> Optional[Api]:
    """Return the API called `name`; without a version, the most recently updated one."""
    stmt = select(Api).where(Api.name == name).options(selectinload(Api.endpoints))
    if version is not None:
        stmt = stmt.where(Api.version == version)
    stmt = stmt.order_by(Api.last_updated.desc())
    return session.scalars(stmt).first()


def upsert_api(session: Session, doc: ApiDoc, *, replace_endpoints: bool = True, store_quirks: bool = True) -> Api:
    """Insert or update an API keyed on (name, version).

    Endpoints (and their parameters) are replaced wholesale when
    replace_endpoints is set; otherwise new (method, path) pairs are appended
    and existing ones left alone. Quirks are added unless an identical one
    (type, field, description) is already stored.
    """
    stmt = select(Api).where(Api.name == doc.name)
    stmt = stmt.where(Api.version.is_(None) if doc.version is None else Api.version == doc.version)
    api = session.scalars(stmt).first()
    created = api is None
    if api is None:
        api = Api(name=doc.name, version=doc.version, base_url=doc.base_url)
        session.add(api)

    api.base_url = doc.base_url
    api.auth_type = doc.auth_type
    api.documentation_url = doc.documentation_url
    api.description = doc.description
    api.provider = doc.provider
    api.category = doc.category
    api.is_free = doc.is_free
    api.requires_approval = doc.requires_approval
    if not created:
        api.last_updated = datetime.now(timezone.utc)

    if replace_endpoints and not created:
        api.endpoints.clear()
        # deletes must reach the database before re-inserting the same (method, path)
        _flush(session, f"endpoints of {doc.name}")

    existing = {(e.method, e.path) for e in api.endpoints}
    for ep in doc.endpoints:
        key = (ep.method, ep.path)
        if key in existing:
            continue
        existing.add(key)
        api.endpoints.append(_endpoint_row(ep))

    if store_quirks:
        seen = {(q.quirk_type, q.field_name, q.description) for q in api.quirks}
        for q in doc.quirks:
            key = (q.quirk_type, q.field_name, q.description)
            if key in seen:
                continue
            seen.add(key)
            api.quirks.append(Quirk(**{f: getattr(q, f) for f in QUIRK_FIELDS}))

    _flush(session, f"api {doc.name}")
    print(
        f"[store] {'Inserted' if created else 'Updated'} {doc.name} "
        f"({len(api.endpoints)} endpoints, {len(api.quirks)} quirks)"
    )
    return api


def find_apis(
    session: Session,
    *,
    category: Optional[str] = None,
    provider: Optional[str] = None,
    is_free: Optional[bool] = None,
) -> List[Api]:
    stmt = select(Api)
    if category is not None:
        stmt = stmt.where(Api.category == category)
    if provider is not None:
        stmt = stmt.where(Api.provider == provider)
    if is_free is not None:
        stmt = stmt.where(Api.is_free.is_(is_free))
    return list(session.scalars(stmt.order_by(Api.name, Api.version)))


def delete_api(session: Session, api_id: uuid.UUID) -> bool:
    result = session.execute(delete(Api).where(Api.id == api_id))
    return bool(result.rowcount)


def find_endpoint(session: Session, api_id: uuid.UUID, method: str, path: str) -> Optional[Endpoint]:
    stmt = (
        select(Endpoint)
        .where(Endpoint.api_id == api_id, Endpoint.method == method.upper(), Endpoint.path == path)
        .options(selectinload(Endpoint.parameters))
    )
    return session.scalars(stmt).first()


# ---- Quirks ----

def add_quirk(session: Session, api_id: uuid.UUID, quirk: Any) -> Quirk:
    """Store a quirk given as a QuirkDoc, a DetectedQuirk or a plain mapping."""
    data = _as_dict(quirk)
    try:
        row = Quirk(api_id=api_id, **{f: data.get(f) for f in QUIRK_FIELDS if data.get(f) is not None})
    except ValueError as e:
        raise StoreError(f"Invalid quirk: {e}") from e
    session.add(row)
    _flush(session, "quirk")
    return row


def list_quirks(session: Session, api_id: uuid.UUID, *, severity: Optional[str] = None) -> List[Quirk]:
    stmt = select(Quirk).where(Quirk.api_id == api_id)
    if severity is not None:
        stmt = stmt.where(Quirk.severity == severity)
    return list(session.scalars(stmt.order_by(Quirk.quirk_type, Quirk.field_name)))


def mark_quirk_verified(session: Session, quirk_id: uuid.UUID, verified: bool = True) -> None:
    quirk = session.get(Quirk, quirk_id)
    if quirk is None:
        raise StoreError(f"Quirk {quirk_id} not found")
    quirk.is_verified = verified


# ---- Views ----

def api_summary(session: Session) -> List[Dict[str, Any]]:
    ep_counts = (
        select(Endpoint.api_id, func.count(Endpoint.id).label("n")).group_by(Endpoint.api_id).subquery()
    )
    q_counts = select(Quirk.api_id, func.count(Quirk.id).label("n")).group_by(Quirk.api_id).subquery()
    stmt = (
        select(Api, func.coalesce(ep_counts.c.n, 0), func.coalesce(q_counts.c.n, 0))
        .outerjoin(ep_counts, ep_counts.c.api_id == Api.id)
        .outerjoin(q_counts, q_counts.c.api_id == Api.id)
        .order_by(Api.name)
    )
    rows = []
    for api, n_endpoints, n_quirks in session.execute(stmt):
        rows.append(
            {
                "id": api.id,
                "name": api.name,
                "base_url": api.base_url,
                "auth_type": api.auth_type,
                "category": api.category,
                "is_free": api.is_free,
                "provider": api.provider,
                "endpoint_count": int(n_endpoints),
                "quirk_count": int(n_quirks),
                "ingested_at": api.ingested_at,
                "last_updated": api.last_updated,
            }
        )
    return rows


def expensive_endpoints(session: Session, limit: int = 100) -> List[Dict[str, Any]]:
    stmt = (
        select(Api.name, Endpoint)
        .join(Api, Endpoint.api_id == Api.id)
        .where(Endpoint.cost_per_call.is_not(None))
        .order_by(Endpoint.cost_per_call.desc())
        .limit(limit)
    )
    return [
        {
            "api_name": api_name,
            "method": ep.method,
            "path": ep.path,
            "cost_per_call": ep.cost_per_call,
            "cost_currency": ep.cost_currency,
            "description": ep.description,
        }
        for api_name, ep in session.execute(stmt)
    ]


def critical_quirks(session: Session) -> List[Dict[str, Any]]:
    severity_rank = case((Quirk.severity == "critical", 1), (Quirk.severity == "high", 2))
    stmt = (
        select(Api.name, Quirk)
        .join(Api, Quirk.api_id == Api.id)
        .where(Quirk.severity.in_(("high", "critical")))
        .order_by(severity_rank, Quirk.discovered_at.desc())
    )
    return [
        {
            "api_name": api_name,
            "quirk_type": q.quirk_type,
            "severity": q.severity,
            "field_name": q.field_name,
            "description": q.description,
            "is_verified": q.is_verified,
        }
        for api_name, q in session.execute(stmt)
    ]


# ---- Workflows ----

def price_lookup(session: Session) -> Callable[[str, str, str], Optional[Decimal]]:
    """Return f(api_name, method, path) -> cost_per_call from the stored endpoints."""

    def _lookup(api_name: str, method: str, path: str) -> Optional[Decimal]:
        stmt = (
            select(Endpoint.cost_per_call)
            .join(Api, Endpoint.api_id == Api.id)
            .where(Api.name == api_name, Endpoint.method == method.upper(), Endpoint.path == path)
            .order_by(Api.last_updated.desc())
        )
        value = session.execute(stmt).scalars().first()
        return None if value is None else Decimal(value)

    return _lookup


def rate_limit_lookup(session: Session) -> Callable[[str, str, str], Optional[tuple]]:
    """Return f(api_name, method, path) -> (rate_limit, rate_limit_period) from the stored endpoints."""

    def _lookup(api_name: str, method: str, path: str) -> Optional[tuple]:
        stmt = (
            select(Endpoint.rate_limit, Endpoint.rate_limit_period)
            .join(Api, Endpoint.api_id == Api.id)
            .where(Api.name == api_name, Endpoint.method == method.upper(), Endpoint.path == path)
            .order_by(Api.last_updated.desc())
        )
        row = session.execute(stmt).first()
        return None if row is None else (row[0], row[1])

    return _lookup


def save_workflow(
    session: Session,
    plan: WorkflowPlan,
    *,
    created_by: Optional[str] = None,
    executions_per_month: Optional[int] = None,
) -> Workflow:
    """Persist a workflow plan, link its APIs and count consecutive API pairings."""
    api_ids: Dict[str, uuid.UUID] = {}
    for step in plan.steps:
        if step.api in api_ids:
            continue
        api = get_api(session, step.api)
        if api is None:
            raise StoreError(f"Workflow '{plan.name}' uses unknown API '{step.api}'")
        api_ids[step.api] = api.id

    per_execution = estimate_cost(plan, price_lookup(session))
    wf = Workflow(
        name=plan.name,
        description=plan.description,
        steps=plan.to_steps(),
        cost_currency=plan.currency,
        cost_per_execution=per_execution.quantize(Decimal("0.0001")),
        estimated_cost=(
            (per_execution * executions_per_month).quantize(Decimal("0.01"))
            if executions_per_month is not None
            else None
        ),
        created_by=created_by,
    )
    for order, step in enumerate(plan.steps, start=1):
        wf.apis.append(
            WorkflowApi(api_id=api_ids[step.api], step_order=order, calls_per_execution=step.calls_per_execution)
        )
    session.add(wf)
    _flush(session, f"workflow {plan.name}")

    for prev, nxt in zip(plan.steps, plan.steps[1:]):
        if prev.api != nxt.api:
            bump_relationship_usage(session, api_ids[prev.api], api_ids[nxt.api])
    return wf


def calculate_workflow_cost(session: Session, workflow_id: uuid.UUID) -> Decimal:
    """Same result as the calculate_workflow_cost() SQL function.

    Sums calls_per_execution * cost_per_call over every priced endpoint of
    every API linked to the workflow.
    """
    stmt = (
        select(func.sum(WorkflowApi.calls_per_execution * Endpoint.cost_per_call))
        .join(Endpoint, Endpoint.api_id == WorkflowApi.api_id)
        .where(WorkflowApi.workflow_id == workflow_id, Endpoint.cost_per_call.is_not(None))
    )
    total = session.execute(stmt).scalar()
    return Decimal(str(total)) if total is not None else Decimal(0)


def record_execution(
    session: Session, workflow_id: uuid.UUID, duration_ms: int, when: Optional[datetime] = None
) -> Workflow:
    wf = session.get(Workflow, workflow_id)
    if wf is None:
        raise StoreError(f"Workflow {workflow_id} not found")
    count = wf.execution_count or 0
    prev_avg = wf.average_duration_ms or 0
    wf.average_duration_ms = round((prev_avg * count + duration_ms) / (count + 1))
    wf.execution_count = count + 1
    wf.last_executed_at = when or datetime.now(timezone.utc)
    return wf


# ---- Relationships ----

def relate_apis(
    session: Session,
    api_1_id: uuid.UUID,
    api_2_id: uuid.UUID,
    relationship_type: str,
    description: Optional[str] = None,
) -> ApiRelationship:
    if api_1_id == api_2_id:
        raise StoreError("An API cannot be related to itself")
    stmt = select(ApiRelationship).where(
        ApiRelationship.api_1_id == api_1_id,
        ApiRelationship.api_2_id == api_2_id,
        ApiRelationship.relationship_type == relationship_type,
    )
    rel = session.scalars(stmt).first()
    if rel is None:
        rel = ApiRelationship(api_1_id=api_1_id, api_2_id=api_2_id, relationship_type=relationship_type, usage_count=0)
        session.add(rel)
    if description is not None:
        rel.description = description
    _flush(session, "api relationship")
    return rel


def bump_relationship_usage(
    session: Session,
    api_1_id: uuid.UUID,
    api_2_id: uuid.UUID,
    relationship_type: str = "integrates_with",
    by: int = 1,
) -> ApiRelationship:
    rel = relate_apis(session, api_1_id, api_2_id, relationship_type)
    rel.usage_count = (rel.usage_count or 0) + by
    _flush(session, "api relationship usage")
    return rel


def related_apis(session: Session, api_id: uuid.UUID) -> List[Dict[str, Any]]:
    other = case((ApiRelationship.api_1_id == api_id, ApiRelationship.api_2_id), else_=ApiRelationship.api_1_id)
    stmt = (
        select(Api.name, ApiRelationship)
        .join(Api, Api.id == other)
        .where((ApiRelationship.api_1_id == api_id) | (ApiRelationship.api_2_id == api_id))
        .order_by(ApiRelationship.usage_count.desc(), Api.name)
    )
    return [
        {"api_name": name, "relationship_type": rel.relationship_type, "usage_count": rel.usage_count}
        for name, rel in session.execute(stmt)
    ]


# ---- Cost tracking ----

def track_cost(
    session: Session,
    api_id: uuid.UUID,
    tracked_date: date,
    calls: int,
    cost: float,
    *,
    endpoint_costs: Optional[Dict[str, Dict[str, float]]] = None,
    currency: str = "USD",
) -> CostTracking:
    """Accumulate one day's usage for an API (one row per api and date)."""
    stmt = select(CostTracking).where(CostTracking.api_id == api_id, CostTracking.tracked_date == tracked_date)
    row = session.scalars(stmt).first()
    if row is None:
        row = CostTracking(
            api_id=api_id, tracked_date=tracked_date, total_calls=0, total_cost=Decimal(0),
            cost_currency=currency, endpoint_costs={},
        )
        session.add(row)
    row.total_calls = (row.total_calls or 0) + calls
    row.total_cost = (Decimal(row.total_cost or 0) + Decimal(str(cost))).quantize(Decimal("0.01"))
    if endpoint_costs:
        merged = dict(row.endpoint_costs or {})
        for endpoint_id, usage in endpoint_costs.items():
            cur = merged.get(endpoint_id, {"calls": 0, "cost": 0.0})
            merged[endpoint_id] = {
                "calls": cur["calls"] + usage.get("calls", 0),
                "cost": round(cur["cost"] + usage.get("cost", 0.0), 6),
            }
        # reassign so the JSON column is marked dirty
        row.endpoint_costs = merged
    _flush(session, "cost tracking")
    return row


def cost_history(session: Session, api_id: uuid.UUID) -> List[CostTracking]:
    stmt = select(CostTracking).where(CostTracking.api_id == api_id).order_by(CostTracking.tracked_date.desc())
    return list(session.scalars(stmt))
