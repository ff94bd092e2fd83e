"""
Workflow planning and cost comparison.

A workflow is planning metadata: an ordered list of API calls that would be
made per execution. Nothing here executes the calls.

- estimate_cost: price of one execution given a price lookup
- monthly_cost / compare_plans: projected spend and a ranking of alternatives
- rate_limit_headroom: does a monthly volume fit each endpoint's rate limit?
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

from .config import load_json_or_yaml

PriceLookup = Callable[[str, str, str], Optional[Decimal]]

# seconds per rate_limit_period
PERIOD_SECONDS = {
    "second": 1,
    "minute": 60,
    "hour": 3600,
    "day": 86400,
    "month": 30 * 86400,
}
MONTH_SECONDS = PERIOD_SECONDS["month"]


@dataclass
class WorkflowStep:
    api: str
    method: str
    path: str
    calls_per_execution: int = 1
    note: Optional[str] = None

    def __post_init__(self) -> None:
        self.method = self.method.upper()
        if self.calls_per_execution < 0:
            raise ValueError(f"calls_per_execution must be >= 0 (step {self.method} {self.path})")


@dataclass
class WorkflowPlan:
    name: str
    steps: List[WorkflowStep] = field(default_factory=list)
    description: Optional[str] = None
    currency: str = "USD"

    def to_steps(self) -> List[Dict[str, Any]]:
        return [{"order": i, **asdict(s)} for i, s in enumerate(self.steps, start=1)]

    @property
    def apis(self) -> List[str]:
        seen: List[str] = []
        for s in self.steps:
            if s.api not in seen:
                seen.append(s.api)
        return seen

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkflowPlan":
        steps = [
            WorkflowStep(
                api=s["api"],
                method=s.get("method", "GET"),
                path=s["path"],
                calls_per_execution=int(s.get("calls_per_execution", 1)),
                note=s.get("note"),
            )
            for s in data.get("steps", [])
        ]
        return cls(
            name=data["name"],
            steps=steps,
            description=data.get("description"),
            currency=data.get("currency", "USD"),
        )


def load_plans(path: Path) -> List[WorkflowPlan]:
    """Load one plan (a mapping) or several (a list, or {"workflows": [...]}) from JSON/YAML."""
    data: Any = load_json_or_yaml(Path(path))
    if isinstance(data, dict) and "workflows" in data:
        data = data["workflows"]
    if isinstance(data, dict):
        data = [data]
    return [WorkflowPlan.from_dict(d) for d in data]


def step_cost(step: WorkflowStep, lookup: PriceLookup) -> Decimal:
    price = lookup(step.api, step.method, step.path)
    if price is None:
        return Decimal(0)
    return Decimal(step.calls_per_execution) * Decimal(price)


def estimate_cost(plan: WorkflowPlan, lookup: PriceLookup) -> Decimal:
    """Cost of one execution. Unpriced endpoints count as free."""
    return sum((step_cost(s, lookup) for s in plan.steps), Decimal(0))


def unpriced_steps(plan: WorkflowPlan, lookup: PriceLookup) -> List[WorkflowStep]:
    return [s for s in plan.steps if lookup(s.api, s.method, s.path) is None]


def monthly_cost(plan: WorkflowPlan, lookup: PriceLookup, executions_per_month: int) -> Decimal:
    return (estimate_cost(plan, lookup) * executions_per_month).quantize(Decimal("0.01"))


@dataclass
class PlanComparison:
    name: str
    cost_per_execution: Decimal
    monthly_cost: Decimal
    step_count: int
    unpriced: List[str]
    savings_vs_most_expensive: Decimal = Decimal(0)


def compare_plans(plans: Iterable[WorkflowPlan], lookup: PriceLookup, executions_per_month: int) -> List[PlanComparison]:
    """Rank alternative plans cheapest first; ties break on fewer steps, then name."""
    rows = []
    for plan in plans:
        rows.append(
            PlanComparison(
                name=plan.name,
                cost_per_execution=estimate_cost(plan, lookup),
                monthly_cost=monthly_cost(plan, lookup, executions_per_month),
                step_count=len(plan.steps),
                unpriced=[f"{s.api} {s.method} {s.path}" for s in unpriced_steps(plan, lookup)],
            )
        )
    rows.sort(key=lambda r: (r.cost_per_execution, r.step_count, r.name))
    if rows:
        top = max(r.monthly_cost for r in rows)
        for r in rows:
            r.savings_vs_most_expensive = top - r.monthly_cost
    return rows


@dataclass
class Headroom:
    api: str
    method: str
    path: str
    calls_per_month: int
    limit_per_month: Optional[int]

    @property
    def fits(self) -> bool:
        return self.limit_per_month is None or self.calls_per_month <= self.limit_per_month

    @property
    def utilisation(self) -> Optional[float]:
        if not self.limit_per_month:
            return None
        return self.calls_per_month / self.limit_per_month


RateLimitLookup = Callable[[str, str, str], Optional[tuple]]


def rate_limit_headroom(
    plan: WorkflowPlan, limit_lookup: RateLimitLookup, executions_per_month: int
) -> List[Headroom]:
    """Compare monthly call volume per endpoint with its rate limit scaled to a month.

    limit_lookup(api, method, path) returns (rate_limit, rate_limit_period) or None.
    Volumes of repeated steps on the same endpoint are summed. The check assumes
    calls are spread evenly over the month.
    """
    volume: Dict[tuple, int] = {}
    for s in plan.steps:
        key = (s.api, s.method, s.path)
        volume[key] = volume.get(key, 0) + s.calls_per_execution * executions_per_month
    out = []
    for (api, method, path), calls in volume.items():
        found = limit_lookup(api, method, path)
        limit_month = None
        if found and found[0] is not None and found[1] in PERIOD_SECONDS:
            rate, period = found
            limit_month = int(rate) * (MONTH_SECONDS // PERIOD_SECONDS[period])
        out.append(Headroom(api=api, method=method, path=path, calls_per_month=calls, limit_per_month=limit_month))
    return out
