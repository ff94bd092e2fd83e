from types import SimpleNamespace

import pytest

from api_knowledge.db import create_tables, make_engine, make_session_factory
from api_knowledge.models import ApiDoc, EndpointDoc, ParameterDoc, QuirkDoc


@pytest.fixture
def engine():
    eng = make_engine("sqlite://")
    create_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def session(session_factory):
    s = session_factory()
    yield s
    s.close()


def make_doc(name="Stripe", base_url="https://api.stripe.com", prices=(0.01, 0.02), **kwargs) -> ApiDoc:
    return ApiDoc(
        name=name,
        base_url=base_url,
        version=kwargs.pop("version", "2024-06-20"),
        auth_type=kwargs.pop("auth_type", "bearer"),
        category=kwargs.pop("category", "payment"),
        provider=kwargs.pop("provider", name),
        endpoints=kwargs.pop(
            "endpoints",
            [
                EndpointDoc(
                    method="POST",
                    path="/v1/customers",
                    cost_per_call=prices[0],
                    rate_limit=100,
                    rate_limit_period="second",
                    parameters=[ParameterDoc(name="email", param_type="body", required=True, example="a@b.co")],
                ),
                EndpointDoc(
                    method="GET",
                    path="/v1/customers/{id}",
                    cost_per_call=prices[1],
                    parameters=[ParameterDoc(name="id", param_type="path", required=True, example="cus_123")],
                ),
            ],
        ),
        quirks=kwargs.pop(
            "quirks",
            [
                QuirkDoc(quirk_type="currency", severity="high", field_name="amount", description="Amounts in cents"),
            ],
        ),
        **kwargs,
    )


@pytest.fixture
def stripe_doc() -> ApiDoc:
    return make_doc()


class FakeCompletions:
    """Stands in for client.chat.completions; returns (or raises) queued results in order."""

    def __init__(self, results):
        self.results = list(results)
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


def fake_llm(results):
    completions = FakeCompletions(results)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions))
