import ast

import pytest

from api_knowledge.codegen import auth_headers, fill_path, generate_client
from api_knowledge.models import ApiDoc, EndpointDoc, ParameterDoc, QuirkDoc
from api_knowledge.quirks import FORM_ENCODING_FN, minor_units_quirk
from api_knowledge.store import add_quirk, find_endpoint, upsert_api

ENDPOINT = EndpointDoc(
    method="POST",
    path="/v1/customers/{id}",
    description="Update a customer",
    parameters=[
        ParameterDoc(name="id", param_type="path", required=True, example="cus_123"),
        ParameterDoc(name="email", param_type="body", required=True, example="a@b.co"),
        ParameterDoc(name="balance", param_type="body", data_type="integer", required=True, example="500"),
        ParameterDoc(name="expand", param_type="query", required=True, enum_values=["sources", "tax"]),
        ParameterDoc(name="description", param_type="body"),
    ],
)


def _api(auth_type="bearer", quirks=()):
    return ApiDoc(
        name="Stripe",
        base_url="https://api.stripe.com",
        auth_type=auth_type,
        endpoints=[ENDPOINT],
        quirks=list(quirks),
    )


FORM = QuirkDoc(
    quirk_type="encoding",
    description="Request bodies are form-encoded, not JSON",
    conversion_function=FORM_ENCODING_FN,
)


def test_fill_path_uses_examples_or_placeholder_names():
    assert fill_path(ENDPOINT) == "/v1/customers/cus_123"
    assert fill_path(EndpointDoc(method="GET", path="/v1/items/:item_id")) == "/v1/items/ITEM_ID"


def test_auth_headers_per_auth_type():
    assert auth_headers(_api("bearer")) == ({"Authorization": "Bearer $STRIPE_API_KEY"}, None)
    assert auth_headers(_api("api_key")) == ({"X-API-Key": "$STRIPE_API_KEY"}, None)
    assert auth_headers(_api("basic")) == ({}, ("$STRIPE_API_KEY", ""))
    assert auth_headers(_api("none")) == ({}, None)


def test_python_client_is_valid_code():
    code = generate_client(_api(quirks=[FORM]), ENDPOINT, "python")
    compile(code, "<generated>", "exec")
    assert 'BASE_URL = "https://api.stripe.com"' in code
    assert 'url = BASE_URL + "/v1/customers/cus_123"' in code
    assert '"Authorization": f"Bearer {API_KEY}"' in code
    assert "params = {'expand': 'sources'}" in code
    assert "payload = {'email': 'a@b.co', 'balance': 500}" in code
    assert "data=payload" in code
    assert "def post_form" in code


@pytest.mark.parametrize(
    "description",
    ['Returns the "customer"', 'Quotes """ inside', "Path like C:\\temp\\ and a trailing \\"],
)
def test_python_client_docstring_survives_quotes_and_backslashes(description):
    endpoint = ENDPOINT.model_copy(update={"description": description})
    code = generate_client(_api(), endpoint, "python")
    func = next(n for n in ast.parse(code).body if isinstance(n, ast.FunctionDef))
    assert ast.get_docstring(func, clean=False) == description


def test_python_client_sends_json_without_form_quirk():
    code = generate_client(_api("basic"), ENDPOINT, "python")
    compile(code, "<generated>", "exec")
    assert "json=payload" in code
    assert 'auth=(API_KEY, "")' in code


def test_javascript_client():
    code = generate_client(_api(quirks=[FORM]), ENDPOINT, "javascript")
    assert "process.env.STRIPE_API_KEY" in code
    assert '"Authorization": `Bearer ${API_KEY}`' in code
    assert "new URLSearchParams({\"email\": \"a@b.co\", \"balance\": 500}).toString()" in code
    assert "application/x-www-form-urlencoded" in code
    assert "// Quirk: encoding" in code


def test_curl_command():
    code = generate_client(_api(quirks=[FORM]), ENDPOINT, "curl")
    assert 'curl -X POST "https://api.stripe.com/v1/customers/cus_123?expand=sources"' in code
    assert '-H "Authorization: Bearer $STRIPE_API_KEY"' in code
    assert '-d "email=a@b.co"' in code

    code = generate_client(_api("api_key"), ENDPOINT, "curl")
    assert "-d '{\"email\": \"a@b.co\", \"balance\": 500}'" in code


def test_unknown_language():
    with pytest.raises(ValueError):
        generate_client(_api(), ENDPOINT, "cobol")


def test_generates_from_stored_rows_with_quirk_helpers(session):
    api = upsert_api(session, _api(quirks=[]))
    add_quirk(session, api.id, minor_units_quirk("balance"))
    session.refresh(api)
    endpoint = find_endpoint(session, api.id, "POST", "/v1/customers/{id}")

    code = generate_client(api, endpoint, "python")
    compile(code, "<generated>", "exec")
    assert "# Quirk: currency (balance)" in code
    assert "def to_major_units" in code
    assert "/v1/customers/cus_123" in code
