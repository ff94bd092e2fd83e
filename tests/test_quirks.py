from api_knowledge.models import ApiDoc, EndpointDoc, ParameterDoc
from api_knowledge.quirks import detect_in_doc, detect_in_text, detect_quirks, parse_rate_limit

DOC_TEXT = """
# Customers

All `amount` values are in cents (the smallest currency unit).
`created` is a Unix timestamp.
Use `starting_after` to fetch the next page of results.
You can make up to 100 requests per second in live mode.
Request bodies are form-encoded (application/x-www-form-urlencoded).
Invoice dates use the DD/MM/YYYY format.
Times in the `scheduled_for` field are in Pacific Time.
Responses are wrapped in a `data` object.
"""


def _by_kind(found):
    return {q.kind: q for q in found}


def test_detect_in_text_finds_common_quirks():
    found = _by_kind(detect_in_text(DOC_TEXT))

    assert found["minor_units"].field_name == "amount"
    assert found["minor_units"].severity == "high"
    assert found["minor_units"].example_output == "19.99"
    assert found["epoch_seconds"].field_name == "created"
    assert found["cursor"].field_name == "starting_after"
    assert "starting_after" in found["cursor"].conversion_function
    assert "100 requests per second" in found["rate_limit"].description
    assert found["form_encoded"].quirk_type == "encoding"
    assert found["date_format:DD/MM/YYYY"].severity == "high"
    assert "%d/%m/%Y" in found["date_format:DD/MM/YYYY"].conversion_function
    assert "America/Los_Angeles" in found["local_time"].conversion_function
    assert found["envelope"].field_name == "data"
    assert all(q.evidence for q in found.values())


def test_epoch_millis_is_not_reported_as_seconds():
    found = _by_kind(detect_in_text("`ts` is a Unix timestamp in milliseconds."))
    assert "epoch_millis" in found
    assert "epoch_seconds" not in found


def test_plain_text_has_no_quirks():
    assert detect_in_text("Create a customer.\n\nReturns the customer object.") == []


def test_duplicate_lines_are_reported_once():
    found = detect_in_text("Amounts are in cents.\nRefund amounts are in cents.")
    assert len(found) == 1


def test_parse_rate_limit():
    assert parse_rate_limit("Limited to 1,000 calls per minute.") == (1000, "minute")
    assert parse_rate_limit("25 req/s burst") == (25, "second")
    assert parse_rate_limit("no limits here") is None
    assert parse_rate_limit("Send 3 requests and wait for the webhook.") is None
    assert parse_rate_limit("Batch up to 10 calls as a single request.") is None
    assert parse_rate_limit("Allowed: 500 requests an hour") == (500, "hour")


def test_detect_in_doc_uses_parameters_and_pagination():
    doc = ApiDoc(
        name="Shop",
        base_url="https://api.shop.test",
        endpoints=[
            EndpointDoc(
                method="GET",
                path="/orders",
                pagination_type="cursor",
                parameters=[
                    ParameterDoc(name="total_cents", param_type="query", data_type="integer"),
                    ParameterDoc(
                        name="created_at",
                        param_type="query",
                        data_type="integer",
                        description="Unix timestamp in milliseconds",
                    ),
                    ParameterDoc(name="page_token", param_type="query"),
                ],
            )
        ],
    )
    found = _by_kind(detect_in_doc(doc))
    assert found["minor_units"].field_name == "total_cents"
    assert found["epoch_millis"].field_name == "created_at"
    assert found["cursor"].field_name == "page_token"


def test_detect_quirks_combines_text_and_doc():
    doc = ApiDoc(
        name="Shop",
        base_url="https://api.shop.test",
        endpoints=[EndpointDoc(method="GET", path="/orders", pagination_type="offset")],
    )
    kinds = {q.kind for q in detect_quirks("Prices are in cents.", doc)}
    assert kinds == {"minor_units", "offset"}
