"""
Unit tests for BillingClient against a local aiohttp test server.
"""

import pytest
import pytest_asyncio
from datetime import date
from types import SimpleNamespace

from aiohttp import web
from aiohttp import test_utils

from timebill.exceptions import InvoiceCreationError, SessionCreationError
from timebill.integrations.billing import BillingClient, seconds_to_hours


@pytest.fixture
def job():
    return SimpleNamespace(
        id=3, client_id=7, title="Weekly lawn care", notes=None, duration_seconds=5400,
    )


@pytest.fixture
def occurrence():
    return SimpleNamespace(id=12, scheduled_date=date(2024, 1, 8))


@pytest_asyncio.fixture
async def billing_server():
    """Fake billing API that records requests and answers from a script."""
    state = {"requests": [], "responses": {}}

    async def handler(request):
        state["requests"].append({
            "path": request.path,
            "auth": request.headers.get("Authorization"),
            "body": await request.json(),
        })
        status, body = state["responses"].get(request.path, (201, {"id": 1}))
        return web.json_response(body, status=status)

    app = web.Application()
    app.router.add_post("/api/sessions", handler)
    app.router.add_post("/api/invoices", handler)

    server = test_utils.TestServer(app)
    await server.start_server()
    state["url"] = str(server.make_url("/api"))
    yield state
    await server.close()


@pytest.mark.asyncio
async def test_create_session_posts_job_details(billing_server, job, occurrence):
    billing_server["responses"]["/api/sessions"] = (201, {"id": 501})
    client = BillingClient(base_url=billing_server["url"], token="secret", timeout_seconds=5)

    session_id = await client.create_session(job, occurrence)

    assert session_id == 501
    request = billing_server["requests"][0]
    assert request["auth"] == "Bearer secret"
    assert request["body"] == {
        "client_id": 7,
        "duration_seconds": 5400,
        "date": "2024-01-08",
        "notes": "Weekly lawn care",
        "recurring_job_id": 3,
        "occurrence_id": 12,
    }


@pytest.mark.asyncio
async def test_create_invoice_single_session(billing_server, job):
    billing_server["responses"]["/api/invoices"] = (200, {"id": "901"})
    client = BillingClient(base_url=billing_server["url"], token="", timeout_seconds=5)

    invoice_id = await client.create_invoice(job, 501, occurrence_id=12)

    assert invoice_id == 901
    request = billing_server["requests"][0]
    assert request["auth"] is None
    assert request["body"] == {"client_id": 7, "session_ids": [501], "total_hours": 1.5}


@pytest.mark.asyncio
async def test_error_status_raises_invoice_error(billing_server, job):
    billing_server["responses"]["/api/invoices"] = (500, {"error": "boom"})
    client = BillingClient(base_url=billing_server["url"], token="", timeout_seconds=5)

    with pytest.raises(InvoiceCreationError, match="500") as exc_info:
        await client.create_invoice(job, 501, occurrence_id=12)
    assert exc_info.value.occurrence_id == 12


@pytest.mark.asyncio
async def test_missing_id_raises_session_error(billing_server, job, occurrence):
    billing_server["responses"]["/api/sessions"] = (201, {"ok": True})
    client = BillingClient(base_url=billing_server["url"], token="", timeout_seconds=5)

    with pytest.raises(SessionCreationError, match="no id"):
        await client.create_session(job, occurrence)


@pytest.mark.asyncio
async def test_non_numeric_id_raises_invoice_error(billing_server, job):
    billing_server["responses"]["/api/invoices"] = (201, {"id": "inv-abc"})
    client = BillingClient(base_url=billing_server["url"], token="", timeout_seconds=5)

    with pytest.raises(InvoiceCreationError, match="non-numeric") as exc_info:
        await client.create_invoice(job, 501, occurrence_id=12)
    assert exc_info.value.occurrence_id == 12


@pytest.mark.asyncio
async def test_unreachable_server_raises_session_error(job, occurrence):
    client = BillingClient(base_url="http://127.0.0.1:1/api", token="", timeout_seconds=2)

    with pytest.raises(SessionCreationError) as exc_info:
        await client.create_session(job, occurrence)
    assert exc_info.value.occurrence_id == 12


def test_seconds_to_hours():
    assert seconds_to_hours(3600) == 1.0
    assert seconds_to_hours(5400) == 1.5
    assert seconds_to_hours(1000) == 0.28
