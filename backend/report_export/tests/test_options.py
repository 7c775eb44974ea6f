import pytest

from report_export import core

ALICE = {"X-User-Id": "alice"}


async def _post(client, body):
    return await client.post("/exports", json=body, headers=ALICE)


@pytest.mark.anyio
@pytest.mark.parametrize(
    "body",
    [
        {"kind": "SALES_LEDGER"},
        {"format": "PDF"},
        {"kind": "USER_ANALYTICS", "format": "DOCX"},
        {"kind": "PERIOD_SUMMARY"},
        {"kind": "PERIOD_SUMMARY", "options": {"dateRange": {"from": "2024-02-01", "to": "2024-01-01"}}},
        {"kind": "USER_ANALYTICS", "options": {"title": "x" * 201}},
        {"kind": "USER_ANALYTICS", "options": {"subjects": ["Math"]}},
        {"kind": "TEST_REPORT", "options": {"columns": ["score", "shoe_size"]}},
        {"kind": "RANKINGS", "options": {"unknown": True}},
    ],
)
async def test_invalid_requests_rejected(client, app, body):
    r = await _post(client, body)
    assert r.status_code == 422, r.text
    assert r.json()["error"] == "Validation error"
    # nothing was admitted or stored
    assert len(app.state.services.jobs) == 0
    assert app.state.services.rate_limiter.status(user_id="alice") == {"emergencyMode": False}


@pytest.mark.anyio
async def test_non_object_body_rejected(client):
    r = await client.post("/exports", json=["USER_ANALYTICS"], headers=ALICE)
    assert r.status_code == 422


@pytest.mark.anyio
async def test_options_are_parsed_per_kind(client, app):
    r = await _post(
        client,
        {
            "kind": "TEST_REPORT",
            "format": "EXCEL",
            "options": {
                "title": "Mock exams",
                "includeCharts": False,
                "subjects": ["Math", "Physics"],
                "columns": ["date", "score"],
                "dateRange": {"from": "2024-01-01", "to": "2024-03-31"},
            },
        },
    )
    assert r.status_code == 201, r.text

    job = app.state.services.jobs.get(r.json()["jobId"])
    assert isinstance(job.options, core.TestReportOptions)
    assert job.options.title == "Mock exams"
    assert job.options.include_charts is False
    assert job.options.columns == ["date", "score"]
    assert str(job.options.date_range.start) == "2024-01-01"


@pytest.mark.anyio
async def test_defaults(client, app):
    r = await _post(client, {"kind": "RANKINGS"})
    assert r.status_code == 201

    job = app.state.services.jobs.get(r.json()["jobId"])
    assert job.format.value == "PDF"
    assert isinstance(job.options, core.RankingsOptions)
    assert job.options.include_charts is True
    assert job.options.subjects == []


def test_period_summary_requires_date_range():
    with pytest.raises(ValueError):
        core.EXPORT_REQUEST.validate_python({"kind": "PERIOD_SUMMARY", "options": {"title": "Q1"}})

    request = core.EXPORT_REQUEST.validate_python(
        {"kind": "PERIOD_SUMMARY", "options": {"dateRange": {"from": "2024-01-01", "to": "2024-01-01"}}}
    )
    assert isinstance(request, core.PeriodSummaryExport)
