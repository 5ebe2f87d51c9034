from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from compliance.domain_errors import DomainError, InfrastructureFailure, InvalidTransitionError, NotFoundError
from compliance.problem_details import build_infrastructure_problem_response, build_problem_details_response


def test_problem_details_payload_contains_stable_code_and_rfc7807_fields() -> None:
    response = build_problem_details_response(
        DomainError(
            code="SAMPLE_ERROR",
            http_status=409,
            message="sample failed",
            details={"sample": True},
        )
    )

    assert response.status_code == 409
    assert response.media_type == "application/problem+json"

    body = response.body.decode("utf-8")
    assert '"type":"https://api.compliance.local/problems/sample_error"' in body
    assert '"title":"Conflict"' in body
    assert '"status":409' in body
    assert '"detail":"sample failed"' in body
    assert '"code":"SAMPLE_ERROR"' in body
    assert '"details":{"sample":true}' in body


def test_typed_errors_carry_their_http_status() -> None:
    not_found = build_problem_details_response(
        NotFoundError(code="REQUIREMENT_NOT_FOUND", message="Requirement not found")
    )
    invalid = build_problem_details_response(
        InvalidTransitionError(code="REMINDER_JOB_ALREADY_COMPLETED", message="Reminder job already completed")
    )

    assert not_found.status_code == 404
    assert '"title":"Not Found"' in not_found.body.decode("utf-8")
    assert invalid.status_code == 409
    assert '"code":"REMINDER_JOB_ALREADY_COMPLETED"' in invalid.body.decode("utf-8")


def test_problem_details_omits_details_when_none() -> None:
    response = build_problem_details_response(
        DomainError(
            code="NO_DETAILS",
            http_status=422,
            message="validation failed",
            details=None,
        )
    )

    body = response.body.decode("utf-8")
    assert response.status_code == 422
    assert response.media_type == "application/problem+json"
    assert '"code":"NO_DETAILS"' in body
    assert '"details"' not in body


def test_infrastructure_failure_maps_to_503() -> None:
    response = build_infrastructure_problem_response(InfrastructureFailure("Cannot query due reminder jobs"))

    body = response.body.decode("utf-8")
    assert response.status_code == 503
    assert '"code":"INFRASTRUCTURE_FAILURE"' in body
    assert '"detail":"Cannot query due reminder jobs"' in body


def test_fastapi_exception_handler_maps_domain_error_to_problem_details() -> None:
    app = FastAPI()

    async def _handle_domain_error(_: Request, exc: DomainError):
        return build_problem_details_response(exc)

    app.add_exception_handler(DomainError, _handle_domain_error)

    @app.get("/boom")
    def _boom():
        raise DomainError(
            code="ROUTE_PROBLEM",
            http_status=409,
            message="route failed",
            details={"source": "test"},
        )

    client = TestClient(app)
    response = client.get("/boom")

    assert response.status_code == 409
    assert response.headers["content-type"].startswith("application/problem+json")
    payload = response.json()
    assert payload["code"] == "ROUTE_PROBLEM"
    assert payload["detail"] == "route failed"
