"""Tests for the error envelope format and the HTTP error boundary.

Error responses share one shape:
{
    "status": "error",
    "error": {
        "kind": "<validation_error|unauthorized|forbidden|not_found|conflict|server_error>",
        "code": "<stable_code>",
        "message": "<human_readable>",
        "details": <object|array|null>
    },
    "request_id": "<uuid>"
}
"""

import pytest
from fastapi import Depends, FastAPI, HTTPException
from fastapi.testclient import TestClient
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from wayfare.api.dependencies import (
    get_optional_principal,
    require_ownership,
    require_permission,
    require_role,
    require_role_level,
    require_super_admin,
    require_tenant_admin,
)
from wayfare.api.error_handling import register_exception_handlers, status_for_kind
from wayfare.api.schemas import Envelope, ErrorBody
from wayfare.service.errors import (
    AuthenticationError,
    ConflictError,
    ErrorKind,
    ForbiddenError,
    NotFoundError,
    ServerError,
    TokenExpiredError,
    TokenInvalidError,
    ValidationError,
)
from wayfare.service.runtime import get_runtime
from wayfare.storage.errors import ConstraintViolation, SessionStoreUnavailable


class TestErrorBody:
    def test_required_fields(self):
        error = ErrorBody(kind="unauthorized", code="INVALID_TOKEN", message="Invalid token")
        assert error.details is None

    def test_unknown_kind_is_rejected(self):
        with pytest.raises(PydanticValidationError):
            ErrorBody(kind="teapot", code="X", message="nope")

    def test_missing_code_is_rejected(self):
        with pytest.raises(PydanticValidationError):
            ErrorBody(kind="server_error", message="boom")


class TestEnvelope:
    def test_ok_envelope(self):
        envelope = Envelope(status="ok", data={"x": 1})
        assert envelope.error is None
        assert envelope.request_id

    def test_status_must_be_ok_or_error(self):
        with pytest.raises(PydanticValidationError):
            Envelope(status="maybe")

    def test_request_ids_are_unique(self):
        assert Envelope(status="ok").request_id != Envelope(status="ok").request_id


class TestErrorKinds:
    @pytest.mark.parametrize(
        "exc,kind,code",
        [
            (ValidationError("bad"), ErrorKind.VALIDATION, "VALIDATION_ERROR"),
            (AuthenticationError("who"), ErrorKind.UNAUTHORIZED, "UNAUTHORIZED"),
            (TokenExpiredError("old"), ErrorKind.UNAUTHORIZED, "TOKEN_EXPIRED"),
            (TokenInvalidError("forged"), ErrorKind.UNAUTHORIZED, "INVALID_TOKEN"),
            (ForbiddenError("no"), ErrorKind.FORBIDDEN, "FORBIDDEN"),
            (NotFoundError("gone"), ErrorKind.NOT_FOUND, "NOT_FOUND"),
            (ConflictError("dup"), ErrorKind.CONFLICT, "CONFLICT"),
            (ServerError("boom"), ErrorKind.SERVER, "SERVER_ERROR"),
        ],
    )
    def test_default_codes(self, exc, kind, code):
        assert exc.kind is kind
        assert exc.code == code

    @pytest.mark.parametrize(
        "kind,status",
        [
            (ErrorKind.VALIDATION, 400),
            (ErrorKind.UNAUTHORIZED, 401),
            (ErrorKind.FORBIDDEN, 403),
            (ErrorKind.NOT_FOUND, 404),
            (ErrorKind.CONFLICT, 409),
            (ErrorKind.SERVER, 500),
        ],
    )
    def test_status_mapping(self, kind, status):
        assert status_for_kind(kind) == status


class Payload(BaseModel):
    count: int


@pytest.fixture
def client():
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/raise/forbidden")
    async def forbidden():
        raise ForbiddenError("nope", "PERMISSION_DENIED", detail={"required_permission": "x:y"})

    @app.get("/raise/expired")
    async def expired():
        raise TokenExpiredError("Token has expired")

    @app.get("/raise/constraint")
    async def constraint():
        raise ConstraintViolation("email already exists", {"field": "email"})

    @app.get("/raise/store-down")
    async def store_down():
        raise SessionStoreUnavailable("get")

    @app.get("/raise/throttled")
    async def throttled():
        raise HTTPException(status_code=429, detail="Too many attempts")

    @app.get("/raise/crash")
    async def crash():
        raise RuntimeError("secret internals")

    @app.post("/echo")
    async def echo(body: Payload):
        return {"count": body.count}

    @app.get("/perm", dependencies=[Depends(require_permission("tenant:update"))])
    async def perm():
        return {"ok": True}

    @app.get("/role", dependencies=[Depends(require_role("agent", "operator"))])
    async def role():
        return {"ok": True}

    @app.get("/level", dependencies=[Depends(require_role_level("operator"))])
    async def level():
        return {"ok": True}

    @app.get("/super", dependencies=[Depends(require_super_admin)])
    async def super_only():
        return {"ok": True}

    @app.get("/tenant-admin", dependencies=[Depends(require_tenant_admin)])
    async def tenant_admin_only():
        return {"ok": True}

    @app.get("/whoami")
    async def whoami(ctx=Depends(get_optional_principal)):
        return {"user_id": ctx.user_id}

    async def owner_from_path(ctx, request):
        return request.path_params["owner_id"]

    @app.get("/owned/{owner_id}", dependencies=[Depends(require_ownership(owner_from_path))])
    async def owned(owner_id: str):
        return {"ok": True}

    return TestClient(app, raise_server_exceptions=False)


def _headers_for(role, tenant=True):
    runtime = get_runtime()
    tenant_id = runtime.store.create_tenant("Acme").id if tenant else None
    user = runtime.store.create_user(
        f"{role}@x.com", "unused", first_name="T", last_name="U", tenant_id=tenant_id, role=role
    )
    token = runtime.tokens.issue_access_token(user.auth_claims())
    return user, {"Authorization": f"Bearer {token}"}


class TestErrorResponses:
    def test_service_error_envelope(self, client):
        response = client.get("/raise/forbidden")

        assert response.status_code == 403
        body = response.json()
        assert body["status"] == "error"
        assert body["error"] == {
            "kind": "forbidden",
            "code": "PERMISSION_DENIED",
            "message": "nope",
            "details": {"required_permission": "x:y"},
        }
        assert body["request_id"]

    def test_token_errors_are_401(self, client):
        response = client.get("/raise/expired")
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "TOKEN_EXPIRED"

    def test_constraint_violation_is_conflict(self, client):
        response = client.get("/raise/constraint")
        assert response.status_code == 409
        assert response.json()["error"]["kind"] == "conflict"

    def test_session_store_outage_is_503(self, client):
        response = client.get("/raise/store-down")
        assert response.status_code == 503
        assert response.json()["error"]["code"] == "SESSION_STORE_UNAVAILABLE"

    def test_unhandled_exception_hides_details(self, client):
        response = client.get("/raise/crash")
        assert response.status_code == 500
        error = response.json()["error"]
        assert error["code"] == "SERVER_ERROR"
        assert "secret internals" not in response.text

    def test_request_validation_is_400(self, client):
        response = client.post("/echo", json={"count": "many"})
        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert error["details"][0]["loc"] == ["body", "count"]

    def test_unknown_route_uses_envelope(self, client):
        response = client.get("/no/such/route")
        assert response.status_code == 404
        assert response.json()["error"]["kind"] == "not_found"

    def test_unmapped_status_gets_its_own_code(self, client):
        response = client.post("/perm")
        assert response.status_code == 405
        assert response.json()["error"]["code"] == "METHOD_NOT_ALLOWED"

        throttled = client.get("/raise/throttled")
        assert throttled.status_code == 429
        error = throttled.json()["error"]
        assert error["code"] == "TOO_MANY_REQUESTS"
        assert error["message"] == "Too many attempts"


class TestGuardDependencies:
    def test_missing_token(self, client):
        response = client.get("/perm")
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "NO_TOKEN"

    def test_permission(self, client):
        _, admin = _headers_for("tenant_admin")
        _, agent = _headers_for("agent")
        assert client.get("/perm", headers=admin).status_code == 200
        assert client.get("/perm", headers=agent).json()["error"]["code"] == "PERMISSION_DENIED"

    def test_role(self, client):
        _, agent = _headers_for("agent")
        _, customer = _headers_for("customer")
        assert client.get("/role", headers=agent).status_code == 200
        assert client.get("/role", headers=customer).status_code == 403

    def test_role_level(self, client):
        _, operator = _headers_for("operator")
        _, supplier = _headers_for("supplier")
        assert client.get("/level", headers=operator).status_code == 200
        response = client.get("/level", headers=supplier)
        assert response.json()["error"]["code"] == "INSUFFICIENT_ROLE_LEVEL"

    def test_super_admin(self, client):
        _, root = _headers_for("super_admin", tenant=False)
        _, admin = _headers_for("tenant_admin")
        assert client.get("/super", headers=root).status_code == 200
        assert client.get("/super", headers=admin).status_code == 403

    def test_tenant_admin(self, client):
        _, admin = _headers_for("tenant_admin")
        _, operator = _headers_for("operator")
        assert client.get("/tenant-admin", headers=admin).status_code == 200
        assert client.get("/tenant-admin", headers=operator).status_code == 403

    def test_ownership(self, client):
        user, headers = _headers_for("customer")
        assert client.get(f"/owned/{user.id}", headers=headers).status_code == 200
        response = client.get("/owned/someone-else", headers=headers)
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "OWNERSHIP_REQUIRED"

    def test_optional_principal(self, client):
        user, headers = _headers_for("agent")
        assert client.get("/whoami", headers=headers).json() == {"user_id": user.id}
        assert client.get("/whoami").json() == {"user_id": None}
        anonymous = client.get("/whoami", headers={"Authorization": "Bearer junk"})
        assert anonymous.json() == {"user_id": None}
