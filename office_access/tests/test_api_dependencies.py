"""
Tests for the FastAPI adapter over the authorization pipeline.
"""

import json

import pytest
from fastapi import Body, Depends, FastAPI, Request
from fastapi.testclient import TestClient

from office_access.api.dependencies import get_filter_predicate, require_access
from office_access.bootstrap import AccessControl
from office_access.constants.permissions import Permission
from office_access.database.session import get_db_session
from office_access.platform.authorization import PipelineDecision
from office_access.platform.principal import Principal
from office_access.platform.scope import FilterPredicate

OFFICE = "office-1"


def build_app(access_control=None, db_session=None) -> FastAPI:
    app = FastAPI()
    if access_control is not None:
        access_control.install(app)
    if db_session is not None:
        app.dependency_overrides[get_db_session] = lambda: db_session

    @app.middleware("http")
    async def attach_principal(request: Request, call_next):
        raw = request.headers.get("X-Test-Principal")
        request.state.principal = Principal.from_claims(json.loads(raw)) if raw else None
        return await call_next(request)

    @app.get("/offices", dependencies=[Depends(require_access(permissions=[Permission.VIEW_OFFICE]))])
    def list_offices(predicate: FilterPredicate = Depends(get_filter_predicate)):
        return predicate.to_dict()

    @app.get("/countries/{countryId}/states/{stateId}/offices")
    def list_state_offices(
        decision: PipelineDecision = Depends(
            require_access(permissions=[Permission.VIEW_SCOPE_OFFICES], enforce_path_scope=True)
        ),
    ):
        return decision.filter_predicate.to_dict()

    @app.post(
        "/offices",
        dependencies=[
            Depends(
                require_access(
                    permissions=[Permission.CREATE_OFFICE],
                    granular_feature=("Create Office", "create_office"),
                )
            )
        ],
    )
    def create_office(request: Request, payload: dict = Body(...)):
        return {"created": payload["name"], "office_id": request.state.office_id}

    @app.post(
        "/admins",
        dependencies=[Depends(require_access(hierarchical_assignment=True))],
    )
    def assign_admin(payload: dict = Body(...)):
        return {"assigned": payload["role"]}

    @app.get("/health", dependencies=[Depends(require_access(public=True))])
    def health():
        return {"status": "ok"}

    @app.get("/unguarded")
    def unguarded(predicate: FilterPredicate = Depends(get_filter_predicate)):
        return predicate.to_dict()

    return app


def headers(**claims) -> dict:
    claims.setdefault("sub", "user-1")
    return {"X-Test-Principal": json.dumps(claims)}


@pytest.fixture
def access_control(registry):
    return AccessControl(registry=registry)


@pytest.fixture
def client(access_control, db_session):
    return TestClient(build_app(access_control, db_session))


class TestRequireAccess:

    def test_unauthenticated(self, client):
        response = client.get("/offices")
        assert response.status_code == 401
        assert response.json()["detail"]["error"] == "unauthenticated"

    def test_permission_denied(self, client):
        response = client.get("/offices", headers=headers(role="USER"))
        assert response.status_code == 403
        assert response.json()["detail"]["reason"] == "permission"

    def test_allowed_attaches_predicate(self, client):
        response = client.get("/offices", headers=headers(role="MANAGER"))
        assert response.status_code == 200
        assert response.json()["kind"] == "unrestricted"

    def test_scoped_predicate_reaches_handler(self, client):
        response = client.get(
            "/offices",
            headers=headers(role="COUNTRY_ADMIN", adminScope={"level": "country", "countryId": 7}),
        )
        assert response.json() == {
            "kind": "by_country",
            "country_id": 7,
            "state_id": None,
            "city_id": None,
        }

    def test_path_scope(self, client):
        admin = headers(
            role="STATE_ADMIN", adminScope={"level": "state", "countryId": 1, "stateId": 5}
        )
        assert client.get("/countries/1/states/5/offices", headers=admin).status_code == 200

        response = client.get("/countries/1/states/6/offices", headers=admin)
        assert response.status_code == 403
        assert response.json()["detail"]["reason"] == "scope"

    def test_public_route(self, client):
        assert client.get("/health").json() == {"status": "ok"}


class TestFeatureGate:

    def test_office_id_from_body(self, client, registry, office_management, make_grant, t0):
        registry.register("Create Office", "create_office", object())
        make_grant(OFFICE, office_management["paid"], activated_at=t0)

        response = client.post(
            "/offices",
            json={"name": "HQ", "officeId": OFFICE},
            headers=headers(role="ADMIN"),
        )
        assert response.status_code == 200
        assert response.json() == {"created": "HQ", "office_id": OFFICE}

    def test_feature_unavailable(self, client, registry, office_management):
        registry.register("Create Office", "create_office", object())
        response = client.post(
            "/offices", json={"name": "HQ", "officeId": OFFICE}, headers=headers(role="ADMIN")
        )
        assert response.status_code == 403
        assert response.json()["detail"]["reason"] == "feature_unavailable"

    def test_missing_office_id(self, client, registry):
        registry.register("Create Office", "create_office", object())
        response = client.post("/offices", json={"name": "HQ"}, headers=headers(role="ADMIN"))
        assert response.json()["detail"]["reason"] == "missing_office_id"

    def test_unregistered_feature_is_server_error(self, client, office_management, make_grant, t0):
        make_grant(OFFICE, office_management["paid"], activated_at=t0)
        response = client.post(
            "/offices", json={"name": "HQ", "officeId": OFFICE}, headers=headers(role="ADMIN")
        )
        assert response.status_code == 500
        assert response.json()["detail"]["error"] == "configuration_error"


class TestRoleAssignment:

    def test_assignable(self, client):
        response = client.post(
            "/admins", json={"role": "CITY_ADMIN"}, headers=headers(role="ADMIN")
        )
        assert response.status_code == 200

    def test_not_assignable(self, client):
        response = client.post(
            "/admins",
            json={"role": "COUNTRY_ADMIN"},
            headers=headers(role="STATE_ADMIN", adminScope={"level": "state", "countryId": 1, "stateId": 5}),
        )
        assert response.status_code == 403
        assert response.json()["detail"]["reason"] == "role_assignment"


class TestWiring:

    @pytest.mark.security
    def test_route_without_require_access_sees_nothing(self, client):
        assert client.get("/unguarded").json()["kind"] == "match_nothing"

    def test_missing_access_control_is_server_error(self, db_session):
        client = TestClient(build_app(access_control=None, db_session=db_session))
        response = client.get("/offices", headers=headers(role="ADMIN"))
        assert response.status_code == 500
