import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from rukun.auth.jwt import get_current_user, has_capability, require_capability, require_roles
from rukun.constants import (
    CAP_DUES_SET_AMOUNT,
    CAP_DUES_SET_DUE_DAY,
    CAP_GROUPS_MANAGE,
    CAP_LABELS_MANAGE,
    CAP_USERS_MANAGE,
    ROLE_CAPABILITIES,
    RoleType,
)


class DummyUser:
    def __init__(self, role_type: str):
        self.role_type = role_type


def _build_app() -> FastAPI:
    app = FastAPI()

    @app.get("/labels")
    def labels_route(_: object = Depends(require_capability(CAP_LABELS_MANAGE))):
        return {"ok": True}

    @app.get("/officers")
    def officers_route(_: object = Depends(require_roles(RoleType.LEADER, RoleType.TREASURER))):
        return {"ok": True}

    return app


@pytest.mark.parametrize(
    "role,capability,expected",
    [
        (RoleType.LEADER, CAP_DUES_SET_DUE_DAY, True),
        (RoleType.ADMIN, CAP_DUES_SET_DUE_DAY, False),
        (RoleType.TREASURER, CAP_DUES_SET_DUE_DAY, False),
        (RoleType.TREASURER, CAP_DUES_SET_AMOUNT, True),
        (RoleType.ADMIN, CAP_USERS_MANAGE, True),
        (RoleType.TREASURER, CAP_USERS_MANAGE, False),
        (RoleType.ADMIN, CAP_GROUPS_MANAGE, False),
        (RoleType.RESIDENT, CAP_DUES_SET_AMOUNT, False),
    ],
)
def test_capability_table(role, capability, expected):
    assert has_capability(DummyUser(role.value), capability) is expected


def test_every_role_has_an_entry():
    assert set(ROLE_CAPABILITIES) == set(RoleType)
    assert ROLE_CAPABILITIES[RoleType.RESIDENT] == frozenset()


def test_unknown_role_has_no_capabilities():
    assert has_capability(DummyUser("SUPERUSER"), CAP_LABELS_MANAGE) is False


def test_labels_route_requires_leader_capability():
    app = _build_app()
    client = TestClient(app)

    app.dependency_overrides[get_current_user] = lambda: DummyUser("ADMIN")
    response = client.get("/labels")
    assert response.status_code == 403

    app.dependency_overrides[get_current_user] = lambda: DummyUser("LEADER")
    response = client.get("/labels")
    assert response.status_code == 200


def test_officers_route_allows_listed_roles():
    app = _build_app()
    client = TestClient(app)

    app.dependency_overrides[get_current_user] = lambda: DummyUser("RESIDENT")
    assert client.get("/officers").status_code == 403

    app.dependency_overrides[get_current_user] = lambda: DummyUser("TREASURER")
    assert client.get("/officers").status_code == 200
