import pytest

from rukun.constants import RoleType
from rukun.core.errors import BadRequestError, NotFoundError
from rukun.services.role_labels import (
    RoleLabelCache,
    delete_role_label,
    get_role_label_map,
    list_role_labels,
    resolve_role_label,
    upsert_role_label,
)


def test_empty_map_falls_back_to_defaults(db_session, community):
    overrides = get_role_label_map(db_session, community.rw.id)

    assert overrides == {}
    assert resolve_role_label(RoleType.LEADER, overrides) == "Group Leader"
    assert resolve_role_label("ADMIN", overrides) == "Sub-group Admin"
    assert resolve_role_label(RoleType.TREASURER, overrides) == "Treasurer"
    assert resolve_role_label(RoleType.RESIDENT, overrides) == "Resident"


def test_upsert_creates_then_replaces(db_session, community):
    upsert_role_label(db_session, community.rw.id, RoleType.LEADER, "Ketua RW")
    stored = upsert_role_label(db_session, community.rw.id, RoleType.LEADER, "  Ketua  ")

    assert stored.label == "Ketua"
    assert len(list_role_labels(db_session, community.rw.id)) == 1
    overrides = get_role_label_map(db_session, community.rw.id)
    assert overrides == {"LEADER": "Ketua"}
    assert resolve_role_label(RoleType.ADMIN, overrides) == "Sub-group Admin"


def test_labels_are_scoped_per_rw(db_session, community, other_community):
    upsert_role_label(db_session, community.rw.id, RoleType.RESIDENT, "Warga")

    assert get_role_label_map(db_session, other_community.rw.id) == {}


@pytest.mark.parametrize("label", ["", "   ", "x" * 51])
def test_label_length_is_validated(db_session, community, label):
    with pytest.raises(BadRequestError):
        upsert_role_label(db_session, community.rw.id, RoleType.ADMIN, label)


def test_label_of_exactly_fifty_characters_is_accepted(db_session, community):
    stored = upsert_role_label(db_session, community.rw.id, RoleType.ADMIN, "x" * 50)
    assert len(stored.label) == 50


def test_unknown_role_is_rejected(db_session, community):
    with pytest.raises(BadRequestError):
        upsert_role_label(db_session, community.rw.id, "MAYOR", "Walikota")


def test_delete_missing_override_raises_not_found(db_session, community):
    with pytest.raises(NotFoundError):
        delete_role_label(db_session, community.rw.id, RoleType.TREASURER)


def test_delete_restores_default(db_session, community):
    upsert_role_label(db_session, community.rw.id, RoleType.TREASURER, "Bendahara")
    delete_role_label(db_session, community.rw.id, RoleType.TREASURER)

    overrides = get_role_label_map(db_session, community.rw.id)
    assert resolve_role_label(RoleType.TREASURER, overrides) == "Treasurer"


def test_cache_fetches_once_until_invalidated():
    calls = []
    source = {"LEADER": "Ketua"}

    def fetch():
        calls.append(1)
        return dict(source)

    cache = RoleLabelCache(fetch)
    assert not cache.loaded
    assert cache.label_for(RoleType.LEADER) == "Ketua"
    assert cache.label_for(RoleType.ADMIN) == "Sub-group Admin"
    assert len(calls) == 1

    source["LEADER"] = "Ketua RW"
    assert cache.get()["LEADER"] == "Ketua"
    cache.invalidate()
    assert cache.get()["LEADER"] == "Ketua RW"
    assert cache.refresh() == {"LEADER": "Ketua RW"}
    assert len(calls) == 3


def test_cache_does_not_keep_failed_fetch():
    attempts = {"count": 0}

    def flaky_fetch():
        attempts["count"] += 1
        if attempts["count"] == 1:
            raise ConnectionError("offline")
        return {}

    cache = RoleLabelCache(flaky_fetch)
    with pytest.raises(ConnectionError):
        cache.get()
    assert not cache.loaded
    assert cache.get() == {}
    assert cache.loaded
