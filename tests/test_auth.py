import pytest

from conftest import GROUP_CHAT, OTHER_ADMIN, STUDENT, SUPER_ADMIN
from exam_bot.auth import AccessControl, Configured, Granted
from exam_bot.errors import AlreadyExists, NotFoundError, PermissionDenied, ValidationError


@pytest.fixture()
def access(store):
    return AccessControl(store, [SUPER_ADMIN, SUPER_ADMIN + 1, SUPER_ADMIN])


def test_configured_admins_are_super_admins(access):
    assert access.is_super_admin(SUPER_ADMIN)
    assert access.is_super_admin(SUPER_ADMIN + 1)
    assert not access.is_admin(STUDENT)
    assert [entry.priority for entry in access.configured] == [0, 1]


def test_granted_admin_is_not_super(access):
    granted = access.grant_admin(OTHER_ADMIN, SUPER_ADMIN, username="helper")

    assert isinstance(granted, Granted)
    assert access.is_admin(OTHER_ADMIN)
    assert not access.is_super_admin(OTHER_ADMIN)
    with pytest.raises(PermissionDenied):
        access.grant_admin(STUDENT, OTHER_ADMIN)


def test_authorities_list_configured_first(access):
    access.grant_admin(OTHER_ADMIN, SUPER_ADMIN)

    entries = access.authorities()

    assert [type(e) for e in entries] == [Configured, Configured, Granted]
    assert [e.user_id for e in entries] == [SUPER_ADMIN, SUPER_ADMIN + 1, OTHER_ADMIN]


def test_duplicate_grant_is_rejected(access):
    access.grant_admin(OTHER_ADMIN, SUPER_ADMIN)

    with pytest.raises(AlreadyExists):
        access.grant_admin(OTHER_ADMIN, SUPER_ADMIN)
    with pytest.raises(AlreadyExists):
        access.grant_admin(SUPER_ADMIN + 1, SUPER_ADMIN)


def test_configured_admins_cannot_be_revoked(access):
    with pytest.raises(PermissionDenied):
        access.revoke_admin(SUPER_ADMIN + 1, SUPER_ADMIN)

    assert access.is_super_admin(SUPER_ADMIN + 1)


def test_revoke_granted_admin(access):
    access.grant_admin(OTHER_ADMIN, SUPER_ADMIN)

    access.revoke_admin(OTHER_ADMIN, SUPER_ADMIN)

    assert not access.is_admin(OTHER_ADMIN)
    with pytest.raises(NotFoundError):
        access.revoke_admin(OTHER_ADMIN, SUPER_ADMIN)


def test_parse_admin_id(access):
    assert access.parse_admin_id(" 42 ") == 42
    with pytest.raises(ValidationError):
        access.parse_admin_id("@someone")


def test_group_authorization(access):
    access.authorize_group(GROUP_CHAT, SUPER_ADMIN, title="Class A")

    assert access.is_group_authorized(GROUP_CHAT)
    with pytest.raises(AlreadyExists):
        access.authorize_group(GROUP_CHAT, SUPER_ADMIN)
    with pytest.raises(PermissionDenied):
        access.authorize_group(GROUP_CHAT - 1, STUDENT)

    access.revoke_group(GROUP_CHAT, SUPER_ADMIN)
    assert not access.is_group_authorized(GROUP_CHAT)
    with pytest.raises(NotFoundError):
        access.revoke_group(GROUP_CHAT, SUPER_ADMIN)


@pytest.mark.parametrize("text", ["-100500", "0", "-5"])
def test_parse_admin_id_rejects_chat_ids_and_zero(access, text):
    with pytest.raises(ValidationError):
        access.parse_admin_id(text)
