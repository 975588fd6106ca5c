"""
Identity bridge tests.

A principal forwarded by the identity gateway maps to exactly one local user.
The designated elevated-access email always ends up with the admin role;
everyone else starts as a viewer.
"""

import pytest

from stockroom.errors import ConflictError, InvalidArgumentError, NotFoundError, UnauthenticatedError
from stockroom.models import Role, SecurityEvent, User
from stockroom.services import identity_service
from stockroom.services.identity_service import Principal

from conftest import OWNER_EMAIL, identity_headers, make_user, reload


class TestSyncUser:

    def test_new_principal_gets_default_role(self, db_session, setup_roles):
        result = identity_service.sync_user(Principal(
            external_id="ext_new", email="New.Person@Example.com", first_name="New", last_name="Person",
        ))

        assert result.created is True
        assert result.promoted is False
        assert result.user.email == "new.person@example.com"
        assert result.user.first_name == "New"
        assert result.user.role.name == "viewer"

    def test_designated_email_is_created_as_admin(self, db_session, setup_roles):
        result = identity_service.sync_user(Principal(external_id="ext_owner", email=OWNER_EMAIL.upper()))
        assert result.created is True
        assert result.user.role.name == "admin"

    def test_sync_is_idempotent(self, db_session, setup_roles):
        principal = Principal(external_id="ext_repeat", email="repeat@example.com")

        first = identity_service.sync_user(principal)
        second = identity_service.sync_user(principal)

        assert first.created is True
        assert second.created is False
        assert second.user.id == first.user.id
        assert db_session.query(User).filter_by(external_id="ext_repeat").count() == 1

    def test_existing_user_keeps_assigned_role(self, db_session, setup_roles):
        user = make_user(db_session, "operator", external_id="ext_op", email="op@example.com")
        result = identity_service.sync_user(Principal(external_id="ext_op", email="op@example.com"))
        assert result.user.id == user.id
        assert result.user.role.name == "operator"

    def test_existing_designated_user_is_promoted(self, db_session, setup_roles):
        user = make_user(db_session, "viewer", external_id="ext_owner", email=OWNER_EMAIL)

        result = identity_service.sync_user(Principal(external_id="ext_owner", email=OWNER_EMAIL))

        assert result.promoted is True
        assert reload(User, user.id).role.name == "admin"
        events = db_session.query(SecurityEvent).filter_by(event_type="ROLE_ELEVATED").all()
        assert len(events) == 1
        assert events[0].user_id == user.id

        again = identity_service.sync_user(Principal(external_id="ext_owner", email=OWNER_EMAIL))
        assert again.promoted is False
        assert db_session.query(SecurityEvent).filter_by(event_type="ROLE_ELEVATED").count() == 1

    @pytest.mark.parametrize("email", [None, "", "   "])
    def test_principal_without_email(self, db_session, setup_roles, email):
        with pytest.raises(InvalidArgumentError):
            identity_service.sync_user(Principal(external_id="ext_noemail", email=email))
        assert db_session.query(User).count() == 0

    def test_missing_principal(self, db_session, setup_roles):
        with pytest.raises(UnauthenticatedError):
            identity_service.sync_user(None)

    def test_unseeded_roles(self, db_session):
        with pytest.raises(NotFoundError):
            identity_service.sync_user(Principal(external_id="ext_early", email="early@example.com"))

    def test_email_linked_to_other_identity(self, db_session, setup_roles):
        make_user(db_session, "viewer", external_id="ext_first", email="shared@example.com")
        with pytest.raises(ConflictError):
            identity_service.sync_user(Principal(external_id="ext_second", email="shared@example.com"))


class TestRoleAssignment:

    def test_assign_role_logs_event(self, db_session, admin_user, viewer_user):
        manager = db_session.query(Role).filter_by(name="manager").one()
        user = identity_service.assign_role(
            user_id=viewer_user.id, role_id=manager.id, acting_user_id=admin_user.id
        )

        assert user.role.name == "manager"
        event = db_session.query(SecurityEvent).filter_by(event_type="ROLE_ASSIGNED").one()
        assert event.user_id == admin_user.id
        assert event.resource == f"user:{viewer_user.id}"

    def test_assign_unknown_role(self, db_session, viewer_user):
        with pytest.raises(NotFoundError):
            identity_service.assign_role(user_id=viewer_user.id, role_id=9999)

    def test_assign_role_by_name(self, db_session, viewer_user):
        user = identity_service.assign_role_by_name(email="VIEWER@stockroom.test", role_name="operator")
        assert user.role.name == "operator"

    def test_resync_elevated_users(self, db_session, setup_roles):
        make_user(db_session, "viewer", external_id="ext_owner", email=OWNER_EMAIL)
        make_user(db_session, "viewer", external_id="ext_other", email="other@example.com")

        assert identity_service.resync_elevated_users() == 1
        assert identity_service.resync_elevated_users() == 0
        roles = {u.email: u.role.name for u in identity_service.list_users()}
        assert roles == {OWNER_EMAIL: "admin", "other@example.com": "viewer"}


class TestSyncEndpoint:

    def test_requires_principal(self, client, db_session, setup_roles):
        response = client.post("/api/auth/sync-user")
        assert response.status_code == 401
        assert response.get_json()["code"] == "UNAUTHENTICATED"

    def test_create_then_refresh(self, client, db_session, setup_roles):
        headers = identity_headers("ext_web", "web@example.com", first_name="Web", last_name="User")

        created = client.post("/api/auth/sync-user", headers=headers)
        assert created.status_code == 201
        body = created.get_json()
        assert body["created"] is True
        assert body["user"]["role"]["name"] == "viewer"
        assert body["user"]["last_name"] == "User"

        refreshed = client.post("/api/auth/sync-user", headers=headers)
        assert refreshed.status_code == 200
        assert refreshed.get_json()["created"] is False
        assert refreshed.get_json()["user"]["id"] == body["user"]["id"]

    def test_missing_email_is_bad_request(self, client, db_session, setup_roles):
        response = client.post("/api/auth/sync-user", headers=identity_headers("ext_noemail"))
        assert response.status_code == 400
        assert response.get_json()["code"] == "INVALID_ARGUMENT"

    def test_designated_email_promoted_over_http(self, client, db_session, setup_roles):
        make_user(db_session, "viewer", external_id="ext_owner", email=OWNER_EMAIL)

        response = client.post("/api/auth/sync-user", headers=identity_headers("ext_owner", OWNER_EMAIL))

        assert response.status_code == 200
        assert response.get_json()["promoted"] is True
        assert response.get_json()["user"]["role"]["name"] == "admin"

    def test_me_requires_sync(self, client, db_session, setup_roles):
        response = client.get("/api/auth/me", headers=identity_headers("ext_ghost", "ghost@example.com"))
        assert response.status_code == 401
        assert response.get_json()["details"]["reason"] == "USER_NOT_SYNCED"
