"""
Tests for UserService: users, additional roles and actor resolution.
"""

from uuid import uuid4

import pytest

from aft_kernel.domain.statuses import Role
from aft_kernel.exceptions import UserNotFoundError, ValidationError


class TestCreateUser:

    def test_actor_has_primary_role(self, user_service):
        actor = user_service.create_user("pat@example.mil", "Pat", "Signer", Role.DAO)
        assert actor.roles == frozenset({Role.DAO})
        assert actor.name == "Pat Signer"
        assert actor.email == "pat@example.mil"

    def test_additional_roles_join_the_union(self, user_service):
        actor = user_service.create_user(
            "pat@example.mil", "Pat", "Signer", "requestor",
            additional_roles=("dta", Role.SME),
        )
        assert actor.roles == frozenset({Role.REQUESTOR, Role.DTA, Role.SME})

    def test_explicit_id(self, user_service):
        user_id = uuid4()
        actor = user_service.create_user(
            "pat@example.mil", "Pat", "Signer", Role.CPSO, user_id=user_id,
        )
        assert actor.id == user_id

    def test_duplicate_email(self, user_service):
        user_service.create_user("pat@example.mil", "Pat", "Signer", Role.DAO)
        with pytest.raises(ValidationError) as exc_info:
            user_service.create_user("pat@example.mil", "Pat", "Again", Role.CPSO)
        assert exc_info.value.field == "email"

    @pytest.mark.parametrize("email", ["", "not-an-email"])
    def test_bad_email(self, user_service, email):
        with pytest.raises(ValidationError):
            user_service.create_user(email, "Pat", "Signer", Role.DAO)

    def test_unknown_role(self, user_service):
        with pytest.raises(ValueError):
            user_service.create_user("pat@example.mil", "Pat", "Signer", "wizard")


class TestRoles:

    def test_assign_and_revoke(self, user_service, users):
        actor = user_service.assign_role(users.approver.id, Role.CPSO, assigned_by=users.admin.id)
        assert Role.CPSO in actor.roles

        actor = user_service.revoke_role(users.approver.id, Role.CPSO)
        assert actor.roles == frozenset({Role.APPROVER})

    def test_regrant_reactivates(self, user_service, users):
        user_service.assign_role(users.sme.id, Role.DTA)
        user_service.revoke_role(users.sme.id, Role.DTA)
        actor = user_service.assign_role(users.sme.id, Role.DTA)
        assert actor.roles == frozenset({Role.SME, Role.DTA})

    def test_primary_role_cannot_be_revoked(self, user_service, users):
        with pytest.raises(ValidationError) as exc_info:
            user_service.revoke_role(users.dao.id, Role.DAO)
        assert exc_info.value.field == "role"

    def test_unknown_user(self, user_service):
        with pytest.raises(UserNotFoundError):
            user_service.assign_role(uuid4(), Role.DTA)


class TestActorResolution:

    def test_get_actor(self, user_service, users):
        assert user_service.get_actor(users.cpso.id) == users.cpso

    def test_deactivated_user_is_not_an_actor(self, user_service, users):
        user_service.deactivate(users.cpso.id)
        with pytest.raises(UserNotFoundError):
            user_service.get_actor(users.cpso.id)
        assert user_service.find_actor(users.cpso.id) is None

    def test_find_actor(self, user_service, users):
        assert user_service.find_actor(None) is None
        assert user_service.find_actor(uuid4()) is None
        assert user_service.find_actor(users.sme.id) == users.sme

    def test_require_role_holder(self, user_service, users):
        assert user_service.require_role_holder(users.sme.id, Role.SME, "sme_id") == users.sme
        with pytest.raises(ValidationError) as exc_info:
            user_service.require_role_holder(users.dta.id, Role.SME, "sme_id")
        assert exc_info.value.field == "sme_id"

    def test_role_change_logged(self, user_service, users, captured_logs):
        user_service.assign_role(users.dta.id, Role.SME)
        records = [r for r in captured_logs() if r["message"] == "role_assigned"]
        assert records[0]["role"] == "sme"
        assert records[0]["user_id"] == str(users.dta.id)
