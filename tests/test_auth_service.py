from datetime import timedelta

import jwt
import pytest

from delivery.models.user import User
from delivery.services.auth_service import Actor, AuthService
from delivery.services.errors import NotAuthenticated
from delivery.utils.clock import utcnow

from .conftest import JWT_SECRET


def test_issued_token_resolves_to_actor(services, seed):
    token = services.auth.issue_token(seed.owner)

    actor = services.auth.authenticate(f"Bearer {token}")

    assert actor == Actor(seed.owner, "restaurant_owner")
    assert not actor.is_admin
    assert services.auth.authenticate(f"Bearer {services.auth.issue_token(seed.admin)}").is_admin


@pytest.mark.parametrize("header", [None, "", "Basic abc", "Bearer ", "Bearer not.a.jwt"])
def test_malformed_headers_are_rejected(services, seed, header):
    with pytest.raises(NotAuthenticated):
        services.auth.authenticate(header)


def test_foreign_expired_and_unknown_tokens_are_rejected(services, seed, session_factory):
    foreign = AuthService("another-secret", session_factory).issue_token(seed.customer)
    expired = jwt.encode(
        {"sub": seed.customer, "exp": utcnow() - timedelta(minutes=1)}, JWT_SECRET, algorithm="HS256"
    )
    ghost = services.auth.issue_token("u-ghost")

    for token in (foreign, expired, ghost):
        with pytest.raises(NotAuthenticated):
            services.auth.authenticate(f"Bearer {token}")


def test_deactivated_user_is_rejected(services, seed):
    with pytest.raises(NotAuthenticated):
        services.auth.authenticate(f"Bearer {services.auth.issue_token(seed.inactive_driver)}")


def test_user_with_unknown_role_is_rejected(services, session_factory):
    with session_factory() as session:
        session.add(User(id="u-odd", name="Odd", role="superuser"))

    with pytest.raises(NotAuthenticated):
        services.auth.authenticate(f"Bearer {services.auth.issue_token('u-odd')}")
