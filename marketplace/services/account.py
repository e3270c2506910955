import logging
from dataclasses import dataclass

from django.contrib.auth.hashers import check_password, make_password

from marketplace.authentication import issue_token
from marketplace.exceptions import InvalidInput, NotFound, Unauthorized
from marketplace.models import User
from marketplace.store import Store

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoginResult:
    user: User
    token: str


class AccountService:
    """Registration and login. Hashing and signing are delegated to Django and python-jose."""

    def __init__(self, store: Store):
        self.store = store

    def register(self, name: str, password: str) -> User:
        if not name or not password:
            raise InvalidInput("Username and password cannot be empty.")

        user = self.store.users.add(name, make_password(password))
        logger.info("User registered: user=%d", user.pk)
        return user

    def login(self, user_id: int, password: str) -> LoginResult:
        if not user_id or not password:
            raise InvalidInput("User id and password cannot be empty.")

        try:
            user = self.store.users.get(user_id)
        except User.DoesNotExist:
            raise NotFound("User does not exist.")

        if not check_password(password, user.password):
            logger.warning("Login failed (wrong password): user=%d", user_id)
            raise Unauthorized("Wrong user id or password.")

        return LoginResult(user=user, token=issue_token(user.pk))
