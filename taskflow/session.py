import logging

from . import schemas
from .errors import SessionClosedError
from .gateway import Gateway

logger = logging.getLogger(__name__)


class UserSession:
    """An authenticated user bound to a gateway.

    Created at sign-in, handed to the controller and the personal-data
    hooks, torn down by ``close()`` at logout. A closed session refuses
    further use.
    """

    def __init__(self, gateway: Gateway, user: schemas.CurrentUser):
        self._gateway = gateway
        self._user = user
        self._closed = False

    @classmethod
    def open(cls, gateway: Gateway, email: str, password: str) -> "UserSession":
        gateway.login(email, password)
        user = gateway.get_current_user()
        logger.info("Signed in as %s", user.email)
        return cls(gateway, user)

    @classmethod
    def signup(cls, gateway: Gateway, email: str, password: str, username: str,
               full_name: str = None, department: str = None) -> "UserSession":
        gateway.register(email, password, username, full_name=full_name, department=department)
        return cls.open(gateway, email, password)

    def _check_open(self):
        if self._closed:
            raise SessionClosedError("Session has been closed; sign in again")

    @property
    def is_open(self) -> bool:
        return not self._closed

    @property
    def gateway(self) -> Gateway:
        self._check_open()
        return self._gateway

    @property
    def user(self) -> schemas.CurrentUser:
        self._check_open()
        return self._user

    @property
    def user_id(self) -> str:
        return self.user.id

    @property
    def is_super_admin(self) -> bool:
        return self.user.is_super_admin

    def refresh_user(self) -> schemas.CurrentUser:
        self._user = self.gateway.get_current_user()
        return self._user

    def close(self):
        if self._closed:
            return
        self._gateway.logout()
        self._closed = True
        logger.info("Signed out %s", self._user.email)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
