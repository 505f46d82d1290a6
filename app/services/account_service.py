import logging
from enum import Enum

from starlette.concurrency import run_in_threadpool

from app.models import (
    LoginRequest,
    LoginResponse,
    ProfileResponse,
    RegisterRequest,
    User,
)
from app.security.passwords import hash_password, verify_password
from app.security.tokens import TokenService
from app.stores.base import UserStore

logger = logging.getLogger(__name__)


class AccountOutcome(str, Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    USERNAME_TAKEN = "username_taken"
    WRONG_PASSWORD = "wrong_password"


class AccountService:
    """Registration, login and profile changes on top of a UserStore."""

    def __init__(self, users: UserStore, tokens: TokenService, hash_rounds: int = 12):
        self.users = users
        self.tokens = tokens
        self.hash_rounds = hash_rounds

    async def _hash(self, password: str) -> str:
        # bcrypt is CPU bound; keep it off the event loop
        return await run_in_threadpool(hash_password, password, self.hash_rounds)

    async def register(self, request: RegisterRequest) -> AccountOutcome:
        if await self.users.get_by_username(request.username) is not None:
            return AccountOutcome.USERNAME_TAKEN
        user = User(
            username=request.username,
            email=request.email,
            password_hash=await self._hash(request.password),
        )
        await self.users.add(user)
        await self.users.commit()
        logger.info("Registered user %s", user.id)
        return AccountOutcome.OK

    async def login(self, request: LoginRequest) -> LoginResponse | None:
        user = await self.users.get_by_username(request.username)
        if user is None or not await run_in_threadpool(
            verify_password, request.password, user.password_hash
        ):
            logger.info("Failed login for %r", request.username)
            return None
        return LoginResponse(
            token=self.tokens.issue(user.id, user.username, user.email),
            user_id=user.id,
            user_name=user.username,
            email=user.email,
        )

    async def profile(self, identity: str) -> ProfileResponse | None:
        user = await self.users.get(identity)
        if user is None:
            return None
        return ProfileResponse(id=user.id, name=user.username, email=user.email)

    async def change_name(self, identity: str, name: str) -> AccountOutcome:
        user = await self.users.get(identity)
        if user is None:
            return AccountOutcome.NOT_FOUND
        existing = await self.users.get_by_username(name)
        if existing is not None and existing.id != identity:
            return AccountOutcome.USERNAME_TAKEN
        user.username = name
        await self.users.update(user)
        await self.users.commit()
        return AccountOutcome.OK

    async def change_email(self, identity: str, email: str) -> AccountOutcome:
        user = await self.users.get(identity)
        if user is None:
            return AccountOutcome.NOT_FOUND
        user.email = email
        await self.users.update(user)
        await self.users.commit()
        return AccountOutcome.OK

    async def reset_password(self, identity: str, old: str, new: str) -> AccountOutcome:
        user = await self.users.get(identity)
        if user is None:
            return AccountOutcome.NOT_FOUND
        if not await run_in_threadpool(verify_password, old, user.password_hash):
            return AccountOutcome.WRONG_PASSWORD
        user.password_hash = await self._hash(new)
        await self.users.update(user)
        await self.users.commit()
        return AccountOutcome.OK
