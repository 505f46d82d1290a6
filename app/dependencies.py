"""FastAPI dependencies: shared state, identity and admission.

The cache, limiter and token service are built by create_app() and kept on
app.state; nothing here reaches for a module-level singleton.
"""

import logging
from typing import AsyncIterator

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from typing_extensions import Annotated

from app.cache.layer import CacheLayer
from app.core.config import Settings
from app.core.errors import AuthenticationFailure, AuthorizationFailure, RateLimited
from app.database import get_sessionmaker
from app.limiter.admission import Admission, AdmissionLimiter
from app.security.authorizer import MISSING, extract_identity
from app.security.tokens import TokenClaims, TokenService
from app.services.account_service import AccountService
from app.services.task_service import TaskService
from app.stores.base import TaskStore, UserStore
from app.stores.sql import SqlTaskStore, SqlUserStore

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_cache(request: Request) -> CacheLayer:
    return request.app.state.cache


def get_limiter(request: Request) -> AdmissionLimiter:
    return request.app.state.limiter


def get_token_service(request: Request) -> TokenService:
    return request.app.state.token_service


async def get_task_store(request: Request) -> AsyncIterator[TaskStore]:
    settings: Settings = request.app.state.settings
    if settings.storage_backend == "memory":
        yield request.app.state.task_store
        return
    async with get_sessionmaker(settings.database_url, settings.database_echo)() as session:
        yield SqlTaskStore(session)


async def get_user_store(request: Request) -> AsyncIterator[UserStore]:
    settings: Settings = request.app.state.settings
    if settings.storage_backend == "memory":
        yield request.app.state.user_store
        return
    async with get_sessionmaker(settings.database_url, settings.database_echo)() as session:
        yield SqlUserStore(session)


def get_claims(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    tokens: TokenService = Depends(get_token_service),
) -> TokenClaims:
    if credentials is None:
        raise AuthenticationFailure("Missing bearer token")
    result = tokens.validate(credentials.credentials)
    if not result.ok:
        logger.info("Rejected bearer token: %s", result.error.value)
        raise AuthenticationFailure(f"Invalid token: {result.error.value}")
    return result.claims


def get_current_identity(claims: TokenClaims = Depends(get_claims)) -> str:
    outcome = extract_identity(claims)
    if outcome is MISSING:
        raise AuthorizationFailure()
    return outcome.id


def enforce_admission(
    identity: str = Depends(get_current_identity),
    limiter: AdmissionLimiter = Depends(get_limiter),
) -> str:
    if limiter.admit(identity) is Admission.REJECTED:
        raise RateLimited(limiter.retry_after(identity))
    return identity


def enforce_anonymous_admission(limiter: AdmissionLimiter = Depends(get_limiter)) -> None:
    if limiter.admit(None) is Admission.REJECTED:
        raise RateLimited(limiter.retry_after(None))


def get_task_service(
    settings: Settings = Depends(get_app_settings),
    store: TaskStore = Depends(get_task_store),
    cache: CacheLayer = Depends(get_cache),
) -> TaskService:
    return TaskService(
        store,
        cache,
        key_mode=settings.cache_key_mode,
        invalidate_on_write=settings.cache_invalidate_on_write,
    )


def get_account_service(
    settings: Settings = Depends(get_app_settings),
    users: UserStore = Depends(get_user_store),
    tokens: TokenService = Depends(get_token_service),
) -> AccountService:
    return AccountService(users, tokens, hash_rounds=settings.password_hash_rounds)


IdentityDep = Annotated[str, Depends(get_current_identity)]
AdmittedIdentityDep = Annotated[str, Depends(enforce_admission)]
TaskServiceDep = Annotated[TaskService, Depends(get_task_service)]
AccountServiceDep = Annotated[AccountService, Depends(get_account_service)]
