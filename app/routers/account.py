from fastapi import APIRouter, Depends, HTTPException, status

from app.core.errors import AuthenticationFailure
from app.dependencies import AccountServiceDep, enforce_anonymous_admission
from app.models import LoginRequest, LoginResponse, RegisterRequest
from app.services.account_service import AccountOutcome

router = APIRouter(
    prefix="/api/account",
    tags=["account"],
    dependencies=[Depends(enforce_anonymous_admission)],
)


@router.post("/register")
async def register(request: RegisterRequest, service: AccountServiceDep):
    """Register a new user"""
    outcome = await service.register(request)
    if outcome is AccountOutcome.USERNAME_TAKEN:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Username '{request.username}' is already taken",
        )
    return {"message": "User registered successfully"}


@router.post("/login", response_model=LoginResponse)
async def login(request: LoginRequest, service: AccountServiceDep):
    """Authenticate and return a bearer token"""
    result = await service.login(request)
    if result is None:
        raise AuthenticationFailure("Invalid username or password")
    return result
