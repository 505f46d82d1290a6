from fastapi import APIRouter, HTTPException, status
from pydantic import EmailStr, TypeAdapter, ValidationError

from app.core.errors import AuthenticationFailure
from app.dependencies import AccountServiceDep, IdentityDep
from app.models import NameChange, PasswordChange, ProfileResponse
from app.services.account_service import AccountOutcome

router = APIRouter(prefix="/api/user", tags=["user"])

_email_adapter = TypeAdapter(EmailStr)


def _user_not_found():
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User Not Found")


@router.get("/profile", response_model=ProfileResponse)
async def get_profile(identity: IdentityDep, service: AccountServiceDep):
    profile = await service.profile(identity)
    if profile is None:
        raise _user_not_found()
    return profile


@router.put("/change-name", status_code=status.HTTP_204_NO_CONTENT)
async def change_name(body: NameChange, identity: IdentityDep, service: AccountServiceDep):
    outcome = await service.change_name(identity, body.name)
    if outcome is AccountOutcome.NOT_FOUND:
        raise _user_not_found()
    if outcome is AccountOutcome.USERNAME_TAKEN:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Username '{body.name}' is already taken",
        )


@router.put("/change-email/{new_email}", status_code=status.HTTP_204_NO_CONTENT)
async def change_email(new_email: str, identity: IdentityDep, service: AccountServiceDep):
    try:
        email = _email_adapter.validate_python(new_email)
    except ValidationError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email Not Valid") from None
    if await service.change_email(identity, email) is AccountOutcome.NOT_FOUND:
        raise _user_not_found()


@router.put("/reset-password", status_code=status.HTTP_204_NO_CONTENT)
async def reset_password(body: PasswordChange, identity: IdentityDep, service: AccountServiceDep):
    outcome = await service.reset_password(identity, body.old_password, body.new_password)
    if outcome is AccountOutcome.NOT_FOUND:
        raise _user_not_found()
    if outcome is AccountOutcome.WRONG_PASSWORD:
        raise AuthenticationFailure("Old password is not correct")
