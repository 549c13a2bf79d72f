"""
Signup and login endpoints
"""

from fastapi import APIRouter, Depends, Response

from .deps import BankingSystem, get_banking_system
from .schemas import LoginRequest, RegisterRequest
from ..auth import create_access_token
from ..config import get_config
from ..users import User


router = APIRouter()


def set_session_cookie(response: Response, token: str) -> None:
    config = get_config()
    response.set_cookie(
        key=config.session_cookie_name,
        value=token,
        max_age=config.jwt_expiry_hours * 3600,
        httponly=True,
        samesite="lax"
    )


def issue_session(response: Response, user: User) -> str:
    token = create_access_token(user)
    set_session_cookie(response, token)
    return token


@router.post("/register", status_code=201)
async def register(
    request: RegisterRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Create a user account"""
    user = system.user_manager.create_user(request.name, request.email, request.password)
    return {"message": "User registered successfully", "user": user.to_public_dict()}


@router.post("/login")
async def login(
    request: LoginRequest,
    response: Response,
    system: BankingSystem = Depends(get_banking_system)
):
    """Exchange credentials for a bearer token and session cookie"""
    user = system.user_manager.authenticate(request.email, request.password)
    token = issue_session(response, user)
    return {"access_token": token, "token_type": "bearer", "user": user.to_public_dict()}


@router.post("/logout")
async def logout(response: Response):
    response.delete_cookie(get_config().session_cookie_name)
    return {"success": True}
