"""Auth router for account endpoints.

Endpoints:
    POST /api/auth/register  - Create an account, returns {token, user}
    POST /api/auth/login     - Log in, returns {token, user}
    GET  /api/auth/me        - Current user for a bearer token

Register and login are plain ``def`` endpoints: password hashing and the
directory lookups block, so FastAPI runs them in its threadpool.
"""
import logging

from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel

from app.chat.errors import AuthenticationFailure
from app.config import get_config
from app.storage.schemas import UserPublic, UserRecord
from app.storage.users import DuckDBUserDirectory

from .service import AccountError, AccountService, AuthResult, get_account_service
from .tokens import get_token_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


class CredentialsRequest(BaseModel):
    """Request body for register and login."""
    username: str
    password: str


def get_current_user(authorization: str = Header(default="")) -> UserRecord:
    """Resolve ``Authorization: Bearer <token>`` to a user.

    401 when the header is missing, 403 for a bad token or unknown user.
    """
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(status_code=401, detail="Access token required")
    try:
        user_id = get_token_service().verify(token)
    except AuthenticationFailure as e:
        raise HTTPException(status_code=403, detail=e.reason)
    user = DuckDBUserDirectory.get_instance(get_config().storage.users_db).find_by_id(user_id)
    if user is None:
        raise HTTPException(status_code=403, detail="Invalid user")
    return user


@router.post("/register", status_code=201)
def register(
    request: CredentialsRequest,
    accounts: AccountService = Depends(get_account_service),
) -> AuthResult:
    try:
        return accounts.register(request.username, request.password)
    except AccountError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/login")
def login(
    request: CredentialsRequest,
    accounts: AccountService = Depends(get_account_service),
) -> AuthResult:
    try:
        return accounts.login(request.username, request.password)
    except AccountError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/me")
async def me(user: UserRecord = Depends(get_current_user)) -> UserPublic:
    return user.public()
