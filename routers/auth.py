from fastapi import APIRouter, Depends, HTTPException, status, Request
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from typing import Annotated, List
import traceback

from models.user import User, UserRole, TokenResponse
from database.auth import create_access_token, decode_access_token
from database.db import get_store
from database.operations import EntityStore, USERS
from services.exceptions import WorkflowError
from services.users import authenticate_user, public_user
from logging_config import logger

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/login")

router = APIRouter()

# Helper to get current user from token
async def get_current_user(
    token: Annotated[str, Depends(oauth2_scheme)],
    store: EntityStore = Depends(get_store),
):
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    logger.debug(f"Decoding token: {token[:10]}...")

    payload = decode_access_token(token)
    if payload is None:
        logger.warning("Invalid or expired token")
        raise credentials_exception

    user_id = payload.get("user_id")
    if user_id is None:
        logger.warning("User id missing from token")
        raise credentials_exception

    user = await store.find_by_id(USERS, user_id)
    if user is None:
        logger.warning(f"User not found: {user_id}")
        raise credentials_exception
    if not user.get("is_active", True):
        logger.warning(f"Inactive user rejected: {user['email']}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is inactive"
        )

    logger.debug(f"User found: {user['email']}")
    return public_user(user)

# Helper to check role
def check_user_role(allowed_roles: List[UserRole]):
    async def _check_user_role(current_user: Annotated[dict, Depends(get_current_user)]):
        allowed = [role.value for role in allowed_roles]
        logger.debug(f"Checking user role. User role: {current_user['role']}, Required roles: {allowed}")

        if current_user["role"] not in allowed:
            logger.warning(f"Insufficient permissions. User role: {current_user['role']}, Required roles: {allowed}")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Insufficient permissions. Required roles: {allowed}"
            )
        return current_user
    return _check_user_role

# Login user
@router.post(
    "/login",
    response_model=TokenResponse,
    summary="Login to get access token",
    description="""
    Login with email and password to get an access token.

    The access token is required for all authenticated endpoints and should be
    included in the Authorization header as a Bearer token.

    **Example header**: `Authorization: Bearer <token>`

    ### curl Example
    ```bash
    curl -X 'POST' \\
      'http://localhost:8000/auth/login' \\
      -H 'accept: application/json' \\
      -H 'Content-Type: application/x-www-form-urlencoded' \\
      -d 'username=admin@example.com&password=password123'
    ```
    """,
    response_description="Returns an access token and token type"
)
async def login_for_access_token(
    form_data: Annotated[OAuth2PasswordRequestForm, Depends()],
    store: EntityStore = Depends(get_store),
    request: Request = None
):
    """
    Login with email and password to get an access token.

    - **username**: User's email
    - **password**: User's password
    """
    logger.info(f"Login attempt: {form_data.username}")
    try:
        user = await authenticate_user(store, form_data.username, form_data.password)
        if not user:
            logger.warning(f"Invalid credentials for user: {form_data.username}")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Incorrect email or password",
                headers={"WWW-Authenticate": "Bearer"},
            )
        if not user.get("is_active", True):
            logger.warning(f"Login refused for inactive user: {form_data.username}")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="User account is inactive"
            )

        access_token = create_access_token(
            data={"sub": user["email"], "user_id": user["id"], "role": user["role"]}
        )

        logger.info(f"Login successful: {form_data.username}")
        return {"access_token": access_token, "token_type": "bearer"}
    except (HTTPException, WorkflowError):
        raise
    except Exception as e:
        logger.error(f"Error during login: {str(e)}")
        logger.error(traceback.format_exc())
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Error during login: {str(e)}"
        )

# Get current user info
@router.get(
    "/me",
    response_model=User,
    summary="Get current user information",
    response_description="Returns the authenticated user's information"
)
async def read_users_me(current_user: Annotated[dict, Depends(get_current_user)]):
    """
    Get information about the currently authenticated user.
    """
    logger.info(f"Getting current user info: {current_user['email']}")
    return current_user
