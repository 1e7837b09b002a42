import re

from fastapi import APIRouter, Depends, Request

from auth import current_user_id, hash_password, issue_token, verify_password
from backend import UserStore
from constants import EMAIL_PATTERN, MIN_PASSWORD_LENGTH
from errors import AuthError, NotFoundError, ValidationError
from logging_config import get_logger
from schemas.users import (
    LoginRequest,
    LoginResponse,
    Profile,
    ProfileResponse,
    PublicUser,
    RegisterRequest,
    RegisterResponse,
)

logger = get_logger(__name__)

users_router = APIRouter(prefix="/api", tags=["users"])


def get_user_store(request: Request) -> UserStore:
    return request.app.state.user_store


@users_router.post("/register", status_code=201, response_model=RegisterResponse)
async def register(payload: RegisterRequest, users: UserStore = Depends(get_user_store)):
    logger.info(f"Register request for username: {payload.username}")
    if not payload.username or not payload.email or not payload.password:
        logger.info("Register failed: missing fields")
        raise ValidationError("Username, email, and password are required")
    if not re.match(EMAIL_PATTERN, payload.email):
        logger.info(f"Register failed: bad email format {payload.email!r}")
        raise ValidationError("Email must be in format: xyz@gmail.com")
    if len(payload.password) < MIN_PASSWORD_LENGTH:
        logger.info("Register failed: password too short")
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

    # ConflictError from the store names the duplicate field
    await users.create_user(payload.username, payload.email, hash_password(payload.password))
    logger.info(f"User registered successfully: {payload.username}")
    return RegisterResponse(success=True, message="Registration successful! Please login.")


@users_router.post("/login", response_model=LoginResponse)
async def login(payload: LoginRequest, users: UserStore = Depends(get_user_store)):
    if not payload.username or not payload.password:
        raise ValidationError("Username/email and password are required")

    logger.info(f"Login request for: {payload.username}")
    user = await users.find_by_login(payload.username)
    if user is None:
        logger.info("Login failed: user not found")
        raise AuthError("Invalid credentials")
    if not user.is_active:
        logger.info(f"Login failed: user {user.id} is inactive")
        raise AuthError("Account is inactive")
    if not verify_password(payload.password, user.password):
        logger.info(f"Login failed: password mismatch for user {user.id}")
        raise AuthError("Invalid credentials")

    await users.touch_last_login(user.id)
    logger.info(f"Login successful for user: {user.username}")
    return LoginResponse(
        success=True,
        user=PublicUser(id=user.id, username=user.username, email=user.email),
        token=issue_token(user.id),
        message="Login successful",
    )


@users_router.get("/profile", response_model=ProfileResponse)
async def profile(user_id: str = Depends(current_user_id), users: UserStore = Depends(get_user_store)):
    user = await users.find_by_id(user_id)
    if user is None:
        raise NotFoundError("User not found")
    return ProfileResponse(user=Profile(**user.model_dump(exclude={"password"})))
