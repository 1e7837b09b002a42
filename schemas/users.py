from datetime import datetime
from pydantic import BaseModel
from typing import Optional


class User(BaseModel):
    id: str
    username: str
    email: str
    password: str
    is_active: bool = True
    last_login: Optional[datetime] = None
    created_at: datetime

class RegisterRequest(BaseModel):
    username: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None

class RegisterResponse(BaseModel):
    success: bool
    message: str

class LoginRequest(BaseModel):
    # Either the username or the email address
    username: Optional[str] = None
    password: Optional[str] = None

class PublicUser(BaseModel):
    id: str
    username: str
    email: str

class LoginResponse(BaseModel):
    success: bool
    user: PublicUser
    token: str
    message: str

class Profile(BaseModel):
    id: str
    username: str
    email: str
    is_active: bool
    last_login: Optional[datetime] = None
    created_at: datetime

class ProfileResponse(BaseModel):
    user: Profile
