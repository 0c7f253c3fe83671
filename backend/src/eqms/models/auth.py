"""
Auth and OTP request models
"""
from pydantic import BaseModel, Field, EmailStr
from typing import Optional
from enum import Enum


class SignupRequest(BaseModel):
    email: EmailStr
    password: str
    name: str = Field(..., min_length=1, max_length=150)
    role_id: Optional[str] = None
    department_id: Optional[str] = None


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class ResetPasswordRequest(BaseModel):
    email: EmailStr
    new_password: str
    confirm_password: str


class OtpAction(str, Enum):
    REGISTER = "register"
    RESET = "reset"


class OtpGenerateRequest(BaseModel):
    email: EmailStr
    action: OtpAction


class OtpVerifyRequest(BaseModel):
    email: EmailStr
    otp: Optional[str] = None
