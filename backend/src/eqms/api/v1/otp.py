"""
OTP API
One-time codes for registration and password reset
"""
from fastapi import APIRouter, Depends
from motor.motor_asyncio import AsyncIOMotorDatabase

from eqms.core.responses import envelope
from eqms.db.mongo import get_db
from eqms.models.auth import OtpGenerateRequest, OtpVerifyRequest
from eqms.services.otp_service import OtpService


router = APIRouter(prefix="/otp", tags=["OTP"])


@router.post("/generate-otp")
async def generate_otp(
    data: OtpGenerateRequest,
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    await OtpService(db).generate(data.email, data.action)
    return envelope(message="OTP sent to your email")


@router.post("/verify-otp")
async def verify_otp(
    data: OtpVerifyRequest,
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    OtpService(db).verify(data.email, data.otp)
    return envelope(message="OTP verified successfully")
