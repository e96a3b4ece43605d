from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy.orm import Session

from intake_api.api.deps import current_user, get_db, session_token
from intake_api.core.errors import ApiError
from intake_api.db.models import User
from intake_api.services import auth as auth_service

router = APIRouter(prefix="/auth", tags=["auth"])


class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class RegisterRequest(BaseModel):
    email: Optional[str] = None
    firstName: Optional[str] = None
    lastName: Optional[str] = None
    dateOfBirth: Optional[str] = None
    password: Optional[str] = None
    confirmPassword: Optional[str] = None


@router.post("/register")
def register(req: RegisterRequest, db: Session = Depends(get_db)):
    user = auth_service.register_user(
        db,
        email=req.email or "",
        first_name=req.firstName or "",
        last_name=req.lastName or "",
        date_of_birth=req.dateOfBirth or "",
        password=req.password or "",
        confirm_password=req.confirmPassword or "",
    )
    return {
        "success": True,
        "message": "Registration successful. Your account is pending administrator approval.",
        "userId": user.id,
    }


@router.post("/login")
def login(req: LoginRequest, db: Session = Depends(get_db)):
    session = auth_service.login(db, req.email, req.password)
    user = session.user
    return {
        "success": True,
        "sessionId": session.token,
        "email": user.email,
        "firstName": user.first_name,
        "lastName": user.last_name,
        "role": user.role.value,
        "dateOfBirth": user.date_of_birth,
        "createdAt": auth_service.serialize_user(user)["createdAt"],
    }


@router.post("/logout")
def logout(request: Request, db: Session = Depends(get_db)):
    token = session_token(request)
    if not token or not auth_service.logout(db, token):
        raise ApiError(401, "UNAUTHORIZED", "Authentication required")
    return {"success": True, "message": "Logged out"}


@router.get("/me")
def me(user: User = Depends(current_user)):
    return {"success": True, "user": auth_service.serialize_user(user)}
