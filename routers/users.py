import logging
import smtplib
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field, model_validator
from pymongo.database import Database
from starlette.datastructures import UploadFile as FormFile

import factory
from database import get_db
from errors import AppError
from mailer import Email
from repositories import UserRepository
from security import (
    COOKIE_NAME,
    create_reset_token,
    hash_password,
    hash_reset_token,
    protect,
    restrict_to,
    send_token,
    verify_password,
)
from uploads import save_user_photo

logger = logging.getLogger(__name__)

PASSWORD_FIELDS = {"password", "password_confirm", "password_hash"}
PROFILE_FIELDS = ("name", "email")

public = APIRouter(prefix="/api/v1/users", tags=["users"])
account = APIRouter(prefix="/api/v1/users", tags=["users"], dependencies=[Depends(protect)])
admin = APIRouter(prefix="/api/v1/users", tags=["users"], dependencies=[Depends(restrict_to("admin"))])


# Request Models

class PasswordPair(BaseModel):
    password: str = Field(..., min_length=8)
    password_confirm: str

    @model_validator(mode="after")
    def passwords_match(self):
        if self.password != self.password_confirm:
            raise ValueError("Passwords are not the same")
        return self


class SignupRequest(PasswordPair):
    name: str = Field(..., min_length=1)
    email: EmailStr


class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class UpdatePasswordRequest(PasswordPair):
    password_current: str


# Authentication

@public.post("/signup", status_code=201)
def signup(payload: SignupRequest, request: Request, db: Database = Depends(get_db)):
    user = UserRepository(db).create({
        "name": payload.name,
        "email": payload.email,
        "password_hash": hash_password(payload.password),
    })
    Email(user, f"{request.base_url}me").send_welcome()
    return send_token(user, 201)


@public.post("/login")
def login(payload: LoginRequest, db: Database = Depends(get_db)):
    if not payload.email or not payload.password:
        raise AppError("Please provide email and password!", 400)
    user = UserRepository(db).find_by_email(payload.email)
    if not user or not verify_password(payload.password, user.get("password_hash", "")):
        raise AppError("Incorrect email or password", 401)
    return send_token(user)


@public.get("/logout")
def logout():
    response = JSONResponse({"status": "success"})
    response.delete_cookie(COOKIE_NAME)
    return response


@public.post("/forgotPassword")
def forgot_password(payload: ForgotPasswordRequest, request: Request, db: Database = Depends(get_db)):
    users = UserRepository(db)
    user = users.find_by_email(payload.email)
    if not user:
        raise AppError("There is no user with that email address.", 404)

    plain, hashed, expires = create_reset_token()
    users.set_reset_token(user["id"], hashed, expires)
    reset_url = f"{request.base_url}api/v1/users/resetPassword/{plain}"
    try:
        Email(user, reset_url).send_password_reset()
    except (smtplib.SMTPException, OSError):
        logger.exception("Password reset email to %s failed", user["email"])
        users.set_reset_token(user["id"], None, None)
        raise AppError("There was an error sending the email. Try again later!", 500)
    return {"status": "success", "message": "Token sent to email!"}


@public.patch("/resetPassword/{token}")
def reset_password(token: str, payload: PasswordPair, db: Database = Depends(get_db)):
    users = UserRepository(db)
    user = users.find_by_reset_token(hash_reset_token(token))
    if not user:
        raise AppError("Token is invalid or has expired", 400)
    return send_token(users.set_password(user["id"], payload.password))


# Current user

@account.patch("/updateMyPassword")
def update_password(payload: UpdatePasswordRequest, user: Dict = Depends(protect), db: Database = Depends(get_db)):
    users = UserRepository(db)
    stored = users.find_with_password(user["id"])
    if not verify_password(payload.password_current, stored.get("password_hash", "")):
        raise AppError("Your current password is wrong.", 401)
    return send_token(users.set_password(user["id"], payload.password))


async def read_profile_changes(request: Request) -> Dict[str, Any]:
    """JSON body, or a (multipart) form carrying the ``photo`` upload."""
    if request.headers.get("content-type", "").startswith("application/json"):
        try:
            body = await request.json()
        except ValueError:
            raise AppError("Invalid input data. Malformed JSON body.", 400)
        if not isinstance(body, dict):
            raise AppError("Invalid input data. Expected a JSON object.", 400)
        return body
    form = await request.form()
    return dict(form.items())


@account.patch("/updateMe")
def update_me(
    body: Dict[str, Any] = Depends(read_profile_changes),
    user: Dict = Depends(protect),
    db: Database = Depends(get_db),
):
    if PASSWORD_FIELDS & body.keys():
        raise AppError("This route is not for password updates. Please use /updateMyPassword.", 400)
    changes = {k: body[k] for k in PROFILE_FIELDS if isinstance(body.get(k), str)}
    photo = body.get("photo")
    filename = save_user_photo(photo if isinstance(photo, FormFile) else None, user["id"])
    if filename:
        changes["photo"] = filename
    updated = UserRepository(db).update(user["id"], changes)
    return {"status": "success", "data": {"user": updated}}


@account.delete("/deleteMe", status_code=204)
def delete_me(user: Dict = Depends(protect), db: Database = Depends(get_db)):
    UserRepository(db).deactivate(user["id"])
    return Response(status_code=204)


@account.get("/me")
def get_me(user: Dict = Depends(protect), db: Database = Depends(get_db)):
    return factory.envelope(UserRepository(db).find_by_id(user["id"]))


# Administration

@admin.post("")
def create_user():
    return JSONResponse(
        status_code=500,
        content={"status": "error", "message": "This route is not defined! Please use /signup instead."},
    )


def update_user(id: str, payload: Dict[str, Any] = Body(...), db: Database = Depends(get_db)):
    if PASSWORD_FIELDS & payload.keys():
        raise AppError("This route is not for password updates. Please use /updateMyPassword.", 400)
    return factory.envelope(UserRepository(db).update(id, payload))


admin.add_api_route("", factory.get_all(UserRepository), methods=["GET"])
admin.add_api_route("/{id}", factory.get_one(UserRepository), methods=["GET"])
admin.add_api_route("/{id}", update_user, methods=["PATCH"])
admin.add_api_route("/{id}", factory.delete_one(UserRepository), methods=["DELETE"], status_code=204)

routers = [public, account, admin]
