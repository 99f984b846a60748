from typing import Dict, Optional

from fastapi import APIRouter, Depends, Form, Request
from fastapi.templating import Jinja2Templates
from pymongo.database import Database

import config
from database import get_db
from errors import AppError
from repositories import BookingRepository, TourRepository, UserRepository, to_obj_id
from security import is_logged_in, protect

templates = Jinja2Templates(directory=str(config.TEMPLATES_DIR))

router = APIRouter(tags=["views"])

ALERTS = {
    "booking": "Your booking was successful! Please check your email for a confirmation. "
    "If your booking doesn't show up here immediately, please come back later.",
}


def render(request: Request, name: str, title: str, **context):
    context.setdefault("user", getattr(request.state, "user", None))
    context["alert"] = ALERTS.get(request.query_params.get("alert", ""))
    return templates.TemplateResponse(request, name, {"title": title, **context})


@router.get("/", dependencies=[Depends(is_logged_in)])
def overview(request: Request, db: Database = Depends(get_db)):
    tours = TourRepository(db).find(sort=[("created_at", -1)])
    return render(request, "overview.html", "All Tours", tours=tours)


@router.get("/tour/{slug}", dependencies=[Depends(is_logged_in)])
def tour_detail(slug: str, request: Request, db: Database = Depends(get_db)):
    tour = TourRepository(db).find_by_slug(slug)
    if not tour:
        raise AppError("There is no tour with that name.", 404)
    return render(request, "tour.html", f"{tour['name']} Tour", tour=tour)


@router.get("/login", dependencies=[Depends(is_logged_in)])
def login_form(request: Request):
    return render(request, "login.html", "Log into your account")


@router.get("/me", dependencies=[Depends(protect)])
def account(request: Request):
    return render(request, "account.html", "Your account")


@router.get("/my-tours")
def my_tours(request: Request, user: Dict = Depends(protect), db: Database = Depends(get_db)):
    tour_ids = BookingRepository(db).tour_ids_for_user(user["id"])
    tours = TourRepository(db).find({"_id": {"$in": [to_obj_id(t) for t in tour_ids]}}) if tour_ids else []
    return render(request, "overview.html", "My Tours", tours=tours)


@router.post("/submit-user-data")
def update_user_data(
    request: Request,
    name: Optional[str] = Form(None),
    email: Optional[str] = Form(None),
    user: Dict = Depends(protect),
    db: Database = Depends(get_db),
):
    changes = {k: v for k, v in (("name", name), ("email", email)) if v}
    updated = UserRepository(db).update(user["id"], changes)
    return render(request, "account.html", "Your account", user=updated)
