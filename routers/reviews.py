"""
Review routes.

The same routes are served at ``/api/v1/reviews`` and, scoped to one tour,
at ``/api/v1/tours/{tour_id}/reviews``.
"""

from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, Request
from pymongo.database import Database

import factory
from database import get_db
from errors import Forbidden
from repositories import ReviewRepository
from security import protect, restrict_to

router = APIRouter(prefix="/api/v1/reviews", tags=["reviews"], dependencies=[Depends(protect)])
tour_router = APIRouter(prefix="/api/v1/tours/{tour_id}/reviews", tags=["reviews"], dependencies=[Depends(protect)])


def create_review(
    request: Request,
    payload: Dict[str, Any] = Body(...),
    db: Database = Depends(get_db),
    user: Dict = Depends(restrict_to("user")),
):
    data = dict(payload)
    if "tour_id" in request.path_params:
        data.setdefault("tour_id", request.path_params["tour_id"])
    data.setdefault("user_id", user["id"])
    return factory.envelope(ReviewRepository(db).create(data))


def author_or_admin(
    id: str,
    user: Dict = Depends(restrict_to("user", "admin")),
    db: Database = Depends(get_db),
) -> Dict:
    review = ReviewRepository(db).find_by_id(id)
    if user["role"] != "admin" and review["user_id"] != user["id"]:
        raise Forbidden()
    return review


owner_guard = [Depends(author_or_admin)]

for r in (router, tour_router):
    r.add_api_route("", factory.get_all(ReviewRepository), methods=["GET"])
    r.add_api_route("", create_review, methods=["POST"], status_code=201)
    r.add_api_route("/{id}", factory.get_one(ReviewRepository), methods=["GET"])
    r.add_api_route("/{id}", factory.update_one(ReviewRepository), methods=["PATCH"], dependencies=owner_guard)
    r.add_api_route("/{id}", factory.delete_one(ReviewRepository), methods=["DELETE"], status_code=204, dependencies=owner_guard)
