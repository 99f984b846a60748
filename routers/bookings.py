from typing import Dict

from fastapi import APIRouter, Depends
from pymongo.database import Database

import factory
from database import get_db
from repositories import BookingRepository, TourRepository
from security import protect, restrict_to

router = APIRouter(prefix="/api/v1/bookings", tags=["bookings"], dependencies=[Depends(protect)])

staff = [Depends(restrict_to("admin", "lead-guide"))]


@router.post("/checkout/{tour_id}", status_code=201)
def checkout(tour_id: str, user: Dict = Depends(protect), db: Database = Depends(get_db)):
    """Book ``tour_id`` for the current user at the tour's current price."""
    tour = TourRepository(db).find_by_id(tour_id)
    booking = BookingRepository(db).create({"tour_id": tour["id"], "user_id": user["id"], "price": tour["price"]})
    return factory.envelope(booking)


router.add_api_route("", factory.get_all(BookingRepository), methods=["GET"], dependencies=staff)
router.add_api_route("", factory.create_one(BookingRepository), methods=["POST"], status_code=201, dependencies=staff)
router.add_api_route("/{id}", factory.get_one(BookingRepository), methods=["GET"], dependencies=staff)
router.add_api_route("/{id}", factory.update_one(BookingRepository), methods=["PATCH"], dependencies=staff)
router.add_api_route("/{id}", factory.delete_one(BookingRepository), methods=["DELETE"], status_code=204, dependencies=staff)
