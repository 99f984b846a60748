from typing import List, Optional, Tuple

from fastapi import APIRouter, Depends, File, Request, UploadFile
from pymongo.database import Database

import factory
from database import get_db
from errors import AppError
from repositories import TourRepository
from security import restrict_to
from uploads import save_tour_images

router = APIRouter(prefix="/api/v1/tours", tags=["tours"])

EARTH_RADIUS_MI = 3963.2
EARTH_RADIUS_KM = 6378.1
METERS_TO_MI = 0.000621371
METERS_TO_KM = 0.001

TOP_TOURS_PARAMS = [
    ("limit", "5"),
    ("sort", "-ratings_average,price"),
    ("fields", "name,price,ratings_average,summary,difficulty"),
]

staff = [Depends(restrict_to("admin", "lead-guide"))]


def parse_latlng(latlng: str) -> Tuple[float, float]:
    """'lat,lng' -> (lat, lng)."""
    parts = latlng.split(",")
    try:
        lat, lng = (float(p) for p in parts)
    except ValueError:
        raise AppError("Please provide latitude and longitude in the format lat,lng.", 400)
    return lat, lng


def radius_in_radians(distance: float, unit: str) -> float:
    return distance / (EARTH_RADIUS_MI if unit == "mi" else EARTH_RADIUS_KM)


# Aliases and aggregates

@router.get("/top-5-cheap")
def top_tours(request: Request, db: Database = Depends(get_db)):
    aliased = {k for k, _ in TOP_TOURS_PARAMS}
    params = [p for p in request.query_params.multi_items() if p[0] not in aliased] + TOP_TOURS_PARAMS
    docs = TourRepository(db).find_all(params)
    return factory.envelope(docs, results=len(docs))


@router.get("/tour-stats")
def tour_stats(db: Database = Depends(get_db)):
    return {"status": "success", "data": {"stats": TourRepository(db).stats()}}


@router.get("/monthly-plan/{year}", dependencies=[Depends(restrict_to("admin", "lead-guide", "guide"))])
def monthly_plan(year: int, db: Database = Depends(get_db)):
    return {"status": "success", "data": {"plan": TourRepository(db).monthly_plan(year)}}


@router.get("/tours-within/{distance}/center/{latlng}/unit/{unit}")
def tours_within(distance: float, latlng: str, unit: str, db: Database = Depends(get_db)):
    lat, lng = parse_latlng(latlng)
    tours = TourRepository(db).within(lng, lat, radius_in_radians(distance, unit))
    return factory.envelope(tours, results=len(tours))


@router.get("/distances/{latlng}/unit/{unit}")
def distances(latlng: str, unit: str, db: Database = Depends(get_db)):
    lat, lng = parse_latlng(latlng)
    multiplier = METERS_TO_MI if unit == "mi" else METERS_TO_KM
    return factory.envelope(TourRepository(db).distances(lng, lat, multiplier))


# Images

@router.patch("/{id}/images", dependencies=staff)
def upload_tour_images(
    id: str,
    image_cover: Optional[UploadFile] = File(None),
    images: List[UploadFile] = File([]),
    db: Database = Depends(get_db),
):
    tours = TourRepository(db)
    tours.find_by_id(id)
    cover, names = save_tour_images(id, image_cover, images)
    if cover is None:
        raise AppError("Please upload a cover image and at least one tour image.", 400)
    return factory.envelope(tours.update(id, {"image_cover": cover, "images": names}))


# CRUD

router.add_api_route("", factory.get_all(TourRepository), methods=["GET"])
router.add_api_route("", factory.create_one(TourRepository), methods=["POST"], status_code=201, dependencies=staff)
router.add_api_route("/{id}", factory.get_one(TourRepository, populate=True), methods=["GET"])
router.add_api_route("/{id}", factory.update_one(TourRepository), methods=["PATCH"], dependencies=staff)
router.add_api_route("/{id}", factory.delete_one(TourRepository), methods=["DELETE"], status_code=204, dependencies=staff)
