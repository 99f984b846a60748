"""
Store access per collection.

Each repository owns one collection and the rules that apply to every query
against it: the default exclusion predicate (secret tours, deactivated
users), fields that never leave the server, pre-save derivations and the
population of referenced documents.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple, Type

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ReturnDocument
from pymongo.database import Database
from slugify import slugify

from errors import AppError, NotFound
from features import APIFeatures
from schemas import Booking as BookingSchema
from schemas import Review as ReviewSchema
from schemas import Tour as TourSchema
from schemas import User as UserSchema
from schemas import round_rating, utcnow

logger = logging.getLogger(__name__)

DEFAULT_RATING = 4.5
INTERNAL_FIELDS = ("_id", "__v")

# Helpers

def to_obj_id(id_str: Any) -> ObjectId:
    if isinstance(id_str, ObjectId):
        return id_str
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise AppError(f"Invalid id: {id_str}.", 400)


def sanitize(doc: Optional[Dict]) -> Optional[Dict]:
    if not doc:
        return doc
    d = {**doc}
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    return d


def and_filters(*filters: Optional[Dict]) -> Dict:
    parts = [f for f in filters if f]
    if not parts:
        return {}
    if len(parts) == 1:
        return parts[0]
    return {"$and": parts}


def _object_ids(ids: Iterable[str]) -> List[ObjectId]:
    result = []
    for i in ids:
        if ObjectId.is_valid(i):
            result.append(ObjectId(i))
    return result


class Repository:
    collection_name: str = ""
    schema: Type[BaseModel] = BaseModel
    entity: str = "document"
    private_fields: Tuple[str, ...] = ()

    def __init__(self, db: Database):
        self.db = db
        self.collection = db[self.collection_name]

    # hooks

    def default_filter(self) -> Dict:
        return {}

    def before_save(self, doc: Dict, previous: Optional[Dict]) -> Dict:
        return doc

    def after_save(self, doc: Dict, previous: Optional[Dict]) -> None:
        pass

    def after_delete(self, doc: Dict) -> None:
        pass

    def populate(self, docs: List[Dict]) -> List[Dict]:
        return docs

    def populate_detail(self, doc: Dict) -> Dict:
        return doc

    @classmethod
    def to_public(cls, doc: Dict) -> Dict:
        return {k: v for k, v in doc.items() if k not in cls.private_fields and k != "__v"}

    def present(self, docs: List[Dict]) -> List[Dict]:
        return [self.to_public(d) for d in self.populate([sanitize(d) for d in docs])]

    # queries

    def scoped(self, flt: Optional[Dict] = None) -> Dict:
        return and_filters(self.default_filter(), flt)

    def not_found(self) -> NotFound:
        return NotFound(f"No {self.entity} found with that ID")

    def find_all(self, params: Iterable[Tuple[str, str]] = (), scope: Optional[Dict] = None) -> List[Dict]:
        features = APIFeatures(params, base_filter=self.scoped(scope)).build()
        return self.present(features.execute(self.collection))

    def find(self, flt: Optional[Dict] = None, sort: Optional[List[Tuple[str, int]]] = None) -> List[Dict]:
        cursor = self.collection.find(self.scoped(flt), {"__v": 0})
        if sort:
            cursor = cursor.sort(sort)
        return self.present(list(cursor))

    def find_raw(self, flt: Dict) -> Optional[Dict]:
        return self.collection.find_one(self.scoped(flt))

    def find_by_id(self, id_str: str, detail: bool = False, missing_ok: bool = False) -> Optional[Dict]:
        raw = self.collection.find_one(self.scoped({"_id": to_obj_id(id_str)}), {"__v": 0})
        if not raw:
            if missing_ok:
                return None
            raise self.not_found()
        doc = self.present([raw])[0]
        if detail:
            doc = self.populate_detail(doc)
        return doc

    # writes

    def create(self, data: Dict) -> Dict:
        doc = self.schema.model_validate(data).model_dump()
        doc = self.before_save(doc, None)
        doc["__v"] = 0
        res = self.collection.insert_one(doc)
        doc["_id"] = res.inserted_id
        self.after_save(doc, None)
        logger.debug("created %s %s", self.entity, res.inserted_id)
        doc.pop("__v")
        return self.present([doc])[0]

    def update(self, id_str: str, changes: Dict) -> Dict:
        existing = self.find_raw({"_id": to_obj_id(id_str)})
        if not existing:
            raise self.not_found()
        merged = {k: v for k, v in existing.items() if k not in INTERNAL_FIELDS}
        merged.update({k: v for k, v in changes.items() if k not in INTERNAL_FIELDS})
        doc = self.schema.model_validate(merged).model_dump()
        doc = self.before_save(doc, existing)
        to_set = {k: v for k, v in doc.items() if existing.get(k) != v}
        if to_set:
            self.collection.update_one({"_id": existing["_id"]}, {"$set": to_set})
        updated = {**existing, **to_set}
        self.after_save(updated, existing)
        updated.pop("__v", None)
        return self.present([updated])[0]

    def delete(self, id_str: str) -> None:
        doc = self.collection.find_one_and_delete(self.scoped({"_id": to_obj_id(id_str)}))
        if not doc:
            raise self.not_found()
        self.after_delete(doc)


class UserRepository(Repository):
    collection_name = "user"
    schema = UserSchema
    entity = "user"
    private_fields = (
        "password_hash",
        "password_changed_at",
        "password_reset_token",
        "password_reset_expires",
        "active",
    )
    public_projection = {"name": 1, "email": 1, "photo": 1, "role": 1}

    def default_filter(self) -> Dict:
        return {"active": {"$ne": False}}

    def find_by_email(self, email: str) -> Optional[Dict]:
        """Includes the private fields; callers must not return it as is."""
        return sanitize(self.find_raw({"email": email.strip().lower()}))

    def find_by_reset_token(self, hashed: str) -> Optional[Dict]:
        return sanitize(self.find_raw({"password_reset_token": hashed, "password_reset_expires": {"$gt": utcnow()}}))

    def find_with_password(self, id_str: str, missing_ok: bool = False) -> Optional[Dict]:
        doc = sanitize(self.find_raw({"_id": to_obj_id(id_str)}))
        if not doc and not missing_ok:
            raise self.not_found()
        return doc

    def set_password(self, id_str: str, password: str) -> Dict:
        from security import hash_password

        changes = {
            "password_hash": hash_password(password),
            # a second early so tokens issued right after the change stay valid
            "password_changed_at": utcnow() - timedelta(seconds=1),
        }
        doc = self.collection.find_one_and_update(
            {"_id": to_obj_id(id_str)},
            {"$set": changes, "$unset": {"password_reset_token": "", "password_reset_expires": ""}},
            return_document=ReturnDocument.AFTER,
        )
        if not doc:
            raise self.not_found()
        return sanitize(doc)

    def set_reset_token(self, id_str: str, hashed: Optional[str], expires) -> None:
        if hashed is None:
            update = {"$unset": {"password_reset_token": "", "password_reset_expires": ""}}
        else:
            update = {"$set": {"password_reset_token": hashed, "password_reset_expires": expires}}
        self.collection.update_one({"_id": to_obj_id(id_str)}, update)

    def deactivate(self, id_str: str) -> None:
        res = self.collection.update_one(self.scoped({"_id": to_obj_id(id_str)}), {"$set": {"active": False}})
        if res.matched_count == 0:
            raise self.not_found()

    def by_ids(self, ids: Iterable[str], projection: Optional[Dict] = None) -> Dict[str, Dict]:
        ids = list(ids)
        if not ids:
            return {}
        cursor = self.collection.find(
            self.scoped({"_id": {"$in": _object_ids(ids)}}), projection or self.public_projection
        )
        return {str(u["_id"]): self.to_public(sanitize(u)) for u in cursor}


class TourRepository(Repository):
    collection_name = "tour"
    schema = TourSchema
    entity = "tour"

    def default_filter(self) -> Dict:
        return {"secret_tour": {"$ne": True}}

    def before_save(self, doc: Dict, previous: Optional[Dict]) -> Dict:
        doc["slug"] = slugify(doc["name"])
        return doc

    def populate(self, docs: List[Dict]) -> List[Dict]:
        guide_ids = {g for d in docs for g in d.get("guides") or []}
        if not guide_ids:
            return docs
        guides = UserRepository(self.db).by_ids(guide_ids)
        for d in docs:
            if "guides" in d:
                d["guides"] = [guides[g] for g in d["guides"] if g in guides]
        return docs

    def populate_detail(self, doc: Dict) -> Dict:
        doc["reviews"] = ReviewRepository(self.db).find({"tour_id": doc["id"]}, sort=[("created_at", -1)])
        return doc

    @classmethod
    def to_public(cls, doc: Dict) -> Dict:
        doc = super().to_public(doc)
        if isinstance(doc.get("duration"), (int, float)):
            doc["duration_weeks"] = doc["duration"] / 7
        return doc

    def find_by_slug(self, slug: str) -> Optional[Dict]:
        raw = self.find_raw({"slug": slug})
        if not raw:
            return None
        return self.populate_detail(self.present([raw])[0])

    def stats(self) -> List[Dict]:
        return list(self.collection.aggregate([
            {"$match": self.scoped({"ratings_average": {"$gte": 4.5}})},
            {
                "$group": {
                    "_id": {"$toUpper": "$difficulty"},
                    "num_tours": {"$sum": 1},
                    "num_ratings": {"$sum": "$ratings_quantity"},
                    "avg_rating": {"$avg": "$ratings_average"},
                    "avg_price": {"$avg": "$price"},
                    "min_price": {"$min": "$price"},
                    "max_price": {"$max": "$price"},
                }
            },
            {"$sort": {"avg_price": 1}},
        ]))

    def monthly_plan(self, year: int) -> List[Dict]:
        return list(self.collection.aggregate([
            {"$match": self.scoped()},
            {"$unwind": "$start_dates"},
            {"$match": {"start_dates": {"$gte": datetime(year, 1, 1), "$lt": datetime(year + 1, 1, 1)}}},
            {"$group": {"_id": {"$month": "$start_dates"}, "num_tour_starts": {"$sum": 1}, "tours": {"$push": "$name"}}},
            {"$addFields": {"month": "$_id"}},
            {"$project": {"_id": 0}},
            {"$sort": {"num_tour_starts": -1, "month": 1}},
            {"$limit": 12},
        ]))

    def within(self, lng: float, lat: float, radius: float) -> List[Dict]:
        """``radius`` in radians."""
        return self.find({"start_location": {"$geoWithin": {"$centerSphere": [[lng, lat], radius]}}})

    def distances(self, lng: float, lat: float, multiplier: float) -> List[Dict]:
        # $geoNear has to be the first stage, the default filter goes into its query
        docs = self.collection.aggregate([
            {
                "$geoNear": {
                    "near": {"type": "Point", "coordinates": [lng, lat]},
                    "distanceField": "distance",
                    "distanceMultiplier": multiplier,
                    "query": self.default_filter(),
                }
            },
            {"$project": {"distance": 1, "name": 1}},
        ])
        return [sanitize(d) for d in docs]

    def set_ratings(self, tour_id: str, quantity: int, average: float) -> None:
        # secret tours keep their ratings current too
        self.collection.update_one(
            {"_id": to_obj_id(tour_id)},
            {"$set": {"ratings_quantity": quantity, "ratings_average": round_rating(average)}},
        )


class ReviewRepository(Repository):
    collection_name = "review"
    schema = ReviewSchema
    entity = "review"

    def before_save(self, doc: Dict, previous: Optional[Dict]) -> Dict:
        if previous is None or previous.get("tour_id") != doc["tour_id"]:
            if not TourRepository(self.db).find_by_id(doc["tour_id"], missing_ok=True):
                raise NotFound("No tour found with that ID")
        return doc

    def populate(self, docs: List[Dict]) -> List[Dict]:
        authors = UserRepository(self.db).by_ids(
            {d["user_id"] for d in docs if d.get("user_id")}, {"name": 1, "photo": 1}
        )
        for d in docs:
            if d.get("user_id") in authors:
                d["user"] = authors[d["user_id"]]
        return docs

    def after_save(self, doc: Dict, previous: Optional[Dict]) -> None:
        self.calc_average_ratings(doc["tour_id"])
        if previous and previous.get("tour_id") != doc["tour_id"]:
            self.calc_average_ratings(previous["tour_id"])

    def after_delete(self, doc: Dict) -> None:
        self.calc_average_ratings(doc["tour_id"])

    def calc_average_ratings(self, tour_id: str) -> None:
        stats = list(self.collection.aggregate([
            {"$match": {"tour_id": tour_id}},
            {"$group": {"_id": None, "n_rating": {"$sum": 1}, "avg_rating": {"$avg": "$rating"}}},
        ]))
        tours = TourRepository(self.db)
        if stats:
            tours.set_ratings(tour_id, stats[0]["n_rating"], stats[0]["avg_rating"])
        else:
            tours.set_ratings(tour_id, 0, DEFAULT_RATING)


class BookingRepository(Repository):
    collection_name = "booking"
    schema = BookingSchema
    entity = "booking"

    def populate(self, docs: List[Dict]) -> List[Dict]:
        users = UserRepository(self.db).by_ids({d["user_id"] for d in docs if d.get("user_id")})
        tour_ids = _object_ids({d["tour_id"] for d in docs if d.get("tour_id")})
        tours = {}
        if tour_ids:
            tours = {str(t["_id"]): sanitize(t) for t in self.db["tour"].find({"_id": {"$in": tour_ids}}, {"name": 1})}
        for d in docs:
            if d.get("user_id") in users:
                d["user"] = users[d["user_id"]]
            if d.get("tour_id") in tours:
                d["tour"] = tours[d["tour_id"]]
        return docs

    def tour_ids_for_user(self, user_id: str) -> List[str]:
        return [b["tour_id"] for b in self.collection.find({"user_id": user_id}, {"tour_id": 1})]
