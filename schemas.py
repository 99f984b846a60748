"""
Database Schemas for the Tours application

MongoDB collections are defined below using Pydantic models. Each class name is
converted to lowercase for the collection name (Tour -> "tour").

We will use these collections:
- user: accounts (user, guide, lead-guide, admin)
- tour: tours with their locations and guides
- review: one review per user and tour
- booking: a user's booking of a tour

References between collections are stored as id strings.
"""

import math
from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

Role = Literal["user", "guide", "lead-guide", "admin"]
Difficulty = Literal["easy", "medium", "difficult"]


def utcnow() -> datetime:
    # naive UTC, the form pymongo hands back
    return datetime.now(timezone.utc).replace(tzinfo=None)


def round_rating(value: float) -> float:
    """Round half-up to one decimal (4.66 -> 4.7, 4.65 -> 4.7)."""
    return math.floor(value * 10 + 0.5) / 10


class User(BaseModel):
    name: str = Field(..., min_length=1, description="Full name")
    email: EmailStr
    photo: str = Field("default.jpg")
    role: Role = Field("user")
    password_hash: str = Field(..., description="BCrypt hash of password")
    password_changed_at: Optional[datetime] = None
    password_reset_token: Optional[str] = Field(None, description="SHA256 hex of the emailed token")
    password_reset_expires: Optional[datetime] = None
    active: bool = Field(True, description="False once the user deleted their account")
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Please tell us your name")
        return v

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: str) -> str:
        return v.lower()


class GeoPoint(BaseModel):
    type: Literal["Point"] = "Point"
    coordinates: List[float] = Field(default_factory=list, description="[longitude, latitude]")
    address: Optional[str] = None
    description: Optional[str] = None


class Location(GeoPoint):
    day: Optional[int] = None


class Tour(BaseModel):
    name: str = Field(..., min_length=10, max_length=40)
    slug: Optional[str] = None
    duration: float = Field(..., gt=0, description="Days")
    max_group_size: int = Field(..., gt=0)
    difficulty: Difficulty
    ratings_average: float = Field(4.5, ge=1, le=5)
    ratings_quantity: int = Field(0, ge=0)
    price: float = Field(..., ge=0)
    price_discount: Optional[float] = None
    summary: str
    description: Optional[str] = None
    image_cover: str
    images: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    start_dates: List[datetime] = Field(default_factory=list)
    secret_tour: bool = False
    start_location: Optional[GeoPoint] = None
    locations: List[Location] = Field(default_factory=list)
    guides: List[str] = Field(default_factory=list, description="User ids")

    @field_validator("name", "summary", "description", mode="before")
    @classmethod
    def strip_text(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("ratings_average")
    @classmethod
    def round_average(cls, v: float) -> float:
        return round_rating(v)

    @model_validator(mode="after")
    def check_discount(self):
        if self.price_discount is not None and self.price_discount >= self.price:
            raise ValueError(f"discount price ({self.price_discount}) should be below regular price")
        return self


class Review(BaseModel):
    review: str = Field(..., min_length=1, description="Review cannot be empty!")
    rating: int = Field(..., ge=1, le=5)
    created_at: datetime = Field(default_factory=utcnow)
    tour_id: str = Field(..., description="Reference to tour _id")
    user_id: str = Field(..., description="Reference to user _id")


class Booking(BaseModel):
    tour_id: str = Field(..., description="Reference to tour _id")
    user_id: str = Field(..., description="Reference to user _id")
    price: float = Field(..., ge=0)
    created_at: datetime = Field(default_factory=utcnow)
    paid: bool = True
