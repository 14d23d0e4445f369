"""
Database Schemas

MongoDB collection schemas for the carbon tracker, as Pydantic models.
Documents are stored with camelCase keys (the JSON names the API speaks).

Each Pydantic model represents a collection in your database.
Model name is converted to lowercase for the collection name:
- User -> "user" collection
- Carbonfootprint -> "carbonfootprint" collection
- Content -> "content" collection
"""

from datetime import datetime
from typing import List, Literal

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        arbitrary_types_allowed=True,
    )


class Bucket(CamelModel):
    """Running {value, count} pair for one category or transport mode"""
    value: float = Field(0, description="Sum of kg CO2 contributed to this bucket")
    count: int = Field(0, ge=0, description="Submissions that touched this bucket")


class TransportBreakdown(CamelModel):
    car: Bucket = Field(default_factory=Bucket)
    bus: Bucket = Field(default_factory=Bucket)
    bike: Bucket = Field(default_factory=Bucket)
    train: Bucket = Field(default_factory=Bucket)


class Breakdown(CamelModel):
    transport: TransportBreakdown = Field(default_factory=TransportBreakdown)
    electricity: Bucket = Field(default_factory=Bucket)
    diet: Bucket = Field(default_factory=Bucket)


class LifetimeCarbonFootprint(CamelModel):
    """
    Lifetime aggregate embedded in a user document
    """
    total: float = Field(0, description="Sum of every saved footprint")
    breakdown: Breakdown = Field(default_factory=Breakdown)


class User(CamelModel):
    """
    Registered users
    Collection: "user"
    """
    username: str = Field(..., min_length=1, description="Unique login name")
    password: str = Field(..., description="bcrypt hash")
    role: Literal["user", "admin"] = "user"
    friends: List[ObjectId] = Field(default_factory=list, description="Users this user follows")
    lifetime_carbon_footprint: LifetimeCarbonFootprint = Field(default_factory=LifetimeCarbonFootprint)


class Carbonfootprint(CamelModel):
    """
    Immutable history entry, one per saved submission
    Collection: "carbonfootprint"
    """
    user_id: ObjectId
    transport_distance: float = Field(..., ge=0)
    transport_mode: str
    electricity_usage: float = Field(..., ge=0)
    diet: str
    carbon_footprint: float
    date: datetime


class Content(CamelModel):
    """
    Educational articles published by admins
    Collection: "content"
    """
    title: str = Field(..., min_length=1, max_length=200)
    body: str = Field(..., min_length=1)
    author: str = Field(..., description="Username of the publishing admin")
