import datetime as dt
from typing import Literal, Optional

from uuid import UUID

from pydantic import BaseModel


class OccasionCreate(BaseModel):
    date_type: str
    date: dt.date
    title: Optional[str] = None
    recurring: Literal["yearly", "none"] = "yearly"

    recipient_id: Optional[str] = None
    recipient_email: Optional[str] = None
    recipient_name: Optional[str] = None


class OccasionUpdate(BaseModel):
    date_type: Optional[str] = None
    date: Optional[dt.date] = None
    title: Optional[str] = None
    recurring: Optional[Literal["yearly", "none"]] = None

    recipient_id: Optional[str] = None
    recipient_email: Optional[str] = None
    recipient_name: Optional[str] = None


class OccasionOut(BaseModel):
    id: UUID
    user_id: str
    date_type: str
    date: dt.date
    title: Optional[str] = None
    recurring: str

    recipient_id: Optional[str] = None
    recipient_email: Optional[str] = None
    recipient_name: Optional[str] = None

    next_occurrence: Optional[dt.date] = None

    created_at: Optional[dt.datetime] = None

    class Config:
        from_attributes = True
