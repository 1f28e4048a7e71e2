"""
Doctor model and Firestore conversion helpers
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict


class Doctor(BaseModel):
    user_id: str = Field(..., alias="userId")
    full_name: str = Field("", alias="fullName")
    email: Optional[str] = None
    prefix: Optional[str] = None
    specialization: Optional[str] = None
    status: Optional[str] = None
    created_at: Optional[datetime] = Field(None, alias="createdAt")
    updated_at: Optional[datetime] = Field(None, alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True)


def firestore_doctor_to_model(doc: dict, user_id: str) -> Doctor:
    return Doctor(
        user_id=doc.get("userId") or user_id,
        full_name=doc.get("fullName") or doc.get("full_name") or "",
        email=doc.get("email"),
        prefix=doc.get("prefix"),
        specialization=doc.get("specialization"),
        status=doc.get("status"),
        created_at=doc.get("createdAt") or doc.get("created_at"),
        updated_at=doc.get("updatedAt") or doc.get("updated_at"),
    )

