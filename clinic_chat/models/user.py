"""
User Models for the Clinic Chat backend

This module defines the User model that represents directory
records stored in Firebase Firestore. The messaging core only
reads these documents.
"""

from datetime import datetime, timezone
from typing import Optional
from enum import Enum
from pydantic import BaseModel, Field, ConfigDict


# Helper function for timezone-aware UTC datetime
def utc_now():
    """Get current UTC datetime (timezone-aware)"""
    return datetime.now(timezone.utc)


class UserRole(str, Enum):
    """User role enumeration"""

    PATIENT = "patient"
    DOCTOR = "doctor"
    ADMIN = "admin"


class User(BaseModel):
    """
    User record as stored in Firestore

    Collection: users/
    Document ID: uid
    """

    uid: str = Field(..., description="User identity")
    email: Optional[str] = None
    name: str = Field(default="", description="Display name")
    role: UserRole = Field(default=UserRole.PATIENT)
    is_active: bool = Field(
        default=True, description="Whether account is active", alias="isActive")
    created_at: Optional[datetime] = Field(
        default_factory=utc_now, alias="createdAt")
    updated_at: Optional[datetime] = Field(
        default_factory=utc_now, alias="updatedAt")

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "uid": "user_123",
                "email": "jane.doe@example.com",
                "name": "Jane Doe",
                "role": "patient",
                "isActive": True,
            }
        }
    )

    @property
    def is_doctor(self) -> bool:
        return self.role == UserRole.DOCTOR


# Helper function to convert Firestore document to User model
def firestore_user_to_model(doc_data: dict, uid: str) -> User:
    data = dict(doc_data)
    # Older documents carry the role as an isDoctor/isAdmin flag pair
    if "role" not in data:
        if data.get("isAdmin"):
            data["role"] = UserRole.ADMIN
        elif data.get("isDoctor"):
            data["role"] = UserRole.DOCTOR
    if "name" not in data and data.get("displayName"):
        data["name"] = data["displayName"]
    return User.model_validate({**data, "uid": uid})

