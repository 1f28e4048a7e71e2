"""
Firebase service for Firestore access and directory lookups
"""

from __future__ import annotations
import asyncio
import json
import logging
import os
from typing import Optional

import firebase_admin
from firebase_admin import credentials, firestore
from google.api_core.exceptions import GoogleAPICallError

from clinic_chat.config import settings
from clinic_chat.exceptions import PersistenceFailure
from clinic_chat.models.user import User, firestore_user_to_model
from clinic_chat.models.doctor import Doctor, firestore_doctor_to_model

logger = logging.getLogger(__name__)


class FirebaseService:
    """Service for Firebase operations"""

    _instance = None
    _db = None

    def __new__(cls):
        """Singleton pattern to ensure only one Firebase instance"""
        if cls._instance is None:
            cls._instance = super(FirebaseService, cls).__new__(cls)
        return cls._instance

    @property
    def db(self):
        """Firestore client, created on first use."""
        if FirebaseService._db is None:
            self._initialize_firebase()
            FirebaseService._db = firestore.client()
        return FirebaseService._db

    def _initialize_firebase(self):
        """Initialize Firebase Admin SDK with credentials"""
        try:
            # Check if already initialized
            firebase_admin.get_app()
            logger.info("Firebase already initialized")
            return
        except ValueError:
            pass

        if settings.DEV_MODE and settings.FIREBASE_EMULATOR_HOST:
            # Use emulator for development
            os.environ["FIRESTORE_EMULATOR_HOST"] = settings.FIREBASE_EMULATOR_HOST
            firebase_admin.initialize_app()
            logger.info(
                f"Firebase initialized with emulator: {settings.FIREBASE_EMULATOR_HOST}"
            )
            return

        if settings.FIREBASE_CREDENTIALS_JSON:
            try:
                cred = credentials.Certificate(
                    json.loads(settings.FIREBASE_CREDENTIALS_JSON))
            except json.JSONDecodeError as e:
                logger.error(f"Error parsing FIREBASE_CREDENTIALS_JSON: {e}")
                raise
            logger.info(
                "Firebase initialized with credentials from FIREBASE_CREDENTIALS_JSON")
        else:
            # Fallback to file path
            cred = credentials.Certificate(settings.FIREBASE_CREDENTIALS_PATH)
            logger.info(
                f"Firebase initialized with credentials from {settings.FIREBASE_CREDENTIALS_PATH}")

        firebase_admin.initialize_app(cred)

    # ============================================
    # DIRECTORY LOOKUPS (read-only)
    # ============================================

    async def get_user(self, uid: str) -> Optional[User]:
        """
        Get a user record by UID from the 'users' collection.
        """
        try:
            doc = await asyncio.to_thread(
                self.db.collection("users").document(uid).get)
        except GoogleAPICallError as e:
            raise PersistenceFailure(f"Error reading user {uid}: {e}") from e
        if not doc.exists:
            return None
        return firestore_user_to_model(doc.to_dict(), uid)

    async def get_doctor(self, user_id: str) -> Optional[Doctor]:
        """
        Get a doctor profile by the doctor's user id.

        Profiles are keyed by user id; older ones carry it as a field.
        """
        doctors_ref = self.db.collection("doctors")

        def _lookup():
            doc = doctors_ref.document(user_id).get()
            if doc.exists:
                return doc.to_dict()
            matches = list(
                doctors_ref.where("userId", "==", user_id).limit(1).stream())
            return matches[0].to_dict() if matches else None

        try:
            data = await asyncio.to_thread(_lookup)
        except GoogleAPICallError as e:
            raise PersistenceFailure(
                f"Error reading doctor {user_id}: {e}") from e
        if data is None:
            return None
        return firestore_doctor_to_model(data, user_id)


# Global Firebase service instance
firebase_service = FirebaseService()
