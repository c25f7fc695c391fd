"""Firestore access for the hub's document collections and activity log."""
from __future__ import annotations

import os
from functools import lru_cache

import firebase_admin
from firebase_admin import firestore

PROJECT_ENV = "HUB_FIREBASE_PROJECT_ID"


@lru_cache(maxsize=1)
def get_firestore_client():
    """Initialise the default Firebase app once and return its Firestore client.

    Credentials come from Application Default Credentials; HUB_FIREBASE_PROJECT_ID
    pins the project when ADC does not carry one.
    """
    if not firebase_admin._apps:
        project_id = os.getenv(PROJECT_ENV, "").strip()
        options = {"projectId": project_id} if project_id else None
        firebase_admin.initialize_app(options=options)
    return firestore.client()
