"""User categories and the system category used for bookkeeping entries."""

from __future__ import annotations

import logging
import sqlite3
from typing import List, Optional

from . import db
from .errors import ValidationError
from .models import Category, CategoryKind

logger = logging.getLogger(__name__)

SYSTEM_CATEGORY_NAME = "System"


def list_categories(user_id: str, include_system: bool = False) -> List[Category]:
    categories = db.find_categories({'user_id': user_id})
    if include_system:
        return categories
    return [c for c in categories if c.kind is CategoryKind.USER]


def create_category(user_id: str, name: str) -> Category:
    if not name or not name.strip():
        raise ValidationError("Category name is required")
    return db.create_category(user_id, name.strip(), CategoryKind.USER.value)


def system_category(user_id: str, conn: Optional[sqlite3.Connection] = None) -> Category:
    """Get or create the user's system category.

    Looked up by kind, so a user category that happens to be named
    "System" is never picked up here.
    """
    existing = db.find_categories({'user_id': user_id, 'kind': CategoryKind.SYSTEM.value}, conn=conn)
    if existing:
        return existing[0]
    logger.info("Creating system category for user %s", user_id)
    return db.create_category(user_id, SYSTEM_CATEGORY_NAME, CategoryKind.SYSTEM.value, conn=conn)


def get_category(user_id: str, category_id: int,
                 conn: Optional[sqlite3.Connection] = None) -> Optional[Category]:
    found = db.find_categories({'user_id': user_id, 'id': category_id}, conn=conn)
    return found[0] if found else None
