#!/usr/bin/env python3
"""
MongoDB Manager for the Copperx transfer bot.
Stores login sessions so users stay authenticated across bot restarts.
"""

from datetime import datetime
from typing import Dict, Optional, Any
from pymongo.mongo_client import MongoClient
from pymongo.server_api import ServerApi
from pymongo import ASCENDING
from pymongo.database import Database
from pymongo.errors import PyMongoError
from .config import settings
from .logger import get_logger

logger = get_logger("mongodb_manager")


class MongoDBManager:
    """MongoDB connection and session operations manager."""

    def __init__(self, mongodb_url: Optional[str] = None, database: Optional[str] = None):
        self.client: Optional[MongoClient] = None
        self.db: Optional[Database] = None
        self.connected: bool = False
        self._connect(mongodb_url or settings.mongodb_url, database or settings.mongodb_database)

    def _connect(self, mongodb_url: str, database: str):
        """Connect to MongoDB."""
        try:
            if not mongodb_url or mongodb_url == "mongodb://localhost:27017":
                logger.warning("MongoDB URL not configured, sessions will be kept in memory")
                return

            if "<db_password>" in mongodb_url:
                logger.warning("MongoDB password placeholder found - please replace <db_password> with actual password")
                return

            self.client = MongoClient(mongodb_url, server_api=ServerApi('1'))

            # Test connection
            self.client.admin.command('ping')

            self.db = self.client[database]
            self.connected = True

            self._create_indexes()

            logger.info(f"✅ Connected to MongoDB database: {database}")

        except PyMongoError as e:
            logger.error(f"Failed to connect to MongoDB: {e}")
            logger.info("App will continue with in-memory sessions")
            self.connected = False

    def _create_indexes(self):
        """Create database indexes."""
        if not self.connected or self.db is None:
            return

        try:
            self.db.sessions.create_index([("user_id", ASCENDING)], unique=True)
            self.db.sessions.create_index([("expire_at", ASCENDING)])
            logger.info("✅ Database indexes created successfully")
        except PyMongoError as e:
            logger.warning(f"Failed to create database indexes: {e}")

    def is_connected(self) -> bool:
        """Check if MongoDB is connected."""
        return self.connected

    # Session Management
    async def save_session(self, user_id: str, session: Dict[str, Any]) -> bool:
        """Insert or replace the session for a user."""
        if not self.connected or self.db is None:
            return False

        try:
            doc = dict(session, user_id=user_id, updated_at=datetime.utcnow())
            self.db.sessions.replace_one({"user_id": user_id}, doc, upsert=True)
            logger.debug(f"Saved session for user {user_id}")
            return True
        except PyMongoError as e:
            logger.error(f"Failed to save session: {e}")
            return False

    async def get_session(self, user_id: str) -> Optional[Dict[str, Any]]:
        """Get the stored session for a user."""
        if not self.connected or self.db is None:
            return None

        try:
            doc = self.db.sessions.find_one({"user_id": user_id})
            if doc:
                doc.pop("_id", None)
            return doc
        except PyMongoError as e:
            logger.error(f"Failed to get session: {e}")
            return None

    async def delete_session(self, user_id: str) -> bool:
        """Remove the session for a user."""
        if not self.connected or self.db is None:
            return False

        try:
            result = self.db.sessions.delete_one({"user_id": user_id})
            logger.debug(f"Deleted session for user {user_id}")
            return result.deleted_count > 0
        except PyMongoError as e:
            logger.error(f"Failed to delete session: {e}")
            return False

    def close(self):
        """Close the MongoDB connection."""
        if self.client:
            self.client.close()
            self.connected = False
            logger.info("MongoDB connection closed")
