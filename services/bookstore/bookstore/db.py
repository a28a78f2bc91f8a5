"""
MongoDB connection and transaction management
"""
from contextlib import contextmanager
from typing import Iterator, Optional

from pymongo import MongoClient, ASCENDING, DESCENDING
from pymongo.client_session import ClientSession
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import ConnectionFailure, PyMongoError
import structlog

from bookstore.config import Config


logger = structlog.get_logger()


class MongoDB:
    """MongoDB connection manager"""

    def __init__(self, config: Config):
        self.config = config
        self.client: Optional[MongoClient] = None
        self.db: Optional[Database] = None

    def connect(self) -> None:
        """Establish connection to MongoDB"""
        try:
            self.client = MongoClient(
                self.config.mongo_uri,
                serverSelectionTimeoutMS=self.config.mongo_timeout_ms,
                connectTimeoutMS=self.config.mongo_timeout_ms,
                tz_aware=True,
            )

            # Test connection
            self.client.admin.command('ping')

            self.db = self.client[self.config.mongo_db]

            self._create_indexes()

            logger.info("Connected to MongoDB",
                        uri=self.config.mongo_uri,
                        database=self.config.mongo_db,
                        transactions=self.config.mongo_transactions)

        except ConnectionFailure as e:
            logger.error("Failed to connect to MongoDB", error=str(e))
            raise

    def _create_indexes(self) -> None:
        """Create necessary indexes on collections"""
        try:
            self.db.users.create_index([("username", ASCENDING)], unique=True)
            self.db.users.create_index([("email", ASCENDING)], unique=True)

            self.db.shopping_carts.create_index([("user_id", ASCENDING)], unique=True)

            self.db.orders.create_index([("user_id", ASCENDING), ("order_date", DESCENDING)])

            self.db.books.create_index([("title", ASCENDING)])
            self.db.books.create_index([("author", ASCENDING)])

            logger.info("Database indexes created")

        except PyMongoError as e:
            logger.warning("Error creating indexes", error=str(e))

    def close(self) -> None:
        """Close MongoDB connection"""
        if self.client:
            self.client.close()
            logger.info("MongoDB connection closed")

    def is_healthy(self) -> bool:
        """Check if MongoDB connection is healthy"""
        try:
            if self.client:
                self.client.admin.command('ping')
                return True
        except PyMongoError as e:
            logger.error("MongoDB health check failed", error=str(e))
        return False

    @property
    def supports_transactions(self) -> bool:
        return self.config.mongo_transactions

    @contextmanager
    def transaction(self) -> Iterator[Optional[ClientSession]]:
        """
        Run the enclosed block in a multi-document transaction.

        Commits when the block exits normally and aborts when it raises.
        Yields None when transactions are disabled, in which case the caller
        is responsible for undoing its own writes.
        """
        if not self.supports_transactions:
            yield None
            return

        with self.client.start_session() as session:
            with session.start_transaction():
                yield session

    @property
    def books(self) -> Collection:
        return self.db.books

    @property
    def users(self) -> Collection:
        return self.db.users

    @property
    def carts(self) -> Collection:
        return self.db.shopping_carts

    @property
    def orders(self) -> Collection:
        return self.db.orders
