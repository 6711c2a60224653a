"""Database package for MongoDB operations using Beanie ODM.

Modules:
    manager: DatabaseManager singleton for connection handling
    models: Beanie Document models for all collections
    logging_handler: logging.Handler that persists records as ServerLog
"""

from db.manager import DatabaseManager, db_manager

__all__ = ["DatabaseManager", "db_manager"]
