"""Database models package."""
from models.database import Base, init_db, close_db, get_pool_status, get_engine
from models.report_job import ReportJob

__all__ = [
    "Base",
    "init_db",
    "close_db",
    "get_pool_status",
    "get_engine",
    "ReportJob",
]
