"""Services package."""
from services.job_store import ReportJobStore
from services.report_jobs import ReportJobOrchestrator

__all__ = ["ReportJobStore", "ReportJobOrchestrator"]
