"""Statistics engine and job scheduler."""

from .event_processor import EventProcessor, RunContext
from .job_handler import JobHandler

__all__ = ["EventProcessor", "JobHandler", "RunContext"]
