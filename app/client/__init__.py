"""Client-side job tracking for the recipe pipeline."""

from app.client.connection import ProgressConnection
from app.client.tracker import ConnectionState, Job, JobStatus, JobTracker, PipelineApiClient

__all__ = ["ConnectionState", "Job", "JobStatus", "JobTracker", "PipelineApiClient", "ProgressConnection"]
