"""
Bulk generation job record. Lives only in the job store, never on disk.
"""
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

JobType = Literal["generate-all", "generate-missing"]
JobStatus = Literal["running", "completed", "failed"]


class JobProgress(BaseModel):
    total: int = 0
    completed: int = 0
    failed: int = 0
    pending: int = 0


class JobSlideResult(BaseModel):
    """Outcome for one slide of a bulk job."""

    slide_id: str
    status: Literal["success", "failed"]
    image_count: int = 0
    error: Optional[str] = None


class Job(BaseModel):
    id: str
    deck_id: str
    type: JobType
    status: JobStatus = "running"
    created_at: datetime
    completed_at: Optional[datetime] = None
    config: Dict[str, Any] = Field(default_factory=dict)
    progress: JobProgress = Field(default_factory=JobProgress)
    results: List[JobSlideResult] = Field(default_factory=list)
    error: Optional[str] = None
