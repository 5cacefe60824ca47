import logging
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from pydantic import BaseModel

from .config import JobInput, Settings, load_settings
from .errors import ConfigurationError
from .models import RunStatus
from .runner import RESULTS_DATASET, run_job
from .state import crawl_progress
from .storage import Dataset

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api",
    tags=["crawler"]
)

ACTIVE_STATUSES = ("starting", "crawling")


class CrawlResponse(BaseModel):
    job_id: str
    status: str
    start_urls: list
    start_time: str


def get_settings() -> Settings:
    return load_settings()


def generate_job_id() -> str:
    """Generate a unique job ID"""
    return f"job_{datetime.now().strftime('%Y%m%d%H%M%S%f')}"


def job_settings(settings: Settings, job_id: str) -> Settings:
    """Each job keeps its datasets and records in its own storage directory."""
    return replace(settings, storage_dir=settings.storage_dir / job_id)


async def perform_crawl(job_id: str, job: JobInput, settings: Settings):
    """Background task to perform the crawl"""
    logger.info(f"Starting crawl job {job_id} for {job.start_urls}")
    crawl_progress[job_id]["status"] = "crawling"
    try:
        stats = await run_job(job, settings, task_id=job_id)
        crawl_progress[job_id].update({
            "status": "completed" if stats.status is RunStatus.SUCCEEDED else "failed",
            "result": stats.to_summary(),
            "end_time": datetime.now().isoformat(),
        })
        logger.info(f"Completed crawl job {job_id}: {stats.status.value}")
    except Exception as e:
        logger.error(f"Error during crawl job {job_id}: {str(e)}", exc_info=True)
        crawl_progress[job_id].update({
            "status": "failed",
            "error": str(e),
            "end_time": datetime.now().isoformat(),
        })


@router.post("/crawl", response_model=CrawlResponse)
async def start_crawl(job: JobInput, background_tasks: BackgroundTasks, settings: Settings = Depends(get_settings)):
    """Start a new crawl job"""
    try:
        settings.require_credentials()
    except ConfigurationError as e:
        raise HTTPException(status_code=500, detail=str(e))

    job_id = generate_job_id()
    start_time = datetime.now().isoformat()
    crawl_progress[job_id] = {
        "job_id": job_id,
        "status": "starting",
        "start_urls": job.start_urls,
        "max_pages": job.max_pages_to_crawl,
        "start_time": start_time,
        "last_update": start_time,
        "storage_dir": str(job_settings(settings, job_id).storage_dir),
    }
    background_tasks.add_task(perform_crawl, job_id, job, job_settings(settings, job_id))

    return CrawlResponse(job_id=job_id, status="starting", start_urls=job.start_urls, start_time=start_time)


@router.get("/status/{job_id}")
async def get_crawl_status(job_id: str) -> Dict[str, Any]:
    """Get the status of a crawl job"""
    if job_id not in crawl_progress:
        raise HTTPException(status_code=404, detail=f"Job {job_id} not found")
    return crawl_progress[job_id]


@router.get("/results/{job_id}")
async def get_crawl_results(job_id: str):
    """Get the page results of a finished crawl job"""
    job_info = crawl_progress.get(job_id)
    if job_info is None:
        raise HTTPException(status_code=404, detail=f"Job {job_id} not found")
    status = job_info.get("status", "unknown")
    if status in ACTIVE_STATUSES:
        raise HTTPException(status_code=400, detail=f"Job {job_id} is still in progress (status: {status})")
    try:
        pages = Dataset(job_info["storage_dir"], RESULTS_DATASET).get_items()
    except (OSError, ValueError) as e:
        raise HTTPException(status_code=500, detail=f"Error reading results: {str(e)}")
    return {"job_id": job_id, "status": status, "result": job_info.get("result"), "pages": pages}


@router.get("/jobs")
async def list_jobs(status: Optional[str] = Query(None, description="Filter by status (active/completed/failed)")):
    """List all crawl jobs with optional status filter"""
    if not status:
        return crawl_progress
    if status == "active":
        return {job_id: info for job_id, info in crawl_progress.items() if info.get("status") in ACTIVE_STATUSES}
    return {job_id: info for job_id, info in crawl_progress.items() if info.get("status") == status}
