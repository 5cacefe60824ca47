import argparse
import logging
from datetime import datetime

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api import router

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Business Site Analyzer API",
    description="Crawl websites and analyze each page's business profile with an LLM",
    version="0.1.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router)


@app.get("/")
async def root():
    """Root endpoint with API info"""
    return {
        "name": "Business Site Analyzer API",
        "version": "0.1.0",
        "timestamp": datetime.now().isoformat(),
        "endpoints": {
            "POST /api/crawl": "Start a new crawl job",
            "GET /api/status/{job_id}": "Get status of a crawl job",
            "GET /api/results/{job_id}": "Get results of a finished crawl job",
            "GET /api/jobs": "List all crawl jobs"
        }
    }


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "ok"}


def main():
    parser = argparse.ArgumentParser(description='Start the business site analyzer API server')
    parser.add_argument('--host', type=str, default='127.0.0.1', help='Host to bind to')
    parser.add_argument('--port', type=int, default=8002, help='Port to bind to')
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    uvicorn.run("bizcrawler.app:app", host=args.host, port=args.port)


if __name__ == "__main__":
    main()
