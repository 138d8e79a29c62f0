"""
Results API routes - answer review and the toppers leaderboard.

Ranks stored results using these criteria:
1. Percentage (highest first)
2. Time taken (fastest first, as tiebreaker)

Each application has at most one result per test, so no best-attempt
grouping is needed.
"""

from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query

from exam_session.runtime import get_engine
from exam_session.services.engine import SessionEngine
from exam_session.logging_config import get_logger, log_with_context

router = APIRouter()
logger = get_logger("http")


@router.get("/api/results/{application_id}")
def get_result(
    application_id: str,
    test_id: Optional[str] = Query(None, description="Test ID, latest result if omitted"),
    engine: SessionEngine = Depends(get_engine)
):
    """Get a stored result with every question, the candidate's answer and the correct one."""
    stored = engine.results.get_for(application_id, test_id)
    if stored is None:
        raise HTTPException(status_code=404, detail="No result for application {}".format(application_id))

    return {
        "result": stored.result.model_dump(mode="json"),
        "review": stored.review()
    }


@router.get("/api/leaderboard")
def get_leaderboard(
    test_id: Optional[str] = Query(None, description="Test ID to show leaderboard for"),
    limit: int = Query(20, ge=1, le=100, description="Number of toppers"),
    engine: SessionEngine = Depends(get_engine)
):
    """Get ranked toppers, optionally for a single test."""
    results = engine.results.top_results(test_id, limit)

    leaderboard = []
    for rank, result in enumerate(results, 1):
        leaderboard.append({
            "rank": rank,
            "is_top_3": rank <= 3,
            "application_id": result.candidate.application_id,
            "applicant_name": result.candidate.applicant_name,
            "test_id": result.test_id,
            "test_name": result.test_name,
            "percentage": round(result.percentage, 2),
            "correct": result.correct_count,
            "wrong": result.wrong_count,
            "unanswered": result.unanswered_count,
            "status": result.status.value,
            "time_taken_seconds": result.time_taken_seconds,
            "submitted_at": result.submitted_at.isoformat()
        })

    log_with_context(logger, "INFO",
        "Leaderboard generated: {} entries for test {}".format(len(leaderboard), test_id or "all"),
        extra_data={"test_id": test_id, "entries": len(leaderboard)})

    return {
        "test_id": test_id,
        "leaderboard": leaderboard
    }
