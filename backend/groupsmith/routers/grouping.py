from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Response

from ..schemas import GroupingRequest, InsightsRequest, JobOut, JobRequest, StrategyInfo
from ..services.grouping import (
    STRATEGY_CATALOG,
    batch_payload,
    cancel_grouping_job,
    compute_preference_insights,
    enqueue_grouping_job,
    generate_candidates,
    generate_default_shells,
    get_grouping_job,
    list_grouping_jobs,
)
from ..services.grouping.errors import InputError
from ..settings import get_settings

######### Router / Endpoints #########

# Grouping router (mounted under /grouping in main.py)
router = APIRouter()


def _shells_for(payload: GroupingRequest) -> List[Any]:
    if payload.groups is not None:
        return list(payload.groups)
    return generate_default_shells(
        len(payload.roster),
        target_group_count=payload.target_group_count,
        min_group_size=payload.min_group_size,
        max_group_size=payload.max_group_size,
    )


def _check_roster_size(payload: GroupingRequest) -> None:
    limit = get_settings().max_roster_size
    if len(payload.roster) > limit:
        raise InputError(f'roster has {len(payload.roster)} people; the limit is {limit}')


def _fill_missing(payload: GroupingRequest) -> bool:
    if payload.fill_missing is not None:
        return payload.fill_missing
    return get_settings().fill_missing_preferences


@router.get('/strategies', response_model=List[StrategyInfo])
async def list_strategies():
    return [entry.to_dict() for entry in STRATEGY_CATALOG]


@router.post('/candidates')
async def create_candidates(payload: GroupingRequest) -> Dict[str, Any]:
    """Run the selected strategies now and return every candidate plus per-strategy outcomes."""
    _check_roster_size(payload)
    batch = await generate_candidates(
        payload.roster,
        payload.preferences,
        _shells_for(payload),
        payload.strategies,
        payload.configs,
        rank=payload.rank,
        fill_missing=_fill_missing(payload),
        timeout=get_settings().request_strategy_timeout,
    )
    return batch_payload(batch)


@router.post('/insights')
async def preference_insights(payload: InsightsRequest) -> Dict[str, Any]:
    insights = compute_preference_insights(payload.preferences, payload.roster)
    return {'insights': insights.model_dump() if insights is not None else None}


@router.post('/jobs', status_code=202)
async def start_job(payload: JobRequest, response: Response) -> Dict[str, Any]:
    _check_roster_size(payload)
    job = await enqueue_grouping_job(
        payload.roster,
        payload.preferences,
        _shells_for(payload),
        strategies=payload.strategies,
        configs=payload.configs,
        rank=payload.rank,
        fill_missing=_fill_missing(payload),
        timeout=payload.timeout,
    )
    response.headers['Location'] = f"/grouping/jobs/{job['id']}"
    return {
        'status': 'accepted',
        'job_id': job['id'],
        'poll_url': f"/grouping/jobs/{job['id']}",
        'job': job,
    }


@router.get('/jobs', response_model=List[JobOut])
async def list_jobs(limit: int = 10):
    limit = max(1, min(limit, 50))
    return await list_grouping_jobs(limit=limit)


@router.get('/jobs/{job_id}', response_model=JobOut)
async def get_job_status(job_id: str):
    job = await get_grouping_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail='Job not found')
    return job


@router.post('/jobs/{job_id}/cancel', response_model=JobOut)
async def cancel_job(job_id: str):
    job: Optional[Dict[str, Any]] = await cancel_grouping_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail='Job not found')
    return job
