from __future__ import annotations

import asyncio
import datetime as dt
import logging
import threading
import uuid
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .candidates import _resolve_configs, batch_payload, build_problem, generate_candidates
from .catalog import resolve_strategy_ids
from .config import job_retention

logger = logging.getLogger(__name__)

_JOBS: Dict[str, Dict[str, Any]] = {}
_ACTIVE_JOBS: Dict[str, asyncio.Task[Any]] = {}
_CANCEL_EVENTS: Dict[str, threading.Event] = {}
_STATUS_IN_PROGRESS = {'queued', 'running', 'cancelling'}


def _now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _serialize_job(doc: Dict[str, Any]) -> Dict[str, Any]:
    out: Dict[str, Any] = {
        'id': doc.get('id'),
        'status': doc.get('status'),
        'progress': float(doc.get('progress', 0.0)),
        'message': doc.get('message'),
        'strategies': list(doc.get('strategies', [])),
        'rank': bool(doc.get('rank', False)),
        'requested_by': doc.get('requested_by'),
        'result': doc.get('result'),
        'error': doc.get('error'),
    }
    for key in ('created_at', 'started_at', 'completed_at', 'updated_at'):
        value = doc.get(key)
        out[key] = value.isoformat() if isinstance(value, dt.datetime) else None
    return out


def _update_job(job_id: str, **fields: Any) -> None:
    doc = _JOBS.get(job_id)
    if doc is None:
        return
    doc.update(fields)
    doc['updated_at'] = _now()


def _prune_finished_jobs() -> None:
    """Drop the oldest finished jobs beyond the retention limit. Jobs still in progress are kept."""
    finished = [job_id for job_id, doc in _JOBS.items() if doc.get('status') not in _STATUS_IN_PROGRESS]
    excess = len(finished) - job_retention()
    for job_id in finished[:max(0, excess)]:
        _JOBS.pop(job_id, None)
    if excess > 0:
        logger.info('grouping.jobs pruned finished=%d', excess)


async def enqueue_grouping_job(
    roster: List[Any],
    preferences: Any,
    shells: List[Any],
    *,
    strategies: Optional[Iterable[str]] = None,
    configs: Optional[Mapping[str, Any]] = None,
    rank: bool = False,
    fill_missing: bool = False,
    timeout: Optional[float] = None,
    requested_by: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Validate a grouping request and run it in the background.

    Input errors raise here, before a job exists. The returned job is a
    snapshot; poll ``get_grouping_job`` for progress and the final batch.
    """
    problem = build_problem(roster, preferences, shells, fill_missing=fill_missing)
    strategy_ids = resolve_strategy_ids(list(strategies) if strategies is not None else None)
    resolved_configs = _resolve_configs(configs)

    _prune_finished_jobs()
    job_id = uuid.uuid4().hex
    now = _now()
    doc: Dict[str, Any] = {
        'id': job_id,
        'status': 'queued',
        'progress': 0.0,
        'message': 'Waiting to start',
        'strategies': strategy_ids,
        'rank': rank,
        'requested_by': requested_by,
        'result': None,
        'error': None,
        'created_at': now,
        'updated_at': now,
        'started_at': None,
        'completed_at': None,
    }
    _JOBS[job_id] = doc
    cancel_event = threading.Event()
    _CANCEL_EVENTS[job_id] = cancel_event

    loop = asyncio.get_running_loop()
    task = loop.create_task(_run_grouping_job(
        job_id,
        problem,
        strategy_ids,
        resolved_configs,
        rank=rank,
        timeout=timeout,
        cancel_event=cancel_event,
    ))
    _ACTIVE_JOBS[job_id] = task

    def _cleanup(_task: asyncio.Task[Any]) -> None:
        _ACTIVE_JOBS.pop(job_id, None)
        _CANCEL_EVENTS.pop(job_id, None)

    task.add_done_callback(_cleanup)
    logger.info('grouping.jobs enqueued job=%s strategies=%s', job_id, ','.join(strategy_ids))
    return _serialize_job(doc)


async def get_grouping_job(job_id: str) -> Optional[Dict[str, Any]]:
    doc = _JOBS.get(job_id)
    if doc is None:
        return None
    return _serialize_job(doc)


async def list_grouping_jobs(*, limit: int = 10) -> List[Dict[str, Any]]:
    docs = sorted(_JOBS.values(), key=lambda doc: doc['created_at'], reverse=True)
    return [_serialize_job(doc) for doc in docs[:limit]]


async def cancel_grouping_job(job_id: str) -> Optional[Dict[str, Any]]:
    """Signal a running job to stop. Slow strategies still running report ``cancelled``."""
    doc = _JOBS.get(job_id)
    if doc is None:
        return None
    event = _CANCEL_EVENTS.get(job_id)
    if event is not None and doc.get('status') in _STATUS_IN_PROGRESS:
        event.set()
        _update_job(job_id, status='cancelling', message='Cancelling...')
        logger.info('grouping.jobs cancel requested job=%s', job_id)
    return _serialize_job(doc)


async def wait_for_job(job_id: str) -> Optional[Dict[str, Any]]:
    task = _ACTIVE_JOBS.get(job_id)
    if task is not None:
        await asyncio.shield(task)
    return await get_grouping_job(job_id)


async def _run_grouping_job(
    job_id: str,
    problem: Any,
    strategy_ids: List[str],
    configs: Optional[Mapping[str, Any]],
    *,
    rank: bool,
    timeout: Optional[float],
    cancel_event: threading.Event,
) -> None:
    _update_job(job_id, status='running', progress=0.05, message='Initializing...', started_at=_now())

    def _progress_callback(payload: Dict[str, Any]) -> None:
        if cancel_event.is_set():
            return
        stage = payload.get('stage')
        strategy = payload.get('strategy', 'unknown')
        index = int(payload.get('index', 1))
        total = max(1, int(payload.get('total') or len(strategy_ids)))
        ratio = max(0.0, min(1.0, float(payload.get('ratio') or 0.0)))
        base = 0.1
        span = 0.85
        if stage == 'start':
            progress = base + span * ((index - 1) / total)
            message = f"Starting {strategy}..."
        elif stage == 'step':
            progress = base + span * ((index - 1 + ratio) / total)
            message = f"{strategy} {int(round(ratio * 100))}% complete"
        else:
            progress = base + span * (index / total)
            message = f"Finished {strategy}"
        # parallel strategies finish out of order; progress only moves forward
        current = float((_JOBS.get(job_id) or {}).get('progress', 0.0))
        _update_job(job_id, progress=min(max(progress, current), 0.95), message=message)

    try:
        batch = await generate_candidates(
            problem.roster,
            problem.preferences,
            problem.shells,
            strategy_ids,
            configs,
            rank=rank,
            cancel_event=cancel_event,
            timeout=timeout,
            progress_cb=_progress_callback,
        )
    except Exception as exc:
        logger.exception('grouping.jobs job=%s failed', job_id)
        error = exc.to_dict() if hasattr(exc, 'to_dict') else {'kind': 'internal_error', 'message': str(exc), 'ids': []}
        _update_job(job_id, status='failed', message='Failed', error=error, completed_at=_now())
        return

    cancelled = cancel_event.is_set()
    _update_job(
        job_id,
        status='cancelled' if cancelled else 'completed',
        progress=1.0,
        message='Cancelled' if cancelled else 'Completed',
        result=batch_payload(batch),
        completed_at=_now(),
    )
    logger.info(
        'grouping.jobs job=%s %s candidates=%d',
        job_id,
        'cancelled' if cancelled else 'completed',
        len(batch.candidates),
    )
