import asyncio
import json
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Request
from sse_starlette.sse import EventSourceResponse

from .config import get_settings
from .llm.registry import build_registry
from .log import setup_logging, get_logger
from .pipeline.events import ProgressEvent
from .pipeline.run import AuditPipeline
from .retrieval.fetch import Fetcher
from .retrieval.url import InvalidUrlError, normalize_url
from .schemas.report import AuditReport, AuditRequest
from .store.archive import EvidenceArchive, EvidenceRepository

settings = get_settings()
setup_logging()
logger = get_logger("api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    registry = build_registry(settings)
    repository = EvidenceRepository()
    app.state.registry = registry
    app.state.repository = repository
    app.state.pipeline = AuditPipeline(registry, Fetcher(), repository)
    yield


app = FastAPI(title="Hybrid Audit", lifespan=lifespan)


def _validate(request: AuditRequest):
    try:
        normalize_url(request.url)
    except InvalidUrlError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.post("/audit", response_model=AuditReport)
async def run_audit(body: AuditRequest, request: Request):
    _validate(body)
    return await request.app.state.pipeline.run(body)


@app.post("/audit/stream")
async def stream_audit(body: AuditRequest, request: Request):
    """Streams progress events as SSE, then one `report` event with the full report."""
    _validate(body)
    pipeline: AuditPipeline = request.app.state.pipeline
    audit_id = uuid.uuid4().hex
    # None marks the end of the run
    queue: "asyncio.Queue[Optional[ProgressEvent]]" = asyncio.Queue()

    def on_event(event: ProgressEvent):
        queue.put_nowait(event)

    async def events() -> AsyncGenerator[dict, None]:
        task = asyncio.create_task(pipeline.run(body, audit_id=audit_id, on_event=on_event))
        task.add_done_callback(lambda _: queue.put_nowait(None))
        yield {"event": "audit", "data": json.dumps({"audit_id": audit_id, "url": body.url})}
        while True:
            event = await queue.get()
            if event is None:
                break
            yield {"event": event.type, "data": event.model_dump_json()}
        report = await task
        yield {"event": "report", "data": report.model_dump_json()}

    return EventSourceResponse(events())


@app.get("/audits/{audit_id}/evidence", response_model=EvidenceArchive)
async def get_evidence(audit_id: str, request: Request):
    store = request.app.state.repository.get(audit_id)
    if store is None:
        raise HTTPException(status_code=404, detail=f"No evidence archive for {audit_id}")
    return store.get_archive()


@app.delete("/audits/{audit_id}/evidence")
async def delete_evidence(audit_id: str, request: Request):
    if not request.app.state.repository.delete(audit_id):
        raise HTTPException(status_code=404, detail=f"No evidence archive for {audit_id}")
    logger.info(f"Deleted evidence archive {audit_id}")
    return {"status": "deleted", "audit_id": audit_id}


@app.get("/providers/status")
async def providers_status(request: Request):
    registry = request.app.state.registry
    return {
        "available": registry.get_available_providers(),
        "concurrency": {name: usage.model_dump() for name, usage in registry.get_concurrency_status().items()},
    }


if __name__ == "__main__":
    uvicorn.run(app, host=settings.API_HOST, port=settings.API_PORT)
