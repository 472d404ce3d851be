from typing import List, Optional
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from loadprobe.api.jobs import RunManager, RunStatus
from loadprobe.models import ConfigurationError
from loadprobe.targets import PRESETS, get_preset, target_from_dict

app = FastAPI(title="loadprobe API", description="Run HTTP load tests in the background and fetch their reports")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

run_manager = RunManager()


class TargetIn(BaseModel):
    path: str
    method: str = "GET"
    accept_header: Optional[str] = None
    label: str = ""
    kind: str = "api"
    payload: Optional[dict] = None


class RunCreate(BaseModel):
    base_url: str
    preset: str = "api"
    targets: Optional[List[TargetIn]] = None
    requests_per_target: int = Field(5, gt=0)
    concurrency: int = Field(3, gt=0)
    timeout_ms: float = Field(5000.0, gt=0)
    batch_delay_ms: float = Field(0.0, ge=0)


@app.post("/api/runs", response_model=dict)
async def create_run(request: RunCreate):
    try:
        if request.targets is not None:
            targets = [target_from_dict(t.model_dump()) for t in request.targets]
        else:
            targets = get_preset(request.preset)
        run_id = run_manager.create_run(
            request.base_url,
            targets,
            {
                "requests_per_target": request.requests_per_target,
                "concurrency": request.concurrency,
                "timeout_ms": request.timeout_ms,
                "batch_delay_ms": request.batch_delay_ms,
            },
        )
    except ConfigurationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return {"run_id": run_id}


@app.get("/api/presets", response_model=List[str])
async def list_presets():
    return sorted(PRESETS)


@app.get("/api/runs", response_model=List[RunStatus])
async def list_runs():
    return run_manager.list_runs()


@app.get("/api/runs/{run_id}", response_model=RunStatus)
async def get_run(run_id: str):
    run = run_manager.get_run(run_id)
    if not run:
        raise HTTPException(status_code=404, detail="Run not found")
    return run


@app.delete("/api/runs/{run_id}")
async def delete_run(run_id: str):
    if not run_manager.get_run(run_id):
        raise HTTPException(status_code=404, detail="Run not found")
    run_manager.delete_run(run_id)
    return {"status": "deleted"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
