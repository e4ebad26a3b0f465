from fastapi import Depends, FastAPI, File, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from typing import List, Optional

from datastat.config import settings
from datastat.utils.exceptions import AppException
from datastat.utils.logger import get_logger

# Import core logic
from datastat.core.ingestion import ingest_file
from datastat.core.workspace import Workspace
from datastat.models import Dataset

logger = get_logger(__name__)

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    docs_url="/docs"
)

# --- In-Memory Session Store ---
app.state.workspace = Workspace()


def get_workspace(request: Request) -> Workspace:
    return request.app.state.workspace


class CommandRequest(BaseModel):
    command: str


class ReportRequest(BaseModel):
    scope: str = "full"
    variables: List[str] = []
    focus: str = ""


def _dataset_info(dataset: Dataset, active: Optional[str]) -> dict:
    sheet = dataset.active_sheet
    return {
        "name": dataset.name,
        "active": dataset.name == active,
        "sheets": list(dataset.sheets),
        "active_sheet": dataset.active_sheet_name,
        "rows": len(sheet.rows),
        "columns": [{"name": s.name, "type": s.type} for s in sheet.summaries],
    }


@app.exception_handler(AppException)
async def app_exception_handler(request: Request, exc: AppException):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "online", "message": f"{settings.APP_NAME} API is running"}


@app.post("/upload")
async def upload_file(file: UploadFile = File(...), workspace: Workspace = Depends(get_workspace)):
    """
    Uploads a CSV or Excel file, profiles it, and makes it the active dataset.
    """
    logger.info(f"Received file upload: {file.filename}")
    content = await file.read()
    dataset = workspace.add_dataset(ingest_file(content, file.filename or "upload.csv"))
    return {
        "message": "File uploaded and processed successfully.",
        "dataset": _dataset_info(dataset, workspace.active_name),
    }


@app.get("/datasets")
async def list_datasets(workspace: Workspace = Depends(get_workspace)):
    return {
        "active": workspace.active_name,
        "datasets": [_dataset_info(d, workspace.active_name) for d in workspace.datasets],
    }


@app.delete("/datasets/{name}")
async def remove_dataset(name: str, workspace: Workspace = Depends(get_workspace)):
    workspace.remove_dataset(name)
    return {"removed": name, "active": workspace.active_name}


@app.put("/datasets/{name}/sheets/{sheet}")
async def activate_sheet(name: str, sheet: str, workspace: Workspace = Depends(get_workspace)):
    dataset = workspace.set_active_sheet(name, sheet)
    return _dataset_info(dataset, workspace.active_name)


@app.post("/command")
async def run_command(payload: CommandRequest, workspace: Workspace = Depends(get_workspace)):
    """
    Runs one command line. Text that is not a command comes back with
    handled=false and the grounded prompt for the reasoning service.
    Expected Payload: {"command": "summarize price"}
    """
    if not payload.command.strip():
        raise HTTPException(status_code=400, detail="Command field is required.")

    result = workspace.execute(payload.command)
    body = {
        "handled": result.handled,
        "logs": [log.model_dump(mode="json") for log in result.logs],
        "active": workspace.active_name,
        "data_replaced": result.replaces_data,
    }
    if not result.handled:
        body["prompt"] = workspace.analysis_prompt(payload.command)
    return body


@app.post("/report")
async def build_report(payload: ReportRequest, workspace: Workspace = Depends(get_workspace)):
    """Deterministic ground-truth aggregates plus the report prompt."""
    return workspace.report(payload.scope, payload.variables, payload.focus)


@app.post("/clear")
async def clear_workspace(workspace: Workspace = Depends(get_workspace)):
    workspace.clear()
    return {"message": "All data cleared."}
