from __future__ import annotations

import secrets

from fastapi import Depends, FastAPI, HTTPException
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from acr import db
from acr.api_models import ActualStateOut, ApplyResult, ComplianceResult, DesiredState
from acr.errors import ConvergenceError, InfrastructureError, UnsupportedOperationError, ValidationError
from acr.reconciler import Reconciler
from acr.service_ops import get_controller
from acr.settings import settings

app = FastAPI(title="Agent Convergence Resource")
security = HTTPBasic()


def get_current_username(credentials: HTTPBasicCredentials = Depends(security)) -> str:
    user_ok = secrets.compare_digest(credentials.username, settings.admin_user)
    pass_ok = secrets.compare_digest(credentials.password, settings.admin_pass)
    if not (user_ok and pass_ok):
        raise HTTPException(status_code=401, detail="Invalid credentials", headers={"WWW-Authenticate": "Basic"})
    return credentials.username


def get_reconciler() -> Reconciler:
    return Reconciler(get_controller())


def _http_error(e: ConvergenceError) -> HTTPException:
    if isinstance(e, ValidationError):
        code = 422
    elif isinstance(e, UnsupportedOperationError):
        code = 409
    elif isinstance(e, InfrastructureError):
        code = 502
    else:
        code = 500
    return HTTPException(status_code=code, detail={"phase": e.phase, "error": str(e)})


@app.on_event("startup")
def startup() -> None:
    db.init_db()


@app.get("/agents/{name}/state", response_model=ActualStateOut)
def read_state(
    name: str,
    install_directory: str | None = None,
    username: str = Depends(get_current_username),
    reconciler: Reconciler = Depends(get_reconciler),
):
    try:
        actual = reconciler.reader.read(name, install_directory)
    except ValueError as e:
        raise HTTPException(status_code=422, detail={"phase": "read", "error": str(e)}) from e
    except ConvergenceError as e:
        raise _http_error(e) from e
    return actual.to_out(name)


@app.post("/agents/apply", response_model=ApplyResult)
def apply_desired(
    desired: DesiredState,
    username: str = Depends(get_current_username),
    reconciler: Reconciler = Depends(get_reconciler),
):
    db.log_event("INFO", f"Apply requested by {username}", service_name=desired.name)
    try:
        actions = reconciler.apply(desired)
        compliant = reconciler.verify(desired)
    except ConvergenceError as e:
        raise _http_error(e) from e
    return ApplyResult(name=desired.name, actions=[a.value for a in actions], compliant=compliant)


@app.post("/agents/compliance", response_model=ComplianceResult)
def check_compliance(
    desired: DesiredState,
    username: str = Depends(get_current_username),
    reconciler: Reconciler = Depends(get_reconciler),
):
    try:
        compliant = reconciler.verify(desired)
    except ConvergenceError as e:
        raise _http_error(e) from e
    return ComplianceResult(name=desired.name, compliant=compliant)


@app.get("/events")
def list_events(limit: int = 50, service: str | None = None, username: str = Depends(get_current_username)):
    return db.latest_events(limit=max(1, min(limit, 1000)), service_name=service)
