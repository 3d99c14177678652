from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, File, HTTPException, Request, UploadFile
from fastapi.responses import Response

from acquisition.camera_session import CameraFactory
from acquisition.preview import PreviewError
from acquisition.validation import Validator
from classifier.errors import CameraUnavailable, SubmissionInProgress
from classifier.labels import present
from classifier.types import Pipeline
from classifier.workflow import RipenessWorkflow, WrongMode

from .schemas import (
    CameraStatusModel,
    ErrorModel,
    ModeRequest,
    ResultModel,
    StateResponse,
)

logger = logging.getLogger(__name__)

_LOCAL_HOSTS = {"localhost", "127.0.0.1", "::1"}


def is_secure_context(request: Request) -> bool:
    forwarded = request.headers.get("x-forwarded-proto")
    scheme = forwarded.split(",")[0].strip().lower() if forwarded else request.url.scheme
    if scheme == "https":
        return True
    return (request.url.hostname or "") in _LOCAL_HOSTS


def build_state(workflow: RipenessWorkflow) -> StateResponse:
    snapshot = workflow.snapshot()
    asset = workflow.selected
    camera = workflow.camera
    camera_status = None
    if camera is not None:
        camera_status = CameraStatusModel(
            readiness=camera.readiness.value,
            reason=camera.reason,
            can_capture=camera.is_ready and not snapshot.loading,
        )
    return StateResponse(
        mode=workflow.mode,
        state=snapshot.state.value,
        loading=snapshot.loading,
        result=ResultModel(**present(snapshot.result)) if snapshot.result else None,
        error=(
            ErrorModel(
                kind=snapshot.error.kind,
                message=snapshot.error.message,
                detail=snapshot.error.detail,
            )
            if snapshot.error
            else None
        ),
        preview_url=asset.preview.url if asset is not None else None,
        camera=camera_status,
    )


def create_app(
    pipeline: Pipeline,
    camera_factory: CameraFactory,
    *,
    validator: Validator | None = None,
) -> FastAPI:
    workflow = RipenessWorkflow(pipeline, camera_factory, validator=validator)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        try:
            yield
        finally:
            workflow.close()

    app = FastAPI(title="Avocado Ripeness API", version="0.1.0", lifespan=lifespan)
    app.state.workflow = workflow
    app.state.pipeline = pipeline

    logger.info(
        "API server initialised pipeline=%s",
        pipeline.__class__.__name__,
    )

    def _in_progress(exc: SubmissionInProgress) -> HTTPException:
        return HTTPException(status_code=409, detail=exc.message)

    @app.get("/health", response_model=dict[str, str])
    def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/state", response_model=StateResponse)
    def get_state() -> StateResponse:
        return build_state(workflow)

    @app.post("/mode", response_model=StateResponse)
    def switch_mode(payload: ModeRequest, request: Request) -> StateResponse:
        try:
            workflow.switch_mode(payload.mode, secure_context=is_secure_context(request))
        except SubmissionInProgress as exc:
            raise _in_progress(exc) from exc
        return build_state(workflow)

    @app.post("/upload", response_model=StateResponse)
    async def upload_image(file: UploadFile = File(...)) -> StateResponse:
        data = await file.read()
        logger.info(
            "Upload received filename=%s content_type=%s bytes=%d",
            file.filename,
            file.content_type,
            len(data),
        )
        try:
            workflow.select_upload(data, file.filename, file.content_type)
        except WrongMode as exc:
            raise HTTPException(status_code=409, detail="Switch to upload mode first") from exc
        except SubmissionInProgress as exc:
            raise _in_progress(exc) from exc
        return build_state(workflow)

    @app.post("/predict", response_model=StateResponse)
    def predict() -> StateResponse:
        if workflow.selected is None:
            raise HTTPException(status_code=400, detail="No image selected")
        try:
            workflow.predict()
        except SubmissionInProgress as exc:
            raise _in_progress(exc) from exc
        return build_state(workflow)

    @app.post("/camera/capture", response_model=StateResponse)
    def capture() -> StateResponse:
        camera = workflow.camera
        if camera is None or not camera.is_ready:
            reason = camera.reason if camera is not None else None
            raise HTTPException(status_code=409, detail=reason or "Camera is not ready")
        if workflow.snapshot().loading:
            raise _in_progress(SubmissionInProgress())
        try:
            workflow.capture_and_predict()
        except SubmissionInProgress as exc:
            raise _in_progress(exc) from exc
        except CameraUnavailable as exc:
            raise HTTPException(status_code=409, detail=exc.reason) from exc
        return build_state(workflow)

    @app.get("/camera/frame")
    def camera_frame() -> Response:
        camera = workflow.camera
        if camera is None:
            raise HTTPException(status_code=404, detail="Camera mode is not active")
        try:
            frame = camera.latest_frame()
        except CameraUnavailable as exc:
            raise HTTPException(status_code=404, detail=exc.reason) from exc
        return Response(content=frame.data, media_type=frame.mime_type)

    @app.post("/reset", response_model=StateResponse)
    def reset() -> StateResponse:
        try:
            workflow.reset()
        except SubmissionInProgress as exc:
            raise _in_progress(exc) from exc
        return build_state(workflow)

    @app.get("/previews/{handle_id}")
    def preview(handle_id: str) -> Response:
        try:
            data, mime_type = workflow.previews.open(handle_id)
        except PreviewError as exc:
            raise HTTPException(status_code=404, detail="Preview not found") from exc
        return Response(content=data, media_type=mime_type)

    return app


__all__ = ["build_state", "create_app", "is_secure_context"]
