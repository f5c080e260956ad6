import logging
import re
from contextlib import asynccontextmanager
from typing import Awaitable, Callable, Optional

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from pydantic import ValidationError

from .assistants import AssistantsClient
from .config import AppSettings, load_settings
from .errors import MascotError, RequestValidationError
from .liveness import LinkValidator
from .orchestrator import MascotService
from .poller import RunPoller
from .registry import LinkRegistry
from .schemas import MascotRequest

logger = logging.getLogger("uvicorn.error")

router = APIRouter()

_FILE_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")


def get_settings(request: Request) -> AppSettings:
    return request.app.state.settings


def get_service(request: Request) -> MascotService:
    return request.app.state.service


def get_assistants_client(request: Request) -> AssistantsClient:
    return request.app.state.assistants_client


def error_response(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


async def parse_mascot_request(request: Request) -> MascotRequest:
    try:
        payload = await request.json()
    except ValueError as exc:
        raise RequestValidationError("Body must be JSON") from exc
    if not isinstance(payload, dict):
        raise RequestValidationError("Body must be a JSON object")
    try:
        return MascotRequest.model_validate(payload)
    except ValidationError as exc:
        first = exc.errors()[0] if exc.errors() else {}
        field_name = ".".join(str(part) for part in first.get("loc", ())) or "body"
        raise RequestValidationError(f"Invalid {field_name}: {first.get('msg', 'bad value')}") from exc


@router.post("/api/mascot")
async def mascot(request: Request):
    service = get_service(request)
    try:
        req = await parse_mascot_request(request)
        result = await service.handle(req, origin=str(request.base_url))
    except MascotError as exc:
        if exc.status_code >= 500:
            logger.warning("mascot error (%s): %s", exc.status_code, exc.message)
        return error_response(exc.message, exc.status_code)
    except Exception as exc:
        logger.exception("mascot error")
        return error_response(str(exc) or "Server error", 500)
    return JSONResponse(result.body, status_code=result.status_code)


@router.api_route("/api/mascot", methods=["GET", "PUT", "PATCH", "DELETE", "OPTIONS"])
async def mascot_wrong_method():
    return error_response("Use POST", 405)


@router.get("/api/file")
async def download_file(request: Request):
    settings = get_settings(request)
    params = request.query_params
    file_id = params.get("file_id") or params.get("id") or params.get("fid")
    if not settings.openai_api_key or not file_id:
        return PlainTextResponse("Missing OPENAI_API_KEY or file_id", status_code=400)
    if not _FILE_ID_RE.match(file_id):
        return PlainTextResponse("Invalid file_id", status_code=400)
    client = get_assistants_client(request)
    try:
        status, content_type, content = await client.fetch_file_content(file_id)
    except MascotError as exc:
        return PlainTextResponse(exc.message, status_code=502)
    if status >= 400:
        body = content.decode("utf-8", errors="replace") or "File fetch error"
        return PlainTextResponse(body, status_code=status)
    return Response(
        content=content,
        media_type=content_type,
        headers={"Content-Disposition": f'inline; filename="{file_id}.pdf"'},
    )


@router.get("/health")
async def health(request: Request):
    return {"ok": True, "configured": get_settings(request).configured}


def create_app(
    settings: AppSettings,
    *,
    assistants_client: Optional[AssistantsClient] = None,
    registry: Optional[LinkRegistry] = None,
    validator: Optional[LinkValidator] = None,
    clock: Optional[Callable[[], float]] = None,
    sleep: Optional[Callable[[float], Awaitable[None]]] = None,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        try:
            yield
        finally:
            await app.state.assistants_client.close()
            await app.state.registry.close()
            if app.state.validator is not None:
                await app.state.validator.close()

    app = FastAPI(title="Mascot Chat Proxy", lifespan=lifespan)
    app.state.settings = settings
    app.state.assistants_client = assistants_client or AssistantsClient(
        settings.openai_api_key,
        settings.assistant_id,
        base_url=settings.openai_base_url,
        timeout_s=settings.remote_timeout_s,
    )
    registry_kwargs = {"clock": clock} if clock else {}
    app.state.registry = registry or LinkRegistry(
        settings.links_url,
        path=settings.links_path,
        ttl_s=settings.registry_ttl_s,
        timeout_s=settings.registry_timeout_s,
        **registry_kwargs,
    )
    if validator is None and settings.verify_links:
        validator = LinkValidator(
            timeout_s=settings.link_check_timeout_s,
            ttl_s=settings.link_cache_ttl_s,
            **registry_kwargs,
        )
    app.state.validator = validator
    polling = settings.polling
    poller_kwargs = {}
    if clock:
        poller_kwargs["clock"] = clock
    if sleep:
        poller_kwargs["sleep"] = sleep
    app.state.poller = RunPoller(
        app.state.assistants_client,
        deadline_s=polling.deadline_s,
        peek_deadline_s=polling.peek_deadline_s,
        initial_delay_s=polling.initial_delay_ms / 1000.0,
        backoff_factor=polling.backoff_factor,
        max_delay_s=polling.max_delay_ms / 1000.0,
        **poller_kwargs,
    )
    app.state.service = MascotService(
        settings,
        app.state.assistants_client,
        app.state.poller,
        app.state.registry,
        validator=app.state.validator,
    )
    app.include_router(router)
    return app


app = create_app(load_settings())


if __name__ == "__main__":
    import os

    import uvicorn

    settings = app.state.settings
    reload_enabled = os.getenv("MASCOT_RELOAD", "").lower() in ("1", "true", "yes", "on")
    try:
        uvicorn.run(
            "mascot.main:app",
            host=getattr(settings, "host", "0.0.0.0"),
            port=settings.port,
            reload=reload_enabled,
        )
    except KeyboardInterrupt:
        pass
