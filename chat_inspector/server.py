from __future__ import annotations

from contextlib import asynccontextmanager
from importlib.metadata import PackageNotFoundError, version as package_version
from pathlib import Path

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse

from chat_inspector import __version__
from chat_inspector.config import load_settings
from chat_inspector.services import InspectorService


def _resolve_version() -> str:
    try:
        return package_version("chat-inspector")
    except PackageNotFoundError:
        return __version__


def _get_service(request: Request) -> InspectorService:
    return request.app.state.inspector_service


def _not_found(message: str) -> JSONResponse:
    return JSONResponse(content={"error": message}, status_code=404)


def create_app(transcript_path: Path | None = None) -> FastAPI:
    settings = load_settings()
    service = InspectorService(settings)
    api_app = FastAPI(title="API", version=_resolve_version())
    api_app.state.inspector_service = service

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        service.load(transcript_path)
        app.state.inspector_service = service
        api_app.state.inspector_service = service
        yield

    app = FastAPI(lifespan=lifespan)

    @api_app.get("/prompts")
    def get_prompts(request: Request):
        return JSONResponse(content=_get_service(request).list_prompts())

    @api_app.get("/conversation")
    def get_conversation(request: Request):
        return JSONResponse(content=_get_service(request).get_conversation())

    @api_app.get("/prompts/{prompt_index}/turn")
    def get_turn(prompt_index: int, request: Request):
        data = _get_service(request).get_turn(prompt_index)
        if data is None:
            return _not_found("Invalid prompt index")
        return JSONResponse(content=data)

    @api_app.get("/prompts/{prompt_index}/media")
    def get_turn_media(prompt_index: int, request: Request):
        service = _get_service(request)
        if not service.get_prompt_chunks(prompt_index):
            return _not_found("Invalid prompt index")
        return JSONResponse(content=service.get_media(prompt_index))

    @api_app.get("/search")
    def search_prompts(
        request: Request,
        query: str = Query(..., description="Case-insensitive substring"),
        deep: bool | None = Query(default=None),
    ):
        return JSONResponse(
            content={"query": query, "matches": _get_service(request).search(query, deep=deep)}
        )

    @api_app.get("/media")
    def get_media(request: Request):
        return JSONResponse(content=_get_service(request).get_media())

    @api_app.get("/clean")
    def get_clean_json(request: Request):
        return JSONResponse(content=_get_service(request).get_clean_json())

    @api_app.get("/metadata")
    def get_metadata(request: Request):
        return JSONResponse(content=_get_service(request).get_metadata())

    @api_app.get("/statistics")
    def get_statistics(request: Request):
        return JSONResponse(content=_get_service(request).get_statistics())

    app.mount("/api", api_app)
    return app
