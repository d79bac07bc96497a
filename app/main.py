"""Entry point for the FastAPI-powered media catalog."""

from __future__ import annotations

import logging
import os
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import httpx
from fastapi import FastAPI, HTTPException, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from pydantic import ValidationError

from .config import settings
from .database import Database
from .media_types import MediaType
from .models import (
    ApiKeyUpdate,
    AutocompleteFallback,
    AutocompleteRequest,
    ItemCreate,
    ItemDetail,
    ItemOut,
    ItemUpdate,
    ListCreate,
    ListDetail,
    ListItemAdd,
    ListOut,
    ListUpdate,
    ReviewDelete,
    ReviewOut,
    ReviewUpsert,
    Stats,
    UserCreate,
    UserOut,
)
from .services.autocomplete import (
    AutocompleteError,
    AutocompleteResolver,
    ConfigurationError,
    ExhaustedCascadeError,
)
from .services.catalog import CatalogService, ConflictError
from .services.covers import (
    CoverFinder,
    CoverSources,
    duckduckgo_search_url,
    image_search_url,
)
from .services.credentials import API_KEY_ENV_VAR, ClientManager
from .services.gemini import GeminiError
from .settings_store import JsonSettingsStore

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app: FastAPI


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    exit_stack = AsyncExitStack()
    gemini_http_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.gemini_api_url),
            timeout=httpx.Timeout(settings.ai_request_timeout, connect=10.0),
        )
    )
    cover_http_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(timeout=httpx.Timeout(15.0, connect=5.0))
    )
    database = Database(settings.database_url)
    await database.create_all()

    if settings.gemini_api_key:
        # Keys from the .env file are treated like process environment keys.
        os.environ.setdefault(API_KEY_ENV_VAR, settings.gemini_api_key)
    client_manager = ClientManager(
        gemini_http_client,
        JsonSettingsStore(settings.config_path),
        persist=settings.ai_persist_api_key,
    )
    resolver = AutocompleteResolver(
        client_manager,
        settings.ai_models,
        temperature=settings.ai_temperature,
        max_output_tokens=settings.ai_max_output_tokens,
        timeout=settings.ai_request_timeout,
    )
    cover_finder = CoverFinder(
        cover_http_client,
        CoverSources(
            openlibrary_url=str(settings.openlibrary_api_url),
            tmdb_url=str(settings.tmdb_api_url),
            tmdb_api_key=settings.tmdb_api_key,
        ),
    )

    fastapi_app.state.database = database
    fastapi_app.state.catalog_service = CatalogService(database.session_factory)
    fastapi_app.state.client_manager = client_manager
    fastapi_app.state.resolver = resolver
    fastapi_app.state.cover_finder = cover_finder
    logger.info(
        "AI status: %s",
        "configured" if client_manager.is_ready() else f"not configured (set {API_KEY_ENV_VAR})",
    )

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Personal media catalog with AI-assisted metadata entry",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app, frontend_dist=settings.frontend_dist)
    return fastapi_app


def _state_service(fastapi_app: FastAPI, name: str, expected: type) -> Any:
    service = getattr(fastapi_app.state, name, None)
    if not isinstance(service, expected):
        raise RuntimeError(f"{name} not initialised")
    return service


def get_catalog_service(fastapi_app: FastAPI) -> CatalogService:
    return _state_service(fastapi_app, "catalog_service", CatalogService)


def get_resolver(fastapi_app: FastAPI) -> AutocompleteResolver:
    return _state_service(fastapi_app, "resolver", AutocompleteResolver)


def get_client_manager(fastapi_app: FastAPI) -> ClientManager:
    return _state_service(fastapi_app, "client_manager", ClientManager)


def get_cover_finder(fastapi_app: FastAPI) -> CoverFinder:
    return _state_service(fastapi_app, "cover_finder", CoverFinder)


def _validation_detail(exc: ValidationError) -> list[dict[str, Any]]:
    return exc.errors(include_url=False, include_context=False, include_input=False)


def _manual_entry_response(
    status_code: int, detail: str, request: AutocompleteRequest
) -> JSONResponse:
    fallback = AutocompleteFallback(title=request.query, type=request.media_type)
    return JSONResponse(
        status_code=status_code,
        content={"detail": detail, "fallback": fallback.model_dump(mode="json")},
    )


async def _json_body(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Request body must be JSON") from exc


def register_routes(fastapi_app: FastAPI, *, frontend_dist: Path | None = None) -> None:
    @fastapi_app.get("/api/health")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}

    # Users

    @fastapi_app.get("/api/users", response_model=list[UserOut])
    async def list_users() -> list[dict[str, Any]]:
        return await get_catalog_service(fastapi_app).list_users()

    @fastapi_app.post("/api/users", response_model=UserOut, status_code=201)
    async def create_user(payload: UserCreate) -> dict[str, Any]:
        try:
            return await get_catalog_service(fastapi_app).create_user(payload)
        except ConflictError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc

    @fastapi_app.delete("/api/users/{user_id}", status_code=204)
    async def delete_user(user_id: int) -> Response:
        try:
            await get_catalog_service(fastapi_app).delete_user(user_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=exc.args[0]) from exc
        return Response(status_code=204)

    # Items

    @fastapi_app.get("/api/items", response_model=list[ItemOut])
    async def list_items(
        media_type: MediaType | None = Query(default=None, alias="type"),
        user_id: int | None = None,
        status: str | None = None,
        search: str | None = None,
        limit: int = Query(default=100, ge=1, le=500),
        offset: int = Query(default=0, ge=0),
    ) -> list[dict[str, Any]]:
        return await get_catalog_service(fastapi_app).list_items(
            media_type=media_type,
            user_id=user_id,
            status=status,
            search=search,
            limit=limit,
            offset=offset,
        )

    @fastapi_app.get("/api/items/{item_id}", response_model=ItemDetail)
    async def get_item(item_id: int) -> dict[str, Any]:
        try:
            return await get_catalog_service(fastapi_app).get_item(item_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=exc.args[0]) from exc

    @fastapi_app.post("/api/items", response_model=ItemOut, status_code=201)
    async def create_item(payload: ItemCreate, response: Response) -> dict[str, Any]:
        try:
            item, created = await get_catalog_service(fastapi_app).create_item(payload)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=exc.args[0]) from exc
        except ConflictError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        if not created:
            response.status_code = 200
        return item

    @fastapi_app.put("/api/items/{item_id}", response_model=ItemDetail)
    async def update_item(item_id: int, payload: ItemUpdate) -> dict[str, Any]:
        try:
            return await get_catalog_service(fastapi_app).update_item(item_id, payload)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=exc.args[0]) from exc
        except ConflictError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc

    @fastapi_app.delete("/api/items/{item_id}", status_code=204)
    async def delete_item(item_id: int) -> Response:
        try:
            await get_catalog_service(fastapi_app).delete_item(item_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=exc.args[0]) from exc
        return Response(status_code=204)

    # Reviews

    @fastapi_app.post("/api/items/{item_id}/reviews", response_model=ReviewOut)
    async def upsert_review(item_id: int, payload: ReviewUpsert) -> dict[str, Any]:
        try:
            return await get_catalog_service(fastapi_app).upsert_review(item_id, payload)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=exc.args[0]) from exc

    @fastapi_app.delete("/api/items/{item_id}/reviews", status_code=204)
    async def delete_review(
        item_id: int, request: Request, user_id: int | None = None
    ) -> Response:
        if user_id is None:
            try:
                user_id = ReviewDelete.model_validate(await _json_body(request)).user_id
            except ValidationError as exc:
                raise HTTPException(status_code=400, detail="user_id is required") from exc
        try:
            await get_catalog_service(fastapi_app).delete_review(item_id, user_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=exc.args[0]) from exc
        return Response(status_code=204)

    # Lists

    @fastapi_app.get("/api/lists", response_model=list[ListOut])
    async def list_lists(user_id: int | None = None) -> list[dict[str, Any]]:
        return await get_catalog_service(fastapi_app).list_lists(user_id)

    @fastapi_app.get("/api/lists/{list_id}", response_model=ListDetail)
    async def get_list(list_id: int) -> dict[str, Any]:
        try:
            return await get_catalog_service(fastapi_app).get_list(list_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=exc.args[0]) from exc

    @fastapi_app.post("/api/lists", response_model=ListOut, status_code=201)
    async def create_list(payload: ListCreate) -> dict[str, Any]:
        try:
            return await get_catalog_service(fastapi_app).create_list(payload)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=exc.args[0]) from exc

    @fastapi_app.put("/api/lists/{list_id}", response_model=ListDetail)
    async def update_list(list_id: int, payload: ListUpdate) -> dict[str, Any]:
        try:
            return await get_catalog_service(fastapi_app).update_list(list_id, payload)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=exc.args[0]) from exc

    @fastapi_app.delete("/api/lists/{list_id}", status_code=204)
    async def delete_list(list_id: int) -> Response:
        try:
            await get_catalog_service(fastapi_app).delete_list(list_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=exc.args[0]) from exc
        return Response(status_code=204)

    @fastapi_app.post("/api/lists/{list_id}/items", status_code=201)
    async def add_list_item(list_id: int, payload: ListItemAdd) -> dict[str, bool]:
        try:
            added = await get_catalog_service(fastapi_app).add_list_item(
                list_id, payload.item_id
            )
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=exc.args[0]) from exc
        return {"success": True, "added": added}

    @fastapi_app.delete("/api/lists/{list_id}/items/{item_id}", status_code=204)
    async def remove_list_item(list_id: int, item_id: int) -> Response:
        try:
            await get_catalog_service(fastapi_app).remove_list_item(list_id, item_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=exc.args[0]) from exc
        return Response(status_code=204)

    # AI

    @fastapi_app.post("/api/ai/autocomplete")
    async def autocomplete(request: Request) -> Any:
        body = await _json_body(request)
        try:
            autocomplete_request = AutocompleteRequest.model_validate(body)
        except ValidationError as exc:
            raise HTTPException(status_code=400, detail=_validation_detail(exc)) from exc

        resolver = get_resolver(fastapi_app)
        if not resolver.is_configured():
            return _manual_entry_response(
                503, "AI service not configured", autocomplete_request
            )
        try:
            metadata = await resolver.resolve(
                autocomplete_request.query, autocomplete_request.media_type
            )
        except ConfigurationError:
            return _manual_entry_response(
                503, "AI service not configured", autocomplete_request
            )
        except ExhaustedCascadeError as exc:
            return _manual_entry_response(500, str(exc), autocomplete_request)
        except AutocompleteError as exc:
            logger.exception("Autocomplete failed for %r", autocomplete_request.query)
            return _manual_entry_response(500, str(exc), autocomplete_request)
        return metadata.model_dump()

    @fastapi_app.get("/api/ai/cover")
    async def find_cover(
        title: str = Query(min_length=1),
        media_type: MediaType = Query(alias="type"),
        year: int | None = None,
        creator: str | None = None,
    ) -> dict[str, str]:
        cover_url = await get_cover_finder(fastapi_app).find_cover_url(
            title, media_type, year, creator
        )
        resolver = get_resolver(fastapi_app)
        if resolver.is_configured():
            search_term = await resolver.suggest_cover_search(title, media_type, year)
            search_url = image_search_url(search_term)
        else:
            search_url = duckduckgo_search_url(title, media_type)
        return {"cover_url": cover_url, "search_url": search_url}

    @fastapi_app.get("/api/ai/status")
    async def ai_status() -> dict[str, Any]:
        resolver = get_resolver(fastapi_app)
        return {"configured": resolver.is_configured(), "models": list(resolver.models)}

    @fastapi_app.get("/api/ai/models")
    async def ai_models() -> dict[str, list[str]]:
        client = get_client_manager(fastapi_app).client
        if client is None:
            raise HTTPException(status_code=503, detail="AI service not configured")
        try:
            return {"models": await client.list_models()}
        except (GeminiError, httpx.HTTPError) as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc

    @fastapi_app.post("/api/config/apikey")
    async def configure_api_key(request: Request) -> dict[str, bool]:
        body = await _json_body(request)
        try:
            payload = ApiKeyUpdate.model_validate(body)
        except ValidationError as exc:
            raise HTTPException(status_code=400, detail="apiKey is required") from exc
        manager = get_client_manager(fastapi_app)
        try:
            manager.configure(payload.api_key)
        except OSError as exc:
            logger.exception("Could not persist API key")
            raise HTTPException(status_code=500, detail="Could not save API key") from exc
        return {"success": True, "configured": manager.is_ready()}

    # Stats

    @fastapi_app.get("/api/stats", response_model=Stats)
    async def stats(user_id: int | None = None) -> dict[str, Any]:
        return await get_catalog_service(fastapi_app).stats(user_id)

    if frontend_dist is not None:
        _register_frontend(fastapi_app, Path(frontend_dist))


def _register_frontend(fastapi_app: FastAPI, frontend_dist: Path) -> None:
    root = frontend_dist.resolve()

    @fastapi_app.get("/{full_path:path}", include_in_schema=False)
    async def spa_fallback(full_path: str) -> Response:
        if full_path.startswith("api/"):
            raise HTTPException(status_code=404, detail="Not found")
        candidate = (root / full_path).resolve()
        if full_path and candidate.is_file() and candidate.is_relative_to(root):
            return FileResponse(candidate)
        index_path = root / "index.html"
        if index_path.is_file():
            return FileResponse(index_path)
        return JSONResponse(
            status_code=404,
            content={"detail": "Frontend not built. Run: cd frontend && npm run build"},
        )


app = create_app()
