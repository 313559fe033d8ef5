"""
Studio Engine Web API
FastAPI application exposing registered resources as CRUD endpoints
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from typing import Any, Optional
import json
import logging
import re
import sqlite3

from .config import settings
from .db import get_db
from .exceptions import StudioError, ValidationError
from .resource import registry
from .service import ResourceService
from . import __version__ as ENGINE_VERSION

logger = logging.getLogger(__name__)

app = FastAPI(title="Studio Engine", version=ENGINE_VERSION)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type"],
)

FILTER_PARAM = re.compile(r'^filters\[([A-Za-z0-9_]+)\](?:\[([A-Za-z0-9_]+)\])?$')


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------

class BulkIdsRequest(BaseModel):
    ids: list[int]


class BulkUpdateRequest(BaseModel):
    ids: list[int]
    data: dict[str, Any] = {}


class ActionRequest(BaseModel):
    ids: list[int] = []
    data: dict[str, Any] = {}


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------

@app.exception_handler(ValidationError)
async def _validation_error(request: Request, exc: ValidationError):
    return JSONResponse({'message': exc.message, 'errors': exc.errors}, status_code=422)


@app.exception_handler(StudioError)
async def _studio_error(request: Request, exc: StudioError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


@app.exception_handler(sqlite3.IntegrityError)
async def _integrity_error(request: Request, exc: sqlite3.IntegrityError):
    msg = str(exc)
    status = 409 if 'UNIQUE' in msg else 400
    return JSONResponse({'error': msg}, status_code=status)


def _service(conn, key: str) -> ResourceService:
    return ResourceService(registry.resolve(key), conn, settings)


def _check_bulk_size(ids: list) -> Optional[JSONResponse]:
    if len(ids) > settings.bulk_max_ids:
        return JSONResponse({
            'message': 'Validation failed',
            'errors': {'ids': [f'The ids field must not have more than {settings.bulk_max_ids} items.']},
        }, status_code=422)
    return None


def _index_params(request: Request) -> dict:
    """page / per_page / search / sort / direction plus filters.

    Filters arrive either as a JSON object in ``filters`` or as
    ``filters[key]`` (and ``filters[key][from]``) query parameters.
    """
    query = request.query_params
    params = {k: query.get(k) for k in ('page', 'per_page', 'search', 'sort', 'direction')}
    filters: dict = {}
    raw = query.get('filters')
    if raw:
        try:
            decoded = json.loads(raw)
        except ValueError:
            raise StudioError('filters must be a JSON object', 400)
        if not isinstance(decoded, dict):
            raise StudioError('filters must be a JSON object', 400)
        filters.update(decoded)
    for name, value in query.multi_items():
        m = FILTER_PARAM.match(name)
        if not m:
            continue
        key, sub = m.groups()
        if sub:
            filters.setdefault(key, {})[sub] = value
        else:
            filters[key] = value
    params['filters'] = filters
    return params


async def _json_body(request: Request) -> dict:
    try:
        data = await request.json()
    except ValueError:
        raise StudioError('Request body must be a JSON object', 400)
    if not isinstance(data, dict):
        raise StudioError('Request body must be a JSON object', 400)
    return data


# ---------------------------------------------------------------------------
# Resource endpoints
# ---------------------------------------------------------------------------

@app.get('/api/resources')
def api_resource_list():
    """List registered resource keys with their labels."""
    result = []
    for key in registry.keys():
        resource = registry.resolve(key)
        result.append({'key': key, 'label': resource.label,
                       'singularLabel': resource.singular_label})
    return result


@app.get('/api/resources/{key}/meta')
def api_resource_meta(key: str, context: str = 'index'):
    """Field, filter and action definitions for building index and form screens."""
    return registry.resolve(key).to_meta(context)


@app.get('/api/resources/{key}/search')
def api_resource_search(key: str, query: str = ''):
    """Related-record search used by relationship pickers (20 per page)."""
    conn = get_db()
    try:
        return _service(conn, key).search_related(query)
    finally:
        conn.close()


@app.get('/api/resources/{key}')
def api_resource_index(key: str, request: Request):
    """Paginated, searchable, filterable listing."""
    params = _index_params(request)
    conn = get_db()
    try:
        return _service(conn, key).index(params)
    finally:
        conn.close()


@app.get('/api/resources/{key}/{pk}')
def api_resource_show(key: str, pk: int):
    conn = get_db()
    try:
        service = _service(conn, key)
        return {'data': service.transform(service.show(pk))}
    finally:
        conn.close()


@app.post('/api/resources/{key}', status_code=201)
async def api_resource_store(key: str, request: Request):
    """Create a record from the visible form fields of the payload."""
    data = await _json_body(request)
    conn = get_db()
    try:
        service = _service(conn, key)
        record = service.store(data)
        return JSONResponse({
            'message': f'{service.resource.singular_label} created successfully',
            'data': service.transform(record),
        }, status_code=201)
    finally:
        conn.close()


@app.put('/api/resources/{key}/{pk}')
async def api_resource_update(key: str, pk: int, request: Request):
    data = await _json_body(request)
    conn = get_db()
    try:
        service = _service(conn, key)
        record = service.update(pk, data)
        return {'message': f'{service.resource.singular_label} updated successfully',
                'data': service.transform(record)}
    finally:
        conn.close()


@app.patch('/api/resources/{key}/{pk}')
async def api_resource_patch(key: str, pk: int, request: Request):
    """Partially update a record; only the attributes sent are validated."""
    data = await _json_body(request)
    conn = get_db()
    try:
        service = _service(conn, key)
        record = service.patch(pk, data)
        return {'message': f'{service.resource.singular_label} updated successfully',
                'data': service.transform(record)}
    finally:
        conn.close()


@app.delete('/api/resources/{key}/{pk}')
def api_resource_destroy(key: str, pk: int):
    conn = get_db()
    try:
        service = _service(conn, key)
        service.destroy(pk)
        return {'message': f'{service.resource.singular_label} deleted successfully'}
    finally:
        conn.close()


@app.post('/api/resources/{key}/bulk-delete')
def api_resource_bulk_destroy(key: str, body: BulkIdsRequest):
    error = _check_bulk_size(body.ids)
    if error:
        return error
    conn = get_db()
    try:
        affected = _service(conn, key).bulk_destroy(body.ids)
        return {'message': f'{affected} items deleted successfully', 'affected': affected}
    finally:
        conn.close()


@app.post('/api/resources/{key}/bulk-update')
def api_resource_bulk_update(key: str, body: BulkUpdateRequest):
    error = _check_bulk_size(body.ids)
    if error:
        return error
    conn = get_db()
    try:
        affected = _service(conn, key).bulk_update(body.ids, body.data)
        return {'message': f'{affected} items updated successfully', 'affected': affected}
    finally:
        conn.close()


@app.post('/api/resources/{key}/actions/{action}')
def api_resource_action(key: str, action: str, body: ActionRequest):
    """Run a declared action against the selected ids."""
    error = _check_bulk_size(body.ids)
    if error:
        return error
    conn = get_db()
    try:
        result = _service(conn, key).run_action(action, body.ids, body.data)
        return {'message': 'Action completed successfully', 'result': result}
    finally:
        conn.close()


if __name__ == '__main__':
    from .serve import main
    main()
