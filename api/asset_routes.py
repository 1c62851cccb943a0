# ============================================================================
# ASSET ROUTES
# ============================================================================
# EPOCH: 1 - ASSET HIERARCHY
# STATUS: Core - Asset hierarchy HTTP endpoints
# PURPOSE: Thin HTTP adapter over AssetTwinService
# CREATED: 13 OCT 2026
# ============================================================================
"""
Asset Routes

Every request names its tenant in the X-Tenant-Id header; there is no
default tenant. X-Actor (optional) is recorded on audit fields.

Endpoints:
- POST   /api/v1/assets                          - Create asset
- GET    /api/v1/assets                          - List assets (path order)
- GET    /api/v1/assets/roots                    - Root assets
- GET    /api/v1/assets/search                   - Search by name/description
- POST   /api/v1/assets/states/bulk              - Bulk state lookup
- GET    /api/v1/assets/{asset_id}               - Get asset
- PUT    /api/v1/assets/{asset_id}               - Update asset
- DELETE /api/v1/assets/{asset_id}?cascade=      - Delete asset / subtree
- POST   /api/v1/assets/{asset_id}/move          - Re-parent subtree
- GET    /api/v1/assets/{asset_id}/children      - Direct children
- GET    /api/v1/assets/{asset_id}/descendants   - Whole subtree
- GET    /api/v1/assets/{asset_id}/ancestors     - Root-first ancestors
- GET    /api/v1/assets/{asset_id}/tree          - Nested tree with state
- GET    /api/v1/assets/{asset_id}/path          - Breadcrumb
- GET    /api/v1/assets/{asset_id}/state         - Live state
- POST   /api/v1/assets/{asset_id}/state         - Report telemetry
- POST   /api/v1/assets/{asset_id}/state/reset-window - Zero SUM/COUNT window
- POST   /api/v1/assets/{asset_id}/alarms        - Open alarm
- DELETE /api/v1/assets/{asset_id}/alarms/{alarm_id} - Resolve alarm
"""

from typing import Optional

from fastapi import APIRouter, Header, HTTPException, Query

from api.schemas import (
    AlarmOpenRequest,
    AssetCreate,
    AssetListResponse,
    AssetResponse,
    AssetStateResponse,
    AssetUpdate,
    BulkStateRequest,
    BulkStateResponse,
    DeleteResponse,
    MoveRequest,
    PathResponse,
    StateUpdateRequest,
    TreeNodeResponse,
)
from core.contracts import AssetStatus, AssetType
from core.errors import (
    AssetHierarchyError,
    ConcurrentModificationError,
    CycleDetectedError,
    HasChildrenError,
    NotFoundError,
    ParentNotFoundError,
    QueryCancelledError,
    SubtreeTooLargeError,
    TraversalLimitExceededError,
    ValidationError,
)
from core.logging import ComponentType, get_logger

logger = get_logger(__name__, ComponentType.API)

router = APIRouter(prefix="/api/v1/assets", tags=["assets"])


# ============================================================================
# DEPENDENCY INJECTION
# ============================================================================

_twin_service = None


def set_asset_services(twin_service):
    """Called by main.py at startup to inject the twin service."""
    global _twin_service
    _twin_service = twin_service


def get_asset_service():
    """The injected twin service, or None before startup completes."""
    return _twin_service


def _get_service():
    """Get the twin service, raising 503 if not initialized."""
    if _twin_service is None:
        raise HTTPException(503, "Asset service not initialized")
    return _twin_service


def _tenant(x_tenant_id: Optional[str]) -> str:
    if not x_tenant_id or not x_tenant_id.strip():
        raise HTTPException(400, "X-Tenant-Id header is required")
    return x_tenant_id.strip()


# Order matters: subclasses before their bases
_STATUS_BY_ERROR = [
    (ParentNotFoundError, 404),
    (NotFoundError, 404),
    (CycleDetectedError, 400),
    (ValidationError, 400),
    (HasChildrenError, 409),
    (ConcurrentModificationError, 409),
    (SubtreeTooLargeError, 413),
    (TraversalLimitExceededError, 413),
    (QueryCancelledError, 499),
]


def _http_error(e: AssetHierarchyError) -> HTTPException:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(e, error_type):
            break
    else:
        status_code = 500
    if status_code >= 500:
        logger.error(f"Unmapped asset error: {e}")
    return HTTPException(status_code, {"error": e.code, "detail": str(e), "asset_id": e.asset_id})


# ============================================================================
# COLLECTION
# ============================================================================

@router.post("", response_model=AssetResponse, status_code=201)
async def create_asset(
    request: AssetCreate,
    x_tenant_id: Optional[str] = Header(None),
    x_actor: Optional[str] = Header(None),
):
    """Create an asset. path/level are assigned from the parent."""
    svc = _get_service()
    tenant_id = _tenant(x_tenant_id)
    try:
        asset = await svc.create_asset(
            tenant_id, actor=x_actor, **request.model_dump(exclude_none=True)
        )
    except AssetHierarchyError as e:
        raise _http_error(e)
    return AssetResponse.from_asset(asset, child_count=0)


@router.get("", response_model=AssetListResponse)
async def list_assets(
    skip: int = Query(0, ge=0),
    take: Optional[int] = Query(None, ge=1),
    x_tenant_id: Optional[str] = Header(None),
):
    """All assets of the tenant, in path order."""
    svc = _get_service()
    tenant_id = _tenant(x_tenant_id)
    try:
        assets = await svc.get_all_assets(tenant_id, skip, take)
        total = await svc.count_assets(tenant_id)
    except AssetHierarchyError as e:
        raise _http_error(e)
    return AssetListResponse(
        assets=[AssetResponse.from_asset(a) for a in assets], total=total, skip=skip, take=take
    )


@router.get("/roots", response_model=AssetListResponse)
async def list_roots(x_tenant_id: Optional[str] = Header(None)):
    svc = _get_service()
    tenant_id = _tenant(x_tenant_id)
    try:
        roots = await svc.get_root_assets(tenant_id)
        counts = await svc.child_counts(tenant_id, roots)
    except AssetHierarchyError as e:
        raise _http_error(e)
    return AssetListResponse(
        assets=[AssetResponse.from_asset(a, counts.get(a.asset_id, 0)) for a in roots],
        total=len(roots),
    )


@router.get("/search", response_model=AssetListResponse)
async def search_assets(
    q: Optional[str] = Query(None, max_length=200, description="Name/description substring"),
    asset_type: Optional[AssetType] = None,
    status: Optional[AssetStatus] = None,
    parent_id: Optional[str] = None,
    skip: int = Query(0, ge=0),
    take: Optional[int] = Query(None, ge=1),
    x_tenant_id: Optional[str] = Header(None),
):
    svc = _get_service()
    tenant_id = _tenant(x_tenant_id)
    try:
        page, total = await svc.search_assets(
            tenant_id,
            search_term=q,
            asset_type=asset_type,
            status=status,
            parent_id=parent_id,
            skip=skip,
            take=take,
        )
    except AssetHierarchyError as e:
        raise _http_error(e)
    return AssetListResponse(
        assets=[AssetResponse.from_asset(a) for a in page], total=total, skip=skip, take=take
    )


@router.post("/states/bulk", response_model=BulkStateResponse)
async def bulk_states(request: BulkStateRequest, x_tenant_id: Optional[str] = Header(None)):
    """States for many assets; unknown ids are omitted."""
    svc = _get_service()
    tenant_id = _tenant(x_tenant_id)
    try:
        states = await svc.get_bulk_states(request.asset_ids, tenant_id)
    except AssetHierarchyError as e:
        raise _http_error(e)
    return BulkStateResponse(
        states={asset_id: AssetStateResponse.from_state(s) for asset_id, s in states.items()}
    )


# ============================================================================
# SINGLE ASSET
# ============================================================================

@router.get("/{asset_id}", response_model=AssetResponse)
async def get_asset(asset_id: str, x_tenant_id: Optional[str] = Header(None)):
    svc = _get_service()
    tenant_id = _tenant(x_tenant_id)
    try:
        asset = await svc.get_asset(asset_id, tenant_id)
        counts = await svc.child_counts(tenant_id, [asset])
    except AssetHierarchyError as e:
        raise _http_error(e)
    return AssetResponse.from_asset(asset, counts.get(asset_id, 0))


@router.put("/{asset_id}", response_model=AssetResponse)
async def update_asset(
    asset_id: str,
    request: AssetUpdate,
    x_tenant_id: Optional[str] = Header(None),
    x_actor: Optional[str] = Header(None),
):
    """Non-structural update. Use /move to re-parent."""
    svc = _get_service()
    tenant_id = _tenant(x_tenant_id)
    changes = request.changes()
    if not changes:
        raise HTTPException(400, "No changes supplied")
    try:
        asset = await svc.update_asset(asset_id, tenant_id, changes, actor=x_actor)
    except AssetHierarchyError as e:
        raise _http_error(e)
    return AssetResponse.from_asset(asset)


@router.delete("/{asset_id}", response_model=DeleteResponse)
async def delete_asset(
    asset_id: str,
    cascade: bool = Query(False),
    x_tenant_id: Optional[str] = Header(None),
):
    svc = _get_service()
    tenant_id = _tenant(x_tenant_id)
    try:
        removed = await svc.delete_asset(asset_id, tenant_id, cascade=cascade)
    except AssetHierarchyError as e:
        raise _http_error(e)
    return DeleteResponse(asset_id=asset_id, deleted=removed, cascade=cascade)


@router.post("/{asset_id}/move", response_model=AssetResponse)
async def move_asset(
    asset_id: str,
    request: MoveRequest,
    x_tenant_id: Optional[str] = Header(None),
    x_actor: Optional[str] = Header(None),
):
    svc = _get_service()
    tenant_id = _tenant(x_tenant_id)
    try:
        asset = await svc.move_asset(asset_id, request.new_parent_id, tenant_id, actor=x_actor)
    except AssetHierarchyError as e:
        raise _http_error(e)
    return AssetResponse.from_asset(asset)


# ============================================================================
# HIERARCHY
# ============================================================================

@router.get("/{asset_id}/children", response_model=AssetListResponse)
async def get_children(asset_id: str, x_tenant_id: Optional[str] = Header(None)):
    svc = _get_service()
    tenant_id = _tenant(x_tenant_id)
    try:
        children = await svc.get_children(asset_id, tenant_id)
        counts = await svc.child_counts(tenant_id, children)
    except AssetHierarchyError as e:
        raise _http_error(e)
    return AssetListResponse(
        assets=[AssetResponse.from_asset(a, counts.get(a.asset_id, 0)) for a in children],
        total=len(children),
    )


@router.get("/{asset_id}/descendants", response_model=AssetListResponse)
async def get_descendants(asset_id: str, x_tenant_id: Optional[str] = Header(None)):
    svc = _get_service()
    tenant_id = _tenant(x_tenant_id)
    try:
        descendants = await svc.get_descendants(asset_id, tenant_id)
    except AssetHierarchyError as e:
        raise _http_error(e)
    return AssetListResponse(
        assets=[AssetResponse.from_asset(a) for a in descendants], total=len(descendants)
    )


@router.get("/{asset_id}/ancestors", response_model=AssetListResponse)
async def get_ancestors(asset_id: str, x_tenant_id: Optional[str] = Header(None)):
    svc = _get_service()
    tenant_id = _tenant(x_tenant_id)
    try:
        ancestors = await svc.get_ancestors(asset_id, tenant_id)
    except AssetHierarchyError as e:
        raise _http_error(e)
    return AssetListResponse(
        assets=[AssetResponse.from_asset(a) for a in ancestors], total=len(ancestors)
    )


@router.get("/{asset_id}/tree", response_model=TreeNodeResponse)
async def get_tree(
    asset_id: str,
    max_depth: Optional[int] = Query(None, ge=0),
    x_tenant_id: Optional[str] = Header(None),
):
    """Nested subtree with live state, bounded by depth and result count."""
    svc = _get_service()
    tenant_id = _tenant(x_tenant_id)
    try:
        node = await svc.get_tree(asset_id, tenant_id, max_depth=max_depth)
    except AssetHierarchyError as e:
        raise _http_error(e)
    return TreeNodeResponse.from_node(node)


@router.get("/{asset_id}/path", response_model=PathResponse)
async def get_path(asset_id: str, x_tenant_id: Optional[str] = Header(None)):
    svc = _get_service()
    tenant_id = _tenant(x_tenant_id)
    try:
        asset = await svc.get_asset(asset_id, tenant_id)
        names = await svc.get_path_names(asset_id, tenant_id)
    except AssetHierarchyError as e:
        raise _http_error(e)
    return PathResponse(asset_id=asset_id, path=asset.path, path_names=names)


# ============================================================================
# STATE & ALARMS
# ============================================================================

@router.get("/{asset_id}/state", response_model=AssetStateResponse)
async def get_state(asset_id: str, x_tenant_id: Optional[str] = Header(None)):
    svc = _get_service()
    tenant_id = _tenant(x_tenant_id)
    try:
        state = await svc.get_state(asset_id, tenant_id)
    except AssetHierarchyError as e:
        raise _http_error(e)
    return AssetStateResponse.from_state(state)


@router.post("/{asset_id}/state", response_model=AssetStateResponse)
async def update_state(
    asset_id: str,
    request: StateUpdateRequest,
    x_tenant_id: Optional[str] = Header(None),
):
    """Report telemetry; rollups propagate before the response returns."""
    svc = _get_service()
    tenant_id = _tenant(x_tenant_id)
    try:
        state = await svc.update_state(
            asset_id, tenant_id, request.values, source_device_id=request.source_device_id
        )
    except AssetHierarchyError as e:
        raise _http_error(e)
    return AssetStateResponse.from_state(state)


@router.post("/{asset_id}/state/reset-window", response_model=AssetStateResponse)
async def reset_window(asset_id: str, x_tenant_id: Optional[str] = Header(None)):
    svc = _get_service()
    tenant_id = _tenant(x_tenant_id)
    try:
        state = await svc.reset_window(asset_id, tenant_id)
    except AssetHierarchyError as e:
        raise _http_error(e)
    return AssetStateResponse.from_state(state)


@router.post("/{asset_id}/alarms", response_model=AssetStateResponse, status_code=201)
async def open_alarm(
    asset_id: str,
    request: AlarmOpenRequest,
    x_tenant_id: Optional[str] = Header(None),
):
    svc = _get_service()
    tenant_id = _tenant(x_tenant_id)
    try:
        state = await svc.open_alarm(asset_id, tenant_id, request.alarm_id, request.severity)
    except AssetHierarchyError as e:
        raise _http_error(e)
    return AssetStateResponse.from_state(state)


@router.delete("/{asset_id}/alarms/{alarm_id}", response_model=AssetStateResponse)
async def resolve_alarm(asset_id: str, alarm_id: str, x_tenant_id: Optional[str] = Header(None)):
    svc = _get_service()
    tenant_id = _tenant(x_tenant_id)
    try:
        state = await svc.resolve_alarm(asset_id, tenant_id, alarm_id)
    except AssetHierarchyError as e:
        raise _http_error(e)
    return AssetStateResponse.from_state(state)
