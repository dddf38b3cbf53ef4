"""
FastAPI dependencies over the Authorization Pipeline.

The principal is expected on request.state.principal (set by the
authentication middleware, which is out of scope here). On success the
FilterPredicate is stored on request.state.filter_predicate for the
route's data access.

Usage:
    @router.post(
        "/offices",
        dependencies=[Depends(require_access(
            permissions=[Permission.CREATE_OFFICE],
            granular_feature=("Create Office", "create_office"),
        ))],
    )
    def create_office(predicate: FilterPredicate = Depends(get_filter_predicate)):
        ...
"""

import logging
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from office_access.bootstrap import AccessControl
from office_access.database.session import get_db_session
from office_access.platform.authorization import (
    AuthorizationPipeline,
    OperationRequirements,
    PipelineDecision,
    RequestContext,
)
from office_access.platform.principal import Principal
from office_access.platform.scope import FilterPredicate

logger = logging.getLogger(__name__)


def get_access_control(request: Request) -> AccessControl:
    access_control = getattr(request.app.state, "access_control", None)
    if access_control is None:
        logger.error("AccessControl is not installed on the application")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Access control not configured",
        )
    return access_control


def get_authorization_pipeline(
    access_control: AccessControl = Depends(get_access_control),
    db: Session = Depends(get_db_session),
) -> AuthorizationPipeline:
    return access_control.pipeline_for(db)


def get_principal(request: Request) -> Optional[Principal]:
    return getattr(request.state, "principal", None)


async def _read_body(request: Request) -> Dict[str, Any]:
    if not await request.body():
        return {}
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


async def build_request_context(request: Request) -> RequestContext:
    return RequestContext(
        query=dict(request.query_params),
        body=await _read_body(request),
        path=dict(request.path_params),
    )


def require_access(
    public: bool = False,
    roles: Optional[Iterable[Any]] = None,
    permissions: Optional[Iterable[Any]] = None,
    feature_group: Optional[str] = None,
    granular_feature: Optional[Tuple[str, str]] = None,
    enforce_path_scope: bool = False,
    hierarchical_assignment: bool = False,
) -> Callable:
    """
    Build a dependency enforcing the given requirements.

    Requirements are normalised once, when the route is declared.

    Raises (from the dependency):
        HTTPException: with the denial's http_status and to_dict() detail
    """
    requirements = OperationRequirements.build(
        public=public,
        roles=roles,
        permissions=permissions,
        feature_group=feature_group,
        granular_feature=granular_feature,
        enforce_path_scope=enforce_path_scope,
        hierarchical_assignment=hierarchical_assignment,
    )

    async def dependency(
        request: Request,
        pipeline: AuthorizationPipeline = Depends(get_authorization_pipeline),
    ) -> PipelineDecision:
        context = await build_request_context(request)
        # Entitlement checks do blocking database I/O
        decision = await run_in_threadpool(
            pipeline.authorize_request,
            get_principal(request),
            requirements,
            context,
        )
        if not decision.allowed:
            raise HTTPException(
                status_code=decision.error.http_status,
                detail=decision.error.to_dict(),
            )
        request.state.filter_predicate = decision.filter_predicate
        request.state.office_id = decision.office_id
        return decision

    return dependency


def get_filter_predicate(request: Request) -> FilterPredicate:
    """
    The predicate attached by require_access.

    Fails closed: a route that forgot require_access sees nothing.
    """
    predicate = getattr(request.state, "filter_predicate", None)
    if predicate is None:
        logger.warning(
            "No filter predicate on request, denying all data",
            extra={"path": request.url.path},
        )
        return FilterPredicate.match_nothing()
    return predicate
