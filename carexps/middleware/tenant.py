"""
Tenant Middleware

Resolves which customer deployment a request belongs to and puts the
tenant on request.state. Everything downstream builds its TenantScope
from request.state.tenant, so this is where isolation starts.

Resolution order:
1. X-Tenant-Slug header (API clients)
2. Subdomain of the Host header (medex.carexps.com -> "medex")
3. X-Tenant-ID header (legacy)
"""
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from sqlalchemy.orm import Session
from typing import Optional
import logging

from carexps import database
from carexps.models.tenant import Tenant

logger = logging.getLogger(__name__)

EXCLUDED_PREFIXES = (
    "/docs",
    "/redoc",
    "/openapi.json",
    "/health",
)

NON_TENANT_SUBDOMAINS = ("www", "api", "app")


class TenantMiddleware(BaseHTTPMiddleware):
    """
    Extract and validate the tenant on every request.

    400 without an identifier, 404 for an unknown tenant, 403 for an
    inactive one.
    """

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if path == "/" or any(path.startswith(prefix) for prefix in EXCLUDED_PREFIXES):
            return await call_next(request)

        tenant_identifier = self._extract_tenant_identifier(request)

        if not tenant_identifier:
            logger.warning(f"No tenant identifier in request: {path}")
            return JSONResponse(
                status_code=400,
                content={
                    "detail": "Tenant identifier required (subdomain or X-Tenant-Slug header)",
                    "type": "tenant_required"
                }
            )

        db = database.SessionLocal()
        try:
            tenant = self._load_tenant(db, tenant_identifier)
        finally:
            db.close()

        if not tenant:
            logger.warning(f"Tenant not found: {tenant_identifier}")
            return JSONResponse(
                status_code=404,
                content={"detail": f"Tenant not found: {tenant_identifier}", "type": "tenant_not_found"}
            )

        if not tenant.is_active:
            logger.warning(f"Inactive tenant attempted access: {tenant_identifier}")
            return JSONResponse(
                status_code=403,
                content={"detail": "Tenant account is inactive", "type": "tenant_inactive"}
            )

        request.state.tenant = tenant
        request.state.tenant_id = tenant.id

        logger.debug(f"Request for tenant: {tenant.slug} ({tenant.id})")

        return await call_next(request)

    def _extract_tenant_identifier(self, request: Request) -> Optional[str]:
        tenant_slug = request.headers.get("X-Tenant-Slug")
        if tenant_slug:
            return tenant_slug

        host = request.headers.get("Host", "").split(":")[0]
        parts = host.split(".")
        if len(parts) >= 3 and parts[0] not in NON_TENANT_SUBDOMAINS:
            return parts[0]

        tenant_id = request.headers.get("X-Tenant-ID")
        if tenant_id:
            logger.debug("Using X-Tenant-ID header (legacy)")
            return tenant_id

        return None

    def _load_tenant(self, db: Session, identifier: str) -> Optional[Tenant]:
        """Tries slug, subdomain, then ID."""
        tenant = db.query(Tenant).filter(Tenant.slug == identifier).first()
        if tenant:
            return tenant

        tenant = db.query(Tenant).filter(Tenant.subdomain == identifier).first()
        if tenant:
            return tenant

        return db.query(Tenant).filter(Tenant.id == identifier).first()
