"""
Tenant Isolation at the Data-Access Layer

Every tenant-owned table is reached through a TenantScope. Services never
call db.query() on a tenant-owned model directly, and never filter on a
tenant id supplied by the client.

Two layers:
1. TenantScope pre-filters queries and stamps new rows with the tenant.
2. A before_flush guard rejects any pending tenant-owned row whose
   tenant_id differs from the scope bound to the session. This catches
   rows that reached the session by some path other than the scope.

Cross-tenant reads return None (callers turn that into 404), so a caller
cannot tell whether an id exists in another tenant.
"""
from typing import Optional, Type, TypeVar
from sqlalchemy import Column, String, ForeignKey, event, inspect
from sqlalchemy.orm import Session, Query, declared_attr
import logging

from carexps.core.exceptions import TenantIsolationError

logger = logging.getLogger(__name__)

SCOPE_KEY = "tenant_id"

T = TypeVar("T")


class TenantOwnedMixin:
    """Adds the tenant_id column. Only mixed-in models are reachable via TenantScope."""

    @declared_attr
    def tenant_id(cls):
        return Column(
            String(36),
            ForeignKey("tenants.id", ondelete="CASCADE"),
            nullable=False,
            index=True
        )


def _require_tenant_owned(model) -> None:
    if not (isinstance(model, type) and issubclass(model, TenantOwnedMixin)):
        raise TypeError(f"{model!r} is not tenant-owned")


class TenantScope:
    """
    Session wrapper bound to exactly one tenant.

    A session can be bound to one tenant for its lifetime. Binding it to a
    second tenant raises TenantIsolationError.
    """

    def __init__(self, db: Session, tenant_id: str):
        if not tenant_id:
            raise TenantIsolationError("Tenant context not available")

        bound = db.info.get(SCOPE_KEY)
        if bound is not None and bound != tenant_id:
            raise TenantIsolationError("Session already bound to another tenant")

        db.info[SCOPE_KEY] = tenant_id
        self.db = db
        self.tenant_id = tenant_id

    def query(self, model: Type[T]) -> Query:
        """Query pre-filtered to this tenant."""
        _require_tenant_owned(model)
        return self.db.query(model).filter(model.tenant_id == self.tenant_id)

    def get(self, model: Type[T], ident) -> Optional[T]:
        """Load by primary key. Rows of other tenants come back as None."""
        pk = inspect(model).primary_key[0]
        return self.query(model).filter(pk == ident).first()

    def add(self, obj: T) -> T:
        """Stage a new row, stamping it with this tenant."""
        _require_tenant_owned(type(obj))
        if obj.tenant_id is None:
            obj.tenant_id = self.tenant_id
        elif obj.tenant_id != self.tenant_id:
            raise TenantIsolationError("Object belongs to another tenant")
        self.db.add(obj)
        return obj

    def delete(self, obj) -> None:
        _require_tenant_owned(type(obj))
        if obj.tenant_id != self.tenant_id:
            raise TenantIsolationError("Object belongs to another tenant")
        self.db.delete(obj)

    def commit(self) -> None:
        self.db.commit()

    def refresh(self, obj) -> None:
        self.db.refresh(obj)


@event.listens_for(Session, "before_flush")
def enforce_tenant_on_flush(session, flush_context, instances):
    """Reject flushing tenant-owned rows that do not match the bound tenant."""
    tenant_id = session.info.get(SCOPE_KEY)
    if tenant_id is None:
        return

    for obj in list(session.new) + list(session.dirty) + list(session.deleted):
        if not isinstance(obj, TenantOwnedMixin):
            continue
        if obj.tenant_id is None and obj in session.new:
            obj.tenant_id = tenant_id
            continue
        if obj.tenant_id != tenant_id:
            logger.error(
                f"Flush blocked: {type(obj).__name__} tenant={obj.tenant_id} scope={tenant_id}",
                extra={"tenant_id": tenant_id}
            )
            raise TenantIsolationError("Cross-tenant write blocked")
