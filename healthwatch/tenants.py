"""Tenant directory backed by the tenants table."""

from typing import List, Optional

from . import db as dbm
from .models import TENANT_ACTIVE, TENANT_STATUSES, Tenant


class TenantDirectory:
    """Lookup, listing and connectivity-flag updates for tenants."""

    def __init__(self, db_path: str):
        self.db_path = db_path

    def get(self, tenant_id: str) -> Optional[Tenant]:
        return dbm.get_tenant(self.db_path, tenant_id)

    def list_active(self) -> List[Tenant]:
        return dbm.list_tenants(self.db_path, status=TENANT_ACTIVE)

    def count_active(self) -> int:
        return dbm.count_tenants(self.db_path, status=TENANT_ACTIVE)

    def set_connectivity_flag(self, tenant_id: str, flag: bool) -> bool:
        return dbm.set_connectivity_flag(self.db_path, tenant_id, flag)

    def save(self, tenant: Tenant) -> Tenant:
        if tenant.status not in TENANT_STATUSES:
            raise ValueError(f"Invalid tenant status {tenant.status!r}")
        dbm.upsert_tenant(self.db_path, tenant)
        return tenant
