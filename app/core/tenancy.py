import re
from typing import Optional

from fastapi import Header, HTTPException

MAX_TENANT_ID_LENGTH = 128

# Tenant ids name upload folders, so they stay within a filename-safe alphabet
TENANT_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


def is_valid_tenant_id(tenant_id: str) -> bool:
    return (
        0 < len(tenant_id) <= MAX_TENANT_ID_LENGTH
        and TENANT_ID_PATTERN.match(tenant_id) is not None
        and ".." not in tenant_id
    )


async def get_tenant_id(
    x_tenant_id: Optional[str] = Header(None, alias="X-Tenant-ID"),
) -> str:
    """
    Extract the tenant from the X-Tenant-ID header.

    Authentication happens in front of this service; the header is trusted
    but must be a plain identifier.
    """
    tenant_id = (x_tenant_id or "").strip()

    if not tenant_id:
        raise HTTPException(status_code=400, detail="X-Tenant-ID header required")
    if len(tenant_id) > MAX_TENANT_ID_LENGTH:
        raise HTTPException(status_code=400, detail="X-Tenant-ID header too long")
    if not is_valid_tenant_id(tenant_id):
        raise HTTPException(
            status_code=400,
            detail="X-Tenant-ID may only contain letters, digits, '_', '-' and single dots",
        )

    return tenant_id
