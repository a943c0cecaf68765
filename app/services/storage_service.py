import os
from pathlib import Path
from typing import Optional
from uuid import uuid4

import aiofiles

from app.core.errors import InvalidTenant
from app.utils.logger import get_logger

logger = get_logger("services.storage")


class StorageService:
    """Byte-source storage for uploaded knowledge files, partitioned by tenant."""

    def __init__(self, upload_dir: Path):
        self.upload_dir = Path(upload_dir)
        self.upload_dir.mkdir(parents=True, exist_ok=True)

    async def save_bytes(self, tenant_id: str, data: bytes, filename: Optional[str] = None) -> str:
        """Write an uploaded file under the tenant's folder and return its path."""
        file_extension = os.path.splitext(filename or "")[1].lower()
        tenant_dir = self._tenant_dir(tenant_id)
        tenant_dir.mkdir(parents=True, exist_ok=True)

        file_path = tenant_dir / f"{uuid4()}{file_extension}"
        async with aiofiles.open(file_path, "wb") as buffer:
            await buffer.write(data)

        logger.info(f"Stored {len(data)} bytes for tenant {tenant_id} at {file_path}")
        return str(file_path)

    def _tenant_dir(self, tenant_id: str) -> Path:
        root = self.upload_dir.resolve()
        tenant_dir = (root / tenant_id).resolve()
        if not tenant_id or tenant_dir.parent != root:
            logger.warning(f"Rejected upload path for tenant {tenant_id!r}")
            raise InvalidTenant(tenant_id)
        return tenant_dir

    async def read_bytes(self, file_path: str) -> bytes:
        async with aiofiles.open(file_path, "rb") as f:
            return await f.read()

    def exists(self, file_path: Optional[str]) -> bool:
        return bool(file_path) and Path(file_path).is_file()

    def delete_file(self, file_path: Optional[str]) -> bool:
        """Delete a stored file. Missing files are not an error."""
        if not file_path:
            return False
        path = Path(file_path)
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning(f"Could not delete stored file {file_path}: {e}")
            return False
