"""
Local Filesystem Blob Store.
Objects are plain files under a base directory; custom metadata sits next to
each object in a ``.meta`` JSON sidecar.
"""

import json
import logging
import aiofiles
from pathlib import Path
from typing import Optional, List, Dict, Any
from datetime import datetime
import glob as glob_module

from .interface import BlobStore
from ..utils.auth import create_download_token

logger = logging.getLogger(__name__)

META_SUFFIX = '.meta'


class LocalBlobStore(BlobStore):
    """
    Filesystem-backed blob store.
    """

    def __init__(self, base_dir: str = "./data/blobs", signed_url_prefix: str = "/storage/signed"):
        """
        Initialize the store with a base directory.

        Args:
            base_dir: Directory holding every object
            signed_url_prefix: Route that serves signed download tokens
        """
        self.base_dir = Path(base_dir).resolve()
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.signed_url_prefix = signed_url_prefix.rstrip('/')

    def _get_full_path(self, path: str) -> Path:
        """Resolve a relative object path inside the base directory."""
        full_path = (self.base_dir / path).resolve()

        if full_path != self.base_dir and self.base_dir not in full_path.parents:
            raise ValueError(f"Invalid path: {path} - path traversal detected")

        return full_path

    @staticmethod
    def _meta_path(full_path: Path) -> Path:
        return full_path.with_suffix(full_path.suffix + META_SUFFIX)

    async def save(
        self,
        path: str,
        content: bytes | str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> bool:
        try:
            full_path = self._get_full_path(path)
            full_path.parent.mkdir(parents=True, exist_ok=True)

            if isinstance(content, str):
                async with aiofiles.open(full_path, 'w', encoding='utf-8') as f:
                    await f.write(content)
            else:
                async with aiofiles.open(full_path, 'wb') as f:
                    await f.write(content)

            if metadata:
                async with aiofiles.open(self._meta_path(full_path), 'w', encoding='utf-8') as f:
                    await f.write(json.dumps(metadata, indent=2, default=str))

            return True
        except (OSError, ValueError) as e:
            logger.error(f"Error saving blob {path}: {e}")
            return False

    async def load(self, path: str) -> Optional[bytes]:
        try:
            full_path = self._get_full_path(path)
            if not full_path.is_file():
                return None

            async with aiofiles.open(full_path, 'rb') as f:
                return await f.read()
        except (OSError, ValueError) as e:
            logger.error(f"Error loading blob {path}: {e}")
            return None

    async def exists(self, path: str) -> bool:
        try:
            return self._get_full_path(path).is_file()
        except ValueError:
            return False

    async def delete(self, path: str) -> bool:
        try:
            full_path = self._get_full_path(path)
            if not full_path.is_file():
                return False

            full_path.unlink()
            meta_path = self._meta_path(full_path)
            if meta_path.exists():
                meta_path.unlink()
            return True
        except (OSError, ValueError) as e:
            logger.error(f"Error deleting blob {path}: {e}")
            return False

    async def list(
        self,
        path: str,
        pattern: Optional[str] = None,
        recursive: bool = False
    ) -> List[str]:
        try:
            full_path = self._get_full_path(path)
        except ValueError:
            return []
        if not full_path.is_dir():
            return []

        if pattern:
            if recursive:
                files = glob_module.glob(str(full_path / "**" / pattern), recursive=True)
            else:
                files = glob_module.glob(str(full_path / pattern))
        else:
            candidates = full_path.rglob("*") if recursive else full_path.glob("*")
            files = [str(p) for p in candidates if p.is_file()]

        relative_paths = [
            Path(file_path).relative_to(self.base_dir).as_posix()
            for file_path in files
            if not file_path.endswith(META_SUFFIX)
        ]
        return sorted(relative_paths)

    async def get_metadata(self, path: str) -> Optional[Dict[str, Any]]:
        try:
            full_path = self._get_full_path(path)
            if not full_path.is_file():
                return None

            stat = full_path.stat()
            metadata: Dict[str, Any] = {
                'size': stat.st_size,
                'created_at': datetime.fromtimestamp(stat.st_ctime).isoformat(),
                'modified_at': datetime.fromtimestamp(stat.st_mtime).isoformat(),
                'path': path
            }

            meta_path = self._meta_path(full_path)
            if meta_path.exists():
                async with aiofiles.open(meta_path, 'r', encoding='utf-8') as f:
                    metadata.update(json.loads(await f.read()))

            return metadata
        except (OSError, ValueError) as e:
            logger.error(f"Error reading metadata for {path}: {e}")
            return None

    def create_signed_url(self, path: str, expires_in: Optional[int] = None) -> str:
        self._get_full_path(path)
        token = create_download_token(path, expires_in)
        return f"{self.signed_url_prefix}/{token}"
