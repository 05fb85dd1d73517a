"""
Blob Store Interface - Abstract base class for path-addressed object storage.
Uploaded documents and rendered reports live behind this interface, so a
cloud bucket can replace the local filesystem without touching callers.
"""

from abc import ABC, abstractmethod
from typing import Optional, List, Dict, Any


class BlobStore(ABC):
    """
    Abstract blob store that defines the contract for all storage backends.
    """

    @abstractmethod
    async def save(
        self,
        path: str,
        content: bytes | str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> bool:
        """
        Save content to the specified path, replacing any existing object.

        Args:
            path: Relative object path (e.g., "user-1/session-1/labs.pdf")
            content: Content to save (bytes for binary files, str for text)
            metadata: Optional metadata to associate with the object

        Returns:
            bool: True if save was successful, False otherwise
        """
        pass

    @abstractmethod
    async def load(self, path: str) -> Optional[bytes]:
        """
        Load an object.

        Args:
            path: Relative object path

        Returns:
            Optional[bytes]: Object content, or None if it doesn't exist
        """
        pass

    @abstractmethod
    async def exists(self, path: str) -> bool:
        """Check whether an object exists at the path."""
        pass

    @abstractmethod
    async def delete(self, path: str) -> bool:
        """
        Delete an object.

        Returns:
            bool: True if an object was removed
        """
        pass

    @abstractmethod
    async def list(
        self,
        path: str,
        pattern: Optional[str] = None,
        recursive: bool = False
    ) -> List[str]:
        """
        List objects under a directory prefix.

        Args:
            path: Directory prefix to list
            pattern: Optional glob pattern to filter names (e.g., "*.html")
            recursive: Whether to descend into sub-directories

        Returns:
            List[str]: Relative object paths, sorted
        """
        pass

    @abstractmethod
    async def get_metadata(self, path: str) -> Optional[Dict[str, Any]]:
        """
        Get metadata for an object.

        Returns:
            Optional[Dict]: size, created_at, modified_at plus any custom metadata
        """
        pass

    @abstractmethod
    def create_signed_url(self, path: str, expires_in: Optional[int] = None) -> str:
        """
        Create a time-limited download URL for an object.

        Args:
            path: Relative object path
            expires_in: Lifetime in seconds (backend default if None)

        Returns:
            str: URL that grants read access until it expires
        """
        pass
