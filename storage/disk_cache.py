"""Content-addressed disk cache for API responses."""
import hashlib
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import List, Union

from processor.exceptions import CacheStoreError
from processor.models import CacheEntry

logger = logging.getLogger(__name__)


class DiskCache:
    """Flat key/value store with one file per key under a namespace directory."""
    
    DEFAULT_NAMESPACE = 'eventbrite-api-request-cache'
    ENTRY_SUFFIX = '.entry'
    
    def __init__(self, namespace: str = DEFAULT_NAMESPACE, location: str = 'tmp/'):
        """
        Initialize the cache directory.
        
        Args:
            namespace: Directory name separating this cache from other users
            location: Parent directory for the namespace (default: tmp/)
        """
        self.namespace = namespace
        self.directory = Path(location) / namespace
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise CacheStoreError(f"Cannot create cache directory {self.directory}: {e}") from e
        logger.info(f"Initialized DiskCache at: {self.directory}")
    
    def get(self, key: str) -> CacheEntry:
        """
        Look up a key.
        
        A missing key is not an error; it comes back with is_cached False.
        
        Args:
            key: Cache key
            
        Returns:
            CacheEntry for the key
            
        Raises:
            CacheStoreError: If the entry exists but cannot be read
        """
        path = self._path_for(key)
        
        if not path.exists():
            logger.debug(f"Cache miss: {key}")
            return CacheEntry(key=key, is_cached=False)
        
        try:
            _, value = self._read_entry(path)
        except (OSError, ValueError) as e:
            raise CacheStoreError(f"Error reading cache entry {key}: {e}") from e
        
        logger.debug(f"Cache hit: {key}")
        return CacheEntry(key=key, is_cached=True, value=value)
    
    def set(self, key: str, value: Union[bytes, str]) -> None:
        """
        Store a value under a key, replacing any previous value.
        
        Args:
            key: Cache key
            value: Raw bytes, or text which is stored UTF-8 encoded
            
        Raises:
            CacheStoreError: If the entry cannot be written
        """
        if isinstance(value, str):
            value = value.encode('utf-8')
        
        header = json.dumps(key).encode('utf-8') + b'\n'
        path = self._path_for(key)
        
        try:
            fd, tmp_name = tempfile.mkstemp(dir=self.directory, suffix='.tmp')
            with os.fdopen(fd, 'wb') as handle:
                handle.write(header)
                handle.write(value)
            os.replace(tmp_name, path)
        except OSError as e:
            raise CacheStoreError(f"Error writing cache entry {key}: {e}") from e
        
        logger.debug(f"Cached {len(value)} bytes under: {key}")
    
    def clear(self) -> int:
        """
        Remove every entry in the namespace.
        
        Returns:
            Count of removed entries
        """
        removed = 0
        try:
            for path in self.directory.iterdir():
                if path.is_file():
                    path.unlink()
                    removed += 1
        except OSError as e:
            raise CacheStoreError(f"Error clearing cache {self.directory}: {e}") from e
        
        logger.info(f"Cleared {removed} entries from {self.directory}")
        return removed
    
    def keys(self) -> List[str]:
        """Return the original keys of all stored entries."""
        try:
            return [
                self._read_entry(path)[0]
                for path in sorted(self.directory.glob(f"*{self.ENTRY_SUFFIX}"))
            ]
        except (OSError, ValueError) as e:
            raise CacheStoreError(f"Error listing cache {self.directory}: {e}") from e
    
    def _path_for(self, key: str) -> Path:
        digest = hashlib.sha256(key.encode('utf-8')).hexdigest()
        return self.directory / f"{digest}{self.ENTRY_SUFFIX}"
    
    def _read_entry(self, path: Path) -> tuple[str, bytes]:
        """
        Split a stored entry into its key and value.
        
        The first line holds the JSON encoded key, the rest is the value.
        """
        data = path.read_bytes()
        header, separator, value = data.partition(b'\n')
        if not separator:
            raise ValueError(f"Corrupt cache entry: {path.name}")
        return json.loads(header), value
