"""
Base service class for the match tracker.

Provides access to the record repository and the retry policy for
transient store failures shared by all services.
"""

import asyncio
import logging
from typing import Callable, Any, Awaitable

from tracker.config import Config
from tracker.utils.exceptions import TransientStoreError

logger = logging.getLogger(__name__)

class BaseService:
    """Base class for all services with repository access and retry logic."""
    
    def __init__(self, database):
        """
        Initialize base service with the record repository.
        
        Args:
            database: Database instance the service reads and writes through
        """
        self.db = database
    
    async def execute_with_retry(
        self,
        func: Callable[[], Awaitable[Any]],
        max_retries: int = None
    ) -> Any:
        """
        Execute a function, retrying only transient store errors.
        
        Conflict, validation and authorization errors are deterministic and
        propagate on the first attempt.
        """
        max_retries = max_retries or Config.STORE_MAX_RETRIES
        for attempt in range(max_retries):
            try:
                return await func()
            except TransientStoreError as e:
                if attempt == max_retries - 1:
                    raise
                logger.warning(f"Retry attempt {attempt + 1} for {getattr(func, '__name__', func)}: {e}")
                await asyncio.sleep(Config.STORE_RETRY_BASE_DELAY * (2 ** attempt))  # Exponential backoff
