import os
from dotenv import load_dotenv

load_dotenv()

class Config:
    """Tracker configuration settings"""
    
    # Database settings
    DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///tracker.db')
    
    # Logging settings
    DEBUG = os.getenv('DEBUG', 'False').lower() == 'true'
    LOG_DIR = os.getenv('LOG_DIR', 'logs')
    LOG_TO_FILE = os.getenv('LOG_TO_FILE', 'True').lower() == 'true'
    
    # Match lifecycle settings
    # Legacy data may jump straight from scheduled to completed
    ALLOW_DIRECT_COMPLETION = os.getenv('ALLOW_DIRECT_COMPLETION', 'False').lower() == 'true'
    
    # Store retry policy (transient I/O failures only)
    STORE_MAX_RETRIES = int(os.getenv('STORE_MAX_RETRIES', 3))
    STORE_RETRY_BASE_DELAY = float(os.getenv('STORE_RETRY_BASE_DELAY', 0.1))
    
    # Bulk resync progress logging
    RESYNC_PROGRESS_INTERVAL = int(os.getenv('RESYNC_PROGRESS_INTERVAL', 50))
    
    @classmethod
    def get_async_database_url(cls, database_url: str = None) -> str:
        """Get the database URL with an async driver"""
        url = database_url or cls.DATABASE_URL
        if url.startswith('sqlite:///'):
            url = url.replace('sqlite:///', 'sqlite+aiosqlite:///')
        elif url == 'sqlite://':
            url = 'sqlite+aiosqlite://'
        return url
    
    @classmethod
    def validate(cls):
        """Validate that required configuration is present"""
        if not cls.DATABASE_URL:
            raise ValueError("DATABASE_URL is required")
        if cls.STORE_MAX_RETRIES < 1:
            raise ValueError("STORE_MAX_RETRIES must be at least 1")
        if cls.STORE_RETRY_BASE_DELAY < 0:
            raise ValueError("STORE_RETRY_BASE_DELAY cannot be negative")
