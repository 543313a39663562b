"""
Configuration settings for the application
"""

import os
from typing import Dict, List
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    """Application settings"""

    # Database
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./guestlist.db")
    USE_FIREBASE: bool = os.getenv("USE_FIREBASE", "false").lower() in ("1", "true", "yes")
    FIREBASE_CREDENTIALS_JSON: str | None = os.getenv("FIREBASE_CREDENTIALS_JSON")
    FIREBASE_CREDENTIALS_FILE: str | None = os.getenv("FIREBASE_CREDENTIALS_FILE")
    FIREBASE_CREDENTIALS_B64: str | None = os.getenv("FIREBASE_CREDENTIALS_B64")
    FIRESTORE_GUESTS_COLLECTION: str = "guests"
    FIRESTORE_LEDGER_COLLECTION: str = "check_in_log"

    # Security
    ADMIN_TOKEN: str = os.getenv("ADMIN_TOKEN", "admin_token_123")
    ADMIN_USERNAME: str = "admin"
    # token -> usher name, e.g. USHER_TOKENS='{"tok-a": "usher-A"}'
    USHER_TOKENS: Dict[str, str] = {}

    # CORS
    ALLOW_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
        "http://localhost:8000",
    ]

    # Roster
    TICKET_TYPES: List[str] = ["VIP", "Premium", "General"]
    DEFAULT_PAGE_SIZE: int = 50
    MAX_PAGE_SIZE: int = 100
    MAX_LEDGER_PAGE_SIZE: int = 200
    SEARCH_RESULT_LIMIT: int = 100

    # Check-in
    MAX_BULK_SIZE: int = 50
    UNDO_WINDOW_SECONDS: int = 30
    CHECKIN_MAX_ATTEMPTS: int = 5

    # Rate limiting
    RATE_LIMIT_PER_MINUTE: int = 60

    class Config:
        env_file = ".env"

settings = Settings()
