"""
Application configuration management using Pydantic Settings
Handles environment variables, chain settings and reward policy constants
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Dict, List, Optional
from functools import lru_cache


class Settings(BaseSettings):
    """Main application settings"""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    # Application Settings
    APP_NAME: str = "CAMLY Rewards API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"

    # Server Settings
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    WORKERS: int = 4

    # Database Configuration
    DATABASE_URL: str = "sqlite:///./camly.db"
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 40
    DATABASE_POOL_TIMEOUT: int = 30
    DATABASE_ECHO: bool = False

    # Security Settings (tokens are issued by the identity system)
    SECRET_KEY: str = "change-me"
    ALGORITHM: str = "HS256"

    # CORS Configuration
    CORS_ORIGINS: List[str] = ["http://localhost:5173"]

    # Celery Configuration
    CELERY_BROKER_URL: str = "redis://localhost:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/0"
    RECONCILE_INTERVAL_SECONDS: int = 300
    RECONCILE_MIN_AGE_SECONDS: int = 120
    CLAIM_SUBMISSION_STALE_SECONDS: int = 900

    # Rate Limiting
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_STORAGE_URI: str = "memory://"
    RATE_LIMIT_CLAIM: str = "10/minute"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = None

    # Chain (BSC) Configuration
    CHAIN_RPC_URLS: List[str] = [
        "https://bsc-dataseed1.binance.org/",
        "https://bsc-dataseed2.binance.org/",
        "https://bsc.publicnode.com",
    ]
    CAMLY_CONTRACT_ADDRESS: str = "0x0910320181889fefde0bb1ca63962b0a8882e413"
    CAMLY_TOKEN_DECIMALS: int = 3
    REWARD_WALLET_PRIVATE_KEY: Optional[str] = None
    DONATION_WALLET_ADDRESS: str = "0x0000000000000000000000000000000000000000"
    BLOCK_EXPLORER_URL: str = "https://bscscan.com"
    CHAIN_CONFIRMATION_TIMEOUT: int = 60
    CHAIN_RPC_TIMEOUT: int = 5

    # Reward policy: claims and donations
    DAILY_CLAIM_LIMIT: int = 200_000
    MIN_CLAIM_AMOUNT: int = 1
    MIN_DONATION_AMOUNT: int = 1_000

    # Reward policy: accrual
    DAILY_CHECKIN_REWARD: int = 5_000
    NEW_GAME_BONUS: int = 5_000
    PLAY_REWARD_PER_MINUTE: int = 100
    MIN_SESSION_SECONDS: int = 60
    CATEGORY_MULTIPLIERS: Dict[str, float] = {
        "educational": 2.0,
        "brain": 1.5,
        "puzzle": 1.2,
        "kindness": 1.5,
        "creativity": 1.5,
        "creative": 1.5,
        "adventure": 1.0,
        "casual": 1.0,
        "music": 1.0,
        "default": 1.0,
    }
    AGE_DAILY_CAPS: Dict[str, int] = {
        "3-6": 3_000,
        "7-12": 6_000,
        "13-17": 9_000,
        "18+": 15_000,
    }

    # Reward policy: referrals
    REFERRAL_REWARD: int = 25_000
    REFERRAL_TIERS: Dict[str, List[int]] = {
        # tier id: [required completed referrals, reward]
        "bronze": [5, 50_000],
        "silver": [10, 100_000],
        "gold": [25, 300_000],
        "platinum": [50, 750_000],
        "diamond": [100, 2_000_000],
    }

    # Reward policy: creators
    UPLOAD_REWARD: int = 500_000
    MAX_DAILY_UPLOAD_REWARDS: int = 4
    CREATOR_FIRST_PLAY_BONUS: int = 100
    CREATOR_DAILY_CAP: int = 200_000
    CREATOR_MILESTONES: Dict[int, int] = {
        100: 50_000,
        500: 150_000,
        1000: 300_000,
    }

    # Eligibility
    MAX_ACCOUNTS_PER_IP: int = 3
    MAX_ACCOUNTS_PER_WALLET: int = 1

    @property
    def database_url_async(self) -> str:
        """Convert sync database URL to async"""
        if self.DATABASE_URL.startswith("postgresql://"):
            return self.DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://")
        elif self.DATABASE_URL.startswith("sqlite://"):
            return self.DATABASE_URL.replace("sqlite://", "sqlite+aiosqlite://")
        return self.DATABASE_URL

    def category_multiplier(self, category: Optional[str]) -> float:
        return self.CATEGORY_MULTIPLIERS.get((category or "default").lower(), self.CATEGORY_MULTIPLIERS["default"])

    def daily_play_cap(self, age: Optional[int]) -> int:
        """Daily play-reward cap for the age group the user falls in"""
        if not age or age >= 18:
            group = "18+"
        elif age >= 13:
            group = "13-17"
        elif age >= 7:
            group = "7-12"
        else:
            group = "3-6"
        return self.AGE_DAILY_CAPS[group]


@lru_cache()
def get_settings() -> Settings:
    """
    Create cached settings instance
    This ensures settings are loaded only once
    """
    return Settings()


# Global settings instance
settings = get_settings()
