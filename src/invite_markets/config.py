from pydantic_settings import BaseSettings

BASE_MAINNET_CHAIN_ID = 8453
BASE_SEPOLIA_CHAIN_ID = 84532


class Settings(BaseSettings):
    DATABASE_URL: str = "postgresql+asyncpg://app:devpassword@db:5432/invitemarkets"
    REDIS_URL: str = "redis://redis:6379/0"

    IS_TESTNET: bool = False
    RPC_URL: str = ""

    FACILITATOR_URL: str = "https://x402.org/facilitator"
    FACILITATOR_SECRET_KEY: str = ""

    DISCORD_WEBHOOK_MAINNET: str = ""
    DISCORD_WEBHOOK_TESTNET: str = ""

    PUBLIC_BASE_URL: str = "https://invite.markets"

    SIGNATURE_MAX_AGE_SECONDS: int = 300
    SIGNATURE_FUTURE_SKEW_SECONDS: int = 30
    HTTP_TIMEOUT_SECONDS: float = 15.0

    APP_ENV: str = "development"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def chain_id(self) -> int:
        return BASE_SEPOLIA_CHAIN_ID if self.IS_TESTNET else BASE_MAINNET_CHAIN_ID


settings = Settings()
