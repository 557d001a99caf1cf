from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    ALLOWED_ORIGINS: str = "*"

    # Узел Ethereum
    ETHEREUM_RPC_URL: str = "http://ethereum-node:8545"
    CONTRACT_ADDRESS: str | None = None
    PRIVATE_KEY: str | None = None
    ETH_CONNECTION_RETRIES: int = 3
    ETH_CONNECTION_RETRY_DELAY: float = 2.0  # seconds
    ETH_CONNECTION_TIMEOUT: float = 10.0
    HEALTH_CHECK_INTERVAL: float = 30.0
    CONTRACT_POLL_INTERVAL: float = 5.0
    LOCAL_NODE_MARKERS: list[str] = ["localhost", "127.0.0.1", "ethereum-node"]

    # Mock ledger вместо контракта
    ALLOW_MOCK_FALLBACK: bool = False
    LEDGER_BACKEND: str = "memory"  # memory | sql
    DATABASE_URL: str = "sqlite:///./ledger.db"
    SEED_MOCK_DATA: bool = True

    # Клиентский кэш разрешений
    # redis://..., memory:// или путь к JSON-файлу
    SESSION_STORAGE_URL: str = "redis://localhost:6379/3"
    SESSION_TTL_HOURS: int = 24
    SESSION_KEY_PREFIX: str = "permissions_"

    # Роли
    EMERGENCY_ADMIN_KEY: str = "admin"
    EMERGENCY_SYSTEM_KEY: str = "xjtuse"
    EMERGENCY_RATE_LIMIT: str = "10/minute"
    DEV_WALLET_ADDRESS: str = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"

    @property
    def allowed_origins(self) -> list[str]:
        if self.ALLOWED_ORIGINS.strip() == "*":
            return ["*"]
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]


settings = Settings()
