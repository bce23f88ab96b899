from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite:///./quotes.db"
    COMPANY_NAME: str = "Insulation Installers Ltd"

    # Pricing defaults for new quotes
    GST_RATE: float = 0.15
    DEFAULT_WASTE_PERCENT: float = 10.0
    DEFAULT_LABOUR_RATE_PER_SQM: float = 3.00
    LABOUR_COST_PER_SQM: float = 1.50
    QUOTE_VALID_DAYS: int = 30

    # Attempts at allocating a version number before giving up on a busy lineage
    VERSION_CREATE_MAX_RETRIES: int = 3

    # Auth: tokens are issued elsewhere, we only read the actor from them
    JWT_SECRET: str = ""  # REQUIRED in production, auth fails loudly without it
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_EXPIRE_MINUTES: int = 15

    class Config:
        env_file = ".env"


settings = Settings()
