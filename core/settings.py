from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Metadata + entity tables live in the same database so schema changes
    # can share one transaction with the metadata write
    DATABASE_URL: str = "sqlite:///./entity_engine.db"
    SQL_ECHO: bool = False

    # Physical table naming: {prefix}_{scope hash}_{template name}
    ENTITY_TABLE_PREFIX: str = "baas"
    TABLE_NAME_MAX_LENGTH: int = 63

    # Record listing
    DEFAULT_PAGE_SIZE: int = 50
    MAX_PAGE_SIZE: int = 1000

    # Reference search / autocomplete
    REFERENCE_SEARCH_LIMIT: int = 10

    # Password field hashing (passlib CryptContext schemes)
    PASSWORD_HASH_SCHEMES: list[str] = ["pbkdf2_sha256"]

    # Logging
    LOG_LEVEL: str = "INFO"
    JSON_LOGS: bool = False

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


settings = Settings()
