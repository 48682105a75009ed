from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict


class SQLConfig(BaseModel):
    driver: str
    username: str | None = None
    password: str | None = None
    host: str | None = None
    port: int | None = None
    database: str
    additional_config: dict[str, str] | None = {}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ALLOWED_ORIGINS: str = "http://localhost"

    ENVIRONMENT: str = "development"
    LOG_LEVEL: str | None = None

    # Only meant for local development, override in every deployed environment
    ACCESS_TOKEN_SECRET: str = "datatables-development-secret-change-me-please"

    # Database config
    PG_DB_HOST: str = "localhost"
    PG_DB_NAME: str = "datatables"
    PG_DB_PASSWORD: str = ""
    PG_DB_USER: str = "postgres"
    PG_DB_PORT: int = 5432

    AUTO_CREATE_METADATA: bool = False

    # Query engine
    QUERY_DEFAULT_LIMIT: int = 50
    QUERY_MAX_LIMIT: int = 1000
    GROUP_OPTIONS_MAX: int = 50
    COMPUTED_FIELDS_BATCHED: bool = False

    @property
    def PG_DB_CONFIG(self) -> SQLConfig:
        sql_driver: str = "postgresql+asyncpg"
        additional_config: dict = {}

        return SQLConfig(
            driver=sql_driver,
            host=self.PG_DB_HOST,
            port=self.PG_DB_PORT,
            database=self.PG_DB_NAME,
            username=self.PG_DB_USER,
            password=self.PG_DB_PASSWORD,
            additional_config=additional_config,
        )

    @property
    def PARSED_ALLOWED_ORIGINS(self):
        return [x.strip() for x in self.ALLOWED_ORIGINS.split(",")]


settings = Settings()

__all__ = ["settings"]
