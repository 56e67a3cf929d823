import os
from typing import Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings

# Larger pages are rejected by some homeservers
MAX_PAGE_SIZE = 950
CHANNEL_NAME_TOKEN = "$channelname$"


class MatrixConfig(BaseModel):
    homeserver: str
    user: str
    password: str = ""
    access_token: Optional[str] = None  # Reuse an existing session instead of logging in
    device_id: Optional[str] = None


class WatcherConfig(BaseModel):
    enabled: bool = False
    timeout: float = Field(60.0, gt=0)  # Seconds a live message waits for edits/deletes


class ElasticsearchConfig(BaseModel):
    enabled: bool = False
    hosts: list[str] = ["http://localhost:9200"]
    api_key: Optional[str] = None
    index_pattern: str = f"matrix_{CHANNEL_NAME_TOKEN}"


class JsonlConfig(BaseModel):
    enabled: bool = True
    file: str = "export.jsonl"  # May contain $channelname$ for one file per chat
    eol: str = "\n"


class DatabaseConfig(BaseModel):
    """Database configuration supporting both PostgreSQL and SQLite."""

    enabled: bool = False
    type: str = "sqlite"  # Either 'postgresql' or 'sqlite'
    database: str = "matrix_export.db"  # Database name for PostgreSQL or file path for SQLite
    host: str = ""  # Only used for PostgreSQL
    port: int = 5432  # Only used for PostgreSQL
    user: str = ""  # Only used for PostgreSQL
    password: str = ""  # Only used for PostgreSQL
    channel_pattern: str = CHANNEL_NAME_TOKEN

    @property
    def url(self) -> str:
        """Get the database connection URL."""
        if self.type == "sqlite":
            return f"sqlite:///{self.database}"
        elif self.type == "postgresql":
            return f"postgresql://{self.user}:{self.password}@{self.host}:{self.port}/{self.database}"
        else:
            raise ValueError(f"Unsupported database type: {self.type}")


class InfluxDBConfig(BaseModel):
    enabled: bool = False
    url: str = "http://localhost:8086"
    token: str = ""
    org: str = ""
    bucket: str = ""
    measurement: str = "chat_messages"


class LogConfig(BaseModel):
    file_path: str = "logs/matrix_export.log"
    max_size_mb: int = 10
    backup_count: int = 5
    level: str = "INFO"


class Settings(BaseSettings):
    matrix: MatrixConfig
    chats: list[str] = []
    page_size: int = Field(900, ge=1, le=MAX_PAGE_SIZE)
    attachment_stub: bool = False
    watcher: WatcherConfig = WatcherConfig()
    elasticsearch: ElasticsearchConfig = ElasticsearchConfig()
    jsonl: JsonlConfig = JsonlConfig()
    database: DatabaseConfig = DatabaseConfig()
    influxdb: InfluxDBConfig = InfluxDBConfig()
    logging: LogConfig = LogConfig()

    class Config:
        env_nested_delimiter = "__"
        env_file = ".env"

    def __init__(self, **kwargs):
        # Parse the chat selectors from environment
        if "chats" not in kwargs and "EXPORT_CHATS" in os.environ:
            chats = os.environ["EXPORT_CHATS"].strip()
            kwargs["chats"] = [c.strip() for c in chats.split(",") if c.strip()]

        # Create configs from environment
        if "matrix" not in kwargs:
            kwargs["matrix"] = MatrixConfig(
                homeserver=os.environ.get("MATRIX_HOMESERVER", ""),
                user=os.environ.get("MATRIX_USER", ""),
                password=os.environ.get("MATRIX_PASSWORD", ""),
                access_token=os.environ.get("MATRIX_ACCESS_TOKEN") or None,
                device_id=os.environ.get("MATRIX_DEVICE_ID") or None,
            )

        if "database" not in kwargs and "DATABASE_TYPE" in os.environ:
            enabled = os.environ.get("DATABASE_ENABLED", "true").lower() == "true"
            db_type = os.environ["DATABASE_TYPE"]
            if db_type == "postgresql":
                kwargs["database"] = DatabaseConfig(
                    enabled=enabled,
                    type="postgresql",
                    host=os.environ.get("POSTGRES_HOST", "localhost"),
                    port=int(os.environ.get("POSTGRES_PORT", "5432")),
                    database=os.environ.get("POSTGRES_DB", ""),
                    user=os.environ.get("POSTGRES_USER", ""),
                    password=os.environ.get("POSTGRES_PASSWORD", ""),
                )
            elif db_type == "sqlite":
                kwargs["database"] = DatabaseConfig(
                    enabled=enabled,
                    type="sqlite",
                    database=os.environ.get("SQLITE_DB", "matrix_export.db"),
                )
            else:
                raise ValueError(f"Unsupported database type: {db_type}")

        super().__init__(**kwargs)
