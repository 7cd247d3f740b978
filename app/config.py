from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite+aiosqlite:///./data/db.sqlite3"
    api_key: str = ""  # empty = no auth check (local dev)
    openai_api_key: str = ""
    openai_base_url: str = ""
    openai_model: str = "gpt-4o-mini"
    max_output_tokens: int = 1500
    request_timeout_seconds: float = 60.0
    data_dir: str = "./data"
    max_images: int = 5
    history_capacity: int = 20
    max_image_size_bytes: int = 10 * 1024 * 1024  # 10MB
    compress_uploads: bool = True
    image_max_dimension: int = 1024
    jpeg_quality: int = 80
    cors_origins: list[str] = ["http://localhost:3000", "http://localhost:8000"]

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
