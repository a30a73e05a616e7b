from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_prefix="AUDIT_", extra="ignore")

    port: int = 8001

    user_agent: str = Field(default="SiteAudit-SEO-Bot/1.0")
    page_timeout_s: float = Field(default=10.0)
    image_timeout_s: float = Field(default=15.0)

    max_pages: int = Field(default=5)
    max_images_per_page: int = Field(default=10)
    body_text_limit: int = Field(default=5000)
    analyze_images: bool = Field(default=True)


settings = Settings()
