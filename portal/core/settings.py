from __future__ import annotations

from pydantic_settings import BaseSettings
from typing import List, Optional

class Settings(BaseSettings):
    env: str = "dev"
    database_url: str

    supabase_url: str
    supabase_anon_key: str
    supabase_service_role_key: str
    supabase_jwt_secret: str
    supabase_jwt_audience: str = "authenticated"

    supabase_posts_bucket: str = "posts"
    supabase_news_bucket: str = "news"
    supabase_profile_bucket: str = "profile"

    jwt_secret: str
    jwt_issuer: str = "portal"
    verification_token_hours: int = 24

    # Unset means every admin route answers 500 until configured.
    admin_secret: Optional[str] = None

    frontend_url: str = "http://localhost:3000"

    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 465
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_use_ssl: bool = True
    mail_from_name: str = "Portal PM"

    cors_origins: str = "http://localhost:3000"
    log_level: str = "INFO"

    rate_limit_enabled: bool = True
    auth_rate_limit: str = "20/minute"

    @property
    def cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    class Config:
        env_file = ".env"
        case_sensitive = False

settings = Settings()
