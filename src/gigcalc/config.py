from pydantic_settings import BaseSettings


class Config(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str
    database_timeout_ms: int = 5000  # Applied to every MongoDB operation and to server selection
    host: str = "127.0.0.1"
    port: int = 8000
    debug: bool = False
    session_secret_key: str  # Signs the short-lived OAuth state cookie
    cors_origins: list[str] = []
    frontend_url: str  # URL of the frontend application, e.g. https://gigcalc.app
    public_url: str  # Public URL of this backend, used to build the OAuth redirect URI

    # Identity provider (Google OAuth 2.0 / OpenID Connect)
    identity_provider: str = "google"
    google_client_id: str
    google_client_secret: str = ""
    identity_timeout_seconds: float = 10.0

    # Session lifecycle
    session_cookie_name: str = "gigcalc_session"
    session_cookie_secure: bool = True
    session_ttl_seconds: int = 24 * 60 * 60
    session_remember_ttl_seconds: int = 30 * 24 * 60 * 60  # "Remember me" sign-ins
    # Renew when less than this fraction of the TTL remains. 1.0 renews on every request, 0 never renews.
    session_renew_fraction: float = 0.5
    session_sweep_interval_seconds: int = 60 * 60  # 0 disables the background sweeper

    # Minimum score for each letter grade, checked from highest to lowest; anything below is "F"
    grade_thresholds: dict[str, int] = {"A": 90, "B": 80, "C": 70, "D": 60}

    model_config = {
        "env_file": [".env"],
        "env_prefix": "GIGCALC_",
        "extra": "ignore",
    }
