from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional
import os


class Settings(BaseSettings):
    gemini_api_key: str = ""
    gemini_model: str = "gemini-2.5-flash"

    # Scraper timeouts (milliseconds)
    navigation_timeout: int = 30000
    scrape_total_timeout: int = 60000
    screenshot_timeout: int = 10000
    screenshot_quality: int = 80
    screenshot_max_width: int = 1280
    network_idle_timeout: int = 10000
    settle_delay_idle: int = 500
    settle_delay_busy: int = 1500

    # Modal reveal (milliseconds)
    modal_budget: int = 5000
    modal_click_timeout: int = 1000
    modal_settle_delay: int = 300

    # Detector timeouts (milliseconds)
    ai_timeout: int = 60000
    extraction_timeout: int = 20000
    selector_timeout: int = 5000
    fallback_overall_timeout: int = 8000
    fallback_strategy_timeout: int = 1500

    # HTML limits (characters)
    relevant_html_max_size: int = 15000
    relevant_html_min_size: int = 20
    snippet_max_length: int = 1500

    # Browser pool
    viewport_width: int = 1920
    viewport_height: int = 1080
    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/120.0.0.0 Safari/537.36"
    )
    timezone_id: str = "UTC"
    browser_idle_timeout: int = 300  # seconds
    browser_idle_check_interval: int = 60  # seconds

    # Result cache
    cache_max_size: int = 1000
    cache_default_ttl: int = 24 * 60 * 60  # seconds
    cache_ttl_by_domain: dict[str, int] = {
        "localhost": 5 * 60,
        "127.0.0.1": 5 * 60,
    }
    cache_pattern_result_ttl: Optional[int] = None  # None = same as default
    cache_empty_results: bool = True
    cache_pattern_results: bool = True
    cache_refresh_on_read: bool = True

    # HTTP surface
    service_name: str = "auth-component-detector"
    service_version: str = "2.0.0"
    cors_allowed_origins: list[str] = [
        "https://web-scrapper-ecru.vercel.app",
        "http://localhost:3000",
    ]

    class Config:
        # Look for .env in the repo root (two levels up from backend/app/)
        # In production, env vars are injected directly; .env is optional
        _env_path = os.path.join(os.path.dirname(__file__), "..", "..", ".env")
        env_file = _env_path if os.path.exists(_env_path) else None
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache()
def get_settings():
    return Settings()
