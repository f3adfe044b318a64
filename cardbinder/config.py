from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(env_file=".env", env_prefix="CARDBINDER_")

    app_name: str = "CardBinder"
    debug: bool = False

    database_url: str = "postgresql+asyncpg://localhost:5432/cardbinder"

    # Owned counts are fetched in pages of this size until a short page
    owned_count_page_size: int = 1000

    # Bursts of remote binder writes collapse into one refetch
    binder_refresh_debounce_seconds: float = 0.3

    default_binder_size: int = 3

    default_playset_threshold: int = 4
    default_collected_threshold: int = 1


settings = Settings()


# =============================================================================
# BINDER LAYOUT
# =============================================================================

# Grid side length; a page holds size * size cards
ALLOWED_BINDER_SIZES = frozenset({2, 3, 4})

# Used when a binder is created or renamed with a blank name
UNTITLED_BINDER_NAME = "Untitled"


# =============================================================================
# SYSTEM (VIRTUAL) BINDERS
# =============================================================================

MISSING_ALTS_ID = "system_missing_alts"
MISSING_PLAYSETS_ID = "system_missing_playsets"

SYSTEM_BINDER_NAMES: dict[str, str] = {
    MISSING_ALTS_ID: "Missing Alts",
    MISSING_PLAYSETS_ID: "Missing Playsets",
}
