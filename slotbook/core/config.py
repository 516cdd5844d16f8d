from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    PROJECT_NAME: str = "SlotBook Reservations API"
    API_V1_STR: str = "/api/v1"
    SECRET_KEY: str = "changeme"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24 * 8
    LOG_LEVEL: str = "INFO"

    # Database
    POSTGRES_SERVER: str = "localhost"
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "12345"
    POSTGRES_DB: str = "slotbook_db"
    POSTGRES_PORT: int = 5432
    DATABASE_URL: str = ""
    CREATE_DATABASE_ON_STARTUP: bool = True

    # Booking flow: when True, PENDING bookings wait for the listing's partner
    # to approve them; otherwise the customer moves to checkout directly.
    REQUIRE_PARTNER_APPROVAL: bool = False
    DEFAULT_CURRENCY: str = "MAD"

    # Payment gateway: "stub" or "stripe"
    PAYMENT_GATEWAY: str = "stub"
    STRIPE_SECRET_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""

    # Background completion of bookings whose slot has ended (0 disables it)
    SLOT_SWEEP_INTERVAL_SECONDS: int = 60

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore"
    )

    def assemble_db_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

settings = Settings()
settings.DATABASE_URL = settings.assemble_db_url()
