from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = Field(..., alias="DATABASE_URL")
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    currency: str = Field("CAD", alias="CURRENCY")

    # Provincial sales tax handling (BC: memberships and under-15 store purchases are exempt)
    pst_tax_name: str = Field("PST_BC", alias="PST_TAX_NAME")
    pst_exempt_age: int = Field(15, alias="PST_EXEMPT_AGE")

    auto_code_prefix: str = Field("AUTO", alias="AUTO_CODE_PREFIX")
    auto_code_length: int = Field(8, alias="AUTO_CODE_LENGTH")
    template_code_prefix: str = Field("TMPL", alias="TEMPLATE_CODE_PREFIX")
    code_generation_max_attempts: int = Field(10, alias="CODE_GENERATION_MAX_ATTEMPTS")

    attendance_milestone_interval: int = Field(5, alias="ATTENDANCE_MILESTONE_INTERVAL")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
