from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
	model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

	APP_NAME: str = Field(default="Membership Billing API")
	DEBUG: bool = Field(default=False)
	API_PREFIX: str = Field(default="")

	# Database
	DATABASE_URL: str = Field(default="")

	# Auth / JWT (access and refresh tokens are signed with independent secrets)
	JWT_SECRET: str = Field(default="dev-change-me")
	JWT_REFRESH_SECRET: str = Field(default="dev-refresh-change-me")
	JWT_ALGORITHM: str = Field(default="HS256")
	ACCESS_TOKEN_EXPIRES_MINUTES: int = Field(default=15)
	REFRESH_TOKEN_EXPIRES_DAYS: int = Field(default=7)
	REVOCATION_HIGH_WATER_MARK: int = Field(default=1000)

	# Payment gateway ("simulated" or "http")
	PAYMENT_GATEWAY_MODE: str = Field(default="simulated")
	PAYMENT_GATEWAY_URL: str = Field(default="https://api.paymentgateway.com")
	PAYMENT_GATEWAY_API_KEY: str = Field(default="")
	PAYMENT_GATEWAY_SECRET: str = Field(default="")
	GATEWAY_TIMEOUT_SECONDS: float = Field(default=10.0)

	# Webhooks older (or newer) than this are treated as replays
	WEBHOOK_TOLERANCE_SECONDS: int = Field(default=300)

	# Pending payments older than this are reported for reconciliation
	STALE_PENDING_MINUTES: int = Field(default=30)

	# Azure Monitor / Application Insights
	AZURE_MONITOR_CONN_STR: str = Field(default="")
	ENABLE_APP_INSIGHTS: bool = Field(default=True)
	SAMPLING_RATIO: float = Field(default=1.0)


settings = Settings()
