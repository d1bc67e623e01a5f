from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):

    DATABASE_URL : str
    ENV : str='dev'
    DEBUG : bool=False
    LOG_JSON : bool=True

    APP_URL : str='http://localhost:3000'

    SECRET_KEY : str
    ALGORITHM : str='HS256'

    EMAIL_HOST: Optional[str]=None
    EMAIL_PORT: int=587
    EMAIL_SECURE: bool=False
    EMAIL_USER: Optional[str]=None
    EMAIL_PASSWORD: Optional[str]=None
    EMAIL_FROM: str='Registrations <noreply@example.com>'

    STRIPE_SECRET_KEY: str=''
    STRIPE_WEBHOOK_SECRET: Optional[str]=None
    # only honoured outside production
    ALLOW_INSECURE_WEBHOOKS: bool=False
    CURRENCY: str='usd'
    CHECKOUT_SESSION_TTL_MINUTES: int=60
    STRICT_PRICE_MATCH: bool=False

    RATE_LIMIT_ENABLED: bool=True
    RATE_LIMIT_REQUESTS: int=30
    RATE_LIMIT_WINDOW_SECONDS: int=60

    model_config = SettingsConfigDict(env_file='.env', extra='ignore')

    @property
    def is_production(self) -> bool:
        return self.ENV.lower() in ('prod', 'production')

    @property
    def insecure_webhooks_allowed(self) -> bool:
        return self.ALLOW_INSECURE_WEBHOOKS and not self.is_production


settings = Settings()
