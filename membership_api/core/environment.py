"""
Environment resolution for the dual Stripe setup.

Each request is served either by the sandbox or the production Stripe account.
The choice is made once, from the request origin, and every downstream
component receives the resulting ``StripeEnvironmentConfig`` instead of
branching on hostnames itself.
"""
import enum
import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

from fastapi import Request

from membership_api.core import config
from membership_api.core.errors import ConfigError

logger = logging.getLogger(__name__)


class Environment(str, enum.Enum):
    SANDBOX = "sandbox"
    PRODUCTION = "production"

    @property
    def other(self) -> "Environment":
        return Environment.SANDBOX if self is Environment.PRODUCTION else Environment.PRODUCTION


@dataclass(frozen=True)
class StripeEnvironmentConfig:
    environment: Environment
    secret_key: str
    webhook_secret: Optional[str]
    app_base_url: str


def resolve_environment(origin: Optional[str]) -> Environment:
    """
    Map an Origin header to an environment.

    Only an exact hostname match against PRODUCTION_HOSTS selects production.
    Missing, malformed, localhost and unknown origins all resolve to sandbox.
    """
    if not origin:
        return Environment.SANDBOX

    try:
        hostname = urlparse(origin.strip()).hostname
    except ValueError:
        hostname = None

    if hostname and hostname.lower() in {h.lower() for h in config.PRODUCTION_HOSTS}:
        return Environment.PRODUCTION
    return Environment.SANDBOX


def resolve_webhook_environment(origin: Optional[str], environment_param: Optional[str]) -> Environment:
    """
    Stripe posts webhooks without an Origin, so each Stripe endpoint is
    registered with an explicit ``?environment=`` query parameter. An
    unrecognised value falls back to origin resolution.
    """
    if environment_param:
        try:
            return Environment(environment_param.strip().lower())
        except ValueError:
            logger.warning(f"Unknown webhook environment parameter {environment_param!r}, resolving from origin")
    return resolve_environment(origin)


def get_environment_config(environment: Environment) -> StripeEnvironmentConfig:
    """
    Build the Stripe configuration for an environment.

    Raises:
        ConfigError: if the secret key for the environment is not configured.
    """
    if environment is Environment.PRODUCTION:
        secret_key = config.STRIPE_SECRET_KEY_PRODUCTION
        webhook_secret = config.STRIPE_WEBHOOK_SECRET_PRODUCTION
        base_url = config.PRODUCTION_APP_URL
    else:
        secret_key = config.STRIPE_SECRET_KEY_SANDBOX
        webhook_secret = config.STRIPE_WEBHOOK_SECRET_SANDBOX
        base_url = config.FRONTEND_URL

    if not secret_key:
        # The credential name stays in the log, never in the response.
        logger.error(f"Stripe secret key missing for environment={environment.value}")
        raise ConfigError(f"Stripe secret key not configured for {environment.value}")

    return StripeEnvironmentConfig(
        environment=environment,
        secret_key=secret_key,
        webhook_secret=webhook_secret,
        app_base_url=base_url,
    )


def get_request_environment(request: Request) -> Environment:
    """FastAPI dependency: resolve the environment once at request entry."""
    environment = resolve_environment(request.headers.get("origin"))
    logger.debug(f"Resolved environment={environment.value} origin={request.headers.get('origin')!r}")
    return environment
