"""Engine construction for the corporate registry store."""

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from contractes.config import REGISTRY_AUTH_TOKEN, REGISTRY_DATABASE_URL
from contractes.services.errors import ConfigurationMissing


def create_registry_engine(
    database_url: str = REGISTRY_DATABASE_URL,
    auth_token: str = REGISTRY_AUTH_TOKEN,
) -> Engine:
    """Create the registry engine.

    Hosted libSQL databases take their token as the ``auth_token``
    connect argument of the ``sqlite+libsql`` dialect.

    Raises:
        ConfigurationMissing: If no database URL is configured.
    """
    if not database_url:
        raise ConfigurationMissing(
            "Registry store config missing: set REGISTRY_DATABASE_URL (and REGISTRY_AUTH_TOKEN for hosted stores)"
        )

    connect_args = {"auth_token": auth_token} if auth_token else {}
    return create_engine(
        database_url,
        connect_args=connect_args,
        pool_pre_ping=True,
    )
