"""Redis-backed organization configuration store."""

import logging
from datetime import datetime, timezone
from typing import Optional

from mutate.core.models import Configuration
from mutate.core.redis_client import get_redis_client

logger = logging.getLogger(__name__)


def _config_key(configuration_id: str) -> str:
    return f"mutate:config:{configuration_id}"


def _org_index_key(organization_id: str) -> str:
    return f"mutate:org:{organization_id}:configs"


def _load(configuration_id: str) -> Optional[Configuration]:
    raw = get_redis_client().get(_config_key(configuration_id))
    if raw is None:
        return None
    return Configuration.model_validate_json(raw)


def save_configuration(configuration: Configuration) -> Configuration:
    """Insert or replace a configuration.

    Replacing an existing configuration bumps its version.
    """
    client = get_redis_client()
    now = datetime.now(timezone.utc)
    existing = _load(configuration.id)
    update = {"updated_at": now}
    if existing is None:
        update["created_at"] = configuration.created_at or now
    else:
        if existing.organization_id != configuration.organization_id:
            raise PermissionError(f"Configuration '{configuration.id}' belongs to another organization")
        update["created_at"] = existing.created_at
        update["version"] = existing.version + 1
    stored = configuration.model_copy(update=update)

    client.set(_config_key(stored.id), stored.model_dump_json(by_alias=True))
    client.sadd(_org_index_key(stored.organization_id), stored.id)
    logger.info(f"Saved configuration {stored.id} v{stored.version} for {stored.organization_id}")
    return stored


def get_configuration(
    organization_id: str, configuration_id: str, include_inactive: bool = False
) -> Optional[Configuration]:
    """Look up a configuration visible to the organization; inactive ones are hidden by default."""
    configuration = _load(configuration_id)
    if configuration is None or configuration.organization_id != organization_id:
        return None
    if not configuration.is_active and not include_inactive:
        return None
    return configuration


def list_configurations(organization_id: str, include_inactive: bool = False) -> list[Configuration]:
    client = get_redis_client()
    ids = sorted(client.smembers(_org_index_key(organization_id)))
    if not ids:
        return []
    configurations = []
    for raw in client.mget([_config_key(i) for i in ids]):
        if raw is None:
            continue
        configuration = Configuration.model_validate_json(raw)
        if configuration.is_active or include_inactive:
            configurations.append(configuration)
    return configurations


def deactivate_configuration(organization_id: str, configuration_id: str) -> bool:
    """Soft-delete: the configuration stays stored but is no longer runnable."""
    configuration = get_configuration(organization_id, configuration_id)
    if configuration is None:
        return False
    stored = configuration.model_copy(
        update={"is_active": False, "updated_at": datetime.now(timezone.utc)}
    )
    get_redis_client().set(_config_key(configuration_id), stored.model_dump_json(by_alias=True))
    logger.info(f"Deactivated configuration {configuration_id}")
    return True
