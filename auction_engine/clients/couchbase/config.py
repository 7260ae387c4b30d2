import asyncio
import os
from datetime import timedelta
from typing import Optional

from acouchbase.cluster import Cluster as AsyncCluster
from couchbase.auth import PasswordAuthenticator
from couchbase.options import ClusterOptions

VALID_PROTOCOLS = ('couchbase', 'couchbases')


class CouchbaseSettings:
    """Connection settings read from COUCHBASE_* environment variables."""

    def __init__(self):
        self.username = os.environ.get('COUCHBASE_USERNAME', '')
        self.password = os.environ.get('COUCHBASE_PASSWORD', '')
        self.bucket_name = os.environ.get('COUCHBASE_BUCKET', '')
        self.host = os.environ.get('COUCHBASE_HOST', '')
        self.protocol = os.environ.get('COUCHBASE_PROTOCOL', 'couchbase')

    def validate(self) -> None:
        errors = []
        if not self.username:
            errors.append("COUCHBASE_USERNAME is missing or empty")
        if not self.password:
            errors.append("COUCHBASE_PASSWORD is missing or empty")
        if not self.host:
            errors.append("COUCHBASE_HOST is missing or empty")
        if not self.bucket_name:
            errors.append("COUCHBASE_BUCKET is missing or empty")
        if self.protocol not in VALID_PROTOCOLS:
            errors.append(
                f"COUCHBASE_PROTOCOL '{self.protocol}' is invalid. Must be one of {VALID_PROTOCOLS}"
            )
        if errors:
            raise ValueError("Invalid Couchbase Configuration:\n" + "\n".join(errors))

    @property
    def url(self) -> str:
        return f"{self.protocol}://{self.host}"


# Module-level cluster cache
_cluster: Optional[AsyncCluster] = None
_settings: Optional[CouchbaseSettings] = None


def get_settings() -> CouchbaseSettings:
    global _settings
    if _settings is None:
        settings = CouchbaseSettings()
        settings.validate()
        _settings = settings
    return _settings


async def get_cluster(max_retries: int = 10, initial_delay: float = 1.0, max_delay: float = 30.0):
    """
    Returns a cached Couchbase cluster connection.
    Creates a new connection if one doesn't exist.
    Implements retry with exponential backoff for startup race conditions.
    """
    global _cluster
    if _cluster is None:
        settings = get_settings()
        auth = PasswordAuthenticator(settings.username, settings.password)
        delay = initial_delay
        cluster = None

        for attempt in range(1, max_retries + 1):
            try:
                cluster = await AsyncCluster.connect(settings.url, ClusterOptions(auth))
                break
            except Exception:
                if attempt == max_retries:
                    raise
                await asyncio.sleep(delay)
                delay = min(delay * 2, max_delay)

        await cluster.wait_until_ready(timedelta(seconds=50))
        _cluster = cluster
    return _cluster


async def check_connection():
    """
    Explicitly checks the connection to the Couchbase cluster.
    Useful for startup checks.
    """
    cluster = await get_cluster()
    await cluster.ping()


async def close_cluster():
    global _cluster
    if _cluster is not None:
        await _cluster.close()
        _cluster = None
