from .config import (
    CouchbaseSettings,
    get_settings,
    get_cluster,
    check_connection,
    close_cluster,
)
from .keyspace import (
    Keyspace,
    get_keyspace,
)
from .base_model import CouchbaseRepository
