from datetime import timedelta
from typing import Literal, Optional

from pydantic import BaseModel

from auction_engine.utils import env, log
from auction_engine.utils.env import EnvVarSpec

logger = log.get_logger(__name__)

#### Types ####

class HttpServerConf(BaseModel):
    host: str
    port: int
    autoreload: bool

class SchedulerConf(BaseModel):
    enabled: bool
    sweep_interval_seconds: int
    ending_soon_interval_minutes: int
    ending_soon_window_start: timedelta
    ending_soon_window_end: timedelta

class MailConf(BaseModel):
    relay_url: Optional[str] = None
    api_key: Optional[str] = None
    sender: str
    frontend_url: str

#### Env Vars ####

## Logging ##

LOG_LEVEL = EnvVarSpec(id="LOG_LEVEL", default="INFO")

ENVIRONMENT = EnvVarSpec(id="ENVIRONMENT", default="development")

## HTTP ##

HTTP_HOST = EnvVarSpec(id="HTTP_HOST", default="0.0.0.0")

HTTP_PORT = EnvVarSpec(id="HTTP_PORT", default="8000", parse=int, type=(int, ...))

HTTP_AUTORELOAD = EnvVarSpec(
    id="HTTP_AUTORELOAD",
    parse=lambda x: x.lower() == "true",
    default="false",
    type=(bool, ...),
)

HTTP_EXPOSE_ERRORS = EnvVarSpec(
    id="HTTP_EXPOSE_ERRORS",
    default="false",
    parse=lambda x: x.lower() == "true",
    type=(bool, ...),
)

INTERNAL_API_KEY = EnvVarSpec(id="INTERNAL_API_KEY", is_optional=True, is_secret=True)

## Storage ##

STORE_BACKEND = EnvVarSpec(
    id="STORE_BACKEND",
    default="memory",
    parse=lambda x: x.lower(),
    type=(Literal["memory", "couchbase"], ...),
)

CAS_MAX_RETRIES = EnvVarSpec(id="CAS_MAX_RETRIES", default="5", parse=int, type=(int, ...))

## Scheduler ##

SCHEDULER_ENABLED = EnvVarSpec(
    id="SCHEDULER_ENABLED",
    default="true",
    parse=lambda x: x.lower() == "true",
    type=(bool, ...),
)

SWEEP_INTERVAL_SECONDS = EnvVarSpec(
    id="SWEEP_INTERVAL_SECONDS", default="60", parse=int, type=(int, ...)
)

ENDING_SOON_INTERVAL_MINUTES = EnvVarSpec(
    id="ENDING_SOON_INTERVAL_MINUTES", default="30", parse=int, type=(int, ...)
)

ENDING_SOON_WINDOW_START_MINUTES = EnvVarSpec(
    id="ENDING_SOON_WINDOW_START_MINUTES", default="60", parse=int, type=(int, ...)
)

ENDING_SOON_WINDOW_END_MINUTES = EnvVarSpec(
    id="ENDING_SOON_WINDOW_END_MINUTES", default="120", parse=int, type=(int, ...)
)

## Mail ##

MAIL_RELAY_URL = EnvVarSpec(id="MAIL_RELAY_URL", is_optional=True)

MAIL_RELAY_API_KEY = EnvVarSpec(id="MAIL_RELAY_API_KEY", is_optional=True, is_secret=True)

MAIL_FROM = EnvVarSpec(id="MAIL_FROM", default="auctions@localhost")

FRONTEND_URL = EnvVarSpec(id="FRONTEND_URL", default="http://localhost:3000")

## Couchbase ##
## NOTE: COUCHBASE_* variables are read by clients.couchbase.config and only
## checked when the couchbase backend first connects.

#### Validation ####
VALIDATED_ENV_VARS = [
    LOG_LEVEL,
    HTTP_PORT,
    HTTP_AUTORELOAD,
    HTTP_EXPOSE_ERRORS,
    STORE_BACKEND,
    CAS_MAX_RETRIES,
    SCHEDULER_ENABLED,
    SWEEP_INTERVAL_SECONDS,
    ENDING_SOON_INTERVAL_MINUTES,
    ENDING_SOON_WINDOW_START_MINUTES,
    ENDING_SOON_WINDOW_END_MINUTES,
    MAIL_RELAY_URL,
    MAIL_RELAY_API_KEY,
]

def validate() -> bool:
    if not env.validate(VALIDATED_ENV_VARS):
        return False
    sched = get_scheduler_conf()
    if sched.ending_soon_window_end <= sched.ending_soon_window_start:
        logger.error("ENDING_SOON_WINDOW_END_MINUTES must be greater than ENDING_SOON_WINDOW_START_MINUTES")
        return False
    if sched.sweep_interval_seconds <= 0 or sched.ending_soon_interval_minutes <= 0:
        logger.error("Scheduler intervals must be positive")
        return False
    return True

#### Getters ####

def get_log_level() -> str:
    return env.parse(LOG_LEVEL)

def get_environment() -> str:
    return env.parse(ENVIRONMENT)

def get_http_expose_errors() -> bool:
    return env.parse(HTTP_EXPOSE_ERRORS)

def get_http_conf() -> HttpServerConf:
    return HttpServerConf(
        host=env.parse(HTTP_HOST),
        port=env.parse(HTTP_PORT),
        autoreload=env.parse(HTTP_AUTORELOAD),
    )

def get_internal_api_key() -> Optional[str]:
    return env.parse(INTERNAL_API_KEY)

def get_store_backend() -> str:
    return env.parse(STORE_BACKEND)

def get_cas_max_retries() -> int:
    return max(0, env.parse(CAS_MAX_RETRIES))

def get_scheduler_conf() -> SchedulerConf:
    return SchedulerConf(
        enabled=env.parse(SCHEDULER_ENABLED),
        sweep_interval_seconds=env.parse(SWEEP_INTERVAL_SECONDS),
        ending_soon_interval_minutes=env.parse(ENDING_SOON_INTERVAL_MINUTES),
        ending_soon_window_start=timedelta(minutes=env.parse(ENDING_SOON_WINDOW_START_MINUTES)),
        ending_soon_window_end=timedelta(minutes=env.parse(ENDING_SOON_WINDOW_END_MINUTES)),
    )

def get_mail_conf() -> MailConf:
    return MailConf(
        relay_url=env.parse(MAIL_RELAY_URL),
        api_key=env.parse(MAIL_RELAY_API_KEY),
        sender=env.parse(MAIL_FROM),
        frontend_url=env.parse(FRONTEND_URL).rstrip("/"),
    )
