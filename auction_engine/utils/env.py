import logging
import os
from typing import Any, Callable, List, Optional, Tuple

from pydantic import BaseModel, ValidationError, create_model

logger = logging.getLogger(__name__)


class EnvVarSpec(BaseModel):
    """Declaration of one environment variable.

    ``type`` is a pydantic field definition (``(int, ...)``) used by
    :func:`validate` to check the parsed value.
    """

    id: str
    default: Optional[str] = None
    parse: Callable[[str], Any] = lambda x: x
    type: Tuple[Any, Any] = (str, ...)
    is_optional: bool = False
    is_secret: bool = False


def _raw(var: EnvVarSpec) -> Optional[str]:
    value = os.environ.get(var.id)
    if value is None or value == "":
        return var.default
    return value


def parse(var: EnvVarSpec) -> Any:
    raw = _raw(var)
    if raw is None:
        if var.is_optional:
            return None
        raise ValueError(f"Environment variable '{var.id}' is not set")
    return var.parse(raw)


def validate(vars: List[EnvVarSpec]) -> bool:
    fields = {}
    values = {}
    ok = True
    for var in vars:
        try:
            values[var.id] = parse(var)
        except Exception as e:
            logger.error(f"Invalid value for {var.id}: {e}")
            ok = False
            continue
        field_type, default = var.type
        if var.is_optional:
            fields[var.id] = (Optional[field_type], None)
        else:
            fields[var.id] = (field_type, default)

    if not ok:
        return False

    model = create_model("EnvVars", **fields)
    try:
        model(**values)
    except ValidationError as e:
        for err in e.errors():
            name = err["loc"][0] if err["loc"] else "?"
            shown = "***" if any(v.id == name and v.is_secret for v in vars) else values.get(name)
            logger.error(f"Invalid value for {name} ({shown}): {err['msg']}")
        return False
    return True
