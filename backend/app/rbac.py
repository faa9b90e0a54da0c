import json
from typing import Dict, List, Optional

from .logging_utils import json_log
from .system_settings import get_setting, set_setting

RBAC_KEY = "RBAC_CONFIG"
ADMIN_ROLE = "ADMIN"
FORBIDDEN_REDIRECT = "/dashboard?forbidden=1"

RbacConfig = Dict[str, List[str]]


def is_route_allowed(role: Optional[str], path: str, config: Optional[RbacConfig]) -> bool:
    r = (role or "USER").strip().upper() or "USER"
    if r == ADMIN_ROLE:
        return True
    if not config:
        return True
    allowed = config.get(path)
    if allowed is None:
        return True
    return r in {str(x).strip().upper() for x in allowed}


def normalize_config(raw) -> RbacConfig:
    if not isinstance(raw, dict):
        raise ValueError("rbac config must be an object of route -> roles")
    out: RbacConfig = {}
    for path, roles in raw.items():
        p = str(path or "").strip()
        if not p.startswith("/"):
            raise ValueError(f"invalid route: {path!r}")
        if not isinstance(roles, list):
            raise ValueError(f"roles for {p} must be a list")
        out[p] = sorted({str(r).strip().upper() for r in roles if str(r).strip()})
    return out


def load_rbac_config(cur) -> Optional[RbacConfig]:
    raw = get_setting(cur, RBAC_KEY)
    if not raw:
        return None
    try:
        return normalize_config(json.loads(raw))
    except (ValueError, TypeError) as exc:
        json_log("warning", "rbac.config_unreadable", error=str(exc))
        return None


def save_rbac_config(cur, config) -> RbacConfig:
    normalized = normalize_config(config)
    set_setting(cur, RBAC_KEY, json.dumps(normalized, sort_keys=True))
    return normalized
