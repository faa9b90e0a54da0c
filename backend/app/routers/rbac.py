from fastapi import APIRouter, Depends, HTTPException, Query
from typing import Dict, List

from ..db import get_conn
from ..deps import get_current_user, require_auth, require_roles
from ..rbac import FORBIDDEN_REDIRECT, is_route_allowed, load_rbac_config, save_rbac_config

router = APIRouter(prefix="/rbac", tags=["rbac"])


@router.get("", dependencies=[Depends(require_auth)])
def get_rbac_config():
    with get_conn() as conn:
        with conn.cursor() as cur:
            return {"config": load_rbac_config(cur)}


@router.put("", dependencies=[Depends(require_roles("ADMIN"))])
def put_rbac_config(config: Dict[str, List[str]]):
    with get_conn() as conn:
        with conn.cursor() as cur:
            try:
                saved = save_rbac_config(cur, config)
            except ValueError as exc:
                raise HTTPException(status_code=400, detail=str(exc)) from None
            return {"ok": True, "config": saved}


@router.get("/check")
def check_route(path: str = Query(..., min_length=1), user=Depends(get_current_user)):
    """
    Client-side mirror of the server page gate: the UI calls this on navigation and
    follows `redirect` when access is denied.
    """
    with get_conn() as conn:
        with conn.cursor() as cur:
            config = load_rbac_config(cur)
    allowed = is_route_allowed(user["role"], path, config)
    return {"allowed": allowed, "redirect": None if allowed else FORBIDDEN_REDIRECT}
