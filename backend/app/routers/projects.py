from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
import datetime as dt
from typing import List, Optional

from ..crypto import decrypt
from ..db import get_conn
from ..deps import get_current_user, is_admin_role, require_admin, require_route
from ..validation import ProjectStatus

router = APIRouter(tags=["projects"], dependencies=[Depends(require_route("/projects"))])


class CategoryIn(BaseModel):
    name: str


@router.get("/project-categories", dependencies=[Depends(get_current_user)])
def list_project_categories():
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT id, name FROM project_categories ORDER BY name")
            return {"categories": cur.fetchall()}


@router.post("/project-categories", dependencies=[Depends(require_admin)])
def create_project_category(data: CategoryIn):
    if not data.name.strip():
        raise HTTPException(status_code=400, detail="name is required")
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                "INSERT INTO project_categories (id, name) VALUES (gen_random_uuid(), %s) RETURNING id",
                (data.name.strip(),),
            )
            return {"id": cur.fetchone()["id"]}


@router.put("/project-categories/{category_id}", dependencies=[Depends(require_admin)])
def update_project_category(category_id: str, data: CategoryIn):
    if not data.name.strip():
        raise HTTPException(status_code=400, detail="name is required")
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute("UPDATE project_categories SET name = %s WHERE id = %s", (data.name.strip(), category_id))
            if cur.rowcount == 0:
                raise HTTPException(status_code=404, detail="category not found")
    return {"ok": True}


@router.delete("/project-categories/{category_id}", dependencies=[Depends(require_admin)])
def delete_project_category(category_id: str):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute("DELETE FROM project_categories WHERE id = %s", (category_id,))
            if cur.rowcount == 0:
                raise HTTPException(status_code=404, detail="category not found")
    return {"ok": True}


class LinkIn(BaseModel):
    label: str
    url: str


class ProjectIn(BaseModel):
    name: str
    client: Optional[str] = None
    date: Optional[dt.date] = None
    description: Optional[str] = None
    status: ProjectStatus = "PENDING"
    category_id: Optional[str] = None
    links: List[LinkIn] = []
    assigned_user_ids: List[str] = []


def _write_children(cur, project_id, data: ProjectIn) -> None:
    cur.execute("DELETE FROM project_links WHERE project_id = %s", (project_id,))
    cur.execute("DELETE FROM project_users WHERE project_id = %s", (project_id,))
    for link in data.links:
        cur.execute(
            "INSERT INTO project_links (id, project_id, label, url) VALUES (gen_random_uuid(), %s, %s, %s)",
            (project_id, link.label, link.url),
        )
    for uid in dict.fromkeys(data.assigned_user_ids):
        cur.execute(
            "INSERT INTO project_users (project_id, user_id) VALUES (%s, %s)",
            (project_id, uid),
        )


def _project_params(data: ProjectIn):
    name = data.name.strip()
    if not name:
        raise HTTPException(status_code=400, detail="project name is required")
    return (
        name,
        (data.client or "").strip() or None,
        data.date,
        (data.description or "").strip() or None,
        data.status,
        data.category_id or None,
    )


@router.get("/projects")
def list_projects(user=Depends(get_current_user)):
    admin = is_admin_role(user["role"])
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT p.id, p.name, p.client, p.date, p.description, p.status, p.category_id,
                       c.name AS category_name, p.created_at
                FROM projects p
                LEFT JOIN project_categories c ON c.id = p.category_id
                WHERE %s OR EXISTS (
                    SELECT 1 FROM project_users pu WHERE pu.project_id = p.id AND pu.user_id = %s
                )
                ORDER BY p.date DESC NULLS LAST, p.created_at DESC
                """,
                (admin, user["user_id"]),
            )
            projects = cur.fetchall()
            ids = [p["id"] for p in projects]
            links = {}
            users = {}
            if ids:
                cur.execute(
                    "SELECT project_id, id, label, url FROM project_links WHERE project_id = ANY(%s)",
                    (ids,),
                )
                for r in cur.fetchall():
                    links.setdefault(r["project_id"], []).append({"id": r["id"], "label": r["label"], "url": r["url"]})
                cur.execute(
                    """
                    SELECT pu.project_id, u.id, u.name_enc, u.role_enc
                    FROM project_users pu
                    JOIN users u ON u.id = pu.user_id
                    WHERE pu.project_id = ANY(%s)
                    """,
                    (ids,),
                )
                for r in cur.fetchall():
                    users.setdefault(r["project_id"], []).append(
                        {"id": r["id"], "name": decrypt(r["name_enc"]), "role": (decrypt(r["role_enc"]) or "USER").upper()}
                    )
    for p in projects:
        p["links"] = links.get(p["id"], [])
        p["assigned_users"] = users.get(p["id"], [])
    return {"projects": projects}


@router.post("/projects", dependencies=[Depends(require_admin)])
def create_project(data: ProjectIn):
    params = _project_params(data)
    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO projects (id, name, client, date, description, status, category_id)
                    VALUES (gen_random_uuid(), %s, %s, %s, %s, %s, %s)
                    RETURNING id
                    """,
                    params,
                )
                project_id = cur.fetchone()["id"]
                _write_children(cur, project_id, data)
    return {"success": True, "id": project_id}


@router.put("/projects/{project_id}", dependencies=[Depends(require_admin)])
def update_project(project_id: str, data: ProjectIn):
    params = _project_params(data)
    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE projects
                    SET name = %s, client = %s, date = %s, description = %s, status = %s,
                        category_id = %s, updated_at = now()
                    WHERE id = %s
                    """,
                    params + (project_id,),
                )
                if cur.rowcount == 0:
                    raise HTTPException(status_code=404, detail="project not found")
                _write_children(cur, project_id, data)
    return {"success": True}


@router.delete("/projects/{project_id}", dependencies=[Depends(require_admin)])
def delete_project(project_id: str):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute("DELETE FROM projects WHERE id = %s", (project_id,))
            if cur.rowcount == 0:
                raise HTTPException(status_code=404, detail="project not found")
    return {"success": True}
