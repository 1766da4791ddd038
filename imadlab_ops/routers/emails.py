"""Admin email endpoints — queue processing, queue view, stats and previews."""

import logging

from fastapi import APIRouter, Header, HTTPException, Request
from fastapi.responses import JSONResponse

from imadlab_ops import supabase_client as db
from imadlab_ops.config import ADMIN_SECRET, SITE_URL
from imadlab_ops.services.email_templates import (
    blog_post_email_from_row,
    project_email_from_row,
    render_blog_post_email,
    render_project_email,
)
from imadlab_ops.services.queue_processor import enqueue_content, get_email_stats, process_queue

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

PREVIEW_EMAIL = "preview@example.com"
PREVIEW_TOKEN = "preview-token"


def _check_admin(authorization: str) -> None:
    if ADMIN_SECRET and authorization != f"Bearer {ADMIN_SECRET}":
        raise HTTPException(status_code=401, detail="Invalid admin secret")


async def _json_body(request: Request) -> dict | None:
    try:
        body = await request.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


@router.post("/email-queue/process")
async def email_queue_process(request: Request, authorization: str = Header("")):
    """Send pending newsletters now. Body: {queueIds?: [...]}."""
    _check_admin(authorization)
    body = await _json_body(request) or {}
    queue_ids = body.get("queueIds") or None

    try:
        return await process_queue(queue_ids)
    except Exception as e:
        logger.exception("Email queue processing failed")
        return JSONResponse({"error": str(e)}, status_code=500)


@router.post("/email-queue/enqueue")
async def email_queue_enqueue(request: Request, authorization: str = Header("")):
    """Queue a newsletter for existing content. Body: {contentType, contentId}."""
    _check_admin(authorization)
    body = await _json_body(request) or {}

    try:
        item = enqueue_content(body.get("contentType", ""), str(body.get("contentId", "")))
    except ValueError as e:
        return JSONResponse({"error": str(e)}, status_code=400)
    except LookupError as e:
        return JSONResponse({"error": str(e)}, status_code=404)

    return {"success": True, "queueItem": item}


@router.get("/email-queue")
async def email_queue_list(authorization: str = Header("")):
    _check_admin(authorization)
    return {"items": db.get_queue_items(limit=50)}


@router.get("/email-stats")
async def email_stats(authorization: str = Header("")):
    _check_admin(authorization)
    return get_email_stats()


@router.post("/email-preview")
async def email_preview(request: Request, authorization: str = Header("")):
    """Render a newsletter without sending it.

    Body: {contentType: blog_post|project, contentId?: str, mode?: "latest"}.
    """
    _check_admin(authorization)
    body = await _json_body(request)
    if not body:
        return JSONResponse({"error": "Missing request payload"}, status_code=400)

    content_type = body.get("contentType")
    if content_type not in db.CONTENT_TABLES:
        return JSONResponse({"error": "Invalid contentType"}, status_code=400)

    content_id = body.get("contentId") if isinstance(body.get("contentId"), str) else None
    if body.get("mode") != "latest" and not content_id:
        return JSONResponse({"error": "contentId is required unless mode is latest"}, status_code=400)

    try:
        if content_id:
            content = db.get_content(content_type, content_id)
        else:
            content = db.get_latest_content(content_type)
    except Exception as e:
        logger.exception("Preview lookup failed")
        return JSONResponse({"error": str(e)}, status_code=500)

    if not content:
        label = "Blog post" if content_type == "blog_post" else "Project"
        return JSONResponse({"error": f"{label} not found"}, status_code=404)

    if content_type == "blog_post":
        html = render_blog_post_email(
            blog_post_email_from_row(content, PREVIEW_EMAIL, PREVIEW_TOKEN, SITE_URL)
        )
    else:
        html = render_project_email(
            project_email_from_row(content, PREVIEW_EMAIL, PREVIEW_TOKEN, SITE_URL)
        )

    return {"html": html, "title": content.get("title")}
