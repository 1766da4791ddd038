"""Unsubscribe endpoint — public, no auth required.

One-click link in every newsletter email. The subscriber's random
unsubscribe token is the only credential.
"""

import html
import logging

from fastapi import APIRouter, Query
from fastapi.responses import HTMLResponse

from imadlab_ops.config import SITE_URL
from imadlab_ops.services.subscribers import unsubscribe_by_token

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/unsubscribe")
async def unsubscribe_page(token: str = Query("")):
    if not token:
        return HTMLResponse(_render_error_page(
            "Invalid unsubscribe link. The unsubscribe token is missing."
        ), status_code=400)

    try:
        subscriber = unsubscribe_by_token(token)
    except Exception:
        logger.exception("Unsubscribe failed")
        return HTMLResponse(_render_error_page(
            "Failed to process unsubscribe request. Please try again later."
        ), status_code=500)

    if not subscriber:
        return HTMLResponse(_render_error_page(
            "Invalid unsubscribe link. The token may have expired or is incorrect."
        ), status_code=404)

    return HTMLResponse(_render_confirmation_page(subscriber["email"], SITE_URL))


_BASE_CSS = """
    body { margin: 0; padding: 0; font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Arial, sans-serif; line-height: 1.6; color: #333333; background-color: #f8fafc; min-height: 100vh; display: flex; align-items: center; justify-content: center; }
    .container { max-width: 500px; margin: 20px; background-color: #ffffff; border-radius: 12px; padding: 40px; text-align: center; box-shadow: 0 10px 25px rgba(0, 0, 0, 0.1); }
    .icon { width: 64px; height: 64px; border-radius: 50%; display: flex; align-items: center; justify-content: center; margin: 0 auto 24px; color: white; font-size: 24px; }
    h1 { color: #1a202c; font-size: 24px; font-weight: 700; margin: 0 0 16px 0; }
    p { color: #718096; font-size: 16px; margin-bottom: 20px; }
    .button { display: inline-block; background: linear-gradient(135deg, #667eea 0%, #764ba2 100%); color: #ffffff; text-decoration: none; padding: 12px 24px; border-radius: 8px; font-weight: 600; font-size: 14px; margin: 10px 0; }
    @media (max-width: 600px) { .container { margin: 10px; padding: 30px 20px; } }
"""


def _render_page(title: str, body: str, extra_css: str = "") -> str:
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>{title} - imadlab Newsletter</title>
  <style>{_BASE_CSS}{extra_css}</style>
</head>
<body>
  <div class="container">
{body}
  </div>
</body>
</html>"""


def _render_confirmation_page(email: str, resubscribe_url: str) -> str:
    body = f"""    <div class="icon">&#10003;</div>
    <h1>Successfully Unsubscribed</h1>
    <div class="email">{html.escape(email)}</div>
    <p>You have been successfully unsubscribed from the imadlab newsletter. You will no longer receive email notifications about new blog posts and projects.</p>
    <p>Changed your mind? You can resubscribe anytime:</p>
    <a href="{html.escape(resubscribe_url)}" class="button">Resubscribe to Newsletter</a>
    <div class="footer"><p>Thank you for being part of the imadlab community!</p></div>"""
    css = """
    .icon { background: linear-gradient(135deg, #48bb78 0%, #38a169 100%); }
    .email { color: #4a5568; font-weight: 600; background-color: #f7fafc; padding: 8px 16px; border-radius: 6px; display: inline-block; margin-bottom: 20px; }
    .footer { margin-top: 30px; padding-top: 20px; border-top: 1px solid #e2e8f0; color: #a0aec0; font-size: 14px; }
"""
    return _render_page("Unsubscribed", body, css)


def _render_error_page(message: str) -> str:
    body = f"""    <div class="icon">!</div>
    <h1>Oops! Something went wrong</h1>
    <p>{message}</p>
    <a href="{html.escape(SITE_URL)}" class="button">Return to imadlab</a>"""
    css = """
    .icon { background: linear-gradient(135deg, #f56565 0%, #e53e3e 100%); }
"""
    return _render_page("Error", body, css)
