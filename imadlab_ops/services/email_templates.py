"""Newsletter email templates — blog post and project announcements.

Every email is a self-contained HTML document: inline <style>, no external
stylesheets, and a mobile media query so it renders the same across clients.
Rendering is a pure function of its input.
"""

import html
from dataclasses import dataclass, field
from datetime import datetime

THEME = {
    "background": "#000000",
    "card": "#0b0b0b",
    "text": "#ffffff",
    "muted": "#b7b7b7",
    "border": "#1b1b1b",
    "button": "#ffffff",
    "button_text": "#000000",
}

SOCIAL_LINKS = [
    ("GitHub", "https://github.com/imadlab"),
    ("Discord", "https://discord.com/users/766969796579295232"),
    ("LinkedIn", "https://linkedin.com/in/imadlab"),
]


@dataclass
class BlogPostEmail:
    subscriber_email: str
    unsubscribe_token: str
    site_url: str
    title: str
    slug: str
    published_date: str
    excerpt: str = ""
    tags: list[str] = field(default_factory=list)
    image_url: str | None = None
    unsubscribe_base_url: str | None = None


@dataclass
class ProjectEmail:
    subscriber_email: str
    unsubscribe_token: str
    site_url: str
    id: str
    title: str
    description: str = ""
    tech_tags: list[str] = field(default_factory=list)
    image_url: str | None = None
    repo_url: str | None = None
    unsubscribe_base_url: str | None = None


def blog_post_email_from_row(post: dict, subscriber_email: str, unsubscribe_token: str,
                             site_url: str, unsubscribe_base_url: str | None = None) -> BlogPostEmail:
    """Build template input from a `posts` row."""
    return BlogPostEmail(
        subscriber_email=subscriber_email,
        unsubscribe_token=unsubscribe_token,
        site_url=site_url,
        title=post.get("title") or "",
        slug=post.get("slug") or "",
        published_date=post.get("published_date") or post.get("created_at") or "",
        excerpt=post.get("excerpt") or "",
        tags=post.get("tags") or [],
        image_url=post.get("image_url") or None,
        unsubscribe_base_url=unsubscribe_base_url,
    )


def project_email_from_row(project: dict, subscriber_email: str, unsubscribe_token: str,
                           site_url: str, unsubscribe_base_url: str | None = None) -> ProjectEmail:
    """Build template input from a `projects` row."""
    return ProjectEmail(
        subscriber_email=subscriber_email,
        unsubscribe_token=unsubscribe_token,
        site_url=site_url,
        id=str(project.get("id") or ""),
        title=project.get("title") or "",
        description=project.get("description") or "",
        tech_tags=project.get("tech_tags") or [],
        image_url=project.get("image_url") or None,
        repo_url=project.get("repo_url") or None,
        unsubscribe_base_url=unsubscribe_base_url,
    )


def email_subject(content_type: str, title: str) -> str:
    """Subject line for a new-content email."""
    if content_type == "blog_post":
        return f"New Blog Post: {title}"
    return f"New Project: {title}"


def build_unsubscribe_url(token: str, base_url: str) -> str:
    """Unsubscribe link. The token is embedded verbatim."""
    return f"{base_url.rstrip('/')}/unsubscribe?token={token}"


def with_utm(url: str, campaign: str) -> str:
    """Append newsletter UTM parameters to a link."""
    sep = "&" if "?" in url else "?"
    return f"{url}{sep}utm_source=newsletter&utm_medium=email&utm_campaign={campaign}"


def format_published_date(value: str) -> str:
    """'2024-01-15T10:00:00Z' -> 'January 15, 2024'. Unparseable input is shown as-is."""
    if not value:
        return ""
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return value
    return f"{dt.strftime('%B')} {dt.day}, {dt.year}"


def _e(value: str) -> str:
    return html.escape(value or "", quote=True)


def _shared_css() -> str:
    t = THEME
    return f"""
  body {{ font-family: 'Inter', -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Arial, sans-serif; background-color: {t['background']}; color: {t['text']}; margin: 0; padding: 0; -webkit-text-size-adjust: none; width: 100% !important; letter-spacing: -0.01em; }}
  .container {{ max-width: 600px; margin: 0 auto; background-color: {t['background']}; }}
  .card {{ background-color: {t['card']}; border: 1px solid {t['border']}; border-radius: 12px; overflow: hidden; margin: 20px auto; }}
  .header {{ padding: 30px 30px 20px; text-align: center; border-bottom: 1px solid {t['border']}; background: {t['card']}; }}
  .logo {{ font-size: 24px; font-weight: 700; color: {t['text']}; letter-spacing: -0.03em; text-decoration: none; }}
  .badge {{ display: inline-block; font-size: 10px; font-weight: 600; text-transform: uppercase; letter-spacing: 0.2em; color: {t['muted']}; margin-top: 12px; }}
  .content {{ padding: 30px; }}
  .hero-image {{ width: 100%; height: auto; max-height: 300px; object-fit: cover; border-radius: 8px; margin-bottom: 24px; border: 1px solid {t['border']}; display: block; }}
  h1 {{ font-size: 24px; font-weight: 700; margin: 0 0 16px; line-height: 1.3; color: {t['text']}; letter-spacing: -0.02em; }}
  p {{ font-size: 16px; line-height: 1.6; color: {t['muted']}; margin: 0 0 24px; }}
  .meta {{ font-size: 13px; color: {t['muted']}; margin-bottom: 24px; }}
  .tag {{ display: inline-block; border: 1px solid {t['border']}; color: {t['text']}; font-size: 11px; font-weight: 600; padding: 4px 10px; border-radius: 100px; margin-right: 6px; margin-bottom: 6px; }}
  .btn {{ display: inline-block; background-color: {t['button']}; color: {t['button_text']}; padding: 14px 28px; border-radius: 8px; font-weight: 600; text-decoration: none; text-align: center; font-size: 14px; border: 1px solid {t['button']}; }}
  .btn-outline {{ background-color: transparent; color: {t['text']}; border: 1px solid {t['border']}; margin-left: 10px; }}
  .footer {{ padding: 20px; text-align: center; }}
  .footer-text {{ font-size: 12px; color: {t['muted']}; margin-bottom: 12px; }}
  .social-links {{ margin-bottom: 20px; }}
  .social-link {{ color: {t['muted']}; text-decoration: none; margin: 0 8px; font-size: 12px; }}
  .unsubscribe {{ color: {t['muted']}; font-size: 11px; text-decoration: underline; }}
  .preheader {{ display: none !important; visibility: hidden; opacity: 0; color: transparent; height: 0; width: 0; }}
  @media only screen and (max-width: 600px) {{
    .container {{ width: 100% !important; }}
    .card {{ margin: 0 !important; border-radius: 0 !important; border: none !important; border-bottom: 1px solid {t['border']} !important; }}
    .btn {{ display: block; width: 100%; margin-bottom: 10px; margin-left: 0; }}
  }}
"""


def _header(site_url: str, badge: str) -> str:
    return f"""<div class="header">
                <a href="{_e(site_url)}" class="logo">imadlab<span style="color:{THEME['muted']}">.me</span></a>
                <div><span class="badge">{badge}</span></div>
            </div>"""


def _footer(tagline: str, unsubscribe_url: str) -> str:
    socials = " &bull; \n                ".join(
        f'<a href="{url}" class="social-link">{name}</a>' for name, url in SOCIAL_LINKS
    )
    return f"""<div class="footer">
            <div class="social-links">
                {socials}
            </div>
            <div class="footer-text">{tagline}</div>
            <a href="{unsubscribe_url}" class="unsubscribe">Unsubscribe</a>
        </div>"""


def _document(title: str, preview_text: str, body: str) -> str:
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{title}</title>
    <style>{_shared_css()}</style>
</head>
<body>
    <span class="preheader">{preview_text}</span>
    <div class="container">
        {body}
    </div>
</body>
</html>"""


def render_blog_post_email(data: BlogPostEmail) -> str:
    """Render the 'New Article' email for a blog post."""
    post_url = with_utm(f"{data.site_url}/blogs/{data.slug}", "blog_post")
    unsubscribe_url = build_unsubscribe_url(
        data.unsubscribe_token, data.unsubscribe_base_url or data.site_url,
    )
    title = _e(data.title)
    preview_text = _e(data.excerpt) or f"Read the latest article: {title}"

    image_block = ""
    if data.image_url:
        image_block = f"""<a href="{_e(post_url)}">
                    <img src="{_e(data.image_url)}" alt="{title}" class="hero-image">
                </a>"""

    tags_block = ""
    if data.tags:
        chips = "".join(f'<span class="tag">#{_e(tag)}</span>' for tag in data.tags)
        tags_block = f'<div style="margin-bottom: 24px;">{chips}</div>'

    excerpt = _e(data.excerpt) or "Check out my latest insights on software engineering and development."

    body = f"""<div class="card">
            {_header(data.site_url, "New Article")}
            <div class="content">
                {image_block}
                <div class="meta"><span>{_e(format_published_date(data.published_date))}</span></div>
                <h1>{title}</h1>
                <p>{excerpt}</p>
                {tags_block}
                <div style="margin-top: 32px;">
                    <a href="{_e(post_url)}" class="btn">Read Article</a>
                </div>
            </div>
        </div>
        {_footer("Crafted with care at imadlab.me", unsubscribe_url)}"""

    return _document(title, preview_text, body)


def render_project_email(data: ProjectEmail) -> str:
    """Render the 'Project Launch' email for a project."""
    project_url = with_utm(f"{data.site_url}/projects/{data.id}", "new_project")
    repo_url = with_utm(data.repo_url, "new_project_repo") if data.repo_url else None
    unsubscribe_url = build_unsubscribe_url(
        data.unsubscribe_token, data.unsubscribe_base_url or data.site_url,
    )
    title = _e(data.title)
    preview_text = _e(data.description) or f"Check out my new project: {title}"

    image_block = ""
    if data.image_url:
        image_block = f"""<a href="{_e(project_url)}">
                    <img src="{_e(data.image_url)}" alt="{title}" class="hero-image">
                </a>"""

    tags_block = ""
    if data.tech_tags:
        chips = "".join(f'<span class="tag">{_e(tag)}</span>' for tag in data.tech_tags)
        tags_block = f"""<div style="margin-bottom: 24px;">
                    <div style="font-size: 11px; text-transform: uppercase; color: {THEME['muted']}; margin-bottom: 8px; font-weight: 700;">Built With</div>
                    {chips}
                </div>"""

    repo_button = ""
    if repo_url:
        repo_button = f'<a href="{_e(repo_url)}" class="btn btn-outline">Source Code</a>'

    description = _e(data.description) or (
        "I just shipped a new project. Click below to see the tech stack and details."
    )

    body = f"""<div class="card">
            {_header(data.site_url, "Project Launch")}
            <div class="content">
                {image_block}
                <h1>{title}</h1>
                <p>{description}</p>
                {tags_block}
                <div style="margin-top: 32px;">
                    <a href="{_e(project_url)}" class="btn">View Project</a>
                    {repo_button}
                </div>
            </div>
        </div>
        {_footer("Building cool things at imadlab.me", unsubscribe_url)}"""

    return _document(f"New Project: {title}", preview_text, body)
