"""
部署失败时的占位页面
"""
import html
from datetime import datetime, timezone

PLACEHOLDER_FILENAME = 'index.html'


def generate_placeholder_page(repo_url: str, branch: str, log_location: str, when: datetime = None) -> str:
    """生成占位页面HTML"""
    when = when or datetime.now(timezone.utc)
    lines = [
        "<!DOCTYPE html>",
        "<html>",
        "<head>",
        '    <meta charset="utf-8">',
        "    <title>Deployment failed</title>",
        "</head>",
        "<body>",
        "    <h1>Deployment failed</h1>",
        "    <p>The site could not be deployed from {} ({}).</p>".format(
            html.escape(repo_url), html.escape(branch)
        ),
        "    <p>See {} for details.</p>".format(html.escape(log_location)),
        "    <p><small>{}</small></p>".format(when.strftime('%Y-%m-%d %H:%M:%S UTC')),
        "</body>",
        "</html>",
    ]
    return "\n".join(lines) + "\n"
