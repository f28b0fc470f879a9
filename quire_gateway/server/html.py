"""Minimal HTML pages for the browser leg of the OAuth flow."""
import html

ERROR_PAGE = """<!DOCTYPE html>
<html>
<head><title>{title}</title></head>
<body>
  <h1>{title}</h1>
  <p>{message}</p>
  <p>You can close this window.</p>
</body>
</html>
"""


def escape_html(text: str) -> str:
    """Escape ``& < > " '`` for safe interpolation into markup."""
    return html.escape(text, quote=True)


def render_error_page(title: str, message: str) -> str:
    return ERROR_PAGE.format(title=escape_html(title), message=escape_html(message))
