# mcp_ledger/gateway_auth/pages.py
from html import escape
from typing import Dict, Optional

_STYLE = (
    "body{font-family:system-ui,sans-serif;max-width:32rem;margin:3rem auto;padding:0 1rem}"
    "label{display:block;margin-top:1rem}input{width:100%;padding:.5rem}"
    "button{margin-top:1.5rem;padding:.5rem 1.5rem}.error{color:#b00020}"
    "code{word-break:break-all;background:#f4f4f4;padding:.25rem}"
)


def _page(title: str, body: str) -> str:
    return (
        "<!DOCTYPE html><html><head><meta charset=\"utf-8\">"
        f"<title>{escape(title)}</title><style>{_STYLE}</style></head>"
        f"<body><h1>{escape(title)}</h1>{body}</body></html>"
    )


def login_form_page(
    action: str,
    heading: str = "Sign in",
    error: Optional[str] = None,
    hidden_fields: Optional[Dict[str, str]] = None,
    email: str = "",
) -> str:
    """Email/password form shared by /login and /oauth/authorize."""
    hidden = "".join(
        f'<input type="hidden" name="{escape(name)}" value="{escape(value)}">'
        for name, value in (hidden_fields or {}).items()
    )
    error_html = f'<p class="error">{escape(error)}</p>' if error else ""
    body = (
        f"{error_html}<form method=\"post\" action=\"{escape(action)}\">{hidden}"
        "<label>Email <input type=\"email\" name=\"email\" required "
        f"value=\"{escape(email)}\" autocomplete=\"username\"></label>"
        "<label>Password <input type=\"password\" name=\"password\" required "
        "autocomplete=\"current-password\"></label>"
        "<button type=\"submit\">Sign in</button></form>"
    )
    return _page(heading, body)


def connection_url_page(connection_url: str, expires_in_days: int) -> str:
    body = (
        "<p>Add this URL to your MCP client as a remote server. "
        f"It stays valid for {expires_in_days} days.</p>"
        f"<p><code>{escape(connection_url)}</code></p>"
        "<p>Keep it private: anyone holding it can act as you.</p>"
    )
    return _page("Your connection URL", body)


def message_page(title: str, message: str) -> str:
    return _page(title, f"<p>{escape(message)}</p>")
