from flask_talisman import Talisman


def init_security(app):
    """
    Staging/production security headers.
    Stripe Checkout and the portal are full-page redirects, so only the
    identity provider needs to be reachable from the browser.
    """
    connect_src = ["'self'"]
    supabase_url = (app.config.get("SUPABASE_URL") or "").rstrip("/")
    if supabase_url:
        connect_src.append(supabase_url)

    csp = {
        "default-src": ["'self'"],
        "script-src":  ["'self'"],
        "style-src":   ["'self'", "'unsafe-inline'"],
        "img-src":     ["'self'", "data:"],
        "font-src":    ["'self'", "data:"],
        "connect-src": connect_src,
        "frame-ancestors": ["'none'"],
        "base-uri":    ["'self'"],
        "form-action": ["'self'", "https://checkout.stripe.com", "https://billing.stripe.com"],
    }

    Talisman(
        app,
        content_security_policy=csp,
        force_https=True,
        strict_transport_security=True,
        session_cookie_secure=True,
        frame_options="DENY",
        referrer_policy="strict-origin-when-cross-origin",
    )
