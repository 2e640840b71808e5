import os

SERVICE_NAME = os.getenv("SERVICE_NAME", "rewriting-proxy")
BASE_PATH = os.environ.get("BASE_PATH", "").rstrip("/")
PROXY_PATH = os.environ.get("PROXY_PATH", "/proxy")
# Public-facing URL for rewrites; makes proxy URLs absolute so <base> can't capture them
PUBLIC_URL = os.environ.get("PUBLIC_URL", "").rstrip("/")
DEFAULT_LANDING_URL = os.environ.get("DEFAULT_LANDING_URL", "/")

PROXY_TIMEOUT = float(os.environ.get("PROXY_TIMEOUT", "30"))
PROXY_MAX_REDIRECTS = int(os.environ.get("PROXY_MAX_REDIRECTS", "10"))
UPSTREAM_PROXY_URL = os.environ.get("UPSTREAM_PROXY_URL", "")

REWRITE_ENGINE = os.getenv("REWRITE_ENGINE", "dom").lower()
REWRITE_CSS_URLS = os.environ.get("REWRITE_CSS_URLS", "false").lower() == "true"


def _parse_list(raw: str) -> list[str]:
    return [item.strip().lower() for item in raw.split(",") if item.strip()]


# Hosts where markup mutation breaks playback (video/game CDNs)
BYPASS_DOMAINS = _parse_list(
    os.environ.get(
        "BYPASS_DOMAINS",
        "youtube.com,googlevideo.com,ytimg.com,netflix.com,nflxvideo.net,poki.com,twitch.tv",
    )
)

# Script src signatures of captcha, bot-detection and fingerprinting vendors
BLOCKED_SCRIPT_PATTERNS = [
    p.strip()
    for p in os.environ.get(
        "BLOCKED_SCRIPT_PATTERNS",
        r"recaptcha,hcaptcha,captcha-delivery,challenge-platform,datadome,"
        r"perimeterx,px-cdn,px-cloud,fingerprintjs,fpjs,kasada,bot-?detect,"
        r"akam/\d+,distil_r_captcha",
    ).split(",")
    if p.strip()
]

ALLOWED_TARGET_DOMAINS = _parse_list(os.environ.get("ALLOWED_TARGET_DOMAINS", ""))
BLOCKED_TARGET_DOMAINS = _parse_list(os.environ.get("BLOCKED_TARGET_DOMAINS", ""))

ASSET_CACHE = os.getenv("ASSET_CACHE", "InMemoryAssetCache")
ASSET_CACHE_TTL = float(os.getenv("ASSET_CACHE_TTL", "300"))
ASSET_CACHE_MAX_ENTRIES = int(os.getenv("ASSET_CACHE_MAX_ENTRIES", "500"))
ASSET_CACHE_MAX_BYTES = int(os.getenv("ASSET_CACHE_MAX_BYTES", str(5 * 1024 * 1024)))

OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT")
OTLP_HEADERS = os.getenv("OTLP_HEADERS", "")


def proxy_path_prefix() -> str:
    """Prefix every proxy-relative URL starts with."""
    return f"{PUBLIC_URL}{BASE_PATH}{PROXY_PATH}"
