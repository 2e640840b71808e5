# Configuration is read once at import time; pin the values the tests rely on
# before any `rewriting_proxy` module is imported.
import os

os.environ.pop("OTLP_ENDPOINT", None)
os.environ["BASE_PATH"] = ""
os.environ["PROXY_PATH"] = "/proxy"
os.environ["PUBLIC_URL"] = ""
