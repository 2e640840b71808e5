from rewriting_proxy import vars as proxy_vars


def test_parse_list_normalizes_entries():
    assert proxy_vars._parse_list(" YouTube.com, ,twitch.tv,") == ["youtube.com", "twitch.tv"]


def test_defaults():
    assert proxy_vars.PROXY_PATH == "/proxy"
    assert proxy_vars.proxy_path_prefix() == "/proxy"
    assert "youtube.com" in proxy_vars.BYPASS_DOMAINS
    assert proxy_vars.REWRITE_CSS_URLS is False
    assert proxy_vars.ASSET_CACHE_MAX_BYTES == 5 * 1024 * 1024


def test_proxy_path_prefix_uses_public_url(monkeypatch):
    monkeypatch.setattr(proxy_vars, "PUBLIC_URL", "https://dash.example.com")
    monkeypatch.setattr(proxy_vars, "BASE_PATH", "/tools")
    assert proxy_vars.proxy_path_prefix() == "https://dash.example.com/tools/proxy"
