"""
Client-side countermeasure script injected into every rewritten page.

The script runs in the visitor's browser, never on the server. It is a
versioned template; only the target URL and the proxy prefix are
interpolated. Bump COUNTERMEASURE_VERSION whenever the template changes so
pages already carrying an older copy can be told apart.
"""

import json
from string import Template

COUNTERMEASURE_VERSION = "3"
MARKER_ATTRIBUTE = "data-proxy-countermeasures"

_TEMPLATE = Template(
    r"""
(function () {
  "use strict";
  if (window.__rewritingProxy) { return; }
  var TARGET_URL = $target_url;
  var PROXY_PREFIX = $proxy_prefix;
  var VERSION = $version;
  var ORIGIN = window.location.origin;
  var PROXY_BASE = /^https?:\/\//i.test(PROXY_PREFIX) ? PROXY_PREFIX : ORIGIN + PROXY_PREFIX;
  var PROXY_PATH = new URL(PROXY_BASE).pathname;
  var SKIP = /^(data:|blob:|javascript:|about:|mailto:|tel:|#)/i;
  window.__rewritingProxy = { version: VERSION, target: TARGET_URL };

  function baseUrl() {
    return document.baseURI || TARGET_URL;
  }

  function isProxied(url) {
    return [PROXY_PREFIX, PROXY_BASE, PROXY_PATH].some(function (prefix) {
      return url === prefix || url.indexOf(prefix + "?") === 0;
    });
  }

  function unwrap(url) {
    if (!isProxied(url)) { return url; }
    try {
      return new URL(url, ORIGIN).searchParams.get("url") || url;
    } catch (e) {
      return url;
    }
  }

  function toProxy(url) {
    if (url === undefined || url === null) { return url; }
    url = String(url).trim();
    if (!url || SKIP.test(url)) { return url; }
    if (isProxied(url)) {
      return url.charAt(0) === "/" ? ORIGIN + url : url;
    }
    var absolute;
    try {
      absolute = new URL(url, baseUrl());
    } catch (e) {
      return url;
    }
    if (!/^https?:/i.test(absolute.protocol)) { return url; }
    // proxy-relative URLs resolved against <base> land on the target origin
    if (absolute.pathname === PROXY_PATH && absolute.searchParams.has("url")) {
      return PROXY_BASE + absolute.search;
    }
    return PROXY_BASE + "?url=" + encodeURIComponent(absolute.href);
  }
  window.__rewritingProxy.toProxy = toProxy;

  // Frame detection: report a top-level, unframed context
  function defineGetter(name, getter) {
    try {
      Object.defineProperty(window, name, { get: getter, configurable: true });
    } catch (e) {
      console.warn("rewriting-proxy: cannot override window." + name, e);
    }
  }
  defineGetter("self", function () { return window; });
  defineGetter("top", function () { return window; });
  defineGetter("parent", function () { return window; });
  defineGetter("frameElement", function () { return null; });

  // Links
  var nativeOpen = window.open;
  window.addEventListener("click", function (event) {
    if (event.defaultPrevented || event.button !== 0) { return; }
    var link = event.target && event.target.closest ? event.target.closest("a[href]") : null;
    if (!link) { return; }
    var raw = (link.getAttribute("href") || "").trim();
    if (!raw || SKIP.test(raw)) { return; }
    var destination = toProxy(raw);
    event.preventDefault();
    if (event.ctrlKey || event.metaKey || link.getAttribute("target") === "_blank") {
      nativeOpen.call(window, destination, "_blank");
    } else {
      window.location.href = destination;
    }
  }, false);

  // Forms
  function formAction(form) {
    var action = unwrap((form.getAttribute("action") || "").trim());
    try {
      return new URL(action || TARGET_URL, baseUrl()).href;
    } catch (e) {
      return TARGET_URL;
    }
  }

  function routeForm(form, event) {
    var method = (form.getAttribute("method") || "GET").toUpperCase();
    var action = formAction(form);
    if (method === "GET") {
      if (event) { event.preventDefault(); }
      var url = new URL(action);
      url.search = new URLSearchParams(new FormData(form)).toString();
      window.location.href = toProxy(url.href);
      return false;
    }
    form.setAttribute("action", toProxy(action));
    return true;
  }

  window.addEventListener("submit", function (event) {
    if (event.defaultPrevented || !event.target || event.target.tagName !== "FORM") { return; }
    routeForm(event.target, event);
  }, false);

  var nativeSubmit = HTMLFormElement.prototype.submit;
  HTMLFormElement.prototype.submit = function () {
    if (routeForm(this, null)) { nativeSubmit.call(this); }
  };

  // Programmatic navigation
  window.open = function (url, name, features) {
    return nativeOpen.call(window, url ? toProxy(url) : url, name, features);
  };

  ["pushState", "replaceState"].forEach(function (method) {
    var native = history[method];
    if (!native) { return; }
    history[method] = function (state, title, url) {
      if (url !== undefined && url !== null) { url = toProxy(url); }
      return native.call(history, state, title, url);
    };
  });

  if (window.fetch) {
    var nativeFetch = window.fetch;
    window.fetch = function (input, init) {
      if (typeof input === "string" || input instanceof URL) {
        input = toProxy(String(input));
      } else if (input && input.url) {
        input = new Request(toProxy(input.url), input);
      }
      return nativeFetch.call(window, input, init);
    };
  }

  var nativeXhrOpen = XMLHttpRequest.prototype.open;
  XMLHttpRequest.prototype.open = function (method, url) {
    var args = Array.prototype.slice.call(arguments);
    args[1] = toProxy(url);
    return nativeXhrOpen.apply(this, args);
  };

  // Cookies: mirror writes into localStorage, keyed by the target hostname
  var STORAGE_KEY = "rewriting-proxy-cookies:" + new URL(TARGET_URL).hostname;

  function loadJar() {
    try {
      return JSON.parse(window.localStorage.getItem(STORAGE_KEY) || "{}");
    } catch (e) {
      return {};
    }
  }

  function remember(assignment) {
    var pair = String(assignment).split(";")[0];
    var index = pair.indexOf("=");
    if (index < 1) { return; }
    var name = pair.slice(0, index).trim();
    var jar = loadJar();
    if (/;\s*(expires=thu, 01 jan 1970|max-age=(0|-\d+))/i.test(assignment)) {
      delete jar[name];
    } else {
      jar[name] = pair.slice(index + 1).trim();
    }
    try {
      window.localStorage.setItem(STORAGE_KEY, JSON.stringify(jar));
    } catch (e) {
      console.warn("rewriting-proxy: cannot persist cookies", e);
    }
  }

  var cookieDescriptor = Object.getOwnPropertyDescriptor(Document.prototype, "cookie");
  if (cookieDescriptor && cookieDescriptor.configurable) {
    Object.defineProperty(document, "cookie", {
      configurable: true,
      get: function () { return cookieDescriptor.get.call(document); },
      set: function (value) {
        remember(value);
        cookieDescriptor.set.call(document, value);
      }
    });
    var jar = loadJar();
    Object.keys(jar).forEach(function (name) {
      cookieDescriptor.set.call(document, name + "=" + jar[name] + "; path=/");
    });
  }
})();
"""
)


def _js_literal(value: str) -> str:
    """JSON-encode for inline <script>; a literal ``</`` would end the element."""
    return json.dumps(value).replace("</", "<\\/").replace("<!--", "<\\!--")


def build_countermeasure_script(target_url: str, proxy_prefix: str) -> str:
    return _TEMPLATE.substitute(
        target_url=_js_literal(target_url),
        proxy_prefix=_js_literal(proxy_prefix),
        version=_js_literal(COUNTERMEASURE_VERSION),
    )


def countermeasure_tag(target_url: str, proxy_prefix: str) -> str:
    script = build_countermeasure_script(target_url, proxy_prefix)
    return f'<script {MARKER_ATTRIBUTE}="{COUNTERMEASURE_VERSION}">{script}</script>'
