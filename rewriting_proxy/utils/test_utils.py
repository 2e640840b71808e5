from unittest.mock import MagicMock

from rewriting_proxy.utils import cookie_fingerprint
from rewriting_proxy.utils.traced_requests import traced_request


def test_cookie_fingerprint_hides_values():
    fingerprint = cookie_fingerprint("sid=supersecret; theme=dark")
    assert "supersecret" not in fingerprint
    assert "names=sid,theme" in fingerprint
    assert fingerprint == cookie_fingerprint("sid=supersecret; theme=dark")
    assert cookie_fingerprint(None) == "<empty>"



def test_traced_request_sets_attributes():
    tracer = MagicMock()
    span = tracer.start_as_current_span.return_value.__enter__.return_value
    with traced_request(
        tracer,
        "proxy.request",
        "https://example.com/",
        "start",
        extra_attrs={"proxy.retry": 1, "proxy.skip": None},
    ) as yielded:
        assert yielded is span
    tracer.start_as_current_span.assert_called_once_with("proxy.request")
    span.set_attribute.assert_any_call("proxy.target_url", "https://example.com/")
    span.set_attribute.assert_any_call("proxy.retry", 1)
    assert all(call.args[0] != "proxy.skip" for call in span.set_attribute.call_args_list)
