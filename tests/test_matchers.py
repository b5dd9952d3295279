"""Tests for matcher evaluation and the offline pre-filter."""

import pytest

from templar.config import MatcherConfig, MatcherType, RequestConfig
from templar.matchers import (
    BinaryMatcher,
    DSLMatcher,
    JsonMatcher,
    StatusMatcher,
    WordMatcher,
    can_offline_match_request,
    check_matchers,
    check_single_matcher,
    create_matcher,
    decode_binary_pattern,
    match_offline_html,
    normalize_text,
)
from templar.responses import (
    DNSResponse,
    HeadlessResponse,
    HTTPResponseData,
    MatchContext,
    NetworkResponse,
)


def http_ctx(status=200, body=b"", headers=None):
    return MatchContext.from_http(
        HTTPResponseData(status_code=status, headers=headers or {}, body=body)
    )


def matcher(**fields):
    return MatcherConfig.model_validate(fields)


class TestCheckMatchers:
    def test_empty_matcher_list_always_matches(self):
        assert check_matchers([], "and", MatchContext()) is True
        assert check_matchers([], "or", http_ctx(500, b"anything")) is True

    def test_and_requires_every_matcher(self):
        matchers = [matcher(type="status", status=[200]), matcher(type="word", words=["admin"])]
        assert check_matchers(matchers, "and", http_ctx(200, b"admin")) is True
        assert check_matchers(matchers, "and", http_ctx(404, b"admin")) is False

    def test_or_requires_any_matcher(self):
        matchers = [matcher(type="status", status=[200]), matcher(type="word", words=["admin"])]
        assert check_matchers(matchers, "OR", http_ctx(404, b"admin")) is True
        assert check_matchers(matchers, "or", http_ctx(404, b"nothing")) is False

    def test_condition_defaults_to_and(self):
        matchers = [matcher(type="status", status=[200]), matcher(type="word", words=["x"])]
        assert check_matchers(matchers, None, http_ctx(200, b"y")) is False


class TestWordMatcher:
    def test_and_condition(self):
        m = matcher(type="word", words=["admin", "panel"])
        assert check_single_matcher(m, http_ctx(body=b"the admin panel")) is True
        assert check_single_matcher(m, http_ctx(body=b"the admin area")) is False

    def test_or_condition(self):
        m = matcher(type="word", words=["admin", "panel"], condition="or")
        assert check_single_matcher(m, http_ctx(body=b"the admin area")) is True
        assert check_single_matcher(m, http_ctx(body=b"nothing here")) is False

    def test_nocase(self):
        m = matcher(type="word", words=["ADMIN"], nocase=True)
        assert check_single_matcher(m, http_ctx(body=b"admin")) is True
        assert check_single_matcher(matcher(type="word", words=["ADMIN"]), http_ctx(body=b"admin")) is False

    def test_case_insensitive_spelling(self):
        m = matcher(type="word", words=["ADMIN"], **{"case-insensitive": True})
        assert m.nocase is True

    def test_whitespace_and_quote_style_are_normalized(self):
        m = matcher(type="word", words=["<div class='app'> ready"])
        body = b'<div class="app">\n     ready</div>'
        assert check_single_matcher(m, http_ctx(body=body)) is True

    def test_header_part(self):
        ctx = http_ctx(body=b"hello", headers={"Server": "nginx/1.25"})
        assert check_single_matcher(matcher(type="word", part="header", words=["nginx"]), ctx) is True
        assert check_single_matcher(matcher(type="word", part="body", words=["nginx"]), ctx) is False
        assert check_single_matcher(matcher(type="word", part="all", words=["nginx", "hello"]), ctx) is True

    def test_status_part(self):
        m = matcher(type="word", part="status", words=["302"])
        assert check_single_matcher(m, http_ctx(status=302)) is True

    def test_no_response_is_not_a_match(self):
        assert check_single_matcher(matcher(type="word", words=["x"]), MatchContext()) is False


def test_normalize_text():
    assert normalize_text("a \t\n b ‘c’") == 'a b "c"'


class TestStatusMatcher:
    def test_membership(self):
        m = matcher(type="status", status=[200, 301])
        assert check_single_matcher(m, http_ctx(301)) is True
        assert check_single_matcher(m, http_ctx(404)) is False

    def test_inapplicable_without_status(self):
        assert check_single_matcher(matcher(type="status", status=[200]), MatchContext()) is False


class TestRegexMatcher:
    def test_any_pattern_matches(self):
        m = matcher(type="regex", regex=[r"version \d+\.\d+", "nomatch"])
        assert check_single_matcher(m, http_ctx(body=b"version 2.4 installed")) is True

    def test_nocase(self):
        m = matcher(type="regex", regex=["WORDPRESS"], nocase=True)
        assert check_single_matcher(m, http_ctx(body=b"powered by wordpress")) is True

    def test_invalid_pattern_is_skipped(self):
        m = matcher(type="regex", regex=["(unclosed", "install(ed)?"])
        assert check_single_matcher(m, http_ctx(body=b"installed")) is True

    def test_only_invalid_patterns_count_as_no_match(self):
        m = matcher(type="regex", regex=["(unclosed"])
        assert check_single_matcher(m, http_ctx(body=b"(unclosed")) is False


class TestLengthMatchers:
    def test_size_of_body(self):
        body = b"hello world"
        assert check_single_matcher(matcher(type="size", size=len(body)), http_ctx(body=body)) is True
        assert check_single_matcher(matcher(type="size", size=len(body) - 1), http_ctx(body=body)) is False
        assert check_single_matcher(matcher(type="size", size=len(body) + 1), http_ctx(body=body)) is False

    def test_size_with_operator(self):
        m = matcher(type="size", size=3, operator=">")
        assert check_single_matcher(m, http_ctx(body=b"hello")) is True

    def test_size_of_headers(self):
        ctx = http_ctx(body=b"", headers={"A": "bc"})
        assert check_single_matcher(matcher(type="size", part="header", size=5), ctx) is True

    def test_dlength_with_condition_operator(self):
        ctx = http_ctx(body=b"hello")
        assert check_single_matcher(matcher(type="dlength", dlength=5), ctx) is True
        assert check_single_matcher(matcher(type="dlength", dlength=10, condition="<="), ctx) is True
        assert check_single_matcher(matcher(type="dlength", dlength=10, condition=">"), ctx) is False


class TestBinaryMatcher:
    def test_hex_pattern(self):
        assert decode_binary_pattern("48656c6c6f") == b"Hello"
        m = matcher(type="binary", binary=["48656c6c6f"])
        assert check_single_matcher(m, http_ctx(body=b"Hello world")) is True

    def test_literal_pattern(self):
        assert decode_binary_pattern("world") == b"world"
        assert check_single_matcher(matcher(type="binary", binary=["world"]), http_ctx(body=b"Hello world")) is True

    def test_missing_bytes(self):
        m = matcher(type="binary", binary=["deadbeef"])
        assert check_single_matcher(m, http_ctx(body=b"Hello world")) is False


class TestStructuralMatchers:
    html = b'<html><body><a href="/admin">Admin</a></body></html>'

    def test_xpath(self):
        ctx = http_ctx(body=self.html)
        assert check_single_matcher(matcher(type="xpath", xpath=["//a[@href='/admin']"]), ctx) is True
        assert check_single_matcher(matcher(type="xpath", xpath=["//form"]), ctx) is False

    def test_invalid_xpath_is_no_match(self):
        assert check_single_matcher(matcher(type="xpath", xpath=["//["]), http_ctx(body=self.html)) is False

    def test_jsonpath(self):
        ctx = http_ctx(body=b'{"data": {"items": [{"name": "first"}]}}')
        assert check_single_matcher(matcher(type="json", jsonpath="$.data.items[0].name"), ctx) is True
        assert check_single_matcher(matcher(type="json", jsonpath="data.missing"), ctx) is False

    def test_jsonpath_alias(self):
        assert matcher(type="jsonpath", jsonpath="a").type == MatcherType.JSON

    def test_jsonpath_on_non_json(self):
        assert check_single_matcher(matcher(type="json", jsonpath="a"), http_ctx(body=b"<html>")) is False


class TestPayloadMatchers:
    def test_dns_pattern(self):
        ctx = MatchContext(dns=DNSResponse(records=["v=spf1 include:_spf.google.com ~all"], query_type="TXT"))
        assert check_single_matcher(matcher(type="dns", pattern="v=spf1"), ctx) is True
        assert check_single_matcher(matcher(type="dns", words=["google"]), ctx) is True
        assert check_single_matcher(matcher(type="dns", pattern="v=DMARC1"), ctx) is False

    def test_dns_matcher_without_criteria(self):
        ctx = MatchContext(dns=DNSResponse(records=["1.2.3.4"]))
        assert check_single_matcher(matcher(type="dns"), ctx) is False

    def test_network_pattern_and_binary(self):
        ctx = MatchContext(network=NetworkResponse(data=b"SSH-2.0-OpenSSH_8.9\r\n"))
        assert check_single_matcher(matcher(type="network", pattern=r"SSH-2\.0-OpenSSH"), ctx) is True
        assert check_single_matcher(matcher(type="network", binary=["5353482d"]), ctx) is True

    def test_headless_requires_every_criterion(self):
        ctx = MatchContext(headless=HeadlessResponse(html="<div id='app'>Ready</div>"))
        assert check_single_matcher(matcher(type="headless", pattern="Ready"), ctx) is True
        assert check_single_matcher(matcher(type="headless", pattern="Ready", words=["missing"]), ctx) is False

    def test_invalid_pattern_falls_back_to_substring(self):
        ctx = MatchContext(network=NetworkResponse(data=b"xa[by"))
        assert check_single_matcher(matcher(type="network", pattern="a[b"), ctx) is True

    def test_inapplicable_to_other_protocols(self):
        assert check_single_matcher(matcher(type="dns", pattern="x"), http_ctx(body=b"x")) is False
        assert check_single_matcher(matcher(type="network", pattern="x"), http_ctx(body=b"x")) is False


class TestDSLMatcher:
    def test_expressions_combine_with_condition(self):
        ctx = http_ctx(200, b"ok")
        both = matcher(type="dsl", dsl=["status_code == 200", 'contains(body, "ok")'])
        either = matcher(type="dsl", dsl=["status_code == 500", 'contains(body, "ok")'], condition="or")
        neither = matcher(type="dsl", dsl=["status_code == 500", 'contains(body, "ok")'])
        assert check_single_matcher(both, ctx) is True
        assert check_single_matcher(either, ctx) is True
        assert check_single_matcher(neither, ctx) is False

    def test_non_boolean_expression_is_logged_not_raised(self, caplog):
        m = matcher(type="dsl", dsl=["len(body)"])
        assert check_single_matcher(m, http_ctx(200, b"ok")) is False
        assert "DSL evaluation error" in caplog.text


@pytest.mark.parametrize("matcher_type, cls", [
    ("status", StatusMatcher),
    ("word", WordMatcher),
    ("binary", BinaryMatcher),
    ("json", JsonMatcher),
    ("dsl", DSLMatcher),
])
def test_create_matcher_dispatch(matcher_type, cls):
    assert isinstance(create_matcher(matcher(type=matcher_type)), cls)


class TestOfflinePrefilter:
    def request(self, **fields):
        fields.setdefault("matchers", [{"type": "word", "words": ["Acme"]}])
        return RequestConfig.model_validate(fields)

    def test_root_page_word_request_can_match_offline(self):
        assert can_offline_match_request(self.request(path=["{{BaseURL}}"])) is True
        assert can_offline_match_request(self.request(path=["{{BaseURL}}/"])) is True
        assert can_offline_match_request(self.request()) is True

    def test_other_paths_need_a_live_request(self):
        assert can_offline_match_request(self.request(path=["{{BaseURL}}/admin"])) is False
        assert can_offline_match_request(self.request(path=["{{BaseURL}}", "{{BaseURL}}/login"])) is False

    def test_non_body_matchers_need_a_live_request(self):
        status = [{"type": "status", "status": [200]}]
        header = [{"type": "word", "part": "header", "words": ["nginx"]}]
        assert can_offline_match_request(self.request(matchers=status)) is False
        assert can_offline_match_request(self.request(matchers=header)) is False
        assert can_offline_match_request(self.request(matchers=[])) is False

    def test_non_get_requests_need_a_live_request(self):
        assert can_offline_match_request(self.request(method="POST")) is False
        assert can_offline_match_request(self.request(body="a=1")) is False

    def test_match_offline_html(self):
        request = self.request(path=["{{BaseURL}}"])
        assert match_offline_html("<title>Acme Portal</title>", request) is True
        assert match_offline_html("<title>Other</title>", request) is False
        assert match_offline_html("", request) is False
