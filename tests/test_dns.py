"""Tests for the DNS executor."""

from types import SimpleNamespace

import dns.exception
import dns.name
import dns.resolver
import httpx
import pytest

from templar.config import RequestConfig
from templar.errors import RequestError, TransientRequestError
from templar.protocols import dns as dns_executor
from templar.protocols.dns import match_dns_request, query_type_for, resolve_records
from templar.scanner import TemplateEngine, find_matching_templates
from templar.utils import logger
from templar.variables import VariableScope


def dns_request(**fields):
    return RequestConfig.model_validate({"type": "dns", **fields})


def fake_records(records, seen=None):
    def resolve(host, query_type, timeout):
        if seen is not None:
            seen.append((host, query_type))
        return list(records)
    return resolve


def test_query_type_selection():
    assert query_type_for(dns_request(query_type="txt")) == "TXT"
    assert query_type_for(dns_request(path=["mx"])) == "MX"
    assert query_type_for(dns_request()) == "A"
    assert query_type_for(RequestConfig.model_validate({"type": "CNAME"})) == "CNAME"


@pytest.mark.asyncio
async def test_unsupported_query_type_is_a_plain_non_match(monkeypatch):
    def must_not_resolve(host, query_type, timeout):
        raise AssertionError("resolver should not be called")

    monkeypatch.setattr(dns_executor, "resolve_records", must_not_resolve)
    request = dns_request(query_type="PTR", matchers=[{"type": "dns", "pattern": "x"}])

    matched = await match_dns_request("example.com", request, "ptr", VariableScope(), 1.0, logger)

    assert matched is False


@pytest.mark.asyncio
async def test_txt_records_are_matched(monkeypatch):
    seen = []
    monkeypatch.setattr(dns_executor, "resolve_records", fake_records(["v=spf1 include:mail.test -all"], seen))
    request = dns_request(query_type="TXT", matchers=[{"type": "dns", "pattern": "v=spf1"}])

    matched = await match_dns_request("example.com", request, "spf", VariableScope(), 1.0, logger)

    assert matched is True
    assert seen == [("example.com", "TXT")]


@pytest.mark.asyncio
async def test_matched_records_feed_extractors(monkeypatch):
    monkeypatch.setattr(dns_executor, "resolve_records", fake_records(["mail.example.com."]))
    scope = VariableScope()
    request = dns_request(
        query_type="MX",
        matchers=[{"type": "dns", "words": ["mail"]}],
        extractors=[{"type": "regex", "name": "mx", "regex": [r"^([\w.]+)\.$"]}],
    )

    assert await match_dns_request("example.com", request, "mx", scope, 1.0, logger) is True
    assert scope.substitute("{{mx}}") == "mail.example.com"


@pytest.mark.asyncio
async def test_lookup_failure_is_contained_by_the_engine(monkeypatch, settings, make_services, make_template):
    def nxdomain(host, query_type, timeout):
        raise RequestError(f"DNS lookup error for host {host}")

    monkeypatch.setattr(dns_executor, "resolve_records", nxdomain)
    template = make_template(
        "dns-check",
        dns=[{"type": "A", "matchers": [{"type": "dns", "pattern": "."}]}],
    )
    engine = TemplateEngine("http://missing.test", template, settings, make_services(None))

    assert await engine.match() is False


class FakeResolver:
    answers = []
    error = None

    def __init__(self):
        self.timeout = None
        self.lifetime = None

    def resolve(self, host, query_type):
        if FakeResolver.error is not None:
            raise FakeResolver.error
        return FakeResolver.answers


@pytest.fixture
def fake_resolver(monkeypatch):
    FakeResolver.answers = []
    FakeResolver.error = None
    monkeypatch.setattr(dns.resolver, "Resolver", FakeResolver)
    return FakeResolver


def test_resolve_records_formats_rdata(fake_resolver):
    fake_resolver.answers = [SimpleNamespace(to_text=lambda: "93.184.216.34")]
    assert resolve_records("example.com", "A", 1.0) == ["93.184.216.34"]

    fake_resolver.answers = [SimpleNamespace(strings=(b"v=spf1 ", b"-all"))]
    assert resolve_records("example.com", "TXT", 1.0) == ["v=spf1 -all"]

    target = SimpleNamespace(to_text=lambda: "alias.example.net.")
    fake_resolver.answers = [SimpleNamespace(target=target)]
    assert resolve_records("example.com", "CNAME", 1.0) == ["alias.example.net."]

    exchange = SimpleNamespace(to_text=lambda: "mx.example.com.")
    fake_resolver.answers = [SimpleNamespace(exchange=exchange)]
    assert resolve_records("example.com", "MX", 1.0) == ["mx.example.com."]


def test_resolve_records_error_mapping(fake_resolver):
    fake_resolver.error = dns.resolver.NoAnswer()
    assert resolve_records("example.com", "AAAA", 1.0) == []

    fake_resolver.error = dns.exception.Timeout()
    with pytest.raises(TransientRequestError):
        resolve_records("example.com", "A", 1.0)

    fake_resolver.error = dns.resolver.NXDOMAIN()
    with pytest.raises(RequestError):
        resolve_records("missing.example", "A", 1.0)

    fake_resolver.error = dns.name.LabelTooLong()
    with pytest.raises(RequestError):
        resolve_records("example.com", "A", 1.0)


def test_malformed_host_name_is_a_request_error():
    with pytest.raises(RequestError):
        resolve_records("a" * 64 + ".example.com", "A", 1.0)


@pytest.mark.asyncio
async def test_malformed_host_name_does_not_stop_other_templates(
    settings, make_services, make_template, status_template
):
    target = "http://" + "a" * 64 + ".example.com"
    lookup = make_template("dns-a", dns=[{"type": "A", "matchers": [{"type": "dns", "pattern": "."}]}])
    services = make_services(lambda request: httpx.Response(200))

    matched = await find_matching_templates(target, [lookup, status_template], settings, services)

    assert [t.id for t in matched] == ["admin-panel"]
