"""Tests for generating a template from a page title."""

import httpx
import pytest
import yaml

from templar.config import Template
from templar.errors import RequestError
from templar.scaffolder import (
    build_title_template,
    extract_title,
    sanitize_name,
    scaffold_template,
    template_id_for,
)

TRICKY_TITLE = 'Admin: "Login" # Panel'


def client_for(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def test_extract_title():
    assert extract_title(b"<html><head><title>  Acme\n  Portal </title></head></html>") == "Acme Portal"
    assert extract_title("<html><body>no title</body></html>") == ""
    assert extract_title(b"") == ""


def test_template_id_for():
    assert template_id_for("https://Shop.Example.com:8443/login") == "autogenerated-shop-example-com"
    assert sanitize_name("My Site!") == "my-site"


def test_build_title_template():
    template = build_title_template("https://acme.test", "Acme")

    assert template["id"] == "autogenerated-acme-test"
    assert template["info"]["severity"] == "info"
    request = template["http"][0]
    assert request["path"] == ["{{BaseURL}}"]
    assert request["matchers"][0] == {"type": "word", "part": "body", "words": ["Acme"]}
    assert request["matchers"][1] == {"type": "status", "status": [200]}


@pytest.mark.asyncio
async def test_scaffold_round_trips_through_the_loader(tmp_path):
    page = f"<html><head><title>{TRICKY_TITLE}</title></head></html>"
    output = tmp_path / "out" / "generated.yaml"

    async with client_for(lambda request: httpx.Response(200, text=page)) as client:
        text = await scaffold_template(client, "https://acme.test", output)

    assert output.read_text(encoding="utf-8") == text
    data = yaml.safe_load(text)
    assert data["info"]["name"] == TRICKY_TITLE

    template = Template.from_yaml(output)
    assert template.id == "autogenerated-acme-test"
    assert template.requests[0].matchers[0].words == [TRICKY_TITLE]
    assert template.requests[0].matchers_condition.value == "and"


@pytest.mark.asyncio
async def test_scaffold_without_output_only_returns_text(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    async with client_for(lambda request: httpx.Response(200, text="<title>Acme</title>")) as client:
        text = await scaffold_template(client, "https://acme.test")

    assert "Acme" in text
    assert list(tmp_path.iterdir()) == []


@pytest.mark.asyncio
async def test_page_without_title():
    async with client_for(lambda request: httpx.Response(200, text="<p>hi</p>")) as client:
        with pytest.raises(RequestError, match="No <title>"):
            await scaffold_template(client, "https://acme.test")


@pytest.mark.asyncio
async def test_fetch_failure():
    def handler(request):
        raise httpx.ConnectError("Connection refused", request=request)

    async with client_for(handler) as client:
        with pytest.raises(RequestError, match="Failed to fetch"):
            await scaffold_template(client, "https://acme.test")
