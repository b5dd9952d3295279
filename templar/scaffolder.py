import re
from pathlib import Path
from typing import Any, Dict, Optional, Union
from urllib.parse import urlparse

import httpx
import yaml
from lxml import etree
from lxml import html as lxml_html

from templar.errors import RequestError
from templar.protocols.http import DEFAULT_HEADERS, REQUEST_ERRORS

DEFAULT_TEMPLATE_FILE = "autogenerated-template.yaml"


def sanitize_name(name: str) -> str:
    return re.sub(r'[^a-z0-9_-]', '-', name.lower()).strip('-')


def template_id_for(url: str) -> str:
    host = urlparse(url).hostname or "target"
    return f"autogenerated-{sanitize_name(host)}"


def extract_title(content: Union[bytes, str]) -> str:
    """Return the text of the first ``<title>`` element, or an empty string."""
    if not content:
        return ""
    if isinstance(content, str):
        content = content.encode("utf-8", errors="ignore")
    try:
        doc = lxml_html.document_fromstring(content)
    except (etree.ParserError, etree.XMLSyntaxError, ValueError):
        return ""
    title = doc.findtext(".//title")
    return " ".join(title.split()) if title else ""


def build_title_template(url: str, title: str) -> Dict[str, Any]:
    return {
        'id': template_id_for(url),
        'info': {
            'name': title,
            'author': 'templar',
            'severity': 'info',
            'tags': ['autogenerated'],
        },
        'http': [
            {
                'method': 'GET',
                'path': ['{{BaseURL}}'],
                'matchers-condition': 'and',
                'matchers': [
                    {'type': 'word', 'part': 'body', 'words': [title]},
                    {'type': 'status', 'status': [200]},
                ],
            },
        ],
    }


def render_template(template: Dict[str, Any]) -> str:
    # safe_dump quotes titles containing ':', '#', quotes or leading symbols
    return yaml.safe_dump(
        template,
        default_flow_style=False,
        sort_keys=False,
        allow_unicode=True,
    )


async def fetch_title(client: httpx.AsyncClient, url: str) -> str:
    try:
        response = await client.get(url, headers=DEFAULT_HEADERS)
    except REQUEST_ERRORS as e:
        raise RequestError(f"Failed to fetch {url}: {e}") from e
    return extract_title(response.content)


async def scaffold_template(
    client: httpx.AsyncClient,
    url: str,
    output: Optional[Union[str, Path]] = None,
) -> str:
    """Fetch ``url`` and generate a template matching its page title.

    The YAML text is returned, and also written to ``output`` when given.
    Raises RequestError when the page cannot be fetched or has no title.
    """
    title = await fetch_title(client, url)
    if not title:
        raise RequestError(f"No <title> found at {url}")

    text = render_template(build_title_template(url, title))

    if output:
        output_path = Path(output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, 'w', encoding='utf-8') as f:
            f.write(text)

    return text
