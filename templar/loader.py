"""Template discovery and parsing."""

import logging
from pathlib import Path
from typing import List, Optional, Union

import yaml
from pydantic import ValidationError

from templar.config import ProfileDocument, Template
from templar.errors import ProfileDocumentError, TemplateLoadError
from templar.utils import logger as default_logger

TEMPLATE_EXTENSIONS = (".yaml", ".yml")


def is_profile_document(path: Path) -> bool:
    """True for scan-profile selector files (severity/type/exclude-id lists)."""
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError):
        return False
    if not isinstance(data, dict) or "id" in data:
        return False
    try:
        return ProfileDocument.model_validate(data).is_profile
    except ValidationError:
        return False


def load_template(path: Union[str, Path]) -> Template:
    """Parse one template file.

    Raises:
        ProfileDocumentError: the file is a scan profile, not a template
        TemplateLoadError: the file cannot be read or is not a valid template
    """
    path = Path(path)
    try:
        return Template.from_yaml(path)
    except (OSError, yaml.YAMLError, ValueError) as e:
        if is_profile_document(path):
            raise ProfileDocumentError(str(path)) from e
        raise TemplateLoadError(str(path), str(e)) from e


def discover_template_files(root: Path) -> List[Path]:
    if root.is_file():
        return [root]
    return sorted(
        p for p in root.rglob("*")
        if p.is_file() and p.suffix.lower() in TEMPLATE_EXTENSIONS
    )


def load_templates(
    path: Union[str, Path],
    logger: Optional[logging.Logger] = None,
) -> List[Template]:
    """Load every template under ``path`` (a file or a directory tree).

    A file that fails to parse is logged and skipped; profile documents are
    skipped silently.
    """
    logger = logger or default_logger
    root = Path(path)
    if not root.exists():
        raise TemplateLoadError(str(root), "no such file or directory")

    templates = []
    skipped = 0

    for template_file in discover_template_files(root):
        try:
            template = load_template(template_file)
        except ProfileDocumentError:
            logger.debug(f"Skipping profile file {template_file}")
            continue
        except TemplateLoadError as e:
            skipped += 1
            logger.info(f"Skipping invalid template {template_file.name}: {e.reason}")
            continue
        templates.append(template)
        logger.debug(f"Loaded template: {template.id}")

    logger.debug(f"Loaded {len(templates)} templates ({skipped} skipped)")
    return templates
