"""Rendering of the manifest templates into Kubernetes objects."""

from __future__ import annotations

from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml
from jinja2 import TemplateError
from structlog.stdlib import BoundLogger

from ..constants import MANIFEST_SUFFIXES
from ..exceptions import RenderError
from ..models.domain.renderdata import RenderData
from ..templates import create_environment

__all__ = [
    "ManifestRenderer",
    "get_manifest_files",
]


def get_manifest_files(manifest_dir: Path) -> list[Path]:
    """Find the manifest templates in a directory.

    Parameters
    ----------
    manifest_dir
        Directory to walk recursively.

    Returns
    -------
    list of pathlib.Path
        Template files, sorted lexicographically by their path so that
        numeric prefixes control the order in which objects are applied.

    Raises
    ------
    RenderError
        Raised if the directory does not exist.
    """
    if not manifest_dir.is_dir():
        raise RenderError(manifest_dir, "manifest directory does not exist")
    return sorted(
        p
        for p in manifest_dir.rglob("*")
        if p.is_file() and p.suffix in MANIFEST_SUFFIXES
    )


class ManifestRenderer:
    """Renders a directory of manifest templates.

    Parameters
    ----------
    manifest_dir
        Directory of Jinja templates.
    logger
        Logger to use.
    """

    def __init__(self, manifest_dir: Path, logger: BoundLogger) -> None:
        self._manifest_dir = manifest_dir
        self._environment = create_environment(manifest_dir)
        self._logger = logger

    def render(self, data: RenderData) -> list[dict[str, Any]]:
        """Render every template with the given data.

        Each field of the data is available to the templates as a top-level
        variable. A template may produce any number of YAML documents. Empty
        documents and documents without a ``kind`` are skipped, so templates
        can disable themselves with a conditional.

        Parameters
        ----------
        data
            Data for the templates.

        Returns
        -------
        list of dict
            Rendered objects in template order.

        Raises
        ------
        RenderError
            Raised if a template could not be read or rendered, or if its
            output is not a sequence of YAML mappings.
        """
        variables = {f.name: getattr(data, f.name) for f in fields(data)}
        objects = []
        for path in get_manifest_files(self._manifest_dir):
            name = path.relative_to(self._manifest_dir).as_posix()
            try:
                template = self._environment.get_template(name)
                output = template.render(variables)
            except (OSError, TemplateError) as e:
                raise RenderError(path, str(e)) from e
            if not output.strip():
                self._logger.debug("Skipping empty manifest", path=name)
                continue
            try:
                documents = list(yaml.safe_load_all(output))
            except yaml.YAMLError as e:
                raise RenderError(path, str(e)) from e
            for document in documents:
                if document is None:
                    continue
                if not isinstance(document, dict):
                    msg = "rendered document is not a mapping"
                    raise RenderError(path, msg)
                if not document.get("kind"):
                    continue
                objects.append(document)
        self._logger.debug("Rendered manifests", count=len(objects))
        return objects
