"""Kubeconfig parsing and temporary materialisation for kubectl."""

import os
import tempfile
from types import TracebackType
from typing import Any, Literal

import yaml

from ..common.exceptions import ClusterConfigError
from ..common.logging import get_logger

logger = get_logger(__name__)


def load_kubeconfig(content: str) -> dict[str, Any]:
    """Parse kubeconfig content.

    Raises:
        ClusterConfigError: If the content is not a kubeconfig document
    """
    if not content or not content.strip():
        raise ClusterConfigError("Kubeconfig content is empty")

    try:
        document = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ClusterConfigError(f"Failed to parse kubeconfig: {e}") from e

    if not isinstance(document, dict):
        raise ClusterConfigError("Failed to parse kubeconfig: not a mapping")
    return document


def list_contexts(content: str) -> list[str]:
    """Return the context names declared in kubeconfig content.

    Raises:
        ClusterConfigError: If the kubeconfig cannot be parsed
    """
    document = load_kubeconfig(content)
    contexts = document.get("contexts") or []
    if not isinstance(contexts, list):
        raise ClusterConfigError("Failed to parse kubeconfig: 'contexts' is not a list")

    names = []
    for entry in contexts:
        if isinstance(entry, dict) and entry.get("name"):
            names.append(str(entry["name"]))
    return names


def validate_context(content: str, context: str | None) -> None:
    """Check that ``context`` (when given) exists in the kubeconfig.

    Raises:
        ClusterConfigError: If parsing fails or the context is missing
    """
    names = list_contexts(content)
    if context and context not in names:
        raise ClusterConfigError(f"Context '{context}' not found in kubeconfig")
    if not context and not names:
        raise ClusterConfigError("Kubeconfig declares no contexts")


class KubeconfigFile:
    """Writes kubeconfig content to a private temporary file for kubectl.

    The file lives until ``cleanup`` (or context exit).
    """

    def __init__(self, content: str):
        self._content = content
        self._path: str | None = None

    @property
    def path(self) -> str | None:
        return self._path

    def write(self) -> str:
        """Materialise the file, returning its path."""
        if self._path is not None:
            return self._path

        fd, path = tempfile.mkstemp(prefix="kube-bridge-", suffix=".kubeconfig")
        try:
            with os.fdopen(fd, "w") as f:
                f.write(self._content)
            os.chmod(path, 0o600)
        except OSError:
            os.unlink(path)
            raise
        self._path = path
        logger.debug("Kubeconfig written", path=path)
        return path

    def cleanup(self) -> None:
        """Remove the file if it was written."""
        if self._path is None:
            return
        try:
            os.unlink(self._path)
        except FileNotFoundError:
            pass
        logger.debug("Kubeconfig removed", path=self._path)
        self._path = None

    def __enter__(self) -> "KubeconfigFile":
        self.write()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> Literal[False]:
        self.cleanup()
        return False
