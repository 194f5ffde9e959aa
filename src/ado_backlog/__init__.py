"""ado-backlog: export Azure DevOps backlogs as structured, navigable documents."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("ado-backlog")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"

from ado_backlog.backlog import Backlog
from ado_backlog.model import BacklogWorkItem

__all__ = ["Backlog", "BacklogWorkItem", "__version__"]
