"""
tableau_mcp/tools/bounded_context.py
====================================

Restricts the server to a configured subset of the site.

``INCLUDE_PROJECT_IDS``, ``INCLUDE_DATASOURCE_IDS`` and
``INCLUDE_WORKBOOK_IDS`` each narrow what the tools may return or touch.
``None`` means "no restriction"; a set is never empty (``Config.from_env``
rejects that).

Two kinds of checks:

- **List filtering** (``allows_*``) runs on items the server already
  returned; it needs no extra request because list responses embed the
  owning project (and, for views, the workbook).
- **Single-resource checks** (``check_*``) run before a tool reads one
  resource by id.  When projects are restricted the resource must be fetched
  to learn its project, so those results are not cached: content can move
  between projects.


Allowed results are cached for ten minutes, at most 1024 entries.
"""

import logging
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, FrozenSet, Mapping, Optional, Tuple

from ..errors import ApiError, ResourceNotAllowedError

logger = logging.getLogger(__name__)


def _id_of(item: Mapping[str, Any], key: str) -> str:
    return (item.get(key) or {}).get("id", "")


class ExpiringCache:
    """Small key/value cache whose entries expire ``ttl`` seconds after being set.

    At most ``max_entries`` are held; setting one more evicts the oldest.
    """

    def __init__(self, ttl: float = 600.0, max_entries: int = 1024,
                 clock: Callable[[], float] = time.monotonic):
        if ttl <= 0:
            raise ValueError("ttl must be greater than 0")
        self.ttl = ttl
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[float, Any]]" = OrderedDict()

    def get(self, key: str) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    def set(self, key: str, value: Any) -> None:
        self._entries.pop(key, None)
        self._entries[key] = (self._clock() + self.ttl, value)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        return len(self._entries)


class BoundedContext:
    """Allowed project, data source and workbook ids.

    Parameters
    ----------
    project_ids, datasource_ids, workbook_ids:
        Allowed ids per resource kind, or ``None`` for no restriction.
    """

    def __init__(
        self,
        project_ids: Optional[FrozenSet[str]] = None,
        datasource_ids: Optional[FrozenSet[str]] = None,
        workbook_ids: Optional[FrozenSet[str]] = None,
    ):
        self.project_ids = project_ids
        self.datasource_ids = datasource_ids
        self.workbook_ids = workbook_ids
        self._allowed_cache = ExpiringCache()

    @classmethod
    def from_config(cls, config) -> "BoundedContext":
        return cls(
            project_ids=config.include_project_ids,
            datasource_ids=config.include_datasource_ids,
            workbook_ids=config.include_workbook_ids,
        )

    @property
    def is_bounded(self) -> bool:
        return any(ids is not None for ids in (self.project_ids, self.datasource_ids, self.workbook_ids))

    # ── List filtering ────────────────────────────────────────────────────────

    def allows_project(self, project: Mapping[str, Any]) -> bool:
        return self.project_ids is None or project.get("id") in self.project_ids

    def allows_datasource(self, datasource: Mapping[str, Any]) -> bool:
        if self.datasource_ids is not None and datasource.get("id") not in self.datasource_ids:
            return False
        return self.project_ids is None or _id_of(datasource, "project") in self.project_ids

    def allows_workbook(self, workbook: Mapping[str, Any]) -> bool:
        if self.workbook_ids is not None and workbook.get("id") not in self.workbook_ids:
            return False
        return self.project_ids is None or _id_of(workbook, "project") in self.project_ids

    def allows_view(self, view: Mapping[str, Any]) -> bool:
        if self.workbook_ids is not None and _id_of(view, "workbook") not in self.workbook_ids:
            return False
        return self.project_ids is None or _id_of(view, "project") in self.project_ids

    def allows_search_hit(self, hit: Mapping[str, Any]) -> bool:
        """Search hits name their project but carry no project id, so a project
        restriction drops them all.  A view hit carries no workbook id either.
        """
        if self.project_ids is not None:
            return False
        kind, luid = hit.get("type"), hit.get("luid")
        if kind == "datasource" and self.datasource_ids is not None:
            return luid in self.datasource_ids
        if kind == "workbook" and self.workbook_ids is not None:
            return luid in self.workbook_ids
        if kind == "view" and self.workbook_ids is not None:
            return False
        return True

    # ── Single-resource checks ────────────────────────────────────────────────

    async def check_datasource(self, client, datasource_luid: str) -> None:
        """Raise ``ResourceNotAllowedError`` unless the data source may be queried."""
        if self._allowed_cache.get(f"datasource:{datasource_luid}"):
            return
        prefix = "The set of allowed data sources that can be queried is limited by the server configuration."

        if self.datasource_ids is not None and datasource_luid not in self.datasource_ids:
            raise ResourceNotAllowedError(
                f"{prefix} Querying the datasource with LUID {datasource_luid} is not allowed."
            )

        if self.project_ids is not None:
            try:
                datasource = await client.get_datasource(datasource_luid)
            except ApiError as e:
                raise ResourceNotAllowedError(
                    f"{prefix} An error occurred while checking if the datasource with LUID "
                    f"{datasource_luid} is in an allowed project: {e}"
                ) from e
            if _id_of(datasource, "project") not in self.project_ids:
                raise ResourceNotAllowedError(
                    f"{prefix} The datasource with LUID {datasource_luid} cannot be queried "
                    f"because it does not belong to an allowed project."
                )
        else:
            self._allowed_cache.set(f"datasource:{datasource_luid}", True)

    async def check_workbook(self, client, workbook_id: str) -> Optional[Dict[str, Any]]:
        """Raise ``ResourceNotAllowedError`` unless the workbook may be read.

        Returns the workbook when it had to be fetched for the project check,
        so the caller does not fetch it twice.
        """
        if self._allowed_cache.get(f"workbook:{workbook_id}"):
            return None
        prefix = "The set of allowed workbooks that can be queried is limited by the server configuration."

        if self.workbook_ids is not None and workbook_id not in self.workbook_ids:
            raise ResourceNotAllowedError(f"{prefix} Querying the workbook with LUID {workbook_id} is not allowed.")

        if self.project_ids is None:
            self._allowed_cache.set(f"workbook:{workbook_id}", True)
            return None

        try:
            workbook = await client.get_workbook(workbook_id)
        except ApiError as e:
            raise ResourceNotAllowedError(
                f"{prefix} An error occurred while checking if the workbook with LUID "
                f"{workbook_id} is in an allowed project: {e}"
            ) from e
        if _id_of(workbook, "project") not in self.project_ids:
            raise ResourceNotAllowedError(
                f"{prefix} The workbook with LUID {workbook_id} cannot be queried "
                f"because it does not belong to an allowed project."
            )
        return workbook

    async def check_view(self, client, view_id: str) -> None:
        """Raise ``ResourceNotAllowedError`` unless the view's workbook and project are allowed."""
        if self._allowed_cache.get(f"view:{view_id}"):
            return
        if self.workbook_ids is None and self.project_ids is None:
            return
        prefix = "The set of allowed views that can be queried is limited by the server configuration."

        try:
            view = await client.get_view(view_id)
        except ApiError as e:
            raise ResourceNotAllowedError(
                f"{prefix} An error occurred while checking if the view with LUID {view_id} is allowed: {e}"
            ) from e

        if self.workbook_ids is not None and _id_of(view, "workbook") not in self.workbook_ids:
            raise ResourceNotAllowedError(
                f"{prefix} The view with LUID {view_id} cannot be queried "
                f"because it does not belong to an allowed workbook."
            )
        if self.project_ids is not None and _id_of(view, "project") not in self.project_ids:
            raise ResourceNotAllowedError(
                f"{prefix} The view with LUID {view_id} cannot be queried "
                f"because it does not belong to an allowed project."
            )
        if self.project_ids is None:
            self._allowed_cache.set(f"view:{view_id}", True)
