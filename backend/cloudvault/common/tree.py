from __future__ import annotations

from flask import current_app
from sqlalchemy import literal, select

from ..extensions import db
from ..models import Folder
from .errors import IntegrityViolation


def _default_depth() -> int:
    return int(current_app.config.get("MAX_FOLDER_DEPTH", 64))


class FolderAncestry:
    """Parent-pointer lookups for the folder tree.

    Ancestor chains are fetched with one recursive query per cold start folder and
    memoised, so walking several items under the same subtree costs one round trip.
    Walks are iterative and bounded by ``max_depth``; a repeated id or an overlong
    chain raises :class:`IntegrityViolation` instead of looping.
    """

    def __init__(self, max_depth: int | None = None) -> None:
        self.max_depth = max_depth or _default_depth()
        self._parents: dict[int, int | None] = {}

    def _load(self, folder_id: int) -> None:
        folders = Folder.__table__
        ancestry = (
            select(folders.c.id, folders.c.parent_id, literal(0).label("depth"))
            .where(folders.c.id == folder_id)
            .cte("ancestry", recursive=True)
        )
        step = folders.alias("parent_folder")
        ancestry = ancestry.union_all(
            select(step.c.id, step.c.parent_id, ancestry.c.depth + 1)
            .where(step.c.id == ancestry.c.parent_id)
            .where(ancestry.c.depth < self.max_depth)
        )
        for row in db.session.execute(select(ancestry.c.id, ancestry.c.parent_id)):
            self._parents.setdefault(row.id, row.parent_id)
        self._parents.setdefault(folder_id, None)

    def parent_of(self, folder_id: int) -> int | None:
        if folder_id not in self._parents:
            self._load(folder_id)
        return self._parents.get(folder_id)

    def chain(self, folder_id: int) -> list[int]:
        """Return ``folder_id`` followed by its ancestors, nearest first."""
        chain: list[int] = []
        seen: set[int] = set()
        cursor: int | None = folder_id
        while cursor is not None:
            if cursor in seen:
                raise IntegrityViolation("Cycle detected in folder ancestry.", {"folder_id": folder_id, "at": cursor})
            if len(chain) >= self.max_depth:
                raise IntegrityViolation("Folder ancestry exceeds maximum depth.", {"folder_id": folder_id, "max_depth": self.max_depth})
            seen.add(cursor)
            chain.append(cursor)
            cursor = self.parent_of(cursor)
        return chain

    def is_within(self, folder_id: int, ancestor_id: int) -> bool:
        return ancestor_id in self.chain(folder_id)


def descendant_levels(root_id: int, max_depth: int | None = None) -> list[list[int]]:
    """Folder ids under ``root_id`` grouped by depth, root level first.

    Includes trashed folders; callers filter by their own criteria.
    """
    depth_limit = max_depth or _default_depth()
    levels: list[list[int]] = [[root_id]]
    seen = {root_id}
    frontier = [root_id]
    while frontier:
        child_ids = list(db.session.scalars(select(Folder.id).where(Folder.parent_id.in_(frontier))))
        if not child_ids:
            break
        if len(levels) >= depth_limit:
            raise IntegrityViolation("Folder subtree exceeds maximum depth.", {"folder_id": root_id, "max_depth": depth_limit})
        for child_id in child_ids:
            if child_id in seen:
                raise IntegrityViolation("Cycle detected in folder subtree.", {"folder_id": root_id, "at": child_id})
            seen.add(child_id)
        levels.append(child_ids)
        frontier = child_ids
    return levels


def subtree_ids(root_id: int, max_depth: int | None = None) -> list[int]:
    return [folder_id for level in descendant_levels(root_id, max_depth) for folder_id in level]


def deepest_first(root_id: int, max_depth: int | None = None) -> list[int]:
    """Subtree folder ids ordered so every folder precedes its parent."""
    return [folder_id for level in reversed(descendant_levels(root_id, max_depth)) for folder_id in level]
