"""
Central constants for the ADR Hub application.
"""
from __future__ import annotations

from enum import Enum


class DecisionStatus(str, Enum):
    DRAFT = "draft"
    PROPOSED = "proposed"
    IN_REVIEW = "in_review"
    ACCEPTED = "accepted"
    DEPRECATED = "deprecated"
    SUPERSEDED = "superseded"


class ProjectRole(str, Enum):
    ADMIN = "admin"
    EDITOR = "editor"
    VIEWER = "viewer"

    @property
    def rank(self) -> int:
        return _ROLE_RANK[self]


_ROLE_RANK = {
    ProjectRole.ADMIN: 3,
    ProjectRole.EDITOR: 2,
    ProjectRole.VIEWER: 1,
}


class GlobalRole(str, Enum):
    ADMIN = "admin"
    EDITOR = "editor"
    VIEWER = "viewer"


class EntityType(str, Enum):
    ADR = "adr"
    PROJECT = "project"
    PROJECT_MEMBER = "project_member"
    USER = "user"
    COMMENT = "comment"
    RELATION = "relation"


class RelationType(str, Enum):
    SUPERSEDES = "supersedes"
    SUPERSEDED_BY = "superseded_by"
    CONFLICTS_WITH = "conflicts_with"
    DEPENDS_ON = "depends_on"
    RELATED_TO = "related_to"


# Reasons recorded on version snapshots
INITIAL_CHANGE_REASON = "Initial creation"
DEFAULT_EDIT_REASON = "Content update"

# Notification types
NOTIFY_STATUS_CHANGED = "status_changed"
NOTIFY_MEMBER_ADDED = "member_added"

INITIAL_VERSION = "1.0"

PROJECT_KEY_MAX_LENGTH = 10
PROJECT_NAME_MAX_LENGTH = 100
TITLE_MAX_LENGTH = 200
TEAM_MAX_LENGTH = 100

# Cross-project search
SEARCH_SORTS = ("newest", "oldest", "title", "updated")
SEARCH_DEFAULT_LIMIT = 20
SEARCH_MAX_LIMIT = 100
