import pytest

from app.adrhub.auth import Principal
from app.adrhub.constants import GlobalRole, ProjectRole
from app.adrhub.errors import AuthorizationDenied
from app.adrhub.modules.projects.store import MembershipStore
from app.adrhub.rbac import AccessEvaluator, access_evaluator_for


class FakeMemberships:
    def __init__(self, roles):
        self.roles = roles  # {(project_id, user_id): ProjectRole}

    def get_role(self, project_id, user_id):
        return self.roles.get((project_id, user_id))

    def list_members(self, project_id):
        return []

    def project_ids_for_user(self, user_id):
        return sorted(p for p, u in self.roles if u == user_id)


ALICE = Principal(id=1, display_name="Alice", global_role=GlobalRole.VIEWER)
ROOT = Principal(id=9, display_name="Root", global_role=GlobalRole.ADMIN)


@pytest.fixture()
def evaluator():
    return AccessEvaluator(
        FakeMemberships(
            {
                (10, 1): ProjectRole.EDITOR,
                (20, 1): ProjectRole.VIEWER,
            }
        )
    )


def test_resolve_role_from_membership(evaluator):
    assert evaluator.resolve_role(ALICE, 10) is ProjectRole.EDITOR
    assert evaluator.resolve_role(ALICE, 20) is ProjectRole.VIEWER
    assert evaluator.resolve_role(ALICE, 30) is None


def test_global_admin_is_admin_everywhere(evaluator):
    assert evaluator.resolve_role(ROOT, 30) is ProjectRole.ADMIN
    assert evaluator.authorize(ROOT, 30, ProjectRole.ADMIN).allowed


def test_global_admin_bypass_can_be_disabled():
    ev = AccessEvaluator(FakeMemberships({}), global_admin_bypass=False)
    assert ev.resolve_role(ROOT, 10) is None
    assert not ev.authorize(ROOT, 10).allowed


def test_no_membership_denies_even_without_minimum(evaluator):
    d = evaluator.authorize(ALICE, 30)
    assert not d.allowed
    assert d.reason == "no access"


@pytest.mark.parametrize(
    "minimum,allowed",
    [
        (None, True),
        (ProjectRole.VIEWER, True),
        (ProjectRole.EDITOR, True),
        (ProjectRole.ADMIN, False),
    ],
)
def test_role_hierarchy(evaluator, minimum, allowed):
    d = evaluator.authorize(ALICE, 10, minimum)
    assert d.allowed is allowed
    assert d.role is ProjectRole.EDITOR


def test_require_raises_without_leaking_role(evaluator):
    with pytest.raises(AuthorizationDenied) as ei:
        evaluator.require(ALICE, 20, ProjectRole.EDITOR)
    assert ei.value.message == "insufficient permissions"
    assert ei.value.reason == "requires editor"
    assert ei.value.to_dict() == {"error": "authorization_denied", "message": "insufficient permissions"}


def test_require_returns_effective_role(evaluator):
    assert evaluator.require(ALICE, 10, ProjectRole.VIEWER) is ProjectRole.EDITOR


def test_accessible_project_ids(evaluator):
    assert evaluator.accessible_project_ids(ALICE) == [10, 20]
    assert evaluator.accessible_project_ids(ROOT) is None
    no_bypass = AccessEvaluator(FakeMemberships({}), global_admin_bypass=False)
    assert no_bypass.accessible_project_ids(ROOT) == []


def test_membership_store_backed_evaluator(app, session, world):
    ev = access_evaluator_for(session, app.config)
    assert ev.resolve_role(world.owner, world.project_id) is ProjectRole.ADMIN
    assert ev.resolve_role(world.editor, world.project_id) is ProjectRole.EDITOR
    assert ev.resolve_role(world.viewer, world.project_id) is ProjectRole.VIEWER
    assert ev.resolve_role(world.outsider, world.project_id) is None
    assert ev.resolve_role(world.root, world.project_id) is ProjectRole.ADMIN


def test_bypass_flag_comes_from_config(app, session, world):
    ev = access_evaluator_for(session, {"GLOBAL_ADMIN_BYPASS": False})
    assert ev.resolve_role(world.root, world.project_id) is None
    assert isinstance(ev.memberships, MembershipStore)
