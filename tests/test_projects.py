import pytest

from app.adrhub.constants import ProjectRole
from app.adrhub.errors import AuthorizationDenied, Conflict, NotFound, ValidationFailed
from app.adrhub.models import AuditEntry, Notification
from app.adrhub.modules.decision_records.models import DecisionRecord, VersionSnapshot
from app.adrhub.modules.decision_records.service import decision_record_service
from app.adrhub.modules.projects.models import Project, ProjectMembership
from app.adrhub.modules.projects.service import project_service
from app.adrhub.modules.projects.store import MembershipStore


@pytest.fixture()
def svc(app, session, world):
    return project_service(session, app.config)


def test_global_admin_creates_project_and_becomes_admin(svc, session, world):
    p = svc.create_project({"name": "Identity", "key": "IDP", "description": "Auth stuff"}, world.root)

    assert p.key == "IDP"
    assert p.record_counter == 0
    assert MembershipStore(session).get_role(p.id, world.root.id) is ProjectRole.ADMIN
    entry = session.query(AuditEntry).filter(AuditEntry.entity_type == "project").one()
    assert entry.action == "created"
    assert entry.entity_id == str(p.id)


def test_only_global_admin_creates_projects(svc, world):
    with pytest.raises(AuthorizationDenied):
        svc.create_project({"name": "Identity", "key": "IDP"}, world.owner)


@pytest.mark.parametrize(
    "payload,field",
    [
        ({"name": "", "key": "OK"}, "name"),
        ({"name": "x" * 101, "key": "OK"}, "name"),
        ({"name": "Ok", "key": ""}, "key"),
        ({"name": "Ok", "key": "ABCDEFGHIJK"}, "key"),
        ({"name": "Ok", "key": "PAY-2"}, "key"),
    ],
)
def test_project_validation(svc, world, payload, field):
    with pytest.raises(ValidationFailed) as ei:
        svc.create_project(payload, world.root)
    assert field in ei.value.field_errors


def test_lowercase_key_is_rejected_not_rewritten(svc, session, world):
    with pytest.raises(ValidationFailed) as ei:
        svc.create_project({"name": "Lower", "key": "pay2"}, world.root)
    assert ei.value.field_errors["key"] == "Key must be uppercase letters and numbers only."
    assert session.query(Project).filter(Project.key == "PAY2").count() == 0


def test_duplicate_key_conflicts(svc, world):
    with pytest.raises(Conflict) as ei:
        svc.create_project({"name": "Payments 2", "key": " PAY "}, world.root)
    assert ei.value.message == "project key already in use"


def test_list_projects_scoped_to_memberships(svc, world):
    second = svc.create_project({"name": "Identity", "key": "IDP"}, world.root)

    assert [p.id for p in svc.list_projects(world.root)] == [second.id, world.project_id]
    assert [p.id for p in svc.list_projects(world.viewer)] == [world.project_id]
    assert svc.list_projects(world.outsider) == []


def test_update_project_requires_project_admin(svc, session, world):
    with pytest.raises(AuthorizationDenied):
        svc.update_project(world.project_id, {"name": "Pay"}, world.editor)

    p = svc.update_project(world.project_id, {"name": "Payments Core", "description": "Money"}, world.owner)
    assert p.name == "Payments Core"
    assert p.key == "PAY"
    entry = session.query(AuditEntry).filter(AuditEntry.action == "updated").one()
    assert entry.entity_type == "project"


def test_add_member_notifies_and_audits(svc, session, world):
    m = svc.add_member(world.project_id, world.outsider.id, "editor", world.owner)

    assert m.role == "editor"
    assert MembershipStore(session).get_role(world.project_id, world.outsider.id) is ProjectRole.EDITOR
    note = session.query(Notification).filter(Notification.user_id == world.outsider.id).one()
    assert note.type == "member_added"
    assert note.href == f"/projects/{world.project_id}"
    entry = session.query(AuditEntry).filter(AuditEntry.entity_type == "project_member").one()
    assert entry.action == "added"


def test_add_member_errors(svc, world):
    with pytest.raises(Conflict) as ei:
        svc.add_member(world.project_id, world.viewer.id, "viewer", world.owner)
    assert ei.value.message == "user is already a member"
    with pytest.raises(NotFound):
        svc.add_member(world.project_id, 9999, "viewer", world.owner)
    with pytest.raises(ValidationFailed):
        svc.add_member(world.project_id, world.outsider.id, "owner", world.owner)
    with pytest.raises(AuthorizationDenied):
        svc.add_member(world.project_id, world.outsider.id, "viewer", world.editor)


def test_update_and_remove_member(svc, session, world):
    svc.update_member_role(world.project_id, world.viewer.id, "editor", world.owner)
    assert MembershipStore(session).get_role(world.project_id, world.viewer.id) is ProjectRole.EDITOR

    svc.remove_member(world.project_id, world.viewer.id, world.owner)
    assert MembershipStore(session).get_role(world.project_id, world.viewer.id) is None

    with pytest.raises(NotFound):
        svc.remove_member(world.project_id, world.viewer.id, world.owner)
    actions = [a.action for a in session.query(AuditEntry).filter(AuditEntry.entity_type == "project_member")]
    assert actions == ["role_updated", "removed"]


def test_members_listed_in_join_order(svc, world):
    rows = svc.list_members(world.project_id, world.viewer)
    assert [m.user_id for m in rows] == [world.owner.id, world.editor.id, world.viewer.id]


def test_delete_project_cascades(app, svc, session, world):
    records = decision_record_service(session, app.config)
    rec = records.create(
        world.project_id,
        {"title": "T", "context": "c", "decision": "d", "consequences": "q"},
        world.editor,
    )
    records.add_comment(rec.id, world.project_id, {"content": "hi"}, world.viewer)

    with pytest.raises(AuthorizationDenied):
        svc.delete_project(world.project_id, world.owner)

    svc.delete_project(world.project_id, world.root)

    assert session.get(Project, world.project_id) is None
    assert session.query(ProjectMembership).count() == 0
    assert session.query(DecisionRecord).count() == 0
    assert session.query(VersionSnapshot).count() == 0
    assert session.query(AuditEntry).filter(AuditEntry.action == "deleted").count() == 1


def test_member_candidates_exclude_current_members(svc, world):
    rows = svc.list_member_candidates(world.project_id, world.owner)
    assert [u.id for u in rows] == [world.outsider.id, world.root.id]

    svc.add_member(world.project_id, world.outsider.id, "viewer", world.owner)
    assert [u.id for u in svc.list_member_candidates(world.project_id, world.owner)] == [world.root.id]

    with pytest.raises(AuthorizationDenied):
        svc.list_member_candidates(world.project_id, world.editor)
