"""Tests for the SQLAlchemy-backed migration store."""

import pytest

from abap_migration.client.exceptions import ProjectNotFoundError, StateError


def test_create_project_normalizes_names(store):
    project = store.create_project(
        name="zroot", objtype="prog/p", source_system="ecc", target_system="s4"
    )

    assert project.name == "ZROOT"
    assert project.objtype == "PROG/P"
    assert project.source_system == "ECC"
    assert project.target_system == "S4"
    assert project.status == "open"
    assert project.parent_name == "$TMP"
    assert len(project.id) == 32


def test_get_unknown_project_raises(store):
    with pytest.raises(ProjectNotFoundError):
        store.get_project("missing")


def test_update_project_rejects_unknown_fields_and_statuses(store, project):
    with pytest.raises(StateError):
        store.update_project(project.id, colour="blue")
    with pytest.raises(StateError):
        store.set_project_status(project.id, "finished")

    assert store.set_project_status(project.id, "paused").status == "paused"
    assert store.get_project(project.id).status == "paused"


def test_list_projects(store, project):
    other = store.create_project(name="ZOTHER", objtype="CLAS/OC")
    assert {p.id for p in store.list_projects()} == {project.id, other.id}


def test_sub_objects_are_listed_in_migration_order(store, project):
    rows = [
        ("ZC", 1, 0),
        ("ZB", 0, 1),
        ("ZA", 0, 0),
    ]
    store.create_sub_objects(
        project.id,
        [
            {
                "name": name,
                "objtype": "PROG/I",
                "parent_object_name": "ZROOT",
                "parent_object_type": "PROG/P",
                "object_order": object_order,
                "order": order,
            }
            for name, object_order, order in rows
        ],
    )

    units = store.list_sub_objects(project.id)

    assert [u.name for u in units] == ["ZA", "ZB", "ZC"]
    assert all(u.status == "pending" and not u.excluded for u in units)


def test_create_sub_objects_for_unknown_project(store):
    with pytest.raises(StateError):
        store.create_sub_objects(
            "missing",
            [
                {
                    "name": "ZA",
                    "objtype": "PROG/I",
                    "parent_object_name": "Z",
                    "parent_object_type": "P",
                }
            ],
        )


def test_update_and_exclude_sub_object(store, project):
    (unit,) = store.create_sub_objects(
        project.id,
        [
            {
                "name": "ZA",
                "objtype": "PROG/I",
                "parent_object_name": "ZROOT",
                "parent_object_type": "PROG/P",
            }
        ],
    )

    store.update_sub_object(unit.id, status="activated", migrated_source="REPORT za.")
    store.set_excluded(unit.id, True)

    stored = store.get_sub_object(unit.id)
    assert stored.status == "activated"
    assert stored.migrated_source == "REPORT za."
    assert stored.excluded is True
    assert stored.is_done

    with pytest.raises(StateError):
        store.update_sub_object(unit.id, status="done")
    with pytest.raises(StateError):
        store.update_sub_object(unit.id, name="ZB")
    with pytest.raises(StateError):
        store.get_sub_object("missing")


def test_reset_in_progress(store, project):
    store.create_sub_objects(
        project.id,
        [
            {
                "name": name,
                "objtype": "PROG/I",
                "parent_object_name": "ZROOT",
                "parent_object_type": "PROG/P",
                "status": status,
            }
            for name, status in [("ZA", "in_progress"), ("ZB", "activated"), ("ZC", "in_progress")]
        ],
    )

    assert store.reset_in_progress(project.id) == 2
    assert {u.name: u.status for u in store.list_sub_objects(project.id)} == {
        "ZA": "pending",
        "ZB": "activated",
        "ZC": "pending",
    }
    assert store.reset_in_progress(project.id) == 0


def test_activity_is_listed_newest_first(store, project):
    store.add_activity(project.id, "info", "first")
    store.add_activity(project.id, "write", "second", sub_object_id="u1")
    store.add_activity(project.id, "error", "third", sub_object_id="u1")

    assert [e.content for e in store.list_activity(project.id)] == ["third", "second", "first"]
    assert [e.content for e in store.list_activity(project.id, sub_object_id="u1")] == [
        "third",
        "second",
    ]
    assert [e.content for e in store.list_activity(project.id, limit=1)] == ["third"]


def test_unknown_activity_type_is_rejected(store, project):
    with pytest.raises(StateError):
        store.add_activity(project.id, "gossip", "hello")
