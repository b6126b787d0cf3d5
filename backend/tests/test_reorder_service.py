"""
Reorder service tests.

Verifies:
- display_order is 0..n-1 in source and destination groups after each move
- reparenting between stages, the unstaged group and parent tasks
- a task can never be moved under itself or its descendants
- stage reordering keeps the per-project unique order
"""

import pytest

from planner.extensions import db
from planner.models import Stage, Task
from planner.services import reorder_service, tree_service
from planner.services.reorder_service import Container
from planner.services.tree_service import SiblingGroup
from planner.validation import InvalidMoveError, ValidationError


def _orders(group: SiblingGroup):
    return [(t.id, t.display_order) for t in tree_service.list_sibling_group(group)]


def _assert_contiguous(group: SiblingGroup):
    orders = [order for _, order in _orders(group)]
    assert orders == list(range(len(orders)))


@pytest.fixture
def tree(project, make_stage, make_task):
    """
    Design: A, B, C
    Build:  D
    A: A1, A2
    """
    design = make_stage("Design", 0)
    build = make_stage("Build", 1)
    a = make_task("A", stage=design, order=0)
    b = make_task("B", stage=design, order=1)
    c = make_task("C", stage=design, order=2)
    d = make_task("D", stage=build, order=0)
    a1 = make_task("A1", parent=a, order=0)
    a2 = make_task("A2", parent=a, order=1)
    return {
        "project": project, "design": design, "build": build,
        "a": a, "b": b, "c": c, "d": d, "a1": a1, "a2": a2,
    }


class TestContainerParse:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("project", Container("project")),
            ("unstaged", Container("unstaged")),
            ("root", Container("unstaged")),
            ("stage:4", Container("stage", 4)),
            ("task:12", Container("task", 12)),
            ({"kind": "task", "id": 3}, Container("task", 3)),
        ],
    )
    def test_accepted_forms(self, raw, expected):
        assert Container.parse(raw) == expected

    @pytest.mark.parametrize("raw", ["stage", "task:x", "folder:1", None])
    def test_rejected_forms(self, raw):
        with pytest.raises(ValidationError):
            Container.parse(raw)


class TestMoveWithinGroup:
    def test_move_before_sibling(self, tree):
        group = SiblingGroup(tree["project"].id, tree["design"].id)

        result = reorder_service.move("task", tree["c"].id, f"stage:{tree['design'].id}",
                                      insert_relative_to=tree["a"].id, position="before")

        assert result.destination_order == [tree["c"].id, tree["a"].id, tree["b"].id]
        assert [tid for tid, _ in _orders(group)] == result.destination_order
        _assert_contiguous(group)

    def test_move_after_last(self, tree):
        group = SiblingGroup(tree["project"].id, tree["design"].id)

        reorder_service.move("task", tree["a"].id, f"stage:{tree['design'].id}",
                             insert_relative_to=tree["c"].id, position="after")

        assert [tid for tid, _ in _orders(group)] == [tree["b"].id, tree["c"].id, tree["a"].id]
        _assert_contiguous(group)

    def test_gaps_are_closed(self, project, make_stage, make_task):
        stage = make_stage("Design", 0)
        x = make_task("X", stage=stage, order=5)
        y = make_task("Y", stage=stage, order=9)
        group = SiblingGroup(project.id, stage.id)

        reorder_service.move("task", y.id, f"stage:{stage.id}", insert_relative_to=x.id, position="before")

        assert _orders(group) == [(y.id, 0), (x.id, 1)]


class TestMoveAcrossGroups:
    def test_move_to_other_stage(self, tree):
        source = SiblingGroup(tree["project"].id, tree["design"].id)
        destination = SiblingGroup(tree["project"].id, tree["build"].id)

        result = reorder_service.move("task", tree["b"].id, f"stage:{tree['build'].id}",
                                      insert_relative_to=tree["d"].id, position="before")

        moved = db.session.get(Task, tree["b"].id)
        assert moved.stage_id == tree["build"].id
        assert moved.parent_task_id is None
        assert result.source_order == [tree["a"].id, tree["c"].id]
        assert result.destination_order == [tree["b"].id, tree["d"].id]
        _assert_contiguous(source)
        _assert_contiguous(destination)

    def test_move_task_under_another_task(self, tree):
        result = reorder_service.move("task", tree["c"].id, f"task:{tree['a'].id}",
                                      insert_relative_to=tree["a1"].id, position="after")

        moved = db.session.get(Task, tree["c"].id)
        assert moved.parent_task_id == tree["a"].id
        assert moved.stage_id is None
        assert result.destination_order == [tree["a1"].id, tree["c"].id, tree["a2"].id]
        _assert_contiguous(SiblingGroup(tree["project"].id, None, tree["a"].id))
        _assert_contiguous(SiblingGroup(tree["project"].id, tree["design"].id))

    def test_promote_subtask_to_unstaged(self, tree):
        reorder_service.move("subtask", tree["a1"].id, "unstaged")

        moved = db.session.get(Task, tree["a1"].id)
        assert moved.parent_task_id is None
        assert moved.stage_id is None
        assert moved.display_order == 0
        assert _orders(SiblingGroup(tree["project"].id, None, tree["a"].id)) == [(tree["a2"].id, 0)]

    def test_move_with_children_keeps_subtree(self, tree):
        reorder_service.move("task", tree["a"].id, f"task:{tree['d'].id}")

        a = db.session.get(Task, tree["a"].id)
        assert a.parent_task_id == tree["d"].id
        assert {t.id for t in a.subtasks} == {tree["a1"].id, tree["a2"].id}
        arena = tree_service.load_project_arena(tree["project"].id)
        assert arena.effective_stage_id(tree["a1"].id) == tree["build"].id

    def test_relative_item_must_be_in_destination(self, tree):
        with pytest.raises(ValidationError):
            reorder_service.move("task", tree["b"].id, f"stage:{tree['build'].id}",
                                 insert_relative_to=tree["a"].id)
        assert db.session.get(Task, tree["b"].id).stage_id == tree["design"].id

    def test_stage_of_other_project_rejected(self, tree, other_project, make_stage):
        foreign = make_stage("Elsewhere", 0, project_id=other_project.id)

        with pytest.raises(ValidationError):
            reorder_service.move("task", tree["b"].id, f"stage:{foreign.id}")


class TestCyclePrevention:
    def test_cannot_move_under_itself(self, tree):
        with pytest.raises(InvalidMoveError):
            reorder_service.move("task", tree["a"].id, f"task:{tree['a'].id}")

    def test_cannot_move_under_descendant(self, tree, make_task):
        deep = make_task("A1a", parent=tree["a1"])
        before = {
            t.id: (t.stage_id, t.parent_task_id, t.display_order)
            for t in db.session.query(Task).all()
        }

        with pytest.raises(InvalidMoveError):
            reorder_service.move("task", tree["a"].id, f"task:{deep.id}")

        db.session.expire_all()
        after = {
            t.id: (t.stage_id, t.parent_task_id, t.display_order)
            for t in db.session.query(Task).all()
        }
        assert after == before


class TestStageMoves:
    def test_reorder_stages(self, tree, make_stage):
        ship = make_stage("Ship", 2)

        result = reorder_service.move("stage", ship.id, "project",
                                      insert_relative_to=tree["design"].id, position="before")

        assert result.destination_order == [ship.id, tree["design"].id, tree["build"].id]
        stages = tree_service.list_stages(tree["project"].id)
        assert [(s.id, s.order) for s in stages] == [
            (ship.id, 0), (tree["design"].id, 1), (tree["build"].id, 2),
        ]

    def test_stage_only_moves_in_project_list(self, tree):
        with pytest.raises(ValidationError):
            reorder_service.move("stage", tree["design"].id, f"stage:{tree['build'].id}")

    def test_task_cannot_enter_stage_list(self, tree):
        with pytest.raises(ValidationError):
            reorder_service.move("task", tree["a"].id, "project")


class TestCompaction:
    def test_compact_project(self, project, make_stage, make_task):
        s1 = make_stage("One", 3)
        s2 = make_stage("Two", 7)
        x = make_task("X", stage=s1, order=4)
        y = make_task("Y", stage=s1, order=10)
        z = make_task("Z", order=2)

        groups = reorder_service.compact_project(project.id)

        assert groups == 2
        assert [(s.id, s.order) for s in db.session.query(Stage).order_by(Stage.order)] == [(s1.id, 0), (s2.id, 1)]
        assert _orders(SiblingGroup(project.id, s1.id)) == [(x.id, 0), (y.id, 1)]
        assert _orders(SiblingGroup(project.id)) == [(z.id, 0)]
