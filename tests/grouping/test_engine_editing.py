"""Tests for the editing operations of GroupingEngine."""

import json
import random
import unittest

from splitify.grouping.engine import CATCH_ALL_NAME, MANUAL_REASONING, GroupingEngine
from splitify.grouping.group_model import GroupStatus
from splitify.vcs.git_client import ChangesSummary, FileChange


PATHS = ["a.py", "b.py", "c.py", "d.py"]


class StaticDiffProvider:
    def __init__(self, paths):
        self.changes = [FileChange(path=p, status="modified") for p in paths]

    def get_all_changes(self):
        return ChangesSummary(all=list(self.changes))

    def get_recent_commit_messages(self, count):
        return []


class StaticAdvisor:
    def __init__(self, groups):
        self.text = json.dumps({"groups": groups})

    def request_grouping(self, files, history, cancellation=None):
        return [self.text]


def make_engine():
    """Engine holding group-1 [a.py], group-2 [b.py, c.py] and a catch-all [d.py]."""
    advisor = StaticAdvisor([
        {"name": "first", "message": "feat: first", "files": ["a.py"]},
        {"name": "second", "message": "fix: second", "files": ["b.py", "c.py"]},
    ])
    engine = GroupingEngine(StaticDiffProvider(PATHS), advisor)
    engine.analyze()
    return engine


class EditingTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = make_engine()
        self.notifications = []
        self.engine.subscribe(lambda groups: self.notifications.append([g.id for g in groups]))

    def assertPartition(self) -> None:
        seen = [f.path for g in self.engine.groups for f in g.files]
        seen += [f.path for f in self.engine.ungrouped]
        self.assertEqual(sorted(seen), sorted(PATHS))

    def paths(self, group_id):
        return self.engine.get_group(group_id).file_paths


class TestSetup(EditingTestCase):
    def test_initial_layout(self) -> None:
        groups = self.engine.groups
        self.assertEqual([g.id for g in groups], ["group-1", "group-2", "group-3"])
        self.assertEqual(groups[2].name, CATCH_ALL_NAME)
        self.assertPartition()


class TestMove(EditingTestCase):
    def test_move_appends_to_target(self) -> None:
        self.assertTrue(self.engine.move_file_to_group("b.py", "group-2", "group-1"))
        self.assertEqual(self.paths("group-1"), ["a.py", "b.py"])
        self.assertEqual(self.paths("group-2"), ["c.py"])
        self.assertEqual(len(self.notifications), 1)
        self.assertPartition()

    def test_move_last_file_drops_source(self) -> None:
        self.assertTrue(self.engine.move_file_to_group("a.py", "group-1", "group-2"))
        self.assertIsNone(self.engine.get_group("group-1"))
        self.assertEqual(self.paths("group-2"), ["b.py", "c.py", "a.py"])
        self.assertEqual(self.notifications, [["group-2", "group-3"]])
        self.assertPartition()

    def test_move_within_same_group_succeeds_without_change(self) -> None:
        self.assertTrue(self.engine.move_file_to_group("b.py", "group-2", "group-2"))
        self.assertEqual(self.paths("group-2"), ["b.py", "c.py"])
        self.assertEqual(len(self.notifications), 1)

    def test_move_rejects_unknown_group_or_file(self) -> None:
        self.assertFalse(self.engine.move_file_to_group("a.py", "group-1", "group-99"))
        self.assertFalse(self.engine.move_file_to_group("a.py", "group-99", "group-1"))
        self.assertFalse(self.engine.move_file_to_group("b.py", "group-1", "group-2"))
        self.assertEqual(self.notifications, [])
        self.assertPartition()


class TestRemoveAndAdd(EditingTestCase):
    def test_remove_puts_file_in_pool(self) -> None:
        self.assertTrue(self.engine.remove_file_from_group("b.py", "group-2"))
        self.assertEqual(self.paths("group-2"), ["c.py"])
        self.assertEqual([f.path for f in self.engine.ungrouped], ["b.py"])
        self.assertPartition()

    def test_remove_last_file_drops_group(self) -> None:
        self.assertTrue(self.engine.remove_file_from_group("a.py", "group-1"))
        self.assertIsNone(self.engine.get_group("group-1"))
        self.assertPartition()

    def test_remove_rejects_unknown(self) -> None:
        self.assertFalse(self.engine.remove_file_from_group("a.py", "group-2"))
        self.assertFalse(self.engine.remove_file_from_group("a.py", "nope"))
        self.assertEqual(self.notifications, [])

    def test_add_takes_file_from_pool(self) -> None:
        self.engine.remove_file_from_group("b.py", "group-2")
        self.assertTrue(self.engine.add_file_to_group("b.py", "group-1"))
        self.assertEqual(self.paths("group-1"), ["a.py", "b.py"])
        self.assertEqual(self.engine.ungrouped, [])
        self.assertPartition()

    def test_add_requires_file_in_pool(self) -> None:
        self.assertFalse(self.engine.add_file_to_group("b.py", "group-1"))
        self.engine.remove_file_from_group("b.py", "group-2")
        self.assertFalse(self.engine.add_file_to_group("b.py", "group-99"))
        self.assertEqual(len(self.notifications), 1)


class TestGroupOperations(EditingTestCase):
    def test_create_group(self) -> None:
        group = self.engine.create_group("docs", "docs: update readme")
        self.assertEqual(group.id, "group-4")
        self.assertEqual(group.files, [])
        self.assertEqual(group.reasoning, MANUAL_REASONING)
        self.assertIs(group.status, GroupStatus.PENDING)
        self.assertEqual(self.engine.groups[-1].id, "group-4")
        self.assertEqual(len(self.notifications), 1)

    def test_created_group_receives_files(self) -> None:
        group = self.engine.create_group("docs", "docs: readme")
        self.engine.remove_file_from_group("d.py", "group-3")
        self.assertTrue(self.engine.add_file_to_group("d.py", group.id))
        self.assertTrue(self.engine.move_file_to_group("a.py", "group-1", group.id))
        self.assertEqual(self.paths(group.id), ["d.py", "a.py"])
        self.assertPartition()

    def test_merge(self) -> None:
        self.assertTrue(self.engine.merge_groups("group-1", "group-2"))
        self.assertIsNone(self.engine.get_group("group-1"))
        self.assertEqual(self.paths("group-2"), ["b.py", "c.py", "a.py"])
        self.assertPartition()

    def test_merge_rejects_same_or_unknown(self) -> None:
        self.assertFalse(self.engine.merge_groups("group-1", "group-1"))
        self.assertFalse(self.engine.merge_groups("group-1", "group-9"))
        self.assertFalse(self.engine.merge_groups("group-9", "group-1"))
        self.assertEqual(self.notifications, [])

    def test_update_message(self) -> None:
        self.assertTrue(self.engine.update_group_message("group-2", "fix: better"))
        self.assertEqual(self.engine.get_group("group-2").message, "fix: better")
        self.assertFalse(self.engine.update_group_message("group-9", "x"))
        self.assertEqual(len(self.notifications), 1)

    def test_discard(self) -> None:
        self.assertTrue(self.engine.discard_group("group-2"))
        self.assertEqual([g.id for g in self.engine.groups], ["group-1", "group-3"])
        self.assertFalse(self.engine.discard_group("group-2"))
        self.assertEqual(len(self.notifications), 1)

    def test_clear(self) -> None:
        self.engine.remove_file_from_group("b.py", "group-2")
        self.engine.clear_groups()
        self.assertEqual(self.engine.groups, [])
        self.assertEqual(self.engine.ungrouped, [])
        self.assertEqual(self.notifications[-1], [])


class TestObservers(unittest.TestCase):
    def test_every_listener_is_called_until_unsubscribed(self) -> None:
        engine = make_engine()
        first, second = [], []
        engine.subscribe(first.append)
        unsubscribe = engine.subscribe(second.append)

        engine.update_group_message("group-1", "feat: one")
        unsubscribe()
        engine.update_group_message("group-1", "feat: two")

        self.assertEqual(len(first), 2)
        self.assertEqual(len(second), 1)

    def test_listener_receives_snapshot(self) -> None:
        engine = make_engine()
        received = []
        engine.subscribe(received.append)
        engine.discard_group("group-3")
        received[0].clear()
        self.assertEqual(len(engine.groups), 2)


class TestPartitionInvariant(unittest.TestCase):
    def test_random_edits_keep_every_path_exactly_once(self) -> None:
        rng = random.Random(1234)
        engine = make_engine()

        for step in range(300):
            groups = engine.groups
            pool = [f.path for f in engine.ungrouped]
            op = rng.choice(["move", "remove", "add", "merge", "create"])
            if op == "create" or not groups:
                engine.create_group(f"g{step}", "chore: step")
            elif op == "move":
                source = rng.choice(groups)
                if source.files:
                    engine.move_file_to_group(
                        rng.choice(source.file_paths), source.id, rng.choice(groups).id
                    )
            elif op == "remove":
                source = rng.choice(groups)
                if source.files:
                    engine.remove_file_from_group(rng.choice(source.file_paths), source.id)
            elif op == "add" and pool:
                engine.add_file_to_group(rng.choice(pool), rng.choice(groups).id)
            elif op == "merge" and len(groups) > 1:
                source, target = rng.sample(groups, 2)
                engine.merge_groups(source.id, target.id)

            seen = [f.path for g in engine.groups for f in g.files]
            seen += [f.path for f in engine.ungrouped]
            self.assertEqual(sorted(seen), sorted(PATHS), f"step {step}: {op}")
            ids = [g.id for g in engine.groups]
            self.assertEqual(len(ids), len(set(ids)))


if __name__ == "__main__":
    unittest.main()
