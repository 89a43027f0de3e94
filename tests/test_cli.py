import json
import unittest
from pathlib import Path
from unittest.mock import patch

from click.testing import CliRunner

import splitify.cli as cli
from splitify.config.loader import ConfigError
from splitify.grouping.engine import GroupingEngine
from splitify.llm.ollama_client import LLMError
from splitify.vcs.git_client import ChangesSummary, FileChange, GitError


CONFIG = {
    "base_url": "http://localhost",
    "port": 11434,
    "model": "m",
    "pre_commit_hooks": "per_group",
    "streaming": True,
    "show_notifications": True,
}


class DummyGitClient:
    def __init__(self, paths, fail_on=()):
        self.changes = [FileChange(path=p, status="modified", additions=1) for p in paths]
        self.fail_on = set(fail_on)
        self.commit_called = []

    def get_all_changes(self):
        return ChangesSummary(all=list(self.changes))

    def get_recent_commit_messages(self, count):
        return []

    def stage_and_commit(self, paths, message, no_verify=False):
        if message in self.fail_on:
            raise GitError("hook failed")
        self.commit_called.append((list(paths), message, no_verify))
        return "abc"

    def stage_files(self, paths):
        pass

    def run_pre_commit_hook(self):
        pass

    def unstage_all(self):
        pass


class DummyAdvisor:
    def __init__(self, groups=None, error=None):
        self.text = json.dumps({"groups": groups or []})
        self.error = error

    def request_grouping(self, files, history, cancellation=None):
        if self.error is not None:
            raise self.error
        return [self.text]

    def request_grouping_batch(self, files, history):
        return self.text


TWO_GROUPS = [
    {"name": "feature", "message": "feat: add parser", "files": ["a.py"]},
    {"name": "docs", "message": "docs: explain parser", "files": ["README.md"]},
]


class CLITestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.git = DummyGitClient(["a.py", "README.md"])
        self.advisor = DummyAdvisor(TWO_GROUPS)
        self.build_calls = []
        self.config = dict(CONFIG)
        self.repo_root = Path("/repo")

    def fake_build_engine(self, repo_root, config, streaming, hooks):
        self.build_calls.append({"streaming": streaming, "hooks": hooks})
        return GroupingEngine(self.git, self.advisor, streaming=streaming, hook_strategy=hooks)

    def invoke(self, args=(), input=None, env=None):
        runner = CliRunner()
        config = self.config
        with patch.object(cli.GitClient, "find_repo_root", return_value=self.repo_root), \
                patch.object(cli, "load_config", side_effect=lambda root: config) as load, \
                patch.object(cli, "build_engine", side_effect=self.fake_build_engine):
            result = runner.invoke(cli.main, list(args), input=input, env=env or {"EDITOR": None})
        self.load_mock = load
        return result


class TestStartupFailures(CLITestCase):
    def test_not_a_repository(self) -> None:
        self.repo_root = None
        result = self.invoke(["--yes"])
        self.assertEqual(result.exit_code, cli.EXIT_NO_REPO)
        self.assertIn("not inside a Git repository", result.output)

    def test_config_error(self) -> None:
        runner = CliRunner()
        with patch.object(cli.GitClient, "find_repo_root", return_value=Path("/repo")), \
                patch.object(cli, "load_config", side_effect=ConfigError("Missing required configuration keys: model")):
            result = runner.invoke(cli.main, ["--yes"])
        self.assertEqual(result.exit_code, cli.EXIT_CONFIG_ERROR)
        self.assertIn("Missing required configuration keys", result.output)

    def test_no_changes(self) -> None:
        self.git = DummyGitClient([])
        result = self.invoke(["--yes"])
        self.assertEqual(result.exit_code, cli.EXIT_NO_CHANGES)
        self.assertIn("No changes detected", result.output)

    def test_llm_failure(self) -> None:
        self.advisor = DummyAdvisor(error=LLMError("connection refused"))
        result = self.invoke(["--yes"])
        self.assertEqual(result.exit_code, cli.EXIT_LLM_FAILURE)
        self.assertIn("connection refused", result.output)

    def test_unparseable_answer(self) -> None:
        self.advisor = DummyAdvisor()
        self.advisor.text = "I cannot help with that."
        result = self.invoke(["--yes"])
        self.assertEqual(result.exit_code, cli.EXIT_LLM_FAILURE)

    def test_version(self) -> None:
        result = CliRunner().invoke(cli.main, ["--version"])
        self.assertEqual(result.exit_code, 0)
        self.assertIn(cli.__version__, result.output)


class TestAutoAccept(CLITestCase):
    def test_commits_every_group(self) -> None:
        result = self.invoke(["--yes"])
        self.assertEqual(result.exit_code, cli.EXIT_SUCCESS, result.output)
        self.assertEqual(
            [(paths, msg) for paths, msg, _ in self.git.commit_called],
            [(["a.py"], "feat: add parser"), (["README.md"], "docs: explain parser")],
        )
        self.assertIn("feature", result.output)
        self.assertIn("Committed 2 groups", result.output)
        self.load_mock.assert_called_once_with(Path("/repo"))

    def test_unassigned_files_are_committed_too(self) -> None:
        self.git = DummyGitClient(["a.py", "README.md", "setup.cfg"])
        result = self.invoke(["--yes"])
        self.assertEqual(result.exit_code, cli.EXIT_SUCCESS, result.output)
        self.assertIn("unassigned-changes", result.output)
        self.assertEqual(self.git.commit_called[-1][:2], (["setup.cfg"], "chore: commit remaining changes"))

    def test_failed_group_sets_exit_code(self) -> None:
        self.git = DummyGitClient(["a.py", "README.md"], fail_on={"docs: explain parser"})
        result = self.invoke(["--yes"])
        self.assertEqual(result.exit_code, cli.EXIT_VCS_FAILURE)
        self.assertIn("Failed: docs", result.output)
        self.assertEqual(len(self.git.commit_called), 1)

    def test_no_verify_skips_hooks(self) -> None:
        result = self.invoke(["--yes", "--no-verify"])
        self.assertEqual(result.exit_code, cli.EXIT_SUCCESS, result.output)
        self.assertEqual(self.build_calls[0]["hooks"], "skip")
        self.assertTrue(all(no_verify for _, _, no_verify in self.git.commit_called))

    def test_hooks_option_overrides_config(self) -> None:
        self.config["pre_commit_hooks"] = "skip"
        self.invoke(["--yes", "--hooks", "once"])
        self.assertEqual(self.build_calls[0]["hooks"], "once")

    def test_hooks_default_from_config(self) -> None:
        self.config["pre_commit_hooks"] = "once"
        self.invoke(["--yes"])
        self.assertEqual(self.build_calls[0]["hooks"], "once")

    def test_batch_disables_streaming(self) -> None:
        result = self.invoke(["--yes", "--batch"])
        self.assertEqual(result.exit_code, cli.EXIT_SUCCESS, result.output)
        self.assertFalse(self.build_calls[0]["streaming"])

    def test_streaming_disabled_in_config(self) -> None:
        self.config["streaming"] = False
        self.invoke(["--yes"])
        self.assertFalse(self.build_calls[0]["streaming"])


class TestInteractive(CLITestCase):
    def test_quit_without_committing(self) -> None:
        result = self.invoke(input="q\n")
        self.assertEqual(result.exit_code, cli.EXIT_NOTHING_COMMITTED)
        self.assertEqual(self.git.commit_called, [])

    def test_commit_one_group(self) -> None:
        result = self.invoke(input="c\n2\nq\n")
        self.assertEqual(result.exit_code, cli.EXIT_SUCCESS, result.output)
        self.assertEqual(self.git.commit_called, [(["README.md"], "docs: explain parser", False)])
        self.assertIn("Committed 1 group.", result.output)

    def test_commit_all_ends_session(self) -> None:
        result = self.invoke(input="a\ny\n")
        self.assertEqual(result.exit_code, cli.EXIT_SUCCESS, result.output)
        self.assertEqual(len(self.git.commit_called), 2)
        self.assertIn("No groups left", result.output)

    def test_commit_selected(self) -> None:
        result = self.invoke(input="s\n2\ny\nq\n")
        self.assertEqual(result.exit_code, cli.EXIT_SUCCESS, result.output)
        self.assertEqual([m for _, m, _ in self.git.commit_called], ["docs: explain parser"])

    def test_edit_message_without_editor(self) -> None:
        result = self.invoke(input="e\n1\nfeat: add a faster parser\n\nWith details.\n.\nc\n1\nq\n")
        self.assertEqual(result.exit_code, cli.EXIT_SUCCESS, result.output)
        self.assertEqual(self.git.commit_called[0][1], "feat: add a faster parser\n\nWith details.")

    def test_move_file_between_groups(self) -> None:
        result = self.invoke(input="m\n2\n1\n1\nc\n1\nq\n")
        self.assertEqual(result.exit_code, cli.EXIT_SUCCESS, result.output)
        self.assertEqual(self.git.commit_called[0][0], ["a.py", "README.md"])

    def test_remove_then_add_to_new_group(self) -> None:
        user_input = "\n".join([
            "r", "1", "1",
            "n", "parser", "feat: parser only",
            "f", "1", "2",
            "c", "2",
            "q",
        ]) + "\n"
        result = self.invoke(input=user_input)
        self.assertEqual(result.exit_code, cli.EXIT_SUCCESS, result.output)
        self.assertEqual(self.git.commit_called, [(["a.py"], "feat: parser only", False)])

    def test_blank_group_message_is_asked_again(self) -> None:
        user_input = "\n".join([
            "r", "1", "1",
            "n", "parser", "   ", "feat: parser only",
            "f", "1", "2",
            "a", "y",
        ]) + "\n"
        result = self.invoke(input=user_input)
        self.assertEqual(result.exit_code, cli.EXIT_SUCCESS, result.output)
        self.assertIn("a value is required", result.output)
        self.assertEqual(
            [m for _, m, _ in self.git.commit_called],
            ["docs: explain parser", "feat: parser only"],
        )

    def test_merge_groups(self) -> None:
        result = self.invoke(input="g\n2\n1\nc\n1\nq\n")
        self.assertEqual(result.exit_code, cli.EXIT_SUCCESS, result.output)
        self.assertEqual(self.git.commit_called[0][:2], (["a.py", "README.md"], "feat: add parser"))

    def test_discard_group(self) -> None:
        result = self.invoke(input="d\n1\ny\nc\n1\nq\n")
        self.assertEqual(result.exit_code, cli.EXIT_SUCCESS, result.output)
        self.assertEqual([m for _, m, _ in self.git.commit_called], ["docs: explain parser"])

    def test_unknown_group_is_reported(self) -> None:
        result = self.invoke(input="c\n9\nq\n")
        self.assertEqual(result.exit_code, cli.EXIT_NOTHING_COMMITTED)
        self.assertIn("No such group", result.output)

    def test_failed_commit_keeps_group(self) -> None:
        self.git = DummyGitClient(["a.py", "README.md"], fail_on={"feat: add parser"})
        result = self.invoke(input="c\n1\nq\n")
        self.assertEqual(result.exit_code, cli.EXIT_NOTHING_COMMITTED)
        self.assertIn("Failed to commit group 'feature'", result.output)
        self.assertIn("[error]", result.output)


class TestHelpers(unittest.TestCase):
    def test_plural(self) -> None:
        self.assertEqual(cli.plural(1, "group"), "1 group")
        self.assertEqual(cli.plural(0, "file"), "0 files")

    def test_subject_line(self) -> None:
        self.assertEqual(cli.subject_line("feat: a\n\nbody"), "feat: a")
        self.assertEqual(cli.subject_line(""), "")

    def test_batch_commit_with_empty_message_reports_tallies(self) -> None:
        git = DummyGitClient(["a.py"])
        engine = GroupingEngine(git, DummyAdvisor([]))
        engine.analyze()
        group = engine.create_group("blank", "")
        engine.move_file_to_group("a.py", engine.groups[0].id, group.id)

        failed = cli.run_commit_all(engine, {}, "per_group")

        self.assertEqual(failed, 0)
        self.assertEqual(git.commit_called, [(["a.py"], "", False)])
        self.assertEqual(engine.groups, [])

    def test_resolve_group_ref(self) -> None:
        engine = GroupingEngine(DummyGitClient(["a.py"]), DummyAdvisor([
            {"name": "x", "message": "feat: x", "files": ["a.py"]},
        ]))
        engine.analyze()
        ref = cli.resolve_group_ref(engine, " 1 ")
        self.assertEqual(ref.group.id, "group-1")
        self.assertIsNone(cli.resolve_group_ref(engine, "5"))
        self.assertEqual(cli.resolve_group_ref(engine, "group-7"), "group-7")
        self.assertIsNone(cli.resolve_group_ref(engine, ""))


if __name__ == "__main__":
    unittest.main()
