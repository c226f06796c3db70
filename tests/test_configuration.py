from __future__ import annotations

import argparse
import json
from pathlib import Path

import pytest

from ade_orchestrator import (
  Action,
  EventContext,
  ExternalQueryFailed,
  InvalidConfigurationFile,
  InvalidInput,
  MissingRequiredField,
  collect_inputs,
  load_configuration_file,
  normalize_subscription,
  parse_arguments,
  resolve_configuration,
)
from conftest import FakeCli

PUSH_FEATURE = EventContext(event_name="push", ref="refs/heads/feature")

REQUIRED = {
  "devcenter": "dc",
  "project": "proj",
  "catalog": "catalog",
  "definition": "webapp",
}


def write_config(root: Path, text: str, name: str = "ade.yml") -> Path:
  path = root / name
  path.write_text(text, encoding="utf-8")
  return path


def test_input_wins_over_file_and_file_over_default(runtime, tmp_path: Path) -> None:
  write_config(tmp_path, "prefix: file\nmain-branch: trunk\ndev-branch: develop\n")
  config = resolve_configuration(Action.SETUP, {"prefix": "input"}, PUSH_FEATURE, runtime, root=tmp_path)
  assert config.naming.prefix == "input"
  assert config.naming.main_branch == "trunk"
  assert config.naming.dev_branch == "develop"
  assert config.naming.prod_environment_type == "Prod"
  assert config.environment_name == "input-branch-feature-4242"


def test_defaults_apply_without_file(runtime, tmp_path: Path) -> None:
  config = resolve_configuration(Action.SETUP, {}, PUSH_FEATURE, runtime, root=tmp_path)
  assert config.naming.prefix == "ci"
  assert config.naming.main_branch == "main"
  assert config.naming.staging_environment_type == "Staging"
  assert config.naming.test_environment_type == "Test"
  assert config.naming.suffix == "4242"
  assert config.environment_type == "Dev"


def test_missing_default_file_is_silent(runtime, tmp_path: Path) -> None:
  assert load_configuration_file("ade.yml", runtime, tmp_path) is None
  assert "::warning::" not in runtime.stdout.getvalue()


def test_missing_explicit_file_warns(runtime, tmp_path: Path) -> None:
  assert load_configuration_file("config/ade.yaml", runtime, tmp_path) is None
  assert "::warning::Could not find configuration file at path: config/ade.yaml" in runtime.stdout.getvalue()


def test_first_glob_match_wins(runtime, tmp_path: Path) -> None:
  (tmp_path / "envs").mkdir()
  write_config(tmp_path / "envs", "prefix: alpha\n", name="a.yml")
  write_config(tmp_path / "envs", "prefix: beta\n", name="b.yml")
  loaded = load_configuration_file("envs/*.yml", runtime, tmp_path)
  assert loaded is not None
  assert loaded.get("prefix") == "alpha"


def test_file_values_are_coerced(runtime, tmp_path: Path) -> None:
  write_config(
    tmp_path,
    "summary: true\nsuffix: 12\nparameters:\n  sku: B1\n  replicas: 2\nunknown: 1\n",
  )
  loaded = load_configuration_file("ade.yml", runtime, tmp_path)
  assert loaded is not None
  assert loaded.get("summary") == "true"
  assert loaded.get("suffix") == "12"
  assert json.loads(loaded.get("parameters")) == {"sku": "B1", "replicas": 2}
  assert "Ignoring unknown key 'unknown'" in runtime.stdout.getvalue()


def test_file_action_key_is_ignored(runtime, tmp_path: Path) -> None:
  write_config(tmp_path, "action: delete\n")
  loaded = load_configuration_file("ade.yml", runtime, tmp_path)
  assert loaded is not None
  assert loaded.get("action") == ""


def test_invalid_yaml_fails(runtime, tmp_path: Path) -> None:
  write_config(tmp_path, "prefix: [unclosed\n")
  with pytest.raises(InvalidConfigurationFile):
    load_configuration_file("ade.yml", runtime, tmp_path)


def test_non_mapping_file_fails(runtime, tmp_path: Path) -> None:
  write_config(tmp_path, "- a\n- b\n")
  with pytest.raises(InvalidConfigurationFile, match="mapping"):
    load_configuration_file("ade.yml", runtime, tmp_path)


def test_setup_does_not_query_cli(runtime, tmp_path: Path) -> None:
  config = resolve_configuration(Action.SETUP, {}, PUSH_FEATURE, runtime, cli=None, root=tmp_path)
  assert config.tenant == ""
  assert config.devcenter == ""


def test_tenant_and_subscription_are_looked_up(runtime, tmp_path: Path) -> None:
  cli = FakeCli(subscription="/subscriptions/sub-999")
  config = resolve_configuration(Action.GET, {"devcenter": "dc", "project": "proj"}, PUSH_FEATURE, runtime, cli, tmp_path)
  assert config.tenant == "tenant-abc"
  assert config.subscription == "sub-999"
  assert [call[:2] for call in cli.calls] == [["account", "show"], ["account", "show"]]


def test_supplied_tenant_skips_lookup(runtime, tmp_path: Path) -> None:
  write_config(tmp_path, "subscription: /subscriptions/from-file\n")
  cli = FakeCli()
  inputs = {"tenant": "t-1", "devcenter": "dc", "project": "proj"}
  config = resolve_configuration(Action.GET, inputs, PUSH_FEATURE, runtime, cli, tmp_path)
  assert config.tenant == "t-1"
  assert config.subscription == "from-file"
  assert cli.calls == []


def test_empty_lookup_output_fails_with_stderr(runtime, tmp_path: Path) -> None:
  cli = FakeCli(failures={"account"})
  with pytest.raises(ExternalQueryFailed, match="account failed: boom"):
    resolve_configuration(Action.GET, {"devcenter": "dc", "project": "proj"}, PUSH_FEATURE, runtime, cli, tmp_path)


@pytest.mark.parametrize("missing", ["devcenter", "project"])
def test_devcenter_and_project_required_for_get(runtime, tmp_path: Path, missing: str) -> None:
  inputs = {"devcenter": "dc", "project": "proj", "tenant": "t", "subscription": "s"}
  del inputs[missing]
  with pytest.raises(MissingRequiredField) as excinfo:
    resolve_configuration(Action.GET, inputs, PUSH_FEATURE, runtime, FakeCli(), tmp_path)
  assert excinfo.value.field_name == missing
  assert "action input or in config file" in str(excinfo.value)


@pytest.mark.parametrize("action", [Action.CREATE, Action.UPDATE, Action.ENSURE])
@pytest.mark.parametrize("missing", ["catalog", "definition"])
def test_catalog_and_definition_required_for_mutations(runtime, tmp_path: Path, action: Action, missing: str) -> None:
  inputs = dict(REQUIRED, tenant="t", subscription="s")
  del inputs[missing]
  with pytest.raises(MissingRequiredField, match=missing):
    resolve_configuration(action, inputs, PUSH_FEATURE, runtime, FakeCli(), tmp_path)


def test_catalog_not_required_for_delete(runtime, tmp_path: Path) -> None:
  inputs = {"devcenter": "dc", "project": "proj", "tenant": "t", "subscription": "s"}
  config = resolve_configuration(Action.DELETE, inputs, PUSH_FEATURE, runtime, FakeCli(), tmp_path)
  assert config.catalog == ""


def test_configuration_is_printed(runtime, tmp_path: Path) -> None:
  resolve_configuration(Action.SETUP, {}, PUSH_FEATURE, runtime, root=tmp_path)
  assert '"environment_name": "ci-branch-feature-4242"' in runtime.stdout.getvalue()


def test_invalid_summary_input_fails(runtime, tmp_path: Path) -> None:
  with pytest.raises(InvalidInput):
    resolve_configuration(Action.SETUP, {"summary": "yes"}, PUSH_FEATURE, runtime, root=tmp_path)


def test_summary_input_overrides_file(runtime, tmp_path: Path) -> None:
  write_config(tmp_path, "summary: true\n")
  config = resolve_configuration(Action.SETUP, {"summary": "false"}, PUSH_FEATURE, runtime, root=tmp_path)
  assert config.summary is False


@pytest.mark.parametrize(
  "value,expected",
  [("abc", "abc"), ("/subscriptions/abc", "abc"), ("/subscriptions/abc/", "abc"), (" abc \n", "abc")],
)
def test_normalize_subscription(value: str, expected: str) -> None:
  assert normalize_subscription(value) == expected


def test_collect_inputs_prefers_command_line(runtime) -> None:
  runtime.environ["INPUT_PREFIX"] = "from-env"
  runtime.environ["INPUT_MAIN-BRANCH"] = " trunk "
  runtime.environ["INPUT_PROJECT"] = ""
  args = parse_arguments(["--prefix", "from-cli"])
  inputs = collect_inputs(args, runtime)
  assert inputs["prefix"] == "from-cli"
  assert inputs["main-branch"] == "trunk"
  assert "project" not in inputs


def test_collect_inputs_blank_flag_falls_back_to_ci_input(runtime) -> None:
  runtime.environ["INPUT_PREFIX"] = "from-env"
  args = parse_arguments(["--prefix", "  "])
  assert collect_inputs(args, runtime)["prefix"] == "from-env"


def test_collect_inputs_skips_unset_parameters(runtime) -> None:
  inputs = collect_inputs(argparse.Namespace(), runtime)
  assert inputs == {}
