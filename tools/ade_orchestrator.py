#!/usr/bin/env python3
"""Deployment environment orchestrator for CI runs.

Resolves the environment name and type from the triggering CI event and the
layered configuration, then gets, creates, updates or deletes the environment
through the Azure CLI devcenter extension and publishes the results as step
outputs and environment variables.
"""
from __future__ import annotations

import argparse
import json
import os
import shutil
import subprocess
import sys
import uuid
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, MutableMapping, Optional, Sequence, TextIO, Tuple

import yaml

DEFAULT_CONFIG_FILE = "ade.yml"
PREVIEW_DEVCENTER_EXTENSION = "https://aka.ms/devcenter/cli/devcenter-0.2.0-py3-none-any.whl"
ENVIRONMENT_COMMAND = ("devcenter", "dev", "environment")
PORTAL_URL_TEMPLATE = "https://portal.azure.com/#@{tenant}/resource{resource_group_id}"
VARIABLE_PREFIX = "ADE_"
BRANCH_REF_PREFIX = "refs/heads/"
SUBSCRIPTION_PREFIX = "/subscriptions/"

AUTO_ACTION = "auto"
SUPPORTED_EVENTS = ("push", "pull_request", "create", "delete")
ENSURE_PR_ACTIONS = ("opened", "synchronize", "reopened")

# Named parameters accepted as explicit input (command line or CI input).
PARAMETERS = (
  "action",
  "config",
  "prefix",
  "suffix",
  "dev-branch",
  "main-branch",
  "prod-environment-name",
  "prod-environment-type",
  "staging-environment-type",
  "test-environment-type",
  "dev-environment-type",
  "devcenter-extension",
  "summary",
  "devcenter",
  "project",
  "catalog",
  "definition",
  "parameters",
  "tenant",
  "subscription",
)

# The action and the file location itself only come from explicit input.
FILE_KEYS = frozenset(PARAMETERS) - {"action", "config"}

DEFAULTS = {
  "prefix": "ci",
  "main-branch": "main",
  "prod-environment-type": "Prod",
  "staging-environment-type": "Staging",
  "test-environment-type": "Test",
  "dev-environment-type": "Dev",
}

TRUE_VALUES = ("true", "True", "TRUE")
FALSE_VALUES = ("false", "False", "FALSE")


class AdeError(Exception):
  """Base class for conditions that end the run."""


class InvalidAction(AdeError):
  pass


class MissingRequiredField(AdeError):
  def __init__(self, field_name: str) -> None:
    super().__init__(f"Must provide a value for {field_name} as action input or in config file.")
    self.field_name = field_name


class UnsupportedEvent(AdeError):
  pass


class UnsupportedSubAction(AdeError):
  pass


class UnresolvableRef(AdeError):
  pass


class UnsupportedRefType(AdeError):
  pass


class ExternalQueryFailed(AdeError):
  pass


class LifecycleActionFailed(AdeError):
  pass


class CliNotFound(AdeError):
  pass


class ExtensionInstallFailed(AdeError):
  pass


class InvalidConfigurationFile(AdeError):
  pass


class InvalidInput(AdeError):
  pass


class Action(str, Enum):
  SETUP = "setup"
  GET = "get"
  CREATE = "create"
  UPDATE = "update"
  ENSURE = "ensure"
  DELETE = "delete"

  @property
  def requires_definition(self) -> bool:
    return self in (Action.CREATE, Action.UPDATE, Action.ENSURE)


def parse_action(value: str) -> Action:
  try:
    return Action(value.lower())
  except ValueError:
    allowed = ", ".join(action.value for action in Action)
    raise InvalidAction(f"Invalid action: {value}. Must be one of: {allowed}") from None


def _escape_data(message: str) -> str:
  return message.replace("%", "%25").replace("\r", "%0D").replace("\n", "%0A")


def _key_value_message(key: str, value: str) -> str:
  if "\n" not in value and "\r" not in value:
    return f"{key}={value}"
  delimiter = f"ghadelimiter_{uuid.uuid4()}"
  return f"{key}<<{delimiter}\n{value}\n{delimiter}"


class ActionsRuntime:
  """Input source, output sink and log for a GitHub Actions step.

  Inputs are read from ``INPUT_*`` variables, outputs and exported variables
  are appended to the files named by ``GITHUB_OUTPUT`` and ``GITHUB_ENV``.
  """

  def __init__(
    self,
    environ: Optional[MutableMapping[str, str]] = None,
    stdout: Optional[TextIO] = None,
    stderr: Optional[TextIO] = None,
  ) -> None:
    self.environ = os.environ if environ is None else environ
    self.stdout = stdout or sys.stdout
    self.stderr = stderr or sys.stderr

  def get_input(self, name: str) -> str:
    return self.environ.get(f"INPUT_{name.replace(' ', '_').upper()}", "").strip()

  def info(self, message: str) -> None:
    print(message, file=self.stdout)

  def debug(self, message: str) -> None:
    print(f"::debug::{_escape_data(message)}", file=self.stdout)

  def warning(self, message: str) -> None:
    print(f"::warning::{_escape_data(message)}", file=self.stdout)

  def error(self, message: str) -> None:
    print(f"::error::{_escape_data(message)}", file=self.stdout)
    print(message, file=self.stderr)

  def set_output(self, key: str, value: str) -> None:
    if not self._append_file_command("GITHUB_OUTPUT", key, value):
      self.debug(f"GITHUB_OUTPUT is not set; output '{key}' was not written.")

  def export_variable(self, key: str, value: str) -> None:
    self.environ[key] = value
    if not self._append_file_command("GITHUB_ENV", key, value):
      self.debug(f"GITHUB_ENV is not set; '{key}' is only visible to this process.")

  def _append_file_command(self, variable: str, key: str, value: str) -> bool:
    path = self.environ.get(variable)
    if not path:
      return False
    with open(path, "a", encoding="utf-8") as handle:
      handle.write(_key_value_message(key, value) + "\n")
    return True


@dataclass(frozen=True)
class CliResult:
  command: Tuple[str, ...]
  returncode: int
  stdout: str = ""
  stderr: str = ""

  @property
  def succeeded(self) -> bool:
    return self.returncode == 0


def format_command(command: Sequence[str]) -> str:
  return " ".join(json.dumps(arg) for arg in command)


class AzureCli:
  """Runs Azure CLI commands to completion and hands back the raw result."""

  def __init__(self, executable: str, runtime: ActionsRuntime) -> None:
    self.executable = executable
    self._runtime = runtime

  @classmethod
  def locate(cls, name: str, runtime: ActionsRuntime) -> "AzureCli":
    path = shutil.which(name)
    if path is None:
      raise CliNotFound(
        f"Azure CLI executable '{name}' was not found on PATH. "
        "Install Azure CLI or supply --az-cli with the full path to the executable."
      )
    runtime.debug(f"az cli path: {path}")
    return cls(path, runtime)

  def run(self, args: Sequence[str]) -> CliResult:
    command = [self.executable, *[str(arg) for arg in args]]
    self._runtime.info(format_command(command))
    try:
      completed = subprocess.run(
        command,
        check=False,
        capture_output=True,
        text=True,
        stdin=subprocess.DEVNULL,
      )
    except FileNotFoundError as exc:
      return CliResult(
        tuple(command),
        127,
        "",
        f"Command '{command[0]}' could not be executed ({exc.strerror or 'file not found'}).",
      )
    return CliResult(tuple(command), completed.returncode, completed.stdout or "", completed.stderr or "")


@dataclass(frozen=True)
class EventContext:
  """Facts about the CI event that triggered the run."""

  event_name: str
  ref: str = ""
  pull_request_number: str = ""
  base_ref: str = ""
  sub_action: str = ""
  ref_type: str = ""

  @classmethod
  def from_payload(cls, event_name: str, payload: Dict[str, Any], default_ref: str = "") -> "EventContext":
    pull_request = payload.get("pull_request") or {}
    number = pull_request.get("number")
    base = pull_request.get("base") or {}
    return cls(
      event_name=event_name,
      ref=str(payload.get("ref") or default_ref or ""),
      pull_request_number="" if number is None else str(number),
      base_ref=str(base.get("ref") or ""),
      sub_action=str(payload.get("action") or ""),
      ref_type=str(payload.get("ref_type") or ""),
    )


def load_event_context(
  event_name: str,
  event_path: Optional[str],
  runtime: ActionsRuntime,
  default_ref: str = "",
) -> EventContext:
  payload: Dict[str, Any] = {}
  if event_path:
    path = Path(event_path)
    if path.is_file():
      with path.open("r", encoding="utf-8") as handle:
        loaded = json.load(handle)
      if isinstance(loaded, dict):
        payload = loaded
    else:
      runtime.warning(f"Event payload file not found: {event_path}")
  context = EventContext.from_payload(event_name, payload, default_ref)
  runtime.debug(json.dumps(asdict(context), indent=2))
  return context


@dataclass(frozen=True)
class ClassifiedRef:
  ref_type: str
  ref_name: str
  is_pull_request: bool


def classify_event(event: EventContext) -> ClassifiedRef:
  if event.event_name not in SUPPORTED_EVENTS:
    raise UnsupportedEvent(f"Unsupported event type: {event.event_name}")

  is_pull_request = event.event_name == "pull_request"
  if is_pull_request:
    ref_name = event.pull_request_number
  elif event.ref.startswith(BRANCH_REF_PREFIX):
    ref_name = event.ref[len(BRANCH_REF_PREFIX):]
  else:
    ref_name = event.ref

  if not ref_name:
    raise UnresolvableRef("Failed to get branch name or pr number from context")

  return ClassifiedRef(
    ref_type="pr" if is_pull_request else "branch",
    ref_name=ref_name,
    is_pull_request=is_pull_request,
  )


@dataclass(frozen=True)
class NamingOptions:
  prefix: str = DEFAULTS["prefix"]
  suffix: str = ""
  main_branch: str = DEFAULTS["main-branch"]
  dev_branch: str = ""
  prod_environment_name: str = ""
  prod_environment_type: str = DEFAULTS["prod-environment-type"]
  staging_environment_type: str = DEFAULTS["staging-environment-type"]
  test_environment_type: str = DEFAULTS["test-environment-type"]
  dev_environment_type: str = DEFAULTS["dev-environment-type"]


@dataclass(frozen=True)
class EnvironmentIdentity:
  name: str
  type: str


def name_environment(event: EventContext, naming: NamingOptions) -> EnvironmentIdentity:
  """Map the event and branch topology to the environment name and type.

  A pull request targets the staging tier only when it merges into the main
  branch of a repository that also has a dev branch. A branch is the prod
  tier when it is the main branch. The prod name override only applies to
  the prod tier.
  """
  ref = classify_event(event)

  if ref.is_pull_request:
    if event.base_ref == naming.main_branch and naming.dev_branch:
      environment_type = naming.staging_environment_type
    else:
      environment_type = naming.test_environment_type
  elif ref.ref_name == naming.main_branch:
    environment_type = naming.prod_environment_type
  else:
    environment_type = naming.dev_environment_type

  if naming.prod_environment_name and environment_type == naming.prod_environment_type:
    name = naming.prod_environment_name
  else:
    name = f"{naming.prefix}-{ref.ref_type}-{ref.ref_name}-{naming.suffix}"

  return EnvironmentIdentity(name=name, type=environment_type)


def resolve_auto_action(event: EventContext) -> Action:
  name = event.event_name

  if name == "pull_request":
    sub_action = event.sub_action.lower()
    if not sub_action:
      raise UnsupportedSubAction("Failed to get pull request action from context")
    if sub_action in ENSURE_PR_ACTIONS:
      return Action.ENSURE
    if sub_action == "closed":
      return Action.DELETE
    raise UnsupportedSubAction(f"Unsupported pull request action: {sub_action}")

  if name in ("create", "delete"):
    ref_type = event.ref_type.lower()
    if not ref_type:
      raise UnsupportedRefType("Failed to get ref type from context")
    if ref_type == "branch":
      return Action(name)
    raise UnsupportedRefType(f"Unsupported ref type: {ref_type}")

  if name == "push":
    return Action.ENSURE

  raise UnsupportedEvent(f"Unsupported event type: {name}")


def resolve_action(requested: str, event: EventContext, runtime: ActionsRuntime) -> Action:
  requested = (requested or Action.SETUP.value).lower()
  if requested == AUTO_ACTION:
    runtime.info("Input action set to auto, attempting to get it from the event type")
    action = resolve_auto_action(event)
    runtime.info(f"Resolved action: {action.value}")
    return action
  return parse_action(requested)


@dataclass(frozen=True)
class ConfigurationFile:
  path: Path
  values: Dict[str, str] = field(default_factory=dict)

  def get(self, key: str) -> str:
    return self.values.get(key, "")


def _file_value(path: Path, key: str, value: Any) -> str:
  if isinstance(value, bool):
    return "true" if value else "false"
  if isinstance(value, (dict, list)):
    if key != "parameters":
      raise InvalidConfigurationFile(f"Configuration file {path}: '{key}' must be a scalar value.")
    return json.dumps(value)
  return str(value).strip()


def parse_configuration_file(path: Path, runtime: ActionsRuntime) -> ConfigurationFile:
  try:
    with path.open("r", encoding="utf-8") as handle:
      loaded = yaml.safe_load(handle) or {}
  except yaml.YAMLError as exc:
    raise InvalidConfigurationFile(f"Configuration file {path} is not valid YAML: {exc}") from exc

  if not isinstance(loaded, dict):
    raise InvalidConfigurationFile(f"Configuration file {path} must parse to a mapping.")

  values: Dict[str, str] = {}
  for raw_key, value in loaded.items():
    key = str(raw_key)
    if key not in FILE_KEYS:
      runtime.warning(f"Ignoring unknown key '{key}' in configuration file {path}")
      continue
    if value is None:
      continue
    values[key] = _file_value(path, key, value)
  return ConfigurationFile(path=path, values=values)


def find_configuration_file(pattern: str, root: Path) -> Optional[Path]:
  candidate = Path(pattern)
  if candidate.is_absolute():
    base, relative = Path(candidate.anchor), str(candidate.relative_to(candidate.anchor))
  else:
    base, relative = root, pattern
  matches = sorted(path for path in base.glob(relative) if path.is_file())
  return matches[0] if matches else None


def load_configuration_file(
  pattern: str, runtime: ActionsRuntime, root: Optional[Path] = None
) -> Optional[ConfigurationFile]:
  pattern = pattern or DEFAULT_CONFIG_FILE
  is_default = pattern == DEFAULT_CONFIG_FILE
  runtime.info(f"Found input config: {pattern}{' (default)' if is_default else ''}")

  path = find_configuration_file(pattern, root or Path.cwd())
  if path is None:
    runtime.info("No configuration file found, skipping")
    if not is_default:
      runtime.warning(f"Could not find configuration file at path: {pattern}")
    return None

  runtime.info(f"Found configuration file: {path}")
  return parse_configuration_file(path, runtime)


class ConfigurationSources:
  """Explicit input, then the configuration file, then the built-in default."""

  def __init__(
    self,
    inputs: Dict[str, str],
    file: Optional[ConfigurationFile],
    defaults: Dict[str, str],
  ) -> None:
    self._inputs = inputs
    self._file = file
    self._defaults = defaults

  def resolve(self, key: str) -> str:
    value = self._inputs.get(key, "")
    if value:
      return value
    if self._file is not None:
      value = self._file.get(key)
      if value:
        return value
    return self._defaults.get(key, "")

  def supplied(self, key: str) -> bool:
    return bool(self._inputs.get(key) or (self._file is not None and self._file.get(key)))


def parse_bool(name: str, value: str) -> bool:
  if value in TRUE_VALUES:
    return True
  if value in FALSE_VALUES:
    return False
  raise InvalidInput(
    f"Input does not meet YAML 1.2 \"Core Schema\" specification: {name}\n"
    "Support boolean input list: `true | True | TRUE | false | False | FALSE`"
  )


def normalize_subscription(value: str) -> str:
  value = value.strip()
  if value.lower().startswith(SUBSCRIPTION_PREFIX):
    value = value[len(SUBSCRIPTION_PREFIX):]
  return value.strip("/")


def query_account(cli: AzureCli, query: str, label: str, runtime: ActionsRuntime) -> str:
  runtime.info(f"Input {label} is not set, attempting to get it from the azure cli")
  result = cli.run(["account", "show", "--query", query, "--output", "tsv"])
  lines = result.stdout.strip().splitlines() if result.succeeded else []
  value = lines[0].strip() if lines else ""
  if not value:
    raise ExternalQueryFailed(f"Failed to get {label} id from Azure: {result.stderr}")
  runtime.info(f"Found {label}: {value}")
  return value


@dataclass(frozen=True)
class Configuration:
  action: Action
  environment_name: str
  environment_type: str
  naming: NamingOptions = field(default_factory=NamingOptions)
  tenant: str = ""
  subscription: str = ""
  devcenter: str = ""
  project: str = ""
  catalog: str = ""
  definition: str = ""
  parameters: str = ""
  devcenter_extension: str = ""
  summary: bool = False

  def to_dict(self) -> Dict[str, Any]:
    data = asdict(self)
    data["action"] = self.action.value
    return data


def resolve_configuration(
  action: Action,
  inputs: Dict[str, str],
  event: EventContext,
  runtime: ActionsRuntime,
  cli: Optional[AzureCli] = None,
  root: Optional[Path] = None,
) -> Configuration:
  file = load_configuration_file(inputs.get("config", ""), runtime, root)
  defaults = dict(DEFAULTS)
  defaults["suffix"] = runtime.environ.get("GITHUB_REPOSITORY_ID", "")
  sources = ConfigurationSources(inputs, file, defaults)

  naming = NamingOptions(
    prefix=sources.resolve("prefix"),
    suffix=sources.resolve("suffix"),
    main_branch=sources.resolve("main-branch"),
    dev_branch=sources.resolve("dev-branch"),
    prod_environment_name=sources.resolve("prod-environment-name"),
    prod_environment_type=sources.resolve("prod-environment-type"),
    staging_environment_type=sources.resolve("staging-environment-type"),
    test_environment_type=sources.resolve("test-environment-type"),
    dev_environment_type=sources.resolve("dev-environment-type"),
  )

  runtime.info("Getting environment config:")
  runtime.info(f"Event name: {event.event_name}")
  identity = name_environment(event, naming)
  runtime.info(f"Resolved environment type: {identity.type}")
  runtime.info(f"Resolved environment name: {identity.name}")

  summary_value = sources.resolve("summary")
  summary = parse_bool("summary", summary_value) if summary_value else False

  tenant = sources.resolve("tenant")
  subscription = sources.resolve("subscription")
  devcenter = sources.resolve("devcenter")
  project = sources.resolve("project")
  catalog = sources.resolve("catalog")
  definition = sources.resolve("definition")

  if action is not Action.SETUP:
    if cli is None:
      raise CliNotFound(f"An Azure CLI is required for action {action.value}.")
    if not tenant:
      tenant = query_account(cli, "tenantId", "tenant", runtime)
    if not subscription:
      subscription = query_account(cli, "id", "subscription", runtime)

    if not devcenter:
      raise MissingRequiredField("devcenter")
    if not project:
      raise MissingRequiredField("project")
    if action.requires_definition:
      if not catalog:
        raise MissingRequiredField("catalog")
      if not definition:
        raise MissingRequiredField("definition")

  config = Configuration(
    action=action,
    environment_name=identity.name,
    environment_type=identity.type,
    naming=naming,
    tenant=tenant,
    subscription=normalize_subscription(subscription),
    devcenter=devcenter,
    project=project,
    catalog=catalog,
    definition=definition,
    parameters=sources.resolve("parameters"),
    devcenter_extension=sources.resolve("devcenter-extension"),
    summary=summary,
  )

  runtime.info("Configuration:")
  runtime.info(json.dumps(config.to_dict(), indent=2))
  return config


def decompose_resource_group_id(resource_group_id: str) -> Tuple[str, str]:
  """Return ``(subscription, resource_group)`` from a resource group id."""
  key = "/resourceGroups/" if "/resourceGroups/" in resource_group_id else "/resourcegroups/"
  if key not in resource_group_id or SUBSCRIPTION_PREFIX not in resource_group_id:
    raise ValueError(f"'{resource_group_id}' is not a resource group id.")
  group = resource_group_id.split(key, 1)[1].split("/")[0]
  subscription = resource_group_id.split(SUBSCRIPTION_PREFIX, 1)[1].split("/")[0]
  if not group or not subscription:
    raise ValueError(f"'{resource_group_id}' is not a resource group id.")
  return subscription, group


def _optional_str(data: Dict[str, Any], *keys: str) -> str:
  for key in keys:
    value = data.get(key)
    if value is None:
      continue
    if not isinstance(value, str):
      raise ValueError(f"'{key}' must be a string.")
    return value
  return ""


@dataclass(frozen=True)
class Environment:
  """An environment as reported by the devcenter extension."""

  name: str
  resource_group_id: str = ""
  environment_type: str = ""
  catalog_name: str = ""
  definition_name: str = ""
  provisioning_state: str = ""
  parameters: Dict[str, Any] = field(default_factory=dict)
  user: str = ""

  @classmethod
  def from_dict(cls, data: Any) -> "Environment":
    if not isinstance(data, dict):
      raise ValueError("environment must be a JSON object.")
    name = _optional_str(data, "name")
    if not name:
      raise ValueError("environment has no name.")
    parameters = data.get("parameters") or {}
    if not isinstance(parameters, dict):
      raise ValueError("'parameters' must be an object.")
    return cls(
      name=name,
      resource_group_id=_optional_str(data, "resourceGroupId"),
      environment_type=_optional_str(data, "environmentType"),
      catalog_name=_optional_str(data, "catalogName"),
      definition_name=_optional_str(data, "environmentDefinitionName", "definitionName", "catalogItemName"),
      provisioning_state=_optional_str(data, "provisioningState"),
      parameters=parameters,
      user=_optional_str(data, "user"),
    )

  def resource_group(self) -> Optional[Tuple[str, str]]:
    """``(subscription, resource_group)``, or None while no resource group is assigned."""
    try:
      return decompose_resource_group_id(self.resource_group_id)
    except ValueError:
      return None

  @classmethod
  def from_result(cls, result: CliResult, operation: str) -> "Environment":
    try:
      return cls.from_dict(json.loads(result.stdout))
    except (json.JSONDecodeError, ValueError) as exc:
      raise LifecycleActionFailed(f"Failed to read environment returned by {operation}: {exc}") from exc


class EnvironmentClient:
  """The devcenter ``environment`` commands for one named environment."""

  def __init__(self, cli: AzureCli, config: Configuration) -> None:
    self._cli = cli
    self._config = config

  def _identity_args(self) -> List[str]:
    return [
      "--only-show-errors",
      "--dev-center",
      self._config.devcenter,
      "--project",
      self._config.project,
      "--name",
      self._config.environment_name,
    ]

  def _mutate_args(self) -> List[str]:
    args = [
      "--environment-type",
      self._config.environment_type,
      "--catalog-name",
      self._config.catalog,
      "--environment-definition-name",
      self._config.definition,
    ]
    if self._config.parameters:
      args.extend(["--parameters", self._config.parameters])
    return args

  def _run(self, verb: str, *extra: Sequence[str]) -> CliResult:
    args = [*ENVIRONMENT_COMMAND, verb, *self._identity_args()]
    for chunk in extra:
      args.extend(chunk)
    return self._cli.run(args)

  def show(self) -> CliResult:
    return self._run("show")

  def create(self) -> CliResult:
    return self._run("create", self._mutate_args())

  def update(self) -> CliResult:
    return self._run("update", self._mutate_args())

  def delete(self) -> CliResult:
    return self._run("delete", ["--yes"])


def install_extension(cli: AzureCli, config: Configuration, runtime: ActionsRuntime) -> None:
  runtime.info("Installing Azure CLI DevCenter extension")
  source = config.devcenter_extension
  if source:
    runtime.warning(
      f"Using user-provided devcenter extension. This may cause unexpected behavior. ({source})"
    )
  else:
    source = PREVIEW_DEVCENTER_EXTENSION
  result = cli.run(["extension", "add", "--yes", "--source", source])
  if not result.succeeded:
    raise ExtensionInstallFailed(f"Failed to install devcenter extension from {source}: {result.stderr}")


@dataclass(frozen=True)
class LifecycleResult:
  exists: bool = False
  created: bool = False
  environment: Optional[Environment] = None


def _mutation_failed(action: Action, result: CliResult) -> LifecycleActionFailed:
  return LifecycleActionFailed(f"Failed to {action.value} environment: {result.stderr}")


def run_lifecycle(config: Configuration, client: EnvironmentClient, runtime: ActionsRuntime) -> LifecycleResult:
  """Bring the environment in line with the configured action.

  ``show`` decides existence; a non-zero exit means the environment is
  absent. At most one mutating command is issued. Mutating an absent
  environment under get, update or delete is a no-op, as is create or ensure
  on an existing one.
  """
  action = config.action
  if action is Action.SETUP:
    return LifecycleResult()

  show = client.show()

  if show.succeeded:
    runtime.info("Found existing environment")
    environment = Environment.from_result(show, "show")

    if action is Action.UPDATE:
      runtime.info(f"Action is {action.value}, attempting to {action.value} environment")
      update = client.update()
      if not update.succeeded:
        raise _mutation_failed(action, update)
      runtime.info("Updated environment")
      environment = Environment.from_result(update, "update")
    elif action is Action.DELETE:
      runtime.info(f"Action is {action.value}, attempting to {action.value} environment")
      delete = client.delete()
      if not delete.succeeded:
        raise _mutation_failed(action, delete)
      runtime.info("Deleted environment")

    return LifecycleResult(exists=True, created=False, environment=environment)

  if action in (Action.CREATE, Action.ENSURE):
    runtime.info("No existing environment found")
    runtime.info(f"Action is {action.value}, attempting to {action.value} environment")
    create = client.create()
    if not create.succeeded:
      raise _mutation_failed(action, create)
    runtime.info("Created environment")
    return LifecycleResult(exists=True, created=True, environment=Environment.from_result(create, "create"))

  runtime.info(f"No existing environment found: code: {show.returncode}")
  return LifecycleResult()


def _format_bool(value: bool) -> str:
  return "true" if value else "false"


def project_outputs(config: Configuration, result: LifecycleResult) -> Dict[str, str]:
  outputs = {
    "name": config.environment_name,
    "type": config.environment_type,
  }
  if config.action is Action.SETUP:
    return outputs

  outputs["tenant"] = config.tenant

  environment = result.environment
  parts = environment.resource_group() if environment is not None else None
  if environment is not None and parts is not None:
    subscription, group = parts
    outputs["subscription"] = subscription
    outputs["resource-group"] = group
    outputs["resource-group-id"] = environment.resource_group_id
    outputs["portal-url"] = PORTAL_URL_TEMPLATE.format(
      tenant=config.tenant, resource_group_id=environment.resource_group_id
    )

  outputs["exists"] = _format_bool(result.exists)
  outputs["created"] = _format_bool(result.created)
  return outputs


def variable_name(key: str) -> str:
  return VARIABLE_PREFIX + key.upper().replace("-", "_")


def publish_outputs(outputs: Dict[str, str], runtime: ActionsRuntime) -> None:
  runtime.info("Setting outputs:")
  for key, value in outputs.items():
    runtime.info(f"  {key}: {value}")
    runtime.set_output(key, value)

  runtime.info("Setting environment variables:")
  for key, value in outputs.items():
    name = variable_name(key)
    runtime.info(f"  {name}: {value}")
    runtime.export_variable(name, value)


def collect_inputs(args: argparse.Namespace, runtime: ActionsRuntime) -> Dict[str, str]:
  inputs: Dict[str, str] = {}
  for name in PARAMETERS:
    value = str(getattr(args, name.replace("-", "_"), None) or "").strip()
    if not value:
      value = runtime.get_input(name)
    if value:
      inputs[name] = value
  return inputs


def orchestrate(args: argparse.Namespace, runtime: ActionsRuntime) -> int:
  inputs = collect_inputs(args, runtime)
  event = load_event_context(
    args.event_name or runtime.environ.get("GITHUB_EVENT_NAME", ""),
    args.event_path or runtime.environ.get("GITHUB_EVENT_PATH"),
    runtime,
    default_ref=runtime.environ.get("GITHUB_REF", ""),
  )

  action = resolve_action(inputs.get("action", ""), event, runtime)
  cli = None if action is Action.SETUP else AzureCli.locate(args.az_cli, runtime)
  config = resolve_configuration(action, inputs, event, runtime, cli=cli, root=Path(args.root).resolve())

  if cli is None:
    publish_outputs(project_outputs(config, LifecycleResult()), runtime)
    return 0

  install_extension(cli, config, runtime)
  result = run_lifecycle(config, EnvironmentClient(cli, config), runtime)
  publish_outputs(project_outputs(config, result), runtime)

  if config.summary:
    runtime.info("Summary requested; job summaries are not written by this tool.")
  return 0


PARAMETER_HELP = {
  "action": "Lifecycle action: setup (default), get, create, update, ensure, delete or auto.",
  "config": f"Glob pattern for the configuration file; the first match wins (default: {DEFAULT_CONFIG_FILE}).",
  "prefix": "Prefix of generated environment names (default: ci).",
  "suffix": "Suffix of generated environment names (default: the repository id).",
  "dev-branch": "Name of the dev branch, when the repository uses one.",
  "main-branch": "Name of the main branch (default: main).",
  "prod-environment-name": "Fixed environment name used for the prod tier.",
  "prod-environment-type": "Environment type for the main branch (default: Prod).",
  "staging-environment-type": "Environment type for pull requests into main with a dev branch (default: Staging).",
  "test-environment-type": "Environment type for other pull requests (default: Test).",
  "dev-environment-type": "Environment type for other branches (default: Dev).",
  "devcenter-extension": "Source of the devcenter Azure CLI extension to install instead of the default.",
  "summary": "Request a job summary (true or false). Accepted for compatibility only; no summary is written.",
  "devcenter": "Name of the dev center.",
  "project": "Name of the dev center project.",
  "catalog": "Catalog holding the environment definition.",
  "definition": "Environment definition name.",
  "parameters": "JSON string of parameters passed to the environment definition.",
  "tenant": "Azure tenant id (default: the signed-in account's tenant).",
  "subscription": "Azure subscription id (default: the signed-in account's subscription).",
}


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
  parser = argparse.ArgumentParser(description="Deployment environment orchestrator")
  parser.add_argument(
    "--root",
    default=".",
    help="Directory the configuration file pattern is resolved against (default: current directory).",
  )
  parser.add_argument(
    "--az-cli",
    default="az",
    help="Azure CLI executable name (default: az).",
  )
  parser.add_argument(
    "--event-name",
    default=None,
    help="CI event name (default: GITHUB_EVENT_NAME).",
  )
  parser.add_argument(
    "--event-path",
    default=None,
    help="Path to the CI event payload JSON (default: GITHUB_EVENT_PATH).",
  )
  for name in PARAMETERS:
    parser.add_argument(f"--{name}", default=None, help=PARAMETER_HELP[name])
  return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None, runtime: Optional[ActionsRuntime] = None) -> int:
  args = parse_arguments(argv)
  runtime = runtime or ActionsRuntime()
  try:
    return orchestrate(args, runtime)
  except AdeError as exc:
    runtime.error(str(exc))
    return 1
  except Exception as exc:  # pylint: disable=broad-except
    runtime.error(f"Unhandled error: {exc}")
    return 1


if __name__ == "__main__":
  sys.exit(main())
