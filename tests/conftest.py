from __future__ import annotations

import io
import json
from typing import Any, Dict, List, Optional, Sequence, Set

import pytest

from ade_orchestrator import ENVIRONMENT_COMMAND, ActionsRuntime, CliResult

RESOURCE_GROUP_ID = "/subscriptions/sub-123/resourceGroups/rg-ci-branch-feature/providers"


def environment_payload(name: str, **overrides: Any) -> Dict[str, Any]:
  payload = {
    "name": name,
    "environmentType": "Dev",
    "catalogName": "catalog",
    "environmentDefinitionName": "webapp",
    "resourceGroupId": RESOURCE_GROUP_ID,
    "provisioningState": "Succeeded",
    "parameters": {},
    "user": "user-1",
  }
  payload.update(overrides)
  return payload


class FakeCli:
  """Azure CLI stand-in that keeps one environment record in memory."""

  def __init__(
    self,
    existing: Optional[Dict[str, Any]] = None,
    failures: Optional[Set[str]] = None,
    tenant: str = "tenant-abc",
    subscription: str = "sub-123",
  ) -> None:
    self.existing = existing
    self.failures = set(failures or ())
    self.tenant = tenant
    self.subscription = subscription
    self.calls: List[List[str]] = []

  def verbs(self) -> List[str]:
    return [self._verb(call) for call in self.calls]

  def mutating_calls(self) -> List[str]:
    return [verb for verb in self.verbs() if verb in ("create", "update", "delete")]

  @staticmethod
  def _verb(command: List[str]) -> str:
    if tuple(command[:3]) == ENVIRONMENT_COMMAND:
      return command[3]
    return command[0]

  @staticmethod
  def _option(command: List[str], flag: str) -> str:
    return command[command.index(flag) + 1]

  def run(self, args: Sequence[str]) -> CliResult:
    command = [str(arg) for arg in args]
    self.calls.append(command)
    verb = self._verb(command)

    if verb in self.failures:
      return CliResult(tuple(command), 1, "", f"{verb} failed: boom")

    if verb == "account":
      query = self._option(command, "--query")
      value = self.tenant if query == "tenantId" else self.subscription
      return CliResult(tuple(command), 0, f"{value}\n" if value else "", "")

    if verb == "show":
      if self.existing is None:
        return CliResult(tuple(command), 3, "", "ResourceNotFound")
      return CliResult(tuple(command), 0, json.dumps(self.existing), "")

    if verb in ("create", "update"):
      self.existing = environment_payload(
        self._option(command, "--name"),
        environmentType=self._option(command, "--environment-type"),
      )
      return CliResult(tuple(command), 0, json.dumps(self.existing), "")

    if verb == "delete":
      self.existing = None
      return CliResult(tuple(command), 0, "", "")

    return CliResult(tuple(command), 0, "", "")


@pytest.fixture
def runtime(tmp_path) -> ActionsRuntime:
  output_file = tmp_path / "github_output"
  env_file = tmp_path / "github_env"
  output_file.write_text("", encoding="utf-8")
  env_file.write_text("", encoding="utf-8")
  environ = {
    "GITHUB_OUTPUT": str(output_file),
    "GITHUB_ENV": str(env_file),
    "GITHUB_REPOSITORY_ID": "4242",
  }
  return ActionsRuntime(environ=environ, stdout=io.StringIO(), stderr=io.StringIO())


@pytest.fixture
def fake_cli() -> FakeCli:
  return FakeCli()
