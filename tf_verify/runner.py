# Copyright 2021 Agnostiq Inc.
#
# This file is part of tf-verify. It has been altered from the originals
# distributed with the Covalent EC2 executor plugin.
#
# Licensed under the GNU Affero General Public License 3.0 (the "License").
# A copy of the License may be obtained with this software package or at
#
#      https://www.gnu.org/licenses/agpl-3.0.en.html
#
# Use of this file is prohibited except in compliance with the License. Any
# modifications or derivative works of this file must retain this copyright
# notice, and modified files must contain a notice indicating that they have
# been altered from the originals.
#
# tf-verify is distributed in the hope that it will be useful, but WITHOUT
# ANY WARRANTY; without even the implied warranty of MERCHANTABILITY or
# FITNESS FOR A PARTICULAR PURPOSE. See the License for more details.
#
# Relief from the License may be granted by purchasing a commercial license.

"""Runs a scenario: provision, verify and always deprovision."""

import contextlib
import enum
import inspect
from typing import Callable, Dict, Iterator, List, Optional

from pydantic import BaseModel, Field

from .config import HarnessSettings, ScenarioConfig
from .errors import DestroyError, OutputError, ProvisionError, QueryError, ScenarioFailed
from .logger import app_log
from .terraform import TerraformEngine


class ScenarioStage(str, enum.Enum):
    NOT_STARTED = "NOT_STARTED"
    PROVISIONED = "PROVISIONED"
    VERIFIED = "VERIFIED"
    ASSERTION_FAILED = "ASSERTION_FAILED"
    DEPROVISIONED = "DEPROVISIONED"
    PROVISION_ERROR = "PROVISION_ERROR"


class ScenarioResult(BaseModel):
    passed: bool
    failure_reason: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)
    stage: ScenarioStage = ScenarioStage.NOT_STARTED

    def raise_for_failure(self) -> None:
        """Raise ScenarioFailed if the scenario did not pass."""

        if self.passed:
            return
        message = self.failure_reason or "Scenario failed"
        if self.warnings:
            message += "\nWarnings:\n" + "\n".join(f"  {w}" for w in self.warnings)
        raise ScenarioFailed(message)


class ProvisionedState:
    """Read-only view of the Terraform outputs of a live scenario."""

    def __init__(self, outputs: Dict[str, str]) -> None:
        self._outputs = dict(outputs)
        self.valid = True
        self.warnings: List[str] = []

    def __getitem__(self, key: str) -> str:
        if not self.valid:
            raise OutputError(f"Output '{key}' read after the infrastructure was destroyed")
        try:
            return self._outputs[key]
        except KeyError:
            raise OutputError(f"Terraform output '{key}' not found") from None

    def __contains__(self, key: str) -> bool:
        return self.valid and key in self._outputs

    def __iter__(self) -> Iterator[str]:
        return iter(self._outputs if self.valid else ())

    def __len__(self) -> int:
        return len(self._outputs) if self.valid else 0

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self[key] if key in self._outputs else default

    def invalidate(self) -> None:
        self.valid = False


def _describe(error: BaseException) -> str:
    return f"{type(error).__name__}: {error}"


class ScenarioRunner:
    """
    Sequences one scenario against Terraform.

    Args:
        settings: (optional) Harness settings supplying the state directory and the
            environment handed to terraform. Defaults to HarnessSettings.from_env().
    """

    def __init__(self, settings: HarnessSettings = None) -> None:
        self.settings = settings or HarnessSettings.from_env()

    def engine_for(self, config: ScenarioConfig) -> TerraformEngine:
        return TerraformEngine(
            config.infrastructure_directory,
            config.input_variables,
            state_file=self.settings.state_file(config),
            env=self.settings.terraform_env(),
        )

    async def _destroy(self, engine: TerraformEngine, warnings: List[str]) -> None:
        try:
            await engine.destroy()
        except DestroyError as e:
            app_log.warning(str(e))
            warnings.append(_describe(e))

    async def run(self, config: ScenarioConfig, assertions: Callable) -> ScenarioResult:
        """
        Provisions config, calls assertions with the ProvisionedState and destroys
        the infrastructure on every exit path.
        """

        engine = self.engine_for(config)
        warnings: List[str] = []
        failure_reason = None
        stage = ScenarioStage.NOT_STARTED
        state = None

        try:
            try:
                outputs = await engine.init_and_apply()
            except ProvisionError as e:
                app_log.error(f"Provisioning {config.name} failed: {e}")
                failure_reason = _describe(e)
                stage = ScenarioStage.PROVISION_ERROR
            except OutputError as e:
                app_log.error(f"Reading outputs of {config.name} failed: {e}")
                failure_reason = _describe(e)
                stage = ScenarioStage.PROVISIONED
            else:
                stage = ScenarioStage.PROVISIONED
                state = ProvisionedState(outputs)
                try:
                    returned = assertions(state)
                    if inspect.isawaitable(returned):
                        await returned
                except (OutputError, QueryError, AssertionError) as e:
                    app_log.info(f"Scenario {config.name} failed: {e}")
                    failure_reason = _describe(e)
                    stage = ScenarioStage.ASSERTION_FAILED
                else:
                    stage = ScenarioStage.VERIFIED
        finally:
            await self._destroy(engine, warnings)
            if state is not None:
                state.invalidate()

        if stage != ScenarioStage.PROVISION_ERROR:
            stage = ScenarioStage.DEPROVISIONED

        return ScenarioResult(
            passed=failure_reason is None,
            failure_reason=failure_reason,
            warnings=warnings,
            stage=stage,
        )

    @contextlib.asynccontextmanager
    async def provisioned(self, config: ScenarioConfig):
        """
        Apply config for the duration of the block and destroy it afterwards.

        A failed destroy is logged and recorded in the yielded state's ``warnings``.
        """

        engine = self.engine_for(config)
        state = None
        try:
            state = ProvisionedState(await engine.init_and_apply())
            yield state
        finally:
            warnings: List[str] = state.warnings if state is not None else []
            await self._destroy(engine, warnings)
            if state is not None:
                state.invalidate()


async def run_scenario(
    config: ScenarioConfig, assertions: Callable, settings: HarnessSettings = None
) -> ScenarioResult:
    return await ScenarioRunner(settings).run(config, assertions)
