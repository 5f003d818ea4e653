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

"""Terraform driver used to provision and deprovision scenario infrastructure."""

import asyncio
import json
import os
import subprocess
from typing import Any, Dict, List, Optional

from .errors import DestroyError, OutputError, ProvisionError
from .logger import app_log


def render_var(name: str, value: Any) -> str:
    """Render a variable as a ``-var`` argument."""

    if value is None:
        value = "null"
    elif isinstance(value, bool):
        value = "true" if value else "false"
    elif isinstance(value, (list, tuple, dict)):
        value = json.dumps(value)
    return f"-var={name}={value}"


def render_output(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value)


class TerraformEngine:
    """
    Runs terraform against one configuration directory with a dedicated state file.

    Args:
        directory: Path to the Terraform configuration.
        variables: Input variables passed to apply and destroy.
        state_file: Path of the state file for this scenario. Scenarios sharing a
            directory must use distinct state files.
        env: (optional) Extra environment variables for every terraform command.
    """

    def __init__(
        self,
        directory: str,
        variables: Optional[Dict[str, Any]] = None,
        state_file: str = "terraform.tfstate",
        env: Optional[Dict[str, str]] = None,
    ) -> None:
        self.directory = os.path.abspath(directory)
        self.variables = dict(variables or {})
        self.state_file = os.path.abspath(state_file)
        self.env = {**os.environ, **(env or {})}
        self.destroyed = False

    @property
    def infra_vars(self) -> List[str]:
        return [render_var(k, v) for k, v in self.variables.items()]

    async def _run_async_subprocess(self, cmd: List[str], log_output: bool = False):

        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=self.directory,
            env=self.env,
        )

        if log_output:

            async def _stream_stdout() -> List[str]:
                chunks = []
                while True:
                    line = await proc.stdout.readline()
                    if not line:
                        break
                    line_str = line.decode("utf-8").strip()
                    chunks.append(line_str)
                    app_log.debug(line_str)
                return chunks

            # stderr is drained alongside stdout so a full stderr pipe cannot stall the child
            stdout_chunks, stderr = await asyncio.gather(_stream_stdout(), proc.stderr.read())
            await proc.wait()
            stderr = stderr.decode("utf-8").strip()
            stdout = os.linesep.join(stdout_chunks)

        else:
            stdout, stderr = await proc.communicate()
            stdout = stdout.decode("utf-8").strip()
            stderr = stderr.decode("utf-8").strip()

        if proc.returncode != 0:
            app_log.debug(stderr)
            raise subprocess.CalledProcessError(proc.returncode, cmd, stdout, stderr)

        return proc, stdout, stderr

    def init(self) -> None:
        """Runs terraform init in the configuration directory."""

        # Init is blocking so that scenarios sharing a directory do not race on .terraform
        cmd = ["terraform", "init", "-input=false"]
        app_log.debug(f"Running Terraform init command: {cmd}")
        try:
            proc = subprocess.run(
                cmd, cwd=self.directory, env=self.env, capture_output=True, text=True
            )
        except OSError as e:
            raise ProvisionError(f"Could not run terraform init: {e}", cmd=cmd) from e
        if proc.returncode != 0:
            raise ProvisionError(
                f"terraform init failed in {self.directory}: {proc.stderr.strip()}",
                cmd=cmd,
                returncode=proc.returncode,
                stderr=proc.stderr,
            )

    async def init_and_apply(self) -> Dict[str, str]:
        """
        Initializes the configuration, applies it and returns its outputs
        """

        self.init()
        os.makedirs(os.path.dirname(self.state_file), exist_ok=True)

        cmd = [
            "terraform",
            "apply",
            "-auto-approve",
            "-input=false",
            f"-state={self.state_file}",
        ] + self.infra_vars

        app_log.debug(f"Running Terraform apply command: {cmd}")

        try:
            await self._run_async_subprocess(cmd, log_output=True)
        except subprocess.CalledProcessError as e:
            raise ProvisionError(
                f"terraform apply failed: {e.stderr}",
                cmd=cmd,
                returncode=e.returncode,
                stderr=e.stderr,
            ) from e
        except OSError as e:
            raise ProvisionError(f"Could not run terraform apply: {e}", cmd=cmd) from e

        return await self.outputs()

    async def outputs(self) -> Dict[str, str]:
        cmd = ["terraform", "output", "-json", f"-state={self.state_file}"]
        try:
            _, stdout, _ = await self._run_async_subprocess(cmd)
        except subprocess.CalledProcessError as e:
            raise OutputError(
                f"terraform output failed: {e.stderr}", cmd=cmd, returncode=e.returncode, stderr=e.stderr
            ) from e
        except OSError as e:
            raise OutputError(f"Could not run terraform output: {e}", cmd=cmd) from e

        try:
            raw = json.loads(stdout or "{}")
        except ValueError as e:
            raise OutputError(f"Could not parse terraform output: {e}", cmd=cmd) from e

        return {key: render_output(item.get("value")) for key, item in raw.items()}

    async def output(self, key: str) -> str:
        cmd = ["terraform", "output", "-raw", f"-state={self.state_file}", key]
        try:
            _, value, _ = await self._run_async_subprocess(cmd)
        except subprocess.CalledProcessError as e:
            raise OutputError(
                f"Could not read output '{key}': {e.stderr}",
                cmd=cmd,
                returncode=e.returncode,
                stderr=e.stderr,
            ) from e
        return value

    async def destroy(self) -> None:
        """
        Invokes terraform destroy against the scenario state file and removes it
        """

        if self.destroyed:
            app_log.warning(f"Infrastructure for {self.state_file} was already destroyed, skipping")
            return
        self.destroyed = True

        if not os.path.exists(self.state_file):
            raise DestroyError(
                f"Could not find Terraform state file: {self.state_file}. Infrastructure may need to be manually deprovisioned."
            )

        cmd = [
            "terraform",
            "destroy",
            "-auto-approve",
            "-input=false",
            f"-state={self.state_file}",
        ] + self.infra_vars

        app_log.debug(f"Running teardown Terraform command: {cmd}")

        try:
            await self._run_async_subprocess(cmd, log_output=True)
        except subprocess.CalledProcessError as e:
            raise DestroyError(
                f"terraform destroy failed: {e.stderr}. Infrastructure may need to be manually deprovisioned.",
                cmd=cmd,
                returncode=e.returncode,
                stderr=e.stderr,
            ) from e
        except OSError as e:
            raise DestroyError(
                f"Could not run terraform destroy: {e}. Infrastructure may need to be manually deprovisioned.",
                cmd=cmd,
            ) from e

        os.remove(self.state_file)
        backup = f"{self.state_file}.backup"
        if os.path.exists(backup):
            os.remove(backup)
