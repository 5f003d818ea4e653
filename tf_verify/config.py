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

"""Scenario and harness configuration."""

import os
import uuid
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_TF_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "infra"))
DEFAULT_CACHE_DIR = os.path.join(str(Path.home()), ".cache", "tf_verify")
DEFAULT_LABEL_PREFIX = "shet0028"

_TRUTHY = ("1", "true", "yes", "on")


def unique_label(prefix: str) -> str:
    """Return prefix with a short random suffix, used to namespace concurrent scenarios."""
    return f"{prefix}{uuid.uuid4().hex[:6]}"


class ScenarioConfig(BaseModel):
    """Inputs for a single provision/verify/destroy run."""

    model_config = ConfigDict(frozen=True)

    infrastructure_directory: str
    input_variables: Dict[str, Any] = Field(default_factory=dict)
    name: str = Field(default_factory=lambda: f"scenario-{uuid.uuid4().hex[:8]}")


class HarnessSettings(BaseModel):
    """Account scope and defaults injected into every scenario.

    Args:
        subscription_id: Azure subscription the resources are created and queried under.
        label_prefix: Value passed to the Terraform ``labelPrefix`` variable.
        terraform_dir: Directory holding the Terraform configuration.
        cache_dir: Directory for the per-scenario Terraform state files.
        provider: Cloud inspector backend, ``azure`` or ``ec2``.
        unique_labels: Append a random suffix to the label prefix of every scenario.
        aws_profile: (optional) AWS profile used by the ``ec2`` backend.
        aws_region: (optional) AWS region used by the ``ec2`` backend.
    """

    subscription_id: str = ""
    label_prefix: str = DEFAULT_LABEL_PREFIX
    terraform_dir: str = DEFAULT_TF_DIR
    cache_dir: str = DEFAULT_CACHE_DIR
    provider: str = "azure"
    unique_labels: bool = False
    aws_profile: str = ""
    aws_region: str = ""

    @classmethod
    def from_env(cls, **overrides) -> "HarnessSettings":
        values = {
            "subscription_id": os.getenv("ARM_SUBSCRIPTION_ID", ""),
            "label_prefix": os.getenv("TF_VERIFY_LABEL_PREFIX", DEFAULT_LABEL_PREFIX),
            "terraform_dir": os.getenv("TF_VERIFY_TERRAFORM_DIR", DEFAULT_TF_DIR),
            "cache_dir": os.getenv("TF_VERIFY_CACHE_DIR", DEFAULT_CACHE_DIR),
            "provider": os.getenv("TF_VERIFY_PROVIDER", "azure"),
            "unique_labels": os.getenv("TF_VERIFY_UNIQUE_LABELS", "").lower() in _TRUTHY,
            "aws_profile": os.getenv("AWS_PROFILE", ""),
            "aws_region": os.getenv("AWS_REGION", ""),
        }
        values.update(overrides)
        return cls(**values)

    def scenario_config(self, name: Optional[str] = None, **variables) -> ScenarioConfig:
        """Build a ScenarioConfig against terraform_dir with labelPrefix filled in."""

        label = unique_label(self.label_prefix) if self.unique_labels else self.label_prefix
        input_variables = {"labelPrefix": label}
        input_variables.update(variables)

        kwargs = {
            "infrastructure_directory": self.terraform_dir,
            "input_variables": input_variables,
        }
        if name:
            kwargs["name"] = name
        return ScenarioConfig(**kwargs)

    def state_file(self, config: ScenarioConfig) -> str:
        return os.path.join(self.cache_dir, f"{config.name}.tfstate")

    def terraform_env(self) -> Dict[str, str]:
        env = {}
        if self.subscription_id:
            env["ARM_SUBSCRIPTION_ID"] = self.subscription_id
        if self.aws_profile:
            env["AWS_PROFILE"] = self.aws_profile
        if self.aws_region:
            env["AWS_REGION"] = self.aws_region
        return env
