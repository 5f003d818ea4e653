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

import os

import pytest
from pydantic import ValidationError

from tf_verify.config import (
    DEFAULT_LABEL_PREFIX,
    DEFAULT_TF_DIR,
    HarnessSettings,
    ScenarioConfig,
    unique_label,
)

MOCK_SUBSCRIPTION = "9e8be2f9-0000-0000-0000-000000000000"


def test_default_settings():
    settings = HarnessSettings()

    assert settings.label_prefix == DEFAULT_LABEL_PREFIX == "shet0028"
    assert settings.provider == "azure"
    assert settings.unique_labels is False
    assert os.path.isfile(os.path.join(DEFAULT_TF_DIR, "main.tf"))


def test_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv("ARM_SUBSCRIPTION_ID", MOCK_SUBSCRIPTION)
    monkeypatch.setenv("TF_VERIFY_LABEL_PREFIX", "abcd0001")
    monkeypatch.setenv("TF_VERIFY_CACHE_DIR", str(tmp_path))
    monkeypatch.setenv("TF_VERIFY_UNIQUE_LABELS", "true")
    monkeypatch.setenv("TF_VERIFY_PROVIDER", "ec2")

    settings = HarnessSettings.from_env(aws_region="eu-west-1")

    assert settings.subscription_id == MOCK_SUBSCRIPTION
    assert settings.label_prefix == "abcd0001"
    assert settings.cache_dir == str(tmp_path)
    assert settings.unique_labels is True
    assert settings.provider == "ec2"
    assert settings.aws_region == "eu-west-1"


def test_scenario_config():
    settings = HarnessSettings(terraform_dir="/tmp/infra")

    config = settings.scenario_config(name="vm-exists", region="eastus")

    assert config.infrastructure_directory == "/tmp/infra"
    assert config.input_variables == {"labelPrefix": "shet0028", "region": "eastus"}
    assert config.name == "vm-exists"


def test_scenario_config_unique_labels():
    settings = HarnessSettings(unique_labels=True)

    first = settings.scenario_config()
    second = settings.scenario_config()

    assert first.input_variables["labelPrefix"].startswith("shet0028")
    assert first.input_variables["labelPrefix"] != second.input_variables["labelPrefix"]
    assert first.name != second.name


def test_unique_label():
    label = unique_label("shet0028")
    assert label.startswith("shet0028")
    assert len(label) == len("shet0028") + 6


def test_scenario_config_is_frozen():
    config = ScenarioConfig(infrastructure_directory="/tmp/infra")

    with pytest.raises(ValidationError):
        config.infrastructure_directory = "/tmp/other"


def test_state_file(tmp_path):
    settings = HarnessSettings(cache_dir=str(tmp_path))
    config = settings.scenario_config(name="nic-attached")

    assert settings.state_file(config) == os.path.join(str(tmp_path), "nic-attached.tfstate")


def test_terraform_env():
    assert HarnessSettings().terraform_env() == {}

    settings = HarnessSettings(subscription_id=MOCK_SUBSCRIPTION, aws_profile="default")
    assert settings.terraform_env() == {
        "ARM_SUBSCRIPTION_ID": MOCK_SUBSCRIPTION,
        "AWS_PROFILE": "default",
    }
