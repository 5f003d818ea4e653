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

"""Checks run against a provisioned Linux VM."""

from functools import partial

from .resources import CloudInspector, query_async
from .runner import ProvisionedState


async def check_vm_exists(state: ProvisionedState, inspector: CloudInspector) -> None:
    """The VM named by vm_name exists in resource_group_name."""

    vm_name = state["vm_name"]
    resource_group = state["resource_group_name"]

    exists = await query_async(inspector.virtual_machine_exists, vm_name, resource_group)
    if not exists:
        raise AssertionError(
            f"Virtual machine {vm_name} not found in resource group {resource_group}"
        )


async def check_vm_image_version(state: ProvisionedState, inspector: CloudInspector) -> None:
    """The VM runs exactly the image version Terraform reports."""

    expected = state["vm_image_version"]
    image = await query_async(
        inspector.get_virtual_machine_image, state["vm_name"], state["resource_group_name"]
    )
    if image.version != expected:
        raise AssertionError(
            f"Expected image version {expected!r}, virtual machine reports {image.version!r}"
        )


async def check_nic_attached(state: ProvisionedState, inspector: CloudInspector) -> None:
    """The NIC named by nic_name is attached to the VM."""

    nic_name = state["nic_name"]
    nics = await query_async(
        inspector.get_virtual_machine_nics, state["vm_name"], state["resource_group_name"]
    )
    if nic_name not in nics:
        raise AssertionError(f"NIC {nic_name} is not attached, attached NICs: {nics}")


SCENARIOS = {
    "vm_exists": check_vm_exists,
    "vm_image_version": check_vm_image_version,
    "nic_attached": check_nic_attached,
}


def bind(check, inspector: CloudInspector):
    """Bind a check to an inspector, producing a runner assertion callback."""
    return partial(check, inspector=inspector)
