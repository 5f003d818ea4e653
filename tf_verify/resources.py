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

"""Read-only queries against the cloud provider for provisioned compute instances."""

import asyncio
import contextlib
from functools import partial
from typing import List, Optional

import boto3
from azure.core.exceptions import (
    ClientAuthenticationError,
    HttpResponseError,
    ResourceNotFoundError,
    ServiceRequestError,
    ServiceResponseError,
)
from azure.identity import DefaultAzureCredential
from azure.mgmt.compute import ComputeManagementClient
from botocore.exceptions import (
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    NoCredentialsError,
    ReadTimeoutError,
)
from pydantic import BaseModel

from .config import HarnessSettings
from .errors import AuthError, NotFoundError, QueryError, TransientQueryError
from .logger import app_log

EC2_AUTH_ERROR_CODES = (
    "AuthFailure",
    "UnauthorizedOperation",
    "ExpiredToken",
    "InvalidClientTokenId",
    "OptInRequired",
)

EC2_LIVE_STATES = ["pending", "running", "stopping", "stopped", "shutting-down"]


class VMImage(BaseModel):
    """Image bound to a compute instance."""

    publisher: Optional[str] = None
    offer: Optional[str] = None
    sku: Optional[str] = None
    version: Optional[str] = None


class CloudInspector:
    """Queries a cloud account for the live state of a named compute instance."""

    def virtual_machine_exists(self, vm_name: str, resource_group: str) -> bool:
        raise NotImplementedError

    def get_virtual_machine_image(self, vm_name: str, resource_group: str) -> VMImage:
        raise NotImplementedError

    def get_virtual_machine_nics(self, vm_name: str, resource_group: str) -> List[str]:
        raise NotImplementedError


@contextlib.contextmanager
def _azure_errors(action: str):
    try:
        yield
    except ResourceNotFoundError as error:
        raise NotFoundError(f"{action}: {error.message}") from error
    except ClientAuthenticationError as error:
        app_log.error(error)
        raise AuthError(f"{action}: {error.message}") from error
    except HttpResponseError as error:
        app_log.error(error)
        if error.status_code in (401, 403):
            raise AuthError(f"{action}: {error.message}") from error
        raise QueryError(f"{action}: {error.message}") from error
    except (ServiceRequestError, ServiceResponseError) as error:
        app_log.error(error)
        raise TransientQueryError(f"{action}: {error.message}") from error


class AzureInspector(CloudInspector):
    """
    Inspects virtual machines in an Azure subscription.

    Args:
        subscription_id: The subscription the resource groups live in.
        credential: (optional) An azure-identity credential. Defaults to DefaultAzureCredential.
    """

    def __init__(self, subscription_id: str, credential=None) -> None:
        self.subscription_id = subscription_id
        self.credential = credential
        self._client = None

    @property
    def compute_client(self) -> ComputeManagementClient:
        if self._client is None:
            credential = self.credential or DefaultAzureCredential()
            self._client = ComputeManagementClient(credential, self.subscription_id)
        return self._client

    def get_virtual_machine(self, vm_name: str, resource_group: str):
        with _azure_errors(f"Get virtual machine {resource_group}/{vm_name}"):
            return self.compute_client.virtual_machines.get(resource_group, vm_name)

    def virtual_machine_exists(self, vm_name: str, resource_group: str) -> bool:
        """Return True if the VM exists else False"""
        try:
            self.get_virtual_machine(vm_name, resource_group)
        except NotFoundError:
            app_log.debug(f"Virtual machine {vm_name} not found in resource group {resource_group}")
            return False
        return True

    def get_virtual_machine_image(self, vm_name: str, resource_group: str) -> VMImage:
        vm = self.get_virtual_machine(vm_name, resource_group)
        image = vm.storage_profile.image_reference if vm.storage_profile else None
        if image is None:
            return VMImage()
        return VMImage(
            publisher=image.publisher, offer=image.offer, sku=image.sku, version=image.version
        )

    def get_virtual_machine_nics(self, vm_name: str, resource_group: str) -> List[str]:
        vm = self.get_virtual_machine(vm_name, resource_group)
        if not vm.network_profile or not vm.network_profile.network_interfaces:
            return []
        # NIC references are full resource IDs; the name is the last path segment
        return [nic.id.rstrip("/").split("/")[-1] for nic in vm.network_profile.network_interfaces]


class EC2Inspector(CloudInspector):
    """
    Inspects EC2 instances. Instances are matched by their Name tag, and the
    resource group is the value of the ``group_tag`` tag.

    The AMI id stands in for the image version, since AMIs carry no version field.
    """

    def __init__(
        self, profile: str = None, region: str = None, group_tag: str = "ResourceGroup"
    ) -> None:
        self.profile = profile
        self.region = region
        self.group_tag = group_tag
        self._client = None

    @property
    def ec2_client(self):
        if self._client is None:
            session = boto3.Session(profile_name=self.profile or None, region_name=self.region or None)
            self._client = session.client("ec2")
        return self._client

    @contextlib.contextmanager
    def _ec2_errors(self, action: str):
        try:
            yield
        except ClientError as error:
            code = error.response["Error"]["Code"]
            message = error.response["Error"].get("Message", "")
            if code.endswith(".NotFound"):
                raise NotFoundError(f"{action}: {message}") from error
            app_log.error(error)
            if code in EC2_AUTH_ERROR_CODES:
                raise AuthError(f"{action}: {message}") from error
            raise QueryError(f"{action}: {code} {message}") from error
        except NoCredentialsError as error:
            app_log.error(error)
            raise AuthError(f"{action}: {error}") from error
        except (EndpointConnectionError, ConnectTimeoutError, ReadTimeoutError) as error:
            app_log.error(error)
            raise TransientQueryError(f"{action}: {error}") from error

    def get_instance(self, vm_name: str, resource_group: str) -> dict:
        action = f"Describe instance {resource_group}/{vm_name}"
        with self._ec2_errors(action):
            response = self.ec2_client.describe_instances(
                Filters=[
                    {"Name": "tag:Name", "Values": [vm_name]},
                    {"Name": f"tag:{self.group_tag}", "Values": [resource_group]},
                    {"Name": "instance-state-name", "Values": EC2_LIVE_STATES},
                ]
            )
        for reservation in response["Reservations"]:
            for instance in reservation["Instances"]:
                return instance
        raise NotFoundError(f"{action}: no matching instance")

    def virtual_machine_exists(self, vm_name: str, resource_group: str) -> bool:
        """Return True if the instance exists else False"""
        try:
            instance = self.get_instance(vm_name, resource_group)
        except NotFoundError:
            app_log.debug(f"Instance {vm_name} not found in group {resource_group}")
            return False
        app_log.debug(f"Instance {vm_name}/{instance['InstanceId']} exists")
        return True

    def get_virtual_machine_image(self, vm_name: str, resource_group: str) -> VMImage:
        instance = self.get_instance(vm_name, resource_group)
        image_id = instance["ImageId"]
        with self._ec2_errors(f"Describe image {image_id}"):
            response = self.ec2_client.describe_images(ImageIds=[image_id])
        if not response["Images"]:
            raise NotFoundError(f"Describe image {image_id}: image not found")
        image = response["Images"][0]
        return VMImage(
            publisher=image.get("OwnerId"),
            offer=image.get("Name"),
            sku=image.get("Architecture"),
            version=image["ImageId"],
        )

    def get_virtual_machine_nics(self, vm_name: str, resource_group: str) -> List[str]:
        instance = self.get_instance(vm_name, resource_group)
        eni_ids = [eni["NetworkInterfaceId"] for eni in instance.get("NetworkInterfaces", [])]
        if not eni_ids:
            return []

        with self._ec2_errors(f"Describe network interfaces of {vm_name}"):
            response = self.ec2_client.describe_network_interfaces(NetworkInterfaceIds=eni_ids)

        names = []
        for eni in response["NetworkInterfaces"]:
            tags = {tag["Key"]: tag["Value"] for tag in eni.get("TagSet", [])}
            names.append(tags.get("Name", eni["NetworkInterfaceId"]))
        return names


def build_inspector(settings: HarnessSettings) -> CloudInspector:
    if settings.provider == "azure":
        return AzureInspector(settings.subscription_id)
    if settings.provider == "ec2":
        return EC2Inspector(profile=settings.aws_profile, region=settings.aws_region)
    raise ValueError(f"Unknown cloud provider '{settings.provider}', expected 'azure' or 'ec2'")


async def query_async(fn, *args, **kwargs):
    """Run a blocking inspector call in a non-blocking manner"""
    loop = asyncio.get_running_loop()
    fut = loop.run_in_executor(None, partial(fn, *args, **kwargs))
    return await fut
