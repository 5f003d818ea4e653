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

"""Error kinds raised by the verification harness."""

from typing import List, Optional


class HarnessError(Exception):
    """Base class for all harness errors."""


class TerraformError(HarnessError):
    """A terraform command exited with a non-zero status."""

    def __init__(
        self,
        message: str,
        cmd: Optional[List[str]] = None,
        returncode: Optional[int] = None,
        stderr: str = "",
    ) -> None:
        super().__init__(message)
        self.cmd = cmd
        self.returncode = returncode
        self.stderr = stderr


class ProvisionError(TerraformError):
    """terraform init or apply failed."""


class OutputError(TerraformError):
    """An output could not be read from the Terraform state."""


class DestroyError(TerraformError):
    """terraform destroy failed or had nothing to destroy from."""


class QueryError(HarnessError):
    """A call to the cloud provider management API failed."""


class NotFoundError(QueryError):
    """The queried resource does not exist."""


class AuthError(QueryError):
    """Credentials are missing, invalid, expired or scoped to the wrong account."""


class TransientQueryError(QueryError):
    """The provider could not be reached."""


class ScenarioFailed(HarnessError):
    """Raised by ScenarioResult.raise_for_failure for a failed scenario."""
