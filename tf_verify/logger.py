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

"""Logger shared by the verification harness."""

import logging
import os
import sys

app_log = logging.getLogger("tf_verify")

log_level = os.getenv("TF_VERIFY_LOG_LEVEL", "WARNING").upper()
app_log.setLevel(log_level)

if not app_log.handlers:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        logging.Formatter("[%(asctime)s,%(msecs)03d] [%(levelname)s] %(message)s", "%Y-%m-%d %H:%M:%S")
    )
    app_log.addHandler(handler)
