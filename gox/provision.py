"""
Engine binary provisioning.

Extracts the bundled Xray executable into the data directory on first run.
An existing file at the target path is treated as already provisioned: there
is no checksum or version check.
"""

import logging
import os
import shutil
from pathlib import Path

from .config import config
from .errors import ProvisionError

logger = logging.getLogger(__name__)


class BinaryProvisioner:
    """Copies the bundled engine binary to its local path once."""

    def __init__(self, source=None):
        self.source = Path(source or config.engine_resource)

    def ensure(self, target) -> Path:
        """
        Make sure the engine binary exists at `target`.

        Returns the target path. Raises ProvisionError if the bundled
        resource cannot be read or the target cannot be written.
        """
        target = Path(target)
        if target.exists():
            logger.debug(f"Engine binary already present at {target}")
            return target

        # Copy under a temporary name so a failed extraction never leaves a
        # partial file that later calls would accept as provisioned.
        partial = target.with_name(target.name + ".part")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with open(self.source, "rb") as src, open(partial, "wb") as dst:
                shutil.copyfileobj(src, dst)
            os.chmod(partial, 0o755)
            os.replace(partial, target)
        except OSError as e:
            try:
                partial.unlink()
            except OSError:
                pass
            raise ProvisionError(f"Failed to extract engine binary to {target}: {e}") from e

        logger.info(f"Extracted engine binary from {self.source} to {target}")
        return target
