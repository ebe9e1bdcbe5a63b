"""Remote repository description."""

from __future__ import annotations

from pathlib import PurePosixPath

from pydantic import BaseModel, ConfigDict, Field

from b9forge.models.shared_image import SHARED_IMAGES_ROOT_DIRECTORY


class RemoteRepo(BaseModel):
    """A peer repository reachable over ssh.

    ``repo_id`` is the logical name used in configuration and selection;
    it need not match any hostname.
    """

    model_config = ConfigDict(frozen=True)

    repo_id: str = Field(pattern=r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
    remote_path: str
    ssh_priv_key_file: str
    ssh_remote_host: str
    ssh_remote_port: int = Field(default=22, ge=1, le=65535)
    ssh_remote_user: str

    @property
    def shared_images_dir(self) -> str:
        """Directory on the remote host holding the shared images."""
        return str(PurePosixPath(self.remote_path) / SHARED_IMAGES_ROOT_DIRECTORY)

    @property
    def destination(self) -> str:
        return f"{self.ssh_remote_user}@{self.ssh_remote_host}"
