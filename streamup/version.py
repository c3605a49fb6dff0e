"""Build identity of the running streamup binary."""

import os
import platform
from dataclasses import dataclass

from streamup import __version__

DEV_COMMIT = "dev"
UNKNOWN_BUILD_DATE = "unknown"


@dataclass(frozen=True)
class BuildInfo:
    """Immutable build metadata, created once at startup.

    Attributes:
        version: semantic version of the package.
        git_commit: commit the build was made from, ``dev`` for source checkouts.
        build_date: timestamp of the build, ``unknown`` when not recorded.
    """

    version: str = __version__
    git_commit: str = DEV_COMMIT
    build_date: str = UNKNOWN_BUILD_DATE

    @property
    def is_release(self) -> bool:
        """True when the build records a real commit."""
        return bool(self.git_commit) and self.git_commit != DEV_COMMIT

    def user_agent(self) -> str:
        """HTTP user agent, ``streamup/<version> (<os>; <arch>) [git-<commit>]``."""
        agent = (
            f"streamup/{self.version} "
            f"({platform.system().lower()}; {platform.machine().lower()})"
        )
        if self.is_release:
            agent += f" git-{self.git_commit}"
        return agent

    def version_string(self) -> str:
        """Human readable version with commit and build date for releases."""
        if self.is_release:
            return f"{self.version} (commit {self.git_commit}, built {self.build_date})"
        return self.version


def build_info_from_env() -> BuildInfo:
    """Read the commit and build date stamped into the environment by packaging."""
    return BuildInfo(
        git_commit=os.getenv("STREAMUP_GIT_COMMIT", DEV_COMMIT),
        build_date=os.getenv("STREAMUP_BUILD_DATE", UNKNOWN_BUILD_DATE),
    )
