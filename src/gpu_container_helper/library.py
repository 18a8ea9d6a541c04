"""
Container library interface and the records it exchanges.

The configure workflow never talks to the GPU driver or performs mounts
itself. It drives a ``ContainerLibrary`` backend which discovers driver and
device metadata and injects them into a container. Backends raise
``LibraryError`` on any failure.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, FrozenSet, List, Optional


logger = logging.getLogger(__name__)


class Capability(Enum):
    """Driver capabilities that can be exposed to a container."""
    COMPUTE = "compute"
    UTILITY = "utility"
    VIDEO = "video"
    GRAPHIC = "graphic"
    COMPAT32 = "compat32"

    @classmethod
    def parse(cls, names: str) -> FrozenSet["Capability"]:
        """Parse a space-separated list of capability names."""
        capabilities = set()
        for name in names.split():
            try:
                capabilities.add(cls(name.lower()))
            except ValueError:
                raise ValueError(f"unknown capability: {name}")
        return frozenset(capabilities)


@dataclass(frozen=True)
class DriverInfo:
    """Installed driver stack versions and the capabilities it was queried for."""
    kmod_version: str
    cuda_version: str
    nvrm_version: Optional[str] = None
    capabilities: FrozenSet[Capability] = frozenset()


@dataclass(frozen=True)
class Device:
    """A GPU as reported by discovery, identified by its ordinal and UUID."""
    ordinal: int
    uuid: str
    model: Optional[str] = None
    busid: Optional[str] = None


@dataclass(frozen=True)
class ContainerConfig:
    """Target of a configure call."""
    pid: int
    rootfs: str


@dataclass(frozen=True)
class ContainerFlags:
    """Container setup flags."""
    no_cgroups: bool = False
    no_devbind: bool = False
    supervised: bool = False

    def names(self) -> List[str]:
        names = []
        if self.no_cgroups:
            names.append("no-cgroups")
        if self.no_devbind:
            names.append("no-devbind")
        names.append("supervised" if self.supervised else "standalone")
        return names


@dataclass
class Container:
    """Handle on a container whose resource scope has been validated."""
    config: ContainerConfig
    flags: ContainerFlags
    cgroup_path: Optional[str] = None


class ContainerLibrary(ABC):
    """Discovery and injection API consumed by the configure workflow.

    Every ``new_*``/``*_info`` call returns an opaque handle that the caller
    owns and must hand back to the matching ``release_*`` call exactly once.
    """

    @abstractmethod
    def new_context(self) -> Any:
        """Create a library context."""

    @abstractmethod
    def new_container_config(self, pid: int, rootfs: str) -> ContainerConfig:
        """Create a container config value."""

    @abstractmethod
    def init(self, context: Any, load_kmods: bool = False) -> None:
        """Initialise a library context."""

    @abstractmethod
    def shutdown(self, context: Any) -> None:
        """Undo ``init``."""

    @abstractmethod
    def new_container(self, context: Any, config: ContainerConfig,
                      flags: ContainerFlags) -> Container:
        """Enter and validate the container's resource scope."""

    @abstractmethod
    def driver_info(self, context: Any,
                    capabilities: FrozenSet[Capability]) -> DriverInfo:
        """Query installed driver metadata."""

    @abstractmethod
    def device_info(self, context: Any,
                    capabilities: FrozenSet[Capability]) -> List[Device]:
        """Query GPU devices in discovery order."""

    @abstractmethod
    def driver_mount(self, context: Any, container: Container,
                     driver: DriverInfo) -> None:
        """Mount driver components into the container."""

    @abstractmethod
    def device_mount(self, context: Any, container: Container,
                     device: Device) -> None:
        """Mount a single device into the container."""

    @abstractmethod
    def ldcache_update(self, context: Any, container: Container) -> None:
        """Refresh the container's dynamic linker cache."""

    # Release hooks. The default implementations have nothing to free.

    def release_context(self, context: Any) -> None:
        logger.debug("Released library context")

    def release_container_config(self, config: ContainerConfig) -> None:
        logger.debug(f"Released container config for PID {config.pid}")

    def release_container(self, container: Container) -> None:
        logger.debug(f"Released container handle for PID {container.config.pid}")

    def release_driver_info(self, driver: DriverInfo) -> None:
        logger.debug("Released driver info")

    def release_device_info(self, devices: List[Device]) -> None:
        logger.debug(f"Released device info ({len(devices)} devices)")
