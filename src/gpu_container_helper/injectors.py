"""
Mount backends for the NVML container library.

An ``Injector`` performs the privileged part of a configure call: bind
mounting driver components and device nodes into the container and
refreshing its dynamic linker cache. The default ``DryRunInjector`` only
logs and records what it would do.
"""

import importlib
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Tuple

from .errors import LibraryError
from .library import Capability, Container, Device, DriverInfo


logger = logging.getLogger(__name__)

# Driver components exposed for each capability.
DRIVER_COMPONENTS: Dict[Capability, Tuple[str, ...]] = {
    Capability.COMPUTE: ("libcuda.so", "libnvidia-ptxjitcompiler.so"),
    Capability.UTILITY: ("nvidia-smi", "libnvidia-ml.so"),
    Capability.VIDEO: ("libnvcuvid.so", "libnvidia-encode.so"),
    Capability.GRAPHIC: ("libnvidia-glcore.so", "libGLX_nvidia.so", "libEGL_nvidia.so"),
}


def driver_components(driver: DriverInfo) -> List[Tuple[Capability, Tuple[str, ...]]]:
    """Components to mount for the capabilities the driver was queried with."""
    return [(capability, DRIVER_COMPONENTS[capability])
            for capability in Capability
            if capability in driver.capabilities and capability in DRIVER_COMPONENTS]


class Injector(ABC):
    """Performs mounts into a container."""

    @abstractmethod
    def mount_driver(self, container: Container, driver: DriverInfo) -> None:
        """Mount the driver components selected by ``driver.capabilities``."""

    @abstractmethod
    def mount_device(self, container: Container, device: Device) -> None:
        """Mount a device node and allow it in the container's cgroup."""

    @abstractmethod
    def update_ldcache(self, container: Container) -> None:
        """Refresh the container's dynamic linker cache."""


class DryRunInjector(Injector):
    """Injector that records the operations it would perform."""

    def __init__(self):
        self.operations: List[str] = []

    def _record(self, operation: str) -> None:
        self.operations.append(operation)
        logger.info(f"[dry-run] {operation}")

    def mount_driver(self, container: Container, driver: DriverInfo) -> None:
        rootfs = container.config.rootfs
        self._record(f"mount driver {driver.kmod_version} into {rootfs}")

        for capability, components in driver_components(driver):
            self._record(f"mount {capability.value} components {' '.join(components)} into {rootfs}")
            if Capability.COMPAT32 in driver.capabilities:
                libraries = [c for c in components if c.endswith('.so')]
                if libraries:
                    self._record(f"mount 32-bit {capability.value} libraries "
                                 f"{' '.join(libraries)} into {rootfs}")

    def mount_device(self, container: Container, device: Device) -> None:
        if not container.flags.no_devbind:
            self._record(f"mount device {device.uuid} into {container.config.rootfs}")
        if container.cgroup_path:
            self._record(f"allow device {device.uuid} in cgroup {container.cgroup_path}")

    def update_ldcache(self, container: Container) -> None:
        self._record(f"update ldcache in {container.config.rootfs}")


def load_injector(spec: str) -> Injector:
    """Instantiate an injector from ``dry-run`` or a ``module:Class`` path."""
    if spec == "dry-run":
        return DryRunInjector()

    module_name, _, class_name = spec.partition(':')
    if not module_name or not class_name:
        raise LibraryError(f"invalid injector path: {spec}")

    try:
        module = importlib.import_module(module_name)
        injector_class = getattr(module, class_name)
    except (ImportError, AttributeError) as e:
        raise LibraryError(f"cannot load injector {spec}: {e}")

    injector = injector_class()
    if not isinstance(injector, Injector):
        raise LibraryError(f"{spec} is not an Injector")

    logger.debug(f"Loaded injector {spec}")
    return injector
