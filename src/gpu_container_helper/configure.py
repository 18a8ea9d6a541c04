"""
Configure workflow: expose GPU driver components and devices to a container.

The workflow acquires library resources phase by phase, checks driver
requirements, selects devices and then drives the library's mount
operations. Every acquired resource is released exactly once, in reverse
order of acquisition, whichever phase fails.

Mounts already performed when a later mount fails are not rolled back.
"""

import logging
import os
from contextlib import ExitStack
from dataclasses import dataclass, field
from typing import Callable, FrozenSet, List, Optional, TypeVar

from .errors import (
    AllocationError, ConfigureError, DetectionError, InitializationError,
    LdcacheError, LibraryError, MountError,
)
from .library import Capability, Container, ContainerFlags, ContainerLibrary
from .requirements import MAX_REQUIREMENTS, check_requirements
from .selector import select_devices


logger = logging.getLogger(__name__)

T = TypeVar('T')


@dataclass
class ConfigureRequest:
    """Inputs of a single configure invocation."""
    rootfs: str
    pid: Optional[int] = None
    devices: Optional[str] = None
    requirements: List[str] = field(default_factory=list)
    capabilities: FrozenSet[Capability] = frozenset()
    no_cgroups: bool = False
    no_devbind: bool = False
    load_kmods: bool = False

    def __post_init__(self):
        if len(self.requirements) > MAX_REQUIREMENTS:
            raise ValueError(f"too many requirements (at most {MAX_REQUIREMENTS})")
        if self.pid is not None and self.pid <= 0:
            raise ValueError(f"invalid PID: {self.pid}")

    @property
    def supervised(self) -> bool:
        """A target PID makes the container supervised, otherwise standalone."""
        return self.pid is not None

    def target_pid(self) -> int:
        return self.pid if self.pid is not None else os.getpid()

    def container_flags(self) -> ContainerFlags:
        return ContainerFlags(
            no_cgroups=self.no_cgroups,
            no_devbind=self.no_devbind,
            supervised=self.supervised,
        )


class Configurator:
    """Runs the configure workflow against a container library."""

    def __init__(self, library: ContainerLibrary):
        self.library = library

    def configure(self, request: ConfigureRequest) -> None:
        """Configure a container with GPU support.

        Args:
            request: Target container, devices, requirements and capabilities

        Raises:
            ConfigureError: Subclass identifying the failing phase
        """
        lib = self.library
        pid = request.target_pid()
        flags = request.container_flags()
        logger.info(f"Configuring container PID {pid} rootfs {request.rootfs} "
                    f"({' '.join(flags.names())})")

        with ExitStack() as stack:
            context = _acquire(stack, AllocationError, "memory allocation",
                               lib.new_context, lib.release_context)
            config = _acquire(stack, AllocationError, "memory allocation",
                              lambda: lib.new_container_config(pid, request.rootfs),
                              lib.release_container_config)

            _call(InitializationError, lib.init, context, request.load_kmods)
            stack.callback(_release, lib.shutdown, context)

            container: Container = _acquire(
                stack, InitializationError, "container setup",
                lambda: lib.new_container(context, config, flags),
                lib.release_container)

            driver = _acquire(stack, DetectionError, "driver query",
                              lambda: lib.driver_info(context, request.capabilities),
                              lib.release_driver_info)
            devices = _acquire(stack, DetectionError, "device query",
                               lambda: lib.device_info(context, request.capabilities),
                               lib.release_device_info)
            logger.info(f"Detected driver {driver.kmod_version} (CUDA {driver.cuda_version}) "
                        f"and {len(devices)} GPU(s)")

            check_requirements(request.requirements, driver)

            selected = select_devices(request.devices, devices)

            _call(MountError, lib.driver_mount, context, container, driver)
            for ordinal in sorted(selected):
                device = selected[ordinal]
                _call(MountError, lib.device_mount, context, container, device)
                logger.info(f"Mounted GPU {ordinal} ({device.uuid})")

            _call(LdcacheError, lib.ldcache_update, context, container)

        logger.info(f"Container PID {pid} configured with {len(selected)} GPU(s)")


def _call(error: Callable[[str], ConfigureError], func: Callable[..., T], *args) -> T:
    """Call a library operation, translating its failure into a phase error."""
    try:
        return func(*args)
    except LibraryError as e:
        raise error(str(e)) from e


def _acquire(stack: ExitStack, error: Callable[[str], ConfigureError], what: str,
             create: Callable[[], T], release: Callable[[T], None]) -> T:
    """Create a resource and register its release on the stack."""
    resource = _call(error, create)
    if resource is None:
        raise error(f"{what} failed")
    stack.callback(_release, release, resource)
    return resource


def _release(release: Callable[[T], None], resource: T) -> None:
    try:
        release(resource)
    except LibraryError as e:
        logger.error(f"Error during cleanup: {e}")
