"""
NVML-backed container library.

Driver and device discovery go through pynvml, the target process is
validated with psutil, and mounts are delegated to an ``Injector``.
"""

import logging
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import FrozenSet, List, Optional

import psutil
import pynvml

from .errors import LibraryError
from .injectors import DryRunInjector, Injector
from .library import (
    Capability, Container, ContainerConfig, ContainerFlags, ContainerLibrary,
    Device, DriverInfo,
)


logger = logging.getLogger(__name__)

KMOD_VERSION_FILE = "/sys/module/nvidia/version"


@dataclass
class NvmlContext:
    """Library context state."""
    initialized: bool = False


def _to_str(value) -> str:
    # Older pynvml releases return bytes.
    if isinstance(value, bytes):
        return value.decode('utf-8')
    return value


def format_cuda_version(version: int) -> str:
    """Format an NVML CUDA driver version, e.g. 12020 -> "12.2"."""
    return f"{version // 1000}.{(version % 1000) // 10}"


class NvmlLibrary(ContainerLibrary):
    """Container library using NVML for discovery."""

    def __init__(self, injector: Optional[Injector] = None):
        self.injector = injector or DryRunInjector()

    def new_context(self) -> NvmlContext:
        return NvmlContext()

    def new_container_config(self, pid: int, rootfs: str) -> ContainerConfig:
        return ContainerConfig(pid=pid, rootfs=os.path.abspath(rootfs))

    def init(self, context: NvmlContext, load_kmods: bool = False) -> None:
        if load_kmods:
            self._load_kernel_modules()

        try:
            pynvml.nvmlInit()
        except pynvml.NVMLError as e:
            raise LibraryError(f"NVML initialization failed: {e}")

        context.initialized = True
        logger.debug("NVML initialized")

    def shutdown(self, context: NvmlContext) -> None:
        if not context.initialized:
            return
        context.initialized = False
        try:
            pynvml.nvmlShutdown()
            logger.debug("NVML shutdown")
        except pynvml.NVMLError as e:
            raise LibraryError(f"NVML shutdown failed: {e}")

    def _load_kernel_modules(self) -> None:
        """Load the NVIDIA kernel modules and create their device nodes."""
        try:
            result = subprocess.run(
                ['nvidia-modprobe', '-u', '-c=0'],
                capture_output=True,
                text=True
            )
        except FileNotFoundError:
            raise LibraryError("nvidia-modprobe not found")

        if result.returncode != 0:
            raise LibraryError(f"failed to load kernel modules: {result.stderr.strip()}")
        logger.info("Loaded NVIDIA kernel modules")

    def new_container(self, context: NvmlContext, config: ContainerConfig,
                      flags: ContainerFlags) -> Container:
        if not Path(config.rootfs).is_dir():
            raise LibraryError(f"rootfs {config.rootfs} is not a directory")

        if not psutil.pid_exists(config.pid):
            raise LibraryError(f"process {config.pid} not found")

        cgroup_path = None
        if not flags.no_cgroups:
            cgroup_path = find_devices_cgroup(config.pid)
            if cgroup_path is None:
                raise LibraryError(f"failed to find devices cgroup for PID {config.pid}")

        logger.debug(f"Container PID {config.pid}: rootfs={config.rootfs}, "
                     f"cgroup={cgroup_path}, flags={flags.names()}")
        return Container(config=config, flags=flags, cgroup_path=cgroup_path)

    def driver_info(self, context: NvmlContext,
                    capabilities: FrozenSet[Capability]) -> DriverInfo:
        try:
            nvrm_version = _to_str(pynvml.nvmlSystemGetDriverVersion())
            cuda_version = format_cuda_version(pynvml.nvmlSystemGetCudaDriverVersion())
        except pynvml.NVMLError as e:
            raise LibraryError(f"driver query failed: {e}")

        kmod_version = _read_kmod_version() or nvrm_version
        logger.debug(f"Driver query ({_names(capabilities)}): kmod={kmod_version}, "
                     f"cuda={cuda_version}")
        return DriverInfo(
            kmod_version=kmod_version,
            cuda_version=cuda_version,
            nvrm_version=nvrm_version,
            capabilities=frozenset(capabilities)
        )

    def device_info(self, context: NvmlContext,
                    capabilities: FrozenSet[Capability]) -> List[Device]:
        try:
            devices = []
            for i in range(pynvml.nvmlDeviceGetCount()):
                handle = pynvml.nvmlDeviceGetHandleByIndex(i)
                devices.append(Device(
                    ordinal=i,
                    uuid=_to_str(pynvml.nvmlDeviceGetUUID(handle)),
                    model=_to_str(pynvml.nvmlDeviceGetName(handle)),
                    busid=_to_str(pynvml.nvmlDeviceGetPciInfo(handle).busId)
                ))
        except pynvml.NVMLError as e:
            raise LibraryError(f"device query failed: {e}")

        # Device nodes do not depend on the capabilities, and 32-bit
        # compatibility only concerns driver libraries.
        logger.debug(f"Device query ({_names(capabilities - {Capability.COMPAT32})}): {len(devices)} GPU(s)")
        return devices

    def driver_mount(self, context: NvmlContext, container: Container,
                     driver: DriverInfo) -> None:
        self.injector.mount_driver(container, driver)

    def device_mount(self, context: NvmlContext, container: Container,
                     device: Device) -> None:
        self.injector.mount_device(container, device)

    def ldcache_update(self, context: NvmlContext, container: Container) -> None:
        self.injector.update_ldcache(container)


def _names(capabilities: FrozenSet[Capability]) -> str:
    return ' '.join(sorted(c.value for c in capabilities)) or "none"


def _read_kmod_version() -> Optional[str]:
    try:
        return Path(KMOD_VERSION_FILE).read_text().strip() or None
    except OSError:
        return None


def find_devices_cgroup(pid: int) -> Optional[str]:
    """Find the devices cgroup path of a process.

    Prefers the cgroup v1 ``devices`` controller and falls back to the v2
    unified hierarchy.
    """
    cgroup_file = Path(f"/proc/{pid}/cgroup")
    try:
        cgroup_content = cgroup_file.read_text()
    except OSError as e:
        logger.debug(f"Cannot read {cgroup_file}: {e}")
        return None

    unified_path = None
    for line in cgroup_content.splitlines():
        parts = line.split(':', 2)
        if len(parts) != 3:
            continue
        hierarchy, controllers, path = parts

        if 'devices' in controllers.split(','):
            full_path = f"/sys/fs/cgroup/devices{path}"
            if Path(full_path).exists():
                return full_path
        elif hierarchy == '0' and controllers == '':
            unified_path = f"/sys/fs/cgroup{path}"

    if unified_path and Path(unified_path).exists():
        return unified_path

    logger.debug(f"Could not determine devices cgroup for PID {pid}")
    return None
