"""
Tests for the configure workflow: phase ordering, failures and resource release.
"""

import os

import pytest

from gpu_container_helper.configure import Configurator, ConfigureRequest
from gpu_container_helper.errors import (
    AllocationError, DetectionError, DeviceSelectionError, InitializationError,
    LdcacheError, LibraryError, MountError, RequirementError,
)
from gpu_container_helper.library import (
    Capability, Container, ContainerConfig, ContainerLibrary, Device, DriverInfo,
)


class FakeLibrary(ContainerLibrary):
    """Container library recording every call and every live resource."""

    def __init__(self, devices=None, driver=None, fail=None):
        self.devices = devices if devices is not None else [
            Device(ordinal=0, uuid="GPU-1234-aaaa"),
            Device(ordinal=1, uuid="GPU-5678-bbbb"),
            Device(ordinal=2, uuid="GPU-9abc-cccc"),
        ]
        self.driver = driver or DriverInfo(kmod_version="384.81", cuda_version="9.0")
        self.fail = fail or {}
        self.calls = []
        self.acquired = []
        self.released = []
        self.mounted = []

    def _step(self, name, *args):
        self.calls.append(name)
        failure = self.fail.get(name)
        if failure is not None and failure(*args):
            raise LibraryError(f"{name} failed")

    def _acquire(self, name, resource):
        self.acquired.append(name)
        return resource

    def new_context(self):
        self._step("new_context")
        return self._acquire("context", object())

    def new_container_config(self, pid, rootfs):
        self._step("new_container_config")
        return self._acquire("config", ContainerConfig(pid=pid, rootfs=rootfs))

    def init(self, context, load_kmods=False):
        self._step("init", load_kmods)
        self.acquired.append("init")

    def shutdown(self, context):
        self.calls.append("shutdown")
        self.released.append("init")

    def new_container(self, context, config, flags):
        self._step("new_container")
        return self._acquire("container", Container(config=config, flags=flags))

    def driver_info(self, context, capabilities):
        self._step("driver_info", capabilities)
        return self._acquire("driver", self.driver)

    def device_info(self, context, capabilities):
        self._step("device_info", capabilities)
        return self._acquire("devices", list(self.devices))

    def driver_mount(self, context, container, driver):
        self._step("driver_mount")
        self.mounted.append("driver")

    def device_mount(self, context, container, device):
        self._step("device_mount", device)
        self.mounted.append(device.ordinal)

    def ldcache_update(self, context, container):
        self._step("ldcache_update")

    def release_context(self, context):
        self.released.append("context")

    def release_container_config(self, config):
        self.released.append("config")

    def release_container(self, container):
        self.released.append("container")

    def release_driver_info(self, driver):
        self.released.append("driver")

    def release_device_info(self, devices):
        self.released.append("devices")


def always(*args):
    return True


@pytest.fixture
def request_all():
    return ConfigureRequest(rootfs="/rootfs", pid=1234, devices="all")


class TestConfigureSuccess:
    """Test a successful configure call."""

    def test_phase_order(self, request_all):
        """Test that phases run in order and mounts follow ordinal order."""
        library = FakeLibrary()

        Configurator(library).configure(request_all)

        assert library.calls == [
            "new_context", "new_container_config", "init", "new_container",
            "driver_info", "device_info", "driver_mount",
            "device_mount", "device_mount", "device_mount",
            "ldcache_update", "shutdown",
        ]
        assert library.mounted == ["driver", 0, 1, 2]

    def test_release_in_reverse_order(self, request_all):
        """Test that resources are released once in reverse acquisition order."""
        library = FakeLibrary()

        Configurator(library).configure(request_all)

        assert library.released == list(reversed(library.acquired))

    def test_selected_devices_only(self):
        """Test that only selected devices are mounted, in ordinal order."""
        library = FakeLibrary()
        request = ConfigureRequest(rootfs="/rootfs", devices="2,GPU-1234")

        Configurator(library).configure(request)

        assert library.mounted == ["driver", 0, 2]

    def test_no_device_spec(self):
        """Test that without a device specification only the driver is mounted."""
        library = FakeLibrary()

        Configurator(library).configure(ConfigureRequest(rootfs="/rootfs"))

        assert library.mounted == ["driver"]
        assert "ldcache_update" in library.calls

    def test_capabilities_passed_to_queries(self):
        """Test that driver and device queries receive the capability set."""
        library = FakeLibrary()
        capabilities = frozenset({Capability.COMPUTE, Capability.COMPAT32})
        seen = []
        library.fail = {
            "driver_info": lambda caps: seen.append(caps),
            "device_info": lambda caps: seen.append(caps),
        }

        Configurator(library).configure(
            ConfigureRequest(rootfs="/rootfs", capabilities=capabilities))

        assert seen == [capabilities, capabilities]

    def test_load_kmods_passed_to_init(self):
        """Test that the kernel module flag reaches library initialisation."""
        library = FakeLibrary()
        seen = []
        library.fail = {"init": lambda load_kmods: seen.append(load_kmods)}

        Configurator(library).configure(ConfigureRequest(rootfs="/rootfs", load_kmods=True))

        assert seen == [True]


class TestContainerFlags:
    """Test supervised and standalone container flags."""

    def test_supervised_with_pid(self):
        """Test that a target PID makes the container supervised."""
        request = ConfigureRequest(rootfs="/rootfs", pid=42, no_cgroups=True)

        flags = request.container_flags()

        assert flags.supervised
        assert flags.names() == ["no-cgroups", "supervised"]
        assert request.target_pid() == 42

    def test_standalone_without_pid(self):
        """Test that without a PID the current process is configured standalone."""
        request = ConfigureRequest(rootfs="/rootfs", no_devbind=True)

        assert request.container_flags().names() == ["no-devbind", "standalone"]
        assert request.target_pid() == os.getpid()

    def test_invalid_request(self):
        """Test request validation."""
        with pytest.raises(ValueError):
            ConfigureRequest(rootfs="/rootfs", pid=0)
        with pytest.raises(ValueError):
            ConfigureRequest(rootfs="/rootfs", requirements=["cuda>=1"] * 17)


class TestConfigureFailures:
    """Test failures at each phase."""

    @pytest.mark.parametrize("step,error", [
        ("new_context", AllocationError),
        ("new_container_config", AllocationError),
        ("init", InitializationError),
        ("new_container", InitializationError),
        ("driver_info", DetectionError),
        ("device_info", DetectionError),
        ("driver_mount", MountError),
        ("device_mount", MountError),
        ("ldcache_update", LdcacheError),
    ])
    def test_release_balance(self, request_all, step, error):
        """Test that every acquired resource is released exactly once."""
        library = FakeLibrary(fail={step: always})

        with pytest.raises(error) as exc_info:
            Configurator(library).configure(request_all)

        assert library.released == list(reversed(library.acquired))
        assert f"{step} failed" in str(exc_info.value)
        assert step in library.calls

    def test_nothing_to_release_on_first_failure(self, request_all):
        """Test that a failing context allocation releases nothing."""
        library = FakeLibrary(fail={"new_context": always})

        with pytest.raises(AllocationError):
            Configurator(library).configure(request_all)

        assert library.acquired == []
        assert library.released == []

    def test_missing_handle_is_allocation_failure(self, request_all):
        """Test that a library returning no handle is treated as a failure."""
        library = FakeLibrary()
        library.new_container_config = lambda pid, rootfs: None

        with pytest.raises(AllocationError) as exc_info:
            Configurator(library).configure(request_all)

        assert str(exc_info.value) == "allocation error: memory allocation failed"
        assert library.released == ["context"]

    def test_requirement_failure_stops_before_mounts(self):
        """Test that an unmet requirement aborts before any mount."""
        library = FakeLibrary(driver=DriverInfo(kmod_version="384", cuda_version="9.0"))
        request = ConfigureRequest(rootfs="/rootfs", devices="all",
                                   requirements=["cuda>=9.0", "driver<300"])

        with pytest.raises(RequirementError) as exc_info:
            Configurator(library).configure(request)

        assert exc_info.value.requirement == "driver<300"
        assert library.mounted == []
        assert library.released == list(reversed(library.acquired))

    def test_device_failure_stops_before_mounts(self):
        """Test that an unresolvable device aborts before any mount."""
        library = FakeLibrary()
        request = ConfigureRequest(rootfs="/rootfs", devices="0,5")

        with pytest.raises(DeviceSelectionError) as exc_info:
            Configurator(library).configure(request)

        assert exc_info.value.token == "5"
        assert library.mounted == []
        assert "driver_mount" not in library.calls
        assert library.released == list(reversed(library.acquired))

    def test_device_mount_failure_aborts_loop_without_rollback(self, request_all):
        """Test that a device mount failure stops later mounts and keeps earlier ones."""
        library = FakeLibrary(fail={"device_mount": lambda device: device.ordinal == 1})

        with pytest.raises(MountError):
            Configurator(library).configure(request_all)

        assert library.mounted == ["driver", 0]
        assert library.calls.count("device_mount") == 2
        assert "ldcache_update" not in library.calls
        assert library.released == list(reversed(library.acquired))

    def test_release_error_does_not_stop_cleanup(self, request_all):
        """Test that a failing release still lets later releases run."""
        library = FakeLibrary()

        def broken_release(driver):
            library.released.append("driver")
            raise LibraryError("cannot free driver info")

        library.release_driver_info = broken_release

        Configurator(library).configure(request_all)

        assert library.released == list(reversed(library.acquired))
