import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

import usb.core
import usb.util

from rkflash.command import BulkChannel
from rkflash.error import DeviceNotFoundError, TransportError

LOGGER = logging.getLogger(__name__)

ROCKCHIP_VENDOR_ID = 0x2207

ROCKCHIP_PRODUCT_IDS: Dict[int, str] = {
    0x281A: "RK2818",
    0x290A: "RK2918",
    0x292A: "RK2928",
    0x292C: "RK3026",
    0x300A: "RK3066",
    0x300B: "RK3168",
    0x301A: "RK3036",
    0x310A: "RK3066B",
    0x310B: "RK3188",
    0x310C: "RK3128",
    0x320A: "RK3288",
    0x320B: "RK3229",
    0x320C: "RK3328",
    0x330A: "RK3368",
    0x330C: "RK3399",
}

# bmRequestType for a host-to-device vendor request, bRequest used by the boot ROM
VENDOR_REQUEST_OUT = 0x40
LOADER_REQUEST = 12


@dataclass
class UsbChannelConfig:
    """
    Where to look for a device and how to talk to it.

    :ivar vendor_id: USB vendor ID of the device
    :ivar product_ids: Product IDs to try, in order, mapped to a human readable chip name
    :ivar interface: Interface number holding the bulk endpoints
    :ivar timeout_ms: Timeout of every transfer, in milliseconds
    """

    vendor_id: int = ROCKCHIP_VENDOR_ID
    product_ids: Dict[int, str] = field(default_factory=lambda: dict(ROCKCHIP_PRODUCT_IDS))
    interface: int = 0
    timeout_ms: int = 20000


class UsbBulkChannel(BulkChannel):
    """
    [BulkChannel][rkflash.command.BulkChannel] over libusb, through pyusb. The interface is
    claimed on construction (detaching a kernel driver if one is bound) and released by
    `close()`.
    """

    def __init__(self, device: usb.core.Device, config: UsbChannelConfig):
        self._device = device
        self._config = config
        self._claimed = False
        try:
            if self._device.is_kernel_driver_active(config.interface):
                LOGGER.info("kernel driver active, detaching")
                self._device.detach_kernel_driver(config.interface)
            usb.util.claim_interface(self._device, config.interface)
            self._claimed = True
            LOGGER.debug("interface %d claimed", config.interface)
            self._endpoint_out, self._endpoint_in = self._find_endpoints()
        except (usb.core.USBError, NotImplementedError) as e:
            self.close()
            raise TransportError(f"Cannot claim interface {config.interface}: {e}") from e

    @classmethod
    def open(cls, config: Optional[UsbChannelConfig] = None) -> "UsbBulkChannel":
        """
        Open the first connected device matching `config`.

        :raises DeviceNotFoundError: if no device matches
        """
        if config is None:
            config = UsbChannelConfig()
        for product_id, chip_name in config.product_ids.items():
            device = usb.core.find(idVendor=config.vendor_id, idProduct=product_id)
            if device is not None:
                LOGGER.info("Detected %s...", chip_name)
                return cls(device, config)
        raise DeviceNotFoundError(
            f"No device with vendor ID {config.vendor_id:#06x} and a known product ID found"
        )

    def _find_endpoints(self):
        configuration = self._device.get_active_configuration()
        interface = configuration[(self._config.interface, 0)]
        endpoint_out = usb.util.find_descriptor(
            interface,
            custom_match=lambda e: usb.util.endpoint_direction(e.bEndpointAddress)
            == usb.util.ENDPOINT_OUT,
        )
        endpoint_in = usb.util.find_descriptor(
            interface,
            custom_match=lambda e: usb.util.endpoint_direction(e.bEndpointAddress)
            == usb.util.ENDPOINT_IN,
        )
        if endpoint_out is None or endpoint_in is None:
            raise TransportError("Device interface does not expose a pair of bulk endpoints")
        return endpoint_out, endpoint_in

    def send(self, data: bytes) -> None:
        try:
            written = self._endpoint_out.write(data, self._config.timeout_ms)
        except usb.core.USBError as e:
            raise TransportError(f"Bulk write of {len(data)} bytes failed: {e}") from e
        if written != len(data):
            raise TransportError(f"Bulk write sent {written} of {len(data)} bytes")

    def receive(self, max_length: int) -> bytes:
        try:
            return bytes(self._endpoint_in.read(max_length, self._config.timeout_ms))
        except usb.core.USBError as e:
            raise TransportError(f"Bulk read of {max_length} bytes failed: {e}") from e

    def control_write(self, index: int, data: bytes) -> None:
        try:
            self._device.ctrl_transfer(
                VENDOR_REQUEST_OUT, LOADER_REQUEST, 0, index, data, self._config.timeout_ms
            )
        except usb.core.USBError as e:
            raise TransportError(f"Control transfer to index {index:#x} failed: {e}") from e

    def close(self) -> None:
        if self._claimed:
            usb.util.release_interface(self._device, self._config.interface)
            self._claimed = False
        usb.util.dispose_resources(self._device)
