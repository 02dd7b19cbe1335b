"""
USB bulk transport for the bootloader (pyusb).

The bootloader enumerates as VID 0x04B4 / PID 0xB71D with one interface
holding a bulk OUT endpoint (0x01) and a bulk IN endpoint (0x82). Devices are
told apart by their USB serial number string.
"""

import logging
from typing import Optional

import usb.core
import usb.util

from ..errors import CommunicationError, TransportTimeoutError
from .transport import DEFAULT_PACKET_SIZE

logger = logging.getLogger(__name__)

VENDOR_ID = 0x04B4
PRODUCT_ID = 0xB71D

CONFIG_NUMBER = 1
INTERFACE_NUMBER = 0
ENDPOINT_IN = 0x82
ENDPOINT_OUT = 0x01
USB_TIMEOUT_MS = 5000


class UsbTransport:
    """
    Transport over an already-matched pyusb device.

    USB delivers whole packets, so reads are buffered: a packet is pulled from
    the IN endpoint whenever the buffer runs short. Writes drop any leftover
    bytes (packet padding) from the previous transaction.
    """

    def __init__(
        self,
        device: "usb.core.Device",
        packet_size: int = DEFAULT_PACKET_SIZE,
        timeout_ms: int = USB_TIMEOUT_MS,
    ):
        self.device = device
        self.packet_size = packet_size
        self.timeout_ms = timeout_ms
        self._buffer = bytearray()
        self._claimed = False

    def open(self) -> None:
        """
        Configure the device and claim the bootloader interface.

        Raises:
            CommunicationError: If the interface cannot be claimed
        """
        try:
            if self.device.is_kernel_driver_active(INTERFACE_NUMBER):
                self.device.detach_kernel_driver(INTERFACE_NUMBER)
        except (NotImplementedError, usb.core.USBError) as e:
            logger.debug(f"Kernel driver check skipped: {e}")

        try:
            self.device.set_configuration(CONFIG_NUMBER)
            usb.util.claim_interface(self.device, INTERFACE_NUMBER)
        except usb.core.USBError as e:
            raise CommunicationError(f"Cannot claim USB interface {INTERFACE_NUMBER}: {e}")
        self._claimed = True
        logger.info("USB device initialized")

    def close(self) -> None:
        if self._claimed:
            try:
                usb.util.release_interface(self.device, INTERFACE_NUMBER)
            except usb.core.USBError as e:
                logger.warning(f"Failed to release USB interface: {e}")
            self._claimed = False
        usb.util.dispose_resources(self.device)
        logger.debug("Closed USB device")

    def write(self, data: bytes) -> int:
        if not self._claimed:
            raise CommunicationError("USB device not initialized")
        self._buffer.clear()
        try:
            written = self.device.write(ENDPOINT_OUT, data, timeout=self.timeout_ms)
        except usb.core.USBTimeoutError as e:
            raise TransportTimeoutError(f"Write timeout after {self.timeout_ms}ms: {e}")
        except usb.core.USBError as e:
            raise CommunicationError(f"Write failed: {e}")
        if written != len(data):
            raise CommunicationError(f"Incomplete write: sent {written}/{len(data)} bytes")
        logger.debug(f">>> {data.hex().upper()}")
        return written

    def read(self, size: int) -> bytes:
        if not self._claimed:
            raise CommunicationError("USB device not initialized")
        while len(self._buffer) < size:
            try:
                packet = self.device.read(ENDPOINT_IN, self.packet_size, timeout=self.timeout_ms)
            except usb.core.USBTimeoutError as e:
                raise TransportTimeoutError(f"Read timeout after {self.timeout_ms}ms: {e}")
            except usb.core.USBError as e:
                raise CommunicationError(f"Read failed: {e}")
            logger.debug(f"<<< {bytes(packet).hex().upper()}")
            self._buffer.extend(packet)

        out = bytes(self._buffer[:size])
        del self._buffer[:size]
        return out


def _serial_number(device: "usb.core.Device") -> Optional[str]:
    try:
        return usb.util.get_string(device, device.iSerialNumber)
    except (usb.core.USBError, ValueError) as e:
        logger.warning(f"Failed to get device serial number: {e}")
        return None


def find_usb_device(
    serial_number: str,
    vendor_id: int = VENDOR_ID,
    product_id: int = PRODUCT_ID,
    packet_size: int = DEFAULT_PACKET_SIZE,
) -> Optional[UsbTransport]:
    """
    Discovery finder for USB mode: one lookup, no retries.

    Returns:
        Opened UsbTransport for the device whose serial number matches,
        or None if no such device is attached
    """
    try:
        devices = usb.core.find(find_all=True, idVendor=vendor_id, idProduct=product_id)
    except usb.core.NoBackendError as e:
        raise CommunicationError(f"No USB backend available (is libusb installed?): {e}")
    match = None
    for device in devices or []:
        if match is None and _serial_number(device) == serial_number:
            match = device
        else:
            usb.util.dispose_resources(device)
    if match is None:
        return None

    transport = UsbTransport(match, packet_size=packet_size)
    try:
        transport.open()
    except CommunicationError:
        usb.util.dispose_resources(match)
        raise
    return transport
