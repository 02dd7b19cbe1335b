"""Tests for serial and USB transports with mocked hardware."""

from unittest.mock import MagicMock, patch

import pytest
import serial
import usb.core

from cyacd_flasher.errors import CommunicationError, TransportTimeoutError
from cyacd_flasher.protocol import transport as transport_mod
from cyacd_flasher.protocol import usb_transport
from cyacd_flasher.protocol.transport import SerialTransport, open_serial
from cyacd_flasher.protocol.usb_transport import UsbTransport, find_usb_device


def open_serial_transport(mock_ser):
    with patch.object(transport_mod.serial, "Serial", return_value=mock_ser):
        t = SerialTransport("/dev/ttyACM0")
        t.open()
    return t


class TestSerialTransport:
    def test_open_configures_port(self):
        mock_ser = MagicMock()
        with patch.object(transport_mod.serial, "Serial", return_value=mock_ser) as ctor:
            SerialTransport("/dev/ttyACM0").open()
        kwargs = ctor.call_args.kwargs
        assert kwargs["port"] == "/dev/ttyACM0"
        assert kwargs["baudrate"] == 115200
        assert kwargs["timeout"] == 0.25
        mock_ser.reset_input_buffer.assert_called()

    def test_open_failure_wrapped(self):
        with patch.object(transport_mod.serial, "Serial", side_effect=serial.SerialException("busy")):
            with pytest.raises(CommunicationError):
                SerialTransport("/dev/ttyACM0").open()

    def test_open_serial_returns_none_when_unavailable(self):
        with patch.object(transport_mod.serial, "Serial", side_effect=serial.SerialException("no port")):
            assert open_serial("/dev/ttyACM9") is None

    def test_write_drops_stale_input(self):
        mock_ser = MagicMock()
        mock_ser.write.return_value = 3
        t = open_serial_transport(mock_ser)
        mock_ser.reset_input_buffer.reset_mock()
        assert t.write(b"\x01\x02\x03") == 3
        mock_ser.reset_input_buffer.assert_called_once()

    def test_incomplete_write(self):
        mock_ser = MagicMock()
        mock_ser.write.return_value = 1
        t = open_serial_transport(mock_ser)
        with pytest.raises(CommunicationError):
            t.write(b"\x01\x02")

    def test_read_collects_partial_chunks(self):
        mock_ser = MagicMock()
        mock_ser.read.side_effect = [b"\x01\x00", b"\x01", b"\x00"]
        t = open_serial_transport(mock_ser)
        assert t.read(4) == b"\x01\x00\x01\x00"

    def test_read_timeout_distinguishable(self):
        mock_ser = MagicMock()
        mock_ser.read.side_effect = [b"\x01", b""]
        t = open_serial_transport(mock_ser)
        with pytest.raises(TransportTimeoutError):
            t.read(4)

    def test_read_error_is_not_timeout(self):
        mock_ser = MagicMock()
        mock_ser.read.side_effect = serial.SerialException("device disconnected")
        t = open_serial_transport(mock_ser)
        with pytest.raises(CommunicationError) as ei:
            t.read(4)
        assert not isinstance(ei.value, TransportTimeoutError)

    def test_closed_port_rejected(self):
        with pytest.raises(CommunicationError):
            SerialTransport("/dev/ttyACM0").write(b"\x01")


class TestUsbTransport:
    def make_transport(self, packets=()):
        device = MagicMock()
        device.is_kernel_driver_active.return_value = False
        device.read.side_effect = list(packets)
        device.write.side_effect = lambda ep, data, timeout: len(data)
        with patch.object(usb_transport.usb.util, "claim_interface"):
            t = UsbTransport(device)
            t.open()
        return t, device

    def test_reads_are_buffered_per_packet(self):
        packet = bytes([0x01, 0x00, 0x01, 0x00, 0x42, 0xBC, 0xFF, 0x17]) + bytes(56)
        t, device = self.make_transport([packet])
        assert t.read(4) == packet[:4]
        assert t.read(4) == packet[4:8]
        assert device.read.call_count == 1

    def test_write_discards_previous_padding(self):
        first = bytes([0x01]) + bytes(63)
        second = bytes([0x01, 0x00]) + bytes(62)
        t, _ = self.make_transport([first, second])
        t.read(4)
        t.write(b"\x01\x3B\x00\x00\xC4\xFF\x17")
        assert t.read(2) == b"\x01\x00"

    def test_read_timeout(self):
        t, _ = self.make_transport([usb.core.USBTimeoutError("timeout")])
        with pytest.raises(TransportTimeoutError):
            t.read(4)

    def test_read_error(self):
        t, _ = self.make_transport([usb.core.USBError("pipe error")])
        with pytest.raises(CommunicationError) as ei:
            t.read(4)
        assert not isinstance(ei.value, TransportTimeoutError)

    def test_unclaimed_device_rejected(self):
        with pytest.raises(CommunicationError):
            UsbTransport(MagicMock()).write(b"\x01")


class TestFindUsbDevice:
    def test_matches_serial_number(self):
        other, wanted = MagicMock(), MagicMock()
        wanted.is_kernel_driver_active.return_value = False
        serials = {id(other): "AAA", id(wanted): "BBB"}
        with patch.object(usb_transport.usb.core, "find", return_value=iter([other, wanted])), \
                patch.object(usb_transport.usb.util, "get_string", side_effect=lambda d, i: serials[id(d)]), \
                patch.object(usb_transport.usb.util, "claim_interface"), \
                patch.object(usb_transport.usb.util, "dispose_resources"):
            transport = find_usb_device("BBB")
        assert transport is not None
        assert transport.device is wanted

    def test_no_match_returns_none(self):
        device = MagicMock()
        with patch.object(usb_transport.usb.core, "find", return_value=iter([device])), \
                patch.object(usb_transport.usb.util, "get_string", return_value="AAA"), \
                patch.object(usb_transport.usb.util, "dispose_resources"):
            assert find_usb_device("BBB") is None

    def test_unmatched_devices_are_released(self):
        first, wanted, last = MagicMock(), MagicMock(), MagicMock()
        wanted.is_kernel_driver_active.return_value = False
        serials = {id(first): "AAA", id(wanted): "BBB", id(last): "CCC"}
        with patch.object(usb_transport.usb.core, "find", return_value=iter([first, wanted, last])), \
                patch.object(usb_transport.usb.util, "get_string", side_effect=lambda d, i: serials[id(d)]), \
                patch.object(usb_transport.usb.util, "claim_interface"), \
                patch.object(usb_transport.usb.util, "dispose_resources") as dispose:
            transport = find_usb_device("BBB")
        assert transport.device is wanted
        released = [c.args[0] for c in dispose.call_args_list]
        assert first in released and last in released
        assert wanted not in released

    def test_open_failure_releases_device(self):
        device = MagicMock()
        device.is_kernel_driver_active.return_value = False
        device.set_configuration.side_effect = usb.core.USBError("busy")
        with patch.object(usb_transport.usb.core, "find", return_value=iter([device])), \
                patch.object(usb_transport.usb.util, "get_string", return_value="BBB"), \
                patch.object(usb_transport.usb.util, "dispose_resources") as dispose:
            with pytest.raises(CommunicationError):
                find_usb_device("BBB")
        dispose.assert_called_once_with(device)
