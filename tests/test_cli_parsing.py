"""Tests for CLI parsing functions and command wiring."""

from unittest.mock import patch

import pytest
import typer
from typer.testing import CliRunner

from cyacd_flasher import cli
from cyacd_flasher.core.parsing import parse_int, parse_key, parse_mode

from fakes import FakeBootloader, make_cyacd_text, make_image

runner = CliRunner()

ROWS = [(0, 1, bytes(range(100))), (0, 2, b"\xAA\xBB")]


class TestParseKeyCore:
    """Test the core parse_key (raises ValueError)."""

    def test_none_and_empty(self):
        assert parse_key(None) is None
        assert parse_key("") is None
        assert parse_key("   ") is None

    def test_plain_hex(self):
        assert parse_key("0A1B2C3D4E5F") == bytes([0x0A, 0x1B, 0x2C, 0x3D, 0x4E, 0x5F])

    def test_prefix_and_separators(self):
        expected = bytes([0x0A, 0x1B, 0x2C, 0x3D, 0x4E, 0x5F])
        assert parse_key("0x0a1b2c3d4e5f") == expected
        assert parse_key("0A:1B:2C:3D:4E:5F") == expected
        assert parse_key("0A 1B 2C 3D 4E 5F") == expected
        assert parse_key("0A-1B-2C-3D-4E-5F") == expected

    def test_wrong_length_raises(self):
        with pytest.raises(ValueError):
            parse_key("0A1B2C")
        with pytest.raises(ValueError):
            parse_key("0A1B2C3D4E5F60")

    def test_not_hex_raises(self):
        with pytest.raises(ValueError):
            parse_key("ZZ1B2C3D4E5F")
        with pytest.raises(ValueError):
            parse_key("0A1B2C3D4E5")  # odd digit count


class TestParseIntCore:
    """Test integer parsing from various input formats."""

    def test_decimal(self):
        assert parse_int("64") == 64
        assert parse_int("0") == 0

    def test_hex_0x(self):
        assert parse_int("0x40") == 0x40
        assert parse_int("0X40") == 0x40

    def test_hex_h_suffix(self):
        assert parse_int("40h") == 0x40
        assert parse_int("FFH") == 0xFF

    def test_whitespace_tolerance(self):
        assert parse_int("  64 ") == 64
        assert parse_int("\t40h\n") == 0x40

    def test_invalid_raises(self):
        with pytest.raises(ValueError):
            parse_int("sixty")
        with pytest.raises(ValueError):
            parse_int("0xZZ")
        with pytest.raises(ValueError):
            parse_int("6.4")


class TestParseModeCore:
    def test_modes(self):
        assert parse_mode("usb") == "usb"
        assert parse_mode(" SERIAL ") == "serial"

    def test_invalid_raises(self):
        with pytest.raises(ValueError):
            parse_mode("bluetooth")


class TestCliWrappers:
    """CLI wrappers turn ValueError into BadParameter."""

    def test_key_bad_parameter(self):
        with pytest.raises(typer.BadParameter):
            cli.parse_key("0A1B")

    def test_int_bad_parameter(self):
        with pytest.raises(typer.BadParameter):
            cli.parse_int("nope", "array")

    def test_mode_bad_parameter(self):
        with pytest.raises(typer.BadParameter):
            cli.parse_mode("jtag")

    def test_packet_size_must_exceed_frame_overhead(self):
        assert cli.parse_packet_size("0x40") == 64
        with pytest.raises(typer.BadParameter):
            cli.parse_packet_size("7")

    def test_usb_finder_needs_serial_number(self):
        with pytest.raises(typer.BadParameter):
            cli.build_finder("usb", None, None, 64)

    def test_serial_finder_needs_port(self):
        with pytest.raises(typer.BadParameter):
            cli.build_finder("serial", None, None, 64)

    def test_finder_labels(self):
        _, label = cli.build_finder("usb", "ABC123", None, 64)
        assert label == "USB device ABC123"
        _, label = cli.build_finder("serial", None, "/dev/ttyACM0", 64)
        assert label == "serial port /dev/ttyACM0"


@pytest.fixture
def image_path(tmp_path):
    path = tmp_path / "app.cyacd"
    path.write_text(make_cyacd_text(ROWS))
    return path


class TestInfoCommand:
    def test_info_shows_header(self, image_path):
        result = runner.invoke(cli.app, ["info", str(image_path)])
        assert result.exit_code == 0
        assert "0x04C81193" in result.output
        assert "0x11" in result.output

    def test_info_lists_rows(self, image_path):
        result = runner.invoke(cli.app, ["info", str(image_path), "--rows"])
        assert result.exit_code == 0
        assert "0x0002" in result.output

    def test_info_bad_file(self, tmp_path):
        path = tmp_path / "bad.cyacd"
        path.write_text("not a cyacd file\n")
        result = runner.invoke(cli.app, ["info", str(path)])
        assert result.exit_code == 1


class TestFlashCommand:
    def test_usb_mode_requires_serial(self, image_path):
        result = runner.invoke(cli.app, ["flash", "--mode", "usb", "--path", str(image_path)])
        assert result.exit_code == 2

    def test_invalid_mode(self, image_path):
        result = runner.invoke(cli.app, ["flash", "--mode", "jtag", "--path", str(image_path)])
        assert result.exit_code == 2

    def test_path_required_without_restart(self):
        result = runner.invoke(cli.app, ["flash", "--mode", "serial", "--port", "/dev/ttyACM0"])
        assert result.exit_code == 2

    def test_flash_succeeds(self, image_path):
        device = FakeBootloader(make_image(ROWS))
        with patch.object(cli, "find_usb_device", return_value=device):
            result = runner.invoke(
                cli.app,
                ["flash", "--mode", "usb", "--serial", "ABC123", "--path", str(image_path), "--json"],
            )
        assert result.exit_code == 0
        assert '"ok": true' in result.output
        assert device.closed

    def test_flash_reports_failure(self, image_path):
        device = FakeBootloader(make_image(ROWS), app_checksum=0)
        with patch.object(cli, "find_usb_device", return_value=device):
            result = runner.invoke(
                cli.app,
                ["flash", "--mode", "usb", "--serial", "ABC123", "--path", str(image_path)],
            )
        assert result.exit_code == 1
        assert "ERR_VERIFICATION" in result.output

    def test_restart_only_sends_exit(self):
        device = FakeBootloader()
        with patch.object(cli, "open_serial", return_value=device):
            result = runner.invoke(
                cli.app, ["flash", "--mode", "serial", "--port", "/dev/ttyACM0", "--restart"]
            )
        assert result.exit_code == 0
        assert device.commands() == [0x3B]

    def test_restart_fails_when_exit_not_delivered(self):
        device = FakeBootloader(fail_exit_write=True)
        with patch.object(cli, "open_serial", return_value=device):
            result = runner.invoke(
                cli.app, ["flash", "--mode", "serial", "--port", "/dev/ttyACM0", "--restart"]
            )
        assert result.exit_code == 1
        assert "ERR_COMMUNICATION" in result.output


class TestEraseCommand:
    def test_erase_array(self):
        device = FakeBootloader(bounds={0: (0, 3)})
        with patch.object(cli, "open_serial", return_value=device):
            result = runner.invoke(
                cli.app, ["erase", "--mode", "serial", "--port", "/dev/ttyACM0", "--array", "0"]
            )
        assert result.exit_code == 0
        assert device.commands().count(0x34) == 4

    def test_erase_array_out_of_range(self):
        result = runner.invoke(
            cli.app, ["erase", "--mode", "serial", "--port", "/dev/ttyACM0", "--array", "0x100"]
        )
        assert result.exit_code == 2
