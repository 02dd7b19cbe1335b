"""
cyacd flasher CLI

Command-line interface for programming .cyacd images over USB or serial.
"""

import json
import logging
import sys
from pathlib import Path
from typing import Optional, Tuple

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import BarColumn, Progress, TextColumn
from rich.table import Table

from cyacd_flasher import __version__
from cyacd_flasher.core.discovery import Finder
from cyacd_flasher.core.messages import error_code_for, remediation_for
from cyacd_flasher.core.parsing import (
    MODE_USB,
    parse_int as _parse_int_core,
    parse_key as _parse_key_core,
    parse_mode as _parse_mode_core,
)
from cyacd_flasher.core.results import SessionResult
from cyacd_flasher.cyacd import FirmwareImage
from cyacd_flasher.errors import FormatError
from cyacd_flasher.programmer import Programmer, ProgrammerConfig
from cyacd_flasher.protocol.commands import BASE_CMD_SIZE
from cyacd_flasher.protocol.transport import DEFAULT_PACKET_SIZE, open_serial
from cyacd_flasher.protocol.usb_transport import find_usb_device

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",
    handlers=[RichHandler(rich_tracebacks=True)],
)
logger = logging.getLogger("cyacd_flasher")

# Setup Rich console
console = Console()

app = typer.Typer(help="Program .cyacd firmware images through the bootloader")


def print_header(text: str) -> None:
    """Print fancy header."""
    console.print(Panel(text, expand=False, style="bold blue"))


def print_success(text: str) -> None:
    console.print(f"✓ {text}", style="green")


def print_warning(text: str) -> None:
    console.print(f"⚠️  {text}", style="yellow")


def print_error(text: str) -> None:
    console.print(f"❌ {text}", style="red")


def parse_key(value: Optional[str]) -> Optional[bytes]:
    """CLI wrapper around core.parsing.parse_key."""
    try:
        return _parse_key_core(value)
    except ValueError as e:
        raise typer.BadParameter(str(e))


def parse_int(value: str, label: str) -> int:
    try:
        return _parse_int_core(value)
    except ValueError as e:
        raise typer.BadParameter(f"{label}: {e}")


def parse_mode(value: str) -> str:
    try:
        return _parse_mode_core(value)
    except ValueError as e:
        raise typer.BadParameter(str(e))


def parse_packet_size(value: str) -> int:
    size = parse_int(value, "packet size")
    if size <= BASE_CMD_SIZE:
        raise typer.BadParameter(f"packet size must exceed {BASE_CMD_SIZE} bytes, got {size}")
    return size


def build_finder(
    mode: str,
    serial_number: Optional[str],
    port: Optional[str],
    packet_size: int,
) -> Tuple[Finder, str]:
    """
    Build the discovery finder for the selected mode.

    Returns:
        Tuple of (finder, device label for messages)
    """
    if mode == MODE_USB:
        if not serial_number:
            raise typer.BadParameter("--serial is required for usb mode")
        return (
            lambda: find_usb_device(serial_number, packet_size=packet_size),
            f"USB device {serial_number}",
        )
    if not port:
        raise typer.BadParameter("--port is required for serial mode")
    return (
        lambda: open_serial(port, packet_size=packet_size),
        f"serial port {port}",
    )


def load_image(path: str) -> FirmwareImage:
    try:
        return FirmwareImage.from_file(path)
    except FormatError as e:
        print_error(f"Error parsing file: {e}")
        console.print(f"   → {remediation_for(e)}", style="cyan")
        sys.exit(1)


def report(result: SessionResult, output_json: bool) -> None:
    """Print the session outcome and exit non-zero on failure."""
    if output_json:
        console.print_json(json.dumps(result.to_dict()))
    elif result.device:
        table = Table(title="Device")
        table.add_column("Property", style="cyan")
        table.add_column("Value", style="green")
        table.add_row("Silicon ID", f"0x{result.device.silicon_id:08X}")
        table.add_row("Silicon rev", f"0x{result.device.silicon_rev:02X}")
        table.add_row("Bootloader", result.device.version_string)
        if result.rows_total:
            table.add_row("Rows", f"{result.rows_programmed}/{result.rows_total}")
        if result.app_checksum is not None:
            table.add_row("App checksum", f"0x{result.app_checksum:02X}")
        console.print(table)

    if result.ok:
        print_success(f"{result.operation} completed")
        return

    error = result.error
    print_error(f"[{error_code_for(error).value}] {error}")
    console.print(f"   → {remediation_for(error)}", style="cyan")
    sys.exit(1)


def set_verbose(verbose: bool) -> None:
    if verbose:
        logger.setLevel(logging.DEBUG)


def run_with_progress(programmer: Programmer, description: str, run) -> SessionResult:
    with Progress(
        TextColumn("[{task.description}]"),
        BarColumn(),
        TextColumn("[{task.completed}/{task.total}]"),
        console=console,
    ) as progress:
        task = progress.add_task(description, total=None)

        def on_progress(done: int, total: int) -> None:
            progress.update(task, completed=done, total=total)

        programmer.progress_cb = on_progress
        return run()


@app.command()
def flash(
    path: Optional[str] = typer.Option(None, "--path", "-f", help="Path of the .cyacd file"),
    mode: str = typer.Option(..., "--mode", "-m", help="Communication mode: usb or serial"),
    serial_number: Optional[str] = typer.Option(
        None, "--serial", "-s", help="USB serial number of the device (usb mode)"
    ),
    port: Optional[str] = typer.Option(
        None, "--port", "-p", help="Serial port, e.g. /dev/ttyACM0 (serial mode)"
    ),
    key: Optional[str] = typer.Option(None, "--key", "-k", help="Bootloader key (12 hex digits)"),
    restart: bool = typer.Option(
        False, "--restart", help="Only send ExitBootloader to restart the application"
    ),
    packet_size: str = typer.Option(
        str(DEFAULT_PACKET_SIZE), "--packet-size", help="Largest frame the bootloader accepts"
    ),
    output_json: bool = typer.Option(False, "--json", "-j", help="Output result as JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log every frame"),
) -> None:
    """Program a .cyacd image into the device."""
    set_verbose(verbose)
    mode = parse_mode(mode)
    bootloader_key = parse_key(key)
    size = parse_packet_size(packet_size)
    finder, label = build_finder(mode, serial_number, port, size)
    config = ProgrammerConfig(key=bootloader_key)

    if restart:
        print_header(f"Restart {label}")
        programmer = Programmer(None, finder, config, label=label)
        report(programmer.restart(), output_json)
        return

    if not path:
        raise typer.BadParameter("--path is required unless --restart is given")

    image = load_image(path)
    print_header(f"Program {Path(path).name} via {label}")
    logger.info(f"cyacd flasher {__version__}: {len(image.rows)} rows, mode {mode}")

    programmer = Programmer(image, finder, config, label=label)
    result = run_with_progress(programmer, "Programming rows", programmer.program)
    report(result, output_json)


@app.command()
def erase(
    mode: str = typer.Option(..., "--mode", "-m", help="Communication mode: usb or serial"),
    array_id: str = typer.Option("0", "--array", "-a", help="Flash array ID to erase"),
    path: Optional[str] = typer.Option(
        None, "--path", "-f", help="Image whose silicon ID must match the device"
    ),
    serial_number: Optional[str] = typer.Option(None, "--serial", "-s", help="USB serial number"),
    port: Optional[str] = typer.Option(None, "--port", "-p", help="Serial port"),
    key: Optional[str] = typer.Option(None, "--key", "-k", help="Bootloader key (12 hex digits)"),
    packet_size: str = typer.Option(str(DEFAULT_PACKET_SIZE), "--packet-size"),
    output_json: bool = typer.Option(False, "--json", "-j", help="Output result as JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log every frame"),
) -> None:
    """Erase every row of one flash array."""
    set_verbose(verbose)
    mode = parse_mode(mode)
    bootloader_key = parse_key(key)
    array = parse_int(array_id, "array")
    if not (0 <= array <= 0xFF):
        raise typer.BadParameter(f"array must be 0..255, got {array}")
    finder, label = build_finder(mode, serial_number, port, parse_packet_size(packet_size))
    image = load_image(path) if path else None

    print_header(f"Erase array {array} via {label}")
    programmer = Programmer(image, finder, ProgrammerConfig(key=bootloader_key), label=label)
    result = run_with_progress(programmer, "Erasing rows", lambda: programmer.erase_array(array))
    report(result, output_json)


@app.command()
def info(
    path: str = typer.Argument(..., help="Path of the .cyacd file"),
    rows: bool = typer.Option(False, "--rows", "-r", help="List every row"),
) -> None:
    """Show the header and row summary of a .cyacd image."""
    image = load_image(path)
    print_header(f"Image {Path(path).name}")

    table = Table(title="Header")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Silicon ID", f"0x{image.silicon_id:08X}")
    table.add_row("Silicon rev", f"0x{image.silicon_rev:02X}")
    table.add_row("Checksum type", str(image.checksum_type))
    table.add_row("Rows", str(len(image.rows)))
    table.add_row("Arrays", ", ".join(str(a) for a in image.array_ids) or "-")
    table.add_row("Data bytes", f"{image.total_bytes:,}")
    console.print(table)

    if rows:
        row_table = Table(title="Rows")
        row_table.add_column("#", style="dim")
        row_table.add_column("Array", style="cyan")
        row_table.add_column("Row", style="cyan")
        row_table.add_column("Size", style="green")
        row_table.add_column("Checksum", style="yellow")
        for i, row in enumerate(image.rows, 1):
            row_table.add_row(
                str(i),
                str(row.array_id),
                f"0x{row.row_num:04X}",
                str(row.size),
                f"0x{row.checksum:02X}",
            )
        console.print(row_table)


@app.command()
def ports() -> None:
    """List available serial ports."""
    import serial.tools.list_ports

    print_header("Available Serial Ports")
    ports_list = list(serial.tools.list_ports.comports())

    if not ports_list:
        print_warning("No serial ports found")
        return

    table = Table(title="Serial Ports")
    table.add_column("Port", style="cyan")
    table.add_column("Description", style="green")
    table.add_column("Serial number", style="magenta")

    for port in ports_list:
        table.add_row(port.device, port.description or "-", port.serial_number or "-")

    console.print(table)


def main() -> None:
    """Main entry point."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/yellow]")
        sys.exit(1)


if __name__ == "__main__":
    main()
