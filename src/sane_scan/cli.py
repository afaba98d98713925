"""CLI entry point for sane-scan.

Provides the ``sane-scan`` console script with subcommands:

- ``list`` - List available devices
- ``show`` - Show the settable options of a device with current values
- ``scan`` - Set options, acquire one image and write it to a file

Usage::

    sane-scan list
    sane-scan show test:0
    sane-scan scan test:0 out.png -mode Color -resolution 300
    sane-scan --mode hardware scan "" page.tif -source "Automatic Document Feeder"

Options are given as ``-name value`` pairs after the output file. The value
``auto`` selects the device's automatic value where the option supports
one; vector options take comma-separated values.

Module Structure:
    - ``main()`` - CLI entry point, dispatches subcommands
    - ``parse_option_value()`` - Convert a command-line string for an option
    - ``apply_options()`` - Apply ``-name value`` pairs to a scanner
"""

from __future__ import annotations

import argparse
import sys
import textwrap
from collections.abc import Sequence
from typing import Any, TextIO

from sane_scan.devices import AUTO, Option, Scanner, ScannerLibrary, to_python
from sane_scan.drivers.backends.types import Unit, ValueType
from sane_scan.drivers.config import DriverConfig, DriverMode, configure
from sane_scan.errors import InvalidArgumentError, SaneError
from sane_scan.observability import configure_logging, get_logger
from sane_scan.utils.image import CV2ImageEncoder, extension_for_path, save_array

logger = get_logger(__name__)

# Constants
PROG_NAME = "sane-scan"

_UNIT_NAMES = {
    Unit.PIXEL: "pixels",
    Unit.BIT: "bits",
    Unit.MM: "millimetres",
    Unit.DPI: "dots per inch",
    Unit.PERCENT: "percent",
    Unit.MICROSECOND: "microseconds",
}

_TRUE_WORDS = frozenset({"yes", "true", "1", "on"})
_FALSE_WORDS = frozenset({"no", "false", "0", "off"})


# =============================================================================
# Option Parsing
# =============================================================================


def parse_option_value(option: Option, text: str) -> Any:
    """Convert a command-line string into a value for option.

    Args:
        option: Target option.
        text: Value as typed by the user.

    Returns:
        AUTO, bool, int, float, str, or a list for vector options.

    Raises:
        InvalidArgumentError: If text does not parse for the option's type.

    Example:
        >>> parse_option_value(scanner.option("resolution"), "auto")
        AUTO
        >>> parse_option_value(scanner.option("depth"), "16")
        16
    """
    if text == "auto" and option.is_automatic:
        return AUTO

    try:
        if option.type == ValueType.BOOL:
            word = text.lower()
            if word in _TRUE_WORDS:
                return True
            if word in _FALSE_WORDS:
                return False
            raise ValueError(text)
        if option.type == ValueType.INT:
            if option.length > 1:
                return [int(v) for v in text.split(",")]
            return int(text)
        if option.type == ValueType.FIXED:
            if option.length > 1:
                return [float(v) for v in text.split(",")]
            return float(text)
    except ValueError:
        kind = ValueType(option.type).name.lower()
        raise InvalidArgumentError(
            f"invalid {kind} value {text!r} for option {option.name!r}"
        ) from None

    if option.type == ValueType.STRING:
        return text
    raise InvalidArgumentError(f"option {option.name!r} cannot be set from the CLI")


def apply_options(scanner: Scanner, optargs: Sequence[str]) -> None:
    """Apply ``-name value`` pairs to scanner in order.

    Raises:
        InvalidArgumentError: Odd argument count or malformed pair.
        OptionNotFoundError: Unknown option name.
        SaneError: Device status from a set.
    """
    if len(optargs) % 2 != 0:
        raise InvalidArgumentError("options must be given as -name value pairs")
    for flag, text in zip(optargs[::2], optargs[1::2], strict=True):
        if not flag.startswith("-") or len(flag) < 2:
            raise InvalidArgumentError(f"expected -name, got {flag!r}")
        option = scanner.option(flag.lstrip("-"))
        value = parse_option_value(option, text)
        result = scanner.set_option(option.name, value)
        if result.inexact:
            shown = to_python(result.value) if result.value is not None else "?"
            logger.warning(
                "Value adjusted by device",
                option=option.name,
                requested=text,
                applied=shown,
            )


# =============================================================================
# Output Helpers
# =============================================================================


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "yes" if value else "no"
    if isinstance(value, float):
        return f"{value:g}"
    if isinstance(value, list):
        return ",".join(_format_value(v) for v in value)
    return str(value)


def _format_constraints(option: Option) -> str:
    parts: list[str] = []
    if option.is_automatic:
        parts.append("auto")
    if option.range is not None:
        r = option.range
        text = f"{_format_value(r.min)}..{_format_value(r.max)}"
        if r.quant:
            text += f" in steps of {_format_value(r.quant)}"
        parts.append(text)
    elif option.choices:
        parts.extend(_format_value(c) for c in option.choices)
    return "|".join(parts)


def _print_option(scanner: Scanner, option: Option, out: TextIO) -> None:
    line = f"    -{option.name}"
    constraints = _format_constraints(option)
    if constraints:
        line += f" {constraints}"

    if not option.is_active:
        line += " [inactive]"
    elif option.type == ValueType.BUTTON or not option.is_detectable:
        line += " [?]"
    else:
        try:
            line += f" [{_format_value(to_python(scanner.get_option(option.name)))}]"
        except SaneError as e:
            logger.debug("Option value unavailable", option=option.name, error=str(e))
            line += " [?]"

    unit = _UNIT_NAMES.get(option.unit)
    if unit:
        line += f" {unit}"
    print(line, file=out)
    if option.desc:
        print(
            textwrap.fill(
                option.desc, width=78, initial_indent=" " * 8, subsequent_indent=" " * 8
            ),
            file=out,
        )


# =============================================================================
# Commands
# =============================================================================


def cmd_list(lib: ScannerLibrary, out: TextIO) -> int:
    """Print one line per available device."""
    devices = lib.devices()
    if not devices:
        print("No available devices.", file=out)
    for d in devices:
        print(f"Device {d.name} is a {d.vendor} {d.model} {d.type}", file=out)
    return 0


def cmd_show(lib: ScannerLibrary, device: str, out: TextIO) -> int:
    """Print settable options grouped as the device groups them."""
    with lib.open(device) as scanner:
        print(f"Options for device {scanner.name}:", file=out)
        last_group = None
        for option in scanner.options():
            if not option.is_settable:
                continue
            if option.group != last_group:
                print(f"  {option.group}:", file=out)
                last_group = option.group
            _print_option(scanner, option, out)
    return 0


def cmd_scan(
    lib: ScannerLibrary, device: str, output: str, optargs: Sequence[str]
) -> int:
    """Apply options, read one image and write it to output."""
    extension_for_path(output)
    with lib.open(device) as scanner:
        apply_options(scanner, optargs)
        image = scanner.read_image()
    nbytes = save_array(image.to_array(), output, CV2ImageEncoder())
    logger.info("Image written", path=output, nbytes=nbytes, image=repr(image))
    return 0


# =============================================================================
# Entry Point
# =============================================================================


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the sane-scan command."""
    parser = argparse.ArgumentParser(
        prog=PROG_NAME,
        description="Scan images from SANE devices.",
    )
    parser.add_argument(
        "--mode",
        choices=[m.value for m in DriverMode],
        default=None,
        help="Driver mode (default: $SANE_SCAN_MODE or digital_twin)",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"],
        type=str.upper,
        help="Log level for diagnostics on stderr (default: WARNING)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit diagnostics as JSON lines",
    )

    subparsers = parser.add_subparsers(
        dest="command", required=True, help="Available commands"
    )
    subparsers.add_parser("list", help="List available devices")

    show_parser = subparsers.add_parser("show", help="Show device options")
    show_parser.add_argument("device", help="Device name or name fragment")

    scan_parser = subparsers.add_parser(
        "scan",
        help="Scan one image",
        description="Options follow the output file as -name value pairs.",
    )
    scan_parser.add_argument("device", help="Device name, fragment, or '' for first")
    scan_parser.add_argument("output", help="Output file (.png, .jpg, .tif)")
    scan_parser.add_argument(
        "optargs",
        nargs=argparse.REMAINDER,
        help="Device options, e.g. -mode Color -resolution 300",
    )
    return parser


def main(argv: Sequence[str] | None = None, out: TextIO | None = None) -> int:
    """Main CLI entry point for sane-scan.

    Args:
        argv: Arguments without the program name (default: sys.argv[1:]).
        out: Stream for command output (default: sys.stdout).

    Returns:
        Exit code: 0 on success, 1 on scanner or file errors.

    Raises:
        SystemExit: On --help or argument parsing errors.

    Example:
        >>> main(["list"])
        Device test:0 is a Noname frontend-tester virtual device
        0
    """
    args = build_parser().parse_args(argv)
    out = out or sys.stdout
    configure_logging(level=args.log_level, json_format=args.json_logs, force=True)

    try:
        config = DriverConfig.from_env()
        if args.mode:
            config.mode = DriverMode(args.mode)
        configure(config)

        with ScannerLibrary(config=config) as lib:
            if args.command == "list":
                return cmd_list(lib, out)
            if args.command == "show":
                return cmd_show(lib, args.device, out)
            return cmd_scan(lib, args.device, args.output, args.optargs)
    except (SaneError, ValueError, OSError, RuntimeError) as e:
        logger.debug(
            "Command failed", command=args.command, error_type=type(e).__name__
        )
        print(f"{PROG_NAME}: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
