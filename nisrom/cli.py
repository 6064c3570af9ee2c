"""
nisrom command line: analyse a ROM dump, optionally repair its standard
checksum after modification.

Licensed under the MIT License
"""

import argparse
import csv
import sys
from pathlib import Path
from typing import List, Optional, Tuple

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .analyzer import RomAnalyzer
from .checksum import locate_standard, repair
from .codec import write_u32
from .diag import ConsoleDiagnostics, Diagnostics
from .errors import RomError
from .rom import REPORT_FIELD_NAMES, RomImage
from .services import KeysetDatabase

DBG_OUTFILE = "nisrom_dbg.log"  # default debug log, appended to

# Rich console for styled output
console = Console()


def print_banner():
    """Display tool banner with version info."""
    console.print(f"nisrom v{__version__}", style="bold cyan")
    console.print("Analyze Nissan ROM: LOADER / FID / RAMF structs, checksums, IVT2\n",
                  style="dim")


def print_success(message: str):
    """Print success message in green."""
    console.print(f"✓ {message}", style="bold green")


def print_error(message: str):
    """Print error message in red."""
    console.print(f"✗ {message}", style="bold red")


def print_info(message: str):
    """Print info message in blue."""
    console.print(f"ℹ {message}", style="blue")


def print_warning(message: str):
    """Print warning message in yellow."""
    console.print(f"⚠ {message}", style="yellow")


def print_csv_header(names=REPORT_FIELD_NAMES, out=None):
    writer = csv.writer(out or sys.stdout, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(names)


def print_csv_values(props: List[Tuple[str, str]], out=None):
    writer = csv.writer(out or sys.stdout, lineterminator="\n")
    writer.writerow([value for _, value in props])


def print_human(props: List[Tuple[str, str]]):
    """Print the report as a two-column table"""
    table = Table(show_header=False, box=box.SIMPLE, padding=(0, 1))
    table.add_column("Property", style="dim")
    table.add_column("Value")
    for name, value in props:
        table.add_row(name, value)
    console.print(table)


def fix_checksum(original: str, modified: str, slots: List[int], output: str,
                 force: bool, diag: Diagnostics) -> bool:
    """
    Repair the std checksum of a modified ROM so it matches the original's.

    The checksum locations are found in the original ROM, its values copied
    into the modified one, then the three correction slots are solved.
    """
    orig = RomImage.load(original, force, diag)
    located = locate_standard(orig.data, diag)
    if not located.ok:
        print_error("No standard checksum found in original ROM")
        return False
    if located.sum_offset is None or located.xor_offset is None:
        print_error("Only one standard checksum value found in original ROM")
        return False
    if located.ambiguous:
        print_warning("Ambiguous checksum locations in original ROM; using first match")
    print_info(f"Target: sum 0x{located.sum_value:08X} @ 0x{located.sum_offset:X}, "
               f"xor 0x{located.xor_value:08X} @ 0x{located.xor_offset:X}")

    data = bytearray(RomImage.load(modified, force, diag).data)
    if len(data) != len(orig):
        print_error("Original and modified ROMs differ in size")
        return False
    write_u32(located.sum_value, data, located.sum_offset)
    write_u32(located.xor_value, data, located.xor_offset)

    result = repair(data, located.sum_offset, located.xor_offset, *slots, diag=diag)
    if not result.ok:
        print_error(f"Checksum repair failed: {result.status.value}")
        return False

    with open(output, 'wb') as f:
        f.write(data)
    console.print(Panel(
        f"[green]✓[/green] Corrected ROM saved to:\n[cyan]{output}[/cyan]\n\n"
        f"a=0x{result.a:08X}  b=0x{result.b:08X}  mangle=0x{result.mangle:08X}",
        title="Success",
        border_style="green"
    ))
    return True


def analyze(filename: str, force: bool, keysets: Optional[KeysetDatabase],
            diag: Diagnostics) -> List[Tuple[str, str]]:
    image = RomImage.load(filename, force, diag)
    analyzer = RomAnalyzer(image, diag, keysets)
    analyzer.parse()
    return analyzer.report_fields()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='nisrom',
        description='Analyze Nissan ROM',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog='''
Examples:
  # Human-readable analysis
  %(prog)s 8U92A.bin

  # CSV header + values
  %(prog)s 8U92A.bin -l -c

  # Repair std checksum of a modified ROM, using three free u32 slots
  %(prog)s modified.bin --fix 8U92A.bin --slots 0x7FFF0 0x7FFF4 0x7FFF8 -o fixed.bin
        '''
    )
    parser.add_argument('rom_file', nargs='?', help='ROM dump to analyze')
    parser.add_argument('-c', '--csv', action='store_true', help='CSV output')
    parser.add_argument('-l', '--csv-header', action='store_true',
                        help='CSV headers (can be combined with -c)')
    parser.add_argument('-v', '--human', action='store_true',
                        help='human-readable output (default)')
    parser.add_argument('-f', '--force', action='store_true',
                        help='force parsing, ignoring errors as much as possible')
    parser.add_argument('-k', '--keysets', metavar='CSV',
                        help='known keysets database (s27k,s36k1,s36k2 columns)')
    parser.add_argument('--log', metavar='FILE', default=DBG_OUTFILE,
                        help=f'debug log, appended to (default: {DBG_OUTFILE})')
    parser.add_argument('--fix', metavar='ORIGINAL',
                        help='repair std checksum to match the one in ORIGINAL')
    parser.add_argument('--slots', nargs=3, metavar='OFS', type=lambda s: int(s, 0),
                        help='offsets of the 3 correction u32 slots (with --fix)')
    parser.add_argument('--output', '-o', metavar='FILE',
                        help='output file for the repaired ROM')
    return parser


def run(args, diag: Diagnostics) -> int:
    enable_human = args.human or not (args.csv or args.csv_header)

    if not enable_human and args.csv_header:
        print_csv_header()

    if not args.rom_file:
        if args.csv_header and not enable_human:
            return 0
        print_error("Must specify a file name with these options !")
        return 1

    if args.fix:
        if not args.slots or not args.output:
            print_error("--fix needs --slots and --output")
            return 1
        return 0 if fix_checksum(args.fix, args.rom_file, args.slots, args.output,
                                 args.force, diag) else 1

    keysets = KeysetDatabase.from_csv(args.keysets) if args.keysets else None
    props = analyze(args.rom_file, args.force, keysets, diag)

    if enable_human:
        console.print(Panel(f"[cyan]{Path(args.rom_file).name}[/cyan]",
                            title="ROM", border_style="cyan"))
        print_human(props)
    elif args.csv:
        print_csv_values(props)
    return 0


def main(argv=None):
    """Main entry point"""
    args = build_parser().parse_args(argv)
    if args.human or not (args.csv or args.csv_header):
        print_banner()

    try:
        log = open(args.log, 'a')
    except OSError:
        log = None
        print_warning(f"Cannot open {args.log}, logging to stderr")
    diag = ConsoleDiagnostics.to_file(log) if log else ConsoleDiagnostics()

    try:
        status = run(args, diag)
    except FileNotFoundError as e:
        print_error(f"File not found: {e}")
        status = 1
    except RomError as e:
        print_error(str(e))
        status = 1
    except Exception as e:
        print_error(f"Unexpected error: {e}")
        import traceback
        traceback.print_exc()
        status = 1
    finally:
        if log:
            log.close()

    sys.exit(status)


if __name__ == "__main__":
    main()
