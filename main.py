"""
FloraMatch
Identify plants in photos by matching them against your own reference profiles.

Every photo is sent to a vision model together with a manifest of the
profiles in the training database; the model may only answer with one of
those profiles or with "no match".

Usage:
    python main.py                               Interactive menu
    python main.py identify <image_path>         Identify a single photo
    python main.py batch <folder>                Identify every photo in a folder
    python main.py camera                        Capture one camera frame and identify it
    python main.py train <folder> [name] [--scientific <name>] [--invasive]
                                                 Add a reference profile from a folder of photos
    python main.py profiles                      List reference profiles
    python main.py profiles --delete <id>...     Delete reference profiles
    python main.py profiles --invasive <id>...   Toggle the invasive flag of profiles
    python main.py history                       Show history
    python main.py history --favorite <sel>...   Mark records as favorite (--unfavorite clears)
    python main.py history --incorrect <sel>...  Flag records as incorrect (--correct clears)
    python main.py history --delete <sel>...     Delete records
    python main.py history --export <csv> [sel]  Export history, or only the selected records, to CSV
    python main.py stats                         Dashboard statistics
    python main.py --validate                    Validate environment and config

<sel> is a record id or a row number as listed by `history`.
"""

import sys
import json
import asyncio
from pathlib import Path
from typing import List, Sequence

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich import box

console = Console()


# =============================================================================
# ENVIRONMENT VALIDATION
# =============================================================================

def validate_environment():
    """Validate environment and display configuration."""
    from config import validate_environment as _validate, CONFIG

    console.print("[cyan]Validating environment...[/cyan]\n")

    result = _validate()

    table = Table(title="FloraMatch Configuration", box=box.ROUNDED)
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="white")

    table.add_row("LLM Model", CONFIG.llm_model)
    table.add_row("LLM Temperature", str(CONFIG.llm_temperature))
    table.add_row("Image Detail", CONFIG.llm_image_detail)
    table.add_row("Geolocation Timeout", f"{CONFIG.geolocation_timeout_ms} ms")
    table.add_row("Geolocation Endpoint", CONFIG.geolocation_url or "(disabled)")
    table.add_row("Camera Index", str(CONFIG.camera_index))
    table.add_row("Data Directory", CONFIG.data_dir)

    console.print(table)
    console.print()

    if result["valid"]:
        console.print("[green][OK] Environment valid[/green]")
    else:
        console.print("[red][FAIL] Environment invalid[/red]")
        for error in result["errors"]:
            console.print(f"  [red]- {error}[/red]")

    if result["warnings"]:
        for warning in result["warnings"]:
            console.print(f"  [yellow][WARN] {warning}[/yellow]")

    return result["valid"]


# =============================================================================
# SHARED RUNNER (used by both CLI and Interactive modes)
# =============================================================================

def run_identification(mode: str, target=None, status=None) -> dict:
    """
    Run an identification and return its summary.
    Single source of truth for both CLI and interactive modes.

    Args:
        mode: "identify", "batch" or "camera"
        target: Image path, folder path, or SourceSession for camera mode
        status: Optional rich Status to drive with progress and elapsed time

    Returns:
        RunSummary dict
    """
    from services.identify_service import IdentifyService

    service = IdentifyService()
    position = {"index": 0, "total": 0}

    def on_progress(index: int, total: int):
        position.update(index=index, total=total)

    def on_error(index: int, error: Exception):
        console.print(f"[red]  Item {index}/{position['total']} failed: {error}[/red]")

    def on_tick(elapsed: float):
        if status is None:
            return
        if position["total"] > 1:
            label = f"Batch analysis: {position['index']} / {position['total']}"
        else:
            label = "Matching database..."
        status.update(f"[cyan]{label}  [bold]{elapsed:.2f}s[/bold][/cyan]")

    callbacks = {"on_progress": on_progress, "on_error": on_error, "on_tick": on_tick}

    if mode == "identify":
        return asyncio.run(service.identify_file(target, **callbacks))
    if mode == "batch":
        return asyncio.run(service.identify_folder(target, **callbacks))
    return asyncio.run(service.identify_camera(target, **callbacks))


def summary_to_json(summary: dict) -> dict:
    """Strip image payloads so the summary prints compactly."""
    records = []
    for record in summary["records"]:
        data = record.to_dict()
        data.pop("source_image", None)
        records.append(data)
    return {**summary, "records": records}


# =============================================================================
# CLI MODE
# =============================================================================

def cli_mode(mode: str, target: str | None = None):
    """Run in CLI mode - output JSON to stdout."""
    from config import init_app
    from clients.errors import IdentifyError

    if mode in ("identify", "batch") and not Path(target).exists():
        print(f"Error: Path not found: {target}", file=sys.stderr)
        sys.exit(1)

    try:
        init_app()
    except RuntimeError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        if mode == "camera":
            from clients.camera import SourceSession
            with SourceSession() as session:
                summary = run_identification("camera", session)
        else:
            summary = run_identification(mode, target)
    except IdentifyError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    print(json.dumps(summary_to_json(summary), indent=2, default=str))
    if summary["failed"]:
        sys.exit(2)


def parse_train_args(args: Sequence[str]) -> dict:
    """
    Parse `train <folder> [name] [--scientific <name>] [--invasive]`.

    Raises:
        ValueError: On a missing folder or a dangling --scientific
    """
    options = {"folder": None, "name": None, "scientific_name": "", "is_invasive": False}
    positional = []
    i = 0
    while i < len(args):
        if args[i] == "--invasive":
            options["is_invasive"] = True
        elif args[i] == "--scientific":
            if i + 1 >= len(args):
                raise ValueError("--scientific requires a name")
            options["scientific_name"] = args[i + 1]
            i += 1
        else:
            positional.append(args[i])
        i += 1

    if not positional:
        raise ValueError("train requires a folder")
    options["folder"] = positional[0]
    if len(positional) > 1:
        options["name"] = " ".join(positional[1:])
    return options


def train_mode(folder: str, name: str | None = None, scientific_name: str = "", is_invasive: bool = False) -> bool:
    """Add a reference profile built from a folder of photos. Returns False if nothing was added."""
    from storage.profiles import ProfileStorage, profile_from_folder
    from clients.errors import CaptureError

    try:
        profile = profile_from_folder(
            folder, name=name, scientific_name=scientific_name, is_invasive=is_invasive
        )
    except CaptureError as e:
        console.print(f"[red]Error: {e}[/red]")
        return False

    if profile.sample_count == 0:
        console.print(f"[yellow]No images found in {folder}.[/yellow]")
        return False

    ProfileStorage().add(profile)
    console.print(
        f"[green][OK][/green] Added profile [bold]{profile.common_name}[/bold] "
        f"({profile.sample_count} samples, id {profile.id})"
    )
    return True


def parse_selection(tokens: Sequence[str], records) -> List[str]:
    """
    Resolve a selection to record ids.

    Each token is a record id or a 1-based row number as displayed;
    commas also separate entries.

    Raises:
        ValueError: If a token matches no record
    """
    ids = {r.id for r in records}
    selected: List[str] = []
    for token in ",".join(tokens).split(","):
        token = token.strip()
        if not token:
            continue
        if token in ids:
            record_id = token
        elif token.isdigit() and 1 <= int(token) <= len(records):
            record_id = records[int(token) - 1].id
        else:
            raise ValueError(f"No history record '{token}'")
        if record_id not in selected:
            selected.append(record_id)
    return selected


HISTORY_ACTIONS = {
    "--favorite": ("set_favorite", True, "Marked {n} records as favorite"),
    "--unfavorite": ("set_favorite", False, "Removed favorite from {n} records"),
    "--incorrect": ("set_incorrect", True, "Flagged {n} records as incorrect"),
    "--correct": ("set_incorrect", False, "Cleared incorrect flag on {n} records"),
}


def history_command(args: Sequence[str], storage=None) -> int:
    """
    Run a `history` subcommand against the history store.

    Returns:
        Number of records affected (shown records for a plain listing)

    Raises:
        ValueError: On a bad option or selection
    """
    from storage.history import HistoryStorage

    storage = storage or HistoryStorage()
    records = storage.get_all()

    if not args:
        display_history(records)
        return len(records)

    option, rest = args[0], list(args[1:])

    if option == "--export":
        if not rest:
            raise ValueError("--export requires a file path")
        selected = parse_selection(rest[1:], records) if rest[1:] else None
        count = storage.export_csv(Path(rest[0]), selected)
        console.print(f"[green][OK][/green] Exported {count} records to {rest[0]}")
        return count

    if option not in HISTORY_ACTIONS and option != "--delete":
        raise ValueError(f"Unknown history option '{option}'")

    selected = parse_selection(rest, records)
    if not selected:
        raise ValueError(f"{option} requires at least one record")

    if option == "--delete":
        count = storage.remove_many(selected)
        console.print(f"[green][OK][/green] Deleted {count} records")
        return count

    method, value, message = HISTORY_ACTIONS[option]
    count = getattr(storage, method)(selected, value)
    console.print(f"[green][OK][/green] {message.format(n=count)}")
    return count


def profiles_command(args: Sequence[str], storage=None) -> int:
    """
    Run a `profiles` subcommand against the training database.

    Returns:
        Number of profiles affected (shown profiles for a plain listing)

    Raises:
        ValueError: On a bad option or an unknown profile id
    """
    from storage.profiles import ProfileStorage

    storage = storage or ProfileStorage()

    if not args:
        profiles = storage.get_all()
        display_profiles(profiles)
        return len(profiles)

    option, ids = args[0], [i for arg in args[1:] for i in arg.split(",") if i]
    if option not in ("--delete", "--invasive"):
        raise ValueError(f"Unknown profiles option '{option}'")
    if not ids:
        raise ValueError(f"{option} requires at least one profile id")

    missing = [i for i in ids if storage.get_by_id(i) is None]
    if missing:
        raise ValueError(f"No profile with id {', '.join(missing)}")

    for profile_id in ids:
        if option == "--delete":
            storage.remove(profile_id)
            console.print(f"[green][OK][/green] Deleted profile {profile_id}")
        else:
            current = storage.get_by_id(profile_id)
            updated = storage.update(profile_id, {"is_invasive": not current.is_invasive})
            state = "invasive" if updated.is_invasive else "not invasive"
            console.print(f"[green][OK][/green] {updated.common_name} is now {state}")
    return len(ids)


# =============================================================================
# DISPLAY
# =============================================================================

def clear_screen():
    """Clear terminal screen."""
    console.clear()


def show_header():
    """Display application header."""
    header = Panel(
        "[bold green]FloraMatch[/bold green]\n"
        "[dim]Plant identification against your own reference profiles[/dim]",
        box=box.DOUBLE,
        border_style="green",
        padding=(1, 2)
    )
    console.print(header)
    console.print()


def show_menu():
    """Display main menu options."""
    menu = Table(show_header=False, box=None, padding=(0, 2))
    menu.add_column("Option", style="bold yellow", width=4)
    menu.add_column("Description", style="white")

    menu.add_row("1.", "Identify a single photo")
    menu.add_row("2.", "Identify a folder of photos (batch)")
    menu.add_row("3.", "Identify from live camera")
    menu.add_row("4.", "Video analysis")
    menu.add_row("5.", "Add reference profile from folder")
    menu.add_row("6.", "Manage training database")
    menu.add_row("7.", "History and statistics")
    menu.add_row("8.", "Validate environment")
    menu.add_row("9.", "Exit")

    console.print(menu)
    console.print()


def _hidden_root():
    from tkinter import Tk

    root = Tk()
    root.withdraw()
    root.attributes('-topmost', True)
    return root


def select_image() -> str | None:
    """Open file picker dialog to select an image."""
    from tkinter import filedialog

    console.print("[cyan]Opening file picker...[/cyan]")
    root = _hidden_root()
    image_path = filedialog.askopenfilename(
        title="Select Plant Photo",
        filetypes=[
            ("Image files", "*.jpg *.jpeg *.png *.bmp *.webp *.gif"),
            ("All files", "*.*")
        ]
    )
    root.destroy()
    return image_path if image_path else None


def select_folder(title: str = "Select Folder") -> str | None:
    """Open folder picker dialog."""
    from tkinter import filedialog

    console.print("[cyan]Opening folder picker...[/cyan]")
    root = _hidden_root()
    folder = filedialog.askdirectory(title=title)
    root.destroy()
    return folder if folder else None


def display_results(summary: dict, profile_count: int):
    """Display a run summary."""
    console.print()
    console.print(Panel(
        f"[bold green]Identification run complete[/bold green]\n"
        f"[dim]Checked against {profile_count} profiles[/dim]",
        box=box.ROUNDED,
        border_style="green"
    ))

    console.print(
        f"\n[bold]Attempted:[/bold] {summary['attempted']}   "
        f"[bold]Succeeded:[/bold] {summary['succeeded']}   "
        f"[bold]Failed:[/bold] {summary['failed']}   "
        f"[bold]Runtime:[/bold] {summary['runtime_ms']:.0f} ms"
    )
    console.print()

    records = summary["records"]
    if records:
        display_history(records, title=f"Identified ({len(records)})")
    else:
        console.print("[yellow]No records produced.[/yellow]")


def display_history(records, title: str = "History"):
    """Display records in a table."""
    if not records:
        console.print("[yellow]No records yet.[/yellow]")
        return

    table = Table(
        title=f"[bold]{title}[/bold]",
        box=box.ROUNDED,
        show_header=True,
        header_style="bold cyan"
    )
    table.add_column("#", style="dim", width=3, justify="center")
    table.add_column("Plant", style="white", min_width=20)
    table.add_column("Scientific Name", style="italic")
    table.add_column("Invasive", justify="center")
    table.add_column("Confidence", justify="right")
    table.add_column("Time", justify="right")
    table.add_column("Location", style="dim")
    table.add_column("Flags", justify="center")
    table.add_column("ID", style="dim")

    for i, record in enumerate(records, 1):
        if record.is_match:
            confidence = f"{record.confidence * 100:.0f}%"
        else:
            # No-match confidence means "sure it's not in the database"
            confidence = f"[dim]absent {record.confidence * 100:.0f}%[/dim]"
        invasive = "[red]Yes[/red]" if record.is_invasive else "[green]No[/green]"
        location = (
            f"{record.coordinates.lat:.4f}, {record.coordinates.lng:.4f}"
            if record.coordinates else "-"
        )
        name = record.matched_name if record.is_match else f"[yellow]{record.matched_name}[/yellow]"
        flags = " ".join(
            flag for flag, on in (("[yellow]fav[/yellow]", record.is_favorite), ("[red]wrong[/red]", record.is_incorrect))
            if on
        )
        table.add_row(
            str(i), name, record.scientific_name, invasive,
            confidence, f"{record.elapsed_seconds:.2f}s", location, flags, record.id
        )

    console.print(table)


def display_profiles(profiles):
    """Display the training database."""
    if not profiles:
        console.print("[yellow]Training database is empty.[/yellow]")
        return

    table = Table(title="[bold]Training Database[/bold]", box=box.ROUNDED, header_style="bold cyan")
    table.add_column("ID", style="dim")
    table.add_column("Plant", style="white", min_width=20)
    table.add_column("Scientific Name", style="italic")
    table.add_column("Invasive", justify="center")
    table.add_column("Samples", justify="right")
    for p in profiles:
        table.add_row(
            p.id, p.common_name, p.scientific_name or "-",
            "[red]Yes[/red]" if p.is_invasive else "[green]No[/green]",
            str(p.sample_count)
        )
    console.print(table)


def display_stats(records):
    """Display dashboard statistics."""
    from evaluation.summary import summarize_history

    stats = summarize_history(records)
    table = Table(title="Dashboard", box=box.ROUNDED, show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="white")
    table.add_row("Total analyzed", str(stats["total"]))
    table.add_row("Invasive", str(stats["invasive_count"]))
    table.add_row("No database match", str(stats["unknown_count"]))
    table.add_row("With location", str(stats["located_count"]))
    table.add_row("Avg confidence", f"{stats['avg_confidence_pct']:.1f}%")
    table.add_row("Avg analysis time", f"{stats['avg_elapsed_seconds']:.2f}s")
    for entry in stats["top_species"]:
        table.add_row(f"  {entry['name']}", str(entry["count"]))
    console.print(table)


# =============================================================================
# INTERACTIVE MODE
# =============================================================================

def interactive_identify(mode: str, target=None):
    """Run an identification with a live status line and show the results."""
    from clients.errors import IdentifyError
    from storage.profiles import ProfileStorage

    if mode == "identify":
        target = select_image()
    elif mode == "batch":
        target = select_folder("Select Folder of Plant Photos")

    if target is None:
        console.print("[yellow]Nothing selected.[/yellow]")
        return

    profile_count = len(ProfileStorage().get_all())

    with console.status("[cyan]Matching database...[/cyan]", spinner="dots") as status:
        try:
            summary = run_identification(mode, target, status=status)
        except IdentifyError as e:
            console.print(f"[red]Error: {e}[/red]")
            return

    display_results(summary, profile_count)


def interactive_camera():
    """Keep the camera open while the user captures frames; release it on exit."""
    from clients.camera import SourceSession
    from clients.errors import CaptureError
    from clients.image_source import SourceKind

    with SourceSession() as session:
        try:
            session.switch_mode(SourceKind.CAMERA)
        except CaptureError as e:
            console.print(f"[red]Unable to access camera: {e}[/red]")
            return
        while True:
            console.input("[dim]Press Enter to capture...[/dim]")
            interactive_identify("camera", session)
            again = console.input("[dim]Capture another frame? (y/N):[/dim] ").strip().lower()
            if again != "y":
                return


def interactive_train():
    """Add a reference profile from a picked folder."""
    folder = select_folder("Select Folder of Reference Photos")
    if folder is None:
        console.print("[yellow]Nothing selected.[/yellow]")
        return
    name = console.input("[bold]Common name (blank = folder name):[/bold] ").strip()
    scientific = console.input("[bold]Scientific name (optional):[/bold] ").strip()
    invasive = console.input("[bold]Invasive? (y/N):[/bold] ").strip().lower() == "y"
    train_mode(folder, name or None, scientific_name=scientific, is_invasive=invasive)


def interactive_profiles():
    """List profiles and apply add / delete / invasive-toggle commands."""
    from storage.profiles import ProfileStorage

    storage = ProfileStorage()
    while True:
        display_profiles(storage.get_all())
        console.print("[dim]a = add from folder, d <id...> = delete, i <id...> = toggle invasive, blank = back[/dim]")
        command = console.input("[bold]> [/bold]").strip().split()
        if not command:
            return
        action, args = command[0].lower(), command[1:]
        try:
            if action == "a":
                interactive_train()
            elif action == "d":
                profiles_command(["--delete", *args], storage)
            elif action == "i":
                profiles_command(["--invasive", *args], storage)
            else:
                console.print(f"[red]Unknown command '{action}'[/red]")
        except ValueError as e:
            console.print(f"[red]Error: {e}[/red]")


HISTORY_SHORTCUTS = {
    "f": "--favorite",
    "uf": "--unfavorite",
    "x": "--incorrect",
    "ux": "--correct",
    "d": "--delete",
}


def interactive_history():
    """Show history and statistics; apply bulk flag / delete / export commands by row number."""
    from storage.history import HistoryStorage

    storage = HistoryStorage()
    while True:
        records = storage.get_all()
        display_history(records)
        display_stats(records)
        console.print(
            "[dim]f / uf <rows> = favorite / unfavorite, x / ux <rows> = incorrect / correct, "
            "d <rows> = delete, e <csv> [rows] = export, blank = back[/dim]"
        )
        command = console.input("[bold]> [/bold]").strip().split()
        if not command:
            return
        action, args = command[0].lower(), command[1:]
        try:
            if action == "e":
                history_command(["--export", *args], storage)
            elif action in HISTORY_SHORTCUTS:
                history_command([HISTORY_SHORTCUTS[action], *args], storage)
            else:
                console.print(f"[red]Unknown command '{action}'[/red]")
        except ValueError as e:
            console.print(f"[red]Error: {e}[/red]")


def interactive_mode():
    """Main interactive application loop."""
    from config import init_app

    try:
        init_app()
    except RuntimeError as e:
        console.print(f"[red]Error: {e}[/red]")
        console.print("[yellow]Please fix the above errors and try again.[/yellow]")
        sys.exit(1)

    while True:
        clear_screen()
        show_header()
        show_menu()

        choice = console.input("[bold green]Select option (1-9):[/bold green] ").strip()

        if choice == "1":
            console.print("\n[bold cyan]═══ Single Observation ═══[/bold cyan]")
            console.print("[dim]Compare a photo against your training database[/dim]\n")
            interactive_identify("identify")

        elif choice == "2":
            console.print("\n[bold cyan]═══ Folder Batch Analysis ═══[/bold cyan]")
            console.print("[dim]Every photo in the folder is analysed individually[/dim]\n")
            interactive_identify("batch")

        elif choice == "3":
            console.print("\n[bold cyan]═══ Live Camera ═══[/bold cyan]")
            interactive_camera()

        elif choice == "4":
            console.print("\n[bold cyan]═══ Video Analysis ═══[/bold cyan]")
            console.print("[yellow]Video frame sampling is not supported yet.[/yellow]")

        elif choice == "5":
            console.print("\n[bold cyan]═══ Add Reference Profile ═══[/bold cyan]")
            interactive_train()

        elif choice == "6":
            console.print("\n[bold cyan]═══ Training Database ═══[/bold cyan]")
            interactive_profiles()

        elif choice == "7":
            console.print("\n[bold cyan]═══ History ═══[/bold cyan]")
            interactive_history()

        elif choice == "8":
            console.print("\n[bold cyan]═══ Environment Validation ═══[/bold cyan]")
            validate_environment()

        elif choice == "9":
            console.print("\n[cyan]Goodbye![/cyan]")
            break

        else:
            console.print("[red]Invalid option. Please select 1-9.[/red]")

        console.print()
        console.input("[dim]Press Enter to continue...[/dim]")


# =============================================================================
# MAIN ENTRYPOINT
# =============================================================================

def print_usage():
    """Print usage and exit."""
    print(__doc__, file=sys.stderr)
    sys.exit(1)


def main():
    """Main entrypoint - route to CLI or Interactive mode."""
    if len(sys.argv) == 1:
        interactive_mode()
        return

    arg = sys.argv[1].lower()

    if arg == "--validate":
        valid = validate_environment()
        sys.exit(0 if valid else 1)

    if arg in ("--help", "-h"):
        print_usage()

    if arg == "camera":
        cli_mode("camera")
        return

    if arg == "stats":
        from storage.history import HistoryStorage
        display_stats(HistoryStorage().get_all())
        return

    if arg in ("history", "profiles", "train"):
        command = {"history": history_command, "profiles": profiles_command}.get(arg)
        try:
            if command is not None:
                command(sys.argv[2:])
                return
            options = parse_train_args(sys.argv[2:])
        except ValueError as e:
            print(f"Error: {e}", file=sys.stderr)
            print_usage()
        if not train_mode(**options):
            sys.exit(1)
        return

    if arg not in ("identify", "batch"):
        print(f"Error: Unknown command '{arg}'", file=sys.stderr)
        print("Use 'identify', 'batch', 'camera', 'train', 'profiles', 'history' or 'stats'", file=sys.stderr)
        sys.exit(1)

    if len(sys.argv) < 3:
        print(f"Error: {arg} requires a path", file=sys.stderr)
        print_usage()

    cli_mode(arg, sys.argv[2])


if __name__ == "__main__":
    main()
