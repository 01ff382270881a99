#!/usr/bin/env python3
"""
fzcopy - Pick project files with a fuzzy finder and bundle them for LLMs

Select files interactively (or name a file/directory directly) and get a
directory-tree summary followed by the plain-text contents of every chosen
file, printed to stdout and/or copied to the clipboard.

Architecture:
    CLI Args → RunConfig → Selection (fzf session or direct target) →
    Tree Aggregation + Content Rendering → Bundle → stdout / clipboard

External utilities (fzf, bat, tree, git, the clipboard) sit behind small
abstract interfaces so the pipeline can be driven by fakes in tests.
"""

from __future__ import annotations

import argparse
import logging
import os
import re
import shlex
import shutil
import stat
import subprocess
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum, auto
from pathlib import Path
from typing import (
    Callable,
    List,
    Optional,
    Sequence,
    TextIO,
)

import pyperclip

# =============================================================================
# VERSION MANAGEMENT
# =============================================================================

__version__ = "1.0.0"


def get_version() -> str:
    """Get version from package metadata or fallback to hardcoded."""
    try:
        from importlib.metadata import PackageNotFoundError, version
    except ImportError:
        return __version__

    try:
        return version("fzcopy")
    except PackageNotFoundError:
        return __version__


# =============================================================================
# CONSTANTS
# =============================================================================

NO_CONTENT_PLACEHOLDER = "Unable to display content."
NO_SELECTION_MESSAGE = "No files selected."
NO_CANDIDATES_MESSAGE = "No files found."

TREE_HEADER = "Directory tree: {directory}"
FILE_HEADER = "File: {path}"
CONTENT_RULE = "-" * 40
SECTION_SEPARATOR = "\n\n"

BINARY_SNIFF_BYTES = 8192

# Directories never entered by the filesystem walk
WALK_SKIP_DIRS = frozenset({".git"})


class Tools:
    """Executable names for the external collaborators."""
    FUZZY_FINDER = ("fzf",)
    CONTENT_FORMATTER = ("bat", "batcat")  # Debian/Ubuntu ship bat as batcat
    TREE = ("tree",)
    GIT = "git"


class FzfOptions:
    """Key bindings and layout for the interactive session."""
    BINDINGS = "ctrl-a:select-all,ctrl-d:deselect-all,ctrl-t:toggle-all"
    HEADER = "TAB: toggle | CTRL-A: select all | CTRL-D: deselect all | ENTER: confirm | ESC: cancel"
    PREVIEW_WINDOW = "right:60%:wrap"
    # fzf: 1 = no match, 130 = cancelled with ESC / CTRL-C
    EMPTY_EXIT_CODES = frozenset({1, 130})


# =============================================================================
# ERRORS
# =============================================================================

class FzcopyError(Exception):
    """Base exception; `exit_code` is what the process returns if unhandled."""
    exit_code = 1


class MissingDependency(FzcopyError):
    """A required external utility is not installed."""


class UnsupportedPlatformClipboard(FzcopyError):
    """No clipboard mechanism could be resolved on this platform."""


class InvalidIgnorePattern(FzcopyError):
    """The --ignore expression does not compile."""


class NoCandidates(FzcopyError):
    """Discovery yielded nothing for the interactive session."""


class TargetNotFound(FzcopyError):
    """The positional PATH is neither a file nor a directory."""


class RenderFailure(FzcopyError):
    """A single tree or file could not be rendered."""


class ClipboardWriteFailure(FzcopyError):
    """The clipboard utility failed while copying."""


# =============================================================================
# CONFIGURATION
# =============================================================================

class OutputMode(Enum):
    """What the bundle contains."""
    FULL = auto()          # Trees followed by file contents
    TREE_ONLY = auto()     # Trees only


@dataclass(frozen=True)
class RunConfig:
    """Immutable run configuration, built once at startup."""
    target: Optional[Path]
    ignore: Optional[re.Pattern[str]]
    output_mode: OutputMode
    quiet: bool
    force_print: bool
    debug: bool

    @property
    def interactive(self) -> bool:
        return self.target is None

    @property
    def may_copy(self) -> bool:
        """Whether this run can end with a clipboard write."""
        return self.interactive or not self.quiet


class ConfigBuilder:
    """Builds RunConfig from CLI arguments."""

    @staticmethod
    def from_args(args: argparse.Namespace) -> RunConfig:
        """Create config from parsed arguments."""
        return RunConfig(
            target=args.path,
            ignore=ConfigBuilder._compile_ignore(args.ignore),
            output_mode=OutputMode.TREE_ONLY if args.tree_only else OutputMode.FULL,
            quiet=args.quiet,
            force_print=args.print,
            debug=args.debug,
        )

    @staticmethod
    def _compile_ignore(expression: Optional[str]) -> Optional[re.Pattern[str]]:
        """Compile the exclusion expression (unanchored, case-sensitive)."""
        if not expression:
            return None
        try:
            return re.compile(expression)
        except re.error as e:
            raise InvalidIgnorePattern(f"Invalid ignore pattern {expression!r}: {e}") from e


# =============================================================================
# EXTERNAL COLLABORATORS (one-method interfaces)
# =============================================================================

class FileLister(ABC):
    """Lists files known to version control."""

    @abstractmethod
    def list_files(self, root: Path) -> Optional[List[str]]:
        """Return paths relative to root, or None if root is not in a repository."""


class MultiSelector(ABC):
    """Interactive multi-select session over a candidate list."""

    @abstractmethod
    def select(self, candidates: Sequence[Path]) -> List[Path]:
        """Return the confirmed subset in the order reported; empty on cancel."""


class TreePrinter(ABC):
    """Renders a recursive directory listing."""

    @abstractmethod
    def render(self, directory: Path) -> str:
        """Return the listing, or raise RenderFailure."""


class ContentFormatter(ABC):
    """Renders a file's content as plain text."""

    @abstractmethod
    def render(self, path: Path) -> str:
        """Return the rendered content, or raise RenderFailure."""


class ClipboardWriter(ABC):
    """Places text on the system clipboard."""

    @abstractmethod
    def write(self, text: str) -> None:
        """Copy text, or raise ClipboardWriteFailure."""


# =============================================================================
# SUBPROCESS HELPERS
# =============================================================================

def resolve_executable(*names: str) -> str:
    """Return the first of `names` found on PATH."""
    for name in names:
        found = shutil.which(name)
        if found:
            logging.debug(f"Resolved {name} -> {found}")
            return found
    raise MissingDependency(
        f"Missing dependency: {names[0]} is required but was not found on PATH"
    )


def cli_path(path: Path) -> str:
    """Path text that an external command will never mistake for an option."""
    text = str(path)
    return f".{os.sep}{text}" if text.startswith("-") else text


def capture(cmd: List[str]) -> str:
    """Run a command and return its stdout, raising RenderFailure on any failure."""
    logging.debug(f"Running: {' '.join(cmd)}")
    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            errors="replace",
            check=False,
        )
    except OSError as e:
        raise RenderFailure(f"Could not run {cmd[0]}: {e}") from e

    if result.returncode != 0:
        detail = result.stderr.strip().splitlines()
        reason = detail[0] if detail else f"exit status {result.returncode}"
        raise RenderFailure(f"{Path(cmd[0]).name} failed: {reason}")
    return result.stdout


def is_binary_file(path: Path) -> bool:
    """Fast check if a file is binary by looking for null bytes."""
    with open(path, "rb") as f:
        return b"\x00" in f.read(BINARY_SNIFF_BYTES)


# =============================================================================
# REAL COLLABORATORS
# =============================================================================

class GitLister(FileLister):
    """Tracked plus untracked-but-not-ignored files via git."""

    def __init__(self, executable: Optional[str]):
        self.executable = executable

    def list_files(self, root: Path) -> Optional[List[str]]:
        if self.executable is None:
            return None

        try:
            check = subprocess.run(
                [self.executable, "rev-parse", "--is-inside-work-tree"],
                cwd=str(root), capture_output=True, text=True, check=False,
            )
            if check.returncode != 0 or check.stdout.strip() != "true":
                return None

            result = subprocess.run(
                [self.executable, "ls-files", "-z", "--cached", "--others", "--exclude-standard"],
                cwd=str(root), capture_output=True, text=True, check=False,
            )
        except OSError as e:
            logging.debug(f"git unavailable for {root}: {e}")
            return None

        if result.returncode != 0:
            logging.debug(f"git ls-files failed: {result.stderr.strip()}")
            return None

        # Unmerged paths appear once per index stage
        return list(dict.fromkeys(p for p in result.stdout.split("\0") if p))


class FzfSelector(MultiSelector):
    """Full-screen multi-select through fzf."""

    def __init__(self, executable: str, preview_command: str):
        self.executable = executable
        self.preview_command = preview_command

    def command(self) -> List[str]:
        return [
            self.executable,
            "--multi",
            "--bind", FzfOptions.BINDINGS,
            "--header", FzfOptions.HEADER,
            "--preview", self.preview_command,
            "--preview-window", FzfOptions.PREVIEW_WINDOW,
        ]

    def select(self, candidates: Sequence[Path]) -> List[Path]:
        feed = "".join(f"{c}\n" for c in candidates)
        cmd = self.command()
        logging.debug(f"Running: {' '.join(cmd)}")

        # fzf draws on the tty itself; only stdin/stdout are piped
        with subprocess.Popen(
            cmd, stdin=subprocess.PIPE, stdout=subprocess.PIPE, text=True,
        ) as proc:
            try:
                out, _ = proc.communicate(feed)
            except KeyboardInterrupt:
                # SIGTERM lets fzf leave the alternate screen before exiting
                proc.terminate()
                proc.wait()
                raise

        if proc.returncode in FzfOptions.EMPTY_EXIT_CODES:
            return []
        if proc.returncode != 0:
            logging.warning(f"fzf exited with status {proc.returncode}")
            return []
        return [Path(line) for line in out.splitlines() if line]


class TreeCommand(TreePrinter):
    """Colorized, directories-first listing via tree(1)."""

    def __init__(self, executable: str, color: bool = True):
        self.executable = executable
        self.color = color

    def render(self, directory: Path) -> str:
        if not directory.is_dir():
            raise RenderFailure(f"Not a directory: {directory}")
        return capture([
            self.executable,
            "-C" if self.color else "-n",
            "--dirsfirst",
            cli_path(directory),
        ])


class BatFormatter(ContentFormatter):
    """Plain-text, pager-free rendering via bat."""

    def __init__(self, executable: str):
        self.executable = executable

    def preview_command(self) -> str:
        """Shell command fzf runs for the highlighted candidate ({} is quoted by fzf)."""
        return f"{shlex.quote(self.executable)} --color=always --style=numbers --paging=never -- {{}}"

    def render(self, path: Path) -> str:
        # bat prints a warning and exits 0 on binary input
        try:
            if is_binary_file(path):
                raise RenderFailure(f"Binary content: {path}")
        except OSError as e:
            raise RenderFailure(f"Cannot read {path}: {e}") from e

        return capture([
            self.executable,
            "--style=plain",
            "--color=never",
            "--paging=never",
            "--",
            str(path),
        ])


class PyperclipClipboard(ClipboardWriter):
    """Clipboard through pyperclip's platform-specific copy function."""

    def __init__(self, copy_fn: Callable[[str], None]):
        self._copy = copy_fn

    @classmethod
    def detect(cls) -> PyperclipClipboard:
        """Resolve the platform clipboard once (pbcopy, xclip, xsel, wl-copy, ...)."""
        copy_fn, _paste_fn = pyperclip.determine_clipboard()
        # pyperclip hands back falsy stubs when no mechanism exists
        if not copy_fn:
            raise UnsupportedPlatformClipboard(
                "No clipboard utility found (install xclip, xsel or wl-clipboard)"
            )
        return cls(copy_fn)

    def write(self, text: str) -> None:
        try:
            self._copy(text)
        except (pyperclip.PyperclipException, OSError) as e:
            raise ClipboardWriteFailure(f"Clipboard error: {e}") from e


@dataclass
class Collaborators:
    """The external utilities one run talks to."""
    lister: FileLister
    tree_printer: TreePrinter
    formatter: ContentFormatter
    selector: Optional[MultiSelector] = None
    clipboard: Optional[ClipboardWriter] = None

    @classmethod
    def detect(cls, config: RunConfig) -> Collaborators:
        """Resolve every utility this run needs, failing before any output."""
        formatter = BatFormatter(resolve_executable(*Tools.CONTENT_FORMATTER))
        tree_printer = TreeCommand(resolve_executable(*Tools.TREE))

        selector = None
        if config.interactive:
            selector = FzfSelector(
                resolve_executable(*Tools.FUZZY_FINDER),
                formatter.preview_command(),
            )

        clipboard = PyperclipClipboard.detect() if config.may_copy else None

        return cls(
            lister=GitLister(shutil.which(Tools.GIT)),
            tree_printer=tree_printer,
            formatter=formatter,
            selector=selector,
            clipboard=clipboard,
        )


# =============================================================================
# DISCOVERY
# =============================================================================

def _is_regular_file(path: Path, root: Path) -> bool:
    """Regular files, plus symlinks to regular files that stay inside root."""
    try:
        if path.is_symlink():
            target = path.resolve(strict=True)
            if not target.is_relative_to(root.resolve()):
                return False
            mode = os.stat(target).st_mode
        else:
            mode = os.lstat(path).st_mode
    except (OSError, RuntimeError):
        return False
    return stat.S_ISREG(mode)


def walk_files(root: Path) -> List[Path]:
    """
    Recursively collect regular files under root.

    Symlinked directories are never entered and symlinked files only count
    when they resolve inside root, so the walk never leaves root. Devices,
    sockets and FIFOs are not regular files and are left out. Unreadable
    subtrees are omitted rather than failing the walk.
    """
    paths: List[Path] = []

    def on_error(err: OSError) -> None:
        logging.debug(f"Skipping unreadable {err.filename}: {err.strerror}")

    for dirpath, dirnames, filenames in os.walk(root, onerror=on_error):
        current = Path(dirpath)
        dirnames[:] = sorted(
            d for d in dirnames
            if d not in WALK_SKIP_DIRS and not (current / d).is_symlink()
        )

        for filename in sorted(filenames):
            path = current / filename
            if _is_regular_file(path, root):
                paths.append(path)

    return paths


def apply_ignore(paths: Sequence[Path], ignore: Optional[re.Pattern[str]]) -> List[Path]:
    """Drop every path whose text form matches ignore anywhere."""
    if ignore is None:
        return list(paths)
    return [p for p in paths if not ignore.search(p.as_posix())]


class Discovery:
    """Enumerates candidate files under a root."""

    def __init__(self, lister: FileLister, ignore: Optional[re.Pattern[str]] = None):
        self.lister = lister
        self.ignore = ignore

    def discover(self, root: Path) -> List[Path]:
        listed = self.lister.list_files(root)

        if listed is None:
            logging.debug(f"{root} is not a repository, walking the filesystem")
            paths = walk_files(root)
        else:
            logging.debug(f"Listing {root} through version control")
            paths = [root / rel for rel in listed]
            paths = [p for p in paths if p.is_file()]

        kept = apply_ignore(paths, self.ignore)
        logging.debug(f"Discovered {len(paths)} files, {len(kept)} after ignore filter")
        return kept


# =============================================================================
# SELECTION
# =============================================================================

class SelectionController:
    """Decides which files a run aggregates."""

    def __init__(self, discovery: Discovery, selector: Optional[MultiSelector] = None):
        self.discovery = discovery
        self.selector = selector

    def resolve(self, target: Optional[Path]) -> List[Path]:
        if target is None:
            return self._interactive()
        return self._direct(target)

    def _interactive(self) -> List[Path]:
        if self.selector is None:
            raise MissingDependency("Interactive selection requires fzf")

        candidates = self.discovery.discover(Path("."))
        if not candidates:
            raise NoCandidates(NO_CANDIDATES_MESSAGE)

        chosen = self.selector.select(candidates)
        logging.debug(f"Selected {len(chosen)} of {len(candidates)} candidates")
        return chosen

    def _direct(self, target: Path) -> List[Path]:
        if target.is_dir():
            return self.discovery.discover(target)
        if target.is_file():
            # Named files bypass the ignore filter
            return [target]
        raise TargetNotFound(f"Target not found: {target}")


# =============================================================================
# RENDERING
# =============================================================================

def directory_groups(selection: Sequence[Path]) -> List[Path]:
    """Distinct parent directories, sorted lexically."""
    return sorted({p.parent for p in selection}, key=lambda d: d.as_posix())


class TreeAggregator:
    """One labeled tree section per distinct parent directory."""

    def __init__(self, printer: TreePrinter):
        self.printer = printer

    def render(self, selection: Sequence[Path]) -> str:
        sections = []
        for directory in directory_groups(selection):
            try:
                body = self.printer.render(directory).rstrip("\n")
            except RenderFailure as e:
                logging.debug(f"Tree render failed for {directory}: {e}")
                body = ""
            header = TREE_HEADER.format(directory=directory.as_posix())
            sections.append(f"{header}\n{body}" if body else header)
        return SECTION_SEPARATOR.join(sections)


class ContentRenderer:
    """Header, rule and plain-text content for each file, in selection order."""

    def __init__(self, formatter: ContentFormatter):
        self.formatter = formatter

    def render(self, selection: Sequence[Path]) -> str:
        sections = []
        for path in selection:
            try:
                body = self.formatter.render(path).rstrip("\n")
            except RenderFailure as e:
                logging.debug(f"Content render failed for {path}: {e}")
                body = NO_CONTENT_PLACEHOLDER
            header = FILE_HEADER.format(path=path.as_posix())
            sections.append(f"{header}\n{CONTENT_RULE}\n{body}")
        return SECTION_SEPARATOR.join(sections)


class BundleAssembler:
    """Joins tree and content sections according to the output mode."""

    def __init__(self, trees: TreeAggregator, contents: ContentRenderer):
        self.trees = trees
        self.contents = contents

    def assemble(self, selection: Sequence[Path], mode: OutputMode) -> str:
        if not selection:
            return ""
        trees = self.trees.render(selection)
        if mode == OutputMode.TREE_ONLY:
            return trees
        return f"{trees}{SECTION_SEPARATOR}{self.contents.render(selection)}"


# =============================================================================
# OUTPUT SINK
# =============================================================================

def _silence_stream(stream: TextIO) -> None:
    """Point a broken stream at /dev/null so interpreter shutdown stays quiet."""
    try:
        fd = stream.fileno()
    except (AttributeError, OSError, ValueError):
        return
    devnull = os.open(os.devnull, os.O_WRONLY)
    os.dup2(devnull, fd)
    os.close(devnull)


class OutputSink:
    """Routes the bundle to stdout and/or the clipboard."""

    def __init__(
        self,
        clipboard: Optional[ClipboardWriter],
        stdout: Optional[TextIO] = None,
        stderr: Optional[TextIO] = None,
    ):
        self.clipboard = clipboard
        self.stdout = stdout
        self.stderr = stderr

    def emit(
        self,
        bundle: str,
        quiet: bool,
        force_print: bool,
        always_copy: bool = False,
        file_count: int = 0,
    ) -> bool:
        """
        Print when not quiet (or when forced), copy when not quiet.

        `always_copy` makes the clipboard write unconditional, which is how the
        interactive path behaves. Returns False only if the clipboard write
        failed; neither that nor a failed stdout write changes the exit status.
        """
        stdout = self.stdout or sys.stdout
        stderr = self.stderr or sys.stderr

        if not quiet or force_print:
            try:
                print(bundle, file=stdout)
                stdout.flush()
            except OSError as e:
                # Closed pipe (e.g. `| head`): the clipboard copy still happens
                logging.warning(f"Could not write to stdout: {e}")
                if isinstance(e, BrokenPipeError):
                    _silence_stream(stdout)

        if quiet and not always_copy:
            return True
        if self.clipboard is None:
            logging.warning("No clipboard available, skipping copy")
            return False

        try:
            self.clipboard.write(bundle)
        except ClipboardWriteFailure as e:
            logging.error(str(e))
            return False

        if not quiet:
            print(
                f"Copied {file_count:,} files ({len(bundle):,} chars) to clipboard.",
                file=stderr,
            )
        return True


# =============================================================================
# PIPELINE
# =============================================================================

def run(
    config: RunConfig,
    collaborators: Collaborators,
    stdout: Optional[TextIO] = None,
    stderr: Optional[TextIO] = None,
) -> int:
    """Select → assemble → emit. Returns the process exit status."""
    discovery = Discovery(collaborators.lister, config.ignore)
    controller = SelectionController(discovery, collaborators.selector)

    selection = controller.resolve(config.target)
    if not selection:
        if config.interactive:
            print(NO_SELECTION_MESSAGE, file=stderr or sys.stderr)
        else:
            logging.info(f"Nothing to bundle under {config.target}")
        return 0

    assembler = BundleAssembler(
        TreeAggregator(collaborators.tree_printer),
        ContentRenderer(collaborators.formatter),
    )
    bundle = assembler.assemble(selection, config.output_mode)

    sink = OutputSink(collaborators.clipboard, stdout=stdout, stderr=stderr)
    sink.emit(
        bundle,
        quiet=config.quiet,
        force_print=config.force_print,
        always_copy=config.interactive,
        file_count=len(selection),
    )
    return 0


# =============================================================================
# CLI PARSER
# =============================================================================

def create_parser() -> argparse.ArgumentParser:
    """Create argument parser."""
    parser = argparse.ArgumentParser(
        prog="fzcopy",
        description="Select files and bundle their tree and contents for LLM prompts",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  fzcopy                       # Pick files with fzf, print and copy the bundle
  fzcopy src/                  # Bundle every file under src/
  fzcopy main.py               # Bundle a single file
  fzcopy -i 'test|\\.lock$'     # Skip paths matching a regex
  fzcopy -t                    # Directory trees only
  fzcopy -q src/               # Neither print nor copy... add -p to print
        """,
    )

    parser.add_argument(
        "path",
        nargs="?",
        type=Path,
        default=None,
        metavar="PATH",
        help="File or directory to bundle without the interactive picker",
    )
    parser.add_argument("-i", "--ignore", metavar="PATTERN", help="Regex of paths to exclude from discovery")
    parser.add_argument("-t", "--tree-only", action="store_true", help="Only output directory trees")
    parser.add_argument("-q", "--quiet", action="store_true", help="Do not print the bundle to stdout")
    parser.add_argument("-p", "--print", action="store_true", help="Print the bundle even with --quiet")
    parser.add_argument("--debug", action="store_true", help="Trace what happens on stderr")
    parser.add_argument("-v", "--version", action="version", version=f"%(prog)s {get_version()}")

    return parser


# =============================================================================
# MAIN
# =============================================================================

def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(levelname)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        config = ConfigBuilder.from_args(args)
        collaborators = Collaborators.detect(config)
        return run(config, collaborators)
    except FzcopyError as e:
        logging.error(str(e))
        return e.exit_code
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
