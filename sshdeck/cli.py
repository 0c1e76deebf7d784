"""Command-line entry point with a few small utilities."""

from __future__ import annotations

import argparse
import logging
import os
import stat
import subprocess
import sys
from contextlib import suppress
from typing import Iterator, Sequence, TextIO

from termcolor import colored

__all__ = [
    "brofist_banner",
    "main",
    "nes_display_name",
    "run_shell",
    "scan_nes_roms",
]

log = logging.getLogger(__name__)

_WINDOWS_SHELL = "C:\\Program Files\\Git\\bin\\bash.exe"
_POSIX_SHELL = "/bin/sh"

_FULL_ROW = "M" * 100
_ART = """\
MMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMmhs+////oyhmMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMM
MMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMNh/.-/oyyys+/-.:ohmMMMNdyo//+oydNMMMMMMMMMMMMMMMMMMMMMMMMM
MMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMNh:`:hNMNdddmNMNds/-.:/---:+sys+:--odMMMMMMMMMMMMMMMMMMMMMMM
MMMMMMMMMMMMMMMMMMMMMMMMMMMMmdhssssssyhy:`:hNMm+.````./sdNMNdsyhdmNNddmNNms-`+mMMMMMMMMMMMMMMMMMMMMM
MMMMMMMMMMMMMMMMMMMMMMMMMNy:.-:/++++//::+hNMmo.         `./sdddhyo/-``.-odMNs..yMMMMMMMMMMMMMMMMMMMM
MMMMMMMMMMMMMMMMMMMMMMMMh-`+dNNmmmmmmNNMMNms.               ```          `oNMm:`oMMMMMMMMMMMMMMMMMMM
MMMMMMMMMMMMMMMNdso/////`:dMNs-......-:++:`                                sMMN: yMMMMMMMMMMMMMMMMMM
MMMMMMMMMMMMMNs-.:osyysoyNNh-                                              .NMMd .NMMMMMMMMMMMMMMMMM
MMMMMMMMMMMMm:`omMNmddmmmh/                                                 hMMM+ oMMMMMMMMMMMMMMMMM
MMMMMMMMMMMN: sMMh-````..                                                   /MMMN. hMMMMMMMMMMMMMMMM
MMMMMMMMMMMy /MMd`                                                          .MMMMd`.NMMMMMMMMMMMMMMM
MMMMMMMMMMM. dMM-                                          /y/               NMMMMo +MMMMMMMMMMMMMMM
MMMMMMMMMMd -MMm       ``                                  hMN               hMMmMN. dMMMMMMMMMMMMMM
MMMMMMMMMMo oMMo      :dd-                                 sMM-              oMMsNMh -NMMMMMMMMMMMMM
MMMMMMMMMM- dMM:      /MMs             -+-                 :MMo              /MMssMM/ sMMMMMMMMMMMMM
MMMMMMMMMN `NMN`      -MMh             NMm                 `MMh              -MMh`NMN``mMMMMMMMMMMMM
MMMMMMMMMh :MMh       -MMd             NMm                  mMN`             `MMm +MMo +MMMMMMMMMMMM
MMMMMMMMMo oMMo       -MMh            `NMN                  sMM:             `NMN `NMN``NMMMMMMMMMMM
MMMMMMMMM/ yMM/       /MMy            `NMN                  /MMy              mMM` sMM+ sMMMMMMMMMMM
MMMMMMMMM/ yMM/       oMMo            `MMN                  `NMN              hMM- .MMd -MMMMMMMMMMM
MMMMMMMMM+ sMM+       hMM:            .MMm                   mMM.             sMM+  dMM- dMMMMMMMMMM
MMMMMMMMMs +MMs       mMM`            -MMd                   dMM-             +MMs  /MMs +MMMMMMMMMM
MMMMMMMMMm .NMN:     `NMN             -MMd                   dMM-             :MMh  `NMN``NMMMMMMMMM
MMMMMMMMMMo :mMNh/.  -MMd             :MMh                   dMM-             :MMh   sMM/ yMMMMMMMMM
MMMMMMMMMMNy.`+dNNNdsyMMh             :MMh                   mMM.             yMM+   :MMs +MMMMMMMMM
MMMMMMMMMMMMNy:..+ydmNMMN.            -MMd                  `NMN            `sNMh`   sMM+ sMMMMMMMMM
MMMMMMMMMMMMMMNmy+:--./NMmo:-`        .NMN.                 .MMN.`    ``.-/smMNs`  `yNMy`.NMMMMMMMMM
MMMMMMMMMMMMMMMMMMNNmo`-sdNNNmdhyyyyhdmMMMm+-`          `.-:hMMMmmmddmmmmNNNds-   .dMNo`:mMMMMMMMMMM
MMMMMMMMMMMMMMMMMMMMMMdo---:oyhdddddhhs+/ymMNmdhyssssyhdmmNNNdo+syyhyyyss+/-`    :mMm/ +NMMMMMMMMMMM
MMMMMMMMMMMMMMMMMMMMMMMMNmdyo/::::::::/o+-.:oyhddmMMMmhyso+:-`                  /NMd-`sNMMMMMMMMMMMM
MMMMMMMMMMMMMMMMMMMMMMMMMMMMMMNNNmNNNMMMMmds+/:.`/MMd.                         +NMh.`hMMMMMMMMMMMMMM
MMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMNs +MMs                         +NMh`.dMMMMMMMMMMMMMMM
MMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMd -MMd`                       oNMh`.dMMMMMMMMMMMMMMMM
MMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMM: sMMy-```..:/+ooo++//:-....oMMy`.dMMMMMMMMMMMMMMMMM
MMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMm-`omMNddmmNNNmmmmmmNNNNNNNNNms`-mMMMMMMMMMMMMMMMMMM
MMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMNs../syyso/::-------:::/++/:-.+mMMMMMMMMMMMMMMMMMMM
MMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMMNhs+//+osyhdmmmmdddhyysssyhNMMMMMMMMMMMMMMMMMMMMM"""

_BROFIST_MESSAGES = (
    ("Pewdiepie needs your help.", "red"),
    ("Do your part to subscribe Felix's Youtube Channel.", "yellow"),
)

_NES_NAMES = (
    ("final_fight", "快打旋风 "),
    ("contra", "魂斗罗"),
    ("donkey_kong", "金刚"),
    ("double_dragon", "双截龙"),
    ("super_mario_bros", "超级玛丽兄弟"),
    ("dragon_ball", "龙珠"),
    ("final_fantasy", "最终幻想"),
    ("transformers", "变形金刚"),
    ("dragon_warrior", "龙战士"),
    ("indiana_jones", "印第安纳琼斯"),
    ("dale_rescue_rangers", "松鼠大作战"),
    ("___", "_"),
    ("__", "_"),
    ("_.", "."),
)


def brofist_banner() -> str:
    """The fist banner, framed by blank lines."""
    rows = [_FULL_ROW, _FULL_ROW, *_ART.splitlines(), _FULL_ROW, _FULL_ROW]
    return "\n" + "\n".join(rows) + "\n"


def _brofist_text() -> str:
    """The banner followed by the coloured messages, one per line."""
    messages = [colored(text, color) for text, color in _BROFIST_MESSAGES]
    return "\n".join([brofist_banner(), *messages]) + "\n"


def nes_display_name(file_name: str) -> str:
    """Lower-case a ROM file name and replace well-known titles with Chinese names."""
    name = file_name.lower()
    for old, new in _NES_NAMES:
        name = name.replace(old, new)
    return name


def _walk(root: str) -> Iterator[tuple[str, bool]]:
    is_dir = stat.S_ISDIR(os.lstat(root).st_mode)
    yield root, is_dir
    if is_dir:
        for name in sorted(os.listdir(root)):
            yield from _walk(os.path.join(root, name))


def scan_nes_roms(nes_dir: str, output: TextIO) -> None:
    """Rename ROMs under ``nes_dir`` and write a YAML listing of them to ``output``.

    Each sub-directory becomes a key; each ``.nes`` file becomes a list entry
    relative to the ROM directory. Files whose path holds ``hack`` or
    ``Hack`` are deleted.
    """
    root = os.fspath(nes_dir)
    label = os.path.basename(os.path.normpath(root))
    for path, is_dir in _walk(root):
        name = os.path.basename(path)
        if is_dir and name != label:
            output.write(f"{name}:\n")
            continue
        relative = os.path.relpath(path, root)
        if "Hack" in relative or "hack" in relative:
            with suppress(OSError):
                os.remove(path)
        if not path.endswith(".nes"):
            continue
        new_path = os.path.join(os.path.dirname(path), nes_display_name(name))
        if new_path != path:
            try:
                os.rename(path, new_path)
            except OSError as exc:
                log.warning("rename failed %s %s %s", path, new_path, exc)
        entry = f'    - "{label}{new_path.replace(root, "")}"'.replace("\\", "/")
        output.write(entry + "\n")


def run_shell(command: str) -> str:
    """Run ``command`` in a shell and return its standard output.

    Raises :class:`subprocess.CalledProcessError` on a non-zero exit.
    """
    shell = _WINDOWS_SHELL if sys.platform == "win32" else _POSIX_SHELL
    result = subprocess.run(
        [shell, "-c", command], stdout=subprocess.PIPE, check=True, text=True
    )
    return result.stdout


def _cmd_nesscan(args: argparse.Namespace) -> int:
    with open(args.output, "w", encoding="utf-8") as output:
        scan_nes_roms(args.nes_dir, output)
    return 0


def _cmd_run(args: argparse.Namespace) -> int:
    try:
        output = run_shell(args.shell_command)
    except (subprocess.CalledProcessError, OSError) as exc:
        print("")
        print(exc, file=sys.stderr)
        return 1
    print(output)
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="sshdeck")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("brofist", help="print the brofist banner")

    nesscan = sub.add_parser("nesscan", help="rename .nes ROMs and list them as YAML")
    nesscan.add_argument("nes_dir", help="directory holding the ROMs")
    nesscan.add_argument("output", help="YAML file to write")
    nesscan.set_defaults(handler=_cmd_nesscan)

    run = sub.add_parser("run", help="run a shell command and print its output")
    run.add_argument("shell_command", help="the command line to run")
    run.set_defaults(handler=_cmd_run)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Parse ``argv`` and run the chosen subcommand; return the exit status."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 0
    if args.command == "brofist":
        sys.stdout.write(_brofist_text())
        return 0
    return args.handler(args)


if __name__ == "__main__":
    sys.exit(main())