"""Safety validator: structural refusal of high-risk command lines.

The check works on shell tokens, not substrings. A command is split into
simple commands at control operators, wrappers such as ``env`` or ``nice``
are peeled off, and each remaining program is matched against rules for:

- recursive or forced deletion
- writes to the filesystem root, system directories or devices
- destructive disk operations
- remote code execution (download piped to an interpreter, fork bombs)
- privilege escalation

Any match denies. There is no partial allow and no override. The check is
pure: the verdict depends only on the command text.
"""

from __future__ import annotations

import logging
import posixpath
import re
import shlex
import unicodedata
from dataclasses import dataclass
from enum import Enum

from dexter.plugins.base import CandidateCommand

logger = logging.getLogger(__name__)


class RiskCategory(Enum):
    RECURSIVE_DELETE = "recursive_delete"
    ROOT_OR_DEVICE_WRITE = "root_or_device_write"
    DISK_DESTRUCTION = "disk_destruction"
    CODE_EXECUTION = "remote_code_execution"
    PRIVILEGE_ESCALATION = "privilege_escalation"
    MALFORMED = "malformed"


@dataclass(frozen=True)
class SafetyVerdict:
    """Allow, or Deny with a category and reason."""

    allowed: bool
    category: RiskCategory | None = None
    reason: str = ""

    @classmethod
    def allow(cls) -> SafetyVerdict:
        return cls(True)

    @classmethod
    def deny(cls, category: RiskCategory, reason: str) -> SafetyVerdict:
        return cls(False, category, reason)

    @property
    def denied(self) -> bool:
        return not self.allowed

    def __str__(self) -> str:
        if self.allowed:
            return "Allow"
        return f"Deny({self.category.value}: {self.reason})"


# Cyrillic and Greek look-alikes for Latin letters
HOMOGRAPH_MAP = {
    "\u0430": "a", "\u0435": "e", "\u043e": "o", "\u0440": "p",
    "\u0441": "c", "\u0443": "y", "\u0445": "x", "\u0455": "s",
    "\u0456": "i", "\u0458": "j", "\u04bb": "h", "\u0501": "d",
    "\u0410": "A", "\u0415": "E", "\u041e": "O", "\u0420": "P",
    "\u0421": "C", "\u0425": "X", "\u03b1": "a", "\u03bf": "o",
    "\u03c1": "p", "\u03c5": "u", "\u03c7": "x", "\u0391": "A",
    "\u039f": "O", "\u03a1": "P",
}
# zero-width characters and soft hyphen
_INVISIBLE = dict.fromkeys(map(ord, "\u200b\u200c\u200d\u2060\ufeff\u00ad"), None)
_DASHES = dict.fromkeys(map(ord, "\u2010\u2011\u2012\u2013\u2014\u2212\ufe63\uff0d"), "-")

PIPE_OPERATORS = {"|", "|&"}

DELETE_PROGRAMS = {"rm", "unlink", "shred", "srm"}
PRIVILEGE_PROGRAMS = {"sudo", "su", "doas", "pkexec", "runas", "sudoedit"}
DOWNLOAD_PROGRAMS = {"curl", "wget", "fetch", "aria2c"}
INTERPRETERS = {
    "sh", "bash", "zsh", "dash", "ksh", "fish", "csh", "tcsh",
    "python", "python3", "perl", "ruby", "node", "php", "lua", "osascript",
}
SHELLS = {"sh", "bash", "zsh", "dash", "ksh", "fish", "csh", "tcsh"}
DISK_PROGRAMS = {
    "mke2fs", "mkswap", "wipefs", "fdisk", "sfdisk", "cfdisk", "parted",
    "gdisk", "sgdisk", "blkdiscard", "badblocks", "newfs", "format",
}
DISKUTIL_DESTRUCTIVE = {
    "erasedisk", "erasevolume", "partitiondisk", "zerodisk",
    "randomdisk", "secureerase", "reformat",
}
# Programs that only read their path arguments.
READ_ONLY_PROGRAMS = {
    "ls", "cat", "head", "tail", "less", "more", "grep", "egrep", "fgrep", "rg",
    "wc", "file", "stat", "du", "df", "diff", "cmp", "md5", "md5sum", "shasum",
    "sha256sum", "which", "readlink", "realpath", "basename", "dirname", "echo",
    "printf", "tree",
}
PERMISSION_PROGRAMS = {"chmod", "chown", "chgrp"}

PROTECTED_PREFIXES = (
    "/bin", "/boot", "/dev", "/etc", "/lib", "/lib32", "/lib64", "/libx32",
    "/proc", "/root", "/sbin", "/sys", "/usr", "/var/lib", "/var/db",
    "/System", "/Library", "/private/etc", "/private/var/db",
)
HARMLESS_DEVICES = {
    "/dev/null", "/dev/zero", "/dev/stdout", "/dev/stderr", "/dev/stdin", "/dev/tty",
}
BROAD_TARGETS = {"/", "/*", "~", "~/", "~/*", "*", ".", "./", "./*", "..", "../", "$HOME", "${HOME}"}

# Options whose value is the following token, per wrapper.
_WRAPPER_VALUE_OPTIONS = {
    "env": {"-u", "--unset", "-C", "--chdir", "-S", "--split-string"},
    "nice": {"-n", "--adjustment"},
    "ionice": {"-c", "-n", "-p", "-t"},
    "nohup": set(),
    "command": set(),
    "builtin": set(),
    "exec": {"-a"},
    "time": {"-f", "-o", "--format", "--output"},
    "timeout": {"-s", "--signal", "-k", "--kill-after"},
    "stdbuf": {"-i", "-o", "-e"},
    "xargs": {"-I", "-n", "-P", "-d", "-L", "-s", "-E", "-a", "--max-args", "--max-procs"},
    "caffeinate": {"-t", "-w"},
    "busybox": set(),
}
# Wrappers that take one positional argument before the wrapped command.
_WRAPPER_POSITIONAL = {"timeout": 1}
_INLINE_SCRIPT_FLAGS = {"python": "-c", "python3": "-c", "perl": "-e", "ruby": "-e", "node": "-e"}

_ASSIGNMENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*=")
_FORK_BOMB_RE = re.compile(r"([A-Za-z_:.][\w:.]*)\(\)\{\1\|\1&\};?")
_SUBSTITUTION_RE = re.compile(r"\$\(([^()]*)\)|`([^`]*)`|<\(([^()]*)\)")
_MAX_DEPTH = 4


def normalize_command(text: str) -> str:
    """Fold look-alike characters so obfuscated commands tokenise honestly."""
    for homograph, replacement in HOMOGRAPH_MAP.items():
        text = text.replace(homograph, replacement)
    text = text.translate(_INVISIBLE).translate(_DASHES)
    return unicodedata.normalize("NFKC", text)


def tokenize(text: str) -> list[str]:
    """Split into shell words, keeping operators as their own tokens.

    Raises ValueError on unbalanced quotes.
    """
    lexer = shlex.shlex(text.replace("\n", " ; "), posix=True, punctuation_chars=True)
    lexer.whitespace_split = True
    lexer.commenters = ""
    return list(lexer)


def is_separator(token: str) -> bool:
    """Control operators, subshell parens and process-substitution openers."""
    if token[:1] in ("<", ">"):
        return token.lstrip("<>") == "("
    return bool(token) and all(c in "();&|{}" for c in token)


def split_commands(tokens: list[str]) -> list[tuple[list[str], bool]]:
    """Split at control operators. Returns (words, fed_by_pipe) per simple command."""
    commands: list[tuple[list[str], bool]] = []
    current: list[str] = []
    piped = False
    for token in tokens:
        if is_separator(token):
            if current:
                commands.append((current, piped))
            current = []
            piped = token in PIPE_OPERATORS
            continue
        current.append(token)
    if current:
        commands.append((current, piped))
    return commands


def _program(token: str) -> str:
    return posixpath.basename(token).lower()


def _is_redirect(token: str) -> bool:
    return ">" in token and all(c in "<>&|" for c in token.lstrip("0123456789"))


def unwrap(words: list[str]) -> list[str]:
    """Drop leading variable assignments and wrapper programs like env or nice."""
    words = list(words)
    for _ in range(8):
        while words and _ASSIGNMENT_RE.match(words[0]):
            words.pop(0)
        if not words:
            return words
        name = _program(words[0])
        if name not in _WRAPPER_VALUE_OPTIONS:
            return words
        value_options = _WRAPPER_VALUE_OPTIONS[name]
        index = 1
        while index < len(words):
            word = words[index]
            if word == "--":
                index += 1
                break
            if word in value_options:
                index += 2
            elif word.startswith("-") or (name == "env" and _ASSIGNMENT_RE.match(word)):
                index += 1
            else:
                break
        index += _WRAPPER_POSITIONAL.get(name, 0)
        words = words[index:]
    return words


def _normalize_path(path: str) -> str:
    if path.startswith("/"):
        path = posixpath.normpath(path)
        # normpath keeps a leading '//'
        return "/" + path.lstrip("/")
    return path


def is_device_path(path: str) -> bool:
    path = _normalize_path(path)
    return path.startswith("/dev/") and path not in HARMLESS_DEVICES and not path.startswith("/dev/fd/")


def is_protected_path(path: str) -> bool:
    """Root itself, a system directory, or a device."""
    path = _normalize_path(path)
    if path in ("/", "/*"):
        return True
    if path in HARMLESS_DEVICES or path.startswith("/dev/fd/"):
        return False
    return any(path == p or path.startswith(p + "/") for p in PROTECTED_PREFIXES)


def _operands(args: list[str]) -> list[str]:
    """Non-option arguments. Everything after '--' counts."""
    operands = []
    options_done = False
    for arg in args:
        if options_done or not arg.startswith("-") or arg == "-":
            operands.append(arg)
        elif arg == "--":
            options_done = True
    return operands


def _path_arguments(args: list[str]) -> list[str]:
    """Every argument that could name a path: operands, option values and key=value forms.

    Covers ``-o X`` (X is its own word), ``--output=X``, ``of=X`` and ``-oX``.
    """
    paths = []
    for arg in args:
        paths.append(arg)
        if "=" in arg:
            paths.append(arg.split("=", 1)[1])
        if arg.startswith("-") and not arg.startswith("--") and len(arg) > 2:
            paths.append(arg[2:])
    return [path for path in paths if path.startswith("/")]


def _short_flags(args: list[str]) -> set[str]:
    flags: set[str] = set()
    for arg in args:
        if arg == "--":
            break
        if arg.startswith("-") and not arg.startswith("--"):
            flags.update(arg[1:])
    return flags


def _long_flags(args: list[str]) -> set[str]:
    flags = set()
    for arg in args:
        if arg == "--":
            break
        if arg.startswith("--"):
            flags.add(arg.split("=", 1)[0])
    return flags


class SafetyValidator:
    """Classify a literal command line as Allow or Deny."""

    def check(self, command_text: str) -> SafetyVerdict:
        verdict = self._check(command_text, depth=0)
        if verdict.denied:
            logger.warning(f"Safety denied ({verdict.category.value}): {verdict.reason}")
        return verdict

    def check_candidate(self, candidate: CandidateCommand) -> SafetyVerdict:
        return self.check(candidate.text)

    # ------------------------------------------------------------------

    def _check(self, command_text: str, depth: int) -> SafetyVerdict:
        if not command_text or not command_text.strip():
            return SafetyVerdict.deny(RiskCategory.MALFORMED, "empty command")
        if depth > _MAX_DEPTH:
            return SafetyVerdict.deny(RiskCategory.MALFORMED, "command nests too deeply to analyse")

        text = normalize_command(command_text)
        compact = re.sub(r"\s+", "", text)
        if _FORK_BOMB_RE.search(compact):
            return SafetyVerdict.deny(RiskCategory.CODE_EXECUTION, "fork bomb")

        for match in _SUBSTITUTION_RE.finditer(text):
            inner = next(group for group in match.groups() if group is not None)
            if inner.strip():
                verdict = self._check(inner, depth + 1)
                if verdict.denied:
                    return verdict

        try:
            tokens = tokenize(text)
        except ValueError as e:
            return SafetyVerdict.deny(RiskCategory.MALFORMED, f"cannot parse command: {e}")
        commands = split_commands(tokens)
        if not commands:
            return SafetyVerdict.deny(RiskCategory.MALFORMED, "empty command")

        downloaded = False
        programs: set[str] = set()
        for words, piped in commands:
            verdict = self._check_redirects(words)
            if verdict:
                return verdict
            words = unwrap(self._strip_redirects(words))
            if not words:
                continue
            program = _program(words[0])
            programs.add(program)
            if program in INTERPRETERS and piped and downloaded:
                return SafetyVerdict.deny(
                    RiskCategory.CODE_EXECUTION, f"downloaded content piped into {program}"
                )
            verdict = self._check_simple(program, words[1:], depth)
            if verdict:
                return verdict
            if program in DOWNLOAD_PROGRAMS:
                downloaded = True
            elif not piped:
                downloaded = False

        if programs & DOWNLOAD_PROGRAMS and programs & INTERPRETERS and "<(" in compact:
            return SafetyVerdict.deny(
                RiskCategory.CODE_EXECUTION, "downloaded content executed via process substitution"
            )
        return SafetyVerdict.allow()

    def _strip_redirects(self, words: list[str]) -> list[str]:
        out = []
        skip = False
        for word in words:
            if skip:
                skip = False
                continue
            if _is_redirect(word) or word in ("<", "<<", "<<<"):
                skip = True
                continue
            out.append(word)
        return out

    def _check_redirects(self, words: list[str]) -> SafetyVerdict | None:
        for index, word in enumerate(words[:-1]):
            if not _is_redirect(word):
                continue
            target = words[index + 1]
            if word.endswith("&") and target.isdigit():
                continue
            if is_device_path(target):
                return SafetyVerdict.deny(
                    RiskCategory.ROOT_OR_DEVICE_WRITE, f"output redirected to device {target}"
                )
            if is_protected_path(target):
                return SafetyVerdict.deny(
                    RiskCategory.ROOT_OR_DEVICE_WRITE, f"output redirected to system path {target}"
                )
        return None

    def _check_simple(self, program: str, args: list[str], depth: int) -> SafetyVerdict | None:
        if program in PRIVILEGE_PROGRAMS:
            return SafetyVerdict.deny(RiskCategory.PRIVILEGE_ESCALATION, f"{program} elevates privileges")

        if program == "rm":
            return self._check_rm(args)
        if program in ("shred", "srm"):
            return SafetyVerdict.deny(RiskCategory.DISK_DESTRUCTION, f"{program} irrecoverably overwrites data")
        if program == "find":
            return self._check_find(args)

        if program.startswith("mkfs") or program in DISK_PROGRAMS:
            return SafetyVerdict.deny(RiskCategory.DISK_DESTRUCTION, f"{program} rewrites disks or partitions")
        if program == "diskutil" and any(a.lower() in DISKUTIL_DESTRUCTIVE for a in args):
            return SafetyVerdict.deny(RiskCategory.DISK_DESTRUCTION, "diskutil erases or repartitions a disk")
        if program == "dd":
            return self._check_dd(args)

        if program not in READ_ONLY_PROGRAMS:
            for path in _path_arguments(args):
                if is_device_path(path):
                    return SafetyVerdict.deny(RiskCategory.ROOT_OR_DEVICE_WRITE, f"{program} touches device {path}")
                if is_protected_path(path):
                    return SafetyVerdict.deny(RiskCategory.ROOT_OR_DEVICE_WRITE, f"{program} writes to system path {path}")
        if program in PERMISSION_PROGRAMS:
            return self._check_permissions(program, args)

        if program == "eval":
            return SafetyVerdict.deny(RiskCategory.CODE_EXECUTION, "eval executes arbitrary text")
        if program in SHELLS or program in ("python", "python3", "perl", "ruby", "node"):
            return self._check_inline_script(program, args, depth)
        return None

    def _check_rm(self, args: list[str]) -> SafetyVerdict | None:
        short = _short_flags(args)
        long = _long_flags(args)
        if "--no-preserve-root" in long:
            return SafetyVerdict.deny(RiskCategory.RECURSIVE_DELETE, "rm --no-preserve-root")
        if short & {"r", "R"} or "--recursive" in long:
            return SafetyVerdict.deny(RiskCategory.RECURSIVE_DELETE, "recursive deletion")
        if "f" in short or "--force" in long:
            return SafetyVerdict.deny(RiskCategory.RECURSIVE_DELETE, "forced deletion")
        for operand in _operands(args):
            if operand in BROAD_TARGETS or operand.rstrip("/") in ("", "~") or is_protected_path(operand):
                return SafetyVerdict.deny(RiskCategory.RECURSIVE_DELETE, f"deletion of broad path {operand}")
        return None

    def _check_find(self, args: list[str]) -> SafetyVerdict | None:
        if "-delete" in args:
            return SafetyVerdict.deny(RiskCategory.RECURSIVE_DELETE, "find -delete")
        for index, arg in enumerate(args[:-1]):
            if arg in ("-exec", "-execdir", "-ok", "-okdir"):
                target = _program(args[index + 1])
                if target in DELETE_PROGRAMS or target in SHELLS:
                    return SafetyVerdict.deny(RiskCategory.RECURSIVE_DELETE, f"find {arg} {target}")
        return None

    def _check_dd(self, args: list[str]) -> SafetyVerdict | None:
        for arg in args:
            if not arg.startswith("of="):
                continue
            target = arg[3:]
            if is_device_path(target):
                return SafetyVerdict.deny(RiskCategory.DISK_DESTRUCTION, f"dd writes to device {target}")
            if is_protected_path(target):
                return SafetyVerdict.deny(RiskCategory.ROOT_OR_DEVICE_WRITE, f"dd writes to system path {target}")
        return None

    def _check_permissions(self, program: str, args: list[str]) -> SafetyVerdict | None:
        operands = _operands(args)
        recursive = "R" in _short_flags(args) or "--recursive" in _long_flags(args)
        for operand in operands[1:]:
            if is_protected_path(operand) or (recursive and operand in BROAD_TARGETS):
                return SafetyVerdict.deny(
                    RiskCategory.ROOT_OR_DEVICE_WRITE, f"{program} changes permissions on {operand}"
                )
        if program == "chmod" and operands:
            mode = operands[0]
            if re.fullmatch(r"[0-7]?[4-7][0-7]{3}", mode) or re.search(r"[ugoa]*[+=][rwxXt]*s", mode):
                return SafetyVerdict.deny(RiskCategory.PRIVILEGE_ESCALATION, f"chmod sets setuid/setgid ({mode})")
        return None

    def _check_inline_script(self, program: str, args: list[str], depth: int) -> SafetyVerdict | None:
        flag = _INLINE_SCRIPT_FLAGS.get(program, "-c")
        for index, arg in enumerate(args[:-1]):
            bundled = program in SHELLS and arg.startswith("-") and not arg.startswith("--") and "c" in arg
            if arg != flag and not bundled:
                continue
            script = args[index + 1]
            if any(re.search(rf"\b{name}\b", script) for name in DOWNLOAD_PROGRAMS):
                return SafetyVerdict.deny(
                    RiskCategory.CODE_EXECUTION, f"{program} runs a script that downloads code"
                )
            if program in SHELLS:
                verdict = self._check(script, depth + 1)
                if verdict.denied:
                    return verdict
            break
        return None
