"""Pattern catalog of dangerous command shapes.

Each rule is anchored to a destructive *argument shape*, not to a program
name: ``rm`` needs a recursive flag and a root, home or system target,
``mkfs`` needs a ``/dev/`` target, ``fdisk -l`` is never flagged.

Rules are matched against the normalized text of every segment produced by
:class:`~shellgate.gate.tokenizer.CommandTokenizer`, so quoting, homoglyphs,
chaining and ``sh -c`` nesting do not hide a match.
"""

from __future__ import annotations

import fnmatch
from typing import TYPE_CHECKING, Iterable, Iterator

from shellgate.errors import ConfigurationError
from shellgate.gate.models import (
    ExecutionTarget,
    MatcherKind,
    MatchScope,
    PatternRule,
    RuleCategory,
    Severity,
)
from shellgate.gate.tokenizer import CommandTokenizer, TokenizeResult, normalize_command

if TYPE_CHECKING:
    from shellgate.config import GateSettings


# Building blocks for the built-in rules (all text is lower-cased)
_END = r"(?:\s|$)"
_RECURSIVE = r"(?=(?:.*\s)?-(?:[a-z]*r[a-z]*|-recursive)" + _END + ")"
_ROOT_OR_HOME = (
    r"(?:/+|/+\*/?|/\.\*|~/?|~/\*|\$home/?|\$home/\*|\$\{home\}/?|\$\{home\}/\*"
    r"|/home/?|/home/\*|/root/?|/root/\*|/users/?)"
)
_SYSTEM_DIRS = r"(?:etc|usr|bin|sbin|lib|lib32|lib64|libx32|boot|var|opt|srv|sys|proc|dev|snap|nix)"
_DEVICE = (
    r"/dev/(?:sd[a-z]|hd[a-z]|vd[a-z]|xvd[a-z]|nvme\d+n\d+|mmcblk\d+|disk\d+"
    r"|mapper/\S+|md\d+|dm-\d+|loop\d+)"
)
_SENSITIVE_PATH = (
    r"(?:/+|/+\*/?|/(?:etc|usr|bin|sbin|lib|lib64|boot|root|dev|sys|proc)(?:/\S*)?"
    r"|/(?:var|home|opt|srv)/?|~/?|~/\.ssh(?:/\S*)?|\$home/?|\$\{home\}/?)"
)
_SECRETS = (
    r"(?:/etc/(?:shadow|gshadow|passwd|sudoers)|\.ssh/\S*|id_(?:rsa|ed25519|ecdsa|dsa)\S*"
    r"|\.aws/credentials|\.gnupg/\S*|\.netrc|\.kube/config|\.docker/config\.json|\.env)"
)
_SHELL = r"(?:/\S*/)?(?:ba|z|da|k|mk)?sh"
_INTERPRETER = r"(?:" + _SHELL + r"|(?:/\S*/)?(?:python[0-9.]*|perl|ruby|node))"
_PRIV = r"^(?:sudo|doas|run0|pkexec)(?:\s+(?:-[ugphcdrt]\s+\S+|-\S+))*"
_CONTAINER_RUN = r"^(?:docker|podman|nerdctl)\s(?:.*\s)?(?:run|create)\s(?:.*\s)?"

# Any redirection operator (>, >>, 2>, &>, >|); shlex keeps "x>/dev/sda" as one token
_REDIRECT = r">\|?\s*"


def _rule(
    id: str,
    pattern: str,
    category: RuleCategory,
    severity: Severity,
    description: str,
    scope: MatchScope = MatchScope.SEGMENT,
    matcher: MatcherKind = MatcherKind.REGEX,
    container_only: bool = False,
) -> PatternRule:
    return PatternRule(
        id=id,
        pattern=pattern,
        category=category,
        severity=severity,
        matcher=matcher,
        scope=scope,
        container_only=container_only,
        description=description,
    )


_FS = RuleCategory.FILESYSTEM_DESTRUCTION
_DISK = RuleCategory.DISK_DEVICE_ACCESS
_FMT = RuleCategory.FILESYSTEM_FORMATTING
_FORK = RuleCategory.FORK_BOMB
_PRIV_ESC = RuleCategory.PRIVILEGE_ESCALATION
_PERM = RuleCategory.PERMISSION_CHANGE
_ESCAPE = RuleCategory.CONTAINER_ESCAPE
_EXFIL = RuleCategory.NETWORK_EXFILTRATION
_RCE = RuleCategory.REMOTE_CODE_EXECUTION
_OBF = RuleCategory.OBFUSCATED_EXECUTION
_SYS = RuleCategory.SYSTEM_CONTROL
_HIST = RuleCategory.HISTORY_REWRITE


BUILTIN_RULES: tuple[PatternRule, ...] = (
    # Filesystem destruction
    _rule(
        "fs.rm-root",
        r"^rm\s" + _RECURSIVE + r"(?:.*\s)?" + _ROOT_OR_HOME + _END,
        _FS, Severity.CRITICAL,
        "Recursive delete of the root filesystem or a home directory",
    ),
    _rule(
        "fs.rm-system-dir",
        r"^rm\s" + _RECURSIVE + r"(?:.*\s)?/" + _SYSTEM_DIRS + r"(?:/|/\*)?" + _END,
        _FS, Severity.CRITICAL,
        "Recursive delete of a top-level system directory",
    ),
    _rule(
        "fs.rm-no-preserve-root",
        r"^rm\s(?:.*\s)?--no-preserve-root" + _END,
        _FS, Severity.CRITICAL,
        "rm with --no-preserve-root",
    ),
    _rule(
        "fs.rm-user-home",
        r"^rm\s" + _RECURSIVE + r"(?:.*\s)?/home/[^/\s]+/?" + _END,
        _FS, Severity.HIGH,
        "Recursive delete of a user's home directory",
    ),
    _rule(
        "fs.find-delete-root",
        r"^find\s+(?:/|~|\$home)/?\s(?:.*\s)?(?:-delete|-exec\s+rm)" + _END,
        _FS, Severity.HIGH,
        "find -delete from the filesystem root or home",
    ),
    _rule(
        "fs.truncate-system-file",
        _REDIRECT + r"/etc/(?:passwd|shadow|group|gshadow|fstab|sudoers)" + _END,
        _FS, Severity.CRITICAL,
        "Overwrite of a critical system file",
        scope=MatchScope.INVOCATION,
    ),
    # Disk device access
    _rule(
        "disk.dd-write",
        r"^dd\s(?:.*\s)?of=" + _DEVICE,
        _DISK, Severity.CRITICAL,
        "dd writing directly to a block device",
    ),
    _rule(
        "disk.redirect-to-device",
        _REDIRECT + _DEVICE,
        _DISK, Severity.CRITICAL,
        "Output redirected onto a block device",
        scope=MatchScope.INVOCATION,
    ),
    _rule(
        "disk.tee-device",
        r"^tee\s(?:.*\s)?" + _DEVICE,
        _DISK, Severity.CRITICAL,
        "tee writing to a block device",
    ),
    _rule(
        "disk.wipe",
        r"^(?:blkdiscard|shred)\s(?:.*\s)?" + _DEVICE,
        _DISK, Severity.CRITICAL,
        "Wipe of a block device",
    ),
    _rule(
        "disk.wipe-signatures",
        r"^wipefs\s(?=(?:.*\s)?(?:-a|--all)" + _END + r")(?:.*\s)?" + _DEVICE,
        _DISK, Severity.CRITICAL,
        "wipefs erasing all signatures on a block device",
    ),
    _rule(
        "disk.partition",
        r"^(?:fdisk|sfdisk|cfdisk|gdisk|sgdisk|parted)\s"
        r"(?!(?:.*\s)?(?:-l|--list|-p|--print|print)" + _END + r")(?:.*\s)?" + _DEVICE,
        _DISK, Severity.HIGH,
        "Partition table edit on a block device",
    ),
    # Filesystem formatting
    _rule(
        "fmt.mkfs",
        r"^(?:mkfs(?:\.[a-z0-9]+)?|mke2fs|mkswap|mkntfs|mkdosfs)\s(?:.*\s)?" + _DEVICE,
        _FMT, Severity.CRITICAL,
        "Format a block device",
    ),
    # Fork bombs
    _rule(
        "fork.bash",
        r"([a-z_:][a-z0-9_:]*)\s*\(\s*\)\s*\{\s*\1\s*\|\s*\1\s*&\s*;?\s*\}",
        _FORK, Severity.CRITICAL,
        "Shell fork bomb",
        scope=MatchScope.COMMAND,
    ),
    _rule(
        "fork.while-fork",
        r"fork\s*(?:\(\s*\))?\s*while\s+fork",
        _FORK, Severity.HIGH,
        "Fork loop",
        scope=MatchScope.COMMAND,
    ),
    # Privilege escalation
    _rule(
        "priv.root-login-shell",
        _PRIV + r"(?:\s+(?:-i|-s|--login|--shell))+(?:\s+-\S+)*$",
        _PRIV_ESC, Severity.HIGH,
        "Interactive root shell via sudo -i/-s",
        scope=MatchScope.INVOCATION,
    ),
    _rule(
        "priv.root-shell",
        _PRIV + r"\s+(?:" + _SHELL + r"|su)(?:\s+(?:-\S*|root))*$",
        _PRIV_ESC, Severity.HIGH,
        "Interactive root shell via a privilege wrapper",
        scope=MatchScope.INVOCATION,
    ),
    _rule(
        "priv.su-root",
        r"^su(?:\s+(?:-|-l|--login|-p|-m|root))*$",
        _PRIV_ESC, Severity.HIGH,
        "Interactive su to root",
    ),
    _rule(
        "priv.sudoers-write",
        r"(?:>>?\s*|\btee\s+(?:-a\s+)?)/etc/sudoers(?:\.d/\S*)?" + _END,
        _PRIV_ESC, Severity.CRITICAL,
        "Write to sudoers",
        scope=MatchScope.COMMAND,
    ),
    _rule(
        "priv.setuid",
        r"^chmod\s(?:.*\s)?(?:\S*[ugoa]*\+[rwxt]*s\S*|[2-7][0-7]{3})\s",
        _PRIV_ESC, Severity.HIGH,
        "Set the setuid/setgid bit",
    ),
    _rule(
        "priv.admin-group",
        r"^(?:usermod\s(?=(?:.*\s)?-[a-z]*g)(?:.*[\s,])?|gpasswd\s+-a\s+\S+\s+)"
        r"(?:sudo|wheel|admin|root|docker)(?:[\s,]|$)",
        _PRIV_ESC, Severity.HIGH,
        "Add a user to an administrative group",
    ),
    # Permission changes
    _rule(
        "perm.recursive-root",
        r"^(?:chmod|chown|chgrp)\s" + _RECURSIVE
        + r"(?:.*\s)?(?:/|/\*|/(?:etc|usr|bin|sbin|lib|lib64|boot|var|root|home))/?" + _END,
        _PERM, Severity.CRITICAL,
        "Recursive ownership or mode change on a system root",
    ),
    _rule(
        "perm.world-writable",
        r"^chmod\s(?:.*\s)?(?:[0-7]?[0-7]{2}[2367]|(?:\S*,)?[ug]*[oa][ugoa]*[+=][rwxst]*w\S*)\s"
        r"(?:.*\s)?" + _SENSITIVE_PATH + _END,
        _PERM, Severity.HIGH,
        "World-writable permissions on a sensitive path",
    ),
    # Container escape (any target)
    _rule(
        "ctr.host-root-bind",
        _CONTAINER_RUN
        + r"(?:(?:-v|--volume)(?:\s+|=)/(?::|\s|$)|--mount(?:\s+|=)\S*(?:source|src)=/(?:,|\s|$))",
        _ESCAPE, Severity.CRITICAL,
        "Container with the host root filesystem mounted",
    ),
    _rule(
        "ctr.privileged",
        r"^(?:docker|podman|nerdctl)\s(?:.*\s)?(?:run|create|exec)\s(?:.*\s)?"
        r"(?:--privileged(?:=true)?|--pid(?:\s+|=)host|--cap-add(?:\s+|=)(?:all|sys_admin))" + _END,
        _ESCAPE, Severity.HIGH,
        "Privileged container or host PID namespace",
    ),
    _rule(
        "ctr.docker-socket",
        _CONTAINER_RUN + r"(?:-v|--volume|--mount)(?:\s+|=)\S*/run/docker\.sock",
        _ESCAPE, Severity.HIGH,
        "Container with the Docker socket mounted",
    ),
    # Container escape (container targets only)
    _rule(
        "ctr.host-mount-delete",
        r"^rm\s" + _RECURSIVE + r"(?:.*\s)?/run/host(?:/(?:\*|[a-z0-9_.-]+/?)?)?" + _END,
        _ESCAPE, Severity.CRITICAL,
        "Recursive delete through the host mount",
        container_only=True,
    ),
    _rule(
        "ctr.host-mount-write",
        r"(?:>\|?|\btee\s+(?:-a\s+)?)\s*/run/host/(?:etc|usr|bin|sbin|boot)/",
        _ESCAPE, Severity.HIGH,
        "Write to host system files through the host mount",
        scope=MatchScope.INVOCATION,
        container_only=True,
    ),
    _rule(
        "ctr.nsenter-host",
        r"^nsenter\s(?:.*\s)?(?:-t\s*1|--target(?:\s+|=)1)" + _END,
        _ESCAPE, Severity.CRITICAL,
        "Enter the host PID 1 namespaces",
        container_only=True,
    ),
    _rule(
        "ctr.mount-host-device",
        r"^mount\s(?:.*\s)?" + _DEVICE,
        _ESCAPE, Severity.HIGH,
        "Mount a host block device",
        container_only=True,
    ),
    _rule(
        "ctr.chroot-host",
        r"^chroot\s(?:.*\s)?(?:/run/host|/host|/proc/1/root)/?" + _END,
        _ESCAPE, Severity.CRITICAL,
        "chroot into the host filesystem",
        container_only=True,
    ),
    # Network exfiltration
    _rule(
        "net.upload-secrets",
        r"^(?:curl|wget)\s(?:.*\s)?"
        r"(?:(?:-d|--data(?:-binary|-raw|-urlencode)?|-f|--form)(?:\s+|=)\S*@"
        r"|(?:-t|--upload-file)(?:\s+|=)|--post-file=)\S*?" + _SECRETS,
        _EXFIL, Severity.HIGH,
        "Upload of credentials or secrets",
    ),
    _rule(
        "net.pipe-secrets",
        _SECRETS + r"[^|;&]*\|\s*(?:[^|;&]*\|\s*)*(?:nc|ncat|netcat|socat|telnet|curl|wget)" + _END,
        _EXFIL, Severity.HIGH,
        "Secrets piped to a network tool",
        scope=MatchScope.COMMAND,
    ),
    _rule(
        "net.netcat-send-secrets",
        r"^(?:nc|ncat|netcat)\s.*<\s*\S*" + _SECRETS,
        _EXFIL, Severity.HIGH,
        "Secrets sent over netcat",
        scope=MatchScope.INVOCATION,
    ),
    _rule(
        "net.copy-secrets",
        r"^(?:scp|rsync|sftp)\s(?:.*\s)?\S*" + _SECRETS + r"\S*\s(?:.*\s)?\S+:\S*",
        _EXFIL, Severity.MEDIUM,
        "Secrets copied to a remote host",
    ),
    # Remote code execution
    _rule(
        "rce.pipe-to-shell",
        r"\b(?:curl|wget|fetch)\s[^|;&]*\|\s*(?:sudo\s+(?:-\S+\s+)*)?" + _INTERPRETER + _END,
        _RCE, Severity.HIGH,
        "Downloaded script piped to an interpreter",
        scope=MatchScope.COMMAND,
    ),
    _rule(
        "rce.process-substitution",
        _SHELL + r"\s+<\(\s*(?:curl|wget)\s",
        _RCE, Severity.HIGH,
        "Downloaded script run via process substitution",
        scope=MatchScope.COMMAND,
    ),
    _rule(
        "rce.reverse-shell",
        r"/dev/(?:tcp|udp)/\S+/\d+|\b(?:nc|ncat|netcat)\s(?:.*\s)?-[a-z]*[ec]\s+" + _SHELL
        + r"|\bsocat\s.*\bexec:",
        _RCE, Severity.CRITICAL,
        "Reverse shell",
        scope=MatchScope.COMMAND,
    ),
    # Obfuscated execution
    _rule(
        "obf.decode-to-shell",
        r"\b(?:base64\s+(?:-\S*\s+)*?(?:-d|--decode|-[a-z]*d)|xxd\s+(?:-\S*\s+)*?-r[a-z]*"
        r"|openssl\s+(?:enc\s+)?(?:-\S+\s+)*?-d)\b[^;&]*\|\s*(?:sudo\s+)?" + _INTERPRETER + _END,
        _OBF, Severity.HIGH,
        "Decoded payload piped to an interpreter",
        scope=MatchScope.COMMAND,
    ),
    _rule(
        "obf.eval-download",
        r"\beval\s+[\"']?\$\(\s*(?:curl|wget|base64|xxd)\s",
        _OBF, Severity.HIGH,
        "eval of downloaded or decoded text",
        scope=MatchScope.COMMAND,
    ),
    # System control
    _rule(
        "sys.shutdown",
        r"^(?:shutdown|poweroff|halt|reboot)(?!(?:.*\s)?-c" + _END + r")" + _END,
        _SYS, Severity.MEDIUM,
        "Shut down or reboot the machine",
    ),
    _rule(
        "sys.systemctl-power",
        r"^systemctl\s(?:.*\s)?(?:poweroff|reboot|halt|kexec|emergency|rescue)" + _END,
        _SYS, Severity.MEDIUM,
        "systemctl power-state change",
    ),
    _rule(
        "sys.init-runlevel",
        r"^(?:tel)?init\s+[06]$",
        _SYS, Severity.MEDIUM,
        "Switch to runlevel 0 or 6",
    ),
    _rule(
        "sys.kill-all",
        r"^(?:kill\s+(?:-9\s+|-kill\s+|-s\s+kill\s+|-sigkill\s+)?-1|killall5)" + _END,
        _SYS, Severity.HIGH,
        "Kill every process",
    ),
    _rule(
        "sys.crontab-remove",
        "crontab -r*",
        _SYS, Severity.MEDIUM,
        "Remove all cron jobs",
        matcher=MatcherKind.GLOB,
    ),
    # History rewrite
    _rule(
        "hist.git-force-push",
        r"^git\s(?:.*\s)?push\s(?:.*\s)?(?:--force|--force-with-lease|-[a-z]*f[a-z]*)(?:\s|=|$)",
        _HIST, Severity.LOW,
        "Force push rewriting remote history",
    ),
    _rule(
        "hist.git-reset-hard",
        "git reset --hard",
        _HIST, Severity.LOW,
        "Discard local commits and changes",
        matcher=MatcherKind.LITERAL,
    ),
    _rule(
        "hist.git-clean",
        r"^git\s+clean\s(?:.*\s)?-[a-z]*f[a-z]*" + _END,
        _HIST, Severity.LOW,
        "Delete untracked files",
    ),
    _rule(
        "hist.shell-history-wipe",
        r"^history\s+-c" + _END + r"|" + _REDIRECT + r"(?:~|\$home)/\.(?:bash|zsh)_history" + _END,
        _HIST, Severity.MEDIUM,
        "Erase shell history",
        scope=MatchScope.INVOCATION,
    ),
)


class PatternCatalog:
    """Immutable collection of pattern rules.

    Built once at startup from the built-in rules, optionally extended with
    user rules from settings. Matching is pure: the same command and target
    always yield the same rules.
    """

    def __init__(self, rules: Iterable[PatternRule] | None = None):
        rules = tuple(BUILTIN_RULES if rules is None else rules)
        seen: set[str] = set()
        for rule in rules:
            if rule.id in seen:
                raise ConfigurationError(f"Duplicate rule id: {rule.id}")
            seen.add(rule.id)
        self._rules = rules
        self._tokenizer = CommandTokenizer()

    @classmethod
    def from_settings(cls, settings: "GateSettings") -> "PatternCatalog":
        """Build the catalog: built-ins minus disabled ids, plus user rules."""
        catalog = cls().without(settings.disabled_rules)
        return catalog.extend(spec.to_rule() for spec in settings.rule_specs())

    @property
    def rules(self) -> tuple[PatternRule, ...]:
        return self._rules

    def __len__(self) -> int:
        return len(self._rules)

    def __iter__(self) -> Iterator[PatternRule]:
        return iter(self._rules)

    def get(self, rule_id: str) -> PatternRule | None:
        for rule in self._rules:
            if rule.id == rule_id:
                return rule
        return None

    def extend(self, rules: Iterable[PatternRule]) -> "PatternCatalog":
        """Return a new catalog with additional rules."""
        return PatternCatalog(self._rules + tuple(rules))

    def without(self, rule_ids: Iterable[str]) -> "PatternCatalog":
        """Return a new catalog with the given rule ids removed.

        Raises:
            ConfigurationError: If an id is not in the catalog.
        """
        ids = set(rule_ids)
        unknown = ids - {rule.id for rule in self._rules}
        if unknown:
            raise ConfigurationError(f"Unknown rule id(s): {', '.join(sorted(unknown))}")
        return PatternCatalog(rule for rule in self._rules if rule.id not in ids)

    def match(
        self, command: str, target: ExecutionTarget | None = None
    ) -> frozenset[PatternRule]:
        """Return every rule the command matches for the target."""
        return self.match_tokens(self._tokenizer.tokenize(command), target)

    def match_tokens(
        self, tokenized: TokenizeResult, target: ExecutionTarget | None = None
    ) -> frozenset[PatternRule]:
        """Match an already tokenized command."""
        target = target or ExecutionTarget.host()
        matched: set[PatternRule] = set()

        for rule in self._rules:
            if not rule.applies_to(target):
                continue
            for text in self._scope_texts(rule.scope, tokenized):
                if self._matches(rule, text):
                    matched.add(rule)
                    break

        return frozenset(matched)

    @staticmethod
    def _scope_texts(scope: MatchScope, tokenized: TokenizeResult) -> list[str]:
        if scope == MatchScope.COMMAND:
            return [tokenized.command] if tokenized.command else []
        if scope == MatchScope.INVOCATION:
            return [s.text for s in tokenized.segments if s.text]
        return [s.body for s in tokenized.segments if s.body]

    @staticmethod
    def _matches(rule: PatternRule, text: str) -> bool:
        if rule.matcher == MatcherKind.REGEX:
            return rule.compiled.search(text) is not None
        if rule.matcher == MatcherKind.GLOB:
            return fnmatch.fnmatchcase(text, rule.pattern.lower())
        # Literal: token-bounded substring
        return f" {normalize_command(rule.pattern)} " in f" {text} "
