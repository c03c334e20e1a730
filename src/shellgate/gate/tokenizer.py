"""Command tokenizer and normalizer.

Splits a shell command into independently evaluated segments:
- Normalizes obfuscation (homoglyphs, quote splicing, escapes, whitespace)
- Splits on chain operators, pipes and background markers outside quotes
- Extracts $(...), backtick and `sh -c '...'` payloads as nested segments
- Strips privilege wrappers and transparent wrappers to find the real program
"""

import re
import shlex
from dataclasses import dataclass, field

# Common homoglyphs that look like ASCII but aren't
HOMOGLYPH_MAP = {
    "\u0430": "a",  # Cyrillic а
    "\u0435": "e",  # Cyrillic е
    "\u043e": "o",  # Cyrillic о
    "\u0440": "p",  # Cyrillic р
    "\u0441": "c",  # Cyrillic с
    "\u0443": "y",  # Cyrillic у
    "\u0445": "x",  # Cyrillic х
    "\u0456": "i",  # Cyrillic і
    "\u0458": "j",  # Cyrillic ј
    "\u04bb": "h",  # Cyrillic һ
    "\u0501": "d",  # Cyrillic ԁ
    "\u051b": "q",  # Cyrillic ԛ
    "\uff52": "r",  # Fullwidth r
    "\uff4d": "m",  # Fullwidth m
    "\uff46": "f",  # Fullwidth f
    "\uff0f": "/",  # Fullwidth solidus
    "\u2212": "-",  # Minus sign
    "\u2010": "-",  # Hyphen
    "\u2011": "-",  # Non-breaking hyphen
    "\u2013": "-",  # En dash
    "\u00a0": " ",  # No-break space
}

# Invocations that run the rest of the segment with elevated privileges
PRIVILEGE_WRAPPERS: set[str] = {"sudo", "doas", "pkexec", "run0"}

# Privilege-escalation commands that are not transparent prefixes
PRIVILEGE_COMMANDS: set[str] = PRIVILEGE_WRAPPERS | {"su"}

# Wrapper options that consume the following token
WRAPPER_ARG_OPTIONS: set[str] = {
    "-u", "-g", "-h", "-p", "-C", "-D", "-r", "-t", "-U", "-T",
    "--user", "--group", "--host", "--prompt", "--chdir", "--close-from",
    "--role", "--type", "--other-user", "--command-timeout",
}

# Wrappers that run their arguments as a command unchanged
TRANSPARENT_WRAPPERS: set[str] = {
    "env", "command", "builtin", "exec", "nohup", "time", "nice", "ionice", "stdbuf", "timeout",
}

# Transparent wrapper options that consume the following token
TRANSPARENT_ARG_OPTIONS: dict[str, set[str]] = {
    "env": {"-u", "--unset", "-C", "--chdir"},
    "nice": {"-n", "--adjustment"},
    "ionice": {"-c", "-n", "-p", "--class", "--classdata"},
    "time": {"-f", "-o", "--format", "--output"},
    "timeout": {"-k", "-s", "--kill-after", "--signal"},
}

# Programs whose `-c` argument is itself a script
SCRIPT_RUNNERS: set[str] = {"sh", "bash", "zsh", "dash", "ksh", "mksh", "su"}

ENV_ASSIGNMENT = re.compile(r"^[a-z_][a-z0-9_]*=", re.IGNORECASE)

MAX_NESTING_DEPTH = 4


def normalize_command(command: str) -> str:
    """Normalize a command for lexical matching.

    Maps homoglyphs to ASCII, removes empty-quote splices and backslash
    escapes in front of letters, lower-cases and collapses whitespace.
    """
    text = "".join(HOMOGLYPH_MAP.get(ch, ch) for ch in command)
    text = text.replace("''", "").replace('""', "")
    text = re.sub(r"\\([A-Za-z/])", r"\1", text)
    text = re.sub(r"\s+", " ", text)
    return text.strip().lower()


def _basename(token: str) -> str:
    return token.rsplit("/", 1)[-1] or token


@dataclass
class Segment:
    """A simple command inside a (possibly chained) shell command.

    Attributes:
        raw: The segment as it appeared in the command.
        tokens: Normalized tokens, quotes removed.
        text: Normalized segment as typed (wrappers included).
        body: Normalized segment with privilege/transparent wrappers removed.
        body_tokens: Tokens of body.
        program: Basename of the first body token.
        escalation: Privilege-escalation command used, if any.
        depth: Nesting depth (0 for top-level segments).
    """

    raw: str
    tokens: list[str] = field(default_factory=list)
    text: str = ""
    body: str = ""
    body_tokens: list[str] = field(default_factory=list)
    program: str = ""
    escalation: str | None = None
    depth: int = 0


@dataclass
class TokenizeResult:
    """Result of tokenizing a shell command."""

    command: str  # Whole normalized command
    segments: list[Segment] = field(default_factory=list)
    has_pipes: bool = False
    has_chains: bool = False  # ;, &&, ||, newline
    has_subshells: bool = False  # $(), ``, sh -c
    has_background: bool = False
    parse_errors: list[str] = field(default_factory=list)

    @property
    def programs(self) -> list[str]:
        return [s.program for s in self.segments if s.program]


class CommandTokenizer:
    """Tokenizes shell commands into segments.

    Quote-aware character scanning for operators, shlex for words.
    """

    COMMAND_SUB_DOLLAR = re.compile(r"\$\(([^()]*(?:\([^()]*\)[^()]*)*)\)")  # $(...)
    COMMAND_SUB_BACKTICK = re.compile(r"`([^`]+)`")  # `...`

    def tokenize(self, command: str) -> TokenizeResult:
        """Parse a shell command into segments.

        Args:
            command: The shell command string to parse.

        Returns:
            TokenizeResult with segments and structure flags.
        """
        result = TokenizeResult(command=normalize_command(command))
        if not command.strip():
            result.parse_errors.append("Empty command")
            return result

        self._collect(command, 0, result)
        return result

    def _collect(self, command: str, depth: int, result: TokenizeResult) -> None:
        parts = self._split_operators(command, result)
        for part in parts:
            segment = self._parse_segment(part, depth, result)
            if segment.tokens:
                result.segments.append(segment)

            if depth >= MAX_NESTING_DEPTH:
                continue
            for inner in self._nested_scripts(part, segment):
                result.has_subshells = True
                self._collect(inner, depth + 1, result)

    def _split_operators(self, command: str, result: TokenizeResult) -> list[str]:
        """Split on ;, &&, ||, |, |&, & and newlines outside quotes.

        Redirection forms (&>, >&, 2>&1) are not separators.
        """
        parts: list[str] = []
        current: list[str] = []
        quote = ""
        paren_depth = 0
        i = 0
        n = len(command)

        def flush() -> None:
            text = "".join(current).strip()
            if text:
                parts.append(text)
            current.clear()

        while i < n:
            char = command[i]

            if quote:
                current.append(char)
                if char == "\\" and quote == '"' and i + 1 < n:
                    current.append(command[i + 1])
                    i += 2
                    continue
                if char == quote:
                    quote = ""
                i += 1
                continue

            if char == "\\" and i + 1 < n:
                current.append(command[i : i + 2])
                i += 2
                continue

            if char in ("'", '"', "`"):
                quote = char
                current.append(char)
                i += 1
                continue

            if char == "$" and command[i + 1 : i + 2] == "(":
                paren_depth += 1
                current.append("$(")
                i += 2
                continue
            if char == "(" and paren_depth:
                paren_depth += 1
            elif char == ")" and paren_depth:
                paren_depth -= 1
                current.append(char)
                i += 1
                continue

            if paren_depth:
                current.append(char)
                i += 1
                continue

            two = command[i : i + 2]
            if two in ("&&", "||"):
                result.has_chains = True
                flush()
                i += 2
                continue
            if two == "|&":
                result.has_pipes = True
                flush()
                i += 2
                continue
            if char in (";", "\n"):
                result.has_chains = True
                flush()
                i += 1
                continue
            if char == "|":
                result.has_pipes = True
                flush()
                i += 1
                continue
            if char == "&":
                prev = command[i - 1] if i > 0 else ""
                nxt = command[i + 1] if i + 1 < n else ""
                if prev in (">", "<") or nxt == ">":
                    current.append(char)
                    i += 1
                    continue
                result.has_background = True
                flush()
                i += 1
                continue

            current.append(char)
            i += 1

        if quote:
            result.parse_errors.append(f"Unbalanced quote ({quote})")
        flush()
        return parts

    def _parse_segment(self, part: str, depth: int, result: TokenizeResult) -> Segment:
        segment = Segment(raw=part, depth=depth)
        cleaned = "".join(HOMOGLYPH_MAP.get(ch, ch) for ch in part)

        try:
            tokens = shlex.split(cleaned, posix=True)
        except ValueError as e:
            result.parse_errors.append(f"{e} in {part!r}")
            tokens = cleaned.split()

        tokens = [re.sub(r"\s+", " ", t).lower() for t in tokens if t != ""]
        # Grouping: ( cmd ) / { cmd; } / ! cmd
        while tokens and tokens[0] in ("(", "{", "!"):
            tokens = tokens[1:]
        while tokens and tokens[-1] in (")", "}"):
            tokens = tokens[:-1]
        segment.tokens = tokens
        if not tokens:
            return segment

        body_tokens, escalation = self._strip_wrappers(tokens)
        # Program paths are matched by basename: /bin/rm is rm
        start = len(tokens) - len(body_tokens)
        for index in {0, start}:
            if index < len(tokens) and not ENV_ASSIGNMENT.match(tokens[index]):
                tokens[index] = _basename(tokens[index])
        body_tokens = tokens[start:]

        segment.text = " ".join(tokens)
        segment.escalation = escalation
        segment.body_tokens = body_tokens
        segment.body = " ".join(body_tokens)
        if body_tokens:
            segment.program = body_tokens[0]
        return segment

    def _strip_wrappers(self, tokens: list[str]) -> tuple[list[str], str | None]:
        """Remove env assignments, privilege wrappers and transparent wrappers."""
        escalation: str | None = None
        i = 0
        n = len(tokens)

        while i < n:
            token = tokens[i]
            name = token.rsplit("/", 1)[-1]

            if ENV_ASSIGNMENT.match(token):
                i += 1
                continue

            if name in PRIVILEGE_WRAPPERS:
                escalation = escalation or name
                i += 1
                while i < n and tokens[i].startswith("-"):
                    option = tokens[i]
                    i += 1
                    if option == "--":
                        break
                    if option in WRAPPER_ARG_OPTIONS and i < n:
                        i += 1
                continue

            if name in TRANSPARENT_WRAPPERS:
                arg_options = TRANSPARENT_ARG_OPTIONS.get(name, set())
                i += 1
                while i < n and (tokens[i].startswith("-") or ENV_ASSIGNMENT.match(tokens[i])):
                    option = tokens[i]
                    i += 1
                    if option in arg_options and i < n:
                        i += 1
                if name == "timeout" and i < n:
                    i += 1  # duration
                continue

            if name == "su":
                escalation = escalation or "su"
            break

        return tokens[i:], escalation

    def _nested_scripts(self, part: str, segment: Segment) -> list[str]:
        """Find command substitutions and `-c` / eval script arguments."""
        scripts = [m.group(1) for m in self.COMMAND_SUB_DOLLAR.finditer(part)]
        scripts.extend(m.group(1) for m in self.COMMAND_SUB_BACKTICK.finditer(part))

        args = segment.body_tokens
        if segment.program in SCRIPT_RUNNERS:
            for index, token in enumerate(args[1:-1], start=1):
                if token.startswith("-") and not token.startswith("--") and "c" in token:
                    scripts.append(args[index + 1])
                    break
        elif segment.program == "eval" and len(args) > 1:
            scripts.append(" ".join(args[1:]))

        return [s for s in scripts if s.strip()]
