# --------------------------------------------------------------------------------------
# SHELL DATA SOURCE (approved command execution)
# --------------------------------------------------------------------------------------
# PURPOSE:
#   Turn a data-fetch intent into ONE shell command, gate it, ask the user, run it with
#   bounded time/output, and summarize the output.
#
# SAFETY GATE (same for templated and model-proposed commands):
#   1. reject  : any dangerous program word, control operator token, `...`, $(...),
#                newline, or file-writing flag (curl -o/-D/-c, wget -O/--output-document=,
#                find -delete/-exec).
#   2. accept  : first word on SAFE_COMMANDS, or a URL host on SAFE_DOMAINS.
#   3. default : reject.
#
# APPROVAL:
#   request_approval() prompts (blocking) and issues a single-use ApprovalTicket bound
#   to the exact command string. execute_approved() consumes it; a reused ticket or a
#   different command string is refused and nothing runs. One approval/execution at a
#   time (re-entrant lock).
# --------------------------------------------------------------------------------------
from __future__ import annotations
import json, logging, os, re, shlex, shutil, signal, subprocess, sys, threading, time, uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple
from urllib.parse import quote_plus, urlparse

from langchain_core.messages import HumanMessage, SystemMessage

from ..capabilities import CapabilityResult
from ..errors import CommandRejected, ExecutionFault, InitializationFailure
from ..instrumentation import preview
from ..llm import invoke_text, strip_code_fences

log = logging.getLogger(__name__)

NAME = "execute_command"
COMMAND_TIMEOUT_S = 30
MAX_OUTPUT_BYTES = 1024 * 1024
RAW_OUTPUT_CHARS = 1000
READ_CHUNK_BYTES = 64 * 1024
READER_JOIN_S = 2
IS_WINDOWS = sys.platform == "win32"

CANCELLED = "Command execution was cancelled by user."
NO_COMMAND = (
    "I could not determine an appropriate command to get external data for your question. "
    "Try asking for current information, web data, or system information."
)

DANGEROUS_COMMANDS = {
    "rm", "del", "rmdir", "rd", "erase", "format", "fdisk", "mkfs", "dd", "shred", "truncate", "mv",
    "kill", "killall", "pkill", "taskkill", "shutdown", "reboot", "halt", "poweroff", "init",
    "systemctl", "service", "launchctl", "crontab",
    "chmod", "chown", "chgrp", "su", "sudo", "doas", "runas", "passwd", "useradd", "usermod",
    "nc", "netcat", "ncat", "telnet", "ssh", "scp", "sftp", "ftp", "rsync",
    "eval", "exec", "xargs", "sh", "bash", "zsh", "powershell", "cmd",
}
# Long options (matched on the part before "=") that write files or run commands.
WRITE_FLAGS = {
    "curl": {"--output", "--output-dir", "--remote-name", "--remote-name-all", "--config", "--upload-file",
             "--dump-header", "--cookie-jar", "--trace", "--trace-ascii", "--stderr", "--libcurl",
             "--etag-save", "--hsts", "--alt-svc"},
    "wget": {"--output-document", "--output-file", "--append-output", "--directory-prefix", "--execute",
             "--save-cookies", "--warc-file", "--rejected-log"},
    "find": {"-delete", "-exec", "-execdir", "-ok", "-okdir", "-fprint", "-fprint0", "-fprintf", "-fls"},
}
# Single-letter flags that write files, and those that consume the rest of a cluster as a value.
SHORT_WRITE_FLAGS = {"curl": set("oOKTDc"), "wget": set("oOaPe")}
SHORT_VALUE_FLAGS = {"curl": set("AbCdEFHmQruUwxXyYz"), "wget": set("ABDiIlQtTUwXY")}
OPERATOR_CHARS = set("();<>|&")

SAFE_COMMANDS = {
    "curl", "wget", "date", "echo", "cat", "ls", "dir", "pwd", "whoami", "uname",
    "systeminfo", "head", "tail", "grep", "find", "which", "where", "hostname", "uptime",
    "df", "free",
}
SAFE_DOMAINS = {
    "wttr.in", "ipinfo.io", "api.exchangerate-api.com", "feeds.bbci.co.uk",
    "api.duckduckgo.com", "httpbin.org",
}


@dataclass(frozen=True)
class SafetyVerdict:
    safe: bool
    reason: str


@dataclass(frozen=True)
class ApprovalTicket:
    command: str
    ticket_id: str = field(default_factory=lambda: uuid.uuid4().hex)


def _tokens(command: str) -> List[str]:
    lexer = shlex.shlex(command, posix=True, punctuation_chars=True)
    lexer.whitespace_split = True
    return list(lexer)


def _program(command: str) -> str:
    try:
        toks = _tokens(command)
    except ValueError:
        return ""
    return os.path.basename(toks[0]).lower() if toks else ""


def _hosts(tokens: List[str]) -> List[str]:
    hosts = []
    for tok in tokens:
        if tok.startswith("-") or "." not in tok:
            continue
        url = tok if "://" in tok else f"http://{tok}"
        host = urlparse(url).hostname
        if host:
            hosts.append(host.lower())
    return hosts


def _writes(program: str, tok: str) -> bool:
    flags = WRITE_FLAGS.get(program, set())
    if tok in flags:
        return True
    if tok.startswith("--"):
        name = tok.split("=", 1)[0]
        if name in flags:
            return True
        # wget (getopt_long) also accepts any unambiguous prefix of a long option
        return program == "wget" and len(name) > 2 and any(f.startswith(name) for f in flags)
    short, takes_value = SHORT_WRITE_FLAGS.get(program), SHORT_VALUE_FLAGS.get(program, set())
    if not short or not re.match(r"-[A-Za-z]", tok):
        return False
    for ch in tok[1:]:
        if ch in short:
            return True
        if ch in takes_value or not ch.isalpha():
            break
    return False


def classify(command: str) -> SafetyVerdict:
    cmd = (command or "").strip()
    if not cmd:
        return SafetyVerdict(False, "empty command")
    if "`" in cmd or "$(" in cmd or "\n" in cmd or "\r" in cmd:
        return SafetyVerdict(False, "command substitution and multi-line commands are not allowed")
    try:
        tokens = _tokens(cmd)
    except ValueError as e:
        return SafetyVerdict(False, f"command could not be parsed ({e})")
    if not tokens:
        return SafetyVerdict(False, "empty command")

    for tok in tokens:
        if all(c in OPERATOR_CHARS for c in tok):
            return SafetyVerdict(False, f"operator '{tok}' (redirection/chaining) is not allowed")
        word = tok.lower() if "://" in tok else os.path.basename(tok).lower()
        if word in DANGEROUS_COMMANDS:
            return SafetyVerdict(False, f"'{word}' is a blocked command")

    program = os.path.basename(tokens[0]).lower()
    for tok in tokens[1:]:
        if _writes(program, tok):
            return SafetyVerdict(False, f"'{program} {tok}' writes to disk or runs commands")

    if program in SAFE_COMMANDS:
        return SafetyVerdict(True, f"'{program}' is an allowed read-only command")
    for host in _hosts(tokens):
        if any(host == d or host.endswith("." + d) for d in SAFE_DOMAINS):
            return SafetyVerdict(True, f"references allowed host {host}")
    return SafetyVerdict(False, f"'{program}' is not on the allowlist and no allowed host is referenced")


def is_safe(command: str) -> bool:
    return classify(command).safe


# ---------------------------------------------------------------------------------------
# Command templates (evaluated in order; no match -> model proposal)
# ---------------------------------------------------------------------------------------
SEARCH_PATTERNS = [
    re.compile(r"\bwhat is (.+?)\??$", re.I),
    re.compile(r"\bwho is (.+?)\??$", re.I),
    re.compile(r"\btell me about (.+?)\??$", re.I),
    re.compile(r"\bsearch (?:for )?(.+?)\??$", re.I),
    re.compile(r"\blook up (.+?)\??$", re.I),
]


def extract_search_term(question: str) -> Optional[str]:
    for pattern in SEARCH_PATTERNS:
        m = pattern.search(question.strip())
        if m:
            term = m.group(1).strip(" .!?\"'")
            if term:
                return term
    return None


def _search_command(question: str) -> Optional[str]:
    term = extract_search_term(question)
    if not term:
        return None
    return f'curl -s "https://api.duckduckgo.com/?q={quote_plus(term)}&format=json&no_html=1"'


def _fixed(command: str) -> Callable[[str], str]:
    return lambda question: command


COMMAND_TEMPLATES: List[Tuple[str, re.Pattern, Callable[[str], Optional[str]]]] = [
    ("weather", re.compile(r"\bweather\b|\bforecast\b|\btemperature\b"),
     _fixed('curl -s "https://wttr.in/?format=3"')),
    ("datetime", re.compile(r"\btime\b|\bdate\b|\btoday\b|\bwhat day\b"),
     _fixed("date /t" if IS_WINDOWS else "date")),
    ("system", re.compile(r"\bsystem\b|\bcomputer\b|\bmachine\b|\bkernel\b|\boperating system\b"),
     _fixed("systeminfo" if IS_WINDOWS else "uname -a")),
    ("network", re.compile(r"\bip\b|\bip address\b|\bnetwork\b|\bisp\b|\bmy location\b"),
     _fixed('curl -s "https://ipinfo.io/json"')),
    ("news", re.compile(r"\bnews\b|\bheadlines?\b"),
     _fixed('curl -s "https://feeds.bbci.co.uk/news/rss.xml"')),
    ("exchange", re.compile(r"\bexchange\b|\bcurrenc(?:y|ies)\b|\bdollars?\b|\beuros?\b|\bforex\b"),
     _fixed('curl -s "https://api.exchangerate-api.com/v4/latest/USD"')),
    ("search", re.compile(r"\bwhat is\b|\bwho is\b|\bsearch\b|\blook up\b"), _search_command),
    ("files", re.compile(r"\bfiles\b|\bdirectory\b|\bfolder\b"),
     _fixed("dir" if IS_WINDOWS else "ls -la")),
]

COMMAND_SYSTEM_PROMPT = (
    "You propose exactly ONE read-only shell command that fetches the external data "
    "needed to answer the user's question.\n"
    "Allowed programs: {programs}.\n"
    "Preferred endpoints: {domains}.\n"
    "Never write files, never chain commands (no ; | & > <), never use sudo.\n"
    "Output only the command on a single line, or NONE if no command is appropriate."
)


# ---------------------------------------------------------------------------------------
# Output formatting
# ---------------------------------------------------------------------------------------
def _fmt_weather(out: str) -> str:
    return f"Weather Information:\n{out.strip()}"


def _fmt_date(out: str) -> str:
    return f"Current Date/Time:\n{out.strip()}"


def _fmt_system(out: str) -> str:
    return f"System Information:\n{out.strip()}"


def _fmt_ip(out: str) -> str:
    try:
        data = json.loads(out)
    except ValueError:
        return f"Network Information:\n{out.strip()}"
    return (
        "Network Information:\n"
        f"IP: {data.get('ip')}\n"
        f"Location: {data.get('city')}, {data.get('region')}, {data.get('country')}\n"
        f"ISP: {data.get('org')}"
    )


def _fmt_rates(out: str) -> str:
    try:
        data = json.loads(out)
        rates = data["rates"]
    except (ValueError, KeyError, TypeError):
        return f"Exchange Rate Data:\n{out.strip()[:RAW_OUTPUT_CHARS]}"
    lines = [f"Exchange Rates (Base: {data.get('base')}):"]
    lines += [f"{cur}: {rates[cur]}" for cur in ("EUR", "GBP", "JPY", "CAD", "AUD") if cur in rates]
    return "\n".join(lines)


def _fmt_search(out: str) -> str:
    try:
        data = json.loads(out)
    except ValueError:
        return f"Search Data:\n{out.strip()[:RAW_OUTPUT_CHARS]}"
    if data.get("Abstract"):
        source = f"\nSource: {data['AbstractURL']}" if data.get("AbstractURL") else ""
        return f"Search Result:\n{data['Abstract']}{source}"
    return "Search completed but no direct answer found."


TITLE_RE = re.compile(r"<title>(?:<!\[CDATA\[)?(.*?)(?:\]\]>)?</title>", re.DOTALL)


def _fmt_news(out: str) -> str:
    titles = [t.strip() for t in TITLE_RE.findall(out)]
    if len(titles) > 1:
        # first <title> is the feed's own name
        return "Latest News Headlines:\n" + "\n".join(f"{i}. {t}" for i, t in enumerate(titles[1:6], 1))
    return f"News Data:\n{out[:500]}..."


OUTPUT_FORMATTERS: List[Tuple[Callable[[str], bool], Callable[[str], str]]] = [
    (lambda c: "wttr.in" in c, _fmt_weather),
    (lambda c: _program(c) == "date", _fmt_date),
    (lambda c: _program(c) in ("uname", "systeminfo"), _fmt_system),
    (lambda c: "ipinfo.io" in c, _fmt_ip),
    (lambda c: "exchangerate-api" in c, _fmt_rates),
    (lambda c: "duckduckgo" in c, _fmt_search),
    (lambda c: "rss" in c or ".xml" in c, _fmt_news),
]


def format_command_output(output: str, command: str) -> str:
    if not output or not output.strip():
        return "The command executed successfully but returned no output."
    for matches, formatter in OUTPUT_FORMATTERS:
        if matches(command):
            return "External data retrieved:\n\n" + formatter(output)
    raw = output.strip()
    if len(raw) > RAW_OUTPUT_CHARS:
        raw = raw[:RAW_OUTPUT_CHARS] + "..."
    return f"External data retrieved:\n\nCommand Output:\n{raw}"


# ---------------------------------------------------------------------------------------
# Bounded capture
# ---------------------------------------------------------------------------------------
class OutputLimitExceeded(ExecutionFault):
    def __init__(self, limit: int):
        super().__init__(f"output exceeded {limit} bytes")
        self.limit = limit


def _kill(proc: subprocess.Popen) -> None:
    try:
        if IS_WINDOWS:
            proc.kill()
        else:
            os.killpg(proc.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        pass


def _drain(proc: subprocess.Popen, stream, buf: bytearray, limit: int, overflow: threading.Event) -> None:
    # Stops reading one byte past the limit and kills the command.
    with stream:
        while True:
            chunk = stream.read1(READ_CHUNK_BYTES)
            if not chunk:
                return
            buf.extend(chunk[:limit + 1 - len(buf)])
            if len(buf) > limit:
                overflow.set()
                _kill(proc)
                return


def capture(command: str, *, timeout: float, max_bytes: int) -> subprocess.CompletedProcess:
    """Run `command` through the shell, holding at most `max_bytes` of stdout and of stderr.

    Raises subprocess.TimeoutExpired, subprocess.CalledProcessError (non-zero exit) or
    OutputLimitExceeded; the command (and its process group) is killed in the first
    and last case.
    """
    group = {} if IS_WINDOWS else {"start_new_session": True}
    proc = subprocess.Popen(command, shell=True, stdout=subprocess.PIPE, stderr=subprocess.PIPE, **group)
    out, err, overflow = bytearray(), bytearray(), threading.Event()
    readers = [
        threading.Thread(target=_drain, args=(proc, proc.stdout, out, max_bytes, overflow), daemon=True),
        threading.Thread(target=_drain, args=(proc, proc.stderr, err, max_bytes, overflow), daemon=True),
    ]
    for reader in readers:
        reader.start()
    try:
        returncode = proc.wait(timeout=timeout)
    except subprocess.TimeoutExpired:
        _kill(proc)
        proc.wait()
        raise
    finally:
        for reader in readers:
            reader.join(timeout=READER_JOIN_S)
    if overflow.is_set():
        raise OutputLimitExceeded(max_bytes)
    stdout = out.decode("utf-8", errors="replace")
    stderr = err.decode("utf-8", errors="replace")
    if returncode != 0:
        raise subprocess.CalledProcessError(returncode, command, output=stdout, stderr=stderr)
    return subprocess.CompletedProcess(command, returncode, stdout=stdout, stderr=stderr)


# ---------------------------------------------------------------------------------------
# Approval I/O
# ---------------------------------------------------------------------------------------
def is_affirmative(answer: Optional[str]) -> bool:
    return (answer or "").strip().lower().startswith("y")


def console_approver(command: str) -> bool:
    print("\nThe agent wants to execute the following command:")
    print(f"   {command}")
    print("This will make external requests and run system commands.")
    try:
        answer = input("Do you approve this command? (y/N): ")
    except EOFError:
        answer = ""
    approved = is_affirmative(answer)
    print("Command approved." if approved else "Command denied.")
    return approved


# ---------------------------------------------------------------------------------------
# Data source
# ---------------------------------------------------------------------------------------
class ShellDataSource:
    def __init__(self, llm=None, approver: Callable[[str], bool] | None = None,
                 timeout: float = COMMAND_TIMEOUT_S, max_output_bytes: int = MAX_OUTPUT_BYTES):
        self.llm = llm
        self.approver = approver or console_approver
        self.timeout = timeout
        self.max_output_bytes = max_output_bytes
        self.error: Optional[str] = None
        self._ready = False
        self._tickets: Dict[str, str] = {}
        self._lock = threading.RLock()

    def initialize(self) -> None:
        shell = os.environ.get("COMSPEC", "cmd.exe") if IS_WINDOWS else "/bin/sh"
        if not shutil.which(shell) and not os.path.exists(shell):
            self.error = f"No shell found at {shell}"
            raise InitializationFailure(self.error)
        self._ready = True
        self.error = None
        log.info(f"[SHELL] execution environment ready shell={shell}")

    @property
    def available(self) -> bool:
        return self._ready

    def describe(self) -> str:
        return (
            "Run one user-approved, read-only shell command to fetch live external data "
            "(weather, date/time, system info, IP/network, news, exchange rates, web lookups). "
            f"Allowed programs: {', '.join(sorted(SAFE_COMMANDS))}."
        )

    # ------------------------------------------------------------------
    # proposal
    # ------------------------------------------------------------------
    def propose_command(self, question: str) -> Optional[str]:
        lower = question.lower()
        for label, pattern, build in COMMAND_TEMPLATES:
            if pattern.search(lower):
                command = build(question)
                if command:
                    log.info(f"[SHELL] template={label} command={command!r}")
                    return command
        return self._model_command(question)

    def _model_command(self, question: str) -> Optional[str]:
        if self.llm is None:
            return None
        messages = [
            SystemMessage(content=COMMAND_SYSTEM_PROMPT.format(
                programs=", ".join(sorted(SAFE_COMMANDS)), domains=", ".join(sorted(SAFE_DOMAINS)))),
            HumanMessage(content=question),
        ]
        try:
            raw = invoke_text(self.llm, messages, label="command")
        except Exception as e:
            log.warning(f"[SHELL] model command proposal failed: {e}")
            return None
        lines = [ln.strip() for ln in strip_code_fences(raw).splitlines() if ln.strip()]
        if not lines or lines[0].upper().startswith("NONE"):
            return None
        command = lines[0][2:] if lines[0].startswith("$ ") else lines[0]
        log.info(f"[SHELL] model proposed command={command!r}")
        return command

    # ------------------------------------------------------------------
    # approval
    # ------------------------------------------------------------------
    def request_approval(self, command: str) -> Optional[ApprovalTicket]:
        verdict = classify(command)
        if not verdict.safe:
            raise CommandRejected(command, verdict.reason)
        with self._lock:
            try:
                approved = bool(self.approver(command))
            except Exception as e:
                log.warning(f"[SHELL] approval prompt failed, treating as denial: {e}")
                approved = False
            if not approved:
                log.info(f"[SHELL] denied command={command!r}")
                return None
            ticket = ApprovalTicket(command)
            self._tickets[ticket.ticket_id] = command
            log.info(f"[SHELL] approved command={command!r} ticket={ticket.ticket_id[:8]}")
            return ticket

    def execute_approved(self, ticket: ApprovalTicket, command: str | None = None) -> CapabilityResult:
        command = ticket.command if command is None else command
        with self._lock:
            approved = self._tickets.pop(ticket.ticket_id, None)
            if approved is None:
                return CapabilityResult(NAME, "rejected", (
                    f'Execution refused: no valid approval for "{command}". '
                    "Approvals are single-use; ask the user again."), artifact=command)
            if command != approved:
                return CapabilityResult(NAME, "rejected", (
                    f'Error: The approved command "{approved}" does not match the current command '
                    f'"{command}". Aborting for security.'), artifact=command)
            verdict = classify(command)
            if not verdict.safe:
                return CapabilityResult(NAME, "rejected", rejection_text(command, verdict.reason), artifact=command)
            return self._run(command)

    # ------------------------------------------------------------------
    # execution
    # ------------------------------------------------------------------
    def _run(self, command: str) -> CapabilityResult:
        rid = uuid.uuid4().hex[:8]
        t0 = time.time()
        log.info(f"[SHELL {rid}] command={command!r}")
        try:
            proc = capture(command, timeout=self.timeout, max_bytes=self.max_output_bytes)
        except subprocess.TimeoutExpired:
            log.error(f"[SHELL {rid}] timeout after={self.timeout:g}s")
            return CapabilityResult(NAME, "error",
                                    f"Command execution failed: timed out after {self.timeout:g} seconds.",
                                    artifact=command)
        except OutputLimitExceeded as e:
            log.error(f"[SHELL {rid}] output too large limit={e.limit} ms={(time.time() - t0) * 1000:.1f}")
            return CapabilityResult(NAME, "error", f"Command execution failed: {e}.", artifact=command)
        except subprocess.CalledProcessError as e:
            stderr = (e.stderr or "").strip()
            log.error(f"[SHELL {rid}] fail rc={e.returncode} stderr_len={len(stderr)} ms={(time.time() - t0) * 1000:.1f}")
            return CapabilityResult(NAME, "error",
                                    f"Command execution failed: rc={e.returncode} stderr={preview(stderr, 500)}",
                                    artifact=command)
        except OSError as e:
            log.error(f"[SHELL {rid}] fault error={e}")
            return CapabilityResult(NAME, "error", f"Command execution failed: {e}", artifact=command)

        if proc.stderr and proc.stderr.strip():
            log.warning(f"[SHELL {rid}] stderr={preview(proc.stderr)}")
        out = proc.stdout or ""
        log.info(f"[SHELL {rid}] ok rc=0 chars={len(out)} ms={(time.time() - t0) * 1000:.1f}")
        return CapabilityResult(NAME, "ok", format_command_output(out, command), artifact=command)

    def run(self, question: str) -> CapabilityResult:
        command = self.propose_command(question)
        if not command:
            return CapabilityResult(NAME, "empty", NO_COMMAND)
        with self._lock:
            try:
                ticket = self.request_approval(command)
            except CommandRejected as e:
                log.warning(f"[SHELL] blocked command={command!r} reason={e.reason}")
                return CapabilityResult(NAME, "rejected", rejection_text(command, e.reason), artifact=command)
            if ticket is None:
                return CapabilityResult(NAME, "cancelled", CANCELLED, artifact=command)
            return self.execute_approved(ticket)

    def execute(self, question: str) -> str:
        return self.run(question).content


def rejection_text(command: str, reason: str) -> str:
    return (
        f"Command rejected for security reasons: {reason}. Command: {command}. "
        "Only safe read-only commands for external data are allowed."
    )
