from __future__ import annotations

import datetime as _dt
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from sshmgr.core.accounts.engine import AccountLifecycleEngine
from sshmgr.core.accounts.models import AccountCredentials, AccountState, TransitionResult
from sshmgr.core.audit.models import AuditEvent, AuditOutcome
from sshmgr.core.audit.sinks import AuditSink
from sshmgr.core.clock import format_date, parse_date
from sshmgr.core.codec.bundle import CredentialBundle, encode
from sshmgr.core.codec.render import BarcodeRenderer
from sshmgr.core.codec.sagernet import sagernet_link
from sshmgr.core.errors import InvalidArgumentError, InvalidDateError, ServiceTimeoutError, SSHMgrError
from sshmgr.core.events import EVENT_COMPLETED, EVENT_DENIED, EVENT_FAILED, EventLogger
from sshmgr.core.security import AuthorizationGate


@dataclass(frozen=True)
class ArgSpec:
    name: str
    kind: str = "str"  # str | int | date
    optional: bool = False


@dataclass(frozen=True)
class CommandSpec:
    name: str
    description: str
    args: Tuple[ArgSpec, ...] = ()
    mutating: bool = True
    exposes_secret: bool = False

    @property
    def audited(self) -> bool:
        return self.mutating or self.exposes_secret

    def usage(self) -> str:
        parts = [f"/{self.name}"]
        for a in self.args:
            parts.append(f"[{a.name}]" if a.optional else f"<{a.name}>")
        return " ".join(parts)


_USER = ArgSpec("username")

COMMANDS: Dict[str, CommandSpec] = {
    c.name: c
    for c in (
        CommandSpec("help", "display this text.", mutating=False),
        CommandSpec("getexp", "get user's expiry date", (_USER,), mutating=False),
        CommandSpec("users", "list managed users", (ArgSpec("group", optional=True),), mutating=False),
        CommandSpec("serverinfo", "show server address, location and ports", mutating=False),
        CommandSpec("lock", "lock user", (_USER,)),
        CommandSpec("unlock", "unlock user", (_USER,)),
        CommandSpec("userdel", "delete user", (_USER,)),
        CommandSpec("changemax", "change user's max logins", (_USER, ArgSpec("group"))),
        CommandSpec("changepass", "change user's password", (_USER, ArgSpec("password")), exposes_secret=True),
        CommandSpec("changeexp", "change user's expiry date", (_USER, ArgSpec("exp_date", "date"))),
        CommandSpec("renew", "renew user's expiry date", (_USER, ArgSpec("days", "int"))),
        CommandSpec(
            "useradd",
            "add new user manually",
            (_USER, ArgSpec("group"), ArgSpec("exp_date", "date"), ArgSpec("password")),
            exposes_secret=True,
        ),
        CommandSpec("autoadd", "add new user automatically", (ArgSpec("group"), ArgSpec("days", "int")), exposes_secret=True),
        CommandSpec("share", "send connection QR code for a user", (_USER, ArgSpec("password")), mutating=False, exposes_secret=True),
    )
}


@dataclass(frozen=True)
class ServerInfo:
    address: str
    ports: Tuple[int, ...]
    location: str

    def render(self) -> str:
        ports = ", ".join(str(p) for p in self.ports)
        return f"host: `{self.address}`\nlocation: `{self.location}`\nports: `{ports}`"


@dataclass(frozen=True)
class DispatchResult:
    ok: bool
    reply: str
    image: Optional[bytes] = field(default=None, repr=False)
    caption: Optional[str] = field(default=None, repr=False)
    error_code: Optional[str] = None


@dataclass
class _Outcome:
    reply: str
    username: Optional[str] = None
    changed: bool = True
    credentials: Optional[AccountCredentials] = None


def _fmt_date(d: Optional[_dt.date]) -> str:
    return "never" if d is None else format_date(d)


_STATUS_TEXT = {AccountState.ACTIVE: "Unlocked", AccountState.LOCKED: "Locked", AccountState.ABSENT: "Deleted"}


class CommandDispatcher:
    """
    Single entry point from the chat transport into the account engine:
    - unknown commands and unauthorized identities never reach the engine
    - arguments are checked for arity and type before the engine is called
    - only commands that hand out a secret build a credential bundle
    - secrets and tokens go to the chat reply only, never to logs or audit
    """

    def __init__(
        self,
        *,
        engine: AccountLifecycleEngine,
        gate: AuthorizationGate,
        renderer: BarcodeRenderer,
        server: ServerInfo,
        logger,
        audit: Optional[AuditSink] = None,
        event_logger: Optional[EventLogger] = None,
        share_format: str = "token",
        link_label: str = "SSH",
    ):
        self.engine = engine
        self.gate = gate
        self.renderer = renderer
        self.server = server
        self.logger = logger
        self.audit = audit
        self.event_logger = event_logger
        self.share_format = share_format
        self.link_label = link_label
        self._handlers: Dict[str, Callable[[List[Any]], _Outcome]] = {
            "help": self._cmd_help,
            "getexp": self._cmd_getexp,
            "users": self._cmd_users,
            "serverinfo": self._cmd_serverinfo,
            "lock": self._cmd_lock,
            "unlock": self._cmd_unlock,
            "userdel": self._cmd_userdel,
            "changemax": self._cmd_changemax,
            "changepass": self._cmd_changepass,
            "changeexp": self._cmd_changeexp,
            "renew": self._cmd_renew,
            "useradd": self._cmd_useradd,
            "autoadd": self._cmd_autoadd,
            "share": self._cmd_share,
        }

    # ---------- public API ----------
    def dispatch(self, command_name: str, identity: Any, args: Sequence[str], *, trace_id: Optional[str] = None) -> DispatchResult:
        trace_id = trace_id or uuid.uuid4().hex
        name = str(command_name or "").strip().lower()
        spec = COMMANDS.get(name)
        if spec is None:
            return DispatchResult(ok=False, reply=f"Unknown command /{name}. Send /help for the list.", error_code="unknown_command")

        target = self._target_hint(spec, args)
        try:
            self.gate.check(identity, name)
        except SSHMgrError as e:
            self.logger.warning(f"Denied /{name} for identity {identity}")
            self._event(trace_id, EVENT_DENIED, name, target, e.code)
            if spec.audited:
                self._audit(trace_id, identity, name, target, AuditOutcome.denied, e.code)
            return DispatchResult(ok=False, reply=e.user_message, error_code=e.code)

        try:
            parsed = self._parse_args(spec, args)
            outcome = self._handlers[name](parsed)
        except SSHMgrError as e:
            self.logger.info(f"/{name} failed for {target or '-'}: {e.code}")
            self._event(trace_id, EVENT_FAILED, name, target, e.code)
            if spec.audited:
                result = AuditOutcome.timeout if isinstance(e, ServiceTimeoutError) else AuditOutcome.failed
                self._audit(trace_id, identity, name, target, result, e.code)
            return DispatchResult(ok=False, reply=e.user_message, error_code=e.code)
        except Exception as e:  # noqa: BLE001
            # Arguments may hold a password: log the type only.
            self.logger.error(f"/{name} crashed for {target or '-'}: {type(e).__name__}")
            self._event(trace_id, EVENT_FAILED, name, target, "internal_error")
            if spec.audited:
                self._audit(trace_id, identity, name, target, AuditOutcome.failed, "internal_error")
            return DispatchResult(ok=False, reply="Internal error, the operation may not have completed.", error_code="internal_error")

        username = outcome.username or target
        self.logger.info(f"/{name} succeeded for {username or '-'}")
        self._event(trace_id, EVENT_COMPLETED, name, username, None)
        if spec.audited:
            result = AuditOutcome.success if outcome.changed or not spec.mutating else AuditOutcome.unchanged
            self._audit(trace_id, identity, name, username, result, None)

        if outcome.credentials is None:
            return DispatchResult(ok=True, reply=outcome.reply)
        return self._attach_bundle(outcome)

    # ---------- plumbing ----------
    @staticmethod
    def _target_hint(spec: CommandSpec, args: Sequence[str]) -> Optional[str]:
        if spec.args and spec.args[0].name == "username" and args:
            return str(args[0])[:64]
        return None

    @staticmethod
    def _parse_args(spec: CommandSpec, args: Sequence[str]) -> List[Any]:
        required = sum(1 for a in spec.args if not a.optional)
        if not required <= len(args) <= len(spec.args):
            raise InvalidArgumentError(f"Usage: {spec.usage()}", code="bad_arguments", command=spec.name)
        out: List[Any] = []
        for a, raw in zip(spec.args, args):
            value = str(raw).strip()
            if a.kind == "int":
                try:
                    out.append(int(value))
                except ValueError as e:
                    raise InvalidArgumentError(f"{a.name} must be a number. Usage: {spec.usage()}", code="bad_arguments", command=spec.name) from e
            elif a.kind == "date":
                try:
                    out.append(parse_date(value))
                except ValueError as e:
                    raise InvalidDateError(f"{a.name} must be a date like 2024-01-31. Usage: {spec.usage()}", command=spec.name) from e
            else:
                out.append(value)
        return out

    def _event(self, trace_id: str, event: str, command: str, username: Optional[str], error_code: Optional[str]) -> None:
        if self.event_logger is None:
            return
        self.event_logger.command(trace_id, event, command=command, username=username, error_code=error_code)

    def _audit(self, trace_id: str, identity: Any, command: str, username: Optional[str], outcome: AuditOutcome, error_code: Optional[str]) -> None:
        if self.audit is None:
            return
        event = AuditEvent(trace_id=trace_id, actor=str(identity), operation=command, username=username, outcome=outcome, error_code=error_code)
        self.audit.record(event)

    def _bundle_for(self, creds: AccountCredentials) -> CredentialBundle:
        return CredentialBundle(
            server_address=self.server.address,
            ports=self.server.ports,
            location=self.server.location,
            username=creds.username,
            secret=creds.secret,
            expiry_date=creds.expiry_date or self.engine.clock.today(),
        )

    def _attach_bundle(self, outcome: _Outcome) -> DispatchResult:
        creds = outcome.credentials
        assert creds is not None
        try:
            bundle = self._bundle_for(creds)
            if self.share_format == "sagernet":
                shared = sagernet_link(bundle, label=self.link_label)
            else:
                shared = encode(bundle)
            barcode = self.renderer.render_barcode(shared)
        except SSHMgrError as e:
            self.logger.warning(f"No QR code for {creds.username}: {e.code}")
            return DispatchResult(ok=True, reply=f"{outcome.reply}\n\n(QR code not attached: {e.user_message})")
        caption = f"`{creds.username}` {_fmt_date(creds.expiry_date)}\n`{shared}`"
        return DispatchResult(ok=True, reply=outcome.reply, image=barcode.png, caption=caption)

    # ---------- replies ----------
    @staticmethod
    def _status_reply(res: TransitionResult, already: str) -> _Outcome:
        text = f"username: `{res.username}`\nstatus: `{_STATUS_TEXT[res.state]}`"
        if not res.changed:
            text += f"\n(already {already})"
        return _Outcome(reply=text, username=res.username, changed=res.changed)

    @staticmethod
    def _expiry_reply(username: str, expiry: Optional[_dt.date], changed: bool = True) -> _Outcome:
        return _Outcome(reply=f"username: `{username}`\nexpiry date: `{_fmt_date(expiry)}`", username=username, changed=changed)

    def _user_info_reply(self, creds: AccountCredentials) -> _Outcome:
        text = (
            "*user info:*\n"
            f"username: `{creds.username}`\n"
            f"password: `{creds.secret}`\n"
            f"max logins: `{creds.max_logins if creds.max_logins is not None else '-'}`\n"
            f"expiry date: `{_fmt_date(creds.expiry_date)}`\n\n"
            "*server info:*\n"
            f"{self.server.render()}"
        )
        return _Outcome(reply=text, username=creds.username, credentials=creds)

    # ---------- commands ----------
    def _cmd_help(self, _args: List[Any]) -> _Outcome:
        lines = ["These commands are supported:"]
        for spec in COMMANDS.values():
            lines.append(f"{spec.usage()} - {spec.description}")
        return _Outcome(reply="\n".join(lines), changed=False)

    def _cmd_getexp(self, args: List[Any]) -> _Outcome:
        return self._expiry_reply(args[0], self.engine.get_expiry(args[0]), changed=False)

    def _cmd_users(self, args: List[Any]) -> _Outcome:
        group = args[0] if args else None
        names = self.engine.list_accounts(group)
        if not names:
            return _Outcome(reply="No users found.", changed=False)
        header = f"users ({len(names)}):"
        return _Outcome(reply="\n".join([header] + [f"`{n}`" for n in names]), changed=False)

    def _cmd_serverinfo(self, _args: List[Any]) -> _Outcome:
        return _Outcome(reply=self.server.render(), changed=False)

    def _cmd_lock(self, args: List[Any]) -> _Outcome:
        return self._status_reply(self.engine.lock(args[0]), "locked")

    def _cmd_unlock(self, args: List[Any]) -> _Outcome:
        return self._status_reply(self.engine.unlock(args[0]), "unlocked")

    def _cmd_userdel(self, args: List[Any]) -> _Outcome:
        return self._status_reply(self.engine.delete(args[0]), "deleted")

    def _cmd_changemax(self, args: List[Any]) -> _Outcome:
        res = self.engine.change_group(args[0], args[1])
        return _Outcome(reply=f"username: `{res.username}`\nmax logins: `{res.max_logins}`", username=res.username, changed=res.changed)

    def _cmd_changepass(self, args: List[Any]) -> _Outcome:
        creds = self.engine.change_password(args[0], args[1])
        text = f"username: `{creds.username}`\npassword: `{creds.secret}`"
        return _Outcome(reply=text, username=creds.username, credentials=creds)

    def _cmd_changeexp(self, args: List[Any]) -> _Outcome:
        res = self.engine.change_expiry(args[0], args[1])
        return self._expiry_reply(res.username, res.expiry_date, res.changed)

    def _cmd_renew(self, args: List[Any]) -> _Outcome:
        res = self.engine.renew(args[0], args[1])
        return self._expiry_reply(res.username, res.expiry_date)

    def _cmd_useradd(self, args: List[Any]) -> _Outcome:
        username, group, exp_date, password = args
        return self._user_info_reply(self.engine.create(username, group, exp_date, password))

    def _cmd_autoadd(self, args: List[Any]) -> _Outcome:
        return self._user_info_reply(self.engine.auto_create(args[0], args[1]))

    def _cmd_share(self, args: List[Any]) -> _Outcome:
        username, password = args
        expiry = self.engine.get_expiry(username)
        creds = AccountCredentials(operation="share", username=username, secret=password, expiry_date=expiry)
        text = f"username: `{username}`\nexpiry date: `{_fmt_date(expiry)}`\n\n*server info:*\n{self.server.render()}"
        return _Outcome(reply=text, username=username, changed=False, credentials=creds)
