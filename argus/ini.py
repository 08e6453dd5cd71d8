"""
INI text support.

- parse_ini(text): {group: {key: value}} using configparser. Keys before the
  first section header and keys of the DEFAULT section belong to group "".
- IniBackend: a read-only Backend over ini content, optionally watching the
  file it came from and publishing what changed.
"""
import configparser
import logging
import threading

from .backends import Backend, Channel, ChangeEvent, Key, Pair
from .faults import BackendError, FaultCode, IniError, NotFoundError
from .utils import load_file
from .watchfile import FileWatcher

LOG = logging.getLogger(__name__)

DEFAULT_SECTION = "DEFAULT"

# configparser copies keys of its default section into every other section;
# pointing it at a name no file can declare keeps DEFAULT an ordinary section.
_UNREACHABLE_SECTION = "\x00"


def parse_ini(text, /):
    """
    Parse ini text into {group: {key: value}}.

    - the DEFAULT section (and keys above any header) map to group "".
    - key case is preserved; values are never interpolated.
    - syntax errors raise IniError.
    """
    if isinstance(text, bytes | bytearray):
        text = text.decode("utf-8")
    if not isinstance(text, str):
        raise TypeError("parse_ini() argument must be a string or bytes")

    parser = configparser.ConfigParser(
        default_section=_UNREACHABLE_SECTION,
        interpolation=None,
        strict=False,
    )
    parser.optionxform = str
    try:
        parser.read_string(f"[{DEFAULT_SECTION}]\n{text}", source="<ini>")
    except configparser.Error as error:
        raise IniError(
            f"ini parse error: {error}",
            code=FaultCode.INI_SYNTAX,
            title="invalid ini",
        ) from error

    result = {}
    for section in parser.sections():
        group = "" if section == DEFAULT_SECTION else section
        result.setdefault(group, {}).update(parser[section])
    if not result.get(""):
        result.pop("", None)
    return result


def diff(old, new, /):
    """
    ChangeEvents turning parsed ini old into parsed ini new.
    """
    events = []
    for group, values in new.items():
        previous = old.get(group, {})
        for name, value in values.items():
            if previous.get(name) != value:
                events.append(ChangeEvent(Key(group, name), value))
    for group, values in old.items():
        current = new.get(group, {})
        for name, value in values.items():
            if name not in current:
                events.append(ChangeEvent(Key(group, name), value, deleted=True))
    return events


class IniBackend(Backend):
    """
    Backend over ini content.

    - filename is the root key, and the file watched by watch().
    - set() is refused: ini files are read only through this backend.
    - watch() re-reads the file when it changes (at most once per interval)
      and publishes one ChangeEvent per changed or removed key.
    """

    def __init__(self, content="", filename="", /, *, interval=1.0, logger=None):
        self.filename = filename
        self.interval = interval
        self.log = logger or LOG
        self._sections = parse_ini(content)
        self._lock = threading.Lock()
        self._watches = []

    @classmethod
    def from_file(cls, path, /, **options):
        return cls(load_file(path), path, **options)

    def get(self, key, /, timeout=None):
        with self._lock:
            try:
                return Pair(key, self._sections[key.group][key.name])
            except KeyError:
                raise NotFoundError(
                    f"'{key.join('.')}' not found in '{self.filename or '<ini>'}'",
                    code=FaultCode.KEY_NOT_FOUND,
                    title="key not found",
                    key=key,
                ) from None

    def list(self, key, /, timeout=None):
        with self._lock:
            if key.group not in self._sections:
                raise NotFoundError(
                    f"section '{key.group or DEFAULT_SECTION}' not found in '{self.filename or '<ini>'}'",
                    code=FaultCode.KEY_NOT_FOUND,
                    title="section not found",
                    key=key,
                )
            return [Pair(Key(key.group, name), value) for name, value in self._sections[key.group].items()]

    def set(self, key, value, /, timeout=None):
        raise BackendError(
            "set() is not allowed on ini files",
            code=FaultCode.BACKEND_FAILURE,
            title="read only backend",
            key=key,
        )

    def reload(self, content, /):
        """
        replace the content and return the ChangeEvents it produced.
        """
        sections = parse_ini(content)
        with self._lock:
            old, self._sections = self._sections, sections
        return diff(old, sections)

    def watch(self, root, cancel, /):
        if not root:
            raise BackendError(
                "watch() needs the ini content to come from a file",
                code=FaultCode.WATCH_FAILURE,
                title="nothing to watch",
            )
        channel = Channel()

        def changed():
            try:
                events = self.reload(load_file(root))
            except (OSError, IniError) as error:
                channel.put(ChangeEvent(error=error))
                return
            for event in events:
                channel.put(event)

        watcher = FileWatcher(root, self.interval, changed, logger=self.log).start()

        def closer():
            cancel.wait()
            watcher.close()
            channel.close()

        with self._lock:
            self._watches.append(cancel)
        threading.Thread(target=closer, name="argus-ini-watch", daemon=True).start()
        return channel

    def get_root_key(self):
        return self.filename

    def close(self):
        with self._lock:
            watches, self._watches = self._watches, []
        for cancel in watches:
            cancel.set()


__all__ = (
    "DEFAULT_SECTION",
    "parse_ini",
    "diff",
    "IniBackend",
)
