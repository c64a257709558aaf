"""Typed configuration parameters and an INI-backed settings store."""

from __future__ import annotations

import configparser
import dataclasses
import os
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Iterable, Iterator, List, Optional, Union

PathArg = Union[str, "os.PathLike[str]"]


class ParamType(IntEnum):
    """Kinds of configuration parameters."""

    HEADER = 0
    STRING = 1
    NUMBER = 3
    FLOAT = 4
    BOOL = 7
    LIST = 9
    FONT = 10
    FILE = 11
    DIR = 12


class ConfigError(ValueError):
    """A value entered for a parameter is not acceptable."""


@dataclass
class Param:
    """One configuration parameter; a header only groups those after it."""

    label: str
    name: str = ""
    type: ParamType = ParamType.HEADER
    def_value: Any = None
    value: Any = None
    choices: List[str] = field(default_factory=list)
    comment: str = ""
    is_edited: bool = False
    is_valid: bool = True


def _to_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _to_int(value: Any) -> int:
    if isinstance(value, (bool, int, float)):
        return int(value)
    try:
        return int(_to_text(value).strip())
    except ValueError:
        return 0


def _to_float(value: Any) -> float:
    if isinstance(value, (bool, int, float)):
        return float(value)
    try:
        return float(_to_text(value).strip())
    except ValueError:
        return 0.0


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() not in ("", "0", "false")
    return bool(value)


def _convert(param_type: ParamType, value: Any) -> Any:
    if param_type == ParamType.NUMBER:
        return _to_int(value)
    if param_type == ParamType.FLOAT:
        return _to_float(value)
    if param_type == ParamType.BOOL:
        return _to_bool(value)
    return _to_text(value)


class Settings:
    """Key/value settings stored in one group (section) of an INI file.

    Changes are written to disk by :meth:`sync`, or on leaving a ``with``
    block without an error.
    """

    def __init__(self, path: PathArg, group: str = "General") -> None:
        self.path = os.fspath(path)
        self.group = group
        self._parser = configparser.ConfigParser(interpolation=None)
        self._parser.optionxform = str
        self._parser.read(self.path, encoding="utf-8")

    def value(self, key: str, default: Any = None) -> Any:
        """Return the stored text for ``key``, or ``default`` if absent."""
        if self._parser.has_option(self.group, key):
            return self._parser.get(self.group, key)
        return default

    def set_value(self, key: str, value: Any) -> None:
        """Store ``value`` under ``key``; booleans are written as true/false."""
        if not self._parser.has_section(self.group):
            self._parser.add_section(self.group)
        self._parser.set(self.group, key, _to_text(value))

    def sync(self) -> None:
        """Write all groups back to the file."""
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as file:
            self._parser.write(file)

    def __enter__(self) -> "Settings":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.sync()


def load_values(params: Iterable[Param], settings: Settings) -> None:
    """Fill each non-header parameter from ``settings``, converted to its type."""
    for param in params:
        if param.type == ParamType.HEADER:
            continue
        param.value = _convert(param.type, settings.value(param.name, param.def_value))


class ConfigList:
    """An ordered list of parameters that can be edited and saved."""

    def __init__(self, params: Optional[Iterable[Param]] = None) -> None:
        self._params: List[Param] = []
        if params is not None:
            self.add_params(params)

    @property
    def params(self) -> List[Param]:
        """The parameters held, in insertion order."""
        return self._params

    def __iter__(self) -> Iterator[Param]:
        return iter(self._params)

    def __len__(self) -> int:
        return len(self._params)

    def add_param(self, param: Param) -> None:
        """Append a copy of ``param``."""
        self._params.append(dataclasses.replace(param, choices=list(param.choices)))

    def add_params(self, params: Iterable[Param]) -> None:
        """Append copies of all ``params``."""
        for param in params:
            self.add_param(param)

    def param(self, name: str) -> Optional[Param]:
        """Return the last non-header parameter called ``name``, or ``None``."""
        found = None
        for param in self._params:
            if param.type != ParamType.HEADER and param.name == name:
                found = param
        return found

    def clear(self) -> None:
        """Remove all parameters."""
        self._params.clear()

    def edit_value(self, name: str, text: Any) -> Param:
        """Set a parameter from user input, checking it against its type.

        Raises :class:`KeyError` for an unknown name and :class:`ConfigError`
        when the input is not acceptable; the parameter is then marked
        invalid and keeps its old value.
        """
        param = self.param(name)
        if param is None:
            raise KeyError(name)

        if param.type == ParamType.BOOL:
            value: Any = _to_bool(text)
        else:
            text = _to_text(text).strip()
            value = text
            error = ""
            if param.type == ParamType.NUMBER:
                try:
                    value = int(text)
                except ValueError:
                    error = "Value must be integer."
            elif param.type == ParamType.FLOAT:
                try:
                    value = float(text.replace(",", "."))
                except ValueError:
                    error = "Value must be float."
            elif param.type == ParamType.DIR and text and not os.path.isdir(text):
                error = "Directory not exists."
            if error:
                param.is_valid = False
                raise ConfigError(f"{error}\n{param.label}")

        param.value = value
        param.is_valid = True
        param.is_edited = True
        return param

    def save_values(self, settings: Settings) -> None:
        """Store edited values, and defaults for parameters without a value."""
        for param in self._params:
            if param.type == ParamType.HEADER:
                continue
            if param.value is None:
                settings.set_value(param.name, param.def_value)
            elif param.is_edited:
                settings.set_value(param.name, param.value)